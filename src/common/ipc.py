"""
Change-notification transport over ZeroMQ PUB/SUB.

The CMS publishes one message per committed row change; terminals subscribe
and turn messages into commands. Frames are ``"<topic> <json>"`` strings so
subscribers can filter by topic prefix.
"""

import json
import time
from enum import Enum
from typing import Any, Dict, Optional

import zmq

from src.common.logger import setup_logger

logger = setup_logger(__name__)


class MessageType(Enum):
    """Topics carried on the change channel."""
    CHANGE = "change"           # Row inserted/updated/deleted in a CMS table
    HEARTBEAT = "heartbeat"     # Publisher keep-alive


class Message:
    """Envelope for a change-channel message."""

    def __init__(
        self,
        msg_type: MessageType,
        data: Dict[str, Any],
        sender: str,
        timestamp: Optional[float] = None
    ):
        """
        Create a message.

        Args:
            msg_type: Topic of the message
            data: Message payload
            sender: Name of the publishing service
            timestamp: Unix timestamp (auto-generated if None)
        """
        self.msg_type = msg_type
        self.data = data
        self.sender = sender
        self.timestamp = timestamp or time.time()

    def to_json(self) -> str:
        """Serialize message to JSON string."""
        return json.dumps({
            "type": self.msg_type.value,
            "data": self.data,
            "sender": self.sender,
            "timestamp": self.timestamp
        }, default=str)

    def to_frame(self) -> str:
        """Wire frame: topic, one space, JSON body."""
        return f"{self.msg_type.value} {self.to_json()}"

    @classmethod
    def from_json(cls, json_str: str) -> "Message":
        """Deserialize message from JSON string."""
        obj = json.loads(json_str)
        return cls(
            msg_type=MessageType(obj["type"]),
            data=obj["data"],
            sender=obj["sender"],
            timestamp=obj["timestamp"]
        )

    @classmethod
    def from_frame(cls, frame: str) -> Optional["Message"]:
        """Parse a wire frame, returning None if it has no body."""
        parts = frame.split(' ', 1)
        if len(parts) != 2:
            return None
        return cls.from_json(parts[1])

    def __repr__(self) -> str:
        return f"Message(type={self.msg_type.value}, sender={self.sender}, data={self.data})"


class MessagePublisher:
    """Publishes change messages to subscribers (PUB socket)."""

    def __init__(self, port: int, service_name: str, bind_host: str = "*"):
        """
        Initialize publisher.

        Args:
            port: Port to publish on
            service_name: Name of this service
            bind_host: Interface to bind (all interfaces by default)
        """
        self.port = port
        self.service_name = service_name
        self.context = zmq.Context()
        self.socket = self.context.socket(zmq.PUB)
        self.socket.setsockopt(zmq.LINGER, 0)
        self.socket.bind(f"tcp://{bind_host}:{port}")

        logger.info(f"Publisher started: {service_name} on port {port}")

    def publish(self, msg_type: MessageType, data: Dict[str, Any]) -> None:
        """
        Publish a message.

        Args:
            msg_type: Topic of the message
            data: Message payload
        """
        message = Message(msg_type, data, self.service_name)
        self.socket.send_string(message.to_frame())
        logger.debug(f"Published: {message}")

    def close(self) -> None:
        """Close the publisher."""
        self.socket.close()
        self.context.term()
        logger.info(f"Publisher closed: {self.service_name}")


class MessageSubscriber:
    """Receives change messages from a publisher (SUB socket)."""

    def __init__(self, endpoint: str, service_name: str):
        """
        Initialize subscriber.

        Args:
            endpoint: ZeroMQ endpoint to connect to (e.g. tcp://cms:5560)
            service_name: Name of this service
        """
        self.endpoint = endpoint
        self.service_name = service_name
        self.context = zmq.Context()
        self.socket = self.context.socket(zmq.SUB)
        self.socket.setsockopt(zmq.LINGER, 0)
        self.socket.connect(endpoint)

        logger.info(f"Subscriber started: {service_name} connected to {endpoint}")

    def subscribe_to(self, msg_type: MessageType) -> None:
        """
        Subscribe to a topic.

        Args:
            msg_type: Topic to subscribe to
        """
        self.socket.setsockopt_string(zmq.SUBSCRIBE, msg_type.value)
        logger.debug(f"Subscribed to: {msg_type.value}")

    def receive(self, timeout_ms: int = 1000) -> Optional[Message]:
        """
        Receive a message (blocking with timeout).

        Args:
            timeout_ms: Timeout in milliseconds

        Returns:
            Message, or None on timeout or malformed frame
        """
        self.socket.setsockopt(zmq.RCVTIMEO, timeout_ms)

        try:
            frame = self.socket.recv_string()
        except zmq.Again:
            return None

        try:
            message = Message.from_frame(frame)
        except (ValueError, KeyError) as e:
            logger.warning(f"Dropping malformed message: {e}")
            return None

        if message is not None:
            logger.debug(f"Received: {message}")
        return message

    def close(self) -> None:
        """Close the subscriber."""
        self.socket.close()
        self.context.term()
        logger.info(f"Subscriber closed: {self.service_name}")
