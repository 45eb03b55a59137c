"""
Command Channel for the terminal player.

Listens for CMS change notifications over ZeroMQ and turns the ones relevant
to this terminal into commands on the session queue. Local producers (the
display's end-of-video signal, shutdown) post to the same queue so the
session thread has a single input.
"""

import queue
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

from src.common.ipc import Message, MessageSubscriber, MessageType
from src.common.logger import setup_logger

from .terminal_state import TerminalState

logger = setup_logger(__name__)


class CommandKind(Enum):
    """Kinds of commands the session thread reacts to."""
    TERMINAL_UPDATED = "terminal_updated"    # Own terminal row changed
    TERMINAL_DELETED = "terminal_deleted"    # Own terminal row removed
    PLAYLIST_CHANGED = "playlist_changed"    # Assigned playlist or its slots changed
    CAMPAIGN_CHANGED = "campaign_changed"    # Any campaign changed
    MEDIA_CHANGED = "media_changed"          # Any media changed
    VIDEO_ENDED = "video_ended"              # Display finished the current video
    STOP = "stop"                            # Shut down the session


@dataclass
class Command:
    """One unit of work for the session thread."""

    kind: CommandKind
    payload: Dict[str, Any] = field(default_factory=dict)


class CommandChannel:
    """
    Bridges the CMS change feed to the session command queue.

    Change messages carry ``{"table", "op", "record"}``. Messages for other
    terminals or unrelated playlists are dropped here so the session thread
    only wakes for work it has to do.
    """

    RECEIVE_TIMEOUT_MS = 1000

    def __init__(
        self,
        endpoint: Optional[str],
        state: TerminalState,
        commands: Optional["queue.Queue[Command]"] = None,
        subscriber_factory: Optional[Callable[[str], MessageSubscriber]] = None
    ):
        """
        Initialize the command channel.

        Args:
            endpoint: ZeroMQ endpoint of the CMS change feed (None disables
                the push channel; the queue still works for local commands)
            state: Shared terminal state, used to filter playlist changes
            commands: Queue to deliver commands to (created if None)
            subscriber_factory: Builds the subscriber for an endpoint
        """
        self.endpoint = endpoint
        self._state = state
        self.commands: "queue.Queue[Command]" = commands or queue.Queue()
        self._subscriber_factory = subscriber_factory or (
            lambda ep: MessageSubscriber(ep, service_name="terminal_player")
        )

        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._subscriber: Optional[MessageSubscriber] = None

        self._stats = {
            "received": 0,
            "forwarded": 0,
            "last_message_time": None,
        }

    def post(self, kind: CommandKind, payload: Optional[Dict[str, Any]] = None) -> None:
        """Queue a command from a local producer."""
        self.commands.put(Command(kind, payload or {}))

    def start(self) -> None:
        """Start listening for change notifications in a background thread."""
        if self._running:
            logger.warning("CommandChannel already running")
            return

        if not self.endpoint:
            logger.info("No change feed endpoint configured, push channel disabled")
            return

        self._running = True
        self._thread = threading.Thread(
            target=self._listen_loop,
            name="CommandChannel",
            daemon=True
        )
        self._thread.start()
        logger.info(f"CommandChannel started on {self.endpoint}")

    def stop(self) -> None:
        """Stop listening and close the subscription."""
        if not self._running:
            return

        self._running = False

        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=2.0)
        self._thread = None

        logger.info("CommandChannel stopped")

    def _listen_loop(self) -> None:
        """Main listening loop (runs in background thread)."""
        try:
            self._subscriber = self._subscriber_factory(self.endpoint)
            self._subscriber.subscribe_to(MessageType.CHANGE)
        except Exception as e:
            logger.error(f"Failed to initialize subscriber: {e}")
            self._running = False
            return

        try:
            while self._running:
                try:
                    message = self._subscriber.receive(timeout_ms=self.RECEIVE_TIMEOUT_MS)
                    if message is not None:
                        self.handle_message(message)
                except Exception as e:
                    logger.error(f"Error in command channel loop: {e}")
                    time.sleep(0.5)
        finally:
            self._subscriber.close()
            self._subscriber = None

    def handle_message(self, message: Message) -> Optional[Command]:
        """
        Convert a change message into a command and queue it.

        Returns:
            The queued command, or None if the message was not relevant
        """
        if message.msg_type != MessageType.CHANGE:
            return None

        self._stats["received"] += 1
        self._stats["last_message_time"] = time.time()

        command = self._to_command(message.data)
        if command is None:
            return None

        self.commands.put(command)
        self._stats["forwarded"] += 1
        logger.debug(f"Queued command: {command.kind.value}")
        return command

    def _to_command(self, change: Dict[str, Any]) -> Optional[Command]:
        table = change.get('table')
        op = change.get('op')
        record = change.get('record') or {}

        if table == 'terminals':
            if record.get('id') != self._state.terminal_id:
                return None
            if op == 'delete':
                return Command(CommandKind.TERMINAL_DELETED, {'record': record})
            return Command(CommandKind.TERMINAL_UPDATED, {'record': record})

        if table in ('playlists', 'playlist_slots'):
            playlist_id = record.get('id') if table == 'playlists' else record.get('playlist_id')
            if playlist_id is None or playlist_id != self._state.assigned_playlist_id:
                return None
            return Command(CommandKind.PLAYLIST_CHANGED, {'playlist_id': playlist_id})

        if table == 'campaigns':
            return Command(CommandKind.CAMPAIGN_CHANGED, {'campaign_id': record.get('id')})

        if table == 'media':
            return Command(CommandKind.MEDIA_CHANGED, {'media_id': record.get('id')})

        return None

    def get_status(self) -> Dict[str, Any]:
        """Get channel statistics."""
        return {
            "running": self._running,
            "endpoint": self.endpoint,
            **self._stats,
        }
