"""
Heartbeat Reporter - Reports terminal liveness to the CMS.
Sends a heartbeat every 30 seconds, or immediately when triggered.
"""

import threading
import time
from typing import Any, Callable, Dict, Optional

from src.common.cms_client import CMSClient, CMSClientError
from src.common.logger import setup_logger

from .terminal_state import TerminalState

logger = setup_logger(__name__)


class HeartbeatReporter:
    """Reports terminal liveness at regular intervals."""

    DEFAULT_INTERVAL = 30  # seconds between heartbeats

    def __init__(
        self,
        client: CMSClient,
        state: TerminalState,
        interval: int = DEFAULT_INTERVAL,
        on_terminal_record: Optional[Callable[[Dict[str, Any]], None]] = None
    ):
        """
        Initialize heartbeat reporter.

        Args:
            client: CMS client
            state: Shared terminal state (read-only here)
            interval: Seconds between heartbeats (default: 30)
            on_terminal_record: Callback with the terminal record the CMS
                returns after each successful heartbeat
        """
        self._client = client
        self._state = state
        self.interval = interval
        self._on_terminal_record = on_terminal_record

        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()

        self._last_heartbeat_time: Optional[float] = None
        self._last_heartbeat_success: bool = False
        self._consecutive_failures = 0

    def send_heartbeat(self) -> bool:
        """
        Send one heartbeat.

        Current-media telemetry is attached only while the terminal is
        flagged for monitoring.

        Returns:
            True if the CMS accepted the heartbeat
        """
        current_media = None
        if self._state.is_monitoring:
            current_media = self._state.current_media or ""

        try:
            record = self._client.send_heartbeat(self._state.terminal_id, current_media)
        except CMSClientError as e:
            logger.warning(f"Heartbeat error: {e}")
            self._last_heartbeat_success = False
            self._consecutive_failures += 1
            return False

        if record is None:
            logger.warning(f"Heartbeat rejected: terminal {self._state.terminal_id} unknown to CMS")
            self._last_heartbeat_success = False
            self._consecutive_failures += 1
            return False

        self._last_heartbeat_time = time.time()
        self._last_heartbeat_success = True
        self._consecutive_failures = 0
        logger.debug("Heartbeat sent (counter=%s)", record.get('heartbeat_counter'))

        if self._on_terminal_record:
            try:
                self._on_terminal_record(record)
            except Exception as e:
                logger.error(f"Error in heartbeat record callback: {e}")

        return True

    def trigger(self) -> None:
        """Request an immediate heartbeat from the background thread."""
        self._wake_event.set()

    def _heartbeat_loop(self) -> None:
        """Background thread loop for sending heartbeats."""
        logger.info(f"Heartbeat reporter started (interval: {self.interval}s)")

        while not self._stop_event.is_set():
            self.send_heartbeat()
            self._wake_event.wait(timeout=self.interval)
            self._wake_event.clear()

        logger.info("Heartbeat reporter stopped")

    def start(self) -> None:
        """Start the heartbeat reporter background thread."""
        if self.is_running():
            logger.warning("Heartbeat reporter already running")
            return

        self._stop_event.clear()
        self._wake_event.clear()
        self._thread = threading.Thread(
            target=self._heartbeat_loop,
            name="heartbeat",
            daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop the heartbeat reporter."""
        if not self._thread:
            return

        self._stop_event.set()
        self._wake_event.set()
        self._thread.join(timeout=5)
        self._thread = None

    def is_running(self) -> bool:
        """Check if heartbeat reporter is running."""
        return self._thread is not None and self._thread.is_alive()

    def get_last_heartbeat_info(self) -> Dict[str, Any]:
        """
        Get information about the last heartbeat.

        Returns:
            Dictionary with last heartbeat details
        """
        return {
            "last_time": self._last_heartbeat_time,
            "last_success": self._last_heartbeat_success,
            "consecutive_failures": self._consecutive_failures
        }
