"""
Display surface for the terminal player.

The rotation loop talks to a display through two calls: ``show_media`` for an
item that is ready to play and ``show_status`` for the pre-display states
(connecting, loading, standby, error) so the screen is never left blank.
HeadlessDisplay implements the interface by logging, which is what runs on
hosts without a renderer and in tests.
"""

from enum import Enum
from typing import Callable, Optional

from src.common.logger import setup_logger

logger = setup_logger(__name__)


class DisplayStatus(Enum):
    """Screen states shown instead of media."""
    CONNECTING = "connecting"    # Waiting for first CMS response
    LOADING = "loading"          # Resolving playlist or item
    STANDBY = "standby"          # Outside operating window / power off
    ERROR = "error"              # Error banner
    PLAYING = "playing"          # Media on screen


class HeadlessDisplay:
    """
    Display that records what would be on screen.

    Video playback end is reported by calling ``video_ended()``, which
    forwards to the callback registered with ``set_video_ended_callback``.
    """

    def __init__(self):
        self.status: DisplayStatus = DisplayStatus.CONNECTING
        self.message: str = ""
        self.current_url: Optional[str] = None
        self.current_type: Optional[str] = None
        self._on_video_ended: Optional[Callable[[], None]] = None

    def set_video_ended_callback(self, callback: Callable[[], None]) -> None:
        """Register the callback invoked when a video finishes."""
        self._on_video_ended = callback

    def show_status(self, status: DisplayStatus, message: str = "") -> None:
        """Show a pre-display state banner."""
        self.status = status
        self.message = message
        self.current_url = None
        self.current_type = None
        logger.info("Display: %s %s", status.value, message)

    def show_media(self, url: str, media_type: str, title: str = "") -> None:
        """Put a media item on screen."""
        self.status = DisplayStatus.PLAYING
        self.message = title
        self.current_url = url
        self.current_type = media_type
        logger.info("Display: playing %s %s (%s)", media_type, title, url)

    def video_ended(self) -> None:
        """Report that the current video reached its end."""
        if self._on_video_ended:
            self._on_video_ended()
