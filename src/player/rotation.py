"""
Media Rotation Loop for the terminal player.

Drives the display timer over a resolved playlist. The loop owns no thread:
the session thread calls ``tick()`` whenever ``seconds_until_due()`` reaches
zero, so URL resolution and timer advancement never overlap.

Behaviour per item:
- URL resolves: show it and arm the duration timer
- URL missing: skip to the next index immediately; a full pass without a
  playable item drops to IDLE and polls again later
- CMSClientError: retry the same item after a fixed delay, giving up (and
  skipping) after a bounded number of attempts
"""

import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from src.common.cms_client import CMSClient, CMSClientError
from src.common.logger import setup_logger

from .display import DisplayStatus, HeadlessDisplay
from .media_cache import MediaCache
from .playlist_resolver import PlaylistItem
from .state_machine import RotationState, RotationStateMachine

logger = setup_logger(__name__)


@dataclass
class PlayingMedia:
    """An item resolved to something the display can show."""

    item: PlaylistItem
    media_id: str
    url: str
    source_url: str
    media_type: str
    name: str

    @property
    def is_video(self) -> bool:
        return self.media_type == 'video'


class MediaRotationLoop:
    """
    Time-boxed rotation over playlist items.

    The index always points at the item on screen (or the one being
    resolved). Pausing keeps the index; resuming replays the same item.
    """

    DEFAULT_ITEM_DURATION = 10
    RETRY_DELAY = 3
    MAX_ATTEMPTS = 3
    IDLE_POLL_INTERVAL = 5

    def __init__(
        self,
        client: CMSClient,
        display: HeadlessDisplay,
        cache: Optional[MediaCache] = None,
        default_duration: float = DEFAULT_ITEM_DURATION,
        retry_delay: float = RETRY_DELAY,
        max_attempts: int = MAX_ATTEMPTS,
        idle_poll_interval: float = IDLE_POLL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        on_media_changed: Optional[Callable[[Optional[PlayingMedia]], None]] = None,
        on_media_shown: Optional[Callable[[PlayingMedia], None]] = None
    ):
        """
        Initialize the rotation loop.

        Args:
            client: CMS client used for campaign and media lookups
            display: Display surface
            cache: Local media cache (optional)
            default_duration: Seconds for items without a positive duration
            retry_delay: Seconds between attempts after a transient error
            max_attempts: Attempts per item before it is skipped
            idle_poll_interval: Seconds between polls while nothing is playable
            clock: Monotonic time source
            on_media_changed: Callback with the item now on screen (or None)
            on_media_shown: Callback each time an item goes on screen
        """
        self._client = client
        self._display = display
        self._cache = cache
        self.default_duration = default_duration
        self.retry_delay = retry_delay
        self.max_attempts = max_attempts
        self.idle_poll_interval = idle_poll_interval
        self._clock = clock
        self._on_media_changed = on_media_changed
        self._on_media_shown = on_media_shown

        self._state = RotationStateMachine(initial_state=RotationState.IDLE)
        self._items: List[PlaylistItem] = []
        self._index = 0
        # Set when the index was wrapped under the item on screen
        self._hold_index = False
        self._deadline: Optional[float] = None
        self._attempts = 0
        self._misses = 0
        self._powered = False
        self._current: Optional[PlayingMedia] = None

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    @property
    def state(self) -> RotationState:
        return self._state.state

    @property
    def is_idle(self) -> bool:
        return self._state.is_idle

    @property
    def current_index(self) -> int:
        return self._index

    @property
    def current_media(self) -> Optional[PlayingMedia]:
        return self._current

    @property
    def items(self) -> List[PlaylistItem]:
        return list(self._items)

    @property
    def deadline(self) -> Optional[float]:
        return self._deadline

    def seconds_until_due(self) -> Optional[float]:
        """Seconds until the next tick is due, or None when no timer is armed."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    # -------------------------------------------------------------------------
    # Inputs
    # -------------------------------------------------------------------------

    def set_playlist(self, items: List[PlaylistItem]) -> None:
        """
        Replace the playlist.

        The item on screen keeps playing until its timer expires; the index is
        wrapped into the new list. When the wrap happens mid-item, the next
        advance lands on the first item instead of stepping past it. An idle
        loop starts immediately.
        """
        self._items = list(items)
        self._misses = 0

        if self._index >= len(self._items):
            self._index = 0
            self._hold_index = self.state == RotationState.PLAYING and bool(self._items)

        logger.info("Rotation playlist set: %d items", len(self._items))

        if not self._powered:
            return

        if not self._items:
            if self.state != RotationState.IDLE:
                self._enter_idle("Waiting for content")
            return

        if self.state == RotationState.IDLE:
            self._deadline = self._clock()

    def pause(self) -> None:
        """Enter standby: clear the timer, keep the index."""
        self._powered = False
        self._hold_index = False
        self._deadline = None
        self._attempts = 0
        if self._state.transition_to(RotationState.STANDBY):
            logger.info("Rotation paused at index %d", self._index)
        self._set_current(None)
        self._display.show_status(DisplayStatus.STANDBY, "Outside operating hours")

    def resume(self) -> None:
        """Leave standby and replay the current index."""
        self._powered = True
        self._misses = 0

        if not self._items:
            self._enter_idle("Waiting for content")
            return

        if self.state in (RotationState.STANDBY, RotationState.IDLE):
            self._state.transition_to(RotationState.RESOLVING)
            self._display.show_status(DisplayStatus.LOADING)
            self._deadline = self._clock()
            logger.info("Rotation resumed at index %d", self._index)

    def notify_video_ended(self) -> None:
        """Advance early when the video on screen has finished."""
        if self.state == RotationState.PLAYING and self._current and self._current.is_video:
            self._deadline = self._clock()

    def tick(self) -> None:
        """Run one step if the timer is due."""
        if self._deadline is None or self._clock() < self._deadline:
            return
        self.step()

    def step(self) -> None:
        """Advance the rotation unconditionally (timer expiry)."""
        state = self.state

        if state == RotationState.STANDBY:
            return

        if not self._items:
            self._enter_idle("Waiting for content")
            return

        if state == RotationState.PLAYING:
            if self._hold_index:
                self._hold_index = False
            else:
                self._index = (self._index + 1) % len(self._items)
            self._attempts = 0
            self._state.transition_to(RotationState.RESOLVING)
        elif state == RotationState.IDLE:
            self._state.transition_to(RotationState.RESOLVING)

        self._play_current()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _play_current(self) -> None:
        while True:
            item = self._items[self._index]

            try:
                resolved = self._resolve(item)
            except CMSClientError as e:
                self._attempts += 1
                if self._attempts < self.max_attempts:
                    logger.warning(
                        "Error resolving item %d (attempt %d/%d): %s",
                        self._index, self._attempts, self.max_attempts, e
                    )
                    self._deadline = self._clock() + self.retry_delay
                    return
                logger.error("Giving up on item %d after %d attempts", self._index, self._attempts)
                resolved = None

            if resolved is not None:
                self._show(resolved)
                return

            self._misses += 1
            if self._misses >= len(self._items):
                logger.warning("No playable item in a full pass")
                self._enter_idle("No playable content")
                return

            logger.info("Skipping unresolvable item %d", self._index)
            self._index = (self._index + 1) % len(self._items)
            self._attempts = 0

    def _resolve(self, item: PlaylistItem) -> Optional[PlayingMedia]:
        media_id = item.media_id

        if item.is_campaign and item.campaign_id:
            campaign = self._client.get_campaign(item.campaign_id)
            if campaign and campaign.get('v_media_id'):
                media_id = campaign['v_media_id']

        if not media_id:
            return None

        media = self._client.get_media(media_id)
        if not media or not media.get('url'):
            return None

        source_url = media['url']
        url = source_url
        if self._cache is not None:
            url = self._cache.resolve(source_url) or source_url

        return PlayingMedia(
            item=item,
            media_id=media_id,
            url=url,
            source_url=source_url,
            media_type=media.get('type') or 'image',
            name=media.get('name') or media_id,
        )

    def _show(self, media: PlayingMedia) -> None:
        self._misses = 0
        self._attempts = 0
        self._hold_index = False
        self._display.show_media(media.url, media.media_type, media.name)
        self._state.transition_to(RotationState.PLAYING)
        self._set_current(media)
        if self._on_media_shown:
            self._on_media_shown(media)

        duration = media.item.duration
        if not duration or duration <= 0:
            duration = self.default_duration
        self._deadline = self._clock() + duration

    def _enter_idle(self, message: str) -> None:
        self._state.transition_to(RotationState.IDLE)
        self._misses = 0
        self._attempts = 0
        self._hold_index = False
        self._set_current(None)
        self._display.show_status(DisplayStatus.LOADING, message)
        self._deadline = self._clock() + self.idle_poll_interval

    def _set_current(self, media: Optional[PlayingMedia]) -> None:
        changed = media is not self._current
        self._current = media
        if changed and self._on_media_changed:
            self._on_media_changed(media)
