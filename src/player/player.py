"""
TerminalPlayer - Main orchestrator for an advertising terminal.
Coordinates schedule evaluation, playlist resolution, media rotation,
heartbeat reporting and the command channel.

Threads:
- session: owns the rotation loop and schedule state, consumes the command
  queue with a timeout equal to the next timer deadline
- heartbeat: periodic liveness report (HeartbeatReporter)
- playback: periodic proof-of-play upload (PlaybackReporter)
- command channel: ZeroMQ subscriber feeding the command queue
- prefetch: short-lived media cache downloads after each resolution
"""

import queue
import signal
import sqlite3
import sys
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .command_channel import Command, CommandChannel, CommandKind
from .config import PlayerConfig
from .display import DisplayStatus, HeadlessDisplay
from .heartbeat import HeartbeatReporter
from .media_cache import MediaCache
from .playback_log import PlaybackLogStore, PlaybackReporter
from .playlist_resolver import PlaylistItem, PlaylistResolver, PlaylistSource, ResolvedPlaylist
from .rotation import MediaRotationLoop, PlayingMedia
from .terminal_state import TerminalState

from src.common.cms_client import CMSClient, CMSClientError
from src.common.logger import setup_logger
from src.common.schedule import PowerEdge, PowerEdgeDetector, TerminalSchedule

logger = setup_logger(__name__)


class TerminalPlayer:
    """
    Per-terminal player session.

    1. Fetches the terminal record (or falls back to the cached playlist)
    2. Resolves the playlist and feeds the rotation loop
    3. Re-evaluates the power schedule on a timer and on remote updates
    4. Reacts to change notifications and emits an immediate heartbeat when
       an operator command field changed
    """

    def __init__(
        self,
        terminal_id: str,
        config: PlayerConfig,
        client: Optional[CMSClient] = None,
        display: Optional[HeadlessDisplay] = None,
        cache: Optional[MediaCache] = None,
        change_feed_endpoint: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime] = datetime.now,
        subscriber_factory=None,
        playback_log: Optional[PlaybackLogStore] = None
    ):
        """
        Initialize the player session.

        Args:
            terminal_id: Stable external terminal ID
            config: PlayerConfig with timings and the cached playlist
            client: CMS client (built from config.cms_url if None)
            display: Display surface (HeadlessDisplay if None)
            cache: Local media cache (optional)
            change_feed_endpoint: ZeroMQ endpoint of the CMS change feed
            clock: Monotonic time source for timers
            wall_clock: Local wall-clock source for schedule evaluation
            subscriber_factory: Override for the change-feed subscriber
            playback_log: Local proof-of-play buffer (playback is not recorded if None)
        """
        self.terminal_id = terminal_id
        self._config = config
        self._client = client or CMSClient(config.cms_url)
        self._display = display or HeadlessDisplay()
        self._cache = cache
        self._clock = clock
        self._wall_clock = wall_clock

        self.state = TerminalState(terminal_id)
        self.commands: "queue.Queue[Command]" = queue.Queue()

        self.resolver = PlaylistResolver(self._client, config.default_item_duration)
        self.rotation = MediaRotationLoop(
            client=self._client,
            display=self._display,
            cache=cache,
            default_duration=config.default_item_duration,
            retry_delay=config.item_retry_delay,
            max_attempts=config.item_max_attempts,
            idle_poll_interval=config.idle_poll_interval,
            clock=clock,
            on_media_changed=self._on_media_changed,
            on_media_shown=self._on_media_shown,
        )
        self.channel = CommandChannel(
            change_feed_endpoint,
            self.state,
            commands=self.commands,
            subscriber_factory=subscriber_factory,
        )
        self.heartbeat = HeartbeatReporter(
            self._client,
            self.state,
            interval=config.heartbeat_interval,
            on_terminal_record=self._on_heartbeat_record,
        )
        self._playback_log = playback_log
        self.playback: Optional[PlaybackReporter] = None
        if playback_log is not None:
            self.playback = PlaybackReporter(
                self._client,
                playback_log,
                terminal_id,
                interval=config.playback_flush_interval,
            )

        self._display.set_video_ended_callback(
            lambda: self.channel.post(CommandKind.VIDEO_ENDED)
        )

        self._edges = PowerEdgeDetector()
        self.schedule_check_interval = config.schedule_check_interval
        self._next_schedule_check = 0.0
        self._next_connect_attempt: Optional[float] = None
        self._connected = False
        self._resolved: Optional[ResolvedPlaylist] = None

        self._running = False
        self._stop_event = threading.Event()
        self._session_thread: Optional[threading.Thread] = None
        self._prefetch_thread: Optional[threading.Thread] = None

        logger.info("TerminalPlayer initialized for terminal %s", terminal_id)

    # -------------------------------------------------------------------------
    # Session steps (session thread only)
    # -------------------------------------------------------------------------

    def connect(self) -> bool:
        """
        Fetch the terminal record and apply it.

        On failure the cached playlist (if any) starts playing and another
        attempt is scheduled after the idle poll interval.

        Returns:
            True if the CMS answered with the terminal record
        """
        if self._resolved is None:
            self._display.show_status(DisplayStatus.CONNECTING)

        try:
            record = self._client.get_terminal(self.terminal_id)
        except CMSClientError as e:
            logger.warning("CMS unreachable at startup: %s", e)
            self._start_offline()
            self._next_connect_attempt = self._clock() + self._config.idle_poll_interval
            return False

        if record is None:
            logger.error("Terminal %s is not registered in the CMS", self.terminal_id)
            self._display.show_status(DisplayStatus.ERROR, "Terminal not registered")
            self._next_connect_attempt = self._clock() + self._config.idle_poll_interval
            return False

        self._connected = True
        self._next_connect_attempt = None
        self.apply_terminal_record(record)
        return True

    def _start_offline(self) -> None:
        if self._resolved is not None:
            return

        cached = self._config.cached_items
        if not cached:
            self._display.show_status(DisplayStatus.ERROR, "Offline, no cached content")
            return

        logger.info("Starting offline with %d cached items", len(cached))
        items = [PlaylistItem.from_dict(item) for item in cached]
        self._resolved = ResolvedPlaylist(
            PlaylistSource.CACHED,
            items,
            self._config.cached_playlist_id
        )

        cached_terminal = self._config.cached_terminal
        if cached_terminal:
            self.state.update_record(cached_terminal)
        self.rotation.set_playlist(items)
        self.check_schedule()

    def apply_terminal_record(self, record: Dict[str, Any]) -> bool:
        """
        Apply a terminal record from the CMS.

        Returns:
            True if any operator command field changed
        """
        previous_playlist = self.state.assigned_playlist_id
        first = self.state.record is None
        changed = self.state.update_record(record)

        # Offline (cached) or never-resolved playlists are replaced as soon as
        # the CMS answers, even if the operator fields did not change
        stale = self._resolved is None or self._resolved.source == PlaylistSource.CACHED
        playlist_changed = record.get('assigned_playlist_id') != previous_playlist

        if first or stale or playlist_changed:
            self.refresh_playlist()

        if not changed:
            return False

        logger.info("Terminal settings changed, re-evaluating")
        self.check_schedule()
        return True

    def refresh_playlist(self) -> bool:
        """
        Run a resolution pass and hand the result to the rotation loop.

        Returns:
            True if resolution succeeded
        """
        record = self.state.record
        if record is None:
            return False

        try:
            resolved = self.resolver.resolve(record)
        except CMSClientError as e:
            logger.warning("Playlist resolution failed, keeping current playlist: %s", e)
            return False

        self._resolved = resolved
        self.rotation.set_playlist(resolved.items)
        self._persist(resolved, record)
        self._start_prefetch(resolved.items)
        return True

    def check_schedule(self) -> Optional[PowerEdge]:
        """
        Evaluate the power schedule and pause/resume rotation on an edge.

        Returns:
            The edge crossed, or None
        """
        record = self.state.record
        if record is None:
            return None

        powered = TerminalSchedule.from_dict(record).is_powered(self._wall_clock())
        self.state.powered = powered
        edge = self._edges.update(powered)

        if edge == PowerEdge.POWERED_ON:
            logger.info("Schedule: powered on")
            self.rotation.resume()
        elif edge == PowerEdge.POWERED_OFF:
            logger.info("Schedule: powered off")
            self.rotation.pause()

        self._next_schedule_check = self._clock() + self.schedule_check_interval
        return edge

    def handle_command(self, command: Command) -> None:
        """Dispatch one command from the queue."""
        kind = command.kind

        if kind == CommandKind.TERMINAL_UPDATED:
            record = command.payload.get('record') or {}
            if self.apply_terminal_record(record):
                self.heartbeat.trigger()
        elif kind == CommandKind.TERMINAL_DELETED:
            logger.warning("Terminal %s was deleted in the CMS", self.terminal_id)
            self.rotation.pause()
            self._display.show_status(DisplayStatus.ERROR, "Terminal removed")
        elif kind in (
            CommandKind.PLAYLIST_CHANGED,
            CommandKind.CAMPAIGN_CHANGED,
            CommandKind.MEDIA_CHANGED,
        ):
            self.refresh_playlist()
        elif kind == CommandKind.VIDEO_ENDED:
            self.rotation.notify_video_ended()

    def run_due_timers(self) -> None:
        """Run schedule checks, reconnects and rotation steps that are due."""
        now = self._clock()

        if self._next_connect_attempt is not None and now >= self._next_connect_attempt:
            self.connect()

        if now >= self._next_schedule_check:
            self.check_schedule()

        due = self.rotation.seconds_until_due()
        if due is not None and due <= 0:
            if self.rotation.is_idle and self._connected:
                self.refresh_playlist()
            self.rotation.tick()

    def next_timeout(self) -> float:
        """Seconds the session may block before a timer is due."""
        now = self._clock()
        deadlines = [self._next_schedule_check]

        if self._next_connect_attempt is not None:
            deadlines.append(self._next_connect_attempt)

        rotation_due = self.rotation.deadline
        if rotation_due is not None:
            deadlines.append(rotation_due)

        return max(0.0, min(deadlines) - now)

    def run_once(self, timeout: Optional[float] = None) -> bool:
        """
        Process at most one command, then any due timers.

        Args:
            timeout: Seconds to wait for a command (next deadline if None)

        Returns:
            False once a STOP command was received
        """
        if timeout is None:
            timeout = self.next_timeout()

        try:
            command = self.commands.get(timeout=timeout) if timeout > 0 else self.commands.get_nowait()
        except queue.Empty:
            command = None

        if command is not None:
            if command.kind == CommandKind.STOP:
                return False
            self.handle_command(command)

        self.run_due_timers()
        return True

    def _session_loop(self) -> None:
        self.connect()

        while not self._stop_event.is_set():
            try:
                if not self.run_once():
                    break
            except Exception as e:
                logger.error("Error in session loop: %s", e, exc_info=True)
                time.sleep(1)

        logger.info("Session loop stopped")

    # -------------------------------------------------------------------------
    # Cross-thread callbacks
    # -------------------------------------------------------------------------

    def _on_media_changed(self, media: Optional[PlayingMedia]) -> None:
        self.state.current_media = media.name if media else None

    def _on_media_shown(self, media: PlayingMedia) -> None:
        if self._playback_log is None:
            return
        item = media.item
        self._playback_log.record({
            'media_id': media.media_id,
            'playlist_id': self._resolved.playlist_id if self._resolved else None,
            'campaign_id': item.campaign_id,
            'media_name': media.name,
            'media_url': media.source_url,
            'slot_index': item.slot_index,
            'slot_type': item.slot_type,
            'status': 'played',
            'played_at': datetime.now(timezone.utc).isoformat(),
        })

    def _on_heartbeat_record(self, record: Dict[str, Any]) -> None:
        # Heartbeat responses double as a poll when the push channel is down
        self.commands.put(Command(CommandKind.TERMINAL_UPDATED, {'record': record}))

    # -------------------------------------------------------------------------
    # Persistence and cache
    # -------------------------------------------------------------------------

    def _persist(self, resolved: ResolvedPlaylist, record: Dict[str, Any]) -> None:
        try:
            self._config.store_resolved_playlist(
                resolved.playlist_id,
                [item.to_dict() for item in resolved.items],
                datetime.now(timezone.utc).isoformat(),
                terminal=record,
            )
        except OSError as e:
            logger.warning("Could not persist resolved playlist: %s", e)

    def _start_prefetch(self, items: List[PlaylistItem]) -> None:
        if self._cache is None or not items:
            return
        if self._prefetch_thread is not None and self._prefetch_thread.is_alive():
            return

        self._prefetch_thread = threading.Thread(
            target=self._prefetch,
            args=(list(items),),
            name="prefetch",
            daemon=True
        )
        self._prefetch_thread.start()

    def _prefetch(self, items: List[PlaylistItem]) -> None:
        urls = []
        complete = True

        for media_id in sorted({item.media_id for item in items if item.media_id}):
            try:
                media = self._client.get_media(media_id)
            except CMSClientError as e:
                logger.warning("Prefetch lookup failed for media %s: %s", media_id, e)
                complete = False
                continue
            if media and media.get('url'):
                urls.append(media['url'])

        cached = self._cache.prefetch(urls)
        logger.info("Prefetch complete: %d/%d media cached", cached, len(urls))

        # Only prune against a complete picture of what the playlist needs
        if complete:
            self._cache.prune(urls)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def start(self) -> bool:
        """Start the session, heartbeat and command channel threads."""
        if self._running:
            logger.warning("Player already running")
            return True

        logger.info("=" * 60)
        logger.info("Starting TerminalPlayer for %s", self.terminal_id)
        logger.info("=" * 60)

        self._stop_event.clear()
        self._running = True

        self._session_thread = threading.Thread(
            target=self._session_loop,
            name="session",
            daemon=True
        )
        self._session_thread.start()
        self.channel.start()
        self.heartbeat.start()
        if self.playback is not None:
            self.playback.start()
        return True

    def stop(self) -> None:
        """Stop every thread, clear timers and close the subscription."""
        if not self._running:
            return

        logger.info("Stopping TerminalPlayer...")
        self._running = False
        self._stop_event.set()
        self.channel.post(CommandKind.STOP)

        if self._session_thread:
            self._session_thread.join(timeout=5)
            self._session_thread = None

        self.heartbeat.stop()
        self.channel.stop()

        if self.playback is not None:
            self.playback.stop()

        if self._prefetch_thread is not None:
            self._prefetch_thread.join(timeout=5)
            self._prefetch_thread = None

        self.rotation.pause()
        logger.info("TerminalPlayer stopped")

    def run(self) -> None:
        """Run the player until SIGINT/SIGTERM (blocking)."""
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        if not self.start():
            logger.error("Failed to start player")
            sys.exit(1)

        logger.info("Player running - press Ctrl+C to stop")

        try:
            while self._running:
                if self._stop_event.wait(timeout=1.0):
                    break
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")

        self.stop()

    def _signal_handler(self, signum: int, frame) -> None:
        """Handle system signals for graceful shutdown."""
        logger.info("Received signal: %s", signal.Signals(signum).name)
        self._stop_event.set()

    @property
    def is_running(self) -> bool:
        return self._running

    def get_status(self) -> Dict[str, Any]:
        """
        Get player status.

        Returns:
            Dictionary with terminal state, rotation, heartbeat and playback info
        """
        return {
            "running": self._running,
            "connected": self._connected,
            "terminal": self.state.snapshot(),
            "rotation": {
                "state": self.rotation.state.value,
                "index": self.rotation.current_index,
                "items": len(self.rotation.items),
            },
            "playlist_source": self._resolved.source.value if self._resolved else None,
            "heartbeat": self.heartbeat.get_last_heartbeat_info(),
            "playback": self.playback.get_status() if self.playback else None,
            "command_channel": self.channel.get_status(),
        }


def main():
    """Main entry point for the terminal player."""
    import argparse

    from src.common.config import Config

    parser = argparse.ArgumentParser(description="Advertising terminal player")
    parser.add_argument('--terminal-id', help="Terminal ID (or DOOH_TERMINAL_ID)")
    parser.add_argument('--config', help="Deployment YAML config path")
    parser.add_argument('--config-dir', help="Runtime JSON config directory")
    parser.add_argument('--cms-url', help="CMS URL override")
    parser.add_argument('--no-cache', action='store_true', help="Disable the local media cache")

    args = parser.parse_args()

    deployment = Config(args.config)
    player_config = PlayerConfig(args.config_dir, defaults=deployment.get('player'))

    terminal_id = args.terminal_id or player_config.terminal_id or deployment.terminal_id
    if not terminal_id:
        parser.error("a terminal ID is required (--terminal-id or DOOH_TERMINAL_ID)")

    cms_url = (
        args.cms_url
        or player_config.get_device_config().get('cms_url')
        or deployment.cms_base_url
    )
    client = CMSClient(cms_url, timeout=deployment.get('cms.timeout', CMSClient.DEFAULT_TIMEOUT))

    cache = None
    if not args.no_cache:
        try:
            cache = MediaCache(player_config.cache_dir)
        except OSError as e:
            logger.warning("Media cache disabled: %s", e)

    playback_log = None
    try:
        playback_log = PlaybackLogStore(str(player_config.playback_log_path))
    except (OSError, sqlite3.Error) as e:
        logger.warning("Proof-of-play recording disabled: %s", e)

    logger.info("Terminal player starting (terminal=%s, cms=%s)", terminal_id, cms_url)

    player = TerminalPlayer(
        terminal_id=terminal_id,
        config=player_config,
        client=client,
        cache=cache,
        change_feed_endpoint=player_config.change_feed_endpoint or deployment.change_feed_endpoint,
        playback_log=playback_log,
    )
    player.run()


if __name__ == "__main__":
    main()
