"""
Terminal Service for CMS.

Provides terminal operations:
- Registration and operator settings (power mode, schedule, playlist, monitoring)
- Heartbeat recording and liveness reporting
- Fallback campaign query for terminals without a playlist
- Deletion, which also drops the terminal from campaign targets
- Proof-of-play batches uploaded by the player
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from flask import current_app

from cms.models import (
    db,
    Campaign,
    ModerationStatus,
    PlaybackLog,
    PlaybackStatus,
    Playlist,
    Terminal,
    SLOT_COUNT,
)
from cms.services.errors import NotFoundError, ValidationError
from src.common.schedule import PowerMode, TerminalSchedule


logger = logging.getLogger(__name__)

_TIME_PATTERN = re.compile(r'^([01]?\d|2[0-3]):[0-5]\d(:[0-5]\d)?$')


class TerminalService:
    """Service class for terminal management and liveness."""

    # Fields an operator may change through the settings endpoint
    SETTINGS_FIELDS = (
        'name',
        'group',
        'power_mode',
        'operating_start',
        'operating_end',
        'operating_days',
        'assigned_playlist_id',
        'is_monitoring',
    )

    @classmethod
    def get_terminal(cls, terminal_id: str) -> Terminal:
        """
        Fetch a terminal.

        Raises:
            NotFoundError: If the terminal does not exist
        """
        terminal = db.session.get(Terminal, terminal_id)
        if terminal is None:
            raise NotFoundError(f"Terminal not found: {terminal_id}")
        return terminal

    @classmethod
    def list_terminals(cls, group: Optional[str] = None) -> List[Terminal]:
        query = db.select(Terminal).order_by(Terminal.name)
        if group:
            query = query.where(Terminal.group == group)
        return list(db.session.execute(query).scalars())

    @classmethod
    def create_terminal(cls, name: str, terminal_id: Optional[str] = None, **settings) -> Terminal:
        """
        Register a terminal.

        Args:
            name: Human-readable terminal name (required)
            terminal_id: Stable external ID (generated when omitted)
            **settings: Any of SETTINGS_FIELDS

        Raises:
            ValidationError: If the input is malformed or the ID is taken
        """
        if not name or not str(name).strip():
            raise ValidationError("name is required")
        if terminal_id and db.session.get(Terminal, terminal_id) is not None:
            raise ValidationError(f"Terminal already exists: {terminal_id}")

        terminal = Terminal(name=str(name).strip())
        if terminal_id:
            terminal.id = terminal_id

        cls._apply_settings(terminal, settings)
        db.session.add(terminal)
        db.session.commit()

        logger.info(f"Terminal {terminal.id} registered")
        return terminal

    @classmethod
    def update_settings(cls, terminal_id: str, changes: Dict[str, Any]) -> Terminal:
        """
        Apply operator changes to a terminal.

        Raises:
            NotFoundError: If the terminal or assigned playlist does not exist
            ValidationError: If a field is unknown or malformed
        """
        terminal = cls.get_terminal(terminal_id)
        if not changes:
            raise ValidationError("No settings provided")

        cls._apply_settings(terminal, changes)
        db.session.commit()

        logger.info(f"Terminal {terminal_id} settings updated: {sorted(changes)}")
        return terminal

    @classmethod
    def _apply_settings(cls, terminal: Terminal, changes: Dict[str, Any]) -> None:
        unknown = set(changes) - set(cls.SETTINGS_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown settings: {', '.join(sorted(unknown))}")

        if 'name' in changes:
            if not changes['name'] or not str(changes['name']).strip():
                raise ValidationError("name cannot be empty")
            terminal.name = str(changes['name']).strip()

        if 'group' in changes:
            terminal.group = changes['group'] or None

        if 'power_mode' in changes:
            try:
                terminal.power_mode = PowerMode(changes['power_mode']).value
            except ValueError:
                raise ValidationError(f"Invalid power_mode: {changes['power_mode']}")

        for key in ('operating_start', 'operating_end'):
            if key in changes:
                value = changes[key]
                if not isinstance(value, str) or not _TIME_PATTERN.match(value):
                    raise ValidationError(f"Invalid {key}: {value!r} (expected HH:MM)")
                setattr(terminal, key, value)

        if 'operating_days' in changes:
            terminal.operating_days = cls._validate_days(changes['operating_days'])

        if 'assigned_playlist_id' in changes:
            playlist_id = changes['assigned_playlist_id'] or None
            if playlist_id and db.session.get(Playlist, playlist_id) is None:
                raise NotFoundError(f"Playlist not found: {playlist_id}")
            terminal.assigned_playlist_id = playlist_id

        if 'is_monitoring' in changes:
            if not isinstance(changes['is_monitoring'], bool):
                raise ValidationError("is_monitoring must be a boolean")
            terminal.is_monitoring = changes['is_monitoring']

    @staticmethod
    def _validate_days(days: Any) -> List[int]:
        if not isinstance(days, list):
            raise ValidationError("operating_days must be a list of weekday indices")
        result = set()
        for day in days:
            if isinstance(day, bool) or not isinstance(day, int) or not 0 <= day <= 6:
                raise ValidationError(f"Invalid weekday index: {day!r} (0 = Sunday ... 6 = Saturday)")
            result.add(day)
        return sorted(result)

    # ==========================================================================
    # Heartbeat and liveness
    # ==========================================================================

    @classmethod
    def record_heartbeat(cls, terminal_id: str, current_media: Optional[str] = None) -> Terminal:
        """
        Record a heartbeat: bump the counter, stamp last_seen and store the
        current-media telemetry when provided.
        """
        terminal = cls.get_terminal(terminal_id)

        terminal.last_seen = datetime.now(timezone.utc)
        terminal.heartbeat_counter = (terminal.heartbeat_counter or 0) + 1
        if current_media is not None:
            terminal.current_media = current_media
        db.session.commit()

        logger.debug(f"Heartbeat from {terminal_id} (#{terminal.heartbeat_counter})")
        return terminal

    @classmethod
    def get_liveness(
        cls,
        terminal_id: str,
        now: Optional[datetime] = None,
        local_now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Liveness summary for observers.

        Args:
            terminal_id: Terminal to inspect
            now: UTC reference time for the heartbeat age
            local_now: Wall-clock time the schedule is evaluated against

        Returns:
            Dictionary with online, should_be_powered and is_down flags
        """
        terminal = cls.get_terminal(terminal_id)
        now = now or datetime.now(timezone.utc)
        local_now = local_now or datetime.now()
        threshold = current_app.config['TERMINAL_OFFLINE_THRESHOLD']

        online = terminal.is_online(threshold, now)
        should_be_powered = TerminalSchedule.from_dict(terminal.schedule_fields()).is_powered(local_now)
        elapsed = terminal.seconds_since_seen(now)

        return {
            'terminal_id': terminal.id,
            'online': online,
            'last_seen': terminal.last_seen.isoformat() if terminal.last_seen else None,
            'seconds_since_seen': round(elapsed, 1) if elapsed is not None else None,
            'offline_threshold': threshold,
            'heartbeat_counter': terminal.heartbeat_counter,
            'should_be_powered': should_be_powered,
            'is_down': should_be_powered and not online,
            'current_media': terminal.current_media,
        }

    # ==========================================================================
    # Fallback query and deletion
    # ==========================================================================

    @classmethod
    def list_fallback_campaigns(cls, terminal_id: str) -> List[Campaign]:
        """
        Active approved campaigns that target the terminal or are global.

        Raises:
            NotFoundError: If the terminal does not exist
        """
        cls.get_terminal(terminal_id)

        candidates = db.session.execute(
            db.select(Campaign).where(
                Campaign.moderation_status == ModerationStatus.APPROVED.value,
                Campaign.is_active.is_(True),
            ).order_by(Campaign.approved_at)
        ).scalars()

        return [campaign for campaign in candidates if campaign.targets(terminal_id)]

    @classmethod
    def delete_terminal(cls, terminal_id: str) -> None:
        """Delete a terminal and remove it from every campaign's targets."""
        terminal = cls.get_terminal(terminal_id)

        for campaign in db.session.execute(db.select(Campaign)).scalars():
            targets = list(campaign.target_terminals or [])
            if terminal_id in targets:
                campaign.target_terminals = [t for t in targets if t != terminal_id]

        db.session.delete(terminal)
        db.session.commit()

        logger.info(f"Terminal {terminal_id} deleted")

    # ==========================================================================
    # Proof-of-play
    # ==========================================================================

    @classmethod
    def record_playback(cls, terminal_id: str, entries: Any) -> int:
        """
        Store a batch of proof-of-play records uploaded by a terminal.

        The batch is validated as a whole before anything is written, so a
        rejected upload stays in the terminal's buffer unchanged and can be
        retried.

        Args:
            terminal_id: Uploading terminal
            entries: List of playback dicts (media_id, playlist_id,
                campaign_id, media_name, media_url, slot_index, slot_type,
                status, played_at)

        Returns:
            Number of records stored

        Raises:
            NotFoundError: If the terminal does not exist
            ValidationError: If the batch or any entry is malformed
        """
        cls.get_terminal(terminal_id)

        if not isinstance(entries, list) or not entries:
            raise ValidationError("entries must be a non-empty list")

        limit = current_app.config['PLAYBACK_BATCH_MAX']
        if len(entries) > limit:
            raise ValidationError(f"At most {limit} entries per batch")

        logs = [cls._build_playback_log(terminal_id, entry, n) for n, entry in enumerate(entries)]
        db.session.add_all(logs)
        db.session.commit()

        logger.info(f"Stored {len(logs)} playback records from {terminal_id}")
        return len(logs)

    @classmethod
    def list_playback(cls, terminal_id: str, limit: int = 100) -> List[PlaybackLog]:
        """Most recent playback records of a terminal, newest first."""
        if not 1 <= limit <= current_app.config['PLAYBACK_BATCH_MAX']:
            raise ValidationError("limit out of range")

        return list(db.session.execute(
            db.select(PlaybackLog)
            .where(PlaybackLog.terminal_id == terminal_id)
            .order_by(PlaybackLog.played_at.desc(), PlaybackLog.id.desc())
            .limit(limit)
        ).scalars())

    @classmethod
    def _build_playback_log(cls, terminal_id: str, entry: Any, position: int) -> PlaybackLog:
        if not isinstance(entry, dict):
            raise ValidationError(f"entries[{position}] must be an object")

        status = entry.get('status') or PlaybackStatus.PLAYED.value
        try:
            PlaybackStatus(status)
        except ValueError:
            raise ValidationError(f"entries[{position}]: unknown status {status!r}")

        slot_index = entry.get('slot_index')
        if slot_index is not None and (
            isinstance(slot_index, bool)
            or not isinstance(slot_index, int)
            or not 0 <= slot_index < SLOT_COUNT
        ):
            raise ValidationError(f"entries[{position}]: slot_index must be 0-{SLOT_COUNT - 1}")

        return PlaybackLog(
            terminal_id=terminal_id,
            media_id=entry.get('media_id'),
            playlist_id=entry.get('playlist_id'),
            campaign_id=entry.get('campaign_id'),
            media_name=entry.get('media_name'),
            media_url=entry.get('media_url'),
            slot_index=slot_index,
            slot_type=entry.get('slot_type'),
            status=status,
            played_at=cls._parse_played_at(entry.get('played_at'), position),
        )

    @staticmethod
    def _parse_played_at(value: Any, position: int) -> datetime:
        if value is None:
            return datetime.now(timezone.utc)
        if not isinstance(value, str):
            raise ValidationError(f"entries[{position}]: played_at must be an ISO timestamp")
        try:
            played_at = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            raise ValidationError(f"entries[{position}]: played_at must be an ISO timestamp")
        if played_at.tzinfo is None:
            played_at = played_at.replace(tzinfo=timezone.utc)
        return played_at
