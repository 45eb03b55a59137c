"""
Terminal Model for CMS Service.

Represents an advertising terminal (playback device). Operators edit the
power schedule and playlist assignment; the terminal itself only writes
liveness fields through its heartbeat.
"""

from datetime import datetime, timezone
import uuid

from cms.models import db, DateTimeUTC, utcnow, isoformat
from src.common.schedule import (
    DEFAULT_OPERATING_DAYS,
    DEFAULT_OPERATING_END,
    DEFAULT_OPERATING_START,
    PowerMode,
)


def _default_operating_days():
    return sorted(DEFAULT_OPERATING_DAYS)


class Terminal(db.Model):
    """
    SQLAlchemy model representing a terminal.

    Attributes:
        id: Stable external terminal ID (passed to the player at startup)
        name: Human-readable terminal name
        group: Optional operator grouping label
        power_mode: 'on', 'off' or 'auto' (follow the operating schedule)
        operating_start: Start of the operating window (HH:MM)
        operating_end: End of the operating window (HH:MM)
        operating_days: Weekday indices, 0 = Sunday ... 6 = Saturday
        assigned_playlist_id: Playlist the terminal plays (nullable)
        last_seen: Timestamp of the last heartbeat
        heartbeat_counter: Monotonic heartbeat count
        is_monitoring: Operator is watching live; terminal reports current media
        current_media: Display string of the item on screen
        created_at: Timestamp when the terminal was registered
    """

    __tablename__ = 'terminals'

    id = db.Column(db.String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = db.Column(db.String(200), nullable=False)
    group = db.Column(db.String(100), nullable=True, index=True)
    power_mode = db.Column(db.String(10), nullable=False, default=PowerMode.AUTO.value)
    operating_start = db.Column(db.String(8), nullable=False, default=DEFAULT_OPERATING_START)
    operating_end = db.Column(db.String(8), nullable=False, default=DEFAULT_OPERATING_END)
    operating_days = db.Column(db.JSON, nullable=False, default=_default_operating_days)
    assigned_playlist_id = db.Column(
        db.String(36),
        db.ForeignKey('playlists.id', ondelete='SET NULL'),
        nullable=True,
        index=True
    )
    last_seen = db.Column(DateTimeUTC, nullable=True)
    heartbeat_counter = db.Column(db.Integer, nullable=False, default=0)
    is_monitoring = db.Column(db.Boolean, nullable=False, default=False)
    current_media = db.Column(db.String(300), nullable=True)
    created_at = db.Column(DateTimeUTC, default=utcnow)

    assigned_playlist = db.relationship('Playlist', backref=db.backref('terminals', lazy='dynamic'))

    def seconds_since_seen(self, now=None):
        """Seconds since the last heartbeat, or None if never seen."""
        if self.last_seen is None:
            return None
        now = now or datetime.now(timezone.utc)
        return (now - self.last_seen).total_seconds()

    def is_online(self, threshold, now=None):
        """
        Check whether the terminal reported within the threshold.

        Args:
            threshold: Seconds after which a silent terminal counts as offline
            now: Reference time (defaults to the current UTC time)
        """
        elapsed = self.seconds_since_seen(now)
        return elapsed is not None and elapsed < threshold

    def schedule_fields(self):
        """Fields consumed by the schedule evaluator."""
        return {
            'power_mode': self.power_mode,
            'operating_start': self.operating_start,
            'operating_end': self.operating_end,
            'operating_days': list(self.operating_days or []),
        }

    def to_dict(self):
        """
        Serialize the terminal to a dictionary for API responses.

        Returns:
            Dictionary containing all terminal fields
        """
        return {
            'id': self.id,
            'name': self.name,
            'group': self.group,
            'power_mode': self.power_mode,
            'operating_start': self.operating_start,
            'operating_end': self.operating_end,
            'operating_days': list(self.operating_days or []),
            'assigned_playlist_id': self.assigned_playlist_id,
            'last_seen': isoformat(self.last_seen),
            'heartbeat_counter': self.heartbeat_counter,
            'is_monitoring': self.is_monitoring,
            'current_media': self.current_media,
            'created_at': isoformat(self.created_at),
        }

    def __repr__(self):
        return f'<Terminal {self.id}>'
