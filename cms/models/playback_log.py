"""
Playback Log Model for CMS Service.

Proof-of-play: one row per item a terminal put on screen. Terminals buffer
these locally and upload them in batches, so ``played_at`` (terminal clock)
can be well before ``received_at``.
"""

import enum

from cms.models import db, DateTimeUTC, utcnow, isoformat


class PlaybackStatus(enum.Enum):
    """Outcome reported for a displayed item."""
    PLAYED = 'played'
    SKIPPED = 'skipped'
    ERROR = 'error'


class PlaybackLog(db.Model):
    """
    SQLAlchemy model representing one proof-of-play record.

    Attributes:
        id: Auto-increment row ID
        terminal_id: Terminal that displayed the item
        media_id: Media shown
        playlist_id: Playlist the item came from (None for fallback playback)
        campaign_id: Campaign backing the slot, if any
        media_name: Media display name at play time
        media_url: URL the media was fetched from
        slot_index: Playlist slot (None for fallback playback)
        slot_type: Slot type of that slot
        status: 'played', 'skipped' or 'error'
        played_at: When the item went on screen
        received_at: When the CMS stored the record
    """

    __tablename__ = 'playback_logs'

    # No foreign keys: proof-of-play must outlive deleted terminals and media
    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    terminal_id = db.Column(db.String(64), nullable=False, index=True)
    media_id = db.Column(db.String(36), nullable=True, index=True)
    playlist_id = db.Column(db.String(36), nullable=True)
    campaign_id = db.Column(db.String(36), nullable=True, index=True)
    media_name = db.Column(db.String(300), nullable=True)
    media_url = db.Column(db.String(1000), nullable=True)
    slot_index = db.Column(db.Integer, nullable=True)
    slot_type = db.Column(db.String(20), nullable=True)
    status = db.Column(db.String(20), nullable=False, default=PlaybackStatus.PLAYED.value)
    played_at = db.Column(DateTimeUTC, nullable=False, index=True)
    received_at = db.Column(DateTimeUTC, default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'terminal_id': self.terminal_id,
            'media_id': self.media_id,
            'playlist_id': self.playlist_id,
            'campaign_id': self.campaign_id,
            'media_name': self.media_name,
            'media_url': self.media_url,
            'slot_index': self.slot_index,
            'slot_type': self.slot_type,
            'status': self.status,
            'played_at': isoformat(self.played_at),
            'received_at': isoformat(self.received_at),
        }

    def __repr__(self):
        return f'<PlaybackLog {self.terminal_id} {self.media_id} {self.played_at}>'
