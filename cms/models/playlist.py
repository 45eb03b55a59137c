"""
Playlist Model for CMS Service.

Every playlist is a fixed grid of 13 slots:
- Slot 0: global slot, broadcast to every playlist
- Slot 1: partner slot, reserved (never written by allocation or propagation)
- Slots 2-6 and 8-12: local slots, filled per terminal by campaign allocation
- Slot 7: wildcard slot, a second broadcast channel

Each slot mutation increments ``Playlist.version`` so concurrent allocations
can detect that their snapshot went stale.
"""

import enum
import uuid

from cms.models import db, DateTimeUTC, utcnow, isoformat


SLOT_COUNT = 13
GLOBAL_SLOT_INDEX = 0
PARTNER_SLOT_INDEX = 1
WILDCARD_SLOT_INDEX = 7

# Allocation fills local slots in this order
LOCAL_SLOT_ORDER = (2, 3, 4, 5, 6, 8, 9, 10, 11, 12)


class SlotType(enum.Enum):
    """Slot type by reserved index."""
    GLOBAL = 'global'
    PARTNER = 'partner'
    LOCAL = 'local'
    WILDCARD = 'wildcard'


def slot_type_for_index(slot_index):
    """
    Map a slot index to its slot type.

    Raises:
        ValueError: If the index is outside the 13-slot grid
    """
    if slot_index == GLOBAL_SLOT_INDEX:
        return SlotType.GLOBAL
    if slot_index == PARTNER_SLOT_INDEX:
        return SlotType.PARTNER
    if slot_index == WILDCARD_SLOT_INDEX:
        return SlotType.WILDCARD
    if slot_index in LOCAL_SLOT_ORDER:
        return SlotType.LOCAL
    raise ValueError(f"Slot index out of range: {slot_index}")


class Playlist(db.Model):
    """
    SQLAlchemy model representing a 13-slot playlist.

    Attributes:
        id: Unique UUID identifier
        name: Human-readable playlist name
        slot_count: Number of slots (always 13)
        version: Optimistic-concurrency token, incremented on every slot change
        created_at: Timestamp when the playlist was created
        updated_at: Timestamp when the playlist was last modified
    """

    __tablename__ = 'playlists'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = db.Column(db.String(200), nullable=False)
    slot_count = db.Column(db.Integer, nullable=False, default=SLOT_COUNT)
    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(DateTimeUTC, default=utcnow)
    updated_at = db.Column(DateTimeUTC, default=utcnow, onupdate=utcnow)

    slots = db.relationship(
        'PlaylistSlot',
        backref='playlist',
        lazy='select',
        cascade='all, delete-orphan',
        order_by='PlaylistSlot.slot_index'
    )

    def get_slot(self, slot_index):
        """Return the slot row at an index, or None."""
        for slot in self.slots:
            if slot.slot_index == slot_index:
                return slot
        return None

    def to_dict(self, include_slots=False):
        """
        Serialize the playlist to a dictionary for API responses.

        Args:
            include_slots: Include the slot rows under ``slots``

        Returns:
            Dictionary containing playlist fields
        """
        data = {
            'id': self.id,
            'name': self.name,
            'slot_count': self.slot_count,
            'version': self.version,
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at),
        }
        if include_slots:
            data['slots'] = [slot.to_dict() for slot in self.slots]
        return data

    def __repr__(self):
        return f'<Playlist {self.name} v{self.version}>'


class PlaylistSlot(db.Model):
    """
    One position of a playlist's slot grid.

    ``campaign_id`` is only set on local slots filled by allocation; it is a
    back-reference used for swaps and deletion.
    """

    __tablename__ = 'playlist_slots'
    __table_args__ = (
        db.UniqueConstraint('playlist_id', 'slot_index', name='uq_playlist_slot_index'),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    playlist_id = db.Column(
        db.String(36),
        db.ForeignKey('playlists.id', ondelete='CASCADE'),
        nullable=False,
        index=True
    )
    slot_index = db.Column(db.Integer, nullable=False)
    slot_type = db.Column(db.String(20), nullable=False)
    media_id = db.Column(db.String(36), db.ForeignKey('media.id', ondelete='SET NULL'), nullable=True)
    campaign_id = db.Column(
        db.String(36),
        db.ForeignKey('campaigns.id', ondelete='SET NULL'),
        nullable=True,
        index=True
    )
    duration = db.Column(db.Integer, nullable=True)
    updated_at = db.Column(DateTimeUTC, default=utcnow, onupdate=utcnow)

    @property
    def is_occupied(self):
        return self.media_id is not None

    def clear(self):
        """Empty the slot."""
        self.media_id = None
        self.campaign_id = None

    def to_dict(self):
        return {
            'id': self.id,
            'playlist_id': self.playlist_id,
            'slot_index': self.slot_index,
            'slot_type': self.slot_type,
            'media_id': self.media_id,
            'campaign_id': self.campaign_id,
            'duration': self.duration,
        }

    def __repr__(self):
        return f'<PlaylistSlot {self.playlist_id}[{self.slot_index}]>'
