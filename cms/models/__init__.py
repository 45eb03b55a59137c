"""
CMS Models Package.

SQLAlchemy models for the advertising CMS:
- Terminals (playback devices and their power schedule)
- Playlists (13-slot content grids) and Playlist Slots
- Campaigns (moderated advertiser content with slot allocations)
- Media (image/video references)
- Playback Logs (proof-of-play uploaded by terminals)
"""

from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import DateTime as _SADateTime
from sqlalchemy.types import TypeDecorator


class DateTimeUTC(TypeDecorator):
    """DateTime type that ensures values are always timezone-aware (UTC).

    SQLite stores datetimes as naive strings.  This TypeDecorator adds UTC
    timezone info when reading and strips it when writing, so Python code
    can safely compare with ``datetime.now(timezone.utc)``.
    """

    impl = _SADateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and isinstance(value, datetime):
            if value.tzinfo is not None:
                value = value.astimezone(timezone.utc)
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and isinstance(value, datetime):
            if value.tzinfo is None:
                return value.replace(tzinfo=timezone.utc)
        return value


def utcnow():
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def isoformat(value):
    """Serialize an optional datetime for API responses."""
    return value.isoformat() if value else None


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy models.

    All models should inherit from db.Model which uses this Base class.
    """
    pass


# SQLAlchemy database instance
db = SQLAlchemy(model_class=Base)


# Import models after db is defined to avoid circular imports
from cms.models.media import Media, MediaType
from cms.models.playlist import (
    Playlist,
    PlaylistSlot,
    SlotType,
    SLOT_COUNT,
    GLOBAL_SLOT_INDEX,
    PARTNER_SLOT_INDEX,
    WILDCARD_SLOT_INDEX,
    LOCAL_SLOT_ORDER,
    slot_type_for_index,
)
from cms.models.campaign import Campaign, ModerationStatus
from cms.models.terminal import Terminal
from cms.models.playback_log import PlaybackLog, PlaybackStatus

__all__ = [
    'db',
    'Base',
    'DateTimeUTC',
    'utcnow',
    'Media',
    'MediaType',
    'Playlist',
    'PlaylistSlot',
    'SlotType',
    'SLOT_COUNT',
    'GLOBAL_SLOT_INDEX',
    'PARTNER_SLOT_INDEX',
    'WILDCARD_SLOT_INDEX',
    'LOCAL_SLOT_ORDER',
    'slot_type_for_index',
    'Campaign',
    'ModerationStatus',
    'Terminal',
    'PlaybackLog',
    'PlaybackStatus',
]
