"""
Global/Wildcard Propagator for CMS.

Broadcasts one media reference into a reserved slot of every playlist:
slot 0 (global) or slot 7 (wildcard). Existing rows are updated in place,
missing rows are inserted, and the whole broadcast commits atomically.
"""

import logging

from flask import current_app

from cms.models import (
    db,
    Media,
    Playlist,
    PlaylistSlot,
    SlotType,
    GLOBAL_SLOT_INDEX,
    WILDCARD_SLOT_INDEX,
)
from cms.services.errors import NotFoundError


logger = logging.getLogger(__name__)


class SlotPropagator:
    """Service class for broadcast slots shared by every playlist."""

    @classmethod
    def propagate_global(cls, media_id: str) -> int:
        """
        Put a media on slot 0 of every playlist.

        Returns:
            Number of slot rows touched (one per playlist)

        Raises:
            NotFoundError: If the media does not exist
        """
        return cls._propagate(
            media_id,
            GLOBAL_SLOT_INDEX,
            SlotType.GLOBAL,
            current_app.config['GLOBAL_SLOT_DURATION'],
        )

    @classmethod
    def propagate_wildcard(cls, media_id: str) -> int:
        """
        Put a media on slot 7 of every playlist.

        Returns:
            Number of slot rows touched (one per playlist)

        Raises:
            NotFoundError: If the media does not exist
        """
        return cls._propagate(
            media_id,
            WILDCARD_SLOT_INDEX,
            SlotType.WILDCARD,
            current_app.config['WILDCARD_SLOT_DURATION'],
        )

    @classmethod
    def _propagate(cls, media_id: str, slot_index: int, slot_type: SlotType, default_duration: int) -> int:
        media = db.session.get(Media, media_id)
        if media is None:
            raise NotFoundError(f"Media not found: {media_id}")

        duration = media.duration or default_duration

        existing = {
            slot.playlist_id: slot
            for slot in db.session.execute(
                db.select(PlaylistSlot).where(PlaylistSlot.slot_index == slot_index)
            ).scalars()
        }

        updated = 0
        for playlist in db.session.execute(db.select(Playlist)).scalars():
            slot = existing.get(playlist.id)
            if slot is None:
                slot = PlaylistSlot(playlist_id=playlist.id, slot_index=slot_index)
                db.session.add(slot)

            slot.slot_type = slot_type.value
            slot.media_id = media_id
            slot.campaign_id = None
            slot.duration = duration
            playlist.version = Playlist.version + 1
            updated += 1

        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info(f"Propagated media {media_id} to {slot_type.value} slot of {updated} playlists")
        return updated
