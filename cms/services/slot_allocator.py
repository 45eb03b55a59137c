"""
Slot Allocator for CMS.

Places an approved campaign into the first free local slot of each target
terminal's playlist. Local slots are walked in the fixed order
2, 3, 4, 5, 6, 8, 9, 10, 11, 12; the global (0), partner (1) and wildcard (7)
slots are never touched.

Every terminal is handled in its own transaction. The playlist ``version``
column is bumped with a compare-and-swap UPDATE before any slot is written,
so two allocations racing for the same playlist cannot both claim the same
slot: the loser rolls back, re-reads the playlist and tries again.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from cms.models import (
    db,
    Campaign,
    Media,
    Playlist,
    PlaylistSlot,
    SlotType,
    Terminal,
    LOCAL_SLOT_ORDER,
)
from cms.services.errors import AllocationConflictError, NotFoundError


logger = logging.getLogger(__name__)


@dataclass
class Allocation:
    """A campaign placed in one terminal's playlist."""
    terminal_id: str
    terminal_name: str
    slot_index: int
    playlist_id: str
    reused: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'terminal_id': self.terminal_id,
            'terminal_name': self.terminal_name,
            'slot_index': self.slot_index,
            'playlist_id': self.playlist_id,
            'reused': self.reused,
        }


@dataclass
class AllocationResult:
    """
    Outcome of one allocation request.

    Attributes:
        allocations: Terminals that received (or already held) a slot
        full_terminals: Terminals whose local slots are all occupied
        failed_terminals: Terminals whose store write failed or kept conflicting
        skipped_terminals: Unknown terminals or terminals without a playlist
    """
    allocations: List[Allocation] = field(default_factory=list)
    full_terminals: List[Dict[str, Any]] = field(default_factory=list)
    failed_terminals: List[Dict[str, Any]] = field(default_factory=list)
    skipped_terminals: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'allocations': [a.to_dict() for a in self.allocations],
            'full_terminals': list(self.full_terminals),
            'failed_terminals': list(self.failed_terminals),
            'skipped_terminals': list(self.skipped_terminals),
            'allocated_count': len(self.allocations),
        }


class _Full(Exception):
    """Internal signal: no free local slot on the terminal's playlist."""


class _Skip(Exception):
    """Internal signal: the terminal cannot take part in allocation."""


class SlotAllocator:
    """
    Service class for per-terminal local slot allocation.

    All methods use the Flask-SQLAlchemy db session and must run inside an
    application context.
    """

    @classmethod
    def allocate(
        cls,
        campaign_id: str,
        media_id: str,
        terminal_ids: Iterable[str],
    ) -> AllocationResult:
        """
        Allocate a campaign's media to one local slot per terminal.

        Args:
            campaign_id: Campaign being placed
            media_id: Media the slots will play
            terminal_ids: Target terminal IDs (duplicates are ignored)

        Returns:
            AllocationResult with per-terminal outcomes

        Raises:
            NotFoundError: If the campaign or media does not exist
        """
        if db.session.get(Campaign, campaign_id) is None:
            raise NotFoundError(f"Campaign not found: {campaign_id}")

        media = db.session.get(Media, media_id)
        if media is None:
            raise NotFoundError(f"Media not found: {media_id}")

        duration = media.duration or current_app.config['DEFAULT_LOCAL_SLOT_DURATION']
        max_attempts = current_app.config['ALLOCATION_MAX_ATTEMPTS']

        # Release the read transaction so each terminal starts from a fresh snapshot
        db.session.commit()

        result = AllocationResult()

        for terminal_id in dict.fromkeys(terminal_ids):
            try:
                allocation = cls._allocate_terminal(
                    campaign_id, media_id, duration, terminal_id, max_attempts
                )
            except _Skip as e:
                result.skipped_terminals.append({'terminal_id': terminal_id, 'reason': str(e)})
                continue
            except _Full as e:
                logger.info(f"Terminal {terminal_id} has no free local slot")
                result.full_terminals.append({'terminal_id': terminal_id, 'terminal_name': str(e)})
                continue
            except AllocationConflictError as e:
                logger.warning(f"Allocation for terminal {terminal_id} gave up: {e}")
                result.failed_terminals.append({'terminal_id': terminal_id, 'reason': e.message})
                continue
            except SQLAlchemyError as e:
                db.session.rollback()
                logger.error(f"Allocation for terminal {terminal_id} failed: {e}")
                result.failed_terminals.append({'terminal_id': terminal_id, 'reason': str(e)})
                continue

            result.allocations.append(allocation)

        logger.info(
            f"Campaign {campaign_id}: {len(result.allocations)} allocated, "
            f"{len(result.full_terminals)} full, {len(result.failed_terminals)} failed, "
            f"{len(result.skipped_terminals)} skipped"
        )
        return result

    @classmethod
    def _read_snapshot(cls, terminal_id: str) -> Tuple[Terminal, Playlist, int, Dict[int, PlaylistSlot]]:
        """
        Read a terminal's playlist state for one allocation attempt.

        Returns:
            (terminal, playlist, version, local slots keyed by index)
        """
        terminal = db.session.get(Terminal, terminal_id)
        if terminal is None:
            raise _Skip('unknown terminal')
        if not terminal.assigned_playlist_id:
            raise _Skip('no assigned playlist')

        playlist = db.session.get(Playlist, terminal.assigned_playlist_id)
        if playlist is None:
            raise _Skip('assigned playlist missing')

        rows = db.session.execute(
            db.select(PlaylistSlot).where(
                PlaylistSlot.playlist_id == playlist.id,
                PlaylistSlot.slot_index.in_(LOCAL_SLOT_ORDER),
            )
        ).scalars()
        return terminal, playlist, playlist.version, {slot.slot_index: slot for slot in rows}

    @staticmethod
    def choose_slot(slots: Dict[int, PlaylistSlot], campaign_id: str) -> Tuple[Optional[int], bool]:
        """
        Pick the slot index for a campaign.

        A slot the campaign already holds wins so re-running an allocation
        never consumes a second slot; otherwise the first unoccupied index in
        LOCAL_SLOT_ORDER.

        Returns:
            (slot index or None when full, True if the slot is already held)
        """
        for index in LOCAL_SLOT_ORDER:
            slot = slots.get(index)
            if slot is not None and slot.campaign_id == campaign_id:
                return index, True

        for index in LOCAL_SLOT_ORDER:
            slot = slots.get(index)
            if slot is None or not slot.is_occupied:
                return index, False

        return None, False

    @classmethod
    def _allocate_terminal(
        cls,
        campaign_id: str,
        media_id: str,
        duration: int,
        terminal_id: str,
        max_attempts: int,
    ) -> Allocation:
        for attempt in range(1, max_attempts + 1):
            terminal, playlist, version, slots = cls._read_snapshot(terminal_id)
            terminal_name = terminal.name
            playlist_id = playlist.id

            slot_index, reused = cls.choose_slot(slots, campaign_id)
            if slot_index is None:
                db.session.rollback()
                raise _Full(terminal_name)

            claimed = db.session.execute(
                update(Playlist)
                .where(Playlist.id == playlist_id, Playlist.version == version)
                .values(version=version + 1)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                db.session.rollback()
                logger.info(
                    f"Playlist {playlist_id} changed during allocation "
                    f"(attempt {attempt}/{max_attempts})"
                )
                continue

            slot = slots.get(slot_index)
            if slot is None:
                slot = PlaylistSlot(playlist_id=playlist_id, slot_index=slot_index)
                db.session.add(slot)

            slot.slot_type = SlotType.LOCAL.value
            slot.media_id = media_id
            slot.campaign_id = campaign_id
            slot.duration = duration

            try:
                db.session.commit()
            except IntegrityError:
                # Another writer inserted the same (playlist, slot_index) row
                db.session.rollback()
                logger.info(f"Slot {slot_index} on playlist {playlist_id} was taken concurrently")
                continue

            return Allocation(terminal_id, terminal_name, slot_index, playlist_id, reused)

        raise AllocationConflictError(
            f"Playlist for terminal {terminal_id} kept changing after {max_attempts} attempts"
        )
