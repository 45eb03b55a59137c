"""
Campaign Service for CMS.

Provides the campaign moderation workflow:
- Creation and moderation: create, approve, reject, resubmit, expire
- Media swaps: request, approve and reject a replacement media
- Deletion: removes the campaign and clears every slot that references it

Approval is the only trigger for slot placement. A non-global campaign is
handed to the SlotAllocator, a global one to the SlotPropagator; because a
campaign can only be approved from the pending state, each submission is
placed exactly once. If placement raises, the campaign goes back to pending
so it can be approved again. ``place`` reruns placement for an approved
campaign; it reuses slots the campaign already holds, so terminals that
failed or had no playlist can be filled in later without double booking.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from cms.models import (
    db,
    Campaign,
    Media,
    ModerationStatus,
    Playlist,
    PlaylistSlot,
    GLOBAL_SLOT_INDEX,
)
from cms.services.errors import CMSServiceError, InvalidStateError, NotFoundError, ValidationError
from cms.services.slot_allocator import AllocationResult, SlotAllocator
from cms.services.slot_propagator import SlotPropagator


logger = logging.getLogger(__name__)


class CampaignService:
    """
    Service class for campaign lifecycle operations.

    All methods use the Flask-SQLAlchemy db session and commit their own
    transaction.
    """

    # ==========================================================================
    # Lookups
    # ==========================================================================

    @classmethod
    def get_campaign(cls, campaign_id: str) -> Campaign:
        """
        Fetch a campaign.

        Raises:
            NotFoundError: If the campaign does not exist
        """
        campaign = db.session.get(Campaign, campaign_id)
        if campaign is None:
            raise NotFoundError(f"Campaign not found: {campaign_id}")
        return campaign

    @classmethod
    def _get_media(cls, media_id: Optional[str]) -> Media:
        if not media_id:
            raise ValidationError("media_id is required")
        media = db.session.get(Media, media_id)
        if media is None:
            raise NotFoundError(f"Media not found: {media_id}")
        return media

    @classmethod
    def list_campaigns(cls, status: Optional[str] = None) -> List[Campaign]:
        """List campaigns, optionally filtered by moderation status."""
        query = db.select(Campaign).order_by(Campaign.created_at)
        if status:
            cls._parse_status(status)
            query = query.where(Campaign.moderation_status == status)
        return list(db.session.execute(query).scalars())

    @staticmethod
    def _parse_status(status: str) -> ModerationStatus:
        try:
            return ModerationStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown moderation status: {status}")

    # ==========================================================================
    # Moderation
    # ==========================================================================

    @classmethod
    def create_campaign(
        cls,
        name: str,
        media_id: str,
        target_terminals: Optional[Iterable[str]] = None,
        is_global: bool = False,
        is_active: bool = True,
    ) -> Campaign:
        """
        Submit a new campaign for moderation.

        Args:
            name: Campaign name (required)
            media_id: Media the campaign plays
            target_terminals: Terminal IDs (ignored for global campaigns)
            is_global: Broadcast to every playlist's global slot
            is_active: Advertiser-side on/off switch

        Returns:
            Campaign: The new pending campaign

        Raises:
            ValidationError: If the name or targets are missing
            NotFoundError: If the media does not exist
        """
        if not name or not str(name).strip():
            raise ValidationError("name is required")

        cls._get_media(media_id)

        targets = [] if is_global else list(dict.fromkeys(target_terminals or []))
        if not is_global and not targets:
            raise ValidationError("target_terminals is required for a non-global campaign")

        campaign = Campaign(
            name=str(name).strip(),
            v_media_id=media_id,
            target_terminals=targets,
            is_global=bool(is_global),
            is_active=bool(is_active),
        )
        db.session.add(campaign)
        db.session.commit()

        logger.info(f"Campaign {campaign.id} submitted ({'global' if is_global else len(targets)} targets)")
        return campaign

    @classmethod
    def approve(cls, campaign_id: str) -> Tuple[Campaign, Dict[str, Any]]:
        """
        Approve a pending campaign and place it on playlists.

        Returns:
            (campaign, placement) where placement is the allocation result
            dict, or ``{'updated_count': n}`` for a global campaign

        Raises:
            NotFoundError: If the campaign does not exist
            InvalidStateError: If the campaign is not pending
            ValidationError: If the campaign has no media
        """
        campaign = cls.get_campaign(campaign_id)

        if campaign.moderation_status != ModerationStatus.PENDING.value:
            raise InvalidStateError(
                f"Campaign {campaign_id} is {campaign.moderation_status}, only pending campaigns can be approved"
            )
        if not campaign.v_media_id:
            raise ValidationError(f"Campaign {campaign_id} has no media")

        now = datetime.now(timezone.utc)
        previous_reason = campaign.rejection_reason
        campaign.moderation_status = ModerationStatus.APPROVED.value
        campaign.approved_at = now
        campaign.expires_at = now + timedelta(days=current_app.config['CAMPAIGN_VALIDITY_DAYS'])
        campaign.rejection_reason = None
        db.session.commit()

        logger.info(f"Campaign {campaign_id} approved")

        try:
            placement = cls._place(campaign)
        except (SQLAlchemyError, CMSServiceError) as e:
            logger.error(f"Placement of campaign {campaign_id} failed, returning it to pending: {e}")
            cls._revert_to_pending(campaign_id, previous_reason)
            raise

        return cls.get_campaign(campaign_id), placement

    @classmethod
    def place(cls, campaign_id: str) -> Tuple[Campaign, Dict[str, Any]]:
        """
        Run placement again for an approved campaign.

        Terminals that already hold the campaign keep their slot, so this only
        fills in terminals that failed, were full or had no playlist last time.

        Returns:
            (campaign, placement) in the same shape as ``approve``

        Raises:
            NotFoundError: If the campaign does not exist
            InvalidStateError: If the campaign is not approved
        """
        campaign = cls.get_campaign(campaign_id)

        if not campaign.is_approved:
            raise InvalidStateError(
                f"Campaign {campaign_id} is {campaign.moderation_status}, only approved campaigns can be placed"
            )

        logger.info(f"Re-running placement for campaign {campaign_id}")
        placement = cls._place(campaign)
        return cls.get_campaign(campaign_id), placement

    @classmethod
    def _place(cls, campaign: Campaign) -> Dict[str, Any]:
        if campaign.is_global:
            updated = SlotPropagator.propagate_global(campaign.v_media_id)
            return {'updated_count': updated}

        result: AllocationResult = SlotAllocator.allocate(
            campaign.id,
            campaign.v_media_id,
            list(campaign.target_terminals or []),
        )
        return result.to_dict()

    @classmethod
    def _revert_to_pending(cls, campaign_id: str, rejection_reason: Optional[str]) -> None:
        db.session.rollback()
        campaign = cls.get_campaign(campaign_id)
        campaign.moderation_status = ModerationStatus.PENDING.value
        campaign.approved_at = None
        campaign.expires_at = None
        campaign.rejection_reason = rejection_reason
        db.session.commit()

    @classmethod
    def reject(cls, campaign_id: str, reason: Optional[str] = None) -> Campaign:
        """
        Reject a pending campaign.

        Raises:
            InvalidStateError: If the campaign is not pending
        """
        campaign = cls.get_campaign(campaign_id)

        if campaign.moderation_status != ModerationStatus.PENDING.value:
            raise InvalidStateError(
                f"Campaign {campaign_id} is {campaign.moderation_status}, only pending campaigns can be rejected"
            )

        campaign.moderation_status = ModerationStatus.REJECTED.value
        campaign.rejection_reason = reason
        db.session.commit()

        logger.info(f"Campaign {campaign_id} rejected: {reason}")
        return campaign

    @classmethod
    def resubmit(cls, campaign_id: str, media_id: Optional[str] = None) -> Campaign:
        """
        Reopen a rejected or expired campaign for moderation.

        Args:
            campaign_id: Campaign to resubmit
            media_id: Optional replacement media

        Raises:
            InvalidStateError: If the campaign is pending or approved
        """
        campaign = cls.get_campaign(campaign_id)

        if campaign.moderation_status not in (
            ModerationStatus.REJECTED.value,
            ModerationStatus.EXPIRED.value,
        ):
            raise InvalidStateError(
                f"Campaign {campaign_id} is {campaign.moderation_status}, only rejected or expired campaigns can be resubmitted"
            )

        if media_id:
            cls._get_media(media_id)
            campaign.v_media_id = media_id

        campaign.moderation_status = ModerationStatus.PENDING.value
        db.session.commit()

        logger.info(f"Campaign {campaign_id} resubmitted")
        return campaign

    @classmethod
    def expire_campaigns(cls, now: Optional[datetime] = None) -> List[str]:
        """
        Expire approved campaigns past their validity period.

        Slots stay assigned so a renewed campaign keeps its position; the
        player drops non-approved campaigns on its next resolution pass.

        Returns:
            IDs of the campaigns that expired
        """
        now = now or datetime.now(timezone.utc)

        due = list(db.session.execute(
            db.select(Campaign).where(
                Campaign.moderation_status == ModerationStatus.APPROVED.value,
                Campaign.expires_at.isnot(None),
                Campaign.expires_at <= now,
            )
        ).scalars())

        for campaign in due:
            campaign.moderation_status = ModerationStatus.EXPIRED.value
        db.session.commit()

        if due:
            logger.info(f"Expired {len(due)} campaigns")
        return [campaign.id for campaign in due]

    # ==========================================================================
    # Media swaps
    # ==========================================================================

    @classmethod
    def request_swap(cls, campaign_id: str, media_id: str) -> Campaign:
        """
        Ask to replace an approved campaign's media.

        Raises:
            InvalidStateError: If the campaign is not approved
            ValidationError: If the media is already the campaign's media
            NotFoundError: If the media does not exist
        """
        campaign = cls.get_campaign(campaign_id)
        cls._get_media(media_id)

        if not campaign.is_approved:
            raise InvalidStateError(f"Campaign {campaign_id} must be approved to swap media")
        if media_id == campaign.v_media_id:
            raise ValidationError("Replacement media is already the campaign's media")

        campaign.pending_swap_media_id = media_id
        db.session.commit()

        logger.info(f"Campaign {campaign_id}: swap to media {media_id} requested")
        return campaign

    @classmethod
    def approve_swap(cls, campaign_id: str) -> Tuple[Campaign, int]:
        """
        Apply a pending media swap in place.

        The campaign's local slots (and, for a global campaign, the global
        slots still playing the old media) switch media without moving;
        allocation does not run again.

        Returns:
            (campaign, number of slot rows updated)

        Raises:
            InvalidStateError: If no swap is pending
        """
        campaign = cls.get_campaign(campaign_id)

        if not campaign.pending_swap_media_id:
            raise InvalidStateError(f"Campaign {campaign_id} has no pending swap")

        new_media = cls._get_media(campaign.pending_swap_media_id)
        old_media_id = campaign.v_media_id

        slots = cls._referencing_slots(campaign, old_media_id)
        for slot in slots:
            slot.media_id = new_media.id
            if new_media.duration:
                slot.duration = new_media.duration
        cls._bump_versions(slots)

        campaign.v_media_id = new_media.id
        campaign.pending_swap_media_id = None
        campaign.swap_count = (campaign.swap_count or 0) + 1
        db.session.commit()

        logger.info(f"Campaign {campaign_id}: swapped media on {len(slots)} slots")
        return campaign, len(slots)

    @classmethod
    def reject_swap(cls, campaign_id: str, reason: Optional[str] = None) -> Campaign:
        """
        Discard a pending media swap.

        Raises:
            InvalidStateError: If no swap is pending
        """
        campaign = cls.get_campaign(campaign_id)

        if not campaign.pending_swap_media_id:
            raise InvalidStateError(f"Campaign {campaign_id} has no pending swap")

        campaign.pending_swap_media_id = None
        campaign.rejection_reason = reason
        db.session.commit()

        logger.info(f"Campaign {campaign_id}: swap rejected")
        return campaign

    # ==========================================================================
    # Deletion
    # ==========================================================================

    @classmethod
    def delete_campaign(cls, campaign_id: str) -> int:
        """
        Delete a campaign and clear the slots that reference it.

        Returns:
            Number of slot rows cleared
        """
        campaign = cls.get_campaign(campaign_id)

        slots = cls._referencing_slots(campaign, campaign.v_media_id)
        for slot in slots:
            slot.clear()
        cls._bump_versions(slots)

        db.session.delete(campaign)
        db.session.commit()

        logger.info(f"Campaign {campaign_id} deleted, {len(slots)} slots cleared")
        return len(slots)

    # ==========================================================================
    # Helpers
    # ==========================================================================

    @classmethod
    def _referencing_slots(cls, campaign: Campaign, media_id: Optional[str]) -> List[PlaylistSlot]:
        """Local slots holding the campaign plus, when global, its global slots."""
        slots = list(db.session.execute(
            db.select(PlaylistSlot).where(PlaylistSlot.campaign_id == campaign.id)
        ).scalars())

        if campaign.is_global and media_id:
            slots.extend(db.session.execute(
                db.select(PlaylistSlot).where(
                    PlaylistSlot.slot_index == GLOBAL_SLOT_INDEX,
                    PlaylistSlot.media_id == media_id,
                )
            ).scalars())

        return slots

    @staticmethod
    def _bump_versions(slots: List[PlaylistSlot]) -> None:
        for playlist_id in {slot.playlist_id for slot in slots}:
            playlist = db.session.get(Playlist, playlist_id)
            if playlist is not None:
                playlist.version = playlist.version + 1
