"""
Playlist resolution for the terminal player.
Turns a terminal's assigned playlist (or the fallback campaign query) into an
ordered list of playable items.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from src.common.cms_client import CMSClient
from src.common.logger import setup_logger

logger = setup_logger(__name__)


DEFAULT_ITEM_DURATION = 10

APPROVED_STATUS = "approved"


class ItemType(Enum):
    """Kind of reference a playlist item carries."""
    MEDIA = "media"          # Direct media reference
    CAMPAIGN = "campaign"    # Campaign reference, media looked up at play time


class PlaylistSource(Enum):
    """Where a resolved playlist came from."""
    PLAYLIST = "playlist"    # Assigned playlist slots
    FALLBACK = "fallback"    # Campaigns targeting the terminal or global
    CACHED = "cached"        # Last resolution persisted on disk


@dataclass
class PlaylistItem:
    """Represents a single playable entry in the rotation."""

    item_type: ItemType
    duration: float  # seconds
    media_id: Optional[str] = None
    campaign_id: Optional[str] = None
    slot_index: Optional[int] = None
    slot_type: Optional[str] = None

    @property
    def is_campaign(self) -> bool:
        return self.item_type == ItemType.CAMPAIGN

    def to_dict(self) -> Dict[str, Any]:
        return {
            'item_type': self.item_type.value,
            'duration': self.duration,
            'media_id': self.media_id,
            'campaign_id': self.campaign_id,
            'slot_index': self.slot_index,
            'slot_type': self.slot_type,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PlaylistItem':
        return cls(
            item_type=ItemType(data.get('item_type', ItemType.MEDIA.value)),
            duration=float(data.get('duration') or DEFAULT_ITEM_DURATION),
            media_id=data.get('media_id'),
            campaign_id=data.get('campaign_id'),
            slot_index=data.get('slot_index'),
            slot_type=data.get('slot_type'),
        )


@dataclass
class ResolvedPlaylist:
    """Result of one resolution pass."""

    source: PlaylistSource
    items: List[PlaylistItem] = field(default_factory=list)
    playlist_id: Optional[str] = None

    def __len__(self) -> int:
        return len(self.items)

    @property
    def is_empty(self) -> bool:
        return not self.items


class PlaylistResolver:
    """
    Resolves a terminal record into an ordered playlist.

    Assigned playlist slots are walked in slot_index order; empty slots are
    omitted and campaign-backed slots are kept only while their campaign is
    still approved. Without an assigned playlist (or when it no longer
    exists) the fallback query supplies campaigns targeting the terminal or
    marked global.

    CMSClientError propagates to the caller, which keeps the previous
    playlist and retries later.
    """

    def __init__(self, client: CMSClient, default_duration: float = DEFAULT_ITEM_DURATION):
        self._client = client
        self.default_duration = default_duration

    def resolve(self, terminal: Dict[str, Any]) -> ResolvedPlaylist:
        """
        Run one resolution pass for a terminal.

        Args:
            terminal: Terminal record as returned by the CMS

        Returns:
            ResolvedPlaylist (possibly empty)
        """
        playlist_id = terminal.get('assigned_playlist_id')

        if playlist_id:
            playlist = self._client.get_playlist(playlist_id)
            if playlist is not None:
                items = self._resolve_slots(playlist.get('slots', []))
                logger.info(
                    "Resolved playlist %s: %d playable items",
                    playlist_id,
                    len(items)
                )
                return ResolvedPlaylist(PlaylistSource.PLAYLIST, items, playlist_id)
            logger.warning("Assigned playlist %s not found, using fallback", playlist_id)

        items = self._resolve_fallback(terminal['id'])
        logger.info("Resolved fallback campaigns: %d playable items", len(items))
        return ResolvedPlaylist(PlaylistSource.FALLBACK, items)

    def _resolve_slots(self, slots: List[Dict[str, Any]]) -> List[PlaylistItem]:
        # One campaign lookup per pass even if it backs several slots
        approval_memo: Dict[str, bool] = {}
        items: List[PlaylistItem] = []

        for slot in sorted(slots, key=lambda s: s.get('slot_index', 0)):
            media_id = slot.get('media_id')
            if not media_id:
                continue

            campaign_id = slot.get('campaign_id')
            if campaign_id:
                if campaign_id not in approval_memo:
                    approval_memo[campaign_id] = self._is_campaign_approved(campaign_id)
                if not approval_memo[campaign_id]:
                    logger.debug(
                        "Dropping slot %s: campaign %s no longer approved",
                        slot.get('slot_index'),
                        campaign_id
                    )
                    continue

            items.append(PlaylistItem(
                item_type=ItemType.CAMPAIGN if campaign_id else ItemType.MEDIA,
                duration=self._slot_duration(slot),
                media_id=media_id,
                campaign_id=campaign_id,
                slot_index=slot.get('slot_index'),
                slot_type=slot.get('slot_type'),
            ))

        return items

    def _slot_duration(self, slot: Dict[str, Any]) -> float:
        duration = slot.get('duration')
        if duration:
            return float(duration)

        media = self._client.get_media(slot['media_id'])
        if media and media.get('duration'):
            return float(media['duration'])

        return float(self.default_duration)

    def _is_campaign_approved(self, campaign_id: str) -> bool:
        campaign = self._client.get_campaign(campaign_id)
        return bool(campaign) and campaign.get('moderation_status') == APPROVED_STATUS

    def _resolve_fallback(self, terminal_id: str) -> List[PlaylistItem]:
        items: List[PlaylistItem] = []

        for campaign in self._client.list_terminal_campaigns(terminal_id):
            if campaign.get('moderation_status') != APPROVED_STATUS:
                continue
            if not campaign.get('is_active'):
                continue
            media_id = campaign.get('v_media_id')
            if not media_id:
                continue

            items.append(PlaylistItem(
                item_type=ItemType.CAMPAIGN,
                duration=float(self.default_duration),
                media_id=media_id,
                campaign_id=campaign['id'],
            ))

        return items
