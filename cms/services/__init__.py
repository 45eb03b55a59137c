"""
CMS Services Package.

Business logic services for the advertising CMS including:
- SlotAllocator: Places campaigns into per-terminal local slots
- SlotPropagator: Broadcasts media into the global and wildcard slots
- CampaignService: Moderation, media swaps, expiry and deletion
- TerminalService: Settings, heartbeats, liveness and fallback campaigns
- ChangeFeed: Committed row-change notifications
"""

from cms.services.errors import (
    CMSServiceError,
    NotFoundError,
    InvalidStateError,
    ValidationError,
    AllocationConflictError,
)
from cms.services.slot_allocator import SlotAllocator, AllocationResult, Allocation
from cms.services.slot_propagator import SlotPropagator
from cms.services.campaign_service import CampaignService
from cms.services.terminal_service import TerminalService
from cms.services.change_feed import ChangeFeed, ChangeFeedPublisher

__all__ = [
    'CMSServiceError',
    'NotFoundError',
    'InvalidStateError',
    'ValidationError',
    'AllocationConflictError',
    'SlotAllocator',
    'AllocationResult',
    'Allocation',
    'SlotPropagator',
    'CampaignService',
    'TerminalService',
    'ChangeFeed',
    'ChangeFeedPublisher',
]
