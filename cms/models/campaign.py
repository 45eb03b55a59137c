"""
Campaign Model for CMS Service.

A campaign is advertiser content that goes through moderation. Approval
places it on playlists: local slots on its target terminals, or the global
slot of every playlist for a global campaign.
"""

import enum
import uuid

from cms.models import db, DateTimeUTC, utcnow, isoformat


class ModerationStatus(enum.Enum):
    """Moderation lifecycle of a campaign.

    - PENDING: Submitted, awaiting review
    - APPROVED: Live and allocated to slots
    - REJECTED: Refused by a moderator (may be resubmitted)
    - EXPIRED: Validity period elapsed
    """
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'
    EXPIRED = 'expired'


class Campaign(db.Model):
    """
    SQLAlchemy model representing an advertising campaign.

    Attributes:
        id: Unique UUID identifier
        name: Campaign name
        moderation_status: pending/approved/rejected/expired
        is_global: Broadcast to every playlist's global slot
        is_active: Advertiser-side on/off switch
        target_terminals: Terminal IDs the campaign is shown on (empty when global)
        v_media_id: Media currently played by the campaign
        pending_swap_media_id: Replacement media awaiting moderation
        swap_count: Number of approved media swaps
        rejection_reason: Moderator's note on the last rejection
        approved_at: Timestamp of the last approval
        expires_at: End of the validity period
    """

    __tablename__ = 'campaigns'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = db.Column(db.String(200), nullable=False)
    moderation_status = db.Column(
        db.String(20),
        nullable=False,
        default=ModerationStatus.PENDING.value,
        index=True
    )
    is_global = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    target_terminals = db.Column(db.JSON, nullable=False, default=list)
    v_media_id = db.Column(db.String(36), db.ForeignKey('media.id', ondelete='SET NULL'), nullable=True)
    pending_swap_media_id = db.Column(
        db.String(36),
        db.ForeignKey('media.id', ondelete='SET NULL'),
        nullable=True
    )
    swap_count = db.Column(db.Integer, nullable=False, default=0)
    rejection_reason = db.Column(db.Text, nullable=True)
    approved_at = db.Column(DateTimeUTC, nullable=True)
    expires_at = db.Column(DateTimeUTC, nullable=True)
    created_at = db.Column(DateTimeUTC, default=utcnow)
    updated_at = db.Column(DateTimeUTC, default=utcnow, onupdate=utcnow)

    @property
    def status(self):
        return ModerationStatus(self.moderation_status)

    @property
    def is_approved(self):
        return self.moderation_status == ModerationStatus.APPROVED.value

    def targets(self, terminal_id):
        """True if the campaign is shown on the terminal (global counts)."""
        return self.is_global or terminal_id in (self.target_terminals or [])

    def to_dict(self):
        """
        Serialize the campaign to a dictionary for API responses.

        Returns:
            Dictionary containing all campaign fields
        """
        return {
            'id': self.id,
            'name': self.name,
            'moderation_status': self.moderation_status,
            'is_global': self.is_global,
            'is_active': self.is_active,
            'target_terminals': list(self.target_terminals or []),
            'v_media_id': self.v_media_id,
            'pending_swap_media_id': self.pending_swap_media_id,
            'swap_count': self.swap_count,
            'rejection_reason': self.rejection_reason,
            'approved_at': isoformat(self.approved_at),
            'expires_at': isoformat(self.expires_at),
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at),
        }

    def __repr__(self):
        return f'<Campaign {self.name} ({self.moderation_status})>'
