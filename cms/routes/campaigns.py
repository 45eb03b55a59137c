"""
CMS Campaigns Routes

Blueprint for campaign API endpoints:
- GET /: List campaigns (optional ?status=)
- POST /: Submit a campaign for moderation
- GET /<campaign_id>: Get campaign
- POST /<campaign_id>/approve: Approve and place on slots
- POST /<campaign_id>/allocate: Re-run placement for an approved campaign
- POST /<campaign_id>/reject: Reject
- POST /<campaign_id>/resubmit: Reopen a rejected or expired campaign
- POST /<campaign_id>/swap: Request a media swap
- POST /<campaign_id>/swap/approve: Apply the pending swap in place
- POST /<campaign_id>/swap/reject: Discard the pending swap
- DELETE /<campaign_id>: Delete and clear referencing slots
- POST /expire: Expire campaigns past their validity period

All endpoints are prefixed with /api/v1/campaigns when registered with the app.
"""

from flask import Blueprint, request, jsonify

from cms.services.campaign_service import CampaignService


# Create campaigns blueprint
campaigns_bp = Blueprint('campaigns', __name__)


@campaigns_bp.route('', methods=['GET'])
def list_campaigns():
    """
    List campaigns.

    Query Parameters:
        status: pending, approved, rejected or expired

    Returns:
        200: {"campaigns": [...], "count": n}
        400: Unknown status
    """
    campaigns = CampaignService.list_campaigns(status=request.args.get('status'))
    return jsonify({
        'campaigns': [c.to_dict() for c in campaigns],
        'count': len(campaigns)
    }), 200


@campaigns_bp.route('', methods=['POST'])
def create_campaign():
    """
    Submit a campaign.

    Request Body:
        {
            "name": "Spring sale" (required),
            "media_id": "..." (required),
            "target_terminals": ["lobby-01"] (required unless global),
            "is_global": false,
            "is_active": true
        }

    Returns:
        201: Pending campaign
        400: Validation error
        404: Media not found
    """
    data = request.get_json(silent=True) or {}
    campaign = CampaignService.create_campaign(
        name=data.get('name'),
        media_id=data.get('media_id'),
        target_terminals=data.get('target_terminals'),
        is_global=bool(data.get('is_global', False)),
        is_active=bool(data.get('is_active', True)),
    )
    return jsonify(campaign.to_dict()), 201


@campaigns_bp.route('/expire', methods=['POST'])
def expire_campaigns():
    """
    Expire approved campaigns whose validity ended.

    Returns:
        200: {"expired": [ids], "count": n}
    """
    expired = CampaignService.expire_campaigns()
    return jsonify({'expired': expired, 'count': len(expired)}), 200


@campaigns_bp.route('/<campaign_id>', methods=['GET'])
def get_campaign(campaign_id):
    """
    Get a campaign.

    Returns:
        200: Campaign data
        404: Campaign not found
    """
    return jsonify(CampaignService.get_campaign(campaign_id).to_dict()), 200


@campaigns_bp.route('/<campaign_id>/approve', methods=['POST'])
def approve_campaign(campaign_id):
    """
    Approve a pending campaign.

    Non-global campaigns are allocated to one local slot per target terminal;
    global campaigns are propagated to slot 0 of every playlist.

    Returns:
        200: {"campaign": {...}, "allocation": {...}} or
             {"campaign": {...}, "propagation": {"updated_count": n}}
        409: Campaign is not pending
        503: Placement failed; the campaign is pending again
    """
    campaign, placement = CampaignService.approve(campaign_id)
    key = 'propagation' if campaign.is_global else 'allocation'
    return jsonify({'campaign': campaign.to_dict(), key: placement}), 200


@campaigns_bp.route('/<campaign_id>/allocate', methods=['POST'])
def allocate_campaign(campaign_id):
    """
    Re-run placement for an approved campaign.

    Slots the campaign already holds are reused, so only terminals that
    failed, were full or had no playlist last time can gain a slot.

    Returns:
        200: Same shape as the approve response
        409: Campaign is not approved
    """
    campaign, placement = CampaignService.place(campaign_id)
    key = 'propagation' if campaign.is_global else 'allocation'
    return jsonify({'campaign': campaign.to_dict(), key: placement}), 200


@campaigns_bp.route('/<campaign_id>/reject', methods=['POST'])
def reject_campaign(campaign_id):
    """
    Reject a pending campaign.

    Request Body:
        {"reason": "..."} (optional)

    Returns:
        200: Campaign data
        409: Campaign is not pending
    """
    data = request.get_json(silent=True) or {}
    campaign = CampaignService.reject(campaign_id, data.get('reason'))
    return jsonify(campaign.to_dict()), 200


@campaigns_bp.route('/<campaign_id>/resubmit', methods=['POST'])
def resubmit_campaign(campaign_id):
    """
    Reopen a rejected or expired campaign.

    Request Body:
        {"media_id": "..."} (optional replacement media)

    Returns:
        200: Campaign data (pending)
        409: Campaign is pending or approved
    """
    data = request.get_json(silent=True) or {}
    campaign = CampaignService.resubmit(campaign_id, data.get('media_id'))
    return jsonify(campaign.to_dict()), 200


@campaigns_bp.route('/<campaign_id>/swap', methods=['POST'])
def request_swap(campaign_id):
    """
    Request a media swap.

    Request Body:
        {"media_id": "..."}

    Returns:
        200: Campaign data with pending_swap_media_id
        409: Campaign is not approved
    """
    data = request.get_json(silent=True) or {}
    campaign = CampaignService.request_swap(campaign_id, data.get('media_id'))
    return jsonify(campaign.to_dict()), 200


@campaigns_bp.route('/<campaign_id>/swap/approve', methods=['POST'])
def approve_swap(campaign_id):
    """
    Apply the pending swap to the campaign's slots in place.

    Returns:
        200: {"campaign": {...}, "updated_slots": n}
        409: No pending swap
    """
    campaign, updated = CampaignService.approve_swap(campaign_id)
    return jsonify({'campaign': campaign.to_dict(), 'updated_slots': updated}), 200


@campaigns_bp.route('/<campaign_id>/swap/reject', methods=['POST'])
def reject_swap(campaign_id):
    """
    Discard the pending swap.

    Returns:
        200: Campaign data
        409: No pending swap
    """
    data = request.get_json(silent=True) or {}
    campaign = CampaignService.reject_swap(campaign_id, data.get('reason'))
    return jsonify(campaign.to_dict()), 200


@campaigns_bp.route('/<campaign_id>', methods=['DELETE'])
def delete_campaign(campaign_id):
    """
    Delete a campaign and clear the slots referencing it.

    Returns:
        200: {"message": "Campaign deleted", "id": ..., "cleared_slots": n}
        404: Campaign not found
    """
    cleared = CampaignService.delete_campaign(campaign_id)
    return jsonify({
        'message': 'Campaign deleted',
        'id': campaign_id,
        'cleared_slots': cleared
    }), 200
