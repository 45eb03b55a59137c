"""
CMS Media Routes

Blueprint for media API endpoints:
- GET /: List media
- POST /: Register a media reference
- GET /<media_id>: Get media
- POST /<media_id>/wildcard: Propagate media to the wildcard slot of every playlist

All endpoints are prefixed with /api/v1/media when registered with the app.
"""

from flask import Blueprint, request, jsonify

from cms.models import db, Media, MediaType
from cms.services.errors import NotFoundError, ValidationError
from cms.services.slot_propagator import SlotPropagator


# Create media blueprint
media_bp = Blueprint('media', __name__)


@media_bp.route('', methods=['GET'])
def list_media():
    """
    List media.

    Returns:
        200: {"media": [...], "count": n}
    """
    items = list(db.session.execute(db.select(Media).order_by(Media.name)).scalars())
    return jsonify({
        'media': [m.to_dict() for m in items],
        'count': len(items)
    }), 200


@media_bp.route('', methods=['POST'])
def create_media():
    """
    Register a media reference.

    Request Body:
        {"name": "spring.mp4", "url": "https://...", "type": "video", "duration": 20}

    Returns:
        201: Media data
        400: Validation error
    """
    data = request.get_json(silent=True) or {}

    name = (data.get('name') or '').strip()
    if not name:
        raise ValidationError("name is required")

    media_type = data.get('type', MediaType.IMAGE.value)
    if media_type not in [t.value for t in MediaType]:
        raise ValidationError(f"Invalid type: {media_type}")

    duration = data.get('duration')
    if duration is not None and (isinstance(duration, bool) or not isinstance(duration, int) or duration <= 0):
        raise ValidationError("duration must be a positive integer")

    media = Media(name=name, url=data.get('url'), type=media_type, duration=duration)
    db.session.add(media)
    db.session.commit()

    return jsonify(media.to_dict()), 201


@media_bp.route('/<media_id>', methods=['GET'])
def get_media(media_id):
    """
    Get a media record.

    Returns:
        200: Media data
        404: Media not found
    """
    media = db.session.get(Media, media_id)
    if media is None:
        raise NotFoundError(f"Media not found: {media_id}")
    return jsonify(media.to_dict()), 200


@media_bp.route('/<media_id>/wildcard', methods=['POST'])
def propagate_wildcard(media_id):
    """
    Put a media on slot 7 of every playlist.

    Returns:
        200: {"media_id": ..., "updated_count": n}
        404: Media not found
    """
    updated = SlotPropagator.propagate_wildcard(media_id)
    return jsonify({'media_id': media_id, 'updated_count': updated}), 200
