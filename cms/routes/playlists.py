"""
CMS Playlists Routes

Blueprint for playlist API endpoints:
- GET /: List playlists
- POST /: Create playlist
- GET /<playlist_id>: Get playlist with its slots
- GET /<playlist_id>/slots: List slot rows
- PUT /<playlist_id>/slots/<slot_index>: Set a slot's media directly

All endpoints are prefixed with /api/v1/playlists when registered with the app.
"""

from flask import Blueprint, request, jsonify

from cms.models import db, Media, Playlist, PlaylistSlot, SLOT_COUNT, slot_type_for_index
from cms.services.errors import NotFoundError, ValidationError


# Create playlists blueprint
playlists_bp = Blueprint('playlists', __name__)


def _get_playlist(playlist_id):
    playlist = db.session.get(Playlist, playlist_id)
    if playlist is None:
        raise NotFoundError(f"Playlist not found: {playlist_id}")
    return playlist


@playlists_bp.route('', methods=['GET'])
def list_playlists():
    """
    List all playlists.

    Returns:
        200: {"playlists": [...], "count": n}
    """
    playlists = list(db.session.execute(db.select(Playlist).order_by(Playlist.name)).scalars())
    return jsonify({
        'playlists': [p.to_dict() for p in playlists],
        'count': len(playlists)
    }), 200


@playlists_bp.route('', methods=['POST'])
def create_playlist():
    """
    Create an empty 13-slot playlist.

    Request Body:
        {"name": "Mall North"}

    Returns:
        201: Playlist data
        400: Missing name
    """
    data = request.get_json(silent=True) or {}
    name = (data.get('name') or '').strip()
    if not name:
        raise ValidationError("name is required")

    playlist = Playlist(name=name)
    db.session.add(playlist)
    db.session.commit()

    return jsonify(playlist.to_dict(include_slots=True)), 201


@playlists_bp.route('/<playlist_id>', methods=['GET'])
def get_playlist(playlist_id):
    """
    Get a playlist including its slots (ordered by slot_index).

    Returns:
        200: Playlist data with "slots"
        404: Playlist not found
    """
    return jsonify(_get_playlist(playlist_id).to_dict(include_slots=True)), 200


@playlists_bp.route('/<playlist_id>/slots', methods=['GET'])
def list_slots(playlist_id):
    """
    List a playlist's slot rows.

    Returns:
        200: {"slots": [...], "count": n, "version": v}
        404: Playlist not found
    """
    playlist = _get_playlist(playlist_id)
    return jsonify({
        'slots': [slot.to_dict() for slot in playlist.slots],
        'count': len(playlist.slots),
        'version': playlist.version
    }), 200


@playlists_bp.route('/<playlist_id>/slots/<int:slot_index>', methods=['PUT'])
def set_slot(playlist_id, slot_index):
    """
    Put a media directly on a slot (or clear it with "media_id": null).

    Request Body:
        {"media_id": "...", "duration": 15}

    Returns:
        200: Slot data
        400: Slot index out of range
        404: Playlist or media not found
    """
    playlist = _get_playlist(playlist_id)
    if not 0 <= slot_index < SLOT_COUNT:
        raise ValidationError(f"slot_index must be between 0 and {SLOT_COUNT - 1}")

    data = request.get_json(silent=True) or {}
    media_id = data.get('media_id')
    media = None
    if media_id:
        media = db.session.get(Media, media_id)
        if media is None:
            raise NotFoundError(f"Media not found: {media_id}")

    slot = playlist.get_slot(slot_index)
    if slot is None:
        slot = PlaylistSlot(
            playlist_id=playlist.id,
            slot_index=slot_index,
            slot_type=slot_type_for_index(slot_index).value
        )
        db.session.add(slot)

    slot.media_id = media_id or None
    slot.campaign_id = None
    slot.duration = data.get('duration') or (media.duration if media else None)
    playlist.version = playlist.version + 1
    db.session.commit()

    return jsonify(slot.to_dict()), 200
