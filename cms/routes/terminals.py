"""
CMS Terminals Routes

Blueprint for terminal API endpoints:
- GET /: List terminals
- POST /: Register a terminal
- GET /<terminal_id>: Get terminal record
- PATCH /<terminal_id>/settings: Update power mode, schedule, playlist or monitoring
- POST /<terminal_id>/heartbeat: Record a heartbeat
- GET /<terminal_id>/status: Liveness (online, should_be_powered, is_down)
- GET /<terminal_id>/campaigns: Fallback campaigns (targeted or global)
- POST /<terminal_id>/playback: Upload a batch of proof-of-play records
- GET /<terminal_id>/playback: Recent proof-of-play records
- DELETE /<terminal_id>: Delete terminal

All endpoints are prefixed with /api/v1/terminals when registered with the app.
Service errors are translated to JSON by the app-level error handlers.
"""

from flask import Blueprint, request, jsonify

from cms.services.terminal_service import TerminalService


# Create terminals blueprint
terminals_bp = Blueprint('terminals', __name__)


@terminals_bp.route('', methods=['GET'])
def list_terminals():
    """
    List all terminals.

    Query Parameters:
        group: Only terminals in this group

    Returns:
        200: {"terminals": [...], "count": n}
    """
    terminals = TerminalService.list_terminals(group=request.args.get('group'))
    return jsonify({
        'terminals': [t.to_dict() for t in terminals],
        'count': len(terminals)
    }), 200


@terminals_bp.route('', methods=['POST'])
def create_terminal():
    """
    Register a terminal.

    Request Body:
        {
            "id": "lobby-01" (optional, generated when omitted),
            "name": "Lobby" (required),
            "group", "power_mode", "operating_start", "operating_end",
            "operating_days", "assigned_playlist_id", "is_monitoring" (optional)
        }

    Returns:
        201: Terminal record
        400: Validation error
    """
    data = request.get_json(silent=True) or {}
    settings = {k: v for k, v in data.items() if k not in ('id', 'name')}

    terminal = TerminalService.create_terminal(
        data.get('name'),
        terminal_id=data.get('id'),
        **settings
    )
    return jsonify(terminal.to_dict()), 201


@terminals_bp.route('/<terminal_id>', methods=['GET'])
def get_terminal(terminal_id):
    """
    Get a terminal record.

    Returns:
        200: Terminal record
        404: Terminal not found
    """
    return jsonify(TerminalService.get_terminal(terminal_id).to_dict()), 200


@terminals_bp.route('/<terminal_id>/settings', methods=['PATCH'])
def update_settings(terminal_id):
    """
    Update operator settings.

    Request Body:
        Any of: name, group, power_mode, operating_start, operating_end,
        operating_days, assigned_playlist_id, is_monitoring

    Returns:
        200: Updated terminal record
        400: Unknown or malformed field
        404: Terminal or playlist not found
    """
    data = request.get_json(silent=True) or {}
    terminal = TerminalService.update_settings(terminal_id, data)
    return jsonify(terminal.to_dict()), 200


@terminals_bp.route('/<terminal_id>/heartbeat', methods=['POST'])
def heartbeat(terminal_id):
    """
    Record a terminal heartbeat.

    Request Body:
        {"current_media": "promo.mp4"} (optional, sent while monitoring)

    Returns:
        200: Updated terminal record
        404: Terminal not found
    """
    data = request.get_json(silent=True) or {}
    terminal = TerminalService.record_heartbeat(terminal_id, data.get('current_media'))
    return jsonify(terminal.to_dict()), 200


@terminals_bp.route('/<terminal_id>/status', methods=['GET'])
def terminal_status(terminal_id):
    """
    Liveness summary.

    Returns:
        200: {"online", "should_be_powered", "is_down", "seconds_since_seen", ...}
        404: Terminal not found
    """
    return jsonify(TerminalService.get_liveness(terminal_id)), 200


@terminals_bp.route('/<terminal_id>/campaigns', methods=['GET'])
def terminal_campaigns(terminal_id):
    """
    Fallback campaigns: active, approved, targeting the terminal or global.

    Returns:
        200: {"campaigns": [...], "count": n}
        404: Terminal not found
    """
    campaigns = TerminalService.list_fallback_campaigns(terminal_id)
    return jsonify({
        'campaigns': [c.to_dict() for c in campaigns],
        'count': len(campaigns)
    }), 200


@terminals_bp.route('/<terminal_id>/playback', methods=['POST'])
def upload_playback(terminal_id):
    """
    Store a proof-of-play batch.

    Request Body:
        {"entries": [{"media_id": "...", "slot_index": 2, "played_at": "..."}, ...]}

    Returns:
        201: {"terminal_id": ..., "accepted": n}
        400: Malformed batch (nothing stored)
        404: Terminal not found
    """
    data = request.get_json(silent=True) or {}
    accepted = TerminalService.record_playback(terminal_id, data.get('entries'))
    return jsonify({'terminal_id': terminal_id, 'accepted': accepted}), 201


@terminals_bp.route('/<terminal_id>/playback', methods=['GET'])
def list_playback(terminal_id):
    """
    List recent proof-of-play records, newest first.

    Query Parameters:
        limit: Maximum records (default 100)

    Returns:
        200: {"playback": [...], "count": n}
    """
    logs = TerminalService.list_playback(terminal_id, limit=request.args.get('limit', 100, type=int))
    return jsonify({
        'playback': [log.to_dict() for log in logs],
        'count': len(logs)
    }), 200


@terminals_bp.route('/<terminal_id>', methods=['DELETE'])
def delete_terminal(terminal_id):
    """
    Delete a terminal.

    Returns:
        200: {"message": "Terminal deleted", "id": ...}
        404: Terminal not found
    """
    TerminalService.delete_terminal(terminal_id)
    return jsonify({'message': 'Terminal deleted', 'id': terminal_id}), 200
