"""
CMS Routes Package

Blueprint registration for all API route modules:
- Terminals: Terminal records, settings, heartbeats and liveness
- Playlists: 13-slot playlists and their slot rows
- Campaigns: Moderation, swaps, expiry and deletion
- Media: Media references and wildcard propagation
"""

from cms.routes.terminals import terminals_bp
from cms.routes.playlists import playlists_bp
from cms.routes.campaigns import campaigns_bp
from cms.routes.media import media_bp

__all__ = [
    'terminals_bp',
    'playlists_bp',
    'campaigns_bp',
    'media_bp',
]
