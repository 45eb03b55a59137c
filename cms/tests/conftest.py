"""
Pytest configuration and fixtures for CMS tests.

This module provides shared fixtures for testing:
- Flask application with test configuration
- In-memory SQLite database
- Test client
- Factories for terminals, playlists, media and campaigns
"""

import os
import sys

import pytest

# Add project root to path for cms package imports
# The cms directory is a package, so we need the parent (repo root) in path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from cms.app import create_app
from cms.models import (
    db,
    Campaign,
    Media,
    Playlist,
    PlaylistSlot,
    Terminal,
    slot_type_for_index,
)


@pytest.fixture(scope='function')
def app():
    """
    Create a Flask application configured for testing.

    This fixture provides an isolated Flask app with:
    - In-memory SQLite database
    - Testing mode enabled (change feed publisher off)
    - Clean database tables

    Yields:
        Flask application instance
    """
    application = create_app(config_name='testing')
    application.config['TESTING'] = True

    # Create all tables in test database
    with application.app_context():
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """
    Create a test client for the Flask application.

    Args:
        app: Flask application fixture

    Yields:
        Flask test client
    """
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """
    Provide a database session for testing.

    Args:
        app: Flask application fixture

    Yields:
        SQLAlchemy session
    """
    with app.app_context():
        yield db.session


@pytest.fixture(scope='function')
def make_media(db_session):
    """Factory for Media rows."""
    def _make(name='spot.mp4', duration=12, media_type='video'):
        media = Media(name=name, url=f'https://cdn.example.com/{name}', type=media_type, duration=duration)
        db_session.add(media)
        db_session.commit()
        return media
    return _make


@pytest.fixture(scope='function')
def make_playlist(db_session):
    """
    Factory for Playlist rows.

    ``occupied`` maps slot indices to media IDs for slots that should start filled.
    """
    def _make(name='Mall North', occupied=None):
        playlist = Playlist(name=name)
        db_session.add(playlist)
        db_session.flush()
        for slot_index, media_id in (occupied or {}).items():
            db_session.add(PlaylistSlot(
                playlist_id=playlist.id,
                slot_index=slot_index,
                slot_type=slot_type_for_index(slot_index).value,
                media_id=media_id,
                duration=10,
            ))
        db_session.commit()
        return playlist
    return _make


@pytest.fixture(scope='function')
def make_terminal(db_session):
    """Factory for Terminal rows."""
    def _make(terminal_id, playlist=None, name=None, **fields):
        terminal = Terminal(
            id=terminal_id,
            name=name or f'Terminal {terminal_id}',
            assigned_playlist_id=playlist.id if playlist is not None else None,
            **fields
        )
        db_session.add(terminal)
        db_session.commit()
        return terminal
    return _make


@pytest.fixture(scope='function')
def make_campaign(db_session):
    """Factory for pending Campaign rows."""
    def _make(media, targets=None, is_global=False, name='Spring sale', **fields):
        campaign = Campaign(
            name=name,
            v_media_id=media.id,
            target_terminals=list(targets or []),
            is_global=is_global,
            **fields
        )
        db_session.add(campaign)
        db_session.commit()
        return campaign
    return _make


@pytest.fixture(scope='function')
def sample_media(make_media):
    """A 12 second video."""
    return make_media()


@pytest.fixture(scope='function')
def sample_playlist(make_playlist):
    """An empty playlist."""
    return make_playlist()


@pytest.fixture(scope='function')
def sample_terminal(make_terminal, sample_playlist):
    """A terminal assigned to the sample playlist."""
    return make_terminal('term-1', sample_playlist, name='Lobby')


@pytest.fixture(scope='function')
def read_slots(db_session):
    """Read a playlist's slot rows keyed by slot_index, fresh from the database."""
    def _read(playlist_id):
        db_session.expire_all()
        rows = db_session.execute(
            db.select(PlaylistSlot).where(PlaylistSlot.playlist_id == playlist_id)
        ).scalars()
        return {slot.slot_index: slot for slot in rows}
    return _read
