"""
Pytest Fixtures for Terminal Player Tests

Provides a controllable clock, a mocked CMS client backed by in-memory
records, and a recording display used across the player test files.
"""

import os
import sys
from datetime import datetime
from typing import Any, Dict, Optional

import pytest
from unittest.mock import MagicMock

# Add the repository root to the path so `src` imports resolve
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.common.cms_client import CMSClient
from src.player.display import HeadlessDisplay


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeCMS:
    """In-memory records served through a mocked CMSClient."""

    def __init__(self):
        self.terminals: Dict[str, Dict[str, Any]] = {}
        self.playlists: Dict[str, Dict[str, Any]] = {}
        self.campaigns: Dict[str, Dict[str, Any]] = {}
        self.media: Dict[str, Dict[str, Any]] = {}
        self.fallback: Dict[str, list] = {}
        self.playback: Dict[str, list] = {}

    def client(self) -> MagicMock:
        client = MagicMock(spec=CMSClient)
        client.get_terminal.side_effect = lambda tid: self.terminals.get(tid)
        client.get_playlist.side_effect = lambda pid: self.playlists.get(pid)
        client.get_campaign.side_effect = lambda cid: self.campaigns.get(cid)
        client.get_media.side_effect = lambda mid: self.media.get(mid)
        client.list_terminal_campaigns.side_effect = lambda tid: self.fallback.get(tid, [])
        client.send_heartbeat.side_effect = self._heartbeat
        client.report_playback.side_effect = self._playback
        return client

    def _heartbeat(self, terminal_id: str, current_media: Optional[str] = None):
        terminal = self.terminals.get(terminal_id)
        if terminal is None:
            return None
        terminal['heartbeat_counter'] = terminal.get('heartbeat_counter', 0) + 1
        if current_media is not None:
            terminal['current_media'] = current_media
        return dict(terminal)

    def _playback(self, terminal_id: str, entries: list):
        if terminal_id not in self.terminals:
            return None
        self.playback.setdefault(terminal_id, []).extend(entries)
        return {'terminal_id': terminal_id, 'accepted': len(entries)}

    def add_media(self, media_id: str, media_type: str = 'image', duration=None, url=None):
        self.media[media_id] = {
            'id': media_id,
            'name': f"{media_id}.{'mp4' if media_type == 'video' else 'jpg'}",
            'url': url if url is not None else f"https://cdn.example.com/{media_id}",
            'type': media_type,
            'duration': duration,
        }
        return self.media[media_id]


@pytest.fixture
def clock():
    """Controllable monotonic clock."""
    return FakeClock()


@pytest.fixture
def cms():
    """In-memory CMS records."""
    return FakeCMS()


@pytest.fixture
def client(cms):
    """Mocked CMSClient backed by the in-memory records."""
    return cms.client()


@pytest.fixture
def display():
    """Display that records what is on screen."""
    return HeadlessDisplay()


@pytest.fixture
def weekday_noon():
    """Wednesday 2024-01-10 12:00 local time."""
    return datetime(2024, 1, 10, 12, 0)
