"""
Tests for PlaylistResolver.
"""

import pytest

from src.common.cms_client import CMSClientError
from src.player.playlist_resolver import (
    ItemType,
    PlaylistItem,
    PlaylistResolver,
    PlaylistSource,
)


def slot(index, media_id=None, campaign_id=None, duration=None):
    return {
        'slot_index': index,
        'media_id': media_id,
        'campaign_id': campaign_id,
        'duration': duration,
    }


@pytest.fixture
def terminal():
    return {'id': 'term-1', 'name': 'Lobby', 'assigned_playlist_id': 'pl-1'}


@pytest.fixture
def resolver(client):
    return PlaylistResolver(client)


class TestAssignedPlaylist:
    """Resolution from assigned playlist slots."""

    def test_items_ordered_by_slot_index_and_empty_slots_omitted(self, cms, resolver, terminal):
        cms.playlists['pl-1'] = {'id': 'pl-1', 'slots': [
            slot(7, 'm-wild', duration=20),
            slot(0, 'm-global', duration=10),
            slot(3),
            slot(2, 'm-local', duration=15),
        ]}

        resolved = resolver.resolve(terminal)

        assert resolved.source == PlaylistSource.PLAYLIST
        assert resolved.playlist_id == 'pl-1'
        assert [item.slot_index for item in resolved.items] == [0, 2, 7]
        assert [item.media_id for item in resolved.items] == ['m-global', 'm-local', 'm-wild']
        assert all(item.item_type == ItemType.MEDIA for item in resolved.items)

    def test_campaign_slot_kept_while_approved(self, cms, resolver, terminal):
        cms.campaigns['c-1'] = {'id': 'c-1', 'moderation_status': 'approved'}
        cms.playlists['pl-1'] = {'id': 'pl-1', 'slots': [slot(2, 'm-1', 'c-1', 15)]}

        resolved = resolver.resolve(terminal)

        assert len(resolved) == 1
        item = resolved.items[0]
        assert item.item_type == ItemType.CAMPAIGN
        assert item.campaign_id == 'c-1'

    @pytest.mark.parametrize("status", ["rejected", "expired", "pending"])
    def test_campaign_slot_dropped_when_not_approved(self, cms, resolver, terminal, status):
        cms.campaigns['c-1'] = {'id': 'c-1', 'moderation_status': status}
        cms.playlists['pl-1'] = {'id': 'pl-1', 'slots': [
            slot(2, 'm-1', 'c-1', 15),
            slot(3, 'm-2', None, 15),
        ]}

        resolved = resolver.resolve(terminal)

        assert [item.media_id for item in resolved.items] == ['m-2']

    def test_campaign_slot_dropped_when_campaign_missing(self, resolver, cms, terminal):
        cms.playlists['pl-1'] = {'id': 'pl-1', 'slots': [slot(2, 'm-1', 'gone', 15)]}
        assert resolver.resolve(terminal).is_empty

    def test_campaign_looked_up_once_per_pass(self, cms, client, resolver, terminal):
        cms.campaigns['c-1'] = {'id': 'c-1', 'moderation_status': 'approved'}
        cms.playlists['pl-1'] = {'id': 'pl-1', 'slots': [
            slot(2, 'm-1', 'c-1', 15),
            slot(3, 'm-1', 'c-1', 15),
        ]}

        resolver.resolve(terminal)

        client.get_campaign.assert_called_once_with('c-1')

    def test_duration_falls_back_to_media_then_default(self, cms, resolver, terminal):
        cms.add_media('m-long', duration=25)
        cms.add_media('m-none', duration=None)
        cms.playlists['pl-1'] = {'id': 'pl-1', 'slots': [
            slot(2, 'm-long'),
            slot(3, 'm-none'),
            slot(4, 'm-missing'),
            slot(5, 'm-long', duration=12),
        ]}

        durations = [item.duration for item in resolver.resolve(terminal).items]

        assert durations == [25.0, 10.0, 10.0, 12.0]

    def test_missing_playlist_uses_fallback(self, cms, resolver, terminal):
        cms.fallback['term-1'] = [
            {'id': 'c-9', 'moderation_status': 'approved', 'is_active': True, 'v_media_id': 'm-9'},
        ]

        resolved = resolver.resolve(terminal)

        assert resolved.source == PlaylistSource.FALLBACK
        assert resolved.items[0].campaign_id == 'c-9'

    def test_transient_error_propagates(self, client, resolver, terminal):
        client.get_playlist.side_effect = CMSClientError("down")
        with pytest.raises(CMSClientError):
            resolver.resolve(terminal)


class TestFallback:
    """Resolution without an assigned playlist."""

    def test_fallback_filters_and_uses_default_duration(self, cms, resolver):
        cms.fallback['term-2'] = [
            {'id': 'c-1', 'moderation_status': 'approved', 'is_active': True, 'v_media_id': 'm-1'},
            {'id': 'c-2', 'moderation_status': 'rejected', 'is_active': False, 'v_media_id': 'm-2'},
            {'id': 'c-3', 'moderation_status': 'approved', 'is_active': True, 'v_media_id': None},
            {'id': 'c-4', 'moderation_status': 'approved', 'is_active': True, 'v_media_id': 'm-4'},
        ]

        resolved = resolver.resolve({'id': 'term-2', 'assigned_playlist_id': None})

        assert resolved.source == PlaylistSource.FALLBACK
        assert [item.campaign_id for item in resolved.items] == ['c-1', 'c-4']
        assert all(item.duration == 10 for item in resolved.items)
        assert all(item.item_type == ItemType.CAMPAIGN for item in resolved.items)

    def test_fallback_empty(self, resolver):
        resolved = resolver.resolve({'id': 'term-3'})
        assert resolved.is_empty


class TestPlaylistItem:
    """Serialization used for the offline playlist cache."""

    def test_dict_round_trip(self):
        item = PlaylistItem(ItemType.CAMPAIGN, 15.0, 'm-1', 'c-1', 4, 'local')
        assert PlaylistItem.from_dict(item.to_dict()) == item
