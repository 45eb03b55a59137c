"""
Tests for terminal settings, heartbeats, liveness and the fallback query.
"""

from datetime import datetime, timedelta, timezone

import pytest

from cms.models import db, Campaign, Terminal
from cms.services.campaign_service import CampaignService
from cms.services.errors import NotFoundError, ValidationError
from cms.services.terminal_service import TerminalService


# Wednesday noon, inside the default Monday-Friday 08:00-22:00 window
WEEKDAY_NOON = datetime(2024, 1, 10, 12, 0)
SUNDAY_NOON = datetime(2024, 1, 14, 12, 0)


class TestCreateAndSettings:
    """Tests for terminal registration and settings updates."""

    def test_create_with_defaults(self, app):
        terminal = TerminalService.create_terminal('Lobby', terminal_id='lobby-01')

        assert terminal.id == 'lobby-01'
        assert terminal.power_mode == 'auto'
        assert terminal.operating_start == '08:00'
        assert terminal.operating_end == '22:00'
        assert terminal.operating_days == [1, 2, 3, 4, 5]
        assert terminal.heartbeat_counter == 0

    def test_create_duplicate_id(self, sample_terminal):
        with pytest.raises(ValidationError):
            TerminalService.create_terminal('Again', terminal_id='term-1')

    def test_update_schedule(self, sample_terminal):
        terminal = TerminalService.update_settings('term-1', {
            'power_mode': 'on',
            'operating_start': '06:30',
            'operating_end': '23:00',
            'operating_days': [6, 0, 0],
        })

        assert terminal.power_mode == 'on'
        assert terminal.operating_start == '06:30'
        assert terminal.operating_days == [0, 6]

    @pytest.mark.parametrize('changes', [
        {'power_mode': 'sleep'},
        {'operating_start': '25:00'},
        {'operating_end': 900},
        {'operating_days': [7]},
        {'operating_days': 'weekdays'},
        {'is_monitoring': 'yes'},
        {'name': ''},
        {'volume': 10},
        {},
    ])
    def test_invalid_settings(self, sample_terminal, changes):
        with pytest.raises(ValidationError):
            TerminalService.update_settings('term-1', changes)

    def test_assign_unknown_playlist(self, sample_terminal):
        with pytest.raises(NotFoundError):
            TerminalService.update_settings('term-1', {'assigned_playlist_id': 'missing'})

    def test_unassign_playlist(self, sample_terminal):
        terminal = TerminalService.update_settings('term-1', {'assigned_playlist_id': None})

        assert terminal.assigned_playlist_id is None

    def test_list_by_group(self, make_terminal):
        make_terminal('a', group='mall')
        make_terminal('b', group='airport')

        assert [t.id for t in TerminalService.list_terminals(group='mall')] == ['a']
        assert len(TerminalService.list_terminals()) == 2


class TestHeartbeat:
    """Tests for heartbeat recording and liveness."""

    def test_heartbeat_updates_liveness_fields(self, sample_terminal):
        TerminalService.record_heartbeat('term-1')
        terminal = TerminalService.record_heartbeat('term-1', current_media='promo.mp4')

        assert terminal.heartbeat_counter == 2
        assert terminal.last_seen is not None
        assert terminal.current_media == 'promo.mp4'

    def test_heartbeat_unknown_terminal(self, app):
        with pytest.raises(NotFoundError):
            TerminalService.record_heartbeat('ghost')

    def test_offline_after_threshold(self, sample_terminal):
        now = datetime.now(timezone.utc)
        sample_terminal.last_seen = now - timedelta(seconds=70)
        db.session.commit()

        status = TerminalService.get_liveness('term-1', now=now, local_now=WEEKDAY_NOON)

        assert status['online'] is False
        assert status['should_be_powered'] is True
        assert status['is_down'] is True
        assert status['seconds_since_seen'] == 70.0

    def test_online_within_threshold(self, sample_terminal):
        now = datetime.now(timezone.utc)
        sample_terminal.last_seen = now - timedelta(seconds=10)
        db.session.commit()

        status = TerminalService.get_liveness('term-1', now=now, local_now=WEEKDAY_NOON)

        assert status['online'] is True
        assert status['is_down'] is False

    def test_offline_outside_hours_is_not_down(self, sample_terminal):
        status = TerminalService.get_liveness('term-1', local_now=SUNDAY_NOON)

        assert status['online'] is False
        assert status['last_seen'] is None
        assert status['should_be_powered'] is False
        assert status['is_down'] is False


class TestFallbackCampaigns:
    """Tests for TerminalService.list_fallback_campaigns."""

    def test_targeted_and_global_only(self, sample_media, sample_terminal, make_campaign):
        mine = make_campaign(sample_media, targets=['term-1'], name='mine')
        make_campaign(sample_media, targets=['other'], name='theirs')
        everyone = make_campaign(sample_media, is_global=True, name='everyone')
        paused = make_campaign(sample_media, targets=['term-1'], name='paused', is_active=False)
        pending = make_campaign(sample_media, targets=['term-1'], name='pending')
        for campaign in (mine, everyone, paused):
            CampaignService.approve(campaign.id)

        names = {c.name for c in TerminalService.list_fallback_campaigns('term-1')}

        assert names == {'mine', 'everyone'}
        assert pending.moderation_status == 'pending'


class TestDeleteTerminal:
    """Tests for TerminalService.delete_terminal."""

    def test_removes_from_campaign_targets(self, sample_media, sample_terminal, make_campaign):
        campaign = make_campaign(sample_media, targets=['term-1', 'term-2'])

        TerminalService.delete_terminal('term-1')

        assert db.session.get(Terminal, 'term-1') is None
        assert db.session.get(Campaign, campaign.id).target_terminals == ['term-2']

    def test_unknown(self, app):
        with pytest.raises(NotFoundError):
            TerminalService.delete_terminal('ghost')


class TestPlayback:
    """Tests for proof-of-play uploads."""

    def entry(self, **fields):
        entry = {
            'media_id': 'm-1',
            'playlist_id': 'pl-1',
            'media_name': 'spot.mp4',
            'media_url': 'https://cdn.example.com/spot.mp4',
            'slot_index': 2,
            'slot_type': 'local',
            'played_at': '2024-01-10T12:00:00Z',
        }
        entry.update(fields)
        return entry

    def test_stores_batch(self, sample_terminal):
        stored = TerminalService.record_playback('term-1', [
            self.entry(),
            self.entry(slot_index=3, played_at='2024-01-10T12:00:15+00:00'),
        ])

        assert stored == 2
        logs = TerminalService.list_playback('term-1')
        assert [log.slot_index for log in logs] == [3, 2]
        assert logs[1].status == 'played'
        assert logs[1].played_at == datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)

    def test_missing_played_at_defaults_to_now(self, sample_terminal):
        TerminalService.record_playback('term-1', [self.entry(played_at=None, slot_index=None)])

        log = TerminalService.list_playback('term-1')[0]
        assert log.slot_index is None
        assert datetime.now(timezone.utc) - log.played_at < timedelta(minutes=1)

    @pytest.mark.parametrize('bad', [
        {'status': 'watched'},
        {'slot_index': 13},
        {'slot_index': True},
        {'played_at': 'yesterday'},
        {'played_at': 1704888000},
    ])
    def test_malformed_entry_rejects_whole_batch(self, sample_terminal, bad):
        with pytest.raises(ValidationError):
            TerminalService.record_playback('term-1', [self.entry(), self.entry(**bad)])

        assert TerminalService.list_playback('term-1') == []

    def test_batch_shape(self, sample_terminal, app):
        with pytest.raises(ValidationError):
            TerminalService.record_playback('term-1', [])
        with pytest.raises(ValidationError):
            TerminalService.record_playback('term-1', {'media_id': 'm-1'})
        with pytest.raises(ValidationError):
            TerminalService.record_playback('term-1', [self.entry()] * (app.config['PLAYBACK_BATCH_MAX'] + 1))

    def test_unknown_terminal(self, app):
        with pytest.raises(NotFoundError):
            TerminalService.record_playback('ghost', [self.entry()])

    def test_records_outlive_terminal(self, sample_terminal):
        TerminalService.record_playback('term-1', [self.entry()])

        TerminalService.delete_terminal('term-1')

        assert len(TerminalService.list_playback('term-1')) == 1
