"""
Tests for the TerminalPlayer session.

The session steps are driven directly through connect()/run_once() with a
fake clock, so no background threads are involved except in the lifecycle
tests at the end.
"""

from datetime import datetime

import pytest
from unittest.mock import MagicMock

from src.common.cms_client import CMSClientError
from src.player.command_channel import Command, CommandKind
from src.player.config import PlayerConfig
from src.player.display import DisplayStatus
from src.player.playback_log import PlaybackLogStore
from src.player.playlist_resolver import PlaylistSource
from src.player.player import TerminalPlayer
from src.player.state_machine import RotationState

NOON = datetime(2024, 1, 10, 12, 0)        # Wednesday
LATE = datetime(2024, 1, 10, 23, 0)


class WallClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def slot(index, media_id, duration):
    return {'slot_index': index, 'media_id': media_id, 'campaign_id': None, 'duration': duration}


@pytest.fixture
def terminal_record(cms):
    cms.terminals['term-1'] = {
        'id': 'term-1',
        'name': 'Lobby',
        'power_mode': 'auto',
        'operating_start': '08:00',
        'operating_end': '22:00',
        'operating_days': [1, 2, 3, 4, 5],
        'assigned_playlist_id': 'pl-1',
        'is_monitoring': False,
        'heartbeat_counter': 0,
    }
    cms.playlists['pl-1'] = {'id': 'pl-1', 'slots': [
        slot(0, 'm-g', 10),
        slot(2, 'm-a', 15),
        slot(3, 'm-b', 15),
    ]}
    cms.playlists['pl-2'] = {'id': 'pl-2', 'slots': [slot(2, 'm-c', 20)]}
    for media_id in ('m-g', 'm-a', 'm-b', 'm-c'):
        cms.add_media(media_id)
    return cms.terminals['term-1']


@pytest.fixture
def wall():
    return WallClock(NOON)


@pytest.fixture
def player_config(tmp_path):
    return PlayerConfig(str(tmp_path / "config"))


@pytest.fixture
def player(terminal_record, player_config, client, display, clock, wall):
    player = TerminalPlayer(
        'term-1',
        player_config,
        client=client,
        display=display,
        clock=clock,
        wall_clock=wall,
    )
    player.heartbeat = MagicMock()
    return player


def connected(player):
    assert player.connect() is True
    player.run_once(timeout=0)
    return player


class TestStartup:
    """Connecting and first playback."""

    def test_connect_resolves_and_plays(self, player, display):
        connected(player)

        assert player.rotation.state == RotationState.PLAYING
        assert player.rotation.current_index == 0
        assert display.current_url == "https://cdn.example.com/m-g"
        assert player.state.powered is True
        assert player.state.current_media == "m-g.jpg"

    def test_resolved_playlist_persisted(self, player, player_config):
        connected(player)

        reloaded = PlayerConfig(str(player_config.config_dir))
        assert reloaded.cached_playlist_id == 'pl-1'
        assert [item['media_id'] for item in reloaded.cached_items] == ['m-g', 'm-a', 'm-b']
        assert reloaded.cached_terminal['id'] == 'term-1'

    def test_unregistered_terminal_shows_error(self, cms, player, display):
        del cms.terminals['term-1']

        assert player.connect() is False
        assert display.status == DisplayStatus.ERROR

    def test_starts_in_standby_outside_hours(self, player, wall, display):
        wall.now = LATE

        connected(player)

        assert player.rotation.state == RotationState.STANDBY
        assert display.status == DisplayStatus.STANDBY

    def test_offline_start_from_cached_playlist(self, cms, client, player, player_config,
                                                display, clock, wall):
        connected(player)

        offline = TerminalPlayer(
            'term-1',
            PlayerConfig(str(player_config.config_dir)),
            client=client,
            display=display,
            clock=clock,
            wall_clock=wall,
        )
        offline.heartbeat = MagicMock()
        client.get_terminal.side_effect = CMSClientError("offline")

        assert offline.connect() is False
        offline.run_once(timeout=0)

        assert offline.get_status()['playlist_source'] == 'cached'
        assert len(offline.rotation.items) == 3
        assert offline.rotation.state == RotationState.PLAYING

        # CMS comes back: the cached playlist is replaced by a fresh resolution
        client.get_terminal.side_effect = lambda tid: cms.terminals.get(tid)
        clock.advance(5)
        offline.run_once(timeout=0)

        assert offline.get_status()['playlist_source'] == PlaylistSource.PLAYLIST.value
        assert offline.get_status()['connected'] is True


class TestCommands:
    """Reactions to remote changes."""

    def test_power_off_command_pauses_and_triggers_heartbeat(self, player, terminal_record):
        connected(player)

        player.commands.put(Command(
            CommandKind.TERMINAL_UPDATED,
            {'record': dict(terminal_record, power_mode='off')}
        ))
        player.run_once(timeout=0)

        assert player.rotation.state == RotationState.STANDBY
        player.heartbeat.trigger.assert_called_once()

    def test_heartbeat_echo_does_not_trigger_heartbeat(self, player, terminal_record):
        connected(player)

        player.commands.put(Command(
            CommandKind.TERMINAL_UPDATED,
            {'record': dict(terminal_record, heartbeat_counter=7, last_seen='now')}
        ))
        player.run_once(timeout=0)

        player.heartbeat.trigger.assert_not_called()
        assert player.rotation.state == RotationState.PLAYING

    def test_monitoring_flag_triggers_heartbeat(self, player, terminal_record):
        connected(player)

        player.commands.put(Command(
            CommandKind.TERMINAL_UPDATED,
            {'record': dict(terminal_record, is_monitoring=True)}
        ))
        player.run_once(timeout=0)

        player.heartbeat.trigger.assert_called_once()
        assert player.state.is_monitoring

    def test_playlist_reassignment_re_resolves(self, player, terminal_record):
        connected(player)

        player.commands.put(Command(
            CommandKind.TERMINAL_UPDATED,
            {'record': dict(terminal_record, assigned_playlist_id='pl-2')}
        ))
        player.run_once(timeout=0)

        assert [item.media_id for item in player.rotation.items] == ['m-c']
        player.heartbeat.trigger.assert_called_once()

    def test_slot_change_re_resolves(self, cms, player):
        connected(player)
        cms.playlists['pl-1']['slots'].append(slot(4, 'm-c', 15))

        player.commands.put(Command(CommandKind.PLAYLIST_CHANGED, {'playlist_id': 'pl-1'}))
        player.run_once(timeout=0)

        assert len(player.rotation.items) == 4

    def test_resolution_failure_keeps_current_playlist(self, client, player):
        connected(player)
        client.get_playlist.side_effect = CMSClientError("down")

        player.commands.put(Command(CommandKind.CAMPAIGN_CHANGED, {'campaign_id': 'c-1'}))
        player.run_once(timeout=0)

        assert len(player.rotation.items) == 3
        assert player.rotation.state == RotationState.PLAYING

    def test_terminal_deleted(self, player, display):
        connected(player)

        player.commands.put(Command(CommandKind.TERMINAL_DELETED, {}))
        player.run_once(timeout=0)

        assert player.rotation.state == RotationState.STANDBY
        assert display.status == DisplayStatus.ERROR

    def test_video_end_reaches_queue(self, player, display):
        display.video_ended()
        assert player.commands.get_nowait().kind == CommandKind.VIDEO_ENDED

    def test_heartbeat_record_posted_as_terminal_update(self, player, terminal_record):
        player._on_heartbeat_record(dict(terminal_record))
        assert player.commands.get_nowait().kind == CommandKind.TERMINAL_UPDATED

    def test_stop_command_ends_session_step(self, player):
        player.commands.put(Command(CommandKind.STOP))
        assert player.run_once(timeout=0) is False


class TestScheduleTimer:
    """Periodic schedule evaluation."""

    def test_standby_preserves_position(self, player, wall, clock, display):
        connected(player)
        player.rotation.step()
        assert player.rotation.current_index == 1

        wall.now = LATE
        clock.advance(10)
        player.run_once(timeout=0)

        assert player.rotation.state == RotationState.STANDBY
        assert player.state.powered is False

        wall.now = NOON
        clock.advance(10)
        player.run_once(timeout=0)

        assert player.rotation.state == RotationState.PLAYING
        assert player.rotation.current_index == 1
        assert display.current_url == "https://cdn.example.com/m-a"

    def test_next_timeout_is_nearest_deadline(self, player, clock):
        connected(player)

        # m-g plays for 10s, schedule check is due in 10s as well
        assert player.next_timeout() == 10

        clock.advance(4)
        assert player.next_timeout() == 6


class TestProofOfPlay:
    """Playback recording."""

    @pytest.fixture
    def recording_player(self, terminal_record, player_config, client, display, clock, wall, tmp_path):
        store = PlaybackLogStore(str(tmp_path / "playback.db"))
        player = TerminalPlayer(
            'term-1',
            player_config,
            client=client,
            display=display,
            clock=clock,
            wall_clock=wall,
            playback_log=store,
        )
        player.heartbeat = MagicMock()
        yield player
        store.close()

    def test_each_showing_recorded(self, recording_player, clock):
        connected(recording_player)
        clock.advance(10)
        recording_player.run_once(timeout=0)

        entries = [e for _, e in recording_player._playback_log.pending()]

        assert [e['media_id'] for e in entries] == ['m-g', 'm-a']
        assert entries[0]['playlist_id'] == 'pl-1'
        assert entries[0]['media_url'] == "https://cdn.example.com/m-g"
        assert entries[1]['slot_index'] == 2
        assert entries[1]['status'] == 'played'

    def test_flush_uploads_recorded_playback(self, cms, recording_player):
        connected(recording_player)

        assert recording_player.playback.flush() == 1

        assert cms.playback['term-1'][0]['media_id'] == 'm-g'
        assert recording_player.get_status()['playback']['uploaded_total'] == 1

    def test_nothing_recorded_in_standby(self, recording_player, wall):
        wall.now = LATE

        connected(recording_player)

        assert recording_player._playback_log.count() == 0

    def test_disabled_without_store(self, player):
        connected(player)

        assert player.playback is None
        assert player.get_status()['playback'] is None


class TestLifecycle:
    """Thread start/stop."""

    def test_start_and_stop(self, cms, terminal_record, player_config, client, display):
        terminal_record['power_mode'] = 'on'
        player = TerminalPlayer('term-1', player_config, client=client, display=display)

        assert player.start() is True
        assert player.is_running
        player.stop()

        assert not player.is_running
        assert player.rotation.state == RotationState.STANDBY
        assert not player.heartbeat.is_running()
