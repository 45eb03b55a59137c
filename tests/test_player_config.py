"""Unit tests for the configuration modules.

Tests YAML deployment config loading, dot-notation access, environment
overrides, and the JSON runtime config used for offline start.
"""

import json
import os
import pytest
import tempfile
from pathlib import Path
from unittest import mock

import yaml

from src.common.config import Config
from src.player.config import PlayerConfig


SAMPLE_CONFIG = {
    'terminal': {
        'id': 'term-yaml',
    },
    'cms': {
        'base_url': 'https://cms.example.com',
        'timeout': 5
    },
    'ipc': {
        'change_feed_host': 'cms.example.com',
        'change_feed_port': 6000
    },
    'player': {
        'heartbeat_interval': 60,
        'cache_dir': '/tmp/dooh-cache'
    }
}

ENV_KEYS = ('DOOH_CMS_URL', 'DOOH_TERMINAL_ID', 'DOOH_CHANGE_FEED_HOST')


@pytest.fixture(autouse=True)
def clean_env():
    """Keep deployment env variables out of these tests."""
    saved = {key: os.environ.pop(key) for key in ENV_KEYS if key in os.environ}
    yield
    os.environ.update(saved)


@pytest.fixture
def temp_config_file():
    """Create a temporary config file for testing."""
    with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
        yaml.dump(SAMPLE_CONFIG, f)
        temp_path = f.name
    yield temp_path
    if os.path.exists(temp_path):
        os.unlink(temp_path)


@pytest.fixture
def config(temp_config_file):
    """Create a Config instance with test configuration."""
    return Config(temp_config_file)


class TestConfigLoading:
    """Tests for YAML config loading."""

    def test_load_valid_config(self, config):
        assert config.get('terminal.id') == 'term-yaml'

    def test_load_missing_config_raises_error(self):
        with pytest.raises(FileNotFoundError) as exc_info:
            Config('/nonexistent/path/config.yaml')
        assert 'Config file not found' in str(exc_info.value)

    def test_default_config_file_ships_with_repo(self):
        """The bundled default_config.yaml loads without a path."""
        config = Config()
        assert config.get('ipc.change_feed_port') == 5560
        assert config.get('player.idle_poll_interval') == 5

    def test_empty_config_file(self):
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            f.write('')
            temp_path = f.name

        try:
            config = Config(temp_path)
            assert config.get('any.key') is None
            assert config.cms_base_url == 'http://localhost:5001'
        finally:
            os.unlink(temp_path)


class TestConfigAccess:
    """Tests for dot-notation get/set."""

    def test_get_nested_key(self, config):
        assert config.get('cms.timeout') == 5

    def test_get_missing_key_returns_default(self, config):
        assert config.get('nonexistent.key') is None
        assert config.get('nonexistent.key', 42) == 42

    def test_get_partial_path_returns_default(self, config):
        assert config.get('terminal.id.nonexistent') is None

    def test_set_creates_nested_structure(self, config):
        config.set('new_section.nested.value', 'test')
        assert config.get('new_section.nested.value') == 'test'

    def test_set_replaces_scalar_with_section(self, config):
        config.set('terminal.id.sub', 'x')
        assert config.get('terminal.id') == {'sub': 'x'}


class TestConfigProperties:
    """Tests for property accessors."""

    def test_terminal_id(self, config):
        assert config.terminal_id == 'term-yaml'

    def test_cms_base_url(self, config):
        assert config.cms_base_url == 'https://cms.example.com'

    def test_change_feed_endpoint(self, config):
        assert config.change_feed_endpoint == 'tcp://cms.example.com:6000'


class TestEnvironmentOverrides:
    """Tests for environment variable overrides."""

    def test_cms_url_override(self, temp_config_file):
        with mock.patch.dict(os.environ, {'DOOH_CMS_URL': 'http://env-cms:5001'}):
            config = Config(temp_config_file)
            assert config.cms_base_url == 'http://env-cms:5001'

    def test_terminal_id_override(self, temp_config_file):
        with mock.patch.dict(os.environ, {'DOOH_TERMINAL_ID': 'term-env'}):
            assert Config(temp_config_file).terminal_id == 'term-env'

    def test_change_feed_host_override(self, temp_config_file):
        with mock.patch.dict(os.environ, {'DOOH_CHANGE_FEED_HOST': '10.0.0.5'}):
            config = Config(temp_config_file)
            assert config.change_feed_endpoint == 'tcp://10.0.0.5:6000'


@pytest.fixture
def config_dir(tmp_path):
    """Directory for the JSON runtime config."""
    return tmp_path / "runtime"


class TestPlayerConfigDefaults:
    """Timing values and their sources."""

    def test_defaults_without_files(self, config_dir):
        config = PlayerConfig(str(config_dir))

        assert config.heartbeat_interval == 30
        assert config.schedule_check_interval == 10
        assert config.item_retry_delay == 3.0
        assert config.item_max_attempts == 3
        assert config.idle_poll_interval == 5.0
        assert config.default_item_duration == 10.0
        assert config.cms_url == 'http://localhost:5001'
        assert config.cached_items == []
        assert config.change_feed_endpoint is None
        assert config.playback_flush_interval == 300
        assert config.playback_log_path == config_dir / "playback.db"

    def test_deployment_defaults(self, config_dir):
        config = PlayerConfig(str(config_dir), defaults={'heartbeat_interval': 60})
        assert config.heartbeat_interval == 60
        assert config.schedule_check_interval == 10

    def test_settings_file_wins_over_deployment(self, config_dir):
        config_dir.mkdir()
        (config_dir / "settings.json").write_text(json.dumps({'heartbeat_interval': 15}))

        config = PlayerConfig(str(config_dir), defaults={'heartbeat_interval': 60})

        assert config.heartbeat_interval == 15

    def test_device_file(self, config_dir):
        config_dir.mkdir()
        (config_dir / "device.json").write_text(json.dumps({
            'terminal_id': 'term-7',
            'cms_url': 'http://cms:5001',
            'change_feed_endpoint': 'tcp://cms:5560',
        }))

        config = PlayerConfig(str(config_dir))

        assert config.terminal_id == 'term-7'
        assert config.cms_url == 'http://cms:5001'
        assert config.change_feed_endpoint == 'tcp://cms:5560'

    def test_env_overrides_device_file(self, config_dir):
        config_dir.mkdir()
        (config_dir / "device.json").write_text(json.dumps({'terminal_id': 'term-7'}))

        with mock.patch.dict(os.environ, {'DOOH_TERMINAL_ID': 'term-env'}):
            config = PlayerConfig(str(config_dir))

        assert config.terminal_id == 'term-env'


class TestPlayerConfigPersistence:
    """Resolved playlist persistence for offline start."""

    def test_store_resolved_playlist(self, config_dir):
        config = PlayerConfig(str(config_dir))
        items = [{'item_type': 'media', 'duration': 15, 'media_id': 'm-1'}]
        terminal = {'id': 'term-1', 'power_mode': 'on'}

        config.store_resolved_playlist('pl-1', items, '2024-01-10T12:00:00+00:00', terminal)

        data = json.loads((config_dir / "playlist.json").read_text())
        assert data['playlist_id'] == 'pl-1'
        assert data['items'] == items
        assert data['terminal'] == terminal

        reloaded = PlayerConfig(str(config_dir))
        assert reloaded.cached_items == items
        assert reloaded.cached_playlist_id == 'pl-1'
        assert reloaded.cached_terminal == terminal

    def test_fallback_resolution_has_no_playlist_id(self, config_dir):
        config = PlayerConfig(str(config_dir))
        config.store_resolved_playlist(None, [], '2024-01-10T12:00:00+00:00')

        assert PlayerConfig(str(config_dir)).cached_playlist_id is None

    def test_save_settings(self, config_dir):
        config = PlayerConfig(str(config_dir))
        config.set_settings_config({'idle_poll_interval': 2})
        config.save_settings()

        assert PlayerConfig(str(config_dir)).idle_poll_interval == 2.0

    def test_repr(self, config_dir):
        assert 'PlayerConfig' in repr(PlayerConfig(str(config_dir)))
