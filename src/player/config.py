"""
JSON runtime configuration for the terminal player.
Handles device.json, playlist.json, and settings.json files.

device.json holds terminal identity, settings.json holds timing overrides,
and playlist.json holds the last resolved playlist so a terminal can start
playing before the CMS is reachable.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional


class PlayerConfig:
    """Manages JSON configuration files for the terminal player."""

    DEFAULT_CONFIG_DIR = "/var/lib/dooh/config"

    # Fallback timing values (seconds) when neither settings.json nor the
    # deployment defaults provide one
    DEFAULT_SETTINGS: Dict[str, Any] = {
        'heartbeat_interval': 30,
        'schedule_check_interval': 10,
        'item_retry_delay': 3,
        'item_max_attempts': 3,
        'idle_poll_interval': 5,
        'default_item_duration': 10,
        'cache_dir': '/var/lib/dooh/cache',
        'playback_flush_interval': 300,
    }

    def __init__(
        self,
        config_dir: Optional[str] = None,
        defaults: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize configuration manager.

        Args:
            config_dir: Path to config directory. If None, uses DEFAULT_CONFIG_DIR
            defaults: Deployment-level settings (the ``player`` section of the
                YAML config) used where settings.json is silent
        """
        if config_dir is None:
            config_dir = self.DEFAULT_CONFIG_DIR

        self.config_dir = Path(config_dir)
        self._defaults: Dict[str, Any] = dict(self.DEFAULT_SETTINGS)
        if defaults:
            self._defaults.update(defaults)

        self._device: Dict[str, Any] = {}
        self._playlist: Dict[str, Any] = {}
        self._settings: Dict[str, Any] = {}

        if self.config_dir.exists():
            self.load_all()
        else:
            self._apply_env_overrides()

    def _load_json(self, filename: str) -> Dict[str, Any]:
        """
        Load a JSON config file.

        Args:
            filename: Name of the JSON file to load

        Returns:
            Parsed JSON data as dictionary (empty if missing)
        """
        file_path = self.config_dir / filename
        if not file_path.exists():
            return {}

        with open(file_path, 'r') as f:
            return json.load(f)

    def _save_json(self, filename: str, data: Dict[str, Any]) -> None:
        """
        Save data to a JSON config file.

        Args:
            filename: Name of the JSON file to save
            data: Dictionary to save as JSON
        """
        self.config_dir.mkdir(parents=True, exist_ok=True)

        file_path = self.config_dir / filename
        with open(file_path, 'w') as f:
            json.dump(data, f, indent=2)

    def load_all(self) -> None:
        """Load all configuration files."""
        self._device = self._load_json("device.json")
        self._playlist = self._load_json("playlist.json")
        self._settings = self._load_json("settings.json")

        self._apply_env_overrides()

    def _apply_env_overrides(self) -> None:
        """Override config values from environment variables."""
        if 'DOOH_TERMINAL_ID' in os.environ:
            self._device['terminal_id'] = os.environ['DOOH_TERMINAL_ID']

        if 'DOOH_CMS_URL' in os.environ:
            self._device['cms_url'] = os.environ['DOOH_CMS_URL']

    def _setting(self, key: str) -> Any:
        return self._settings.get(key, self._defaults.get(key))

    # Device config accessors

    @property
    def terminal_id(self) -> str:
        """Get terminal ID."""
        return self._device.get('terminal_id', '')

    @terminal_id.setter
    def terminal_id(self, value: str) -> None:
        self._device['terminal_id'] = value

    @property
    def cms_url(self) -> str:
        """Get CMS base URL."""
        return self._device.get('cms_url', 'http://localhost:5001')

    @cms_url.setter
    def cms_url(self, value: str) -> None:
        self._device['cms_url'] = value

    @property
    def change_feed_endpoint(self) -> Optional[str]:
        """Get ZeroMQ endpoint of the CMS change feed, if configured."""
        return self._device.get('change_feed_endpoint')

    @change_feed_endpoint.setter
    def change_feed_endpoint(self, value: str) -> None:
        self._device['change_feed_endpoint'] = value

    # Settings accessors

    @property
    def heartbeat_interval(self) -> int:
        return int(self._setting('heartbeat_interval'))

    @property
    def schedule_check_interval(self) -> int:
        return int(self._setting('schedule_check_interval'))

    @property
    def item_retry_delay(self) -> float:
        return float(self._setting('item_retry_delay'))

    @property
    def item_max_attempts(self) -> int:
        return int(self._setting('item_max_attempts'))

    @property
    def idle_poll_interval(self) -> float:
        return float(self._setting('idle_poll_interval'))

    @property
    def default_item_duration(self) -> float:
        return float(self._setting('default_item_duration'))

    @property
    def cache_dir(self) -> str:
        """Get local media cache directory."""
        return self._setting('cache_dir')

    @property
    def playback_flush_interval(self) -> int:
        return int(self._setting('playback_flush_interval'))

    @property
    def playback_log_path(self) -> Path:
        """SQLite file buffering proof-of-play records until upload."""
        return self.config_dir / "playback.db"

    # Playlist config accessors

    @property
    def cached_items(self) -> List[Dict[str, Any]]:
        """Get the last resolved playlist items (for offline start)."""
        return self._playlist.get('items', [])

    @property
    def cached_playlist_id(self) -> Optional[str]:
        """Get the playlist ID the cached items were resolved from."""
        return self._playlist.get('playlist_id')

    @property
    def cached_terminal(self) -> Optional[Dict[str, Any]]:
        """Get the terminal record the cached items were resolved for."""
        return self._playlist.get('terminal')

    def store_resolved_playlist(
        self,
        playlist_id: Optional[str],
        items: List[Dict[str, Any]],
        resolved_at: str,
        terminal: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Persist the latest resolved playlist to playlist.json.

        Args:
            playlist_id: Assigned playlist ID (None for fallback resolution)
            items: Serialized playlist items
            resolved_at: ISO timestamp of the resolution pass
            terminal: Terminal record used for the pass (schedule for offline start)
        """
        self._playlist = {
            'playlist_id': playlist_id,
            'items': items,
            'resolved_at': resolved_at,
            'terminal': terminal,
        }
        self.save_playlist()

    # Raw access and persistence

    def get_device_config(self) -> Dict[str, Any]:
        """Get raw device configuration dictionary."""
        return self._device.copy()

    def get_settings_config(self) -> Dict[str, Any]:
        """Get raw settings configuration dictionary."""
        return self._settings.copy()

    def set_settings_config(self, config: Dict[str, Any]) -> None:
        """Set settings configuration from dictionary."""
        self._settings = config.copy()

    def save_device(self) -> None:
        """Save device configuration to file."""
        self._save_json("device.json", self._device)

    def save_playlist(self) -> None:
        """Save playlist configuration to file."""
        self._save_json("playlist.json", self._playlist)

    def save_settings(self) -> None:
        """Save settings configuration to file."""
        self._save_json("settings.json", self._settings)

    def save_all(self) -> None:
        """Save all configuration files."""
        self.save_device()
        self.save_playlist()
        self.save_settings()

    def __repr__(self) -> str:
        return f"PlayerConfig(config_dir={self.config_dir})"

