"""
Deployment configuration for the terminal player.
Loads settings from YAML files with environment overrides.
"""

import os
import yaml
from pathlib import Path
from typing import Any, Dict, Optional


class Config:
    """Manages deployment configuration from YAML files."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration.

        Args:
            config_path: Path to config file. If None, uses default_config.yaml
        """
        if config_path is None:
            project_root = Path(__file__).parent.parent.parent
            config_path = project_root / "config" / "default_config.yaml"

        self.config_path = Path(config_path)
        self._config: Dict[str, Any] = {}
        self.load()

    def load(self) -> None:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        with open(self.config_path, 'r') as f:
            self._config = yaml.safe_load(f) or {}

        self._apply_env_overrides()

    def _apply_env_overrides(self) -> None:
        """Override config values from environment variables."""
        if 'DOOH_CMS_URL' in os.environ:
            self.set('cms.base_url', os.environ['DOOH_CMS_URL'])

        if 'DOOH_TERMINAL_ID' in os.environ:
            self.set('terminal.id', os.environ['DOOH_TERMINAL_ID'])

        if 'DOOH_CHANGE_FEED_HOST' in os.environ:
            self.set('ipc.change_feed_host', os.environ['DOOH_CHANGE_FEED_HOST'])

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key (e.g., 'cms.base_url')
            default: Default value if key not found

        Returns:
            Configuration value or default

        Example:
            >>> config = Config()
            >>> config.get('player.heartbeat_interval')
            30
        """
        value = self._config

        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any) -> None:
        """
        Set configuration value using dot notation.

        Args:
            key: Configuration key (e.g., 'cms.base_url')
            value: Value to set
        """
        keys = key.split('.')
        config = self._config

        for k in keys[:-1]:
            if not isinstance(config.get(k), dict):
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value

    @property
    def terminal_id(self) -> Optional[str]:
        """Get configured terminal ID, if any."""
        return self.get('terminal.id')

    @property
    def cms_base_url(self) -> str:
        """Get CMS base URL."""
        return self.get('cms.base_url', 'http://localhost:5001')

    @property
    def change_feed_endpoint(self) -> str:
        """ZeroMQ endpoint of the CMS change feed."""
        host = self.get('ipc.change_feed_host', 'localhost')
        port = self.get('ipc.change_feed_port', 5560)
        return f"tcp://{host}:{port}"

    def __repr__(self) -> str:
        return f"Config(path={self.config_path})"
