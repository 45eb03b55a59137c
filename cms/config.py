"""
CMS Configuration Module

Configuration settings for database, slot allocation, terminal liveness
and the change-notification feed. Deployment values are loaded from
environment variables.
"""

import os
from pathlib import Path


def _env_bool(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Base configuration class with default settings."""

    # Flask Settings
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')

    # Base Directory
    BASE_DIR = Path(__file__).parent.resolve()

    # Database Settings (SQLite)
    DATABASE_PATH = Path(os.environ.get('CMS_DATABASE_PATH', BASE_DIR / 'data' / 'cms.db'))
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        'DATABASE_URL',
        f'sqlite:///{DATABASE_PATH}'
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Server Settings
    PORT = int(os.environ.get('CMS_PORT', 5001))
    HOST = os.environ.get('CMS_HOST', '0.0.0.0')

    # Terminal liveness: seconds since last heartbeat before a terminal is offline
    TERMINAL_OFFLINE_THRESHOLD = int(os.environ.get('TERMINAL_OFFLINE_THRESHOLD', 65))

    # Slot durations (seconds) used when the media has none
    DEFAULT_LOCAL_SLOT_DURATION = 15
    GLOBAL_SLOT_DURATION = 10
    WILDCARD_SLOT_DURATION = 20

    # Per-terminal allocation retries on a playlist version conflict
    ALLOCATION_MAX_ATTEMPTS = 3

    # Days an approved campaign stays live before expiry
    CAMPAIGN_VALIDITY_DAYS = int(os.environ.get('CAMPAIGN_VALIDITY_DAYS', 30))

    # Change feed (ZeroMQ PUB socket terminals subscribe to)
    CHANGE_FEED_ENABLED = _env_bool('CHANGE_FEED_ENABLED', True)
    CHANGE_FEED_PORT = int(os.environ.get('CHANGE_FEED_PORT', 5560))

    # Largest proof-of-play batch a terminal may upload at once
    PLAYBACK_BATCH_MAX = 1000

    LOG_LEVEL = os.environ.get('CMS_LOG_LEVEL', 'INFO')

    @classmethod
    def init_app(cls, app):
        """Initialize application with this configuration."""
        # Ensure storage directories exist
        if app.config['SQLALCHEMY_DATABASE_URI'].startswith('sqlite:///') and \
                ':memory:' not in app.config['SQLALCHEMY_DATABASE_URI']:
            cls.DATABASE_PATH.parent.mkdir(parents=True, exist_ok=True)


class DevelopmentConfig(Config):
    """Development configuration with debug enabled."""

    DEBUG = True
    TESTING = False
    LOG_LEVEL = os.environ.get('CMS_LOG_LEVEL', 'DEBUG')


class TestingConfig(Config):
    """Testing configuration with an in-memory database and no change feed socket."""

    DEBUG = True
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    CHANGE_FEED_ENABLED = False


class ProductionConfig(Config):
    """Production configuration with strict settings."""

    DEBUG = False
    TESTING = False

    @classmethod
    def init_app(cls, app):
        """Production-specific initialization."""
        Config.init_app(app)

        # Verify required environment variables are set
        required_vars = [
            'SECRET_KEY',
            'DATABASE_URL',
        ]
        missing = [var for var in required_vars if not os.environ.get(var)]
        if missing:
            raise ValueError(f"Missing required environment variables: {', '.join(missing)}")


# Configuration mapping by environment name
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig,
}


def get_config(env_name=None):
    """Get configuration class by environment name.

    Args:
        env_name: Environment name ('development', 'testing', 'production').
                  If None, reads from FLASK_ENV environment variable.

    Returns:
        Configuration class for the specified environment.
    """
    if env_name is None:
        env_name = os.environ.get('FLASK_ENV', 'development')
    return config.get(env_name, config['default'])
