"""
Flask Application Factory for CMS Service.

This module provides the create_app() factory function that creates and
configures the Flask application. It initializes:
- SQLAlchemy database connection (SQLite by default)
- Change feed on the database session, optionally published over ZeroMQ
- Blueprint registration
- Error handlers
- Logging configuration

Usage:
    # Development
    python -m cms.app

    # Production
    gunicorn -w 1 -b 0.0.0.0:5001 'cms.app:create_app()'
"""

import logging
import os
from datetime import datetime, timezone
from typing import Optional

import zmq
from flask import Flask, jsonify
from flask_migrate import Migrate
from sqlalchemy.exc import SQLAlchemyError

from cms.config import get_config
from cms.models import db
from cms.services.change_feed import ChangeFeed, ChangeFeedPublisher
from cms.services.errors import CMSServiceError

# Global migrate instance
migrate = Migrate()


def create_app(config_name: Optional[str] = None) -> Flask:
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name ('development', 'testing', 'production').
                    If None, reads from FLASK_ENV environment variable.

    Returns:
        Configured Flask application instance.
    """
    app = Flask(__name__)

    # Load configuration
    config_class = get_config(config_name)
    app.config.from_object(config_class)
    config_class.init_app(app)

    # Store config class for reference
    app.config['CONFIG_CLASS'] = config_class

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    feed = ChangeFeed(app)

    # Create database tables
    with app.app_context():
        db.create_all()

    # Configure logging
    _configure_logging(app)

    # Publish committed changes to terminals
    _init_change_publisher(app, feed)

    # Register blueprints
    _register_blueprints(app)

    # Register error handlers
    _register_error_handlers(app)

    # Register health check endpoint
    @app.route('/health')
    @app.route('/api/health')
    @app.route('/api/v1/health')
    def health_check():
        """Health check endpoint for monitoring.

        Available at /health, /api/health, and /api/v1/health for compatibility.
        """
        return jsonify({
            'status': 'healthy',
            'service': 'cms',
            'timestamp': datetime.now(timezone.utc).isoformat()
        })

    return app


def _init_change_publisher(app: Flask, feed: ChangeFeed) -> None:
    """
    Bind the ZeroMQ change publisher when enabled.

    A port that cannot be bound leaves the CMS running without the push
    channel; terminals still pick up changes through their idle poll.

    Args:
        app: Flask application instance.
        feed: Change feed attached to the application.
    """
    if not app.config.get('CHANGE_FEED_ENABLED', False):
        app.logger.info('Change feed publisher disabled')
        return

    port = app.config['CHANGE_FEED_PORT']
    try:
        app.extensions['change_feed_publisher'] = ChangeFeedPublisher(feed, port)
        app.logger.info(f'Change feed publishing on port {port}')
    except zmq.ZMQError as e:
        app.logger.error(f'Could not bind change feed publisher on port {port}: {e}')


def _configure_logging(app: Flask) -> None:
    """
    Configure application logging.

    Args:
        app: Flask application instance.
    """
    # Get log directory from config
    log_dir = os.path.join(str(app.config.get('BASE_DIR', os.getcwd())), 'logs')

    # Set up file handler if log path is writable
    if not app.config.get('TESTING'):
        try:
            os.makedirs(log_dir, exist_ok=True)
            file_handler = logging.FileHandler(os.path.join(log_dir, 'cms.log'))
            file_handler.setLevel(logging.INFO)
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            ))
            app.logger.addHandler(file_handler)
        except OSError:
            # Log path not writable, skip file logging
            pass

    # Set application log level
    app.logger.setLevel(getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO))


def _register_blueprints(app: Flask) -> None:
    """
    Register API blueprints with the application.

    Blueprints are registered with /api/v1 prefix.

    Args:
        app: Flask application instance.
    """
    from cms.routes import terminals_bp, playlists_bp, campaigns_bp, media_bp

    app.register_blueprint(terminals_bp, url_prefix='/api/v1/terminals')
    app.logger.info('Registered terminals blueprint at /api/v1/terminals')

    app.register_blueprint(playlists_bp, url_prefix='/api/v1/playlists')
    app.logger.info('Registered playlists blueprint at /api/v1/playlists')

    app.register_blueprint(campaigns_bp, url_prefix='/api/v1/campaigns')
    app.logger.info('Registered campaigns blueprint at /api/v1/campaigns')

    app.register_blueprint(media_bp, url_prefix='/api/v1/media')
    app.logger.info('Registered media blueprint at /api/v1/media')


def _register_error_handlers(app: Flask) -> None:
    """
    Register error handlers for common HTTP errors and service errors.

    Args:
        app: Flask application instance.
    """
    @app.errorhandler(CMSServiceError)
    def service_error(error):
        return jsonify({
            'status': 'error',
            'error': error.error,
            'message': error.message
        }), error.status_code

    @app.errorhandler(SQLAlchemyError)
    def database_error(error):
        db.session.rollback()
        app.logger.error(f'Database error: {error}')
        return jsonify({
            'status': 'error',
            'error': 'Service Unavailable',
            'message': 'Database operation failed'
        }), 503

    @app.errorhandler(400)
    def bad_request(error):
        return jsonify({
            'status': 'error',
            'error': 'Bad Request',
            'message': str(error.description) if hasattr(error, 'description') else 'Invalid request'
        }), 400

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({
            'status': 'error',
            'error': 'Not Found',
            'message': 'The requested resource was not found'
        }), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({
            'status': 'error',
            'error': 'Method Not Allowed',
            'message': 'The method is not allowed for the requested URL'
        }), 405

    @app.errorhandler(500)
    def internal_server_error(error):
        return jsonify({
            'status': 'error',
            'error': 'Internal Server Error',
            'message': 'An unexpected error occurred'
        }), 500


if __name__ == '__main__':
    # Development server
    application = create_app()
    config = application.config['CONFIG_CLASS']
    application.run(
        host=config.HOST,
        port=config.PORT,
        debug=config.DEBUG,
        use_reloader=False
    )
