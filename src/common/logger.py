"""
Logging setup shared by the terminal-side services.
"""

import logging
import os
import sys

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logger(name: str, level: str = None) -> logging.Logger:
    """
    Get a module logger with a single stream handler attached.

    Args:
        name: Logger name, usually ``__name__``
        level: Log level name. Defaults to DOOH_LOG_LEVEL or INFO.

    Returns:
        Configured logger
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

    level_name = level or os.environ.get('DOOH_LOG_LEVEL', 'INFO')
    logger.setLevel(getattr(logging, level_name.upper(), logging.INFO))
    return logger
