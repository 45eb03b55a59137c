"""
Player package for advertising terminals.
Contains modules for schedule-gated media rotation, playlist resolution,
the command channel, heartbeat reporting and the local media cache.
"""
