"""
Rate limiting configuration.

Applies per-blueprint limits using Flask-Limiter. The Limiter instance is
created in ``taskhub/__init__.py`` with no default limits; this module
applies the read/write split:

    - Write requests (POST/PUT/PATCH/DELETE):  RATELIMIT_WRITE  (default 60/minute)
    - Read requests (GET):                     RATELIMIT_READ   (default 200/minute)
    - Health checks:                           exempt

Limits are keyed by the acting user when a token was presented, else by
remote IP.

Usage:
    from taskhub.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

API_BLUEPRINTS = ("tasks", "workflows", "notifications")

WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


def rate_limit_key():
    """Dynamic rate limit key: acting user if known, else remote IP."""
    user_id = getattr(g, "current_user_id", None)
    if user_id is not None:
        return f"user:{user_id}"
    return flask_request.remote_addr or "unknown"


def _is_read():
    return flask_request.method not in WRITE_METHODS


def _is_write():
    return flask_request.method in WRITE_METHODS


def init_rate_limits(app, limiter):
    """
    Apply rate limits to the API blueprints.

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    read_limit = app.config.get("RATELIMIT_READ", "200/minute")
    write_limit = app.config.get("RATELIMIT_WRITE", "60/minute")

    for bp_name in API_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(read_limit, key_func=rate_limit_key, exempt_when=_is_write)(bp)
            limiter.limit(write_limit, key_func=rate_limit_key, exempt_when=_is_read)(bp)

    # Health check — exempt from rate limiting
    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured — read: %s, write: %s", read_limit, write_limit)
