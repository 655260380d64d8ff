"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in docflow/__init__.py with no default
limits; this module applies limits per route category, keyed by the
acting user when the identity headers are present.

Usage:
    from docflow.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import request
from flask_limiter.util import get_remote_address

logger = logging.getLogger(__name__)

WORKFLOW_LIMIT = "60/minute"
READ_LIMIT = "200/minute"
ADMIN_LIMIT = "20/minute"


def actor_rate_limit_key():
    """Rate-limit bucket: ``<role>:<id>`` from the gateway headers, else remote IP."""
    user_id = request.headers.get("X-User-Id")
    role = request.headers.get("X-User-Role")
    if user_id and role:
        return f"{role.strip().lower()}:{user_id.strip()}"
    return get_remote_address()


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per actor):
        - Document + fund endpoints:  60/minute  (workflow mutations)
        - Notification endpoints:     200/minute (polled by the UI)
        - Admin job endpoints:        20/minute
        - Health check:               exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name in ("documents", "funds"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WORKFLOW_LIMIT, key_func=actor_rate_limit_key)(bp)

    bp = app.blueprints.get("notifications")
    if bp:
        limiter.limit(READ_LIMIT, key_func=actor_rate_limit_key)(bp)

    bp = app.blueprints.get("admin")
    if bp:
        limiter.limit(ADMIN_LIMIT, key_func=actor_rate_limit_key)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    logger.info(
        "Rate limiter configured: workflow %s, notifications %s, admin %s",
        WORKFLOW_LIMIT, READ_LIMIT, ADMIN_LIMIT,
    )
