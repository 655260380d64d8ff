"""
Actor resolution from gateway headers.

The upstream authentication gateway forwards the signed-in user as:

    X-User-Id          integer id within the user's kind
    X-User-Role        student | employee | admin
    X-User-Position    directory position string (optional)
    X-User-Department  department name (optional)

Blueprints call ``require_actor()`` at the top of each view; services never
read request globals.
"""

import logging

from flask import g, jsonify, request

from docflow.core.actor import ACTOR_ROLES, Actor
from docflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def actor_from_headers() -> Actor | None:
    """Build an Actor from the gateway headers, or None if absent/malformed."""
    raw_id = (request.headers.get("X-User-Id") or "").strip()
    role = (request.headers.get("X-User-Role") or "").strip().lower()
    if not raw_id or role not in ACTOR_ROLES:
        return None
    try:
        actor_id = int(raw_id)
    except ValueError:
        logger.warning("Rejected non-integer X-User-Id header: %r", raw_id)
        return None
    return Actor(
        id=actor_id,
        role=role,
        position=(request.headers.get("X-User-Position") or "").strip(),
        department=(request.headers.get("X-User-Department") or "").strip(),
    )


def require_actor():
    """Return ``(actor, None)`` or ``(None, error_response)``.

    Same tuple-return convention as ``get_or_404``:

        actor, err = require_actor()
        if err:
            return err
    """
    actor = actor_from_headers()
    if actor is None:
        return None, api_error(E.UNAUTHENTICATED, "Missing or invalid user identity headers")
    g.actor = actor
    return actor, None


def require_admin():
    """Like ``require_actor`` but only admits admins."""
    actor, err = require_actor()
    if err:
        return None, err
    if not actor.is_admin:
        return None, (jsonify({"error": "Admin role required", "code": E.FORBIDDEN}), 403)
    return actor, None
