"""
Notification Blueprint.

Endpoints:
    GET  /api/v1/notifications?unread_only=1&limit=&offset=   my notifications + unread_count
    POST /api/v1/notifications/<id>/read
    POST /api/v1/notifications/read-all
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from docflow.blueprints import register_error_handlers
from docflow.middleware.actor import require_actor
from docflow.services.notification import NotificationService
from docflow.utils.helpers import parse_flag

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notifications", __name__, url_prefix="/api/v1/notifications")
register_error_handlers(notification_bp)


@notification_bp.route("", methods=["GET"])
def list_notifications():
    actor, err = require_actor()
    if err:
        return err
    unread_only = parse_flag(request.args.get("unread_only"))
    limit = min(request.args.get("limit", 50, type=int), 200)
    offset = max(request.args.get("offset", 0, type=int), 0)

    items, total = NotificationService.list_for_recipient(
        actor, unread_only=unread_only, limit=limit, offset=offset,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread_count": NotificationService.unread_count(actor),
    }), 200


@notification_bp.route("/<int:notification_id>/read", methods=["POST"])
def mark_read(notification_id):
    actor, err = require_actor()
    if err:
        return err
    notif = NotificationService.mark_read(notification_id, actor)
    return jsonify(notif.to_dict()), 200


@notification_bp.route("/read-all", methods=["POST"])
def mark_all_read():
    actor, err = require_actor()
    if err:
        return err
    count = NotificationService.mark_all_read(actor)
    return jsonify({"marked_read": count}), 200
