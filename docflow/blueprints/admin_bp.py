"""
Admin Blueprint: scheduled job management.

Endpoints:
    GET  /api/v1/admin/jobs              registered jobs with run history
    POST /api/v1/admin/jobs/<name>/run   run a job now
"""

import logging

from flask import Blueprint, jsonify

from docflow.blueprints import register_error_handlers
from docflow.middleware.actor import require_admin
from docflow.services.audit_service import record_audit_event
from docflow.services.scheduler_service import SchedulerService
from docflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__, url_prefix="/api/v1/admin")
register_error_handlers(admin_bp)


@admin_bp.route("/jobs", methods=["GET"])
def list_jobs():
    _actor, err = require_admin()
    if err:
        return err
    return jsonify({"items": SchedulerService.list_jobs(), "running": SchedulerService.is_running()}), 200


@admin_bp.route("/jobs/<job_name>/run", methods=["POST"])
def run_job(job_name):
    actor, err = require_admin()
    if err:
        return err
    if not SchedulerService.is_registered(job_name):
        return api_error(E.NOT_FOUND, f"Unknown job: {job_name}")

    result = SchedulerService.run_job(job_name)
    record_audit_event(actor, "scheduler.run", category="scheduler",
                       details={"status": result["status"]}, target_id=job_name, target_type="job")
    status = 200 if result["status"] == "success" else 500
    return jsonify(result), status
