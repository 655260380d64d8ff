"""
Document Approval Workflow Engine
Scheduled Jobs.

Jobs:
    - step_timeout_sweep: expires pending steps older than STEP_TIMEOUT_DAYS
"""

from __future__ import annotations

import logging
from typing import Any

from docflow.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


@register_job("step_timeout_sweep")
def step_timeout_sweep(app) -> dict[str, Any]:
    """Expire pending approval steps that exceeded the SLA and put their documents on hold."""
    from docflow.services.timeout_sweeper import sweep_expired_steps

    result = sweep_expired_steps(timeout_days=app.config.get("STEP_TIMEOUT_DAYS", 5))
    return {
        "scanned": result["scanned"],
        "expired_count": len(result["expired"]),
        "expired_document_ids": result["expired"],
        "failed_document_ids": result["failed"],
    }
