"""
Document Approval Workflow Engine
Scheduler Service.

Lightweight background job scheduler: a registry of job functions, a
``scheduled_jobs`` table for run history, and one daemon thread that runs
every enabled job each TIMEOUT_SWEEP_INTERVAL_SECONDS when
SCHEDULER_ENABLED is set.  Jobs can always be triggered manually through
the admin API.

Architecture:
    - register_job: decorator that adds a job function to the registry
    - SchedulerService: persistence, execution, and the interval thread
    - Jobs run inside a Flask app context and receive the app
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from flask import Flask

from docflow.models import db
from docflow.models.scheduling import ScheduledJob

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════

_job_registry: dict[str, Callable] = {}


def register_job(name: str):
    """Decorator to register a job function.

    Usage:
        @register_job("step_timeout_sweep")
        def sweep(app):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    return dict(_job_registry)


class SchedulerService:
    """
    Manages job registration, persistence, and execution.
    """

    _app: Flask | None = None
    _thread: threading.Thread | None = None
    _stop_event: threading.Event | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        # Importing the module registers the concrete jobs
        from docflow.services import scheduled_jobs  # noqa: F401

        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService initialized with %d registered jobs", len(_job_registry))

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """Create a ScheduledJob row for every registered job that lacks one."""
        if not cls._app:
            return []

        created = []
        with cls._app.app_context():
            interval = cls._app.config.get("TIMEOUT_SWEEP_INTERVAL_SECONDS", 3600)
            for name, fn in _job_registry.items():
                if ScheduledJob.query.filter_by(job_name=name).first():
                    continue
                job = ScheduledJob(
                    job_name=name,
                    description=(fn.__doc__ or f"Scheduled job: {name}").strip().splitlines()[0],
                    schedule_type="interval",
                    schedule_config={"seconds": interval},
                    status="active",
                    is_enabled=True,
                    run_count=0,
                    error_count=0,
                )
                db.session.add(job)
                created.append(job)
            if created:
                db.session.commit()
                logger.info("Created %d scheduled job records", len(created))
        return created

    @classmethod
    def run_job(cls, job_name: str) -> dict:
        """
        Execute a single job by name.

        Returns:
            Dict with status, duration_ms, result or error.
        """
        fn = _job_registry.get(job_name)
        if not fn:
            return {"job_name": job_name, "status": "error", "error": f"Unknown job: {job_name}"}
        if not cls._app:
            return {"job_name": job_name, "status": "error", "error": "Scheduler not initialized"}

        start = time.monotonic()
        result = None
        error = None
        status = "success"

        try:
            with cls._app.app_context():
                result = fn(cls._app)
        except Exception as exc:
            status = "failed"
            error = str(exc)
            logger.exception("Job %s failed: %s", job_name, exc, extra={"job_name": job_name})

        duration_ms = int((time.monotonic() - start) * 1000)

        try:
            with cls._app.app_context():
                job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
                if job_record:
                    job_record.record_run(
                        status=status,
                        duration_ms=duration_ms,
                        result=result if isinstance(result, dict) else {"output": str(result)},
                        error=error,
                    )
                    db.session.commit()
        except Exception:
            logger.exception("Failed to update job record for %s", job_name)

        logger.info("Job %s finished: %s in %dms", job_name, status, duration_ms,
                    extra={"job_name": job_name})
        return {
            "job_name": job_name,
            "status": status,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }

    @classmethod
    def run_enabled_jobs(cls) -> list[dict]:
        """One scheduler tick: run every registered job whose record is enabled."""
        with cls._app.app_context():
            disabled = {
                j.job_name for j in ScheduledJob.query.filter_by(is_enabled=False).all()
            }
        return [cls.run_job(name) for name in _job_registry if name not in disabled]

    @classmethod
    def list_jobs(cls) -> list[dict]:
        jobs = []
        for name in _job_registry:
            job_record = ScheduledJob.query.filter_by(job_name=name).first()
            jobs.append({
                "job_name": name,
                "registered": True,
                "db_record": job_record.to_dict() if job_record else None,
            })
        return jobs

    @classmethod
    def is_registered(cls, job_name: str) -> bool:
        return job_name in _job_registry

    # ── Interval thread ───────────────────────────────────────────────────

    @classmethod
    def start(cls, interval_seconds: int | None = None) -> bool:
        """Start the daemon thread.  Returns False if it is already running."""
        if not cls._app:
            raise RuntimeError("SchedulerService.init_app() must be called first")
        if cls._thread and cls._thread.is_alive():
            return False
        interval = interval_seconds or cls._app.config.get("TIMEOUT_SWEEP_INTERVAL_SECONDS", 3600)
        cls._stop_event = threading.Event()
        cls._thread = threading.Thread(
            target=cls._loop, args=(interval, cls._stop_event),
            name="docflow-scheduler", daemon=True,
        )
        cls._thread.start()
        logger.info("Scheduler thread started, interval=%ss", interval)
        return True

    @classmethod
    def stop(cls, timeout: float = 5.0) -> None:
        if cls._stop_event:
            cls._stop_event.set()
        if cls._thread:
            cls._thread.join(timeout)
        cls._thread = None
        cls._stop_event = None

    @classmethod
    def is_running(cls) -> bool:
        return bool(cls._thread and cls._thread.is_alive())

    @classmethod
    def _loop(cls, interval: int, stop_event: threading.Event) -> None:
        while not stop_event.wait(interval):
            try:
                cls.run_enabled_jobs()
            except Exception:
                logger.exception("Scheduler tick failed")
