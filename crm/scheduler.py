from __future__ import annotations

import logging
import os
import threading
import time
import uuid
from typing import Callable, Dict

from flask import Flask

from crm.db import close_db, get_db
from crm.observability import bind_request_id, observe_scheduler_job


LOGGER = logging.getLogger("crm.scheduler")

JOB_CHURN = "churn"
JOB_DEVIATION = "deviation"


class InsightsScheduler:
    """Runs the churn and sales-deviation jobs on their own intervals in a daemon thread."""

    def __init__(self, app: Flask) -> None:
        self.app = app
        self.tick_seconds = _int_config(app, "SCHEDULER_TICK_SECONDS", 60, 1, 3600)
        self.intervals: Dict[str, int] = {
            JOB_CHURN: _int_config(app, "CHURN_INTERVAL_SECONDS", 21_600, 60, 604_800),
            JOB_DEVIATION: _int_config(app, "DEVIATION_INTERVAL_SECONDS", 43_200, 60, 604_800),
        }
        self.min_backoff_seconds = _int_config(app, "SCHEDULER_MIN_BACKOFF_SECONDS", 60, 5, 3600)
        self.max_backoff_seconds = _int_config(
            app,
            "SCHEDULER_MAX_BACKOFF_SECONDS",
            3600,
            self.min_backoff_seconds,
            86_400,
        )

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._failure_counts: Dict[str, int] = {}
        started = time.monotonic()
        self._next_run_at: Dict[str, float] = {job: started + interval for job, interval in self.intervals.items()}

    def _jobs(self) -> Dict[str, Callable]:
        services = self.app.extensions["crm"]
        return {
            JOB_CHURN: services.churn_service.run,
            JOB_DEVIATION: services.deviation_service.run,
        }

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._run_loop, name="insights-scheduler", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_once()
            self._stop_event.wait(self.tick_seconds)

    def run_once(self) -> None:
        for job, handler in self._jobs().items():
            if self._is_due(job):
                self.run_job(job, handler)

    def run_job(self, job: str, handler: Callable) -> bool:
        with self.app.app_context(), bind_request_id(f"job-{job}-{uuid.uuid4().hex[:8]}"):
            db = get_db()
            try:
                result = handler(db)
                db.commit()
                self._schedule_next(job)
                observe_scheduler_job(job, "succeeded")
                LOGGER.info("scheduler_job_succeeded", extra={"job": job, "result": result})
                return True
            except Exception:  # noqa: BLE001
                db.rollback()
                observe_scheduler_job(job, "failed")
                LOGGER.exception("scheduler_job_failed", extra={"job": job})
                self._register_failure(job)
                return False
            finally:
                close_db()

    def _is_due(self, job: str) -> bool:
        next_run_at = self._next_run_at.get(job)
        if next_run_at is None:
            return True
        return time.monotonic() >= next_run_at

    def _schedule_next(self, job: str) -> None:
        self._failure_counts.pop(job, None)
        self._next_run_at[job] = time.monotonic() + self.intervals[job]

    def _register_failure(self, job: str) -> None:
        failure_count = self._failure_counts.get(job, 0) + 1
        self._failure_counts[job] = failure_count
        backoff_seconds = min(
            self.max_backoff_seconds,
            self.min_backoff_seconds * (2 ** (failure_count - 1)),
        )
        self._next_run_at[job] = time.monotonic() + backoff_seconds


def start_insights_scheduler(app: Flask) -> InsightsScheduler | None:
    if not _should_start_scheduler(app):
        return None
    scheduler = InsightsScheduler(app)
    scheduler.start()
    app.extensions["insights_scheduler"] = scheduler
    app.logger.info(
        "Insights scheduler started: churn=%ss deviation=%ss",
        scheduler.intervals[JOB_CHURN],
        scheduler.intervals[JOB_DEVIATION],
    )
    return scheduler


def _should_start_scheduler(app: Flask) -> bool:
    if not app.config.get("INSIGHTS_SCHEDULER_ENABLED", False):
        return False
    if app.config.get("TESTING"):
        return False
    if app.debug:
        run_main = os.environ.get("WERKZEUG_RUN_MAIN")
        if run_main and run_main.lower() != "true":
            return False
    return True


def _int_config(app: Flask, key: str, default: int, min_value: int, max_value: int) -> int:
    try:
        value = int(app.config.get(key, default))
    except (TypeError, ValueError):
        value = default
    return max(min_value, min(value, max_value))
