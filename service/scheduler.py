# service/scheduler.py
from __future__ import annotations

import logging
import threading
import time as _time
from datetime import datetime, timedelta
from typing import Any

import pytz
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from modules.job_ingest.lib.context import RunContext

from .logging_utils import write_activity_log
from .runner import IngestRunner

LOG = logging.getLogger(__name__)

JOB_ID = "job_ingest"


class IngestScheduler:
    """
    Recurring trigger for ingestion runs, built on APScheduler.

    One instance per process, created at startup and handed (with its runner)
    to anything that needs to trigger or inspect runs. State lives on the
    instance, so tests can build as many independent schedulers as they like.
    """

    def __init__(self, runner: IngestRunner, *, timezone: str = "UTC", executor_workers: int = 4) -> None:
        self.runner = runner
        self.settings = runner.settings
        self._tz = resolve_timezone(timezone)
        self._workers = max(1, int(executor_workers))
        self._scheduler: BackgroundScheduler | None = None
        self._lock = threading.Lock()
        self._stopped_evt = threading.Event()

    # ---- lifecycle ----------------------------------------------------------

    def start(self) -> bool:
        """
        Start the background scheduler.

        Returns False (and does nothing) when ingestion is disabled, when this
        instance is already running, or when the cron expression is invalid;
        none of these raise.
        """
        if not self.settings.enabled:
            LOG.info("Ingestion scheduler disabled; not starting.")
            return False

        with self._lock:
            if self._scheduler is not None:
                LOG.debug("Ingestion scheduler already started; ignoring start().")
                return False

            try:
                trigger = build_cron_trigger(self.settings.cron, self._tz)
            except ValueError as e:
                LOG.error("Invalid ingest cron expression %r: %s", self.settings.cron, e)
                return False

            scheduler = BackgroundScheduler(
                timezone=self._tz,
                job_defaults={
                    "coalesce": True,  # run only the latest if many were missed
                    # >1 lets a tick start while a slow run is still in flight;
                    # the fingerprint index keeps overlapping runs consistent.
                    "max_instances": self.settings.max_instances,
                },
                executors={"default": ThreadPoolExecutor(self._workers)},
                jobstores={"default": MemoryJobStore()},
            )
            scheduler.add_job(func=self._tick, trigger=trigger, id=JOB_ID, replace_existing=True)
            scheduler.start()
            self._scheduler = scheduler
            self._stopped_evt.clear()

        LOG.info(
            "Ingestion scheduler started (cron=%r, tz=%s, next_run_time=%s)",
            self.settings.cron,
            self._tz,
            _iso(self.next_run_time()),
        )
        return True

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def stop(self) -> None:
        """
        Promptly shut down APScheduler; in-flight runs are allowed to finish.
        """
        with self._lock:
            scheduler, self._scheduler = self._scheduler, None
        if scheduler is not None and scheduler.running:
            LOG.info("Shutting down ingestion scheduler...")
            scheduler.shutdown(wait=False)
        self._stopped_evt.set()

    def join(self, timeout: float | None = None) -> bool:
        """
        Block until the scheduler is stopped (or timeout).
        Returns True if stopped before timeout, else False.
        """
        return self._stopped_evt.wait(timeout=timeout)

    def next_run_time(self) -> datetime | None:
        if self._scheduler is None:
            return None
        job = self._scheduler.get_job(JOB_ID)
        return getattr(job, "next_run_time", None) if job else None

    # ---- job ----------------------------------------------------------------

    def _tick(self) -> None:
        """One scheduled run. Logs outcomes; never raises into APScheduler."""
        started = _time.monotonic()
        ctx = RunContext.background(self.settings.run_timeout_sec)
        try:
            code, body = self.runner.run_now(ctx, trigger_type="scheduled")
        except Exception:
            LOG.exception("Scheduled ingest run raised an exception.")
            _write_activity(status="error", duration_s=_time.monotonic() - started)
            return

        data = body.get("data") or {}
        if code != 200:
            LOG.error("ingest run error: %s", body.get("error"))
        LOG.info(
            "ingest run: fetched=%d upserted=%d deduped=%d",
            data.get("postings_fetched", 0),
            data.get("postings_upserted", 0),
            data.get("deduped", 0),
        )
        _write_activity(status="ok" if code == 200 else "aborted", duration_s=_time.monotonic() - started)


# ---- Helpers ----------------------------------------------------------------


def build_cron_trigger(expr: str, tz: Any) -> CronTrigger:
    """
    Five-field crontab (minute hour day-of-month month day-of-week).
    Raises ValueError on anything APScheduler cannot parse.
    """
    fields = (expr or "").split()
    if len(fields) != 5:
        raise ValueError(f"cron string must have 5 fields (got {len(fields)}): {expr!r}")
    return CronTrigger.from_crontab(" ".join(fields), timezone=tz)


def preview_fire_times(trigger, tz, count: int = 6, start: datetime | None = None) -> list[datetime]:
    """
    Return the next `count` fire times of `trigger` strictly after `start`
    (default: now in tz). Used by the CLI to show what a cron will do.
    """
    now = start or datetime.now(tz=tz)
    prev = now
    times: list[datetime] = []
    for _ in range(count):
        nxt = trigger.get_next_fire_time(prev, now)
        if nxt is None:
            break
        times.append(nxt)
        prev = nxt
        now = nxt + timedelta(microseconds=1)
    return times


def resolve_timezone(name: str | None):
    """APScheduler 3.x prefers pytz timezones; unknown names fall back to UTC."""
    try:
        return pytz.timezone(name or "UTC")
    except pytz.UnknownTimeZoneError:
        LOG.warning("Falling back to UTC timezone (invalid tz '%s')", name)
        return pytz.UTC


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


def _write_activity(status: str, duration_s: float) -> None:
    """Best-effort JSONL activity logging; non-fatal on errors."""
    try:
        write_activity_log({
            "ts": datetime.now(pytz.UTC).isoformat(),
            "source": "scheduler",
            "event": "job_run",
            "fields": {
                "job_id": JOB_ID,
                "status": status,
                "duration_ms": int(duration_s * 1000),
            },
        })
    except (OSError, TypeError, ValueError):
        LOG.debug("write_activity_log failed for job[%s]", JOB_ID, exc_info=True)
