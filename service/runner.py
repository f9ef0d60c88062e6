# service/runner.py
"""
On-demand trigger for the ingestion core.

IngestRunner owns the "last status" and is shared (by reference) between the
scheduler and whatever triggers runs ad hoc (CLI, an admin endpoint). Each
operation returns an ``(http_code, body)`` pair shaped like the admin API:

    run_now()      -> (200, {"data": status})  or  (500, {"error": msg, "data": status})
    last_status()  -> (200, {"data": status})
    sources()      -> (200, {"data": [source, ...], "at": iso})

Partial failures (a source down, a row failing to insert) never turn into an
error response; they are only visible in ``status["errors"]``.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
import threading
import time
import uuid
from typing import Any

from modules.job_ingest.lib import engine
from modules.job_ingest.lib.config import Settings
from modules.job_ingest.lib.context import RunContext
from modules.job_ingest.lib.errors import RunAborted
from modules.job_ingest.lib.models import RunStatus
from modules.job_ingest.lib.utils import now_iso

from .logging_utils import write_activity_log, write_error_log

log = logging.getLogger(__name__)


class IngestRunner:
    def __init__(self, settings: Settings, **engine_kwargs: Any) -> None:
        """
        engine_kwargs are forwarded to engine.run_once (get_provider, store,
        client); tests use them to swap out the network and the store.
        """
        self.settings = settings
        self._engine_kwargs = engine_kwargs
        self._lock = threading.Lock()
        self._last: RunStatus | None = None

    # ---- operations ---------------------------------------------------------

    def run_now(self, ctx: RunContext | None = None, *, trigger_type: str = "manual") -> tuple[int, dict[str, Any]]:
        """Run one ingestion synchronously and return the response pair."""
        run_id = str(uuid.uuid4())
        started = time.monotonic()
        ctx = ctx or RunContext.background(self.settings.run_timeout_sec)
        log.info("Ingest run %s starting (trigger=%s)", run_id, trigger_type)

        try:
            status = engine.run_once(self.settings, ctx, **self._engine_kwargs)
        except RunAborted as e:
            self._remember(e.status)
            log.error("Ingest run %s aborted: %s", run_id, e)
            _best_effort(write_error_log, {
                "source": "runner",
                "event": "ingest_aborted",
                "run_id": run_id,
                "trigger_type": trigger_type,
                "error": str(e),
            })
            return 500, {"error": str(e), "data": e.status.to_dict()}

        self._remember(status)
        duration = time.monotonic() - started
        log.info(
            "Ingest run %s finished in %.3fs: fetched=%d upserted=%d deduped=%d errors=%d",
            run_id,
            duration,
            status.postings_fetched,
            status.postings_upserted,
            status.deduped,
            len(status.errors),
        )
        _best_effort(write_activity_log, {
            "source": "runner",
            "event": "ingest_run",
            "run_id": run_id,
            "trigger_type": trigger_type,
            "duration_ms": int(duration * 1000),
            "status": status.to_dict(),
        })
        return 200, {"data": status.to_dict()}

    def last_status(self) -> tuple[int, dict[str, Any]]:
        """Most recent status from this process, else the persisted one, else an empty status."""
        with self._lock:
            last = self._last
        if last is not None:
            return 200, {"data": last.to_dict()}
        persisted = self._read_persisted()
        if persisted is not None:
            return 200, {"data": persisted}
        return 200, {"data": RunStatus().to_dict()}

    def sources(self) -> tuple[int, dict[str, Any]]:
        srcs = engine.configured_sources(self.settings)
        return 200, {"data": [s.to_dict() for s in srcs], "at": now_iso()}

    # ---- internals ----------------------------------------------------------

    def _remember(self, status: RunStatus) -> None:
        with self._lock:
            self._last = status
        path = self.settings.status_path
        if not path:
            return
        directory = os.path.dirname(os.path.abspath(path))
        tmp = None
        try:
            os.makedirs(directory, exist_ok=True)
            # One temp file per writer; os.replace makes the swap atomic
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=directory, prefix=".status-", suffix=".tmp", delete=False
            ) as f:
                tmp = f.name
                json.dump(status.to_dict(), f, ensure_ascii=False, indent=2)
            os.replace(tmp, path)
        except OSError:
            log.warning("Could not persist last status to %s", path, exc_info=True)
            if tmp is not None:
                with contextlib.suppress(OSError):
                    os.remove(tmp)

    def _read_persisted(self) -> dict[str, Any] | None:
        path = self.settings.status_path
        if not path or not os.path.exists(path):
            return None
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError):
            log.warning("Ignoring unreadable status file %s", path, exc_info=True)
            return None
        return data if isinstance(data, dict) else None


def _best_effort(writer, record: dict[str, Any]) -> None:
    """JSONL logging must never fail a run."""
    try:
        writer({"ts": now_iso(), **record})
    except (OSError, TypeError, ValueError):
        log.debug("structured log write failed", exc_info=True)
