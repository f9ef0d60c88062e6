from __future__ import annotations

import logging
from typing import Any

# JSONL writers live in the service package; the core also runs without it
# (scripts, embedding), in which case records go to stdlib logging.
try:
    from service import logging_utils as _jsonl  # type: ignore
except ImportError:
    _jsonl = None

# Board credentials a source config may carry
_SECRET_FIELDS = frozenset({"authorization", "api_key", "token"})

_ACTIVITY = logging.getLogger("job_ingest.activity")
_ERRORS = logging.getLogger("job_ingest.error")


def _scrub(record: dict[str, Any]) -> dict[str, Any]:
    return {k: "***REDACTED***" if str(k).lower() in _SECRET_FIELDS else v for k, v in record.items()}


def _emit(writer_name: str, fallback: logging.Logger, level: int, record: dict[str, Any]) -> None:
    payload = _scrub(record)
    if _jsonl is not None:
        try:
            getattr(_jsonl, writer_name)(payload)
            return
        except (OSError, TypeError, ValueError):
            fallback.debug("%s failed", writer_name, exc_info=True)
    fallback.log(level, payload)


def activity(record: dict[str, Any]) -> None:
    """Run/source progress record; JSONL activity log, else the "job_ingest.activity" logger."""
    _emit("write_activity_log", _ACTIVITY, logging.INFO, record)


def error(record: dict[str, Any]) -> None:
    """Failure record; JSONL error log, else the "job_ingest.error" logger."""
    _emit("write_error_log", _ERRORS, logging.ERROR, record)
