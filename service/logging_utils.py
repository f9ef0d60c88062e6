# service/logging_utils.py
from __future__ import annotations

import contextlib
import datetime as _dt
import json
import logging
import os
import socket
from collections.abc import Iterable
from typing import Any

# Env-driven settings are read on every write so tests (and operators) can
# redirect logs without re-importing:
#   LOG_DIR                 base directory (default /app/local/logs)
#   ACTIVITY_LOG_PREFIX     default "activity"
#   ERROR_LOG_PREFIX        default "error"
#   ACTIVITY_LOG_MAX_BYTES  size-based rotation; <=0 disables (default 0)

_DEFAULT_REDACT_KEYS = {
    "password",
    "token",
    "apikey",
    "api_key",
    "secret",
    "authorization",
    "cookie",
    "set-cookie",
}

_HOSTNAME = socket.gethostname()
_PID = os.getpid()


# ---- Public API --------------------------------------------------------------


def configure_logging(level: str | None = None) -> None:
    """Initialize a reasonable stdlib logging setup if none exists yet."""
    root = logging.getLogger()
    if root.handlers:
        return
    name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, name, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    # APScheduler is chatty at INFO ("Running job ..."); keep our own lines readable.
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def write_activity_log(record: dict[str, Any]) -> None:
    """
    Persist a single structured activity record (JSON-safe) as one JSONL line.
    Never mutates the passed-in dict. May raise OSError/TypeError.
    """
    _write_jsonl(_log_path_for_today(os.getenv("ACTIVITY_LOG_PREFIX", "activity")), record)


def write_error_log(record: dict[str, Any]) -> None:
    """Persist a single structured error record, parallel to the activity log."""
    _write_jsonl(_log_path_for_today(os.getenv("ERROR_LOG_PREFIX", "error")), record)


def get_activity_log_path() -> str:
    """Return the current day's activity log path (<prefix>-YYYY-MM-DD.jsonl)."""
    return _log_path_for_today(os.getenv("ACTIVITY_LOG_PREFIX", "activity"))


# ---- Internal helpers --------------------------------------------------------


def _log_path_for_today(prefix: str) -> str:
    today = _dt.date.today().isoformat()
    return os.path.join(os.getenv("LOG_DIR", "/app/local/logs"), f"{prefix}-{today}.jsonl")


def _max_bytes() -> int:
    try:
        return int(os.getenv("ACTIVITY_LOG_MAX_BYTES", "0"))
    except ValueError:
        return 0


def _rotate_file_if_needed(path: str) -> None:
    """Size-based rotation; date rotation is inherent in the filename."""
    limit = _max_bytes()
    if limit <= 0:
        return
    try:
        if os.path.getsize(path) < limit:
            return
    except FileNotFoundError:
        return
    ts = _dt.datetime.now().strftime("%Y%m%d-%H%M%S")
    with contextlib.suppress(FileNotFoundError):
        os.replace(path, f"{path}.{ts}")


def _key_matches(name: str, patterns: Iterable[str]) -> bool:
    n = name.lower()
    return any(pat in n for pat in patterns)


def _redact_deep(value: Any, patterns: Iterable[str]) -> Any:
    if isinstance(value, dict):
        return {
            k: "***REDACTED***" if isinstance(k, str) and _key_matches(k, patterns) else _redact_deep(v, patterns)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_redact_deep(v, patterns) for v in value]
    if isinstance(value, str) and "bearer " in value.lower():
        scheme = value.split(" ", 1)[0]
        return f"{scheme} ***REDACTED***"
    return value


def _write_jsonl(path: str, record: dict[str, Any]) -> None:
    """
    Redact, stamp host/pid, rotate by size if configured, then append one line
    with O_APPEND (atomic for small writes on POSIX).
    """
    os.makedirs(os.path.dirname(path), exist_ok=True)
    _rotate_file_if_needed(path)

    payload = _redact_deep(record, _DEFAULT_REDACT_KEYS)
    payload["_meta"] = {"host": _HOSTNAME, "pid": _PID, "ts": _dt.datetime.now(_dt.timezone.utc).isoformat()}
    data = (json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str) + "\n").encode("utf-8")

    fd = os.open(path, os.O_CREAT | os.O_APPEND | os.O_WRONLY, 0o644)
    try:
        os.write(fd, data)
    finally:
        os.close(fd)
