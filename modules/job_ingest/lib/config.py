from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .errors import ConfigError
from .utils import truthy

DEFAULT_SQLITE_PATH = "/app/local/state/job_ingest.db"
DEFAULT_STATUS_PATH = "/app/local/state/job_ingest_status.json"
DEFAULT_CRON = "0 */6 * * *"
DEFAULT_USER_AGENT = "RealtimeResumeBot/1.0"


# -----------------------------
# Models
# -----------------------------
@dataclass(frozen=True)
class SourceConfig:
    """
    One configured ATS source.
    - name: stable label used in output & DB (also the posting's company)
    - type: provider family ("greenhouse", "lever")
    - base_url: endpoint the provider GETs
    """

    name: str
    type: str
    base_url: str

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "type": self.type, "base_url": self.base_url}


@dataclass
class Settings:
    """
    Canonical configuration for the ingestion core.

    Everything here is a plain value: the service's config loader resolves
    files and environment overrides before constructing Settings.

    The source list is kept as the raw JSON payload (or a path to it) and is
    parsed at the start of every run, so a malformed payload fails that run
    and not process startup.
    """

    # Source selection: inline JSON payload wins over a file path
    sources_json: str | None = None
    sources_path: str | None = None

    # Storage
    sqlite_path: str = DEFAULT_SQLITE_PATH
    status_path: str | None = None

    # Scheduler
    enabled: bool = False
    cron: str = DEFAULT_CRON
    max_instances: int = 2

    # Network
    timeout_sec: float = 20.0
    run_timeout_sec: float | None = 600.0
    user_agent: str = DEFAULT_USER_AGENT

    # ------------- convenience -------------
    def read_sources_payload(self) -> str:
        """Return the raw JSON payload describing sources (may raise ConfigError)."""
        if self.sources_json is not None:
            return self.sources_json
        if self.sources_path:
            try:
                with open(self.sources_path, encoding="utf-8") as f:
                    return f.read()
            except FileNotFoundError as e:
                raise ConfigError(f"sources file not found: {self.sources_path}") from e
            except OSError as e:
                raise ConfigError(f"failed to read sources file {self.sources_path}: {e}") from e
        return "[]"

    # ------------- constructors -------------
    @classmethod
    def from_env_and_kwargs(cls, kwargs: Mapping[str, Any] | None) -> Settings:
        """
        Build Settings from kwargs with validation.

        Expected kwargs (all optional):

            sources: list[dict]        # inline list, re-encoded to JSON
            sources_json: str          # raw JSON array payload
            sources_path: str          # file holding the JSON array
            sqlite_path: str = "/app/local/state/job_ingest.db"
            status_path: str | None
            enabled: bool = false
            cron: str = "0 */6 * * *"
            max_instances: int = 2
            timeout_sec: float = 20
            run_timeout_sec: float = 600   # 0/None disables the run deadline
            user_agent: str = "RealtimeResumeBot/1.0"
        """
        kw = dict(kwargs or {})

        sources_json = kw.get("sources_json")
        if kw.get("sources") is not None:
            if not isinstance(kw["sources"], list):
                raise ConfigError("'sources' must be a list of source objects.")
            sources_json = json.dumps(kw["sources"])
        elif sources_json is not None and not isinstance(sources_json, str):
            raise ConfigError("'sources_json' must be a JSON string.")

        sources_path = kw.get("sources_path")
        if sources_path is not None:
            sources_path = str(sources_path).strip() or None

        status_path = kw.get("status_path")
        if status_path is not None:
            status_path = str(status_path).strip() or None

        settings = cls(
            sources_json=sources_json,
            sources_path=sources_path,
            sqlite_path=str(kw.get("sqlite_path") or DEFAULT_SQLITE_PATH),
            status_path=status_path,
            enabled=truthy(kw.get("enabled")),
            cron=str(kw.get("cron") or DEFAULT_CRON).strip(),
            max_instances=_to_int(kw.get("max_instances"), 2, field="max_instances"),
            timeout_sec=_to_float(kw.get("timeout_sec"), 20.0, field="timeout_sec"),
            run_timeout_sec=_to_float(kw.get("run_timeout_sec"), 600.0, field="run_timeout_sec") or None,
            user_agent=str(kw.get("user_agent") or DEFAULT_USER_AGENT),
        )
        _validate_settings(settings)
        return settings


# -----------------------------
# Source payload
# -----------------------------
def parse_source_configs(payload: str) -> list[SourceConfig]:
    """
    Parse the source configuration payload.
    Accepts: '[{"name": "...", "type": "greenhouse"|"lever", "base_url": "..."}, ...]'

    Unknown types are kept here; the engine decides what it can build.
    """
    try:
        data = json.loads(payload) if payload and payload.strip() else []
    except json.JSONDecodeError as e:
        raise ConfigError(f"source configuration is invalid JSON: {e}") from e

    if data is None:
        return []
    if not isinstance(data, list):
        raise ConfigError("source configuration must be a JSON array.")

    out: list[SourceConfig] = []
    for i, item in enumerate(data):
        if not isinstance(item, dict):
            raise ConfigError(f"source[{i}] must be an object.")
        name = item.get("name")
        typ = item.get("type")
        base_url = item.get("base_url")
        for key, val in (("name", name), ("type", typ), ("base_url", base_url)):
            if val is not None and not isinstance(val, str):
                raise ConfigError(f"source[{i}].{key} must be a string.")
        out.append(SourceConfig(name=(name or "").strip(), type=(typ or "").strip(), base_url=(base_url or "").strip()))
    return out


# -----------------------------
# Helpers
# -----------------------------
def _to_int(value: Any, default: int, *, field: str) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as err:
        raise ConfigError(f"'{field}' must be an integer.") from err


def _to_float(value: Any, default: float, *, field: str) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as err:
        raise ConfigError(f"'{field}' must be a number.") from err


def _validate_settings(s: Settings) -> None:
    if not s.sqlite_path.strip():
        raise ConfigError("'sqlite_path' cannot be empty.")
    if s.max_instances <= 0:
        raise ConfigError("'max_instances' must be >= 1.")
    if s.timeout_sec <= 0:
        raise ConfigError("'timeout_sec' must be > 0.")
    if s.run_timeout_sec is not None and s.run_timeout_sec < 0:
        raise ConfigError("'run_timeout_sec' must be >= 0.")
    if s.enabled and not s.cron:
        raise ConfigError("'cron' is required when ingestion is enabled.")
