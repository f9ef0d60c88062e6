# service/config_schema.py
from __future__ import annotations

import json
import logging
import os
from typing import Any

import yaml

from modules.job_ingest.lib.config import DEFAULT_CRON, DEFAULT_STATUS_PATH, Settings
from modules.job_ingest.lib.errors import ConfigError

logger = logging.getLogger(__name__)

# Environment overrides, applied once at load time: env var -> ingest key
_ENV_OVERRIDES = {
    "INGEST_ENABLED": "enabled",
    "INGEST_CRON": "cron",
    "INGEST_SOURCES_JSON": "sources_json",
    "INGEST_SQLITE_PATH": "sqlite_path",
    "INGEST_STATUS_PATH": "status_path",
}
_INGEST_KEYS = {
    "enabled",
    "cron",
    "sources",
    "sources_json",
    "sources_path",
    "sqlite_path",
    "status_path",
    "timeout_sec",
    "run_timeout_sec",
    "user_agent",
    "max_instances",
}
_SOURCE_KEYS = ("sources", "sources_json", "sources_path")

__all__ = ["ConfigError", "load_config", "settings_from_config", "validate"]


def load_config(path: str | None = None) -> dict[str, Any]:
    """
    Load the service configuration.

    Resolution order:
      1) Explicit `path` argument (if provided)
      2) os.environ['CONFIG_PATH'] (if set)
      3) Internal default (ingestion disabled, no sources)

    Environment overrides (INGEST_*) are applied on top, then the result is
    validated.

    Returns:
        dict with "timezone" and a normalized "ingest" object.
    """
    resolved_path = path or os.environ.get("CONFIG_PATH")
    if resolved_path:
        cfg = _read_any(resolved_path)
    else:
        logger.info("CONFIG_PATH not provided; using default config.")
        cfg = {}

    _apply_defaults(cfg)
    _apply_env_overrides(cfg["ingest"])
    validate(cfg)
    return cfg


def validate(cfg: dict[str, Any]) -> None:
    """
    Validate the configuration. Raise ConfigError on any problem.
    No prints, no sys.exit().
    """
    if not isinstance(cfg, dict):
        raise ConfigError("Config must be a dict.")

    tz = cfg.get("timezone")
    if tz is not None and not isinstance(tz, str):
        raise ConfigError("'timezone' must be a string if provided.")

    ingest = cfg.get("ingest")
    if not isinstance(ingest, dict):
        raise ConfigError("'ingest' must be an object.")

    unknown = set(ingest) - _INGEST_KEYS
    if unknown:
        raise ConfigError(f"'ingest' has unknown field(s): {sorted(unknown)}")

    given = [k for k in _SOURCE_KEYS if ingest.get(k) is not None]
    if len(given) > 1:
        raise ConfigError(f"'ingest': provide only one of {', '.join(_SOURCE_KEYS)} (got {given}).")
    if ingest.get("sources") is not None and not isinstance(ingest["sources"], list):
        raise ConfigError("'ingest.sources' must be a list of source objects.")

    cron = ingest.get("cron")
    if not isinstance(cron, str) or len(cron.split()) != 5:
        raise ConfigError(f"'ingest.cron' must be a 5-field crontab string (got {cron!r}).")

    _to_bool(ingest.get("enabled", False), field="enabled")
    for name, allow_zero in (("timeout_sec", False), ("run_timeout_sec", True), ("max_instances", False)):
        if ingest.get(name) is not None:
            _to_number(ingest[name], field=name, allow_zero=allow_zero)

    # The core re-validates; this surfaces errors at startup instead of first run.
    settings_from_config(cfg)


def settings_from_config(cfg: dict[str, Any]) -> Settings:
    """Translate the loaded `ingest` block into the core's plain-value Settings."""
    ingest = dict(cfg.get("ingest") or {})
    if "enabled" in ingest:
        ingest["enabled"] = _to_bool(ingest["enabled"], field="enabled")
    return Settings.from_env_and_kwargs(ingest)


# ---- Helpers ----------------------------------------------------------------


def _apply_defaults(cfg: dict[str, Any]) -> None:
    tz = cfg.get("timezone")
    if not isinstance(tz, str) or not tz.strip():
        cfg["timezone"] = os.environ.get("TZ", "UTC")

    ingest = cfg.get("ingest")
    if ingest is None:
        ingest = {}
    if not isinstance(ingest, dict):
        raise ConfigError("'ingest' must be an object.")
    ingest = dict(ingest)
    ingest.setdefault("enabled", False)
    ingest.setdefault("cron", DEFAULT_CRON)
    ingest.setdefault("status_path", DEFAULT_STATUS_PATH)
    cfg["ingest"] = ingest


def _apply_env_overrides(ingest: dict[str, Any]) -> None:
    for env_key, field in _ENV_OVERRIDES.items():
        raw = os.environ.get(env_key)
        if raw is None or raw == "":
            continue
        if field == "sources_json":
            # An env payload replaces whatever the file configured.
            for k in _SOURCE_KEYS:
                ingest.pop(k, None)
        ingest[field] = raw
        logger.debug("Config override from %s", env_key)


def _to_bool(value: Any, *, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        v = value.strip().lower()
        if v in {"1", "true", "yes", "on"}:
            return True
        if v in {"0", "false", "no", "off", ""}:
            return False
    raise ConfigError(f"'ingest.{field}' must be a boolean (or boolean-like string).")


def _to_number(value: Any, *, field: str, allow_zero: bool) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError) as err:
        raise ConfigError(f"'ingest.{field}' must be a number.") from err
    if v < 0 or (v == 0 and not allow_zero):
        raise ConfigError(f"'ingest.{field}' must be >= {'0' if allow_zero else '1'} (got {value!r}).")
    return v


def _read_any(path: str) -> dict[str, Any]:
    lower = path.lower()
    try:
        with open(path, encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read config file: {path}: {e}") from e

    if lower.endswith((".yml", ".yaml")):
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    else:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Top-level config in {path} must be a mapping/object.")
    return data
