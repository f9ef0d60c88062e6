# modules/job_ingest/lib/__init__.py
from __future__ import annotations

# Re-export commonly-used types for convenience
from .config import Settings, SourceConfig
from .context import RunContext
from .engine import configured_sources, fingerprint, run_once
from .errors import ConfigError, IngestError, ProviderError, RunAborted, StoreError
from .models import RawPosting, RunStatus

# Importing the package registers the built-in providers.
from .providers import greenhouse as _greenhouse  # noqa: F401
from .providers import lever as _lever  # noqa: F401

__all__ = [
    "ConfigError",
    "IngestError",
    "ProviderError",
    "RawPosting",
    "RunAborted",
    "RunContext",
    "RunStatus",
    "Settings",
    "SourceConfig",
    "StoreError",
    "configured_sources",
    "fingerprint",
    "run_once",
]
