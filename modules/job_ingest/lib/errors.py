from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import RunStatus


class IngestError(Exception):
    """Base exception for ingestion failures."""


class ConfigError(ValueError):
    """Raised when provided kwargs/payloads cannot form valid settings or sources."""


class ProviderError(IngestError):
    """A source could not be fetched or its payload could not be decoded."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(message)
        self.provider = provider


class StoreError(IngestError):
    """Persistence failure (find-or-create source, insert posting)."""


class DuplicatePosting(StoreError):
    """Insert lost a race on the unique fingerprint index."""


class RunAborted(IngestError):
    """
    The run could not start (e.g. the source payload is malformed).
    Carries the status produced so far: a single error and zero counters.
    """

    def __init__(self, status: RunStatus) -> None:
        super().__init__(status.errors[0] if status.errors else "run aborted")
        self.status = status


class RunCancelled(IngestError):
    """Raised by RunContext.check() once the run is cancelled or past its deadline."""
