"""
Engine for one ingestion run: fetch -> normalize -> dedupe -> insert.

Features:
  - Sequential polling of configured providers, in configuration order
  - Per-source and per-posting failure isolation (errors land in RunStatus)
  - Content-addressed dedupe on sha256(source|external_id|title|url)
  - Dependency injection for testability (`get_provider`, `store`, `client`)
"""

from __future__ import annotations

import hashlib
import logging
import time
from collections.abc import Callable
from types import ModuleType
from typing import Any

from . import db, logging_bridge
from .config import Settings, SourceConfig, parse_source_configs
from .context import RunContext
from .errors import ConfigError, DuplicatePosting, RunAborted, RunCancelled
from .extract import extract_posting_fields
from .http_client import HttpClient
from .models import CanonicalPosting, RawPosting, RunStatus
from .providers.base import BaseProvider
from .utils import now_utc

LOG = logging.getLogger(__name__)

ProviderLookup = Callable[[str], "type[BaseProvider] | None"]


# =============================================================================
# DEFAULT PROVIDER LOOKUP (PRODUCTION)
# =============================================================================
def _default_get_provider(kind: str) -> type[BaseProvider] | None:
    """Resolve provider class from registry; None for unsupported kinds."""
    from .providers.registry import lookup

    return lookup(kind)


# =============================================================================
# HELPERS
# =============================================================================
def fingerprint(raw: RawPosting) -> str:
    """Stable identity hash of a posting; independent of description/location/dates."""
    key = "|".join((raw.source_name, raw.external_id, raw.title, raw.url))
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def load_source_configs(settings: Settings) -> list[SourceConfig]:
    """Parse the configured sources (raises ConfigError on a malformed payload)."""
    return parse_source_configs(settings.read_sources_payload())


def configured_sources(settings: Settings) -> list[SourceConfig]:
    """Read-only listing of configured sources; [] when the payload is unreadable."""
    try:
        return load_source_configs(settings)
    except ConfigError as e:
        LOG.warning("Cannot list sources: %s", e)
        return []


def build_providers(
    sources: list[SourceConfig],
    *,
    get_provider: ProviderLookup | None = None,
    client: HttpClient | None = None,
) -> list[BaseProvider]:
    """One provider per configured source; unsupported types are skipped."""
    lookup = get_provider or _default_get_provider
    providers: list[BaseProvider] = []
    for src in sources:
        cls = lookup(src.type.lower())
        if cls is None:
            LOG.debug("Skipping source %r: unsupported type %r", src.name, src.type)
            continue
        providers.append(cls(src.name, src.base_url, client=client))
    return providers


def _canonical(raw: RawPosting, source_id: int, digest: str) -> CanonicalPosting:
    fields = extract_posting_fields(raw.description_html)
    return CanonicalPosting(
        source_id=source_id,
        external_id=raw.external_id,
        company=raw.company,
        title=raw.title,
        url=raw.url,
        hash=digest,
        fetched_at=now_utc(),
        location=raw.location,
        remote=raw.remote,
        employment_type=raw.employment_type,
        description_text=fields.text,
        requirements=fields.bullets_json,
        years_experience_min=fields.years_min,
        years_experience_max=fields.years_max,
        date_posted=raw.date_posted,
    )


# =============================================================================
# MAIN ORCHESTRATOR
# =============================================================================
def run_once(
    settings: Settings,
    ctx: RunContext | None = None,
    *,
    get_provider: ProviderLookup | None = None,
    store: ModuleType | Any | None = None,
    client: HttpClient | None = None,
) -> RunStatus:
    """
    Run one complete ingestion cycle.

    Args:
        settings: Plain-value configuration (sources payload, DB path, timeouts).
        ctx: Cancellation/deadline for the run; a fresh one is built from
             settings.run_timeout_sec when omitted.
        get_provider: Optional override to inject provider classes (for testing).
        store: Object exposing the db functions (defaults to the SQLite `db` module).
        client: Shared HttpClient for all providers in this run.

    Returns:
        RunStatus with counts and one error string per failed source/posting.

    Raises:
        RunAborted: the source configuration could not be read; its `.status`
            carries that single error and zero counts.
    """
    start_ns = time.perf_counter_ns()
    ctx = ctx or RunContext.background(settings.run_timeout_sec)
    store = store or db
    status = RunStatus(started_at=now_utc())

    # -------------------------------------------------------------------------
    # LOAD SOURCES (the only fatal step)
    # -------------------------------------------------------------------------
    try:
        sources = load_source_configs(settings)
    except ConfigError as e:
        status.errors.append(str(e))
        status.finished_at = now_utc()
        logging_bridge.error({
            "component": "job_ingest.engine",
            "op": "load_sources",
            "error": str(e),
        })
        raise RunAborted(status) from e

    by_name = {s.name: s for s in sources}
    durations_us: dict[str, int] = {}
    owns_client = client is None
    client = client or HttpClient(timeout=settings.timeout_sec, user_agent=settings.user_agent)
    try:
        providers = build_providers(sources, get_provider=get_provider, client=client)
        status.sources = len(providers)

        for provider in providers:
            # -----------------------------------------------------------------
            # FETCH (one provider at a time)
            # -----------------------------------------------------------------
            if ctx.cancelled:
                status.errors.append(f"run cancelled: {ctx.reason}")
                LOG.warning("Run cancelled (%s); skipping remaining providers", ctx.reason)
                break

            t0 = time.perf_counter_ns()
            try:
                raws = provider.fetch_openings(ctx)
            except RunCancelled as e:
                status.errors.append(f"{provider.name()}: run cancelled: {e}")
                break
            except Exception as e:
                status.errors.append(f"{provider.name()}: {e}")
                logging_bridge.error({
                    "component": "job_ingest.engine",
                    "op": "fetch",
                    "source": provider.name(),
                    "kind": provider.kind,
                    "error": repr(e),
                })
                continue
            finally:
                durations_us[provider.name()] = int((time.perf_counter_ns() - t0) // 1000)

            status.postings_fetched += len(raws)

            # -----------------------------------------------------------------
            # DEDUPE + INSERT (one posting at a time)
            # -----------------------------------------------------------------
            for raw in raws:
                inserted = _upsert(settings, store, raw, by_name.get(raw.source_name), status)
                if inserted is True:
                    status.postings_upserted += 1
                elif inserted is False:
                    status.deduped += 1
    finally:
        if owns_client:
            client.close()

    status.finished_at = now_utc()

    # -------------------------------------------------------------------------
    # SUMMARY LOG (always emitted)
    # -------------------------------------------------------------------------
    logging_bridge.activity({
        "component": "job_ingest.engine",
        "op": "summary",
        "sources": status.sources,
        "fetched": status.postings_fetched,
        "upserted": status.postings_upserted,
        "deduped": status.deduped,
        "errors": len(status.errors),
        "durations_us": durations_us,
        "total_us": int((time.perf_counter_ns() - start_ns) // 1000),
    })
    return status


def _upsert(
    settings: Settings,
    store: Any,
    raw: RawPosting,
    source: SourceConfig | None,
    status: RunStatus,
) -> bool | None:
    """
    Insert `raw` unless its fingerprint is already stored.
    Returns True (inserted), False (deduped) or None (failed; error recorded).
    """
    digest = fingerprint(raw)
    try:
        if store.find_posting_by_hash(settings.sqlite_path, digest) is not None:
            return False
        src = store.find_or_create_source(
            settings.sqlite_path,
            raw.source_name,
            type=source.type.lower() if source else "remote",
            base_url=source.base_url if source else "",
        )
        store.insert_posting(settings.sqlite_path, _canonical(raw, src.id, digest))
    except DuplicatePosting:
        # Lost a race with an overlapping run: same outcome as a lookup hit.
        return False
    except Exception as e:
        status.errors.append(f"{raw.source_name}/{raw.external_id}: {e}")
        logging_bridge.error({
            "component": "job_ingest.engine",
            "op": "upsert",
            "source": raw.source_name,
            "external_id": raw.external_id,
            "error": repr(e),
        })
        return None
    return True
