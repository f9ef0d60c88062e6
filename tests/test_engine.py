# tests/test_engine.py
import json
import types

import pytest

from conftest import GREENHOUSE_URL, LEVER_URL, FakeResponse
from modules.job_ingest.lib import db, engine
from modules.job_ingest.lib.context import RunContext
from modules.job_ingest.lib.errors import DuplicatePosting, RunAborted, StoreError
from modules.job_ingest.lib.models import RawPosting
from modules.job_ingest.lib.providers.base import BaseProvider


def _raw(external_id="1", **kw):
    fields = {
        "source_name": "acme",
        "external_id": external_id,
        "company": "acme",
        "title": f"Engineer {external_id}",
        "url": f"https://example.com/acme/{external_id}",
    }
    fields.update(kw)
    return RawPosting(**fields)


@pytest.fixture
def stub_provider():
    """Provider that returns the same two postings on every fetch (no HTTP)."""

    class Stub(BaseProvider):
        kind = "stub"

        def fetch_openings(self, ctx=None):
            return [_raw("1", source_name=self.name()), _raw("2", source_name=self.name())]

        def parse(self, payload):
            return []

    return Stub


# ----------------------------------------------------------------------
# 1. Two runs over an unchanged board: insert, then dedupe
# ----------------------------------------------------------------------
def test_two_runs_insert_then_dedupe(make_settings, greenhouse_source, fake_http, greenhouse_payload):
    session, client = fake_http
    session.routes[GREENHOUSE_URL] = FakeResponse(200, greenhouse_payload)
    settings = make_settings([greenhouse_source])

    first = engine.run_once(settings, client=client)
    assert first.sources == 1
    assert (first.postings_fetched, first.postings_upserted, first.deduped) == (2, 2, 0)
    assert first.errors == []
    assert first.started_at is not None and first.finished_at >= first.started_at

    second = engine.run_once(settings, client=client)
    assert (second.postings_fetched, second.postings_upserted, second.deduped) == (2, 0, 2)
    assert second.errors == []

    assert db.count_rows(settings.sqlite_path) == 2
    assert db.count_rows(settings.sqlite_path, "job_sources") == 1


# ----------------------------------------------------------------------
# 2. Stored row carries the extracted description fields
# ----------------------------------------------------------------------
def test_stored_posting_fields(make_settings, greenhouse_source, fake_http, greenhouse_payload):
    session, client = fake_http
    session.routes[GREENHOUSE_URL] = FakeResponse(200, greenhouse_payload)
    settings = make_settings([greenhouse_source])

    engine.run_once(settings, client=client)

    rows = {r["external_id"]: r for r in db.latest_postings(settings.sqlite_path)}
    row = rows["101"]
    assert row["source_name"] == "acme"
    assert row["company"] == "acme"
    assert row["remote"] == 1
    assert json.loads(row["requirements"]) == ["Own the roadmap", "Mentor engineers"]
    assert (row["years_experience_min"], row["years_experience_max"]) == (3, None)
    assert "3+ years of experience with Python" in row["description_text"]
    assert row["date_posted"] == "2024-03-01T17:00:00Z"
    assert row["hash"] == engine.fingerprint(
        RawPosting(
            source_name="acme",
            external_id="101",
            company="acme",
            title="Backend Engineer",
            url="https://boards.greenhouse.io/acme/jobs/101",
        )
    )
    assert (rows["102"]["years_experience_min"], rows["102"]["years_experience_max"]) == (2, 4)


# ----------------------------------------------------------------------
# 3. One failing source does not stop the others
# ----------------------------------------------------------------------
def test_partial_failure_is_isolated(
    make_settings, greenhouse_source, lever_source, fake_http, greenhouse_payload, lever_payload
):
    session, client = fake_http
    broken_url = "https://boards-api.greenhouse.io/v1/boards/initech/jobs"
    session.routes[broken_url] = FakeResponse(500, text="oops")
    session.routes[GREENHOUSE_URL] = FakeResponse(200, greenhouse_payload)
    session.routes[LEVER_URL] = FakeResponse(200, lever_payload)
    settings = make_settings([
        {"name": "initech", "type": "greenhouse", "base_url": broken_url},
        greenhouse_source,
        lever_source,
    ])

    status = engine.run_once(settings, client=client)

    assert status.sources == 3
    assert len(status.errors) == 1
    assert status.errors[0].startswith("initech:")
    assert "HTTP 500" in status.errors[0]
    assert status.postings_fetched == 3
    assert status.postings_upserted == 3


# ----------------------------------------------------------------------
# 4. Unsupported source types are skipped, not errors
# ----------------------------------------------------------------------
def test_unknown_type_is_skipped(make_settings, greenhouse_source, fake_http, greenhouse_payload):
    session, client = fake_http
    session.routes[GREENHOUSE_URL] = FakeResponse(200, greenhouse_payload)
    settings = make_settings([
        {"name": "hooli", "type": "workday", "base_url": "https://example.com/wd"},
        greenhouse_source,
    ])

    status = engine.run_once(settings, client=client)

    assert status.sources == 1
    assert status.errors == []
    assert [url for url, _ in session.calls] == [GREENHOUSE_URL]


def test_type_match_is_case_insensitive(make_settings, greenhouse_source, fake_http, greenhouse_payload):
    session, client = fake_http
    session.routes[GREENHOUSE_URL] = FakeResponse(200, greenhouse_payload)
    settings = make_settings([{**greenhouse_source, "type": "GreenHouse"}])

    assert engine.run_once(settings, client=client).postings_upserted == 2


# ----------------------------------------------------------------------
# 5. Malformed source configuration aborts the run
# ----------------------------------------------------------------------
@pytest.mark.parametrize("payload", ["{not json", '{"name": "acme"}', '[{"name": 5}]', "[1, 2]"])
def test_bad_source_configuration_aborts(make_settings, payload):
    settings = make_settings(sources_json=payload)

    with pytest.raises(RunAborted) as ei:
        engine.run_once(settings)

    status = ei.value.status
    assert len(status.errors) == 1
    assert str(ei.value) == status.errors[0]
    assert (status.sources, status.postings_fetched, status.postings_upserted, status.deduped) == (0, 0, 0, 0)
    assert status.finished_at is not None


def test_missing_sources_file_aborts(make_settings, tmp_path):
    settings = make_settings(sources_path=str(tmp_path / "nope.json"))

    with pytest.raises(RunAborted, match="sources file not found"):
        engine.run_once(settings)


def test_sources_file_is_read(make_settings, tmp_path, stub_provider):
    path = tmp_path / "sources.json"
    path.write_text(json.dumps([{"name": "acme", "type": "stub", "base_url": "x"}]), encoding="utf-8")
    settings = make_settings(sources_path=str(path))

    status = engine.run_once(settings, get_provider=lambda kind: stub_provider)

    assert status.postings_upserted == 2


def test_empty_source_list_is_a_clean_run(make_settings):
    status = engine.run_once(make_settings([]))
    assert status.sources == 0
    assert status.errors == []


# ----------------------------------------------------------------------
# 6. Fingerprint
# ----------------------------------------------------------------------
def test_fingerprint_is_deterministic():
    a = engine.fingerprint(_raw("1"))
    assert a == engine.fingerprint(_raw("1"))
    assert len(a) == 64 and all(c in "0123456789abcdef" for c in a)


def test_fingerprint_ignores_description_location_dates():
    base = engine.fingerprint(_raw("1"))
    assert engine.fingerprint(_raw("1", description_html="<p>changed</p>", location="Mars", remote=True)) == base


def test_fingerprint_changes_with_identity_fields():
    base = engine.fingerprint(_raw("1"))
    assert engine.fingerprint(_raw("1", title="Retitled")) != base
    assert engine.fingerprint(_raw("1", url="https://example.com/moved")) != base
    assert engine.fingerprint(_raw("1", source_name="other")) != base
    assert engine.fingerprint(_raw("2", title="Engineer 1", url="https://example.com/acme/1")) != base


# ----------------------------------------------------------------------
# 7. Storage outcomes
# ----------------------------------------------------------------------
def test_injected_provider_is_idempotent(make_settings, stub_provider):
    settings = make_settings([{"name": "acme", "type": "stub", "base_url": "x"}])

    first = engine.run_once(settings, get_provider=lambda kind: stub_provider)
    second = engine.run_once(settings, get_provider=lambda kind: stub_provider)

    assert (first.postings_upserted, first.deduped) == (2, 0)
    assert (second.postings_upserted, second.deduped) == (0, 2)


def test_lost_insert_race_counts_as_dedupe(make_settings, stub_provider):
    settings = make_settings([{"name": "acme", "type": "stub", "base_url": "x"}])

    def insert_posting(path, posting):
        raise DuplicatePosting("already stored")

    store = types.SimpleNamespace(
        find_posting_by_hash=lambda path, fp: None,
        find_or_create_source=db.find_or_create_source,
        insert_posting=insert_posting,
    )
    status = engine.run_once(settings, get_provider=lambda kind: stub_provider, store=store)

    assert (status.postings_upserted, status.deduped) == (0, 2)
    assert status.errors == []


def test_store_failure_is_per_posting(make_settings, stub_provider):
    settings = make_settings([{"name": "acme", "type": "stub", "base_url": "x"}])

    def insert_posting(path, posting):
        if posting.external_id == "1":
            raise StoreError("disk full")
        return db.insert_posting(path, posting)

    store = types.SimpleNamespace(
        find_posting_by_hash=db.find_posting_by_hash,
        find_or_create_source=db.find_or_create_source,
        insert_posting=insert_posting,
    )
    status = engine.run_once(settings, get_provider=lambda kind: stub_provider, store=store)

    assert status.errors == ["acme/1: disk full"]
    assert status.postings_upserted == 1
    assert status.deduped == 0
    assert db.count_rows(settings.sqlite_path) == 1


def test_source_registered_with_configured_type(make_settings, stub_provider):
    settings = make_settings([{"name": "acme", "type": "Stub", "base_url": "https://example.com/x"}])

    engine.run_once(settings, get_provider=lambda kind: stub_provider)

    src = db.find_or_create_source(settings.sqlite_path, "acme", type="ignored")
    assert (src.type, src.base_url) == ("stub", "https://example.com/x")


# ----------------------------------------------------------------------
# 8. Cancellation
# ----------------------------------------------------------------------
def test_cancelled_run_makes_no_requests(make_settings, greenhouse_source, lever_source, fake_http):
    session, client = fake_http
    settings = make_settings([greenhouse_source, lever_source])
    ctx = RunContext()
    ctx.cancel("shutdown")

    status = engine.run_once(settings, ctx, client=client)

    assert status.errors == ["run cancelled: shutdown"]
    assert status.postings_fetched == 0
    assert session.calls == []


def test_cancel_mid_run_keeps_committed_rows(make_settings, stub_provider):
    ctx = RunContext()

    class CancellingStub(stub_provider):
        def fetch_openings(self, ctx=None):
            items = super().fetch_openings(ctx)
            ctx.cancel("operator stop")
            return items

    settings = make_settings([
        {"name": "acme", "type": "stub", "base_url": "x"},
        {"name": "globex", "type": "stub", "base_url": "y"},
    ])
    status = engine.run_once(settings, ctx, get_provider=lambda kind: CancellingStub)

    assert status.postings_upserted == 2
    assert status.errors == ["run cancelled: operator stop"]
    assert db.count_rows(settings.sqlite_path) == 2
