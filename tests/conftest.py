# tests/conftest.py
import json
import os
import tempfile

import pytest
from freezegun import freeze_time

from modules.job_ingest.lib import config as ji_config
from modules.job_ingest.lib.http_client import HttpClient


# ---------------------------------------------------------------------
# Live tests are opt-in: use --live or RUN_LIVE_TESTS=1
# ---------------------------------------------------------------------
def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--live",
        action="store_true",
        default=False,
        help="Run tests marked as 'live' (network calls against real job boards).",
    )


def pytest_configure(config: pytest.Config) -> None:
    # Marker registration (so pytest --markers shows it)
    config.addinivalue_line(
        "markers",
        "live: marks tests that perform live network calls or hit external services (skipped by default).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_live = config.getoption("--live") or os.getenv("RUN_LIVE_TESTS") == "1"
    if run_live:
        return
    skip_live = pytest.mark.skip(reason="live tests disabled (use --live or RUN_LIVE_TESTS=1)")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------
# Test-wide env defaults (autouse, function-scoped)
# ---------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _env_defaults(monkeypatch):
    # Write logs to a throwaway dir so real logs stay clean (per test)
    tmp_logs = tempfile.mkdtemp(prefix="ji-pytest-logs-")
    monkeypatch.setenv("LOG_DIR", tmp_logs)
    monkeypatch.setenv("ACTIVITY_LOG_PREFIX", "activity-test")
    monkeypatch.setenv("ERROR_LOG_PREFIX", "error-test")

    # Operator overrides on the host must not leak into tests
    for key in (
        "CONFIG_PATH",
        "INGEST_ENABLED",
        "INGEST_CRON",
        "INGEST_SOURCES_JSON",
        "INGEST_SQLITE_PATH",
        "INGEST_STATUS_PATH",
    ):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("TZ", "UTC")
    yield


@pytest.fixture
def frozen_utc():
    with freeze_time("2025-01-01T00:00:00Z"):
        yield


# ---------------------------------------------------------------------
# Fake HTTP: a requests.Session stand-in keyed by URL
# ---------------------------------------------------------------------
class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else json.dumps(payload)

    def json(self):
        if self._payload is None:
            raise ValueError("no JSON body")
        return self._payload


class FakeSession:
    """
    routes: url -> FakeResponse | Exception, or a list of those answered in
    order (the last one repeats). Unknown URLs answer 404.
    Every call is recorded in .calls as (url, kwargs).
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []
        self.closed = False

    def get(self, url, **kwargs):
        self.calls.append((url, kwargs))
        route = self.routes.get(url)
        if isinstance(route, list):
            route = route.pop(0) if len(route) > 1 else route[0]
        if route is None:
            return FakeResponse(404, text="not found")
        if isinstance(route, Exception):
            raise route
        return route

    def close(self):
        self.closed = True


@pytest.fixture
def fake_http():
    """Return (session, client); tests add routes to session.routes."""
    session = FakeSession()
    return session, HttpClient(timeout=5.0, backoff_factor=0, session=session)


# ---------------------------------------------------------------------
# Board payloads
# ---------------------------------------------------------------------
GREENHOUSE_URL = "https://boards-api.greenhouse.io/v1/boards/acme/jobs?content=true"
LEVER_URL = "https://api.lever.co/v0/postings/globex?mode=json"


@pytest.fixture
def greenhouse_payload():
    return {
        "jobs": [
            {
                "id": 101,
                "title": "Backend Engineer",
                "updated_at": "2024-03-01T12:00:00-05:00",
                "absolute_url": "https://boards.greenhouse.io/acme/jobs/101",
                "location": {"name": "Remote - US"},
                "content": (
                    "&lt;p&gt;We need 3+ years of experience with Python.&lt;/p&gt;"
                    "&lt;ul&gt;&lt;li&gt;Own the roadmap&lt;/li&gt;&lt;li&gt;Mentor engineers&lt;/li&gt;&lt;/ul&gt;"
                ),
            },
            {
                "id": 102,
                "title": "Data Engineer",
                "updated_at": "2024-03-02T08:30:00Z",
                "absolute_url": "https://boards.greenhouse.io/acme/jobs/102",
                "location": {"name": "Austin, TX"},
                "content": "&lt;p&gt;2-4 years of experience building pipelines.&lt;/p&gt;",
            },
        ]
    }


@pytest.fixture
def lever_payload():
    return [
        {
            "id": "5f1c-aaaa",
            "text": "Senior Platform Engineer",
            "hostedUrl": "https://jobs.lever.co/globex/5f1c-aaaa",
            "categories": {"location": "Berlin", "commitment": "Full-time"},
            "workplaceType": "remote",
            "createdAt": 1709294400000,
            "description": "<div>Join the platform team.</div>",
            "lists": [
                {"text": "Requirements", "content": "<li>5+ years of experience in Go</li><li>Kubernetes</li>"},
            ],
        }
    ]


# ---------------------------------------------------------------------
# Settings / storage
# ---------------------------------------------------------------------
@pytest.fixture
def sqlite_path(tmp_path):
    return str(tmp_path / "job_ingest.db")


@pytest.fixture
def make_settings(tmp_path, sqlite_path):
    """
    Build a brand-new Settings for the given source list, with a per-test
    SQLite file and status file.
    """

    def _make(sources=None, **overrides):
        kwargs = {
            "sqlite_path": sqlite_path,
            "status_path": str(tmp_path / "status.json"),
            "run_timeout_sec": 0,
        }
        # An explicit payload or file replaces the inline list
        if "sources_json" not in overrides and "sources_path" not in overrides:
            kwargs["sources"] = sources or []
        kwargs.update(overrides)
        return ji_config.Settings.from_env_and_kwargs(kwargs)

    return _make


@pytest.fixture
def greenhouse_source():
    return {"name": "acme", "type": "greenhouse", "base_url": GREENHOUSE_URL}


@pytest.fixture
def lever_source():
    return {"name": "globex", "type": "lever", "base_url": LEVER_URL}
