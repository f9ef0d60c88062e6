# tests/test_cli.py
import json

import pytest

from conftest import GREENHOUSE_URL, FakeResponse, FakeSession
from modules.job_ingest.lib.http_client import HttpClient
from service import cli


@pytest.fixture
def cli_config(tmp_path, greenhouse_source):
    def _write(**ingest):
        cfg = {
            "timezone": "UTC",
            "ingest": {
                "enabled": False,
                "cron": "0 */6 * * *",
                "sqlite_path": str(tmp_path / "cli.db"),
                "status_path": str(tmp_path / "cli_status.json"),
                "sources": [greenhouse_source],
                **ingest,
            },
        }
        p = tmp_path / "config.json"
        p.write_text(json.dumps(cfg), encoding="utf-8")
        return str(p)

    return _write


@pytest.fixture
def offline_boards(monkeypatch, greenhouse_payload):
    """Route every HttpClient the engine builds through a fake session."""
    session = FakeSession({GREENHOUSE_URL: FakeResponse(200, greenhouse_payload)})
    monkeypatch.setattr(
        "modules.job_ingest.lib.engine.HttpClient",
        lambda **kw: HttpClient(session=session, backoff_factor=0, **kw),
    )
    return session


def test_validate_config_ok(cli_config, capsys):
    rc = cli.main(["--config", cli_config(), "validate-config", "--preview", "2"])

    out, _ = capsys.readouterr()
    assert rc == 0
    assert "OK: configuration is valid." in out
    assert out.count("next:") == 2


def test_validate_config_rejects_bad_cron(cli_config, capsys):
    rc = cli.main(["--config", cli_config(cron="61 * * * *"), "validate-config"])

    _, err = capsys.readouterr()
    assert rc == 1
    assert "configuration invalid" in err


def test_sources_command(cli_config, capsys):
    rc = cli.main(["--config", cli_config(), "sources"])

    out, _ = capsys.readouterr()
    assert rc == 0
    body = json.loads(out)
    assert [s["name"] for s in body["data"]] == ["acme"]


def test_run_then_status(cli_config, offline_boards, capsys):
    path = cli_config()

    rc = cli.main(["--config", path, "run"])
    out, err = capsys.readouterr()
    assert rc == 0
    assert json.loads(out)["data"]["postings_upserted"] == 2
    assert "DONE" in err
    assert len(offline_boards.calls) == 1

    # Second invocation only reads what the first one persisted
    rc = cli.main(["--config", path, "status"])
    out, _ = capsys.readouterr()
    assert rc == 0
    assert json.loads(out)["data"]["postings_upserted"] == 2


def test_run_with_failing_source_exits_zero(cli_config, monkeypatch, capsys):
    session = FakeSession({GREENHOUSE_URL: FakeResponse(500, text="boom")})
    monkeypatch.setattr(
        "modules.job_ingest.lib.engine.HttpClient",
        lambda **kw: HttpClient(session=session, backoff_factor=0, **kw),
    )

    rc = cli.main(["--config", cli_config(), "run"])

    out, err = capsys.readouterr()
    assert rc == 0
    assert len(json.loads(out)["data"]["errors"]) == 1
    assert "1 error(s)" in err


def test_run_with_bad_sources_exits_one(cli_config, capsys):
    rc = cli.main(["--config", cli_config(sources=None, sources_json="not json"), "run"])

    out, err = capsys.readouterr()
    assert rc == 1
    assert "FAILURE" in err
    assert json.loads(out)["error"].startswith("source configuration is invalid JSON")


def test_unreadable_config_exits_one(tmp_path, capsys):
    rc = cli.main(["--config", str(tmp_path / "missing.json"), "sources"])

    _, err = capsys.readouterr()
    assert rc == 1
    assert "not found" in err
