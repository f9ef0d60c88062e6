# service/cli.py
"""
User-facing command-line entrypoints.

Subcommands
-----------
serve
    - Starts the ingestion scheduler (if enabled) and waits for SIGINT/SIGTERM
    - Optionally runs one ingestion immediately (--run-now)

run [--timeout SEC]
    - Runs one ingestion synchronously and prints the status JSON
    - Exit 0 even when some sources failed; 1 only when the source
      configuration itself could not be read

status
    - Prints the last recorded run status

sources
    - Prints the configured sources (no fetch)

validate-config
    - Loads/validates config, shows the next cron fire times, nonzero on error
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from modules.job_ingest.lib.context import RunContext

from . import config_schema as _config_schema
from . import logging_utils as L
from . import scheduler as _scheduler
from .runner import IngestRunner

LOG = logging.getLogger("service.cli")


# -------------------------- Utility / glue code ------------------------------
def _now_iso() -> str:
    return datetime.now().astimezone().isoformat()


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def _build_runner(args: argparse.Namespace) -> tuple[dict[str, Any], IngestRunner]:
    cfg = _config_schema.load_config(args.config)
    return cfg, IngestRunner(_config_schema.settings_from_config(cfg))


# ------------------------------ Subcommands ----------------------------------
def cmd_validate_config(args: argparse.Namespace) -> int:
    try:
        cfg = _config_schema.load_config(args.config)
        ingest = cfg["ingest"]
        tz = _scheduler.resolve_timezone(cfg.get("timezone"))
        trigger = _scheduler.build_cron_trigger(ingest["cron"], tz)
    except KeyboardInterrupt:
        return 130
    except (_config_schema.ConfigError, ValueError) as e:
        LOG.debug("Configuration validation failed", exc_info=True)
        print(f"ERROR: configuration invalid: {e}", file=sys.stderr)
        return 1

    print("OK: configuration is valid.")
    print(f"  enabled: {ingest['enabled']}")
    print(f"  cron:    {ingest['cron']} ({cfg.get('timezone')})")
    for t in _scheduler.preview_fire_times(trigger, tz, count=args.preview):
        print(f"    next:  {t.isoformat()}")
    return 0


def cmd_sources(args: argparse.Namespace) -> int:
    try:
        _, runner = _build_runner(args)
    except _config_schema.ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    _, body = runner.sources()
    _print_json(body)
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    try:
        _, runner = _build_runner(args)
    except _config_schema.ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    _, body = runner.last_status()
    _print_json(body)
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    try:
        _, runner = _build_runner(args)
    except _config_schema.ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    ctx = RunContext.background(args.timeout if args.timeout is not None else runner.settings.run_timeout_sec)
    try:
        code, body = runner.run_now(ctx, trigger_type="adhoc")
    except KeyboardInterrupt:
        ctx.cancel("interrupted")
        return 130

    _print_json(body)
    if code != 200:
        print(f"FAILURE: {body.get('error')}", file=sys.stderr)
        return 1
    errors = body["data"].get("errors") or []
    print("DONE: ingestion run completed" + (f" with {len(errors)} error(s)." if errors else "."), file=sys.stderr)
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """
    Run the scheduler until a termination signal is received.
    """
    try:
        cfg, runner = _build_runner(args)
    except _config_schema.ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    L.write_activity_log({"ts": _now_iso(), "event": "serve_start"})
    sched = _scheduler.IngestScheduler(runner, timezone=cfg.get("timezone") or "UTC")
    stop_event = threading.Event()

    def _graceful_shutdown(signum=None, frame=None):
        LOG.info("Signal %s received; initiating shutdown...", signum)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _graceful_shutdown)

    try:
        if not sched.start():
            LOG.warning("Scheduler not running (disabled or invalid cron); serving on-demand only.")
        if args.run_now:
            runner.run_now(trigger_type="startup")

        # Main wait loop (respond quickly to signals)
        while not stop_event.wait(0.3):
            pass
    except KeyboardInterrupt:
        _graceful_shutdown("KeyboardInterrupt")
    finally:
        sched.stop()
        sched.join(timeout=10.0)
        L.write_activity_log({"ts": _now_iso(), "event": "serve_stop"})
    return 0


# ------------------------------- Argparse ------------------------------------
def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="python -m service.cli",
        description="Job posting ingestion service",
    )
    p.add_argument(
        "--config",
        help="Path to config file (fallbacks to CONFIG_PATH env or built-in defaults).",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    sp = sub.add_parser("serve", help="Run the ingestion scheduler until interrupted.")
    sp.add_argument("--run-now", action="store_true", help="Also run one ingestion at startup.")
    sp.set_defaults(func=cmd_serve)

    sp = sub.add_parser("run", help="Run one ingestion now and print its status.")
    sp.add_argument("--timeout", type=float, default=None, help="Deadline for the whole run, in seconds.")
    sp.set_defaults(func=cmd_run)

    sp = sub.add_parser("status", help="Print the last recorded run status.")
    sp.set_defaults(func=cmd_status)

    sp = sub.add_parser("sources", help="Print the configured sources.")
    sp.set_defaults(func=cmd_sources)

    sp = sub.add_parser("validate-config", help="Verify configuration correctness.")
    sp.add_argument("--preview", type=int, default=3, help="How many upcoming fire times to show.")
    sp.set_defaults(func=cmd_validate_config)

    return p


# --------------------------------- Main --------------------------------------
def main(argv: Iterable[str] | None = None) -> int:
    L.configure_logging()
    parser = _build_parser()
    args = parser.parse_args(args=list(argv) if argv is not None else None)
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
