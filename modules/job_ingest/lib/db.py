from __future__ import annotations

import contextlib
import os
import sqlite3
from typing import Any

from .errors import DuplicatePosting, StoreError
from .logging_bridge import error as log_error
from .models import CanonicalPosting, SourceRecord
from .utils import iso_or_none, now_iso

# ---- Public API -------------------------------------------------------------


def init_db(sqlite_path: str) -> None:
    """
    Ensure the SQLite database and schema exist.
    Safe to call multiple times.
    """
    _ensure_dir(sqlite_path)
    with contextlib.closing(_connect(sqlite_path)) as conn:
        _apply_pragmas(conn)
        _ensure_schema(conn)


def find_posting_by_hash(sqlite_path: str, fingerprint: str) -> dict[str, Any] | None:
    """Return the stored posting row for `fingerprint`, or None."""
    try:
        with contextlib.closing(_open(sqlite_path)) as conn:
            conn.row_factory = sqlite3.Row
            row = conn.execute("SELECT * FROM job_postings WHERE hash = ?", (fingerprint,)).fetchone()
    except sqlite3.Error as e:
        raise StoreError(f"lookup by hash failed: {e}") from e
    return dict(row) if row else None


def find_or_create_source(sqlite_path: str, name: str, *, type: str = "remote", base_url: str = "") -> SourceRecord:
    """
    Return the registry entry for `name`, inserting it with the given defaults
    when it is seen for the first time. Existing entries are never modified.
    """
    ts = now_iso()
    try:
        with contextlib.closing(_open(sqlite_path)) as conn:
            cur = conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            cur.execute(
                """
                INSERT OR IGNORE INTO job_sources (name, type, base_url, active, created_at, updated_at)
                VALUES (?, ?, ?, 1, ?, ?)
                """,
                (name, type, base_url, ts, ts),
            )
            cur.execute("SELECT id, name, type, base_url, active FROM job_sources WHERE name = ?", (name,))
            row = cur.fetchone()
            conn.commit()
    except sqlite3.Error as e:
        log_error({
            "component": "job_ingest.db",
            "op": "find_or_create_source",
            "sqlite_path": sqlite_path,
            "source": name,
            "error": repr(e),
        })
        raise StoreError(f"find-or-create source {name!r} failed: {e}") from e

    if row is None:
        raise StoreError(f"find-or-create source {name!r} returned no row")
    return SourceRecord(id=int(row[0]), name=row[1], type=row[2], base_url=row[3], active=bool(row[4]))


def insert_posting(sqlite_path: str, posting: CanonicalPosting) -> int:
    """
    Insert one canonical posting and return its row id.

    Raises DuplicatePosting when the fingerprint already exists (another run
    won the race), StoreError for anything else.
    """
    ts = now_iso()
    values = {
        "source_id": posting.source_id,
        "external_id": posting.external_id,
        "company": posting.company,
        "title": posting.title,
        "seniority": posting.seniority,
        "employment_type": posting.employment_type,
        "location": posting.location,
        "remote": 1 if posting.remote else 0,
        "url": posting.url,
        "description_text": posting.description_text,
        "responsibilities": posting.responsibilities,
        "requirements": posting.requirements,
        "qualifications": posting.qualifications,
        "skills_extracted": posting.skills_extracted,
        "tools_extracted": posting.tools_extracted,
        "years_experience_min": posting.years_experience_min,
        "years_experience_max": posting.years_experience_max,
        "education_requirements": posting.education_requirements,
        "date_posted": iso_or_none(posting.date_posted),
        "valid_through": iso_or_none(posting.valid_through),
        "hash": posting.hash,
        "fetched_at": iso_or_none(posting.fetched_at),
        "created_at": ts,
        "updated_at": ts,
    }
    cols = ", ".join(values)
    marks = ", ".join(f":{k}" for k in values)
    try:
        with contextlib.closing(_open(sqlite_path)) as conn:
            cur = conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            cur.execute(f"INSERT INTO job_postings ({cols}) VALUES ({marks})", values)
            row_id = int(cur.lastrowid)
            conn.commit()
    except sqlite3.IntegrityError as e:
        if "job_postings.hash" in str(e):
            raise DuplicatePosting(f"fingerprint {posting.hash[:12]} already stored") from e
        raise StoreError(f"insert posting failed: {e}") from e
    except sqlite3.Error as e:
        log_error({
            "component": "job_ingest.db",
            "op": "insert_posting",
            "sqlite_path": sqlite_path,
            "external_id": posting.external_id,
            "error": repr(e),
        })
        raise StoreError(f"insert posting failed: {e}") from e
    return row_id


# ---- Nice-to-have helpers for tests & diagnostics --------------------------


def count_rows(sqlite_path: str, table: str = "job_postings") -> int:
    """Return total rows in `table`; 0 if DB missing/empty."""
    if table not in ("job_postings", "job_sources"):
        raise ValueError(f"unknown table {table!r}")
    if not os.path.exists(sqlite_path):
        return 0
    with contextlib.closing(_open(sqlite_path)) as conn:
        (n,) = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
    return int(n or 0)


def latest_postings(sqlite_path: str, limit: int = 20) -> list[dict[str, Any]]:
    """Most recently fetched postings joined with their source name."""
    if not os.path.exists(sqlite_path):
        return []
    with contextlib.closing(_open(sqlite_path)) as conn:
        conn.row_factory = sqlite3.Row
        rows = conn.execute(
            """
            SELECT p.*, s.name AS source_name
              FROM job_postings p JOIN job_sources s ON s.id = p.source_id
             ORDER BY p.fetched_at DESC, p.id DESC
             LIMIT ?
            """,
            (int(limit),),
        ).fetchall()
    return [dict(r) for r in rows]


def reset_db(sqlite_path: str) -> None:
    """
    Remove the DB file entirely (for pytest fixtures).
    Safe if it doesn't exist.
    """
    for suffix in ("", "-wal", "-shm"):
        with contextlib.suppress(FileNotFoundError):
            os.remove(sqlite_path + suffix)


# ---- Internal utilities -----------------------------------------------------


def _ensure_dir(sqlite_path: str) -> None:
    d = os.path.dirname(os.path.abspath(sqlite_path)) or "."
    os.makedirs(d, exist_ok=True)


def _connect(sqlite_path: str) -> sqlite3.Connection:
    # isolation_level=None gives autocommit mode; we'll manage transactions explicitly.
    return sqlite3.connect(sqlite_path, timeout=30.0, isolation_level=None)


def _open(sqlite_path: str) -> sqlite3.Connection:
    init_db(sqlite_path)
    conn = _connect(sqlite_path)
    _apply_pragmas(conn)
    return conn


def _apply_pragmas(conn: sqlite3.Connection) -> None:
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA foreign_keys=ON;")
    conn.execute("PRAGMA temp_store=MEMORY;")
    conn.execute("PRAGMA cache_size=-8000;")  # approx 8MB cache


def _ensure_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS job_sources (
          id INTEGER PRIMARY KEY,
          name TEXT NOT NULL,
          type TEXT NOT NULL DEFAULT '',
          base_url TEXT NOT NULL DEFAULT '',
          active INTEGER NOT NULL DEFAULT 1,
          created_at TEXT NOT NULL,
          updated_at TEXT NOT NULL
        );
        """
    )
    conn.execute("CREATE UNIQUE INDEX IF NOT EXISTS ux_job_sources_name ON job_sources (name);")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS job_postings (
          id INTEGER PRIMARY KEY,
          source_id INTEGER NOT NULL REFERENCES job_sources(id),
          external_id TEXT NOT NULL,
          company TEXT NOT NULL DEFAULT '',
          title TEXT NOT NULL DEFAULT '',
          seniority TEXT NOT NULL DEFAULT '',
          employment_type TEXT NOT NULL DEFAULT '',
          location TEXT NOT NULL DEFAULT '',
          remote INTEGER NOT NULL DEFAULT 0,
          url TEXT NOT NULL DEFAULT '',
          description_text TEXT NOT NULL DEFAULT '',
          responsibilities TEXT NOT NULL DEFAULT '[]',
          requirements TEXT NOT NULL DEFAULT '[]',
          qualifications TEXT NOT NULL DEFAULT '[]',
          skills_extracted TEXT NOT NULL DEFAULT '[]',
          tools_extracted TEXT NOT NULL DEFAULT '[]',
          years_experience_min INTEGER,
          years_experience_max INTEGER,
          education_requirements TEXT NOT NULL DEFAULT '',
          date_posted TEXT,
          valid_through TEXT,
          hash TEXT NOT NULL,
          fetched_at TEXT NOT NULL,
          created_at TEXT NOT NULL,
          updated_at TEXT NOT NULL
        );
        """
    )
    # Fingerprint uniqueness is the authoritative dedupe guard.
    conn.execute("CREATE UNIQUE INDEX IF NOT EXISTS ux_job_postings_hash ON job_postings (hash);")
    conn.execute("CREATE INDEX IF NOT EXISTS ix_job_postings_src_ext ON job_postings (source_id, external_id);")
