from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from .utils import iso_or_none


@dataclass(frozen=True)
class RawPosting:
    """
    A single job posting as returned by a provider (pre-dedupe, never persisted).
    Dedupe is performed by the engine on fingerprint(source_name, external_id, title, url).
    """

    source_name: str  # configured source name, e.g. "acme"
    external_id: str  # unique within that source
    company: str
    title: str
    url: str
    location: str = ""
    remote: bool = False
    employment_type: str = ""
    date_posted: datetime | None = None
    description_html: str = ""


@dataclass(frozen=True)
class SourceRecord:
    """Row of the job_sources registry."""

    id: int
    name: str
    type: str
    base_url: str
    active: bool = True


@dataclass
class CanonicalPosting:
    """
    Insert payload for job_postings. Built once from a RawPosting plus the
    extracted description fields; never mutated after insert.
    """

    source_id: int
    external_id: str
    company: str
    title: str
    url: str
    hash: str
    fetched_at: datetime
    location: str = ""
    remote: bool = False
    employment_type: str = ""
    seniority: str = ""
    description_text: str = ""
    responsibilities: str = "[]"
    requirements: str = "[]"
    qualifications: str = "[]"
    skills_extracted: str = "[]"
    tools_extracted: str = "[]"
    years_experience_min: int | None = None
    years_experience_max: int | None = None
    education_requirements: str = ""
    date_posted: datetime | None = None
    valid_through: datetime | None = None


@dataclass
class RunStatus:
    """
    Summary of one ingestion run.
    - errors: one entry per failed source or failed individual upsert.
    """

    started_at: datetime | None = None
    finished_at: datetime | None = None
    sources: int = 0
    postings_fetched: int = 0
    postings_upserted: int = 0
    deduped: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["started_at"] = iso_or_none(self.started_at)
        out["finished_at"] = iso_or_none(self.finished_at)
        return out
