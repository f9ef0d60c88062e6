# modules/job_ingest/lib/providers/greenhouse.py
from __future__ import annotations

import html
from typing import Any

from ..models import RawPosting
from ..utils import parse_iso_datetime
from .base import BaseProvider
from .registry import register


@register
class GreenhouseProvider(BaseProvider):
    """
    Greenhouse job board API ("jobs array" shape).

    base_url is the board endpoint, e.g.
        https://boards-api.greenhouse.io/v1/boards/acme/jobs
    optionally with ?content=true to include the description body.

    Payload:
        {"jobs": [{"id": 101, "title": "...", "updated_at": "2024-03-01T12:00:00-05:00",
                   "absolute_url": "...", "location": {"name": "Remote - US"},
                   "content": "&lt;p&gt;...&lt;/p&gt;"}]}
    """

    kind = "greenhouse"

    def parse(self, payload: Any) -> list[RawPosting]:
        if not isinstance(payload, dict):
            raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
        jobs = payload.get("jobs") or []
        if not isinstance(jobs, list):
            raise ValueError("'jobs' must be an array")

        out: list[RawPosting] = []
        for job in jobs:
            if not isinstance(job, dict):
                continue
            location = job.get("location") or {}
            loc_name = str(location.get("name") or "").strip() if isinstance(location, dict) else ""
            out.append(
                RawPosting(
                    source_name=self.name(),
                    external_id=_str_id(job.get("id")),
                    company=self.name(),
                    title=str(job.get("title") or "").strip(),
                    url=str(job.get("absolute_url") or "").strip(),
                    location=loc_name,
                    remote="remote" in loc_name.lower(),
                    date_posted=parse_iso_datetime(job.get("updated_at")),
                    # Board API returns the body HTML-escaped
                    description_html=html.unescape(str(job.get("content") or "")),
                )
            )
        return out


def _str_id(value: Any) -> str:
    if value is None:
        return ""
    # Numeric ids may arrive as floats from some proxies; keep "101", not "101.0"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)
