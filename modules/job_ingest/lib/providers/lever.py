# modules/job_ingest/lib/providers/lever.py
from __future__ import annotations

import html
from typing import Any

from ..models import RawPosting
from ..utils import from_epoch_millis
from .base import BaseProvider
from .registry import register


@register
class LeverProvider(BaseProvider):
    """
    Lever postings API ("flat listing array" shape).

    base_url is the postings endpoint, e.g.
        https://api.lever.co/v0/postings/acme?mode=json

    Payload (top-level array):
        [{"id": "5f1c...", "text": "Senior Engineer", "description": "<div>...</div>",
          "lists": [{"text": "Requirements", "content": "<li>...</li>"}],
          "hostedUrl": "https://jobs.lever.co/acme/5f1c...",
          "categories": {"location": "Remote", "commitment": "Full-time"},
          "workplaceType": "remote", "createdAt": 1709294400000}]

    Behavior:
      - title is Lever's "text" field, falling back to "title".
      - description_html carries the raw body plus every list section wrapped
        in <ul>, so bullet extraction sees the requirement lists.
    """

    kind = "lever"

    def parse(self, payload: Any) -> list[RawPosting]:
        if not isinstance(payload, list):
            raise ValueError(f"expected a JSON array, got {type(payload).__name__}")

        out: list[RawPosting] = []
        for entry in payload:
            if not isinstance(entry, dict):
                continue
            categories = entry.get("categories") or {}
            if not isinstance(categories, dict):
                categories = {}
            location = str(categories.get("location") or "").strip()
            workplace = str(entry.get("workplaceType") or "").strip().lower()

            out.append(
                RawPosting(
                    source_name=self.name(),
                    external_id=str(entry.get("id") or ""),
                    company=self.name(),
                    title=str(entry.get("text") or entry.get("title") or "").strip(),
                    url=str(entry.get("hostedUrl") or "").strip(),
                    location=location,
                    remote=workplace == "remote" or "remote" in location.lower(),
                    employment_type=str(categories.get("commitment") or "").strip(),
                    date_posted=from_epoch_millis(entry.get("createdAt")),
                    description_html=_description_html(entry),
                )
            )
        return out


def _description_html(entry: dict[str, Any]) -> str:
    parts: list[str] = []
    body = entry.get("description")
    if isinstance(body, str) and body.strip():
        parts.append(body)
    for section in entry.get("lists") or []:
        if not isinstance(section, dict):
            continue
        heading = str(section.get("text") or "").strip()
        content = str(section.get("content") or "")
        if heading:
            parts.append(f"<h3>{html.escape(heading)}</h3>")
        if content.strip():
            parts.append(f"<ul>{content}</ul>")
    return "".join(parts)
