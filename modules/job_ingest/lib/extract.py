"""
Pure helpers that turn ATS description markup into structured fields.

  - html_to_text:              plain text, whitespace collapsed
  - extract_bullets:           text of every <li>, in document order
  - extract_years_experience:  "3+ years of experience" -> (3, None)
  - extract_posting_fields:    all of the above in one call

None of these raise on bad markup; they degrade to a best-effort result.
"""

from __future__ import annotations

import json
import logging
import re
from typing import NamedTuple

from bs4 import BeautifulSoup  # pip install beautifulsoup4 html5lib

LOG = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]*>?")
_YEARS_RE = re.compile(
    r"\b(\d{1,2})\+?\s*(?:-\s*(\d{1,2})\s*)?years?\s+of\s+experience\b",
    re.IGNORECASE,
)


class PostingFields(NamedTuple):
    text: str
    bullets_json: str
    years_min: int | None
    years_max: int | None


def _collapse(s: str) -> str:
    return " ".join(s.split())


def _parse(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html5lib")


def strip_tags(html: str) -> str:
    """Naive angle-bracket stripping; used when the parser gives up."""
    return _TAG_RE.sub("", html)


def html_to_text(html: str | None) -> str:
    if not html or not html.strip():
        return ""
    try:
        soup = _parse(html)
    except Exception:
        LOG.debug("html parse failed; falling back to tag stripping", exc_info=True)
        return _collapse(strip_tags(html))
    return _collapse(soup.get_text(" "))


def extract_bullets(html: str | None) -> list[str]:
    if not html or not html.strip():
        return []
    try:
        soup = _parse(html)
    except Exception:
        LOG.debug("html parse failed; no bullets extracted", exc_info=True)
        return []
    return [_collapse(li.get_text(" ")) for li in soup.find_all("li")]


def extract_years_experience(text: str | None) -> tuple[int | None, int | None]:
    """
    First "<N>[+] [- <M>] years of experience" mention only.
    max is returned only when a range was written out.
    """
    if not text:
        return None, None
    m = _YEARS_RE.search(text)
    if not m:
        return None, None
    years_min = int(m.group(1))
    years_max = int(m.group(2)) if m.group(2) else None
    return years_min, years_max


def extract_posting_fields(html: str | None) -> PostingFields:
    if not html:
        return PostingFields("", "[]", None, None)
    text = html_to_text(html)
    bullets = extract_bullets(html)
    years_min, years_max = extract_years_experience(text)
    return PostingFields(text, json.dumps(bullets, ensure_ascii=False), years_min, years_max)
