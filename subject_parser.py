"""Author and alert-type extraction from Scholar alert subject lines."""

from __future__ import annotations

import re

from models import RecordType

# Checked in order; first containment wins.
_TYPE_MARKERS: tuple[tuple[str, RecordType], ...] = (
    ("new citations to articles", RecordType.CITATION),
    ("new citation to articles", RecordType.CITATION),
    ("new related research", RecordType.RELATED_RESEARCH),
    ("new articles", RecordType.NEW_ARTICLE),
)

_AUTHOR_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\d+\s+new\s+citations?\s+to\s+articles\s+by\s+(.+?)(?:\s+-|$)", re.IGNORECASE),
    re.compile(r"^(.+?)\s+-\s+new\s+related\s+research", re.IGNORECASE),
    re.compile(r"^(.+?)\s+-\s+new\s+articles", re.IGNORECASE),
)


def classify_subject(subject: str) -> RecordType:
    """Map a subject line to its alert type; unknown subjects count as new articles."""
    text = (subject or "").lower()
    for marker, record_type in _TYPE_MARKERS:
        if marker in text:
            return record_type
    return RecordType.NEW_ARTICLE


def extract_author(subject: str) -> str:
    """Return the alert's author name, or "" when no known subject shape matches."""
    text = (subject or "").strip()
    for pattern in _AUTHOR_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1).strip()
    return ""


def parse_subject(subject: str) -> tuple[str, RecordType]:
    return extract_author(subject), classify_subject(subject)
