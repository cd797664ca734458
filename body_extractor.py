"""Paper link extraction from Google Scholar alert email bodies."""

from __future__ import annotations

import html
import logging
import re
from collections.abc import Iterable
from datetime import datetime

from models import Record, RecordType, Thread
from subject_parser import parse_subject
from url_resolver import resolve_scholar_url

LOGGER = logging.getLogger(__name__)

SCHOLAR_FOOTER_MARKER = "This message was sent by Google Scholar"
SCHOLAR_DOMAIN_MARKER = "scholar.google.com"

# Links in the alert chrome that point at settings, help or account pages
# rather than papers.
IGNORED_URL_FRAGMENTS: frozenset[str] = frozenset({
    "scholar.google.com/scholar_alerts",
    "scholar.google.com/scholar_settings",
    "support.google.com",
    "google.com/intl/",
    "mail.google.com",
    "accounts.google.com",
})

_LINK_PATTERN = re.compile(r"<a[^>]+href=[\"']([^\"']+)[\"'][^>]*>([^<]+)</a>", re.IGNORECASE)
_WHITESPACE_PATTERN = re.compile(r"\s+")


def truncate_at_footer(body: str, marker: str = SCHOLAR_FOOTER_MARKER) -> str:
    end = body.find(marker)
    return body if end == -1 else body[:end]


def is_paper_link(url: str) -> bool:
    """True for Scholar links that are not alert chrome.

    Only the wrapped Scholar URL is checked; the resolved destination is not.
    """
    if SCHOLAR_DOMAIN_MARKER not in url:
        return False
    return not any(fragment in url for fragment in IGNORED_URL_FRAGMENTS)


def extract_records(
    body: str,
    *,
    author: str,
    record_type: RecordType,
    date: datetime | None,
) -> list[Record]:
    """Return one Record per paper link found before the Scholar footer."""
    content = truncate_at_footer(body)

    records: list[Record] = []
    for match in _LINK_PATTERN.finditer(content):
        url, text = match.group(1), match.group(2)
        if not is_paper_link(url):
            continue

        title = _clean_title(text)
        if not title:
            continue

        records.append(
            Record(
                title=title,
                author=author,
                link=resolve_scholar_url(url),
                type=record_type,
                date=date,
            )
        )
    return records


def extract_thread_records(threads: Iterable[Thread]) -> list[Record]:
    """Extract records from every thread, skipping threads that fail to parse.

    Author and type come from the thread subject; body and date come from the
    thread's latest message.
    """
    threads = list(threads)
    records: list[Record] = []

    for index, thread in enumerate(threads, start=1):
        LOGGER.info("Processing thread %s/%s", index, len(threads))
        try:
            author, record_type = parse_subject(thread.subject)
            latest = thread.messages[-1]
            found = extract_records(
                latest.body,
                author=author,
                record_type=record_type,
                date=latest.sent_date,
            )
        except Exception as exc:  # one bad thread must not sink the batch
            LOGGER.exception("Error processing thread %s: %s", index, exc)
            continue

        LOGGER.debug("Thread %s: subject=%r links=%s", index, thread.subject, len(found))
        records.extend(found)

    return records


def _clean_title(text: str) -> str:
    return _WHITESPACE_PATTERN.sub(" ", html.unescape(text)).strip()
