"""Title normalization, identity strategies and intra-batch record merging."""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from dataclasses import replace

from models import Record

KeyFunc = Callable[[Record], str]

_WHITESPACE_PATTERN = re.compile(r"\s+")
_NON_WORD_PATTERN = re.compile(r"[^\w\s]")


def normalize_title(title: str | None) -> str:
    """Comparison key for a title: case, spacing and punctuation are ignored.

    >>> normalize_title("Deep Learning!!") == normalize_title("deep   learning")
    True
    """
    text = (title or "").lower()
    text = _WHITESPACE_PATTERN.sub(" ", text)
    text = _NON_WORD_PATTERN.sub("", text)
    return text.strip()


def title_key(record: Record) -> str:
    return normalize_title(record.title)


def link_key(record: Record) -> str:
    return record.link or ""


KEY_STRATEGIES: dict[str, KeyFunc] = {
    "title": title_key,
    "link": link_key,
}


def get_key_func(strategy: str) -> KeyFunc:
    """Look up an identity strategy by name ("title" or "link")."""
    try:
        return KEY_STRATEGIES[strategy.strip().lower()]
    except KeyError as exc:
        raise ValueError(
            f"Unknown key strategy {strategy!r}; expected one of {sorted(KEY_STRATEGIES)}"
        ) from exc


def merge_authors(existing: str, incoming: str) -> str:
    """Append ``incoming`` unless it is empty or already part of ``existing``."""
    if not incoming or incoming in existing:
        return existing
    if not existing:
        return incoming
    return f"{existing}, {incoming}"


def merge_records(records: Iterable[Record], key_fn: KeyFunc = title_key) -> list[Record]:
    """Collapse records sharing an identity key.

    Output keeps first-occurrence order. Title, link and date come from the
    first record of each group; authors are joined without repeats and the
    highest-priority type wins.
    """
    merged: dict[str, Record] = {}

    for record in records:
        key = key_fn(record)
        current = merged.get(key)
        if current is None:
            merged[key] = record
            continue

        record_type = record.type if record.type.priority < current.type.priority else current.type
        merged[key] = replace(
            current,
            author=merge_authors(current.author, record.author),
            type=record_type,
        )

    return list(merged.values())
