"""Shared typed models for the alert harvester."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class RecordType(str, Enum):
    """Alert classification. Lower priority number wins when records merge."""

    NEW_ARTICLE = "new_article"
    CITATION = "citation"
    RELATED_RESEARCH = "related_research"

    @property
    def priority(self) -> int:
        return _TYPE_PRIORITY[self]

    @classmethod
    def from_value(cls, value: str | None) -> RecordType:
        """Parse a stored cell value, defaulting to NEW_ARTICLE when blank or unknown."""
        text = (value or "").strip().lower()
        for member in cls:
            if member.value == text:
                return member
        return cls.NEW_ARTICLE


_TYPE_PRIORITY: dict[RecordType, int] = {
    RecordType.NEW_ARTICLE: 1,
    RecordType.CITATION: 2,
    RecordType.RELATED_RESEARCH: 3,
}


@dataclass(frozen=True, slots=True)
class Record:
    """One paper extracted from an alert email."""

    title: str
    author: str
    link: str
    type: RecordType
    date: datetime | None


@dataclass(frozen=True, slots=True)
class Message:
    body: str
    sent_date: datetime


@dataclass(frozen=True, slots=True)
class Thread:
    subject: str
    messages: list[Message] = field(default_factory=list)
