"""Append-only CSV partitions holding harvested papers, one file per week."""

from __future__ import annotations

import csv
import logging
import os
import re
from collections.abc import Callable, Iterable
from datetime import date, datetime, timedelta
from pathlib import Path

from models import Record, RecordType

DEFAULT_PARTITIONS_DIR = "papers_partitions"

LOGGER = logging.getLogger(__name__)

HEADER = ["Type", "Title", "Author", "Link", "Date"]
LINK_LABEL = "Open Link"

_MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]
_HYPERLINK_PATTERN = re.compile(r'^=HYPERLINK\("((?:[^"]|"")*)"', re.IGNORECASE)


class PartitionWriteError(RuntimeError):
    """Raised when rows could not be appended to a partition."""


class Partition:
    """One CSV file of records with a fixed header row."""

    def __init__(self, path: Path) -> None:
        self.path = path

    @property
    def name(self) -> str:
        return self.path.stem

    def rows(self) -> list[list[str]]:
        """All rows including the header; an empty list for a missing file."""
        if not self.path.exists():
            return []
        with self.path.open(newline="", encoding="utf-8") as fh:
            return list(csv.reader(fh))

    def __repr__(self) -> str:
        return f"Partition({self.name!r})"


class PartitionStore:
    """Directory of partitions. Partitions are created on demand and only appended to.

    The directory defaults to PARTITIONS_DIR from the environment.
    """

    def __init__(self, root: str | Path | None = None) -> None:
        if root is None:
            root = os.getenv("PARTITIONS_DIR", DEFAULT_PARTITIONS_DIR)
        self.root = Path(root)

    def list_partitions(self) -> list[Partition]:
        if not self.root.exists():
            return []
        return [Partition(path) for path in sorted(self.root.glob("*.csv"))]

    def get_or_create_partition(self, name: str) -> Partition:
        partition = Partition(self.root / f"{name}.csv")
        if partition.path.exists() and partition.path.stat().st_size > 0:
            return partition

        try:
            self.root.mkdir(parents=True, exist_ok=True)
            with partition.path.open("w", newline="", encoding="utf-8") as fh:
                csv.writer(fh).writerow(HEADER)
        except OSError as exc:
            LOGGER.error("Error creating partition %s: %s", name, exc)
            raise PartitionWriteError(f"Could not create partition {name!r}: {exc}") from exc

        LOGGER.info("Created partition %s", partition.path)
        return partition

    def append_records(
        self,
        partition: Partition,
        records: Iterable[Record],
        key_fn: Callable[[Record], str],
    ) -> list[Record]:
        """Append records whose key is not yet in ``partition``; return those written.

        Keying the append makes overlapping runs safe against writing the same
        paper twice into one partition.
        """
        present: set[str] = set()
        for row in partition.rows()[1:]:
            existing = record_from_row(row)
            if existing is not None:
                present.add(key_fn(existing))

        to_write: list[Record] = []
        for record in records:
            key = key_fn(record)
            if key in present:
                LOGGER.info("Partition %s already holds %r, skipping", partition.name, record.title)
                continue
            present.add(key)
            to_write.append(record)

        if not to_write:
            return []

        try:
            with partition.path.open("a", newline="", encoding="utf-8") as fh:
                writer = csv.writer(fh)
                writer.writerows(record_to_row(record) for record in to_write)
        except OSError as exc:
            LOGGER.error("Error appending to partition %s: %s", partition.name, exc)
            raise PartitionWriteError(f"Could not append to partition {partition.name!r}: {exc}") from exc

        LOGGER.info("Wrote %s rows to partition %s", len(to_write), partition.name)
        return to_write


def partition_name_for_week(day: date) -> str:
    """Name of the weekly partition holding ``day`` (weeks start on Monday)."""
    monday = day - timedelta(days=day.weekday())
    return f"Papers Week of {_format_day(monday)}"


def partition_name_for_run(day: date) -> str:
    return f"Papers {_format_day(day)}"


def hyperlink_formula(url: str) -> str:
    escaped = url.replace('"', '""')
    return f'=HYPERLINK("{escaped}", "{LINK_LABEL}")'


def link_from_cell(value: str) -> str:
    """Return the URL of a Link cell holding either a plain URL or a HYPERLINK formula."""
    text = (value or "").strip()
    match = _HYPERLINK_PATTERN.match(text)
    if match:
        return match.group(1).replace('""', '"')
    return text


def record_to_row(record: Record) -> list[str]:
    return [
        record.type.value,
        record.title,
        record.author,
        hyperlink_formula(record.link),
        record.date.isoformat() if record.date else "",
    ]


def record_from_row(row: list[str]) -> Record | None:
    """Parse a data row; rows without a title are ignored."""
    if len(row) < 2 or not row[1].strip():
        return None

    cells = list(row) + [""] * (len(HEADER) - len(row))
    return Record(
        title=cells[1].strip(),
        author=cells[2].strip(),
        link=link_from_cell(cells[3]),
        type=RecordType.from_value(cells[0]),
        date=_parse_datetime_or_none(cells[4]),
    )


def _parse_datetime_or_none(raw: str) -> datetime | None:
    value = (raw or "").strip()
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _format_day(day: date) -> str:
    return f"{_MONTHS[day.month - 1]} {day.day} {day.year}"
