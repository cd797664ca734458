"""Lookup of records already persisted in any partition."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from dedup import KeyFunc, title_key
from models import Record, RecordType
from partition_store import Partition, record_from_row

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class IndexedRecord:
    """Display fields kept for an already-persisted record."""

    title: str
    author: str
    type: RecordType


class ExistingIndex:
    """Identity key -> persisted record, snapshotted from the partition store.

    The index does not watch the store. Callers that keep one index across
    several writes (backfill chunks) must ``add`` what they persist.
    """

    def __init__(self, key_fn: KeyFunc = title_key) -> None:
        self.key_fn = key_fn
        self._entries: dict[str, IndexedRecord] = {}

    @classmethod
    def from_partitions(cls, partitions: Iterable[Partition], key_fn: KeyFunc = title_key) -> ExistingIndex:
        index = cls(key_fn)
        partition_count = 0
        row_count = 0

        for partition in partitions:
            partition_count += 1
            # Row 0 is the header.
            for row in partition.rows()[1:]:
                record = record_from_row(row)
                if record is None:
                    continue
                row_count += 1
                index.add(record)

        LOGGER.info(
            "Existing index: partitions=%s rows=%s unique_keys=%s",
            partition_count,
            row_count,
            len(index),
        )
        return index

    def add(self, record: Record) -> None:
        key = self.key_fn(record)
        if key not in self._entries:
            self._entries[key] = IndexedRecord(title=record.title, author=record.author, type=record.type)

    def add_all(self, records: Iterable[Record]) -> None:
        for record in records:
            self.add(record)

    def get(self, record: Record) -> IndexedRecord | None:
        return self._entries.get(self.key_fn(record))

    def contains(self, record: Record) -> bool:
        return self.key_fn(record) in self._entries

    def filter_new(self, records: Iterable[Record]) -> list[Record]:
        """Drop records whose identity is already indexed."""
        return [record for record in records if not self.contains(record)]

    def __contains__(self, record: object) -> bool:
        return isinstance(record, Record) and self.contains(record)

    def __len__(self) -> int:
        return len(self._entries)
