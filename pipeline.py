"""Scholar alert -> partition store orchestration.

One run fetches alert threads for a date range, extracts paper records, drops
papers already persisted in any partition, merges duplicates inside the batch
and appends what is left to the weekly (or run-dated) partitions.

Backfills split a long range into chunks that share one ExistingIndex, so a
paper written by an earlier chunk is not written again by a later one.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from typing import Protocol

from body_extractor import extract_thread_records
from dedup import KeyFunc, get_key_func, merge_records
from existing_index import ExistingIndex
from gmail_client import GmailClient
from models import Record, Thread
from partition_store import (
    PartitionStore,
    PartitionWriteError,
    partition_name_for_run,
    partition_name_for_week,
)

# Defaults for settings read from the environment when a run starts, so a
# .env file loaded by main() applies.
DEFAULT_SENDER = "scholaralerts-noreply@google.com"
DEFAULT_LOOKBACK_DAYS = 7
DEFAULT_CHUNK_DAYS = 7
DEFAULT_CHUNK_DELAY_SECONDS = 2.0
DEFAULT_PARTITION_BY = "week"
DEFAULT_KEY_STRATEGY = "title"

PARTITION_MODES = ("week", "run_date")

LOGGER = logging.getLogger(__name__)


class MailSearch(Protocol):
    def search_threads(self, query: str) -> list[Thread]: ...


@dataclass(slots=True)
class RunResult:
    """Counts for one processed date range."""

    start: date
    end: date
    threads: int = 0
    extracted: int = 0
    new: int = 0
    written: list[Record] = field(default_factory=list)


def build_query(sender: str, after: date | None = None, before: date | None = None) -> str:
    """Gmail search expression for alerts from ``sender``; ``before`` is exclusive."""
    parts = [f"from:{sender}"]
    if after is not None:
        parts.append(f"after:{after.strftime('%Y/%m/%d')}")
    if before is not None:
        parts.append(f"before:{before.strftime('%Y/%m/%d')}")
    return " ".join(parts)


def chunk_date_range(start: date, end: date, chunk_days: int) -> list[tuple[date, date]]:
    """Split the half-open range [start, end) into consecutive chunks of ``chunk_days``.

    The last chunk is shorter when the range does not divide evenly.
    """
    if chunk_days < 1:
        raise ValueError("chunk_days must be at least 1")

    chunks: list[tuple[date, date]] = []
    cursor = start
    while cursor < end:
        chunk_end = min(cursor + timedelta(days=chunk_days), end)
        chunks.append((cursor, chunk_end))
        cursor = chunk_end
    return chunks


def process_range(
    start: date,
    end: date,
    *,
    mail: MailSearch,
    store: PartitionStore,
    index: ExistingIndex,
    partition_by: str | None = None,
    dry_run: bool = False,
) -> RunResult:
    """Fetch, extract, filter, merge and persist one date range.

    ``index`` is updated with every record written so later calls sharing it
    skip those papers.
    """
    result = RunResult(start=start, end=end)

    sender = os.getenv("SCHOLAR_ALERT_SENDER", DEFAULT_SENDER)
    threads = mail.search_threads(build_query(sender, after=start, before=end))
    result.threads = len(threads)
    if not threads:
        LOGGER.info("No Scholar Alert emails found for %s..%s", start, end)
        return result

    extracted = extract_thread_records(threads)
    result.extracted = len(extracted)

    unseen = index.filter_new(extracted)
    new_records = merge_records(unseen, key_fn=index.key_fn)
    result.new = len(new_records)
    LOGGER.info(
        "Range %s..%s: threads=%s extracted=%s already_stored=%s new_unique=%s",
        start,
        end,
        result.threads,
        result.extracted,
        result.extracted - len(unseen),
        result.new,
    )

    if not new_records:
        return result

    if dry_run:
        for record in new_records:
            LOGGER.info("[dry-run] Would write: %s", record.title)
        index.add_all(new_records)
        return result

    result.written = persist_records(
        new_records,
        store=store,
        key_fn=index.key_fn,
        partition_by=resolve_partition_by(partition_by),
    )
    index.add_all(result.written)
    return result


def persist_records(
    records: Iterable[Record],
    *,
    store: PartitionStore,
    key_fn: KeyFunc,
    partition_by: str | None = None,
    run_day: date | None = None,
) -> list[Record]:
    """Append records to their partitions. Write failures are logged and re-raised."""
    partition_by = resolve_partition_by(partition_by)
    run_day = run_day or datetime.now(UTC).date()

    groups: dict[str, list[Record]] = {}
    for record in records:
        if partition_by == "run_date":
            name = partition_name_for_run(run_day)
        else:
            day = record.date.date() if record.date else run_day
            name = partition_name_for_week(day)
        groups.setdefault(name, []).append(record)

    written: list[Record] = []
    for name, group in groups.items():
        try:
            partition = store.get_or_create_partition(name)
            written.extend(store.append_records(partition, group, key_fn))
        except PartitionWriteError as exc:
            LOGGER.error("Persisting %s records to %s failed: %s", len(group), name, exc)
            raise

    LOGGER.info("Persisted %s records across %s partitions", len(written), len(groups))
    return written


def run_range(
    start: date,
    end: date,
    *,
    mail: MailSearch | None = None,
    store: PartitionStore | None = None,
    key_strategy: str | None = None,
    partition_by: str | None = None,
    dry_run: bool = False,
) -> RunResult:
    """Process [start, end) against a fresh snapshot of the partition store."""
    partition_by = resolve_partition_by(partition_by)
    mail = mail or GmailClient()
    store = store or PartitionStore()
    index = ExistingIndex.from_partitions(store.list_partitions(), _key_func(key_strategy))

    result = process_range(
        start,
        end,
        mail=mail,
        store=store,
        index=index,
        partition_by=partition_by,
        dry_run=dry_run,
    )
    LOGGER.info("Run complete. found=%s new=%s written=%s", result.extracted, result.new, len(result.written))
    return result


def run_default(
    *,
    mail: MailSearch | None = None,
    store: PartitionStore | None = None,
    key_strategy: str | None = None,
    partition_by: str | None = None,
    dry_run: bool = False,
    today: date | None = None,
) -> RunResult:
    """Process the last DEFAULT_LOOKBACK_DAYS days (env) up to and including today."""
    today = today or datetime.now(UTC).date()
    lookback_days = int(os.getenv("DEFAULT_LOOKBACK_DAYS", str(DEFAULT_LOOKBACK_DAYS)))
    return run_range(
        today - timedelta(days=lookback_days),
        today + timedelta(days=1),
        mail=mail,
        store=store,
        key_strategy=key_strategy,
        partition_by=partition_by,
        dry_run=dry_run,
    )


def run_backfill(
    start: date,
    end: date | None = None,
    *,
    mail: MailSearch | None = None,
    store: PartitionStore | None = None,
    key_strategy: str | None = None,
    partition_by: str | None = None,
    chunk_days: int | None = None,
    delay_seconds: float | None = None,
    dry_run: bool = False,
) -> list[RunResult]:
    """Chunked historical run from ``start`` to ``end`` (default: through today).

    All chunks share one ExistingIndex. A failing chunk is logged and skipped;
    a persistence failure stops the backfill.
    """
    end = end or datetime.now(UTC).date() + timedelta(days=1)
    chunk_days = chunk_days or int(os.getenv("BACKFILL_CHUNK_DAYS", str(DEFAULT_CHUNK_DAYS)))
    if delay_seconds is None:
        delay_seconds = float(os.getenv("BACKFILL_CHUNK_DELAY_SECONDS", str(DEFAULT_CHUNK_DELAY_SECONDS)))
    partition_by = resolve_partition_by(partition_by)

    mail = mail or GmailClient()
    store = store or PartitionStore()
    index = ExistingIndex.from_partitions(store.list_partitions(), _key_func(key_strategy))

    chunks = chunk_date_range(start, end, chunk_days)
    LOGGER.info("Backfill %s..%s: chunks=%s chunk_days=%s", start, end, len(chunks), chunk_days)

    results: list[RunResult] = []
    failed = 0
    for position, (chunk_start, chunk_end) in enumerate(chunks, start=1):
        LOGGER.info("Backfill chunk %s/%s: %s..%s", position, len(chunks), chunk_start, chunk_end)
        try:
            results.append(
                process_range(
                    chunk_start,
                    chunk_end,
                    mail=mail,
                    store=store,
                    index=index,
                    partition_by=partition_by,
                    dry_run=dry_run,
                )
            )
        except PartitionWriteError:
            raise
        except Exception as exc:  # keep the remaining chunks running
            failed += 1
            LOGGER.exception("Backfill chunk %s..%s failed: %s", chunk_start, chunk_end, exc)

        if position < len(chunks) and delay_seconds > 0:
            time.sleep(delay_seconds)

    LOGGER.info(
        "Backfill complete. chunks=%s failed=%s written=%s",
        len(chunks),
        failed,
        sum(len(result.written) for result in results),
    )
    return results


def resolve_partition_by(partition_by: str | None) -> str:
    """Validate a partition mode, falling back to PARTITION_BY (env) when unset."""
    mode = (partition_by or os.getenv("PARTITION_BY", DEFAULT_PARTITION_BY)).strip().lower()
    if mode not in PARTITION_MODES:
        raise ValueError(f"Unknown partition mode {mode!r}; expected one of {list(PARTITION_MODES)}")
    return mode


def _key_func(key_strategy: str | None) -> KeyFunc:
    return get_key_func(key_strategy or os.getenv("KEY_STRATEGY", DEFAULT_KEY_STRATEGY))
