"""CLI entrypoint for the Scholar alert harvester."""

from __future__ import annotations

import argparse
import logging
from datetime import date

from dotenv import load_dotenv

from pipeline import run_backfill, run_default, run_range


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line flags."""
    parser = argparse.ArgumentParser(description="Harvest papers from Google Scholar alert emails")
    parser.add_argument(
        "--mode",
        choices=["default", "range", "backfill"],
        default="default",
        help=(
            "'default': the last DEFAULT_LOOKBACK_DAYS days. "
            "'range': --from up to (not including) --to. "
            "'backfill': --from through today in BACKFILL_CHUNK_DAYS chunks."
        ),
    )
    parser.add_argument("--from", dest="from_date", type=date.fromisoformat, default=None, help="Start date, YYYY-MM-DD")
    parser.add_argument("--to", dest="to_date", type=date.fromisoformat, default=None, help="End date (exclusive), YYYY-MM-DD")
    parser.add_argument(
        "--key-strategy",
        choices=["title", "link"],
        default=None,
        help="Identity used to detect duplicates (default: KEY_STRATEGY env, else title)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Extract and deduplicate without writing any partition",
    )
    args = parser.parse_args(argv)

    if args.mode in {"range", "backfill"} and args.from_date is None:
        parser.error(f"--from is required with --mode {args.mode}")
    if args.mode == "range" and args.to_date is None:
        parser.error("--to is required with --mode range")
    return args


def run(args: argparse.Namespace) -> None:
    if args.mode == "range":
        run_range(args.from_date, args.to_date, key_strategy=args.key_strategy, dry_run=args.dry_run)
    elif args.mode == "backfill":
        run_backfill(args.from_date, args.to_date, key_strategy=args.key_strategy, dry_run=args.dry_run)
    else:
        run_default(key_strategy=args.key_strategy, dry_run=args.dry_run)


def main(argv: list[str] | None = None) -> None:
    """Initialize config and execute the pipeline."""
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    run(parse_args(argv))


if __name__ == "__main__":
    main()
