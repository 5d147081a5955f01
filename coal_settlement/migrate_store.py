"""
Copy a JSON store file into a SQL database.

Usage:
    python -m coal_settlement.migrate_store                      # data/app.json -> DATABASE_URL
    python -m coal_settlement.migrate_store --file path --url sqlite:///./coal.db
    python -m coal_settlement.migrate_store --reset              # empty the SQL tables first

Files written by older versions of the service use camelCase keys and keep
driver plate numbers as a JSON-encoded string; both are accepted.
"""

from __future__ import annotations

import argparse
import json
import logging
import re
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from coal_settlement.batches import BATCHES, VEHICLES
from coal_settlement.models import TABLES
from coal_settlement.settings import Settings, configure_logging
from coal_settlement.store import Record, SqlStore
from coal_settlement.utils import parse_plate_numbers, utc_now_iso

logger = logging.getLogger(__name__)

DEFAULT_JSON = Path("data") / "app.json"

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")


def snake_case(key: str) -> str:
    return _CAMEL_BOUNDARY.sub(r"_\1", key).lower()


def normalize_row(table: str, raw: Mapping[str, Any]) -> Record:
    """Snake-case the keys of *raw* and keep only columns *table* has."""
    columns = TABLES[table].__table__.columns
    row = {snake_case(key): value for key, value in raw.items()}

    if "plate_numbers" in row:
        row["plate_numbers"] = parse_plate_numbers(row["plate_numbers"])
    if table == "arrival_records":
        row["related_shipments"] = [
            {snake_case(key): value for key, value in item.items()}
            for item in row.get("related_shipments") or []
        ]
    row["created_at"] = row.get("created_at") or utc_now_iso()
    if "payment_date" in columns and not row.get("payment_date"):
        row["payment_date"] = row["created_at"][:10]
    if table == "arrival_records" and not row.get("arrival_date"):
        row["arrival_date"] = row["created_at"][:10]

    return {key: value for key, value in row.items() if key in columns and value is not None}


def _number_vehicles(rows: List[Record]) -> None:
    # Vehicles keep their file order within each batch.
    counters: Dict[str, int] = defaultdict(int)
    for row in rows:
        if "position" not in row:
            row["position"] = counters[row.get("batch_id")]
        counters[row.get("batch_id")] += 1


def migrate(data: Mapping[str, List[Mapping[str, Any]]], store: SqlStore, *, reset: bool = False) -> Dict[str, int]:
    """Insert every row of *data* into *store* in one transaction.

    Rows whose id already exists are left alone. Vehicles and batch payments
    pointing at a batch that is not in the file are skipped.
    """
    copied: Dict[str, int] = {}
    with store.transaction():
        if reset:
            # Children first so foreign keys never dangle.
            for table in reversed(list(TABLES)):
                store.delete_where(table)

        batch_ids = {str(raw.get("id")) for raw in data.get(BATCHES) or []}
        for table in TABLES:
            rows = [normalize_row(table, raw) for raw in data.get(table) or []]
            if table == VEHICLES:
                _number_vehicles(rows)

            count = 0
            for row in rows:
                if not row.get("id"):
                    logger.warning("Skipping %s row without an id", table)
                    continue
                if "batch_id" in row and row["batch_id"] not in batch_ids:
                    logger.warning("Skipping %s %s: batch %s missing", table, row["id"], row["batch_id"])
                    continue
                if store.get(table, row["id"]) is not None:
                    continue
                store.insert(table, row)
                count += 1
            copied[table] = count
    return copied


def load_json_store(path: Path) -> Dict[str, List[Mapping[str, Any]]]:
    if not path.exists():
        raise FileNotFoundError(f"JSON store file not found: {path}")
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def parse_cli_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Copy a JSON store file into a SQL database.")
    parser.add_argument(
        "--file",
        "-f",
        type=Path,
        default=DEFAULT_JSON,
        help=f"Path to the JSON store file (default: {DEFAULT_JSON})",
    )
    parser.add_argument(
        "--url",
        default=None,
        help="Target SQLAlchemy URL (default: DATABASE_URL or sqlite:///./coal.db)",
    )
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Delete every row in the target database before copying.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_cli_args(argv)
    settings = Settings.from_env()
    configure_logging(settings.log_level)

    data = load_json_store(args.file)
    store = SqlStore(args.url or settings.database_url)
    try:
        copied = migrate(data, store, reset=args.reset)
    finally:
        store.close()

    summary = ", ".join(f"{table}: {count}" for table, count in copied.items())
    print(f"Rows copied from {args.file}: {summary}")


if __name__ == "__main__":
    main()
