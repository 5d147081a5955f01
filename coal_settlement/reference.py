"""Customers, suppliers and drivers: keyed records with no derived state."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from coal_settlement.exceptions import NotFoundError, ValidationError
from coal_settlement.store import Record, Store
from coal_settlement.utils import new_id, parse_plate_numbers, utc_now_iso

logger = logging.getLogger(__name__)

# table -> (id prefix, display name)
KINDS: Dict[str, tuple] = {
    "customers": ("cus", "Customer"),
    "suppliers": ("sup", "Supplier"),
    "drivers": ("drv", "Driver"),
}


def _check_kind(kind: str) -> None:
    if kind not in KINDS:
        raise ValueError(f"Unknown reference kind '{kind}'")


class ReferenceStore:
    def __init__(self, store: Store) -> None:
        self.store = store

    def get(self, kind: str, record_id: str) -> Optional[Record]:
        _check_kind(kind)
        if not record_id:
            return None
        record = self.store.get(kind, record_id)
        if record is not None and kind == "drivers":
            record["plate_numbers"] = parse_plate_numbers(record.get("plate_numbers"))
        return record

    def list(self, kind: str) -> List[Record]:
        _check_kind(kind)
        rows = self.store.list(kind)
        if kind == "drivers":
            for row in rows:
                row["plate_numbers"] = parse_plate_numbers(row.get("plate_numbers"))
        return sorted(rows, key=lambda row: row.get("created_at") or "", reverse=True)

    def put(self, kind: str, record: Dict[str, Any]) -> Record:
        """Insert *record*, or replace the stored one with the same id."""
        _check_kind(kind)
        name = str(record.get("name") or "").strip()
        if not name:
            raise ValidationError("name is required", field="name")

        prefix, _label = KINDS[kind]
        data = dict(record, name=name)
        if not data.get("id"):
            data["id"] = new_id(prefix)
        if kind == "drivers":
            data["plate_numbers"] = parse_plate_numbers(data.get("plate_numbers"))

        with self.store.transaction():
            existing = self.store.get(kind, data["id"])
            if existing is None:
                data["created_at"] = data.get("created_at") or utc_now_iso()
                saved = self.store.insert(kind, data)
            else:
                data["created_at"] = existing["created_at"]
                saved = self.store.update(kind, data["id"], data)
        logger.info("Saved %s %s (%s)", kind, saved["id"], name)
        return saved

    def delete(self, kind: str, record_id: str) -> None:
        _check_kind(kind)
        if not self.store.delete(kind, record_id):
            raise NotFoundError(KINDS[kind][1], record_id)
        logger.info("Deleted %s %s", kind, record_id)

    def name_of(self, kind: str, record_id: str) -> str:
        record = self.get(kind, record_id)
        return record["name"] if record else ""


__all__ = ["ReferenceStore", "KINDS"]
