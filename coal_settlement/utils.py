"""Helper utilities shared across the settlement services."""

from __future__ import annotations

import hashlib
import json
import threading
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, List, Optional, Union
from uuid import uuid4

UNKNOWN_DRIVER = "未知司机"

# Batch statuses, in the order a batch moves through them.
BATCH_PENDING = "pending"
BATCH_PARTIAL = "partial_paid"
BATCH_PAID = "fully_paid"

# Settlement statuses used by arrival records (freight and receivable).
UNPAID = "unpaid"
PARTIAL = "partial"
PAID = "paid"

_clock_lock = threading.Lock()
_last_timestamp: Optional[datetime] = None


def round2(value: float) -> float:
    """Round a money or weight figure to two decimals."""
    # Adding 0.0 folds -0.0 into 0.0.
    return round(float(value or 0.0), 2) + 0.0


def new_id(prefix: str) -> str:
    return f"{prefix}{uuid4().hex[:12]}"


def utc_now_iso() -> str:
    """Current UTC time, strictly increasing within the process.

    Rows are listed newest first by this value, so two writes in the same
    microsecond must still compare in the order they happened.
    """
    global _last_timestamp
    with _clock_lock:
        now = datetime.now(timezone.utc)
        if _last_timestamp is not None and now <= _last_timestamp:
            now = _last_timestamp + timedelta(microseconds=1)
        _last_timestamp = now
    return now.isoformat(timespec="microseconds")


def batch_status(paid_amount: float, remaining_amount: float) -> str:
    """Return the batch status implied by its paid and remaining amounts."""
    if round2(remaining_amount) <= 0:
        return BATCH_PAID
    if round2(paid_amount) > 0:
        return BATCH_PARTIAL
    return BATCH_PENDING


def settlement_status(paid: float, total: float) -> str:
    """Derive unpaid/partial/paid from scratch; never assumes monotonic payments.

    Anything owed that has been met reads ``paid``, including a zero total.
    """
    paid = round2(paid)
    if paid >= round2(total):
        return PAID
    if paid > 0:
        return PARTIAL
    return UNPAID


def normalize_driver_name(name: Optional[str]) -> str:
    normalized = (name or "").strip()
    return normalized or UNKNOWN_DRIVER


def driver_id_for(name: Optional[str]) -> str:
    """Stable id for a driver known only by name.

    The same name always maps to the same id, in any process, so shipments and
    the fallback driver list agree without a stored driver record.
    """
    digest = hashlib.sha256(normalize_driver_name(name).encode("utf-8")).hexdigest()
    return f"drv_{digest[:12]}"


def parse_plate_numbers(raw: Union[str, Iterable[str], None]) -> List[str]:
    """Return plate numbers as a de-duplicated list.

    Older rows keep the list JSON-encoded in a text column; anything that does
    not decode to a list is treated as empty.
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw or "[]")
        except ValueError:
            return []
        if not isinstance(raw, list):
            return []
    plates: List[str] = []
    for plate in raw:
        text = str(plate or "").strip()
        if text and text not in plates:
            plates.append(text)
    return plates


def normalize_date(raw: Union[str, date, datetime, None]) -> str:
    """Return a business date as ``YYYY-MM-DD``; blank input means today."""
    if isinstance(raw, datetime):
        return raw.date().isoformat()
    if isinstance(raw, date):
        return raw.isoformat()

    text = (raw or "").strip()
    if not text:
        return date.today().isoformat()

    # ISO covers dates and full timestamps; the rest are spellings seen on weigh slips.
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        pass

    parsers: Iterable[str] = (
        "%Y/%m/%d",
        "%Y.%m.%d",
        "%Y%m%d",
        "%Y-%m-%d %H:%M",
    )
    for fmt in parsers:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue

    raise ValueError(f"Unrecognised date '{text}'")


__all__ = [
    "UNKNOWN_DRIVER",
    "BATCH_PENDING",
    "BATCH_PARTIAL",
    "BATCH_PAID",
    "UNPAID",
    "PARTIAL",
    "PAID",
    "round2",
    "new_id",
    "utc_now_iso",
    "batch_status",
    "settlement_status",
    "normalize_driver_name",
    "driver_id_for",
    "parse_plate_numbers",
    "normalize_date",
]
