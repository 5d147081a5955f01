"""Delivery batches, their vehicles and the payments made against them.

A batch is created together with its vehicles and afterwards only changes
when a payment is applied. Totals and status are kept on the batch row so
they can be read without re-summing, which is why every write here runs
inside a single store transaction.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Dict, List, Mapping, Optional, Union

from coal_settlement.exceptions import NotFoundError
from coal_settlement.reference import ReferenceStore
from coal_settlement.schemas import BatchCreate, BatchPaymentCreate, parse_input
from coal_settlement.store import Record, Store
from coal_settlement.utils import batch_status, new_id, round2, utc_now_iso

logger = logging.getLogger(__name__)

BATCHES = "delivery_batches"
VEHICLES = "delivery_vehicles"
PAYMENTS = "batch_payment_records"


def _populate(batch: Record, vehicles: List[Record], payments: List[Record]) -> Record:
    populated = dict(batch)
    populated["vehicles"] = sorted(vehicles, key=lambda row: row.get("position") or 0)
    populated["payment_records"] = sorted(payments, key=lambda row: row.get("created_at") or "")
    return populated


class BatchLedger:
    def __init__(self, store: Store, references: Optional[ReferenceStore] = None) -> None:
        self.store = store
        self.references = references or ReferenceStore(store)

    def create_batch(self, payload: Union[BatchCreate, Mapping[str, Any]]) -> Record:
        """Persist a batch and all of its vehicles as one unit."""
        data = parse_input(BatchCreate, payload)
        batch_id = new_id("b")
        created_at = utc_now_iso()

        vehicles: List[Record] = []
        for position, item in enumerate(data.vehicles):
            amount = item.amount if item.amount is not None else item.weight * data.coal_price
            vehicles.append(
                {
                    "id": new_id("v"),
                    "batch_id": batch_id,
                    "position": position,
                    "plate_number": item.plate_number.strip(),
                    "driver_name": item.driver_name.strip(),
                    "weight": item.weight,
                    "amount": round2(amount),
                    "created_at": created_at,
                }
            )

        total_amount = round2(sum(vehicle["amount"] for vehicle in vehicles))
        batch = {
            "id": batch_id,
            "customer_id": data.customer_id,
            "customer_name": data.customer_name
            or self.references.name_of("customers", data.customer_id),
            "supplier_id": data.supplier_id,
            "supplier_name": data.supplier_name
            or self.references.name_of("suppliers", data.supplier_id),
            "departure_date": data.departure_date.isoformat(),
            "coal_price": data.coal_price,
            "total_weight": round2(sum(vehicle["weight"] for vehicle in vehicles)),
            "total_amount": total_amount,
            "paid_amount": 0.0,
            "remaining_amount": total_amount,
            "status": batch_status(0.0, total_amount),
            "created_at": created_at,
        }

        with self.store.transaction():
            self.store.insert(BATCHES, batch)
            for vehicle in vehicles:
                self.store.insert(VEHICLES, vehicle)

        logger.info(
            "Created batch %s with %d vehicles, %.2f t, amount %.2f",
            batch_id,
            len(vehicles),
            batch["total_weight"],
            total_amount,
        )
        return _populate(batch, vehicles, [])

    def apply_payment(
        self, batch_id: str, payload: Union[BatchPaymentCreate, Mapping[str, Any]]
    ) -> Record:
        """Record a payment and move the batch balance and status with it.

        Paying more than the remaining balance is accepted: the balance stops at
        zero and the excess is not tracked anywhere.
        """
        data = parse_input(BatchPaymentCreate, payload)
        amount = round2(data.amount)

        with self.store.transaction():
            batch = self.store.get(BATCHES, batch_id)
            if batch is None:
                raise NotFoundError("Batch", batch_id)

            remaining = round2(batch["remaining_amount"])
            new_remaining = round2(max(0.0, remaining - amount))
            applied = round2(remaining - new_remaining)
            new_paid = round2(batch["paid_amount"] + applied)

            record = {
                "id": new_id("p"),
                "batch_id": batch_id,
                "amount": amount,
                "payment_date": data.payment_date.isoformat(),
                "remark": data.remark,
                "created_at": utc_now_iso(),
            }
            self.store.insert(PAYMENTS, record)
            self.store.update(
                BATCHES,
                batch_id,
                {
                    "paid_amount": new_paid,
                    "remaining_amount": new_remaining,
                    "status": batch_status(new_paid, new_remaining),
                },
            )

        if amount > applied:
            logger.info(
                "Batch %s overpaid by %.2f; excess absorbed", batch_id, round2(amount - applied)
            )
        logger.info("Applied payment %.2f to batch %s, remaining %.2f", amount, batch_id, new_remaining)
        return record

    def delete_batch(self, batch_id: str) -> None:
        """Delete a batch together with its vehicles and payment records."""
        with self.store.transaction():
            if self.store.get(BATCHES, batch_id) is None:
                raise NotFoundError("Batch", batch_id)
            vehicles = self.store.delete_where(VEHICLES, batch_id=batch_id)
            payments = self.store.delete_where(PAYMENTS, batch_id=batch_id)
            self.store.delete(BATCHES, batch_id)
        logger.info(
            "Deleted batch %s (%d vehicles, %d payments)", batch_id, vehicles, payments
        )

    def get_batch(self, batch_id: str) -> Record:
        batch = self.store.get(BATCHES, batch_id)
        if batch is None:
            raise NotFoundError("Batch", batch_id)
        return _populate(
            batch,
            self.store.list(VEHICLES, batch_id=batch_id),
            self.store.list(PAYMENTS, batch_id=batch_id),
        )

    def list_batches(self) -> List[Record]:
        """Return every batch, newest first, with vehicles and payments attached."""
        vehicles_by_batch: Dict[str, List[Record]] = defaultdict(list)
        for vehicle in self.store.list(VEHICLES):
            vehicles_by_batch[vehicle["batch_id"]].append(vehicle)
        payments_by_batch: Dict[str, List[Record]] = defaultdict(list)
        for payment in self.store.list(PAYMENTS):
            payments_by_batch[payment["batch_id"]].append(payment)

        batches = sorted(
            self.store.list(BATCHES), key=lambda row: row.get("created_at") or "", reverse=True
        )
        return [
            _populate(batch, vehicles_by_batch[batch["id"]], payments_by_batch[batch["id"]])
            for batch in batches
        ]


__all__ = ["BatchLedger", "BATCHES", "VEHICLES", "PAYMENTS"]
