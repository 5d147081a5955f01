"""Arrival reconciliation: weighing shipments in and settling what they owe.

An arrival record snapshots the shipments it covers (departure weight, plate,
driver) at the time it is created or edited; later changes to the source
batch do not flow into it. Per row it records the transit loss and the
receivable at the selling price.

Two balances hang off each record and are settled independently:

* freight owed to drivers, ``total_freight_payable``. What has been paid is
  never stored on the record; it is summed from the freight ledger on every
  read, so appending a payment is enough to move the status.
* the customer receivable, ``total_receivable``. The cumulative amount
  received is stored on the record by :meth:`record_receivable_payment`.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from coal_settlement.exceptions import NotFoundError, SettlementError, ValidationError
from coal_settlement.payments import BALANCING_REMARK, PaymentLedgers, is_balancing_entry
from coal_settlement.reference import ReferenceStore
from coal_settlement.schemas import (
    ArrivalFreightPaymentCreate,
    ArrivalRecordCreate,
    ArrivalRecordUpdate,
    FreightPaymentCreate,
    FreightSettleRequest,
    ReceivablePaymentCreate,
    ShipmentSelection,
    parse_input,
)
from coal_settlement.shipments import ShipmentProjector
from coal_settlement.store import Record, Store
from coal_settlement.utils import (
    PAID,
    UNPAID,
    driver_id_for,
    new_id,
    round2,
    settlement_status,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

ARRIVALS = "arrival_records"

PENDING = "pending"
COMPLETED = "completed"


def price_rows(rows: Iterable[Record], selling_price_per_ton: float) -> List[Record]:
    """Recompute loss and receivable for every snapshot row."""
    priced = []
    for row in rows:
        row = dict(row)
        # Negative loss (arrived heavier than it left) is kept as is.
        row["loss"] = round2(row["original_weight"] - row["arrival_weight"])
        row["receivable_amount"] = round2(row["arrival_weight"] * selling_price_per_ton)
        priced.append(row)
    return priced


def record_totals(rows: List[Record], freight_per_ton: float) -> Dict[str, float]:
    return {
        "total_weight": round2(sum(row["arrival_weight"] for row in rows)),
        "total_loss": round2(sum(row["loss"] for row in rows)),
        "total_receivable": round2(sum(row["receivable_amount"] for row in rows)),
        "total_freight_payable": round2(
            sum(row["arrival_weight"] * freight_per_ton for row in rows)
        ),
    }


def _unique(values: Iterable[str]) -> List[str]:
    seen: List[str] = []
    for value in values:
        if value and value not in seen:
            seen.append(value)
    return seen


class ArrivalReconciliation:
    def __init__(
        self,
        store: Store,
        projector: Optional[ShipmentProjector] = None,
        payments: Optional[PaymentLedgers] = None,
        references: Optional[ReferenceStore] = None,
    ) -> None:
        self.store = store
        self.references = references or ReferenceStore(store)
        self.projector = projector or ShipmentProjector(store)
        self.payments = payments or PaymentLedgers(store, self.references)

    # -- snapshots ----------------------------------------------------------

    def _snapshot(
        self,
        record_id: str,
        customer_id: str,
        selections: List[ShipmentSelection],
        existing_rows: Iterable[Record] = (),
    ) -> List[Record]:
        """Build snapshot rows for *selections*.

        Shipments already on the record keep their snapshot (and arrival
        weight, unless a new one is given); new ones are read from the live
        shipment view and must belong to *customer_id*.
        """
        existing = {row["shipment_id"]: row for row in existing_rows}
        rows: List[Record] = []
        seen = set()
        for selection in selections:
            shipment_id = selection.shipment_id
            if shipment_id in seen:
                raise ValidationError(
                    f"shipment {shipment_id} selected twice", field="relatedShipments"
                )
            seen.add(shipment_id)

            previous = existing.get(shipment_id)
            if previous is not None:
                row = dict(previous)
                default_weight = previous["arrival_weight"]
            else:
                shipment = self.projector.get_shipment(shipment_id)
                if shipment is None:
                    raise ValidationError(
                        f"unknown shipment {shipment_id}", field="relatedShipments"
                    )
                if shipment["customer_id"] != customer_id:
                    raise ValidationError(
                        f"shipment {shipment_id} belongs to another customer",
                        field="relatedShipments",
                    )
                row = {
                    "id": new_id("as"),
                    "shipment_id": shipment_id,
                    "plate_number": shipment["plate_number"],
                    "driver_name": shipment["driver_name"],
                    "original_weight": shipment["weight"],
                }
                default_weight = shipment["weight"]

            row["arrival_record_id"] = record_id
            row["arrival_weight"] = (
                selection.arrival_weight if selection.arrival_weight is not None else default_weight
            )
            rows.append(row)
        return rows

    def _customer_name(self, customer_id: str, shipment_ids: Iterable[str]) -> str:
        name = self.references.name_of("customers", customer_id)
        if name:
            return name
        for shipment_id in shipment_ids:
            shipment = self.projector.get_shipment(shipment_id)
            if shipment and shipment["customer_id"] == customer_id:
                return shipment["customer_name"]
        return ""

    # -- reads --------------------------------------------------------------

    def _require(self, record_id: str) -> Record:
        record = self.store.get(ARRIVALS, record_id)
        if record is None:
            raise NotFoundError("Arrival record", record_id)
        return record

    def _freight_state(self, record: Record) -> Record:
        tagged = self.payments.list_freight_payments(record["id"])
        payable = round2(record.get("total_freight_payable"))
        paid = self.payments.freight_paid_for(record["id"])
        settled = any(is_balancing_entry(row) for row in tagged)
        return {
            "arrival_record_id": record["id"],
            "payable": payable,
            "paid": paid,
            "remaining": 0.0 if settled else round2(max(0.0, payable - paid)),
            "settled": settled,
            "status": PAID if settled else (settlement_status(paid, payable) if tagged else UNPAID),
        }

    def _view(self, record: Record) -> Record:
        freight = self._freight_state(record)
        view = dict(record)
        view["actual_freight_paid"] = freight["paid"]
        view["freight_payment_status"] = freight["status"]
        view["receivable_payment_status"] = record.get("receivable_payment_status") or UNPAID
        if view["freight_payment_status"] == PAID and view["receivable_payment_status"] == PAID:
            view["status"] = COMPLETED
        return view

    def get_arrival_record(self, record_id: str) -> Record:
        return self._view(self._require(record_id))

    def list_arrival_records(self) -> List[Record]:
        records = sorted(
            self.store.list(ARRIVALS), key=lambda row: row.get("created_at") or "", reverse=True
        )
        return [self._view(record) for record in records]

    def freight_summary(self, record_id: str) -> Record:
        return self._freight_state(self._require(record_id))

    # -- writes -------------------------------------------------------------

    def create_arrival_record(
        self, payload: Union[ArrivalRecordCreate, Mapping[str, Any]]
    ) -> Record:
        data = parse_input(ArrivalRecordCreate, payload)
        record_id = new_id("ar")
        rows = price_rows(
            self._snapshot(record_id, data.customer_id, data.related_shipments),
            data.selling_price_per_ton,
        )
        record = {
            "id": record_id,
            "arrival_date": data.arrival_date.isoformat(),
            "customer_id": data.customer_id,
            "customer_name": data.customer_name
            or self._customer_name(
                data.customer_id, [selection.shipment_id for selection in data.related_shipments]
            ),
            "selling_price_per_ton": data.selling_price_per_ton,
            "freight_per_ton": data.freight_per_ton,
            "actual_freight_paid": 0.0,
            "freight_payment_status": UNPAID,
            "actual_received": 0.0,
            "receivable_payment_status": UNPAID,
            "status": PENDING,
            "remark": data.remark,
            "related_shipments": rows,
            "created_at": utc_now_iso(),
        }
        record.update(record_totals(rows, data.freight_per_ton))
        self.store.insert(ARRIVALS, record)
        logger.info(
            "Created arrival record %s: %d shipments, loss %.2f t, receivable %.2f",
            record_id,
            len(rows),
            record["total_loss"],
            record["total_receivable"],
        )
        return self._view(record)

    def update_arrival_record(
        self, record_id: str, payload: Union[ArrivalRecordUpdate, Mapping[str, Any]]
    ) -> Record:
        """Merge *payload* into the record and recompute every derived figure."""
        data = parse_input(ArrivalRecordUpdate, payload)
        fields = data.model_dump(exclude_unset=True, exclude_none=True, exclude={"related_shipments"})
        if "arrival_date" in fields:
            fields["arrival_date"] = fields["arrival_date"].isoformat()
        if "actual_received" in fields:
            fields["actual_received"] = round2(fields["actual_received"])

        with self.store.transaction():
            record = self._require(record_id)
            merged = dict(record, **fields)
            rows = record.get("related_shipments") or []
            if data.related_shipments is not None:
                rows = self._snapshot(
                    record_id, merged["customer_id"], data.related_shipments, existing_rows=rows
                )
            if "customer_id" in fields and "customer_name" not in fields:
                merged["customer_name"] = self._customer_name(
                    merged["customer_id"], [row["shipment_id"] for row in rows]
                )
            rows = price_rows(rows, merged["selling_price_per_ton"])
            merged["related_shipments"] = rows
            merged.update(record_totals(rows, merged["freight_per_ton"]))
            # A record nothing has been received against stays unpaid until a
            # receipt is recorded, whatever its total.
            if "actual_received" in fields or record.get("receivable_payment_status") != UNPAID:
                merged["receivable_payment_status"] = settlement_status(
                    merged.get("actual_received"), merged["total_receivable"]
                )
            merged.pop("id")
            updated = self.store.update(ARRIVALS, record_id, merged)

        logger.info("Updated arrival record %s (%s)", record_id, ", ".join(sorted(fields)) or "rows")
        return self._view(updated)

    def delete_arrival_record(self, record_id: str) -> None:
        """Remove the record; payments tagged with it stay in their ledgers."""
        if not self.store.delete(ARRIVALS, record_id):
            raise NotFoundError("Arrival record", record_id)
        logger.info("Deleted arrival record %s", record_id)

    def record_freight_payment(
        self, record_id: str, payload: Union[ArrivalFreightPaymentCreate, Mapping[str, Any]]
    ) -> Record:
        """Append a freight payment tagged with the record; the record itself is untouched."""
        data = parse_input(ArrivalFreightPaymentCreate, payload)
        record = self._require(record_id)
        rows = record.get("related_shipments") or []
        driver_names = _unique(row.get("driver_name") for row in rows)

        return self.payments.create_freight_payment(
            FreightPaymentCreate(
                driver_id=data.driver_id
                or (driver_id_for(driver_names[0]) if driver_names else "unknown"),
                driver_name=data.driver_name or ", ".join(driver_names),
                plate_numbers=data.plate_numbers
                if data.plate_numbers is not None
                else _unique(row.get("plate_number") for row in rows),
                calculated_amount=data.calculated_amount
                if data.calculated_amount is not None
                else record.get("total_freight_payable") or 0.0,
                actual_amount=data.actual_amount,
                payment_date=data.payment_date,
                remark=data.remark,
                arrival_record_id=record_id,
            )
        )

    def settle_freight_balance(
        self,
        record_id: str,
        payload: Union[FreightSettleRequest, Mapping[str, Any], None] = None,
    ) -> Record:
        """Write off the freight still owed with a zero-amount balancing entry."""
        data = parse_input(FreightSettleRequest, payload or {})
        record = self._require(record_id)
        state = self._freight_state(record)
        if state["remaining"] <= 0:
            raise ValidationError(f"no freight remains to settle on arrival record {record_id}")

        payment = self.record_freight_payment(
            record_id,
            ArrivalFreightPaymentCreate(
                actual_amount=0.0,
                payment_date=data.payment_date,
                remark=f"{BALANCING_REMARK} - 免缴剩余运费 ¥{state['remaining']:,.2f}",
            ),
        )
        logger.info(
            "Settled freight for arrival record %s, %.2f written off", record_id, state["remaining"]
        )
        return payment

    def record_receivable_payment(
        self, record_id: str, payload: Union[ReceivablePaymentCreate, Mapping[str, Any]]
    ) -> Record:
        """Set the cumulative amount received and re-derive the receivable status.

        The matching customer receipt is written afterwards and only on a best
        effort basis: if it fails the status update stands.
        """
        data = parse_input(ReceivablePaymentCreate, payload)
        actual = round2(data.actual_received)

        with self.store.transaction():
            record = self._require(record_id)
            previous = round2(record.get("actual_received"))
            updated = self.store.update(
                ARRIVALS,
                record_id,
                {
                    "actual_received": actual,
                    "receivable_payment_status": settlement_status(
                        actual, record.get("total_receivable")
                    ),
                },
            )

        delta = round2(actual - previous)
        if delta > 0:
            try:
                self.payments.create_customer_payment(
                    {
                        "customer_id": record.get("customer_id") or "",
                        "customer_name": record.get("customer_name") or None,
                        "amount": delta,
                        "payment_date": data.payment_date,
                        "remark": data.remark or f"到货记录 {record_id} 收款",
                        "arrival_record_id": record_id,
                    }
                )
            except SettlementError:
                logger.warning(
                    "Receivable for arrival record %s updated but its customer receipt was not recorded",
                    record_id,
                    exc_info=True,
                )
        elif delta < 0:
            logger.info(
                "Arrival record %s received amount lowered by %.2f; no receipt written",
                record_id,
                -delta,
            )
        return self._view(updated)


__all__ = [
    "ArrivalReconciliation",
    "ARRIVALS",
    "PENDING",
    "COMPLETED",
    "price_rows",
    "record_totals",
]
