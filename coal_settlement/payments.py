"""Append-only payment logs: cargo, freight and customer receipts.

Rows are never edited or removed. Freight and customer rows may carry an
``arrival_record_id`` tag; the tag is informational and survives deletion of
the record it names.
"""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional, Union

from coal_settlement.reference import ReferenceStore
from coal_settlement.schemas import (
    CargoPaymentCreate,
    CustomerPaymentCreate,
    FreightPaymentCreate,
    parse_input,
)
from coal_settlement.store import Record, Store
from coal_settlement.utils import new_id, round2, utc_now_iso

logger = logging.getLogger(__name__)

CARGO = "cargo_payments"
FREIGHT = "freight_payments"
CUSTOMER = "customer_payments"

# Remark prefix marking a zero-amount freight row that writes off what is left.
BALANCING_REMARK = "平账结算"


def is_balancing_entry(payment: Record) -> bool:
    return round2(payment.get("actual_amount")) == 0 and (payment.get("remark") or "").startswith(
        BALANCING_REMARK
    )


def _newest_first(rows: List[Record]) -> List[Record]:
    return sorted(rows, key=lambda row: row.get("created_at") or "", reverse=True)


class PaymentLedgers:
    def __init__(self, store: Store, references: Optional[ReferenceStore] = None) -> None:
        self.store = store
        self.references = references or ReferenceStore(store)

    # -- freight ------------------------------------------------------------

    def create_freight_payment(
        self, payload: Union[FreightPaymentCreate, Mapping[str, Any]]
    ) -> Record:
        data = parse_input(FreightPaymentCreate, payload)
        payment = {
            "id": new_id("fp"),
            "driver_id": data.driver_id,
            "driver_name": data.driver_name or self.references.name_of("drivers", data.driver_id),
            "plate_numbers": list(data.plate_numbers),
            "calculated_amount": round2(data.calculated_amount),
            "actual_amount": round2(data.actual_amount),
            "payment_date": data.payment_date.isoformat(),
            "remark": data.remark,
            "arrival_record_id": data.arrival_record_id or None,
            "created_at": utc_now_iso(),
        }
        self.store.insert(FREIGHT, payment)
        logger.info(
            "Freight payment %s: %.2f to %s (arrival record %s)",
            payment["id"],
            payment["actual_amount"],
            payment["driver_name"] or payment["driver_id"],
            payment["arrival_record_id"] or "-",
        )
        return payment

    def list_freight_payments(self, arrival_record_id: Optional[str] = None) -> List[Record]:
        if arrival_record_id:
            return _newest_first(self.store.list(FREIGHT, arrival_record_id=arrival_record_id))
        return _newest_first(self.store.list(FREIGHT))

    def freight_paid_for(self, arrival_record_id: str) -> float:
        """Freight paid to date for an arrival record."""
        return round2(
            sum(
                float(row.get("actual_amount") or 0.0)
                for row in self.store.list(FREIGHT, arrival_record_id=arrival_record_id)
            )
        )

    # -- customer receipts --------------------------------------------------

    def create_customer_payment(
        self, payload: Union[CustomerPaymentCreate, Mapping[str, Any]]
    ) -> Record:
        data = parse_input(CustomerPaymentCreate, payload)
        payment = {
            "id": new_id("rc"),
            "customer_id": data.customer_id,
            "customer_name": data.customer_name
            or self.references.name_of("customers", data.customer_id),
            "amount": round2(data.amount),
            "payment_date": data.payment_date.isoformat(),
            "remark": data.remark,
            "arrival_record_id": data.arrival_record_id or None,
            "created_at": utc_now_iso(),
        }
        self.store.insert(CUSTOMER, payment)
        logger.info(
            "Customer receipt %s: %.2f from %s", payment["id"], payment["amount"], data.customer_id
        )
        return payment

    def list_customer_payments(self, arrival_record_id: Optional[str] = None) -> List[Record]:
        if arrival_record_id:
            return _newest_first(self.store.list(CUSTOMER, arrival_record_id=arrival_record_id))
        return _newest_first(self.store.list(CUSTOMER))

    # -- cargo --------------------------------------------------------------

    def create_cargo_payment(self, payload: Union[CargoPaymentCreate, Mapping[str, Any]]) -> Record:
        data = parse_input(CargoPaymentCreate, payload)
        payment = {
            "id": new_id("cp"),
            "shipment_id": data.shipment_id,
            "customer_id": data.customer_id,
            "customer_name": data.customer_name
            or self.references.name_of("customers", data.customer_id),
            "calculated_amount": round2(data.calculated_amount),
            "actual_amount": round2(data.actual_amount),
            "payment_date": data.payment_date.isoformat(),
            "remark": data.remark,
            "created_at": utc_now_iso(),
        }
        self.store.insert(CARGO, payment)
        logger.info("Cargo payment %s for shipment %s", payment["id"], data.shipment_id)
        return payment

    def list_cargo_payments(self) -> List[Record]:
        return _newest_first(self.store.list(CARGO))


__all__ = [
    "PaymentLedgers",
    "is_balancing_entry",
    "BALANCING_REMARK",
    "CARGO",
    "FREIGHT",
    "CUSTOMER",
]
