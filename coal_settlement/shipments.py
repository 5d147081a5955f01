"""Per-vehicle shipment view, joined from vehicles and their batches on read.

Nothing here is stored: every call re-reads the batch ledger, so a deleted
batch drops out of the view immediately.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from coal_settlement.batches import BATCHES, VEHICLES
from coal_settlement.store import Record, Store
from coal_settlement.utils import driver_id_for, normalize_driver_name, round2

SHIPPING = "shipping"


def project_shipment(vehicle: Record, batch: Record) -> Record:
    driver_name = normalize_driver_name(vehicle.get("driver_name"))
    coal_price = float(batch.get("coal_price") or 0.0)
    weight = float(vehicle.get("weight") or 0.0)
    coal_amount = float(vehicle.get("amount") or 0.0) or round2(coal_price * weight)
    return {
        "id": vehicle["id"],
        "batch_id": vehicle["batch_id"],
        "vehicle_id": vehicle["id"],
        "plate_number": vehicle.get("plate_number") or "",
        "driver_name": driver_name,
        "driver_id": driver_id_for(driver_name),
        "customer_id": batch.get("customer_id") or "",
        "customer_name": batch.get("customer_name") or "",
        "supplier_id": batch.get("supplier_id") or "",
        "supplier_name": batch.get("supplier_name") or "",
        "coal_price": coal_price,
        # Freight is priced per arrival record, never at the batch level.
        "freight_price": 0.0,
        "weight": weight,
        "coal_amount": coal_amount,
        "freight_amount": 0.0,
        "departure_date": batch.get("departure_date") or "",
        "arrival_date": None,
        "status": SHIPPING,
        "created_at": vehicle.get("created_at") or batch.get("created_at") or "",
    }


class ShipmentProjector:
    def __init__(self, store: Store) -> None:
        self.store = store

    def list_shipments(self, customer_id: Optional[str] = None) -> List[Record]:
        batches: Dict[str, Record] = {batch["id"]: batch for batch in self.store.list(BATCHES)}
        vehicles = sorted(
            self.store.list(VEHICLES),
            key=lambda row: (row.get("created_at") or "", row.get("position") or 0),
        )

        shipments: List[Record] = []
        for vehicle in vehicles:
            batch = batches.get(vehicle["batch_id"])
            # A vehicle without its batch is mid-delete; it is not a shipment.
            if batch is None:
                continue
            if customer_id and batch.get("customer_id") != customer_id:
                continue
            shipments.append(project_shipment(vehicle, batch))
        return shipments

    def get_shipment(self, shipment_id: str) -> Optional[Record]:
        vehicle = self.store.get(VEHICLES, shipment_id)
        if vehicle is None:
            return None
        batch = self.store.get(BATCHES, vehicle["batch_id"])
        if batch is None:
            return None
        return project_shipment(vehicle, batch)


__all__ = ["ShipmentProjector", "project_shipment", "SHIPPING"]
