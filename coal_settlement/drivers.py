"""Driver list: the stored roster, or one synthesised from vehicle records.

Plate/driver pairs lived only on vehicles before drivers were recorded on
their own, so an empty roster falls back to grouping vehicles by driver name.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from coal_settlement.batches import VEHICLES
from coal_settlement.reference import ReferenceStore
from coal_settlement.store import Record, Store
from coal_settlement.utils import driver_id_for, normalize_driver_name


def aggregate_drivers(vehicles: List[Record]) -> List[Record]:
    drivers: Dict[str, Record] = {}
    ordered = sorted(
        vehicles, key=lambda row: (row.get("created_at") or "", row.get("position") or 0)
    )
    for vehicle in ordered:
        name = normalize_driver_name(vehicle.get("driver_name"))
        driver_id = driver_id_for(name)
        entry = drivers.get(driver_id)
        if entry is None:
            entry = drivers[driver_id] = {
                "id": driver_id,
                "name": name,
                "phone": "",
                "team_name": "",
                "plate_numbers": [],
                "created_at": vehicle.get("created_at") or "",
            }
        plate = (vehicle.get("plate_number") or "").strip()
        if plate and plate not in entry["plate_numbers"]:
            entry["plate_numbers"].append(plate)
    return list(drivers.values())


class DriverAggregator:
    def __init__(self, store: Store, references: Optional[ReferenceStore] = None) -> None:
        self.store = store
        self.references = references or ReferenceStore(store)

    def list_drivers(self) -> List[Record]:
        roster = self.references.list("drivers")
        if roster:
            return roster
        return aggregate_drivers(self.store.list(VEHICLES))


__all__ = ["DriverAggregator", "aggregate_drivers"]
