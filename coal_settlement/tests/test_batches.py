from __future__ import annotations

import pytest

from coal_settlement.batches import BATCHES, PAYMENTS, VEHICLES, BatchLedger
from coal_settlement.exceptions import NotFoundError, ValidationError
from coal_settlement.reference import ReferenceStore
from coal_settlement.shipments import ShipmentProjector
from coal_settlement.store import Store


def _two_truck_batch(ledger: BatchLedger, **overrides) -> dict:
    payload = {
        "customerId": "cus1",
        "customerName": "Harbor Power",
        "supplierId": "sup1",
        "supplierName": "North Mine",
        "departureDate": "2024-03-01",
        "coalPrice": 800,
        "vehicles": [
            {"plateNumber": "A-001", "driverName": "Li", "weight": 35},
            {"plateNumber": "A-002", "driverName": "Wang", "weight": 40},
        ],
    }
    payload.update(overrides)
    return ledger.create_batch(payload)


def test_create_batch_computes_totals(store: Store) -> None:
    batch = _two_truck_batch(BatchLedger(store))

    assert batch["total_weight"] == 75
    assert batch["total_amount"] == 60000
    assert batch["paid_amount"] == 0
    assert batch["remaining_amount"] == 60000
    assert batch["status"] == "pending"
    assert batch["id"].startswith("b")
    assert [vehicle["plate_number"] for vehicle in batch["vehicles"]] == ["A-001", "A-002"]
    assert [vehicle["amount"] for vehicle in batch["vehicles"]] == [28000, 32000]


def test_explicit_vehicle_amount_wins_over_price(store: Store) -> None:
    batch = _two_truck_batch(
        BatchLedger(store),
        vehicles=[{"plateNumber": "A-001", "driverName": "Li", "weight": 10, "amount": 7500}],
    )
    assert batch["total_amount"] == 7500
    assert batch["vehicles"][0]["amount"] == 7500


def test_payments_move_balance_and_absorb_excess(store: Store) -> None:
    ledger = BatchLedger(store)
    batch = _two_truck_batch(ledger)

    ledger.apply_payment(batch["id"], {"amount": 40000, "paymentDate": "2024-03-05"})
    after_first = ledger.get_batch(batch["id"])
    assert after_first["paid_amount"] == 40000
    assert after_first["remaining_amount"] == 20000
    assert after_first["status"] == "partial_paid"

    record = ledger.apply_payment(batch["id"], {"amount": 25000, "remark": "final"})
    assert record["amount"] == 25000
    settled = ledger.get_batch(batch["id"])
    assert settled["remaining_amount"] == 0
    assert settled["status"] == "fully_paid"
    assert settled["paid_amount"] + settled["remaining_amount"] == settled["total_amount"]
    assert len(settled["payment_records"]) == 2


@pytest.mark.parametrize("amounts", [[0], [10, 20, 30], [59999.99, 0.01], [100000], [1, 70000, 5]])
def test_paid_plus_remaining_always_equals_total(store: Store, amounts) -> None:
    ledger = BatchLedger(store)
    batch = _two_truck_batch(ledger)

    for amount in amounts:
        ledger.apply_payment(batch["id"], {"amount": amount})
        current = ledger.get_batch(batch["id"])
        assert current["paid_amount"] + current["remaining_amount"] == pytest.approx(current["total_amount"])
        assert current["remaining_amount"] >= 0
        if current["remaining_amount"] == 0:
            assert current["status"] == "fully_paid"
        elif current["paid_amount"] == 0:
            assert current["status"] == "pending"
        else:
            assert current["status"] == "partial_paid"


def test_payment_defaults_date_and_remark(store: Store) -> None:
    ledger = BatchLedger(store)
    batch = _two_truck_batch(ledger)
    record = ledger.apply_payment(batch["id"], {"amount": 100})
    assert len(record["payment_date"]) == 10
    assert record["remark"] == ""


def test_payment_on_unknown_batch_is_not_found(store: Store) -> None:
    with pytest.raises(NotFoundError):
        BatchLedger(store).apply_payment("b-missing", {"amount": 10})
    assert store.list(PAYMENTS) == []


def test_negative_payment_is_rejected(store: Store) -> None:
    ledger = BatchLedger(store)
    batch = _two_truck_batch(ledger)
    with pytest.raises(ValidationError):
        ledger.apply_payment(batch["id"], {"amount": -5})
    assert ledger.get_batch(batch["id"])["paid_amount"] == 0


def test_missing_coal_price_is_rejected(store: Store) -> None:
    with pytest.raises(ValidationError):
        BatchLedger(store).create_batch({"customerId": "cus1", "vehicles": []})
    assert store.list(BATCHES) == []


def test_delete_batch_cascades_and_hides_shipments(store: Store) -> None:
    ledger = BatchLedger(store)
    batch = _two_truck_batch(ledger)
    keep = _two_truck_batch(ledger, customerId="cus2")
    ledger.apply_payment(batch["id"], {"amount": 1000})

    ledger.delete_batch(batch["id"])

    assert store.list(VEHICLES, batch_id=batch["id"]) == []
    assert store.list(PAYMENTS, batch_id=batch["id"]) == []
    shipments = ShipmentProjector(store).list_shipments()
    assert {shipment["batch_id"] for shipment in shipments} == {keep["id"]}
    with pytest.raises(NotFoundError):
        ledger.get_batch(batch["id"])
    with pytest.raises(NotFoundError):
        ledger.delete_batch(batch["id"])


def test_failed_create_leaves_no_partial_rows(store: Store, monkeypatch: pytest.MonkeyPatch) -> None:
    ledger = BatchLedger(store)
    original_insert = store.insert
    calls = {"vehicles": 0}

    def failing_insert(table, record):
        if table == VEHICLES:
            calls["vehicles"] += 1
            if calls["vehicles"] == 2:
                raise RuntimeError("disk full")
        return original_insert(table, record)

    monkeypatch.setattr(store, "insert", failing_insert)
    with pytest.raises(RuntimeError):
        _two_truck_batch(ledger)
    monkeypatch.undo()

    assert store.list(BATCHES) == []
    assert store.list(VEHICLES) == []


def test_names_are_resolved_from_reference_data(store: Store) -> None:
    references = ReferenceStore(store)
    customer = references.put("customers", {"name": "Harbor Power"})
    supplier = references.put("suppliers", {"name": "North Mine"})

    batch = BatchLedger(store, references).create_batch(
        {
            "customerId": customer["id"],
            "supplierId": supplier["id"],
            "coalPrice": 500,
            "vehicles": [{"plateNumber": "A-9", "driverName": "Li", "weight": 2}],
        }
    )
    assert batch["customer_name"] == "Harbor Power"
    assert batch["supplier_name"] == "North Mine"


def test_list_batches_newest_first(store: Store) -> None:
    ledger = BatchLedger(store)
    first = _two_truck_batch(ledger)
    second = _two_truck_batch(ledger)
    listed = ledger.list_batches()
    assert [batch["id"] for batch in listed] == [second["id"], first["id"]]
    assert all(len(batch["vehicles"]) == 2 for batch in listed)


def test_business_dates_accept_common_formats(store: Store) -> None:
    ledger = BatchLedger(store)
    batch = _two_truck_batch(ledger, departureDate="2024/03/01")
    assert batch["departure_date"] == "2024-03-01"

    record = ledger.apply_payment(batch["id"], {"amount": 1, "paymentDate": "20240305"})
    assert record["payment_date"] == "2024-03-05"

    with pytest.raises(ValidationError):
        ledger.apply_payment(batch["id"], {"amount": 1, "paymentDate": "next tuesday"})
