from __future__ import annotations

import pytest
from fastapi.testclient import TestClient


def _create_batch(api_client: TestClient) -> dict:
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
    response = api_client.post("/batches", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def _create_arrival(api_client: TestClient, batch: dict) -> dict:
    payload = {
        "arrivalDate": "2024-03-03",
        "customerId": "cus1",
        "sellingPricePerTon": 800,
        "freightPerTon": 100,
        "relatedShipments": [
            {"shipmentId": batch["vehicles"][0]["id"], "arrivalWeight": 34},
            {"shipmentId": batch["vehicles"][1]["id"], "arrivalWeight": 38.5},
        ],
    }
    response = api_client.post("/arrival-records", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def test_health_endpoint(api_client: TestClient) -> None:
    response = api_client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "running"
    assert body["storage"] in {"sqlite", "json"}


def test_batch_lifecycle(api_client: TestClient) -> None:
    batch = _create_batch(api_client)
    assert batch["totalWeight"] == 75
    assert batch["totalAmount"] == 60000
    assert batch["status"] == "pending"
    assert len(batch["vehicles"]) == 2
    assert "total_weight" not in batch

    first = api_client.post(f"/batches/{batch['id']}/payments", json={"amount": 40000, "paymentDate": "2024-03-05"})
    assert first.status_code == 201, first.text
    assert first.json()["batchId"] == batch["id"]

    second = api_client.post(f"/batches/{batch['id']}/payments", json={"amount": 25000})
    assert second.status_code == 201

    fetched = api_client.get(f"/batches/{batch['id']}").json()
    assert fetched["paidAmount"] == 60000
    assert fetched["remainingAmount"] == 0
    assert fetched["status"] == "fully_paid"
    assert len(fetched["paymentRecords"]) == 2

    listed = api_client.get("/batches").json()
    assert [item["id"] for item in listed] == [batch["id"]]

    delete_response = api_client.delete(f"/batches/{batch['id']}")
    assert delete_response.status_code == 204
    assert api_client.get(f"/batches/{batch['id']}").status_code == 404
    assert api_client.get("/shipments").json() == []


def test_errors_use_error_envelope(api_client: TestClient) -> None:
    missing = api_client.post("/batches/b-missing/payments", json={"amount": 10})
    assert missing.status_code == 404
    assert missing.json() == {"error": "Batch not found: b-missing"}

    invalid = api_client.post("/batches", json={"customerId": "cus1", "coalPrice": -1})
    assert invalid.status_code == 400
    assert "coalPrice" in invalid.json()["error"]

    negative = api_client.post("/batches", json={"coalPrice": 10, "vehicles": [{"weight": -2}]})
    assert negative.status_code == 400


def test_shipments_and_drivers(api_client: TestClient) -> None:
    batch = _create_batch(api_client)

    shipments = api_client.get("/shipments", params={"customerId": "cus1"}).json()
    assert [shipment["vehicleId"] for shipment in shipments] == [v["id"] for v in batch["vehicles"]]
    assert shipments[0]["coalAmount"] == 28000
    assert shipments[0]["status"] == "shipping"
    assert api_client.get("/shipments", params={"customerId": "other"}).json() == []

    fallback = api_client.get("/drivers").json()
    assert sorted(driver["name"] for driver in fallback) == ["Li", "Wang"]

    created = api_client.post("/drivers", json={"name": "Zhao", "teamName": "East", "plateNumbers": ["Z-1"]})
    assert created.status_code == 201, created.text
    driver = created.json()
    assert driver["teamName"] == "East"

    roster = api_client.get("/drivers").json()
    assert [item["id"] for item in roster] == [driver["id"]]

    assert api_client.delete(f"/drivers/{driver['id']}").status_code == 204
    assert api_client.delete(f"/drivers/{driver['id']}").status_code == 404


@pytest.mark.parametrize("kind", ["customers", "suppliers"])
def test_party_endpoints(api_client: TestClient, kind: str) -> None:
    created = api_client.post(f"/{kind}", json={"name": "Acme", "phone": "555"})
    assert created.status_code == 201, created.text
    party = created.json()
    assert party["createdAt"]

    assert [item["id"] for item in api_client.get(f"/{kind}").json()] == [party["id"]]
    assert api_client.post(f"/{kind}", json={"name": ""}).status_code == 400

    assert api_client.delete(f"/{kind}/{party['id']}").status_code == 204
    assert api_client.get(f"/{kind}").json() == []


def test_arrival_record_flow(api_client: TestClient) -> None:
    batch = _create_batch(api_client)
    record = _create_arrival(api_client, batch)
    assert record["totalLoss"] == 2.5
    assert record["totalReceivable"] == 58000
    assert record["totalFreightPayable"] == 7250
    assert record["relatedShipments"][0]["originalWeight"] == 35

    updated = api_client.put(f"/arrival-records/{record['id']}", json={"sellingPricePerTon": 900})
    assert updated.status_code == 200, updated.text
    assert updated.json()["totalReceivable"] == 65250

    paid = api_client.post(f"/arrival-records/{record['id']}/freight-payments", json={"actualAmount": 5000})
    assert paid.status_code == 201, paid.text
    assert paid.json()["arrivalRecordId"] == record["id"]

    summary = api_client.get(f"/arrival-records/{record['id']}/freight").json()
    assert summary["paid"] == 5000
    assert summary["remaining"] == 2250
    assert summary["status"] == "partial"

    settled = api_client.post(f"/arrival-records/{record['id']}/freight-payments/settle")
    assert settled.status_code == 201, settled.text
    assert settled.json()["actualAmount"] == 0
    assert api_client.post(f"/arrival-records/{record['id']}/freight-payments/settle").status_code == 400

    received = api_client.post(f"/arrival-records/{record['id']}/receivable", json={"actualReceived": 65250})
    assert received.status_code == 200, received.text
    assert received.json()["receivablePaymentStatus"] == "paid"
    assert received.json()["status"] == "completed"

    receipts = api_client.get("/payments/customer", params={"arrivalRecordId": record["id"]}).json()
    assert [receipt["amount"] for receipt in receipts] == [65250]

    assert api_client.delete(f"/arrival-records/{record['id']}").status_code == 204
    assert api_client.get(f"/arrival-records/{record['id']}").status_code == 404
    orphans = api_client.get("/payments/freight", params={"arrivalRecordId": record["id"]}).json()
    assert len(orphans) == 2


def test_arrival_record_validation(api_client: TestClient) -> None:
    response = api_client.post(
        "/arrival-records",
        json={"arrivalDate": "2024-03-03", "customerId": "cus1", "sellingPricePerTon": 800, "freightPerTon": 0},
    )
    assert response.status_code == 400
    assert api_client.get("/arrival-records/ar-missing").status_code == 404
    assert api_client.put("/arrival-records/ar-missing", json={"remark": "x"}).status_code == 404


def test_payment_ledgers(api_client: TestClient) -> None:
    freight = api_client.post(
        "/payments/freight",
        json={"driverId": "drv1", "driverName": "Li", "plateNumbers": ["A-1", "A-1"], "actualAmount": 300},
    )
    assert freight.status_code == 201, freight.text
    assert freight.json()["plateNumbers"] == ["A-1"]

    customer = api_client.post("/payments/customer", json={"customerId": "cus1", "amount": 1000})
    assert customer.status_code == 201, customer.text

    cargo = api_client.post(
        "/payments/cargo",
        json={"shipmentId": "v1", "customerId": "cus1", "calculatedAmount": 500, "actualAmount": 450},
    )
    assert cargo.status_code == 201, cargo.text

    assert len(api_client.get("/payments/freight").json()) == 1
    assert len(api_client.get("/payments/customer").json()) == 1
    assert api_client.get("/payments/cargo").json()[0]["actualAmount"] == 450

    assert api_client.post("/payments/freight", json={"actualAmount": 1}).status_code == 400
    assert api_client.post("/payments/cargo", json={"shipmentId": "v1", "actualAmount": -1}).status_code == 400


def test_arrival_update_records_received_amount(api_client: TestClient) -> None:
    batch = _create_batch(api_client)
    record = _create_arrival(api_client, batch)

    updated = api_client.put(f"/arrival-records/{record['id']}", json={"actualReceived": 28000})
    assert updated.status_code == 200, updated.text
    assert updated.json()["actualReceived"] == 28000
    assert updated.json()["receivablePaymentStatus"] == "partial"
    assert api_client.get(f"/arrival-records/{record['id']}").json()["actualReceived"] == 28000


def test_arrival_rejects_other_customers_shipment(api_client: TestClient) -> None:
    batch = _create_batch(api_client)
    response = api_client.post(
        "/arrival-records",
        json={
            "arrivalDate": "2024-03-03",
            "customerId": "cus2",
            "sellingPricePerTon": 800,
            "freightPerTon": 100,
            "relatedShipments": [{"shipmentId": batch["vehicles"][0]["id"]}],
        },
    )
    assert response.status_code == 400
    assert "another customer" in response.json()["error"]
    assert api_client.get("/arrival-records").json() == []
