from __future__ import annotations

import json
from pathlib import Path

import pytest

from coal_settlement.exceptions import NotFoundError, StorageError, ValidationError
from coal_settlement.reference import ReferenceStore
from coal_settlement.settings import Settings
from coal_settlement.store import JsonFileStore, SqlStore, Store, build_store
from coal_settlement.utils import utc_now_iso


def _customer(record_id: str, name: str = "Harbor Power") -> dict:
    return {"id": record_id, "name": name, "created_at": "2024-01-01T00:00:00+00:00"}


def test_crud_round_trip(store: Store) -> None:
    store.insert("customers", _customer("cus1"))
    store.insert("customers", _customer("cus2", "Delta Steel"))

    assert store.get("customers", "cus1")["name"] == "Harbor Power"
    assert store.get("customers", "nope") is None
    assert [row["id"] for row in store.list("customers", name="Delta Steel")] == ["cus2"]

    updated = store.update("customers", "cus1", {"phone": "555"})
    assert updated["phone"] == "555"
    assert store.update("customers", "nope", {"phone": "1"}) is None

    assert store.delete("customers", "cus1") is True
    assert store.delete("customers", "cus1") is False
    assert store.delete_where("customers", name="Delta Steel") == 1
    assert store.list("customers") == []


def test_returned_records_are_copies(store: Store) -> None:
    store.insert("drivers", {"id": "d1", "name": "Li", "plate_numbers": ["A-1"], "created_at": "x"})
    fetched = store.get("drivers", "d1")
    fetched["plate_numbers"].append("B-2")
    assert store.get("drivers", "d1")["plate_numbers"] == ["A-1"]


def test_transaction_rolls_back_every_write(store: Store) -> None:
    store.insert("customers", _customer("cus1"))

    with pytest.raises(RuntimeError):
        with store.transaction():
            store.insert("customers", _customer("cus2"))
            store.update("customers", "cus1", {"name": "Renamed"})
            with store.transaction():
                store.delete("customers", "cus1")
            raise RuntimeError("abort")

    assert [row["id"] for row in store.list("customers")] == ["cus1"]
    assert store.get("customers", "cus1")["name"] == "Harbor Power"


def test_unknown_table_is_rejected(store: Store) -> None:
    with pytest.raises(ValueError):
        store.list("loans")


def test_json_store_persists_to_disk(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "app.json"
    store = JsonFileStore(path)
    store.insert("customers", _customer("cus1"))

    on_disk = json.loads(path.read_text(encoding="utf-8"))
    assert on_disk["customers"][0]["id"] == "cus1"
    assert "arrival_records" in on_disk

    reopened = JsonFileStore(path)
    assert reopened.get("customers", "cus1")["name"] == "Harbor Power"


def test_json_store_failed_transaction_does_not_touch_file(tmp_path: Path) -> None:
    path = tmp_path / "app.json"
    store = JsonFileStore(path)
    store.insert("customers", _customer("cus1"))
    before = path.read_text(encoding="utf-8")

    with pytest.raises(RuntimeError):
        with store.transaction():
            store.insert("customers", _customer("cus2"))
            raise RuntimeError("abort")

    assert path.read_text(encoding="utf-8") == before


def test_corrupt_json_store_raises_storage_error(tmp_path: Path) -> None:
    path = tmp_path / "app.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(StorageError):
        JsonFileStore(path)


def test_sql_store_cascades_vehicle_rows(tmp_path: Path) -> None:
    store = SqlStore(f"sqlite:///{tmp_path / 'cascade.db'}")
    try:
        store.insert("delivery_batches", {"id": "b1", "created_at": "2024-01-01"})
        store.insert("delivery_vehicles", {"id": "v1", "batch_id": "b1", "created_at": "2024-01-01"})
        store.delete("delivery_batches", "b1")
        assert store.list("delivery_vehicles") == []
    finally:
        store.close()


def test_sql_store_wraps_integrity_errors(tmp_path: Path) -> None:
    store = SqlStore(f"sqlite:///{tmp_path / 'dup.db'}")
    try:
        store.insert("customers", _customer("cus1"))
        with pytest.raises(StorageError):
            store.insert("customers", _customer("cus1"))
        assert len(store.list("customers")) == 1
    finally:
        store.close()


def test_build_store_follows_settings(tmp_path: Path) -> None:
    json_store = build_store(Settings(storage_backend="json", json_store_path=str(tmp_path / "a.json")))
    assert isinstance(json_store, JsonFileStore)

    sql_store = build_store(Settings(database_url=f"sqlite:///{tmp_path / 'b.db'}"))
    try:
        assert isinstance(sql_store, SqlStore)
        assert sql_store.backend == "sqlite"
    finally:
        sql_store.close()


def test_settings_from_env() -> None:
    settings = Settings.from_env(
        {"COAL_STORAGE": "JSON", "COAL_LOG_LEVEL": "debug", "CORS_ORIGINS": "http://a, http://b"}
    )
    assert settings.storage_backend == "json"
    assert settings.log_level == "DEBUG"
    assert settings.cors_origins == ["http://a", "http://b"]
    assert settings.database_url == "sqlite:///./coal.db"

    with pytest.raises(ValueError):
        Settings.from_env({"COAL_STORAGE": "mongo"})


def test_reference_store_upsert_and_delete(store: Store) -> None:
    references = ReferenceStore(store)
    created = references.put("suppliers", {"name": "  North Mine ", "phone": "1"})
    assert created["id"].startswith("sup")
    assert created["name"] == "North Mine"

    replaced = references.put("suppliers", dict(created, phone="2"))
    assert replaced["phone"] == "2"
    assert replaced["created_at"] == created["created_at"]
    assert len(references.list("suppliers")) == 1

    with pytest.raises(ValidationError):
        references.put("suppliers", {"name": " "})

    references.delete("suppliers", created["id"])
    with pytest.raises(NotFoundError):
        references.delete("suppliers", created["id"])
    assert references.name_of("suppliers", created["id"]) == ""


def test_timestamps_strictly_increase() -> None:
    stamps = [utc_now_iso() for _ in range(200)]
    assert stamps == sorted(stamps)
    assert len(set(stamps)) == len(stamps)
    assert all(len(stamp) == len(stamps[0]) for stamp in stamps)
