from __future__ import annotations

from pathlib import Path
from typing import Generator

import pytest
from fastapi.testclient import TestClient

from coal_settlement.main import create_app
from coal_settlement.settings import Settings
from coal_settlement.store import JsonFileStore, SqlStore, Store


@pytest.fixture(params=["sqlite", "json"])
def store(request: pytest.FixtureRequest, tmp_path: Path) -> Generator[Store, None, None]:
    """Run the test once against each storage backend."""
    if request.param == "sqlite":
        backend: Store = SqlStore(f"sqlite:///{tmp_path / 'test_coal.db'}")
    else:
        backend = JsonFileStore()
    try:
        yield backend
    finally:
        backend.close()


@pytest.fixture()
def api_client(store: Store) -> Generator[TestClient, None, None]:
    """Provide a TestClient wired to an isolated store."""
    app = create_app(store=store, settings=Settings())
    with TestClient(app) as client:
        yield client
