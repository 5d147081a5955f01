"""Persistence backends behind one keyed-CRUD interface.

Both backends store plain dict records keyed by ``id`` in named tables and
offer :meth:`Store.transaction` to group writes:

* :class:`SqlStore` wraps a SQLAlchemy session; a transaction is a real
  database transaction and rolls back completely on failure.
* :class:`JsonFileStore` keeps every table in one JSON document. A transaction
  restores the in-memory snapshot on failure and rewrites the whole file on
  success. Writers are serialised only within one process: two processes
  sharing the same file overwrite each other (last write wins). Use the SQL
  backend when more than one process writes.
"""

from __future__ import annotations

import abc
import copy
import json
import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from coal_settlement.database import init_db, make_engine, make_session_factory
from coal_settlement.exceptions import StorageError
from coal_settlement.models import TABLES
from coal_settlement.settings import Settings

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


def _check_table(table: str) -> None:
    if table not in TABLES:
        raise ValueError(f"Unknown table '{table}'")


class Store(abc.ABC):
    backend = "abstract"

    @abc.abstractmethod
    def get(self, table: str, record_id: str) -> Optional[Record]:
        """Return a copy of one record, or ``None``."""

    @abc.abstractmethod
    def list(self, table: str, **filters: Any) -> List[Record]:
        """Return copies of every record whose fields equal *filters*."""

    @abc.abstractmethod
    def insert(self, table: str, record: Record) -> Record:
        ...

    @abc.abstractmethod
    def update(self, table: str, record_id: str, changes: Record) -> Optional[Record]:
        """Apply *changes* and return the updated record, or ``None`` if absent."""

    @abc.abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        ...

    @abc.abstractmethod
    def delete_where(self, table: str, **filters: Any) -> int:
        ...

    @abc.abstractmethod
    def transaction(self):
        """Context manager making every write inside it all-or-nothing.

        Nested calls join the outermost transaction.
        """

    def close(self) -> None:
        pass


class SqlStore(Store):
    backend = "sqlite"

    def __init__(self, url: str) -> None:
        self.url = url
        self.engine = make_engine(url)
        init_db(self.engine)
        self._session_factory = make_session_factory(self.engine)
        # One active session per thread; FastAPI runs sync routes in a pool.
        self._local = threading.local()

    @contextmanager
    def transaction(self) -> Iterator["SqlStore"]:
        if getattr(self._local, "session", None) is not None:
            yield self
            return

        session = self._session_factory()
        self._local.session = session
        try:
            yield self
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise StorageError(f"Database transaction failed: {exc}") from exc
        except Exception:
            session.rollback()
            raise
        finally:
            self._local.session = None
            session.close()

    @contextmanager
    def _session(self) -> Iterator[Session]:
        with self.transaction():
            yield self._local.session

    @staticmethod
    def _to_dict(obj: Any) -> Record:
        return {
            column.key: copy.deepcopy(getattr(obj, column.key))
            for column in obj.__table__.columns
        }

    def get(self, table: str, record_id: str) -> Optional[Record]:
        _check_table(table)
        with self._session() as session:
            obj = session.get(TABLES[table], record_id)
            return self._to_dict(obj) if obj is not None else None

    def list(self, table: str, **filters: Any) -> List[Record]:
        _check_table(table)
        with self._session() as session:
            rows = session.query(TABLES[table]).filter_by(**filters).all()
            return [self._to_dict(row) for row in rows]

    def insert(self, table: str, record: Record) -> Record:
        _check_table(table)
        with self._session() as session:
            obj = TABLES[table](**copy.deepcopy(record))
            session.add(obj)
            session.flush()
            return self._to_dict(obj)

    def update(self, table: str, record_id: str, changes: Record) -> Optional[Record]:
        _check_table(table)
        with self._session() as session:
            obj = session.get(TABLES[table], record_id)
            if obj is None:
                return None
            for key, value in changes.items():
                setattr(obj, key, copy.deepcopy(value))
            session.flush()
            return self._to_dict(obj)

    def delete(self, table: str, record_id: str) -> bool:
        _check_table(table)
        with self._session() as session:
            obj = session.get(TABLES[table], record_id)
            if obj is None:
                return False
            session.delete(obj)
            session.flush()
            return True

    def delete_where(self, table: str, **filters: Any) -> int:
        _check_table(table)
        with self._session() as session:
            rows = session.query(TABLES[table]).filter_by(**filters).all()
            for row in rows:
                session.delete(row)
            session.flush()
            return len(rows)

    def close(self) -> None:
        self.engine.dispose()


class JsonFileStore(Store):
    backend = "json"

    def __init__(self, path: Union[str, Path, None] = None) -> None:
        # ``None`` keeps everything in memory (used by tests).
        self.path = Path(path) if path else None
        self._lock = threading.RLock()
        self._depth = 0
        self._data = self._load()

    def _load(self) -> Dict[str, List[Record]]:
        data: Dict[str, List[Record]] = {table: [] for table in TABLES}
        if self.path is None or not self.path.exists():
            return data
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                stored = json.load(handle)
        except (OSError, ValueError) as exc:
            raise StorageError(f"Cannot read JSON store {self.path}: {exc}") from exc
        for table, rows in stored.items():
            if table in data:
                data[table] = list(rows)
        return data

    def _flush(self) -> None:
        if self.path is None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            with tmp_path.open("w", encoding="utf-8") as handle:
                json.dump(self._data, handle, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise StorageError(f"Cannot write JSON store {self.path}: {exc}") from exc

    @contextmanager
    def transaction(self) -> Iterator["JsonFileStore"]:
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self
                finally:
                    self._depth -= 1
                return

            snapshot = copy.deepcopy(self._data)
            self._depth = 1
            try:
                yield self
                self._flush()
            except Exception:
                self._data = snapshot
                raise
            finally:
                self._depth = 0

    @staticmethod
    def _matches(row: Record, filters: Dict[str, Any]) -> bool:
        return all(row.get(key) == value for key, value in filters.items())

    def get(self, table: str, record_id: str) -> Optional[Record]:
        _check_table(table)
        with self._lock:
            for row in self._data[table]:
                if row.get("id") == record_id:
                    return copy.deepcopy(row)
        return None

    def list(self, table: str, **filters: Any) -> List[Record]:
        _check_table(table)
        with self._lock:
            return [copy.deepcopy(row) for row in self._data[table] if self._matches(row, filters)]

    def insert(self, table: str, record: Record) -> Record:
        _check_table(table)
        with self.transaction():
            self._data[table].append(copy.deepcopy(record))
        return copy.deepcopy(record)

    def update(self, table: str, record_id: str, changes: Record) -> Optional[Record]:
        _check_table(table)
        with self.transaction():
            for row in self._data[table]:
                if row.get("id") == record_id:
                    row.update(copy.deepcopy(changes))
                    return copy.deepcopy(row)
        return None

    def delete(self, table: str, record_id: str) -> bool:
        _check_table(table)
        with self.transaction():
            rows = self._data[table]
            kept = [row for row in rows if row.get("id") != record_id]
            self._data[table] = kept
            return len(kept) != len(rows)

    def delete_where(self, table: str, **filters: Any) -> int:
        _check_table(table)
        with self.transaction():
            rows = self._data[table]
            kept = [row for row in rows if not self._matches(row, filters)]
            self._data[table] = kept
            return len(rows) - len(kept)


def build_store(settings: Settings) -> Store:
    if settings.storage_backend == "json":
        logger.info("Using JSON file storage: %s", settings.json_store_path)
        return JsonFileStore(settings.json_store_path)
    logger.info("Using SQL storage: %s", settings.database_url)
    return SqlStore(settings.database_url)


__all__ = ["Store", "SqlStore", "JsonFileStore", "build_store", "Record"]
