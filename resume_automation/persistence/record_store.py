"""
Record Store — opaque keyed store with CRUD semantics.

    get(table, filter)            -> list of records
    upsert(table, record)         -> stored record
    update(table, filter, patch)  -> None

Every write is independent; nothing here spans tables or offers
transactions.  Two backends: an in-memory dict (tests, local runs) and
MongoDB via pymongo.  Backend errors surface as StoreFailure.
"""

from __future__ import annotations

import logging
from copy import deepcopy
from typing import Any, Optional, Protocol

from resume_automation.config import get_settings
from resume_automation.exceptions import StoreFailure

logger = logging.getLogger(__name__)

# Tables are keyed by this field when a record carries it
_KEY_FIELDS = ("session_id", "rule_type", "id")


def _record_key(record: dict[str, Any]) -> tuple[str, Any]:
    for field in _KEY_FIELDS:
        if record.get(field) not in (None, ""):
            return field, record[field]
    raise StoreFailure(f"record has none of the key fields {_KEY_FIELDS}")


def _matches(record: dict[str, Any], filter_: dict[str, Any]) -> bool:
    return all(record.get(k) == v for k, v in filter_.items())


class RecordStore(Protocol):
    def get(self, table: str, filter_: dict[str, Any]) -> list[dict[str, Any]]: ...

    def upsert(self, table: str, record: dict[str, Any]) -> dict[str, Any]: ...

    def update(self, table: str, filter_: dict[str, Any], patch: dict[str, Any]) -> None: ...


class InMemoryRecordStore:
    """Dict-backed store.  Records are deep-copied in and out."""

    def __init__(self):
        self._tables: dict[str, list[dict[str, Any]]] = {}

    def get(self, table: str, filter_: dict[str, Any]) -> list[dict[str, Any]]:
        rows = self._tables.get(table, [])
        return [deepcopy(r) for r in rows if _matches(r, filter_)]

    def upsert(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        key, value = _record_key(record)
        rows = self._tables.setdefault(table, [])
        stored = deepcopy(record)
        for idx, existing in enumerate(rows):
            if existing.get(key) == value:
                rows[idx] = stored
                break
        else:
            rows.append(stored)
        logger.debug(f"[STORE] upsert {table} {key}={value}")
        return deepcopy(stored)

    def update(self, table: str, filter_: dict[str, Any], patch: dict[str, Any]) -> None:
        for row in self._tables.get(table, []):
            if _matches(row, filter_):
                row.update(deepcopy(patch))

    def tables(self) -> list[str]:
        return list(self._tables.keys())


class MongoRecordStore:
    """
    pymongo-backed store.  The connection is opened lazily on first use
    so constructing the store never touches the network.
    """

    def __init__(self, uri: Optional[str] = None, database: Optional[str] = None):
        settings = get_settings()
        self.uri = uri or settings.mongodb_uri
        self.database = database or settings.mongodb_database
        self._client: Any = None
        self._db: Any = None

    def _get_db(self) -> Any:
        if self._db is not None:
            return self._db
        from pymongo import MongoClient
        from pymongo.errors import PyMongoError

        try:
            self._client = MongoClient(self.uri, serverSelectionTimeoutMS=5000)
            self._db = self._client[self.database]
        except PyMongoError as exc:
            raise StoreFailure(f"cannot connect to MongoDB: {exc}") from exc
        logger.info(f"Connected to MongoDB: {self.database}")
        return self._db

    def get(self, table: str, filter_: dict[str, Any]) -> list[dict[str, Any]]:
        from pymongo.errors import PyMongoError

        try:
            cursor = self._get_db()[table].find(filter_, {"_id": 0})
            return list(cursor)
        except PyMongoError as exc:
            raise StoreFailure(str(exc), table=table) from exc

    def upsert(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        from pymongo.errors import PyMongoError

        key, value = _record_key(record)
        try:
            self._get_db()[table].replace_one({key: value}, record, upsert=True)
        except PyMongoError as exc:
            raise StoreFailure(str(exc), table=table) from exc
        return {k: v for k, v in record.items() if k != "_id"}

    def update(self, table: str, filter_: dict[str, Any], patch: dict[str, Any]) -> None:
        from pymongo.errors import PyMongoError

        try:
            self._get_db()[table].update_many(filter_, {"$set": patch})
        except PyMongoError as exc:
            raise StoreFailure(str(exc), table=table) from exc

    def close(self) -> None:
        if self._client:
            self._client.close()
            logger.info("MongoDB connection closed")


_store_instance: Optional[RecordStore] = None


def get_record_store() -> RecordStore:
    """Return the process-wide record store for the configured backend."""
    global _store_instance
    if _store_instance is not None:
        return _store_instance

    backend = get_settings().store_backend.lower()
    if backend == "mongo":
        _store_instance = MongoRecordStore()
    elif backend == "memory":
        _store_instance = InMemoryRecordStore()
    else:
        raise ValueError(f"Unknown store_backend: {backend!r}")
    logger.info(f"Record store backend: {backend}")
    return _store_instance


def reset_record_store() -> None:
    """Drop the cached store (tests, reconfiguration)."""
    global _store_instance
    _store_instance = None
