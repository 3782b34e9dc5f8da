"""A store backed by MongoDB, one collection per record type."""

from __future__ import annotations

import json
from typing import Any, Optional

from pymongo import MongoClient

from .storage import Record, RecordType, StorageError, Store

_DATABASE = "dfk"


def _type_name(kind: Any) -> str:
    return kind.value if isinstance(kind, RecordType) else str(kind)


class MongoStore(Store):
    """Keeps records in the ``dfk`` database, keyed by a ``uid`` field."""

    def __init__(self, host: str = "127.0.0.1", client: Optional[Any] = None) -> None:
        self._client = client if client is not None else MongoClient(host, connect=False)

    def _collection(self, rec: Record):
        return self._client[_DATABASE][_type_name(rec.type)]

    def read(self, rec: Record) -> bytes:
        item = self._collection(rec).find_one({"uid": rec.key})
        if item is None:
            raise StorageError("not found")
        item = dict(item)
        if rec.type == RecordType.INTERMEDIATE:
            item.pop("_id", None)
            item.pop("uid", None)
            return json.dumps(
                item, sort_keys=True, separators=(",", ":"), ensure_ascii=False
            ).encode("utf-8")
        value = item.get(_type_name(rec.type))
        if not isinstance(value, str):
            raise StorageError("Failed to convert value to byte array")
        return value.encode("utf-8")

    def write(self, rec: Record) -> None:
        if rec.type == RecordType.INTERMEDIATE:
            try:
                document = json.loads(rec.value)
            except ValueError as exc:
                raise StorageError(str(exc)) from exc
            if not isinstance(document, dict):
                raise StorageError("intermediate value is not a JSON object")
        else:
            document = {_type_name(rec.type): rec.value.decode("utf-8", errors="replace")}
        document["uid"] = rec.key
        self._collection(rec).replace_one({"uid": rec.key}, document, upsert=True)

    def exists(self, rec: Record) -> bool:
        return self._collection(rec).find_one({"uid": rec.key}) is not None

    def expired(self, rec: Record) -> bool:
        return False

    def delete(self, rec: Record) -> None:
        result = self._collection(rec).delete_one({"uid": rec.key})
        if result.deleted_count == 0:
            raise StorageError("not found")

    def delete_all(self) -> None:
        self._client.drop_database(_DATABASE)

    def close(self) -> None:
        self._client.close()