"""A flat, file-per-key store on the local disk with an in-memory cache."""

from __future__ import annotations

import logging
import os
import shutil
import time
from collections import OrderedDict

from .storage import Record, StorageError, Store

logger = logging.getLogger(__name__)

_DEFAULT_BASE_DIR = "diskv"


class DiskvStore(Store):
    """Keeps each record in a file named after its key inside ``base_dir``."""

    def __init__(
        self,
        base_dir: str = _DEFAULT_BASE_DIR,
        cache_size_max: int = 1024 * 1024,
        expire_in: int = 3600,
    ) -> None:
        self.base_dir = base_dir or _DEFAULT_BASE_DIR
        self.cache_size_max = cache_size_max
        self.expire_in = expire_in
        self._cache: OrderedDict[str, bytes] = OrderedDict()
        self._cache_size = 0

    def _path(self, key: str) -> str:
        if not key:
            raise StorageError("empty key")
        return os.path.join(self.base_dir, key)

    def _cache_put(self, key: str, value: bytes) -> None:
        self._cache_drop(key)
        size = len(value)
        if size > self.cache_size_max:
            return
        while self._cache and self._cache_size + size > self.cache_size_max:
            _, evicted = self._cache.popitem(last=False)
            self._cache_size -= len(evicted)
        self._cache[key] = value
        self._cache_size += size

    def _cache_drop(self, key: str) -> None:
        value = self._cache.pop(key, None)
        if value is not None:
            self._cache_size -= len(value)

    def read(self, rec: Record) -> bytes:
        path = self._path(rec.key)
        cached = self._cache.get(rec.key)
        if cached is not None:
            self._cache.move_to_end(rec.key)
            return cached
        try:
            with open(path, "rb") as fh:
                value = fh.read()
        except OSError as exc:
            raise StorageError(str(exc)) from exc
        self._cache_put(rec.key, value)
        return value

    def write(self, rec: Record) -> None:
        path = self._path(rec.key)
        self._cache_drop(rec.key)
        try:
            os.makedirs(self.base_dir, exist_ok=True)
            with open(path, "wb") as fh:
                fh.write(rec.value)
        except OSError as exc:
            raise StorageError(str(exc)) from exc

    def exists(self, rec: Record) -> bool:
        if not rec.key:
            return False
        if rec.key in self._cache:
            return True
        return os.path.isfile(os.path.join(self.base_dir, rec.key))

    def expired(self, rec: Record) -> bool:
        path = os.path.join(self.base_dir, rec.key)
        try:
            mtime = os.stat(path).st_mtime
        except OSError as exc:
            logger.error("%s", exc)
            return True
        return mtime + self.expire_in - time.time() < 0

    def delete(self, rec: Record) -> None:
        path = self._path(rec.key)
        self._cache_drop(rec.key)
        try:
            os.remove(path)
        except OSError as exc:
            raise StorageError(str(exc)) from exc

    def delete_all(self) -> None:
        self._cache.clear()
        self._cache_size = 0
        if os.path.exists(self.base_dir):
            try:
                shutil.rmtree(self.base_dir)
            except OSError as exc:
                raise StorageError(str(exc)) from exc

    def close(self) -> None:
        """Nothing to release: every write already reached the disk."""