"""The storage interface for fetched pages, cookies and intermediate results."""

from __future__ import annotations

import abc
from dataclasses import dataclass
from enum import Enum
from typing import Union


class RecordType(str, Enum):
    """Kinds of records kept in a store."""

    CACHE = "Cache"
    COOKIES = "Cookies"
    INTERMEDIATE = "Intermediate"

    def __str__(self) -> str:
        return self.value


@dataclass
class Record:
    """A key/value pair of a given type with an optional expiration time."""

    key: str
    value: bytes = b""
    type: Union[RecordType, str] = ""
    exp_time: int = 0


class StorageError(Exception):
    """Raised when a store cannot read, write or delete a record."""


class Store(abc.ABC):
    """A key/value store; usable as a context manager that closes it."""

    @abc.abstractmethod
    def read(self, rec: Record) -> bytes:
        """Return the value stored under ``rec.key``."""

    @abc.abstractmethod
    def write(self, rec: Record) -> None:
        """Store ``rec.value`` under ``rec.key``."""

    @abc.abstractmethod
    def exists(self, rec: Record) -> bool:
        """Tell whether a record with ``rec.key`` is stored."""

    @abc.abstractmethod
    def expired(self, rec: Record) -> bool:
        """Tell whether the stored record has outlived its lifetime."""

    @abc.abstractmethod
    def delete(self, rec: Record) -> None:
        """Remove the record stored under ``rec.key``."""

    @abc.abstractmethod
    def delete_all(self) -> None:
        """Remove every record from the store."""

    @abc.abstractmethod
    def close(self) -> None:
        """Release the connection to the store."""

    def __enter__(self) -> "Store":
        return self

    def __exit__(self, *args) -> None:
        self.close()