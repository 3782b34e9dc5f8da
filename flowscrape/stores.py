"""Creation of a configured store by its kind name."""

from __future__ import annotations

from .diskv import DiskvStore
from .mongo import MongoStore
from .storage import Store

_DISKV_CACHE_SIZE_MAX = 1024 * 1024


def new_store(
    kind: str,
    diskv_base_dir: str = "diskv",
    mongo_host: str = "127.0.0.1",
    item_expire_in: int = 3600,
) -> Store:
    """Return a new store of ``kind`` ("diskv" or "mongodb", any case)."""
    match kind.lower():
        case "diskv":
            return DiskvStore(diskv_base_dir, _DISKV_CACHE_SIZE_MAX, item_expire_in)
        case "mongodb":
            return MongoStore(mongo_host)
        case _:
            raise ValueError("no storage type specified")