"""Hashing, URL and random-number helpers shared by the scraper."""

from __future__ import annotations

import hashlib
import random
import string
import zlib
from collections.abc import Iterable
from urllib.parse import urljoin

_HEX_DIGITS = frozenset(string.hexdigits)


def generate_md5(data: bytes) -> bytes:
    """Return the raw MD5 digest of ``data``."""
    return hashlib.md5(data).digest()


def generate_crc32(data: bytes) -> bytes:
    """Return the IEEE CRC32 of ``data`` as lower-case hex, without zero padding."""
    return format(zlib.crc32(data) & 0xFFFFFFFF, "x").encode("ascii")


def _check_url(raw: str) -> None:
    """Raise ValueError when ``raw`` is not a well-formed URL reference."""
    for char in raw:
        if ord(char) < 0x20 or ord(char) == 0x7F:
            raise ValueError(f"invalid control character in URL: {raw!r}")
    if raw.startswith(":"):
        raise ValueError(f"missing protocol scheme: {raw!r}")
    pos = raw.find("%")
    while pos != -1:
        escape = raw[pos + 1 : pos + 3]
        if len(escape) < 2 or not all(c in _HEX_DIGITS for c in escape):
            raise ValueError(f"invalid URL escape {raw[pos:pos + 3]!r}")
        pos = raw.find("%", pos + 3)


def rel_url(base: str, rel: str) -> str:
    """Resolve ``rel`` against ``base`` and return the absolute URL."""
    _check_url(base)
    _check_url(rel)
    return urljoin(base, rel)


def random_int(low: int, high: int) -> int:
    """Return a random integer in the half-open range ``[low, high)``."""
    return random.randrange(low, high)


def random_float() -> float:
    """Return a random float in the half-open range ``[0.5, 1.5)``."""
    return random.random() + 0.5


def array_contains(items: Iterable[str], x: str) -> bool:
    """Tell whether ``x`` is one of ``items``."""
    return x in items