"""Scrape payloads: the request to start from, the fields to extract and their filters."""

from __future__ import annotations

import dataclasses
import json
import re
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Iterator, Optional

from .utils import generate_crc32, generate_md5

_SUPPORTED_FORMATS = frozenset({"json", "jsonl", "xml", "csv"})


class PayloadError(ValueError):
    """Raised when a payload cannot be scraped as given."""


class FilterError(ValueError):
    """Raised when a filter cannot be applied to a value."""


def _lower_keys(data: dict[str, Any]) -> dict[str, Any]:
    """Key lookup is case-insensitive, as in the wire format."""
    return {str(key).lower(): value for key, value in data.items()}


def _is_separator(ch: str) -> bool:
    if ch.isascii():
        return not (ch.isalnum() or ch == "_")
    if ch.isalpha() or ch.isdigit():
        return False
    return ch.isspace()


def _title(text: str) -> str:
    """Upper-case every letter that starts a word."""
    out = []
    prev = " "
    for ch in text:
        out.append(ch.upper() if _is_separator(prev) else ch)
        prev = ch
    return "".join(out)


@dataclass
class Request:
    """The HTTP request used to download a page."""

    url: str = ""
    type: str = ""
    method: str = ""
    form_data: str = ""
    actions: str = ""
    user_token: str = ""

    @classmethod
    def _from_dict(cls, data: Optional[dict[str, Any]]) -> "Request":
        raw = _lower_keys(data or {})
        return cls(
            url=raw.get("url") or "",
            type=raw.get("type") or "",
            method=raw.get("method") or "",
            form_data=raw.get("formdata") or "",
            actions=raw.get("actions") or "",
            user_token=raw.get("usertoken") or "",
        )

    def _to_json(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "type": self.type,
            "method": self.method,
            "formData": self.form_data,
            "actions": self.actions,
            "userToken": self.user_token,
        }


@dataclass
class Filter:
    """A transformation applied to an extracted value."""

    name: str
    param: str = ""

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> "Filter":
        raw = _lower_keys(data)
        return cls(name=raw.get("name") or "", param=raw.get("param") or "")

    def _to_json(self) -> dict[str, Any]:
        return {"Name": self.name, "Param": self.param}

    def apply(self, data: str) -> str:
        """Return ``data`` transformed by this filter."""
        if data == "":
            raise FilterError("Data source is empty")
        kind = self.name.lower()
        if kind == "trim":
            return data.strip()
        if kind == "lowercase":
            return data.lower()
        if kind == "uppercase":
            return data.upper()
        if kind == "capitalize":
            return _title(data)
        if kind == "regex":
            return self._apply_regex(data)
        raise FilterError(f"Unknown filter name {self.name}")

    def _apply_regex(self, data: str) -> str:
        if not self.param:
            raise FilterError("No regex given")
        try:
            regex = re.compile(self.param)
            if regex.groups == 0:
                regex = re.compile(f"({self.param})")
        except re.error as exc:
            raise FilterError(f"Invalid regex {self.param}: {exc}") from exc
        if regex.groups > 1:
            raise FilterError("Regex filter doesn't support subexpressions")
        return "".join(f"{match.group(1) or ''};" for match in regex.finditer(data))


@dataclass
class Field:
    """A chunk of data to extract from every block of every page."""

    name: str = ""
    selector: str = ""
    attrs: list[str] = field(default_factory=list)
    details: Optional[Payload] = None
    filters: list[Filter] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Field":
        """Build a field from its decoded JSON form."""
        raw = _lower_keys(data)
        details = raw.get("details")
        return cls(
            name=raw.get("name") or "",
            selector=raw.get("selector") or "",
            attrs=list(raw.get("attrs") or []),
            details=Payload.from_dict(details) if details else None,
            filters=[Filter._from_dict(item) for item in raw.get("filters") or []],
        )

    def _to_json(self) -> dict[str, Any]:
        details = self.details if self.details is not None else Payload()
        return {
            "name": self.name,
            "selector": self.selector,
            "attrs": list(self.attrs),
            "details": details._to_json(),
            "filters": [flt._to_json() for flt in self.filters],
        }


@dataclass
class Payload:
    """The rules a scraper follows: where to start, what to extract, how to output."""

    name: str = ""
    request: Request = field(default_factory=Request)
    fields: list[Field] = field(default_factory=list)
    payload_md5: str = ""
    format: str = ""
    compressor: str = ""
    paginator: str = ""
    paginate_results: Optional[bool] = None
    fetch_delay: Optional[timedelta] = None
    randomize_fetch_delay: Optional[bool] = None
    retry_times: int = 0
    is_path: bool = False
    block_counter: Optional[Iterator[int]] = field(default=None, repr=False, compare=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Payload":
        """Build a payload from its decoded JSON form."""
        raw = _lower_keys(data)
        delay_ns = raw.get("fetchdelay")
        return cls(
            name=raw.get("name") or "",
            request=Request._from_dict(raw.get("request")),
            fields=[Field.from_dict(item) for item in raw.get("fields") or []],
            payload_md5=raw.get("payloadmd5") or "",
            format=raw.get("format") or "",
            compressor=raw.get("compressor") or "",
            paginator=raw.get("paginator") or "",
            paginate_results=raw.get("paginateresults"),
            fetch_delay=None if delay_ns is None else timedelta(microseconds=delay_ns / 1000),
            randomize_fetch_delay=raw.get("randomizefetchdelay"),
            retry_times=int(raw.get("retrytimes") or 0),
            is_path=bool(raw.get("path") or False),
        )

    def _to_json(self) -> dict[str, Any]:
        delay = None
        if self.fetch_delay is not None:
            delay = (self.fetch_delay // timedelta(microseconds=1)) * 1000
        return {
            "name": self.name,
            "request": self.request._to_json(),
            "fields": [fld._to_json() for fld in self.fields],
            "PayloadMD5": self.payload_md5,
            "format": self.format,
            "compressor": self.compressor,
            "paginator": self.paginator,
            "paginateResults": self.paginate_results,
            "FetchDelay": delay,
            "RandomizeFetchDelay": self.randomize_fetch_delay,
            "retryTimes": self.retry_times,
            "path": self.is_path,
        }

    def init_uid(self) -> None:
        """Set ``payload_md5`` to a hash of everything but the format and fetcher type."""
        clone = dataclasses.replace(
            self,
            format="",
            payload_md5="",
            request=dataclasses.replace(self.request, type=""),
        )
        data = json.dumps(clone._to_json(), separators=(",", ":"), ensure_ascii=False)
        self.payload_md5 = generate_crc32(generate_md5(data.encode("utf-8"))).decode("ascii")

    def field_names(self) -> list[str]:
        """Return the output column names, ``<field>_<attr>``, in payload order."""
        names: list[str] = []
        for fld in self.fields:
            if self.is_path:
                if fld.details is not None and fld.details.fields:
                    return fld.details.field_names()
                continue
            names.extend(f"{fld.name}_{attr}" for attr in fld.attrs)
        return names

    def validate(self) -> None:
        """Raise PayloadError unless the payload can be scraped."""
        if not self.fields:
            raise PayloadError("Bad payload: No fields to scrape")
        for index, fld in enumerate(self.fields):
            if not fld.name:
                raise PayloadError(f"Bad payload: Field {index} has no name")
            if not fld.selector:
                raise PayloadError(f"Bad payload: Field {index} has no css selector")
            if not fld.attrs:
                raise PayloadError(f"Bad payload: Field {index} has no attributes to extract")
        if self.format.lower() not in _SUPPORTED_FORMATS:
            raise PayloadError(f"Bad payload: Unsupported output format {self.format}")