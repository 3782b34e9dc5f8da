"""Encoding of scraped results stored in a store into JSON, JSON Lines, CSV, XML or XLSX files."""

from __future__ import annotations

import abc
import contextlib
import gzip
import io
import json
import math
import os
import zipfile
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, BinaryIO, Optional
from xml.sax.saxutils import escape as _sax_escape

from .storage import Record, RecordType, StorageError, Store

GZIP_COMPRESS = "gz"

_XML_ESCAPES = {
    '"': "&#34;",
    "'": "&#39;",
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    "\t": "&#x9;",
    "\n": "&#xA;",
    "\r": "&#xD;",
}

_JSON_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


@dataclass
class EncodeInfo:
    """What to encode and how: the payload hash, output extension and compressor."""

    payload_md5: str
    extension: str
    compressor: str = ""
    compress_level: int = 0
    field_names: list[str] = field(default_factory=list)


def _go_json(value: Any) -> str:
    """Compact JSON with sorted keys and HTML-sensitive characters escaped."""
    text = json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    for char, replacement in _JSON_ESCAPES.items():
        text = text.replace(char, replacement)
    return text


def _xml_char_ok(char: str) -> bool:
    code = ord(char)
    return (
        code in (0x09, 0x0A, 0x0D)
        or 0x20 <= code <= 0xD7FF
        or 0xE000 <= code <= 0xFFFD
        or 0x10000 <= code <= 0x10FFFF
    )


def _xml_escape(text: str) -> str:
    return "".join(
        _XML_ESCAPES.get(char, char) if _xml_char_ok(char) else "\ufffd" for char in text
    )


def _format_float_fixed(value: float) -> str:
    """Shortest decimal form of ``value`` without an exponent."""
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if math.isnan(value):
        return "NaN"
    return format(Decimal(repr(value)).normalize(), "f")


def _format_float_short(value: float) -> str:
    """Shortest form of ``value``, switching to an exponent below 1e-4 or from 1e6."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value == 0:
        return "-0" if math.copysign(1.0, value) < 0 else "0"
    sign, digit_tuple, exponent = Decimal(repr(value)).as_tuple()
    digits = list(digit_tuple)
    while len(digits) > 1 and digits[-1] == 0:
        digits.pop()
        exponent += 1
    text = "".join(str(d) for d in digits)
    nd = len(text)
    dp = nd + exponent
    exp = dp - 1
    prefix = "-" if sign else ""
    if exp < -4 or exp >= 6:
        mantissa = text[0] + ("." + text[1:] if nd > 1 else "")
        return f"{prefix}{mantissa}e{'-' if exp < 0 else '+'}{abs(exp):02d}"
    if dp <= 0:
        return f"{prefix}0.{'0' * -dp}{text}"
    if dp >= nd:
        return f"{prefix}{text}{'0' * (dp - nd)}"
    return f"{prefix}{text[:dp]}.{text[dp:]}"


def int_array_to_string(values: Iterable[int], delim: str) -> str:
    """Join integers with ``delim``."""
    return delim.join(str(int(v)) for v in values)


def float_array_to_string(values: Iterable[float], delim: str) -> str:
    """Join floats, each in its shortest form, with ``delim``."""
    return delim.join(_format_float_short(float(v)) for v in values)


def _csv_quote(text: str) -> str:
    if "," in text or "\n" in text:
        return f'"{text}"'
    return text


def _csv_list_item(value: Any) -> str:
    if isinstance(value, str):
        return value.replace('"', '""')
    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _format_float_fixed(value)
    return str(value)


class Encoder(abc.ABC):
    """Turns records into pieces of text that make up an output file."""

    @abc.abstractmethod
    def begin(self) -> str:
        """Text written before the first record."""

    @abc.abstractmethod
    def delimiter(self) -> str:
        """Text written between two records."""

    @abc.abstractmethod
    def encode_record(self, record: dict[str, Any]) -> str:
        """Text of one record."""

    @abc.abstractmethod
    def finalize(self) -> str:
        """Text written after the last record."""


@dataclass
class CSVEncoder(Encoder):
    """Encodes records as CSV lines with a header of part names."""

    part_names: list[str] = field(default_factory=list)
    comma: str = ","

    def format_field_value(self, record: dict[str, Any], field_name: str) -> str:
        """Return the CSV cell of ``field_name`` followed by a comma."""
        value = record.get(field_name)
        if isinstance(value, str):
            text = _csv_quote(value.replace('"', '""'))
        elif value is None or isinstance(value, bool):
            text = ""
        elif isinstance(value, int):
            text = str(value)
        elif isinstance(value, float):
            text = _format_float_fixed(value)
        elif isinstance(value, list):
            text = _csv_quote(";".join(_csv_list_item(item) for item in value))
        else:
            text = ""
        return f"{text},"

    def begin(self) -> str:
        return ",".join(self.part_names) + "\n"

    def delimiter(self) -> str:
        return ""

    def encode_record(self, record: dict[str, Any]) -> str:
        line = "".join(self.format_field_value(record, name) for name in self.part_names)
        return line.removesuffix(",") + "\n"

    def finalize(self) -> str:
        return ""


@dataclass
class JSONEncoder(Encoder):
    """Encodes records as a JSON array, or one JSON object per line."""

    jsonl: bool = False

    def begin(self) -> str:
        return "" if self.jsonl else "["

    def delimiter(self) -> str:
        return "\n" if self.jsonl else ","

    def encode_record(self, record: dict[str, Any]) -> str:
        return _go_json(record)

    def finalize(self) -> str:
        return "" if self.jsonl else "]"


@dataclass
class XMLEncoder(Encoder):
    """Encodes records as XML elements named after their fields inside one root."""

    def _write(self, parts: list[str], block: dict[str, Any]) -> None:
        for name, value in block.items():
            parts.append(f"<{name}>")
            if "details" in name:
                if isinstance(value, dict):
                    self._write(parts, value)
                elif isinstance(value, list):
                    for detail in value:
                        if isinstance(detail, dict):
                            self._write(parts, detail)
            elif isinstance(value, str):
                parts.append(_xml_escape(value))
            elif isinstance(value, list):
                last = len(value) - 1
                for index, item in enumerate(value):
                    if isinstance(item, str):
                        parts.append(_xml_escape(item))
                        if index < last:
                            parts.append(";")
            elif value is not None:
                parts.append(_xml_escape(str(value)))
            parts.append(f"</{name}>")

    def begin(self) -> str:
        return '<?xml version="1.0" encoding="UTF-8"?><root>'

    def delimiter(self) -> str:
        return ""

    def encode_record(self, record: dict[str, Any]) -> str:
        parts: list[str] = []
        self._write(parts, record)
        return "".join(parts)

    def finalize(self) -> str:
        return "</root>"


_NS_MAIN = "http://schemas.openxmlformats.org/spreadsheetml/2006/main"
_NS_REL = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"
_NS_PKG_REL = "http://schemas.openxmlformats.org/package/2006/relationships"
_XML_DECL = '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>\n'

_CONTENT_TYPES = (
    _XML_DECL
    + '<Types xmlns="http://schemas.openxmlformats.org/package/2006/content-types">'
    '<Default Extension="rels" '
    'ContentType="application/vnd.openxmlformats-package.relationships+xml"/>'
    '<Default Extension="xml" ContentType="application/xml"/>'
    '<Override PartName="/xl/workbook.xml" ContentType="application/'
    'vnd.openxmlformats-officedocument.spreadsheetml.sheet.main+xml"/>'
    '<Override PartName="/xl/worksheets/sheet1.xml" ContentType="application/'
    'vnd.openxmlformats-officedocument.spreadsheetml.worksheet+xml"/>'
    "</Types>"
)

_ROOT_RELS = (
    _XML_DECL
    + f'<Relationships xmlns="{_NS_PKG_REL}">'
    f'<Relationship Id="rId1" Type="{_NS_REL}/officeDocument" Target="xl/workbook.xml"/>'
    "</Relationships>"
)

_WORKBOOK = (
    _XML_DECL
    + f'<workbook xmlns="{_NS_MAIN}" xmlns:r="{_NS_REL}">'
    '<sheets><sheet name="sheet" sheetId="1" r:id="rId1"/></sheets>'
    "</workbook>"
)

_WORKBOOK_RELS = (
    _XML_DECL
    + f'<Relationships xmlns="{_NS_PKG_REL}">'
    f'<Relationship Id="rId1" Type="{_NS_REL}/worksheet" Target="worksheets/sheet1.xml"/>'
    "</Relationships>"
)


def _column_letters(index: int) -> str:
    number = index + 1
    letters = ""
    while number:
        number, rem = divmod(number - 1, 26)
        letters = chr(ord("A") + rem) + letters
    return letters


def _sheet_xml(rows: Iterable[list[str]]) -> str:
    parts = [_XML_DECL, f'<worksheet xmlns="{_NS_MAIN}"><sheetData>']
    for row_number, row in enumerate(rows, start=1):
        parts.append(f'<row r="{row_number}">')
        for col, text in enumerate(row):
            ref = f"{_column_letters(col)}{row_number}"
            parts.append(
                f'<c r="{ref}" t="inlineStr"><is><t xml:space="preserve">'
                f"{_sax_escape(text)}</t></is></c>"
            )
        parts.append("</row>")
    parts.append("</sheetData></worksheet>")
    return "".join(parts)


@dataclass
class XLSXEncoder(Encoder):
    """Encodes records as a single-sheet Excel workbook."""

    part_names: list[str] = field(default_factory=list)

    def _rows(self, records: Iterable[dict[str, Any]]) -> Iterator[list[str]]:
        yield list(self.part_names)
        cells = CSVEncoder(part_names=self.part_names)
        for record in records:
            yield [
                cells.format_field_value(record, name).removesuffix(",")
                for name in self.part_names
            ]

    def encode(self, records: Iterable[dict[str, Any]], stream: BinaryIO) -> None:
        """Write a workbook with a header row and one row per record to ``stream``."""
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as book:
            book.writestr("[Content_Types].xml", _CONTENT_TYPES)
            book.writestr("_rels/.rels", _ROOT_RELS)
            book.writestr("xl/workbook.xml", _WORKBOOK)
            book.writestr("xl/_rels/workbook.xml.rels", _WORKBOOK_RELS)
            book.writestr("xl/worksheets/sheet1.xml", _sheet_xml(self._rows(records)))
        stream.write(buffer.getvalue())

    def begin(self) -> str:
        return ""

    def delimiter(self) -> str:
        return ""

    def encode_record(self, record: dict[str, Any]) -> str:
        return ""

    def finalize(self) -> str:
        return ""


class StorageResultReader:
    """Iterates over the stored result blocks of a payload, page after page.

    Fields whose name contains ``details`` hold the hash of a details payload;
    they are replaced by that payload's blocks: one dict, or a list of them.
    """

    def __init__(self, store: Store, payload_md5: str) -> None:
        self.store = store
        self.payload_md5 = payload_md5

    def _value(self, page: int, block: int) -> Optional[dict[str, Any]]:
        key = f"{self.payload_md5}-{page}-{block}"
        try:
            raw = self.store.read(Record(key=key, type=RecordType.INTERMEDIATE))
            value = json.loads(raw)
        except (StorageError, ValueError):
            return None
        return value if isinstance(value, dict) else None

    def _expand_details(self, block: dict[str, Any]) -> None:
        for name, value in list(block.items()):
            if "details" not in name or not isinstance(value, str):
                continue
            details = list(StorageResultReader(self.store, value))
            if len(details) == 1:
                block[name] = details[0]
            elif details:
                block[name] = details

    def __iter__(self) -> Iterator[dict[str, Any]]:
        page = 0
        block = 0
        while True:
            item = self._value(page, block)
            if item is None:
                page += 1
                item = self._value(page, block)
                if item is None:
                    return
            self._expand_details(item)
            block += 1
            yield item


def result_filename(result_path: str, timestamp: str, info: EncodeInfo) -> str:
    """Return the output path ``<dir>/<md5>_<timestamp>.<ext>``."""
    ext = GZIP_COMPRESS if info.compressor == GZIP_COMPRESS else info.extension
    return os.path.join(result_path, f"{info.payload_md5}_{timestamp}.{ext}")


def make_encoder(info: EncodeInfo) -> Encoder:
    """Return the encoder for the output format named by ``info.extension``."""
    kind = info.extension.lower()
    if kind == "csv":
        return CSVEncoder(part_names=list(info.field_names), comma=",")
    if kind == "json":
        return JSONEncoder()
    if kind == "jsonl":
        return JSONEncoder(jsonl=True)
    if kind == "xml":
        return XMLEncoder()
    if kind == "xlsx":
        return XLSXEncoder(part_names=list(info.field_names))
    raise ValueError("invalid output format specified")


def _write_text(encoder: Encoder, records: Iterable[dict[str, Any]], out: BinaryIO) -> None:
    out.write(encoder.begin().encode("utf-8"))
    for index, record in enumerate(records):
        if index:
            out.write(encoder.delimiter().encode("utf-8"))
        out.write(encoder.encode_record(record).encode("utf-8"))
    out.write(encoder.finalize().encode("utf-8"))


def encode_results(store: Store, info: EncodeInfo, results_dir: str = "results") -> str:
    """Encode every stored block of ``info.payload_md5`` into a new file; return its path."""
    encoder = make_encoder(info)
    if not os.path.exists(results_dir):
        os.mkdir(results_dir, 0o700)
    timestamp = datetime.now().strftime("%Y-%m-%d_%H:%M")
    filename = result_filename(results_dir, timestamp, info)
    records = StorageResultReader(store, info.payload_md5)
    with open(filename, "wb") as raw:
        if info.compressor == GZIP_COMPRESS:
            inner_name = f"{info.payload_md5}_{timestamp}.{info.extension}"
            output: contextlib.AbstractContextManager = gzip.GzipFile(
                filename=inner_name, mode="wb", fileobj=raw, compresslevel=1
            )
        else:
            output = contextlib.nullcontext(raw)
        with output as out:
            if isinstance(encoder, XLSXEncoder):
                encoder.encode(records, out)
            else:
                _write_text(encoder, records, out)
    return filename