"""A scrape task: fetch pages, split them into blocks, extract fields, store and encode results."""

from __future__ import annotations

import dataclasses
import itertools
import json
import logging
import time
from collections import deque
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any, Optional, Union

from bs4 import Tag

from .encoders import EncodeInfo, encode_results
from .extract import NoMatches, ParseError, extract_field, find_blocks, next_page_link
from .payload import Payload, Request
from .storage import Record, RecordType, StorageError, Store
from .utils import random_int

logger = logging.getLogger(__name__)

EMPTY_RESULTS = "Empty results"

Fetcher = Callable[[Request], Union[str, bytes]]


@dataclass
class TaskSettings:
    """Limits and pacing of a scrape task."""

    max_pages: int = 1
    fetch_delay: float = 0.0
    ignore_fetch_delay: bool = False
    results_dir: str = "results"


class Task:
    """Scrapes a payload, following paginators and details links, and encodes the results."""

    def __init__(
        self,
        store: Store,
        fetcher: Fetcher,
        settings: Optional[TaskSettings] = None,
    ) -> None:
        self.store = store
        self.fetcher = fetcher
        self.settings = settings if settings is not None else TaskSettings()
        self.request_count = 0
        self.response_count = 0
        self.is_parsed = False
        self.root_uid = ""
        self.template_request: Optional[Request] = None
        self.pending: deque[Payload] = deque()

    def parse(self, payload: Payload) -> dict[str, Any]:
        """Scrape ``payload`` and encode its results to a file; return a summary of the run.

        When nothing is found and the fetcher type was not ``chrome``, the scrape
        is repeated with the ``chrome`` fetcher. Raises PayloadError for a bad
        payload and ParseError when no results were scraped at all.
        """
        begin = time.monotonic()
        payload.validate()
        payload = dataclasses.replace(payload, request=dataclasses.replace(payload.request))

        self._run(payload)
        if not self.is_parsed and payload.request.type != "chrome":
            payload.request.type = "chrome"
            self._run(payload)
        if not self.is_parsed:
            raise ParseError(EMPTY_RESULTS, payload.request.url)

        info = EncodeInfo(
            payload_md5=payload.payload_md5,
            extension=payload.format,
            compressor=payload.compressor.lower(),
            field_names=payload.field_names(),
        )
        output = encode_results(self.store, info, self.settings.results_dir)
        return {
            "Task ID": payload.payload_md5,
            "Requests": self.request_count,
            "Responses": self.response_count,
            "Output file": output,
            "Took": f"{time.monotonic() - begin:.6f}s",
        }

    def _run(self, payload: Payload) -> None:
        payload.init_uid()
        self.root_uid = payload.payload_md5
        self.template_request = dataclasses.replace(payload.request)
        self.pending.append(payload)
        while self.pending:
            self.scrape_payload(self.pending.popleft())

    def scrape_payload(self, payload: Payload) -> int:
        """Scrape one payload, queue its details payloads in ``pending``; return records stored."""
        if not payload.fields:
            raise ParseError("No fields to parse", payload.request.url)
        template = self.template_request or payload.request
        counter = payload.block_counter
        zero_page = counter is not None
        if counter is None:
            counter = itertools.count()

        stored = 0
        for key, url, html in self._pages(payload, template):
            try:
                blocks = find_blocks(html, payload.fields)
            except ParseError as exc:
                logger.error("%s", ParseError(exc.message, url))
                continue
            if zero_page:
                parts = key.split("-")
                if len(parts) != 2:
                    logger.error("Invalid key: %s", key)
                    continue
                key = f"{parts[0]}-0"
            for block in blocks:
                result = self._parse_block(block, payload, counter, template)
                if not result or payload.is_path:
                    continue
                self.is_parsed = True
                value = json.dumps(
                    result, sort_keys=True, separators=(",", ":"), ensure_ascii=False
                ).encode("utf-8")
                record = Record(
                    key=f"{key}-{next(counter)}",
                    value=value,
                    type=RecordType.INTERMEDIATE,
                )
                try:
                    self.store.write(record)
                except StorageError as exc:
                    logger.error("%s", exc)
                    continue
                stored += 1
        return stored

    def _fetch(self, request: Request, template: Request) -> Optional[Union[str, bytes]]:
        if not self.settings.ignore_fetch_delay:
            time.sleep(self.settings.fetch_delay + random_int(500, 1500) / 1000)
        self.request_count += 1
        request = dataclasses.replace(request, type=template.type)
        try:
            content = self.fetcher(request)
        except Exception as exc:  # any fetch failure ends this payload's pages
            logger.error("%s", ParseError(str(exc), request.url))
            return None
        self.response_count += 1
        return content

    def _pages(
        self, payload: Payload, template: Request
    ) -> Iterator[tuple[str, str, Union[str, bytes]]]:
        """Yield ``(key, url, html)`` for the start page and every following page."""
        request = payload.request
        page = 0
        while True:
            html = self._fetch(request, template)
            if html is None:
                return
            yield f"{payload.payload_md5}-{page}", request.url, html
            if not payload.paginator:
                return
            link = next_page_link(html, payload.paginator, template.url)
            max_pages = self.settings.max_pages
            if link is None or max_pages <= 0 or page >= max_pages - 1:
                return
            page += 1
            request = Request(url=link)

    def _parse_block(
        self,
        block: Tag,
        payload: Payload,
        counter: Iterator[int],
        template: Request,
    ) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for fld in payload.fields:
            if payload.is_path and (not fld.attrs or fld.attrs[0].lower() != "path"):
                continue
            try:
                result.update(extract_field(fld, block, template.url))
            except NoMatches as exc:
                result.update(exc.partial)
                continue
            details = fld.details
            if details is None or not details.fields:
                continue
            link = result.get(f"{fld.name}_{'path' if payload.is_path else 'href'}")
            urls = [link] if isinstance(link, str) else list(link or [])
            details_md5 = details.payload_md5
            for url in urls:
                child = dataclasses.replace(
                    details, request=dataclasses.replace(details.request, url=url)
                )
                if payload.is_path:
                    child.payload_md5 = self.root_uid
                    child.block_counter = counter
                else:
                    child.init_uid()
                details_md5 = child.payload_md5
                self.pending.append(child)
            if not payload.is_path:
                result[f"{fld.name}_details"] = details_md5
        return result