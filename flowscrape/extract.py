"""Extraction of field values from HTML and detection of repeating blocks."""

from __future__ import annotations

import logging
import re
from typing import Any, Optional, Sequence, Union

from bs4 import BeautifulSoup, Tag

from .payload import Field, FilterError
from .utils import rel_url

logger = logging.getLogger(__name__)

_WHITESPACE_RUN = re.compile(r"\n?\s+")


class NoMatches(Exception):
    """No element in a block matched a field; not a failure of the scrape."""

    def __init__(
        self,
        message: str = "No selectors found in current block. Thats OK.",
        partial: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.partial = partial if partial is not None else {}


class ParseError(Exception):
    """A page could not be parsed into blocks."""

    def __init__(self, message: str, url: str = "") -> None:
        super().__init__(f"{url}: {message}" if url else message)
        self.message = message
        self.url = url


def _select(node: Tag, selector: str) -> list[Tag]:
    try:
        return node.select(selector)
    except Exception:  # an unusable selector simply matches nothing
        return []


def _select_first(node: Tag, selector: str) -> Optional[Tag]:
    found = _select(node, selector)
    return found[0] if found else None


def _attr(element: Tag, name: str) -> Optional[str]:
    value = element.get(name)
    if value is None:
        return None
    if isinstance(value, list):
        return " ".join(value)
    return str(value)


def _parse_document(html: Union[str, bytes]) -> BeautifulSoup:
    """Parse ``html`` so that the document always has an html and a body element."""
    soup = BeautifulSoup(html, "html.parser")
    if soup.body is None:
        root = soup.html
        holder = root if root is not None else soup
        body = soup.new_tag("body")
        for child in list(holder.contents):
            body.append(child.extract())
        if root is None:
            root = soup.new_tag("html")
            soup.append(root)
        root.append(body)
    return soup


def _extract_value(field: Field, element: Tag, attr: str, base_url: str) -> Optional[str]:
    kind = attr.lower()
    if kind == "text":
        value = element.get_text()
        for flt in field.filters:
            try:
                value = flt.apply(value)
            except FilterError as exc:
                logger.error("%s", exc)
        return value
    if kind == "outerhtml":
        return str(element)
    if kind == "path":
        href = _attr(element, "href")
        if href is None:
            return None
        try:
            return rel_url(base_url, href)
        except ValueError:
            return None
    value = _attr(element, attr)
    if value is None:
        return None
    for flt in field.filters:
        try:
            value = flt.apply(value)
        except FilterError as exc:
            logger.error("%s", exc)
            value = ""
    if attr in ("href", "src"):
        try:
            value = rel_url(base_url, value)
        except ValueError:
            return None
    return value


def extract_field(field: Field, content: Tag, base_url: str) -> dict[str, Any]:
    """Return ``{"<name>_<attr>": value}`` for every attribute of ``field`` found in ``content``.

    A value is a string when one element matched and a list of strings otherwise.
    Raises NoMatches, carrying what was gathered so far, when an attribute matched nothing.
    """
    results: dict[str, Any] = {}
    for attr in field.attrs:
        values = [
            value
            for element in _select(content, field.selector)
            if (value := _extract_value(field, element, attr, base_url)) is not None
        ]
        if not values:
            raise NoMatches(partial=results)
        results[f"{field.name}_{attr}"] = values[0] if len(values) == 1 else values
    return results


def attr_or_data_value(element: Optional[Tag]) -> str:
    """Return a selector step for ``element``: its classes, else its id, else its tag name."""
    if element is None:
        return ""
    classes = _attr(element, "class")
    if classes is not None:
        classes = classes.strip()
        if classes:
            return "." + _WHITESPACE_RUN.sub(".", classes)
    ident = _attr(element, "id")
    if ident:
        return f"#{ident}"
    return element.name


def _is_element(node: Any) -> bool:
    return isinstance(node, Tag) and not isinstance(node, BeautifulSoup)


def _widen(doc: BeautifulSoup, ancestor: Tag, later: Sequence[Field]) -> Tag:
    """Move ``ancestor`` up until the first match of every later field lies inside it."""
    if not later:
        return ancestor
    while True:
        moved = False
        for fld in later:
            sel = _select_first(doc, fld.selector)
            if sel is None:
                continue
            chain = [p for p in sel.parents if _is_element(p)]
            if chain and not any(p is ancestor for p in chain):
                parent = ancestor.parent
                if not _is_element(parent):
                    return ancestor
                ancestor = parent
                moved = True
                break
        if not moved:
            return ancestor


def find_blocks(html: Union[str, bytes], fields: Sequence[Field]) -> list[Tag]:
    """Split a page into the repeating blocks that hold the fields' values."""
    if not fields:
        raise ParseError("No fields to parse")
    doc = _parse_document(html)
    ancestor: Optional[Tag] = None
    index = -1
    for i, fld in enumerate(fields):
        first = _select_first(doc, fld.selector)
        if first is not None and _is_element(first.parent):
            ancestor = first.parent
            index = i
            break
    if ancestor is None:
        raise ParseError("No selectors found")
    ancestor = _widen(doc, ancestor, fields[index + 1 :])

    body = doc.body
    full_path = ancestor.name
    for parent in ancestor.parents:
        if parent is body or not _is_element(parent):
            break
        full_path = f"{attr_or_data_value(parent)} > {full_path}"

    items = _select(doc, full_path)
    if not items:
        raise ParseError("No blocks found")
    return items


def next_page_link(html: Union[str, bytes], selector: str, base_url: str) -> Optional[str]:
    """Return the absolute URL of the next page, or None when there is none."""
    doc = _parse_document(html)
    paginator = Field(name="paginator", selector=selector, attrs=["href"])
    try:
        found = extract_field(paginator, doc, base_url)
    except NoMatches:
        return None
    link = found["paginator_href"]
    return link if isinstance(link, str) else link[0]