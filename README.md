# flowscrape

flowscrape extracts structured data from web pages. A payload describes what
to collect: the page to start from, the fields to pull out of it with CSS
selectors, an optional paginator and optional detail pages to follow. The
results are stored block by block in a key/value store. They are then written
out as JSON, JSON Lines, CSV, XML or XLSX, with optional gzip compression.

## Installing

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Payloads

```python
from flowscrape.payload import Payload

payload = Payload.from_dict({
    "name": "persons",
    "request": {"url": "http://localhost:12345/persons/page-0"},
    "fields": [
        {"name": "Names", "selector": "#cards a", "attrs": ["text", "href"]},
        {"name": "Images", "selector": ".card-img-top", "attrs": ["src", "alt"]},
    ],
    "paginator": ".page-item:last-child .page-link",
    "format": "json",
})
payload.validate()          # raises PayloadError on a bad payload
payload.init_uid()          # fills payload.payload_md5
print(payload.field_names())
```

`Payload.validate` checks three things. There must be at least one field.
Every field must have a name, a selector and at least one attribute. The
format must be one of `json`, `jsonl`, `xml` or `csv`, in any case.

Each field produces one column per attribute, named `<field>_<attr>`. The
attributes are read as follows:

- `text` takes the element text.
- `outerHtml` takes the element markup.
- `path` marks a link that is only followed.
- Any other name is read as an HTML attribute. `href` and `src` are resolved
  against the request URL.

Text and attribute values can be passed through filters: `trim`, `lowercase`,
`uppercase`, `capitalize` and `regex`. A `regex` filter takes one capturing
group or none. It returns every match followed by `;`. A failing filter
raises `FilterError`.

```python
from flowscrape.payload import Filter

Filter("regex", r"\d").apply("1234")   # "1;2;3;4;"
```

The lower-level helpers live in `flowscrape.extract`:

- `extract_field` returns the values of one field within a block.
- `find_blocks` splits a page into the repeating blocks that hold the fields.
- `next_page_link` returns the URL found by a paginator selector.

## Storage

Intermediate results go to a store. `new_store` returns one by kind name:

- `"diskv"` gives a `DiskvStore`: one file per key in a directory, with an
  in-memory cache.
- `"mongodb"` gives a `MongoStore`: the `dfk` database, one collection per
  record type. It needs a reachable MongoDB server.

Any other kind raises `ValueError`. Stores are context managers that close
themselves.

```python
from flowscrape.stores import new_store

with new_store("diskv", diskv_base_dir="data", item_expire_in=3600) as store:
    ...
```

Records are `flowscrape.storage.Record` objects with a key, a value in bytes
and a `RecordType`. Failed reads, writes and deletes raise `StorageError`.

## Scraping

A `Task` runs a payload in five steps: fetching, pagination, block detection,
extraction and storage. It then encodes the results into a file.

```python
from flowscrape.task import Task, TaskSettings

task = Task(store, fetcher, TaskSettings(results_dir="results", max_pages=2))
summary = task.parse(payload)
print(summary["Output file"])
```

`fetcher` is any callable that takes a `flowscrape.payload.Request` and
returns the page HTML. The summary has these keys:

- `Task ID`
- `Requests`
- `Responses`
- `Output file`
- `Took`

If nothing is found with the requested fetcher type, the task retries once
with the `chrome` type. If that also finds nothing, it raises `ParseError`.

`TaskSettings` has these options:

- `max_pages` is the number of pages followed through a paginator. It
  defaults to 1.
- `fetch_delay` and `ignore_fetch_delay` control pacing. Unless the delay is
  ignored, each fetch waits `fetch_delay` seconds plus a random 0.5–1.5 s.
- `results_dir` is the output directory.

## Encoding

`flowscrape.encoders.encode_results(store, info, results_dir)` reads stored
blocks back. Blocks from detail pages are merged into their parent blocks.
The blocks are written with the encoder chosen by `make_encoder`:
`CSVEncoder`, `JSONEncoder`, `XMLEncoder` or `XLSXEncoder`.

File names are `<payload md5>_<timestamp>.<ext>`. The extension is `.gz`
when the compressor is `gz`.

XLSX output is available through `encode_results` and `XLSXEncoder`. It
cannot be requested through `Task.parse`, because `Payload.validate` does
not accept it.

## What it does not do

- flowscrape ships no page fetcher. There is no HTTP client and no headless
  browser. You supply the `fetcher` callable yourself. The request `type`,
  such as `chrome`, is only passed on to it.
- `robots.txt` is not consulted.
- There is no command-line program and no HTTP service. The package is used
  as a library.