import itertools

import pytest

from flowscrape.mongo import MongoStore
from flowscrape.storage import Record, RecordType, StorageError

TEST_VALUE = b"testValue"


class _DeleteResult:
    def __init__(self, count):
        self.deleted_count = count


class _FakeCollection:
    _ids = itertools.count(1)

    def __init__(self):
        self.docs = []

    def _match(self, query):
        for doc in self.docs:
            if all(doc.get(k) == v for k, v in query.items()):
                return doc
        return None

    def find_one(self, query):
        doc = self._match(query)
        return dict(doc) if doc is not None else None

    def replace_one(self, query, document, upsert=False):
        existing = self._match(query)
        new_doc = dict(document)
        if existing is not None:
            new_doc["_id"] = existing["_id"]
            self.docs[self.docs.index(existing)] = new_doc
        elif upsert:
            new_doc["_id"] = next(self._ids)
            self.docs.append(new_doc)

    def delete_one(self, query):
        doc = self._match(query)
        if doc is None:
            return _DeleteResult(0)
        self.docs.remove(doc)
        return _DeleteResult(1)


class _FakeDatabase(dict):
    def __missing__(self, name):
        self[name] = _FakeCollection()
        return self[name]


class _FakeClient:
    def __init__(self):
        self.databases = {}
        self.closed = False

    def __getitem__(self, name):
        return self.databases.setdefault(name, _FakeDatabase())

    def drop_database(self, name):
        self.databases.pop(name, None)

    def close(self):
        self.closed = True


RECS = [
    Record(type=RecordType.CACHE, key="testKey", value=TEST_VALUE, exp_time=100),
    Record(type=RecordType.COOKIES, key="testKey", value=TEST_VALUE, exp_time=100),
    Record(
        type=RecordType.INTERMEDIATE,
        key="PayloadHash-0-0",
        value=b'{"selector1_text":"Selector1_value"}',
        exp_time=100,
    ),
]


@pytest.fixture
def client():
    return _FakeClient()


@pytest.fixture
def store(client):
    m = MongoStore("127.0.0.1", client)
    m.delete_all()
    for rec in RECS:
        m.write(rec)
    return m


def test_exists_and_read(store):
    rec = RECS[0]
    assert store.exists(rec) is True
    assert store.read(Record(type=rec.type, key=rec.key)) == TEST_VALUE


def test_read_every_record(store):
    values = [store.read(r) for r in RECS]
    assert values[:2] == [TEST_VALUE, TEST_VALUE]
    assert values[2] == b'{"selector1_text":"Selector1_value"}'


def test_collections_per_type(client):
    m = MongoStore("127.0.0.1", client)
    m.write(Record(type=RecordType.CACHE, key="k1", value=TEST_VALUE))
    m.write(Record(type=RecordType.COOKIES, key="k2", value=b"Cookie=Value"))
    assert set(client["dfk"]) == {"Cache", "Cookies"}
    assert client["dfk"]["Cache"].docs[0]["Cache"] == "testValue"
    assert m.exists(Record(type=RecordType.COOKIES, key="k2")) is True
    assert m.exists(Record(type=RecordType.CACHE, key="k2")) is False


def test_write_empty_key(store):
    store.write(Record(type=RecordType.CACHE, key="", value=TEST_VALUE))
    assert store.read(Record(type=RecordType.CACHE, key="")) == TEST_VALUE


def test_write_invalid_intermediate(store):
    with pytest.raises(StorageError):
        store.write(
            Record(type=RecordType.INTERMEDIATE, key="PayloadHash-0-0", value=b"InvalidJSON")
        )


def test_upsert_replaces(store):
    store.write(Record(type=RecordType.CACHE, key="testKey", value=b"other"))
    assert store.read(Record(type=RecordType.CACHE, key="testKey")) == b"other"


def test_read_nonexistent(store):
    with pytest.raises(StorageError):
        store.read(Record(type=RecordType.INTERMEDIATE, key="NonExistentPayload-100-100"))


def test_expired_is_false(store):
    assert store.expired(RECS[0]) is False


def test_delete(store):
    for rec in RECS:
        store.delete(rec)
    assert not any(store.exists(r) for r in RECS)
    with pytest.raises(StorageError):
        store.delete(Record(type=RecordType.INTERMEDIATE, key="Payload-100-100"))


def test_delete_all_and_close(client, store):
    store.write(Record(type=RecordType.COOKIES, key="cookie1", value=b"Cookie=Value"))
    store.delete_all()
    assert store.exists(RECS[0]) is False
    assert store.exists(Record(type=RecordType.COOKIES, key="cookie1")) is False
    store.close()
    assert client.closed is True