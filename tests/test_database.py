# SPDX-License-Identifier: MIT
# Copyright (c) 2025 couchdoc contributors

"""Tests for Database operations against the in-memory transport."""

import queue
import threading
from typing import Any, Optional
from unittest.mock import MagicMock

import pytest
from pydantic import BaseModel, ConfigDict, Field

from couchdoc import (
    Database,
    DesignResourceError,
    FindQuery,
    InvalidEncodingError,
    MalformedAddressError,
    OperationFailedError,
    QueryParams,
    TransportError,
    TransportResponse,
    couch_document,
    into_option,
)


@couch_document
class Person(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default="", alias="_id")
    rev: str = Field(default="", alias="_rev")
    name: str
    age: Optional[int] = None


@couch_document(id_field="my_id", rev_field="my_rev")
class Note(BaseModel):
    my_id: str = ""
    my_rev: str = ""
    text: str


def _mock_db(*responses):
    transport = MagicMock()
    transport.send.side_effect = list(responses)
    return Database(transport, "testdb"), transport


class TestCreate:
    """Tests for Database.create."""

    def test_assigns_identity_and_revision(self, db):
        doc = {"thing": True}

        result = db.create(doc)

        assert result.id
        assert doc["_id"] == result.id
        assert doc["_rev"] == result.rev

    def test_keeps_caller_identity(self, db):
        doc = {"_id": "chosen", "thing": True}

        result = db.create(doc)

        assert result.id == "chosen"
        assert db.get("chosen")["thing"] is True

    def test_ignores_revision(self, db):
        doc = {"_id": "a", "_rev": "7-stale"}

        result = db.create(doc)

        assert result.rev.startswith("1-")
        assert doc["_rev"] == result.rev

    def test_existing_document_conflicts(self, db):
        db.create({"_id": "a"})

        with pytest.raises(OperationFailedError) as exc_info:
            db.create({"_id": "a"})
        assert exc_info.value.is_conflict()

    def test_typed_document(self, db):
        person = Person(name="Ada", age=36)

        result = db.create(person)

        assert person.id == result.id
        assert person.rev == result.rev
        stored = db.get(result.id, doc_type=Person)
        assert stored == person

    def test_custom_identity_fields(self, db):
        note = Note(text="hello")

        result = db.create(note)

        assert note.my_id == result.id
        fetched = db.get(result.id, doc_type=Note)
        assert fetched.my_id == result.id
        assert fetched.my_rev == result.rev
        assert fetched.text == "hello"

    def test_identity_with_slash(self, db):
        db.create({"_id": "a/b", "v": 1})

        assert db.get("a/b")["v"] == 1


class TestSave:
    """Tests for Database.save."""

    def test_sequential_saves_produce_new_revisions(self, db):
        doc = {"_id": "a", "v": 1}
        db.create(doc)

        first = db.save(doc)
        second = db.save(doc)

        assert first.rev != second.rev
        assert doc["_rev"] == second.rev
        assert second.rev.startswith("3-")

    def test_stale_revision_conflicts(self, db):
        doc = {"_id": "a", "v": 1}
        db.create(doc)
        stale = dict(doc)
        db.save(doc)

        with pytest.raises(OperationFailedError) as exc_info:
            db.save(stale)
        assert exc_info.value.status == 409
        assert exc_info.value.doc_id == "a"

    def test_missing_revision_conflicts(self, db):
        db.create({"_id": "a"})

        with pytest.raises(OperationFailedError) as exc_info:
            db.save({"_id": "a", "v": 2})
        assert exc_info.value.is_conflict()

    def test_requires_identity(self, db):
        with pytest.raises(MalformedAddressError):
            db.save({"v": 1})

    def test_revision_required_for_new_document(self, db, transport):
        with pytest.raises(OperationFailedError) as exc_info:
            db.save({"_id": "never-created", "v": 1})

        assert exc_info.value.is_conflict()
        assert exc_info.value.doc_id == "never-created"
        assert db.exists("never-created") is False
        assert not any(method == "PUT" for method, _ in transport.requests)

    def test_typed_document(self, db):
        person = Person(id="p1", name="Ada")
        db.create(person)
        person.age = 37

        result = db.save(person)

        assert person.rev == result.rev
        assert db.get("p1", doc_type=Person).age == 37


class TestUpsert:
    """Tests for Database.upsert."""

    def test_creates_when_absent(self, db):
        result = db.upsert({"_id": "a", "v": 1})

        assert result.rev.startswith("1-")

    def test_creates_without_identity(self, db):
        doc = {"v": 1}

        db.upsert(doc)

        assert doc["_id"]

    def test_overwrites_current_revision(self, db):
        db.create({"_id": "a", "v": 1})

        result = db.upsert({"_id": "a", "v": 2})

        assert result.rev.startswith("2-")
        assert db.get("a")["v"] == 2

    def test_typed_document(self, db):
        db.create(Person(id="p1", name="Ada"))

        person = Person(id="p1", name="Grace")
        db.upsert(person)

        assert person.rev.startswith("2-")
        assert db.get("p1", doc_type=Person).name == "Grace"


class TestRemove:
    """Tests for Database.remove."""

    def test_removes_current_revision(self, db):
        doc = {"_id": "a"}
        db.create(doc)

        assert db.remove(doc) is True
        assert not db.exists("a")

    def test_stale_revision_returns_false(self, db):
        doc = {"_id": "a"}
        db.create(doc)
        stale = dict(doc)
        db.save(doc)

        assert db.remove(stale) is False
        assert db.exists("a")

    def test_missing_identity_or_revision_returns_false(self, db):
        assert db.remove({"v": 1}) is False
        assert db.remove({"_id": "a"}) is False

    def test_missing_document_returns_false(self, db):
        assert db.remove({"_id": "ghost", "_rev": "1-x"}) is False

    def test_transport_failure_propagates(self):
        database, _ = _mock_db(TransportError("Connection failed", 503))

        with pytest.raises(TransportError):
            database.remove({"_id": "a", "_rev": "1-a"})


class TestGet:
    """Tests for Database.get and Database.exists."""

    def test_missing_document_is_not_found(self, db):
        with pytest.raises(OperationFailedError) as exc_info:
            db.get("missing")
        assert exc_info.value.is_not_found()
        assert exc_info.value.doc_id == "missing"

    def test_into_option(self, db):
        db.create({"_id": "a"})

        assert into_option(db.get, "missing") is None
        assert into_option(db.get, "a")["_id"] == "a"

    def test_type_mismatch(self, db):
        db.create({"_id": "a", "unrelated": True})

        with pytest.raises(InvalidEncodingError):
            db.get("a", doc_type=Person)

    def test_exists(self, db):
        db.create({"_id": "a"})

        assert db.exists("a") is True
        assert db.exists("b") is False

    def test_exists_raises_on_server_error(self):
        database, _ = _mock_db(TransportResponse(500))

        with pytest.raises(OperationFailedError):
            database.exists("a")

    def test_empty_identity(self, db):
        with pytest.raises(MalformedAddressError):
            db.get("")


class TestBulkDocs:
    """Tests for Database.bulk_docs and Database.bulk_upsert."""

    def test_one_outcome_per_document(self, db):
        existing = {"_id": "keep", "v": 0}
        db.create(existing)
        docs = [{"v": 1}, {"_id": "named", "v": 2}, existing]

        outcomes = db.bulk_docs(docs)

        assert len(outcomes) == 3
        assert all(outcome.ok for outcome in outcomes)
        assert [outcome.index for outcome in outcomes] == [0, 1, 2]
        assert docs[0]["_id"] == outcomes[0].id
        assert docs[1]["_id"] == "named"
        assert existing["_id"] == "keep"
        assert existing["_rev"].startswith("2-")

    def test_duplicate_identity_conflicts(self, db):
        docs = [{"_id": "first", "thing": True}, {"_id": "first", "thing": False}]

        outcomes = db.bulk_docs(docs)

        assert outcomes[0].ok
        assert not outcomes[1].ok
        assert outcomes[1].error.status == 409
        assert docs[0]["_rev"] == outcomes[0].result.rev
        assert "_rev" not in docs[1]
        assert db.get("first")["thing"] is True

    def test_typed_documents(self, db):
        people = [Person(name="Ada"), Person(name="Grace")]

        outcomes = db.bulk_docs(people)

        assert [p.id for p in people] == [o.id for o in outcomes]
        assert all(p.rev for p in people)

    def test_empty_submission_sends_nothing(self):
        database, transport = _mock_db()

        assert database.bulk_docs([]) == []
        transport.send.assert_not_called()

    def test_rejected_request(self):
        database, _ = _mock_db(TransportResponse(400, {"error": "bad_request", "reason": "bad docs"}))

        with pytest.raises(OperationFailedError, match="bad docs"):
            database.bulk_docs([{"v": 1}])

    def test_bulk_upsert_replaces_revisions(self, db):
        db.create({"_id": "a", "v": 1})
        docs = [{"_id": "a", "v": 2}, {"_id": "b", "v": 3}, {"v": 4}]

        outcomes = db.bulk_upsert(docs)

        assert all(outcome.ok for outcome in outcomes)
        assert docs[0]["_rev"].startswith("2-")
        assert db.get("a")["v"] == 2
        assert db.get("b")["v"] == 3


class TestGetAll:
    """Tests for Database.get_all and Database.get_bulk."""

    def test_filters_design_documents(self, db, transport):
        db.bulk_docs([{"_id": "a"}, {"_id": "b"}])
        transport.register_view("testdb", "views", "all", lambda doc: [(doc["_id"], None)])

        collection = db.get_all()

        assert collection.total_rows == 2
        assert [doc["_id"] for doc in collection] == ["a", "b"]

    def test_get_bulk_drops_missing(self, db):
        db.bulk_docs([{"_id": "a", "v": 1}, {"_id": "b", "v": 2}])

        collection = db.get_bulk(["b", "missing", "a"])

        assert [doc["v"] for doc in collection] == [2, 1]
        assert collection.total_rows == 2

    def test_typed(self, db):
        db.bulk_docs([Person(id="p1", name="Ada"), {"_id": "other", "kind": "untyped"}])

        collection = db.get_all(doc_type=Person)

        assert [p.name for p in collection] == ["Ada"]


class TestQueryManyAllDocs:
    """Tests for Database.query_many_all_docs."""

    def test_one_result_per_query(self, db, transport):
        db.bulk_docs([{"_id": f"item-{i}", "n": i} for i in range(4)])

        by_key, with_docs, plain = db.query_many_all_docs(
            [QueryParams(key="item-0"), QueryParams(include_docs=True), QueryParams()]
        )

        assert [row.id for row in by_key] == ["item-0"]
        assert by_key[0].doc is None
        assert len(with_docs) == 4
        assert all(row.doc is not None for row in with_docs)
        assert with_docs[2].doc["n"] == 2
        assert len(plain) == 4
        assert all(row.doc is None for row in plain)
        assert transport.requests[-1] == ("POST", "testdb/_all_docs/queries")

    def test_result_count_mismatch(self):
        database, _ = _mock_db(TransportResponse(200, {"results": []}))

        with pytest.raises(InvalidEncodingError):
            database.query_many_all_docs([QueryParams()])

    def test_rejected_request(self):
        database, _ = _mock_db(TransportResponse(400, {"error": "bad_request", "reason": "bad"}))

        with pytest.raises(OperationFailedError) as exc_info:
            database.query_many_all_docs([QueryParams(limit=-1)])
        assert exc_info.value.status == 400


class TestBatchedRetrieval:
    """Tests for Database.get_all_batched and Database.iter_all_batched."""

    @pytest.fixture
    def populated(self, db, transport):
        db.bulk_docs([{"_id": f"doc-{i:05d}", "n": i} for i in range(2001)])
        transport.register_view("testdb", "views", "by_n", lambda doc: [(doc["n"], None)])
        return db

    def test_default_page_size_delivers_everything(self, populated):
        pages = []

        delivered = populated.get_all_batched(pages.append)

        assert delivered == 2001
        assert sum(page.total_rows for page in pages) == 2001
        offsets = [page.offset for page in pages]
        assert offsets == sorted(offsets)
        assert len(pages) == 3
        assert len({doc["_id"] for page in pages for doc in page}) == 2001

    def test_explicit_page_size(self, populated, transport):
        pages = list(populated.iter_all_batched(page_size=500))

        assert sum(len(page) for page in pages) == 2001
        assert len(pages) == 5

    def test_skip(self, populated):
        pages = list(populated.iter_all_batched(page_size=1000, skip=1001))

        assert sum(len(page) for page in pages) == 1001
        assert pages[0].offset == 1001

    def test_callable_sink_stops_producer(self, populated, transport):
        pages = []

        def sink(page):
            pages.append(page)
            return False

        delivered = populated.get_all_batched(sink)

        assert len(pages) == 1
        assert delivered == pages[0].total_rows
        assert sum(1 for _, path in transport.requests if "_all_docs" in path) == 1

    def test_queue_sink_with_consumer_thread(self, populated):
        pages = queue.Queue(maxsize=1)
        received = []

        def consume():
            while (page := pages.get()) is not None:
                received.append(page)

        consumer = threading.Thread(target=consume)
        consumer.start()
        delivered = populated.get_all_batched(pages, page_size=300)
        consumer.join(timeout=5)

        assert not consumer.is_alive()
        assert delivered == 2001
        assert sum(page.total_rows for page in received) == 2001

    def test_cancel_event(self, populated, transport):
        cancel = threading.Event()
        cancel.set()
        pages = queue.Queue()

        delivered = populated.get_all_batched(pages, cancel=cancel)

        assert delivered == 0
        assert pages.get_nowait() is None
        assert not any("_all_docs" in path for _, path in transport.requests)

    def test_cancel_from_callable_sink_stops_before_next_request(self, populated, transport):
        cancel = threading.Event()
        pages = []

        def sink(page):
            pages.append(page)
            cancel.set()

        delivered = populated.get_all_batched(sink, page_size=500, cancel=cancel)

        assert len(pages) == 1
        assert delivered == pages[0].total_rows
        assert sum(1 for _, path in transport.requests if "_all_docs" in path) == 1

    def test_cancel_while_queue_full(self, populated):
        cancel = threading.Event()
        pages = queue.Queue(maxsize=1)
        timer = threading.Timer(0.2, cancel.set)
        timer.start()

        delivered = populated.get_all_batched(pages, page_size=100, cancel=cancel)
        timer.join()

        assert delivered == pages.get_nowait().total_rows

    def test_empty_database(self, db):
        pages = queue.Queue()

        assert db.get_all_batched(pages) == 0
        assert pages.get_nowait() is None

    def test_failure_propagates_after_end_marker(self):
        database, _ = _mock_db(TransportResponse(500, {"error": "unknown_error", "reason": "boom"}))
        pages = queue.Queue()

        with pytest.raises(OperationFailedError, match="boom"):
            database.get_all_batched(pages)
        assert pages.get_nowait() is None

    def test_typed_pages(self, populated):
        class Counter(BaseModel):
            n: int

        first = next(populated.iter_all_batched(page_size=10, doc_type=Counter))

        assert [c.n for c in first] == list(range(9))


class TestQuery:
    """Tests for Database.query and Database.query_raw."""

    @pytest.fixture
    def views(self, db, transport):
        db.bulk_docs(
            [
                {"_id": "a", "kind": "x", "n": 2},
                {"_id": "b", "kind": "y", "n": 1},
                {"_id": "c", "kind": "x", "n": 3},
            ]
        )
        transport.register_view("testdb", "stats", "by_kind", lambda doc: [(doc["kind"], doc["n"])], "_sum")
        transport.register_view("testdb", "stats", "nulls", lambda doc: [(doc["_id"], None)])
        return db

    def test_typed_rows(self, views):
        result = views.query("stats", "by_kind", QueryParams(reduce=False), key_type=str, value_type=int)

        assert result.total_rows == 3
        assert [(row.key, row.value, row.id) for row in result] == [("x", 2, "a"), ("x", 3, "c"), ("y", 1, "b")]

    def test_null_values_decode_against_any_and_optional(self, views):
        assert all(row.value is None for row in views.query("stats", "nulls", value_type=Any))
        assert all(row.value is None for row in views.query("stats", "nulls", value_type=Optional[str]))

    def test_null_values_fail_against_str(self, views):
        with pytest.raises(InvalidEncodingError):
            views.query("stats", "nulls", key_type=str, value_type=str)

    def test_reduce_with_group(self, views):
        result = views.query("stats", "by_kind", QueryParams(group=True), key_type=str, value_type=int)

        assert [(row.key, row.value) for row in result] == [("x", 5), ("y", 1)]
        assert result.total_rows is None

    def test_keys_are_posted(self, views, transport):
        result = views.query("stats", "nulls", QueryParams.from_keys(["c", "a"]))

        assert [row.id for row in result] == ["c", "a"]
        assert transport.requests[-1][0] == "POST"

    def test_include_docs_typed(self, views):
        class Entry(BaseModel):
            kind: str
            n: int

        result = views.query(
            "stats", "nulls", QueryParams(include_docs=True, key="b"), key_type=str, doc_type=Entry
        )

        assert result[0].doc == Entry(kind="y", n=1)

    def test_query_raw(self, views):
        result = views.query_raw("stats", "by_kind", QueryParams(reduce=False, limit=1))

        assert len(result) == 1
        assert result.total_rows == 3

    def test_missing_view(self, views):
        with pytest.raises(DesignResourceError, match="stats/unknown"):
            views.query("stats", "unknown")

    def test_missing_design_document(self, db):
        with pytest.raises(DesignResourceError):
            db.query("nope", "unknown")

    def test_view_build_failure(self):
        database, _ = _mock_db(TransportResponse(500, {"error": "compilation_error", "reason": "syntax"}))

        with pytest.raises(DesignResourceError, match="syntax"):
            database.query("d", "v")

    def test_bad_parameters(self):
        database, _ = _mock_db(TransportResponse(400, {"error": "query_parse_error", "reason": "bad"}))

        with pytest.raises(OperationFailedError) as exc_info:
            database.query("d", "v")
        assert exc_info.value.status == 400


class TestFind:
    """Tests for Database.find."""

    @pytest.fixture
    def people(self, db):
        db.bulk_docs(
            [
                Person(id="p1", name="Ada", age=36),
                Person(id="p2", name="Grace", age=45),
                Person(id="p3", name="Alan", age=41),
                {"_id": "t1", "type": "thing"},
            ]
        )
        return db

    def test_selector_and_sort(self, people):
        result = people.find(
            FindQuery(selector={"age": {"$gt": 40}}, sort=[{"age": "asc"}]), doc_type=Person
        )

        assert [p.name for p in result] == ["Alan", "Grace"]
        assert result.total_rows == 2
        assert result.bookmark

    def test_bookmark_continues(self, people):
        first = people.find(FindQuery.find_all(limit=2))
        second = people.find(FindQuery.find_all(limit=2, bookmark=first.bookmark))

        ids = [doc["_id"] for doc in first] + [doc["_id"] for doc in second]
        assert ids == ["p1", "p2", "p3", "t1"]

    def test_undecodable_documents_dropped(self, people):
        result = people.find(FindQuery.find_all(), doc_type=Person)

        assert len(result) == 3

    def test_rejected_query(self, people):
        with pytest.raises(OperationFailedError) as exc_info:
            people.find(FindQuery(selector={"name": {"$regex": "^A"}}))
        assert exc_info.value.status == 400

    def test_error_in_body(self):
        database, _ = _mock_db(TransportResponse(200, {"error": "no_usable_index", "reason": "No index"}))

        with pytest.raises(OperationFailedError, match="No index"):
            database.find(FindQuery.find_all())
