import pytest

import database
from database import MemoryEntityStore, Write, matches, retry_with_backoff, to_mongo_filter, to_object_id
from errors import CollaboratorUnavailable, NotFound, ValidationError, WriteConflict


def test_matches_follows_mongo_semantics():
    doc = {"status": "open", "category": ["plumbing", "tiling"], "acceptedBidId": None}
    assert matches(doc, {"status": "open"})
    assert matches(doc, {"status": ["open", "closed"]})
    assert matches(doc, {"category": "tiling"})
    assert matches(doc, {"acceptedBidId": None, "missing": None})
    assert not matches(doc, {"status": "closed"})
    assert not matches(doc, {"category": "roofing"})


def test_to_mongo_filter():
    assert to_mongo_filter({"status": ["pending", "shortlisted"], "projectId": "p1"}) == {
        "status": {"$in": ["pending", "shortlisted"]},
        "projectId": "p1",
    }
    assert to_mongo_filter(None) == {}


def test_to_object_id_rejects_garbage():
    with pytest.raises(NotFound):
        to_object_id("not-an-id")


def test_crud_round(store):
    doc_id = store.create("things", {"name": "a", "status": "open"})
    doc = store.get("things", doc_id)
    assert doc["id"] == doc_id
    assert doc["createdAt"] is not None

    doc["name"] = "mutated outside"
    assert store.get("things", doc_id)["name"] == "a"

    store.update("things", doc_id, {"status": "closed"}, expected={"status": "open"})
    assert store.get("things", doc_id)["status"] == "closed"

    store.delete("things", doc_id)
    with pytest.raises(NotFound):
        store.get("things", doc_id)


def test_conditional_update(store):
    doc_id = store.create("things", {"status": "open"})
    with pytest.raises(WriteConflict):
        store.update("things", doc_id, {"status": "x"}, expected={"status": "closed"})
    with pytest.raises(NotFound):
        store.update("things", "000000000000000000000000", {"status": "x"})
    assert store.get("things", doc_id)["status"] == "open"


def test_query_order_and_limit(store):
    for n in (3, 1, 2):
        store.create("things", {"n": n, "kind": "a"})
    store.create("things", {"n": 9, "kind": "b"})
    found = store.query("things", {"kind": "a"}, order_by=("n", -1), limit=2)
    assert [d["n"] for d in found] == [3, 2]
    assert [d["n"] for d in store.query("things", {"kind": "a"}, order_by=("n", 1))] == [1, 2, 3]


def test_atomic_batch_is_all_or_nothing(store):
    a = store.create("things", {"status": "open"})
    b = store.create("things", {"status": "open"})
    with pytest.raises(WriteConflict):
        store.batch_write([
            Write("things", a, {"status": "done"}, expected={"status": "open"}),
            Write("things", b, {"status": "done"}, expected={"status": "closed"}),
        ])
    assert store.get("things", a)["status"] == "open"

    store.batch_write([Write("things", a, {"status": "done"}), Write("things", b, delete=True)])
    assert store.get("things", a)["status"] == "done"
    assert store.query("things") == [store.get("things", a)]


def test_non_atomic_batch_applies_in_order(loose_store):
    a = loose_store.create("things", {"status": "open"})
    b = loose_store.create("things", {"status": "open"})
    with pytest.raises(WriteConflict):
        loose_store.batch_write([
            Write("things", a, {"status": "done"}),
            Write("things", b, {"status": "done"}, expected={"status": "closed"}),
        ])
    assert loose_store.get("things", a)["status"] == "done"


def test_retry_with_backoff_recovers(monkeypatch):
    monkeypatch.setattr(database.time, "sleep", lambda s: None)
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise CollaboratorUnavailable("timeout")
        return "ok"

    assert retry_with_backoff(flaky, max_retries=3) == "ok"
    assert len(calls) == 3


def test_retry_with_backoff_gives_up(monkeypatch):
    monkeypatch.setattr(database.time, "sleep", lambda s: None)
    calls = []

    def down():
        calls.append(1)
        raise CollaboratorUnavailable("timeout")

    with pytest.raises(CollaboratorUnavailable):
        retry_with_backoff(down, max_retries=2)
    assert len(calls) == 2


def test_retry_never_retries_domain_errors():
    calls = []

    def invalid():
        calls.append(1)
        raise ValidationError("bad")

    with pytest.raises(ValidationError):
        retry_with_backoff(invalid, max_retries=5)
    assert len(calls) == 1


def test_memory_store_is_used_without_database_url(monkeypatch):
    monkeypatch.setattr(database, "DATABASE_URL", None)
    assert isinstance(database.connect(), MemoryEntityStore)
