"""Unit tests for the in-memory document store."""

import pytest

from finance_api.store.document_store import (
    SERVER_TIMESTAMP,
    DocumentNotFoundError,
    InMemoryDocumentStore,
    validate_filters,
)


class TestWrites:
    def test_create_assigns_unique_ids(self, store):
        first = store.create("things", {"name": "a"})
        second = store.create("things", {"name": "a"})

        assert first != second
        assert store.get("things", first) == {"name": "a"}

    def test_server_timestamp_uses_clock(self, store, clock):
        doc_id = store.create("things", {"createdAt": SERVER_TIMESTAMP, "updatedAt": SERVER_TIMESTAMP})

        data = store.get("things", doc_id)
        assert data["createdAt"] == clock.now()
        assert data["updatedAt"] == data["createdAt"]

    def test_server_timestamp_never_goes_backwards(self, clock):
        store = InMemoryDocumentStore(clock)
        doc_id = store.create("things", {"at": SERVER_TIMESTAMP})
        first = store.get("things", doc_id)["at"]

        clock.advance(seconds=-30)
        store.update("things", doc_id, {"at": SERVER_TIMESTAMP})

        assert store.get("things", doc_id)["at"] == first

    def test_set_overwrites_whole_document(self, store):
        store.set("users", "u1", {"name": "a", "email": "a@b.com"})
        store.set("users", "u1", {"name": "b"})

        assert store.get("users", "u1") == {"name": "b"}

    def test_update_merges_fields(self, store, clock):
        doc_id = store.create("things", {"name": "a", "at": SERVER_TIMESTAMP})
        clock.advance(minutes=1)

        store.update("things", doc_id, {"at": SERVER_TIMESTAMP})

        data = store.get("things", doc_id)
        assert data["name"] == "a"
        assert data["at"] == clock.now()

    def test_update_missing_document_raises(self, store):
        with pytest.raises(DocumentNotFoundError):
            store.update("things", "missing", {"name": "a"})

    def test_delete_is_idempotent(self, store):
        doc_id = store.create("things", {"name": "a"})
        store.delete("things", doc_id)
        store.delete("things", doc_id)

        assert store.get("things", doc_id) is None

    def test_returned_data_is_a_copy(self, store):
        doc_id = store.create("things", {"tags": ["a"]})
        store.get("things", doc_id)["tags"].append("b")

        assert store.get("things", doc_id) == {"tags": ["a"]}


class TestQuery:
    def test_equality_filters_are_combined(self, store):
        store.create("sessions", {"userId": "u1", "sessionId": "s1"})
        store.create("sessions", {"userId": "u1", "sessionId": "s2"})
        store.create("sessions", {"userId": "u2", "sessionId": "s1"})

        docs = store.query("sessions", [("userId", "==", "u1"), ("sessionId", "==", "s1")])

        assert len(docs) == 1
        assert docs[0].data == {"userId": "u1", "sessionId": "s1"}

    def test_less_than_filter(self, store, clock):
        old = store.create("sessions", {"lastActive": SERVER_TIMESTAMP})
        clock.advance(hours=1)
        store.create("sessions", {"lastActive": SERVER_TIMESTAMP})

        docs = store.query("sessions", [("lastActive", "<", clock.now())])

        assert [doc.id for doc in docs] == [old]

    def test_documents_without_the_field_never_match(self, store):
        store.create("sessions", {"userId": "u1"})

        assert store.query("sessions", [("sessionId", "==", "s1")]) == []

    def test_unknown_collection_is_empty(self, store):
        assert store.query("nothing") == []

    def test_unsupported_operator_is_rejected(self, store):
        with pytest.raises(ValueError, match="Unsupported operator"):
            store.query("sessions", [("userId", "!=", "u1")])


def test_validate_filters_accepts_supported_operators():
    validate_filters([("a", "==", 1), ("b", "<", 2)])
