"""Document store contract and an in-process implementation."""

from __future__ import annotations

import copy
import operator
from dataclasses import dataclass
from datetime import datetime
from threading import Lock
from typing import Any, Callable, Mapping, Protocol, Sequence
from uuid import uuid4

from ..clock import SYSTEM_CLOCK, Clock


class _ServerTimestamp:
    """Placeholder replaced by the store's own clock when a document is written."""

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()

Filter = tuple[str, str, Any]

_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "<": operator.lt,
}


class DocumentStoreError(RuntimeError):
    """Raised when the backing store cannot complete an operation."""


class DocumentNotFoundError(DocumentStoreError):
    pass


@dataclass(frozen=True)
class Document:
    id: str
    data: dict[str, Any]


class DocumentStore(Protocol):
    def create(self, collection: str, data: Mapping[str, Any]) -> str:
        ...

    def set(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        ...

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        ...

    def update(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        ...

    def delete(self, collection: str, doc_id: str) -> None:
        ...

    def query(self, collection: str, filters: Sequence[Filter] = ()) -> list[Document]:
        ...


def validate_filters(filters: Sequence[Filter]) -> None:
    for field_name, op, _ in filters:
        if op not in _OPERATORS:
            raise ValueError(f"Unsupported operator {op!r} for field {field_name!r}")


class InMemoryDocumentStore:
    """Dict-backed store for local runs and tests.

    Server timestamps come from the injected clock and never go backwards,
    matching what a real backend guarantees.
    """

    def __init__(self, clock: Clock = SYSTEM_CLOCK) -> None:
        self._clock = clock
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = Lock()
        self._last_timestamp: datetime | None = None

    def _server_now(self) -> datetime:
        now = self._clock.now()
        if self._last_timestamp is not None and now < self._last_timestamp:
            now = self._last_timestamp
        self._last_timestamp = now
        return now

    def _resolve(self, data: Mapping[str, Any]) -> dict[str, Any]:
        resolved = {}
        stamp = None
        for key, value in data.items():
            if value is SERVER_TIMESTAMP:
                if stamp is None:
                    stamp = self._server_now()
                value = stamp
            resolved[key] = copy.deepcopy(value)
        return resolved

    def create(self, collection: str, data: Mapping[str, Any]) -> str:
        doc_id = uuid4().hex
        with self._lock:
            self._collections.setdefault(collection, {})[doc_id] = self._resolve(data)
        return doc_id

    def set(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        with self._lock:
            self._collections.setdefault(collection, {})[doc_id] = self._resolve(data)

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        with self._lock:
            data = self._collections.get(collection, {}).get(doc_id)
            return copy.deepcopy(data) if data is not None else None

    def update(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        with self._lock:
            existing = self._collections.get(collection, {}).get(doc_id)
            if existing is None:
                raise DocumentNotFoundError(f"{collection}/{doc_id} does not exist")
            existing.update(self._resolve(data))

    def delete(self, collection: str, doc_id: str) -> None:
        with self._lock:
            self._collections.get(collection, {}).pop(doc_id, None)

    def query(self, collection: str, filters: Sequence[Filter] = ()) -> list[Document]:
        validate_filters(filters)
        with self._lock:
            documents = self._collections.get(collection, {})
            matches = []
            for doc_id, data in documents.items():
                if all(
                    field_name in data and _OPERATORS[op](data[field_name], value)
                    for field_name, op, value in filters
                ):
                    matches.append(Document(id=doc_id, data=copy.deepcopy(data)))
            return matches
