"""PostgreSQL-backed document store.

Every collection lives in a single ``documents`` table keyed by
``(collection, id)`` with the payload in a JSONB column. Server timestamps are
assigned by PostgreSQL's ``now()`` so every writer shares one clock.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Iterator, Mapping, Sequence
from uuid import uuid4

import psycopg2
from psycopg2.extras import Json, RealDictCursor

from ..auth.config import DatabaseConfig
from .document_store import (
    SERVER_TIMESTAMP,
    Document,
    DocumentNotFoundError,
    DocumentStoreError,
    Filter,
    validate_filters,
)

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS documents (
    collection TEXT NOT NULL,
    id TEXT NOT NULL,
    data JSONB NOT NULL DEFAULT '{}'::jsonb,
    PRIMARY KEY (collection, id)
)
"""


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _dumps(value: Any) -> str:
    return json.dumps(value, default=_json_default)


def _split_payload(data: Mapping[str, Any]) -> tuple[dict[str, Any], list[str]]:
    """Separate plain fields from fields that take the server timestamp."""
    plain = {key: value for key, value in data.items() if value is not SERVER_TIMESTAMP}
    stamped = [key for key, value in data.items() if value is SERVER_TIMESTAMP]
    return plain, stamped


# Always six fractional digits; to_jsonb(now()) drops trailing zeros
SERVER_STAMP_SQL = """to_char(now() AT TIME ZONE 'UTC', 'YYYY-MM-DD"T"HH24:MI:SS.US"+00:00"')"""


def _payload_sql(stamped: list[str]) -> str:
    """SQL expression merging a JSON parameter with now()-stamped keys."""
    pairs = ", ".join([f"%s, {SERVER_STAMP_SQL}"] * len(stamped))
    return f"(%s::jsonb || jsonb_build_object({pairs}))"


def _filter_sql(filters: Sequence[Filter]) -> tuple[list[str], list[Any]]:
    conditions = []
    params: list[Any] = []
    for field_name, op, value in filters:
        if op == "==":
            conditions.append("data ->> %s = %s")
            params.extend([field_name, str(value)])
        elif isinstance(value, datetime):
            conditions.append("(data ->> %s)::timestamptz < %s")
            params.extend([field_name, value])
        else:
            conditions.append("(data ->> %s)::numeric < %s")
            params.extend([field_name, value])
    return conditions, params


def connect_from_config(config: DatabaseConfig) -> Callable[[], Any]:
    """Connection factory matching the configured database."""

    def _connect():
        return psycopg2.connect(**config.as_connect_kwargs(), cursor_factory=RealDictCursor)

    return _connect


class PostgresDocumentStore:
    """Document store that opens one connection per operation."""

    def __init__(self, connect: Callable[[], Any]) -> None:
        self._connect = connect

    @contextmanager
    def _connection(self, action: str) -> Iterator[Any]:
        try:
            conn = self._connect()
        except psycopg2.OperationalError as e:
            logger.error("Document store unreachable", extra={"action": action, "error": str(e)})
            raise DocumentStoreError(f"Database connection failed: {e}") from e
        try:
            yield conn
            conn.commit()
        except psycopg2.Error as e:
            conn.rollback()
            logger.error("Document store operation failed", extra={"action": action, "error": str(e)})
            raise DocumentStoreError(f"{action} failed: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def ensure_schema(self) -> None:
        with self._connection("ensure_schema") as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(SCHEMA_SQL)
            finally:
                cursor.close()

    def _write(self, action: str, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        plain, stamped = _split_payload(data)
        with self._connection(action) as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(
                    f"""
                    INSERT INTO documents (collection, id, data)
                    VALUES (%s, %s, {_payload_sql(stamped)})
                    ON CONFLICT (collection, id) DO UPDATE SET data = EXCLUDED.data
                    """,
                    (collection, doc_id, Json(plain, dumps=_dumps), *stamped),
                )
            finally:
                cursor.close()

    def create(self, collection: str, data: Mapping[str, Any]) -> str:
        doc_id = uuid4().hex
        self._write("create", collection, doc_id, data)
        return doc_id

    def set(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        self._write("set", collection, doc_id, data)

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        with self._connection("get") as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(
                    """
                    SELECT data FROM documents
                    WHERE collection = %s AND id = %s
                    """,
                    (collection, doc_id),
                )
                row = cursor.fetchone()
                return row["data"] if row else None
            finally:
                cursor.close()

    def update(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        plain, stamped = _split_payload(data)
        with self._connection("update") as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(
                    f"""
                    UPDATE documents
                    SET data = data || {_payload_sql(stamped)}
                    WHERE collection = %s AND id = %s
                    """,
                    (Json(plain, dumps=_dumps), *stamped, collection, doc_id),
                )
                if cursor.rowcount == 0:
                    raise DocumentNotFoundError(f"{collection}/{doc_id} does not exist")
            finally:
                cursor.close()

    def delete(self, collection: str, doc_id: str) -> None:
        with self._connection("delete") as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(
                    """
                    DELETE FROM documents
                    WHERE collection = %s AND id = %s
                    """,
                    (collection, doc_id),
                )
            finally:
                cursor.close()

    def query(self, collection: str, filters: Sequence[Filter] = ()) -> list[Document]:
        validate_filters(filters)
        conditions, params = _filter_sql(filters)
        where_clause = " AND ".join(["collection = %s", *conditions])
        with self._connection("query") as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(
                    f"""
                    SELECT id, data FROM documents
                    WHERE {where_clause}
                    """,
                    (collection, *params),
                )
                rows = cursor.fetchall()
                return [Document(id=row["id"], data=row["data"]) for row in rows]
            finally:
                cursor.close()
