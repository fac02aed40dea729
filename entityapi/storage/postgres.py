from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import psycopg
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from entityapi.logging import get_logger
from entityapi.storage.errors import ConstraintViolation, StoreError
from entityapi.storage.memory import EMBEDDING_FIELD, project
from entityapi.storage.models import (
    SERVER_TIMESTAMP,
    CollectionRef,
    Document,
    DocumentRef,
    NearestQuery,
    QuerySpec,
)
from entityapi.storage.query import Query

# Timestamps live in native columns rather than inside the JSONB payload
_TIMESTAMP_COLUMNS = {"createdAt": "created_at", "updatedAt": "updated_at"}

_DOCUMENT_COLUMNS = "path, doc_id, data, created_at, updated_at"


class PostgresStore:
    """Document store on a single JSONB table with a pgvector column."""

    def __init__(self, dsn: str) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=2,
            max_size=10,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_document_table()

    def _connect(self):
        return self.pool.connection()

    def _ensure_document_table(self) -> None:
        """Create the ``entity_document`` table if it is missing."""

        with self._connect() as conn:
            conn.execute("CREATE EXTENSION IF NOT EXISTS vector")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS entity_document (
                    path TEXT PRIMARY KEY,
                    collection TEXT NOT NULL,
                    doc_id TEXT NOT NULL,
                    data JSONB NOT NULL DEFAULT '{}'::jsonb,
                    embedding vector,
                    created_at TIMESTAMPTZ,
                    updated_at TIMESTAMPTZ
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS entity_document_collection_idx "
                "ON entity_document (collection, doc_id)"
            )

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def close(self) -> None:
        self.pool.close()

    def query(self, collection: CollectionRef) -> Query:
        return Query(self, collection)

    def _format_vector(self, embedding: Sequence[float]) -> str:
        return "[" + ",".join(f"{float(val):.6f}" for val in embedding) + "]"

    def _split_payload(
        self, data: Dict[str, Any]
    ) -> Tuple[Dict[str, Any], Dict[str, Optional[datetime]], bool, Optional[str]]:
        now = datetime.now(timezone.utc)
        payload: Dict[str, Any] = {}
        timestamps: Dict[str, Optional[datetime]] = {}
        for key, value in data.items():
            if key == EMBEDDING_FIELD:
                continue
            if value is SERVER_TIMESTAMP:
                value = now
            if key in _TIMESTAMP_COLUMNS:
                timestamps[_TIMESTAMP_COLUMNS[key]] = value
                continue
            payload[key] = value
        has_embedding = EMBEDDING_FIELD in data
        vector = data.get(EMBEDDING_FIELD)
        return payload, timestamps, has_embedding, (self._format_vector(vector) if vector else None)

    def _row_to_document(self, row: Dict[str, Any], fields: Optional[Iterable[str]] = None) -> Document:
        data = dict(row["data"] or {})
        if row.get("created_at") is not None:
            data["createdAt"] = row["created_at"]
        if row.get("updated_at") is not None:
            data["updatedAt"] = row["updated_at"]
        return Document(id=row["doc_id"], path=row["path"], data=project(data, fields))

    def get(self, ref: DocumentRef) -> Optional[Document]:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"SELECT {_DOCUMENT_COLUMNS} FROM entity_document WHERE path = %s",
                    (ref.path,),
                ).fetchone()
        except psycopg.Error as exc:
            raise StoreError("document read failed", {"path": ref.path}) from exc
        return self._row_to_document(row) if row else None

    def _insert(self, ref: DocumentRef, data: Dict[str, Any], *, upsert: bool) -> int:
        payload, timestamps, _, vector = self._split_payload(data)
        conflict = (
            "ON CONFLICT (path) DO UPDATE SET data = EXCLUDED.data, embedding = EXCLUDED.embedding, "
            "created_at = EXCLUDED.created_at, updated_at = EXCLUDED.updated_at"
            if upsert
            else "ON CONFLICT (path) DO NOTHING"
        )
        try:
            with self._connect() as conn:
                cur = conn.execute(
                    f"""
                    INSERT INTO entity_document (path, collection, doc_id, data, embedding, created_at, updated_at)
                    VALUES (%s, %s, %s, %s::jsonb, %s::vector, %s, %s)
                    {conflict}
                    """,
                    (
                        ref.path,
                        ref.parent.path,
                        ref.id,
                        json.dumps(payload),
                        vector,
                        timestamps.get("created_at"),
                        timestamps.get("updated_at"),
                    ),
                )
                return cur.rowcount
        except psycopg.Error as exc:
            raise StoreError("document write failed", {"path": ref.path}) from exc

    def set(self, ref: DocumentRef, data: Dict[str, Any]) -> None:
        self._insert(ref, data, upsert=True)

    def create(self, ref: DocumentRef, data: Dict[str, Any]) -> None:
        """Insert ``data`` only if nothing exists at ``ref``."""
        if self._insert(ref, data, upsert=False) == 0:
            raise ConstraintViolation("document already exists", {"path": ref.path})

    def update(self, ref: DocumentRef, fields: Dict[str, Any]) -> None:
        payload, timestamps, has_embedding, vector = self._split_payload(fields)
        assignments = ["data = data || %s::jsonb"]
        params: List[Any] = [json.dumps(payload)]
        for column, value in timestamps.items():
            assignments.append(f"{column} = %s")
            params.append(value)
        if has_embedding:
            assignments.append("embedding = %s::vector")
            params.append(vector)
        params.append(ref.path)
        try:
            with self._connect() as conn:
                cur = conn.execute(
                    f"UPDATE entity_document SET {', '.join(assignments)} WHERE path = %s",
                    params,
                )
                updated = cur.rowcount
        except psycopg.Error as exc:
            raise StoreError("document update failed", {"path": ref.path}) from exc
        if not updated:
            raise StoreError("no document to update", {"path": ref.path})

    def delete(self, ref: DocumentRef) -> None:
        try:
            with self._connect() as conn:
                conn.execute("DELETE FROM entity_document WHERE path = %s", (ref.path,))
        except psycopg.Error as exc:
            raise StoreError("document delete failed", {"path": ref.path}) from exc

    def _where(
        self, collection: CollectionRef, filters: Iterable[Tuple[str, Any]]
    ) -> Tuple[str, List[Any]]:
        clauses = ["collection = %s"]
        params: List[Any] = [collection.path]
        filters = list(filters)
        if filters:
            # JSONB containment keeps value types intact (true vs "true")
            clauses.append("data @> %s::jsonb")
            params.append(json.dumps({key: value for key, value in filters}))
        return " AND ".join(clauses), params

    def run_query(self, spec: QuerySpec) -> List[Document]:
        where, params = self._where(spec.collection, spec.filters)
        sql = f"SELECT {_DOCUMENT_COLUMNS} FROM entity_document WHERE {where} ORDER BY doc_id"
        if spec.limit is not None:
            sql += " LIMIT %s"
            params.append(spec.limit)
        if spec.offset:
            sql += " OFFSET %s"
            params.append(spec.offset)
        try:
            with self._connect() as conn:
                rows = conn.execute(sql, params).fetchall()
        except psycopg.Error as exc:
            raise StoreError("collection query failed", {"collection": spec.collection.path}) from exc
        return [self._row_to_document(row, spec.fields) for row in rows]

    def list_documents(self, collection: CollectionRef) -> List[Document]:
        return self.run_query(QuerySpec(collection=collection))

    def count(self, collection: CollectionRef, *, filters: Iterable[Tuple[str, Any]] = ()) -> int:
        where, params = self._where(collection, filters)
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"SELECT count(*) AS total FROM entity_document WHERE {where}", params
                ).fetchone()
        except psycopg.Error as exc:
            raise StoreError("collection count failed", {"collection": collection.path}) from exc
        return int(row["total"]) if row else 0

    def vector_search(self, collection: CollectionRef, nearest: NearestQuery) -> List[Document]:
        if nearest.distance != "dot_product":
            raise StoreError(f"unsupported distance measure: {nearest.distance}")
        if nearest.field != EMBEDDING_FIELD:
            raise StoreError(f"no vector index on field: {nearest.field}")
        try:
            with self._connect() as conn:
                # <#> is negative inner product: ascending order = most similar first
                rows = conn.execute(
                    f"""
                    SELECT {_DOCUMENT_COLUMNS}
                    FROM entity_document
                    WHERE collection = %s AND embedding IS NOT NULL
                    ORDER BY embedding <#> %s::vector
                    LIMIT %s
                    """,
                    (collection.path, self._format_vector(nearest.vector), nearest.limit),
                ).fetchall()
        except psycopg.Error as exc:
            raise StoreError("vector search failed", {"collection": collection.path}) from exc
        return [self._row_to_document(row) for row in rows]
