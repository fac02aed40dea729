from __future__ import annotations

import copy
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from entityapi.logging import get_logger
from entityapi.service.embeddings import dot_product
from entityapi.storage.errors import ConstraintViolation, StoreError
from entityapi.storage.models import (
    SERVER_TIMESTAMP,
    CollectionRef,
    Document,
    DocumentRef,
    NearestQuery,
    QuerySpec,
)
from entityapi.storage.query import Query

EMBEDDING_FIELD = "embedding"


def _values_equal(left: Any, right: Any) -> bool:
    # bool is an int subclass; keep True from matching 1
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    return left == right


def matches_filters(data: Dict[str, Any], filters: Iterable[Tuple[str, Any]]) -> bool:
    for key, value in filters:
        if key not in data or not _values_equal(data[key], value):
            return False
    return True


def project(data: Dict[str, Any], fields: Optional[Iterable[str]]) -> Dict[str, Any]:
    if not fields:
        return data
    return {key: data[key] for key in fields if key in data}


class MemoryStore:
    """In-memory document store for tests and local development.

    Documents are keyed by full path; a document's collection is its path
    minus the last segment. Embeddings are held beside the data so reads
    never return them.
    """

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.documents: Dict[str, Dict[str, Any]] = {}
        self.embeddings: Dict[str, List[float]] = {}
        # RLock so helpers can re-enter while a write holds the lock
        self._data_lock = threading.RLock()

    def verify_connection(self) -> None:
        return None

    def query(self, collection: CollectionRef) -> Query:
        return Query(self, collection)

    def _prepare(self, data: Dict[str, Any]) -> Tuple[Dict[str, Any], Optional[List[float]], bool]:
        prepared = copy.deepcopy({k: v for k, v in data.items() if k != EMBEDDING_FIELD})
        now = datetime.now(timezone.utc)
        for key, value in list(prepared.items()):
            if value is SERVER_TIMESTAMP:
                prepared[key] = now
        has_embedding = EMBEDDING_FIELD in data
        embedding = data.get(EMBEDDING_FIELD)
        return prepared, (list(embedding) if embedding is not None else None), has_embedding

    def _to_document(self, path: str, data: Dict[str, Any]) -> Document:
        return Document(id=path.rsplit("/", 1)[-1], path=path, data=copy.deepcopy(data))

    def get(self, ref: DocumentRef) -> Optional[Document]:
        with self._data_lock:
            data = self.documents.get(ref.path)
            if data is None:
                return None
            return self._to_document(ref.path, data)

    def set(self, ref: DocumentRef, data: Dict[str, Any]) -> None:
        prepared, embedding, _ = self._prepare(data)
        with self._data_lock:
            self.documents[ref.path] = prepared
            if embedding is not None:
                self.embeddings[ref.path] = embedding
            else:
                self.embeddings.pop(ref.path, None)

    def create(self, ref: DocumentRef, data: Dict[str, Any]) -> None:
        """Write ``data`` only if nothing exists at ``ref``."""
        with self._data_lock:
            if ref.path in self.documents:
                raise ConstraintViolation("document already exists", {"path": ref.path})
            self.set(ref, data)

    def update(self, ref: DocumentRef, fields: Dict[str, Any]) -> None:
        prepared, embedding, has_embedding = self._prepare(fields)
        with self._data_lock:
            current = self.documents.get(ref.path)
            if current is None:
                raise StoreError("no document to update", {"path": ref.path})
            current.update(prepared)
            if has_embedding:
                if embedding is None:
                    self.embeddings.pop(ref.path, None)
                else:
                    self.embeddings[ref.path] = embedding

    def delete(self, ref: DocumentRef) -> None:
        with self._data_lock:
            self.documents.pop(ref.path, None)
            self.embeddings.pop(ref.path, None)

    def _collection_paths(self, collection: CollectionRef) -> List[str]:
        prefix = collection.path + "/"
        return sorted(
            path
            for path in self.documents
            if path.startswith(prefix) and "/" not in path[len(prefix):]
        )

    def run_query(self, spec: QuerySpec) -> List[Document]:
        with self._data_lock:
            matched = [
                path
                for path in self._collection_paths(spec.collection)
                if matches_filters(self.documents[path], spec.filters)
            ]
            if spec.offset:
                matched = matched[spec.offset:]
            if spec.limit is not None:
                matched = matched[: spec.limit]
            return [
                self._to_document(path, project(self.documents[path], spec.fields))
                for path in matched
            ]

    def list_documents(self, collection: CollectionRef) -> List[Document]:
        return self.run_query(QuerySpec(collection=collection))

    def count(self, collection: CollectionRef, *, filters: Iterable[Tuple[str, Any]] = ()) -> int:
        filters = tuple(filters)
        with self._data_lock:
            return sum(
                1
                for path in self._collection_paths(collection)
                if matches_filters(self.documents[path], filters)
            )

    def vector_search(self, collection: CollectionRef, nearest: NearestQuery) -> List[Document]:
        if nearest.distance != "dot_product":
            raise StoreError(f"unsupported distance measure: {nearest.distance}")
        query_vector = list(nearest.vector)
        with self._data_lock:
            scored = []
            for path in self._collection_paths(collection):
                vector = self.embeddings.get(path)
                if vector is None or len(vector) != len(query_vector):
                    continue
                scored.append((dot_product(vector, query_vector), path))
            scored.sort(key=lambda item: (-item[0], item[1]))
            return [
                self._to_document(path, self.documents[path])
                for _, path in scored[: nearest.limit]
            ]
