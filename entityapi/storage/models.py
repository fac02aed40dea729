from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple


class _ServerTimestamp:
    """Sentinel replaced by the store with the commit time."""

    _instance: Optional["_ServerTimestamp"] = None

    def __new__(cls) -> "_ServerTimestamp":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


def _split(path: str) -> List[str]:
    segments = [seg for seg in path.strip("/").split("/")]
    if not segments or any(not seg for seg in segments):
        raise ValueError(f"invalid path: {path!r}")
    return segments


def new_document_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class CollectionRef:
    """A collection path; segments alternate collection/document/collection."""

    path: str

    def __post_init__(self) -> None:
        if len(_split(self.path)) % 2 != 1:
            raise ValueError(f"collection path must have an odd segment count: {self.path!r}")

    @property
    def id(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def parent(self) -> Optional["DocumentRef"]:
        if "/" not in self.path:
            return None
        return DocumentRef(self.path.rsplit("/", 1)[0])

    def document(self, doc_id: Optional[str] = None) -> "DocumentRef":
        doc_id = doc_id or new_document_id()
        if "/" in doc_id:
            raise ValueError(f"document id may not contain '/': {doc_id!r}")
        return DocumentRef(f"{self.path}/{doc_id}")


@dataclass(frozen=True)
class DocumentRef:
    path: str

    def __post_init__(self) -> None:
        if len(_split(self.path)) % 2 != 0:
            raise ValueError(f"document path must have an even segment count: {self.path!r}")

    @property
    def id(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def parent(self) -> CollectionRef:
        return CollectionRef(self.path.rsplit("/", 1)[0])

    def collection(self, name: str) -> CollectionRef:
        return CollectionRef(f"{self.path}/{name}")


@dataclass
class Document:
    """A stored document as surfaced by a store.

    ``data`` never includes the embedding vector; timestamps are datetimes.
    """

    id: str
    path: str
    data: Dict[str, Any]


@dataclass(frozen=True)
class NearestQuery:
    vector: Tuple[float, ...]
    limit: int
    field: str = "embedding"
    distance: str = "dot_product"


@dataclass(frozen=True)
class QuerySpec:
    collection: CollectionRef
    filters: Tuple[Tuple[str, Any], ...] = ()
    limit: Optional[int] = None
    offset: Optional[int] = None
    fields: Optional[Tuple[str, ...]] = None
    nearest: Optional[NearestQuery] = None

