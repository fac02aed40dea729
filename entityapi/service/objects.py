from __future__ import annotations

import asyncio
import json
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, Optional

from entityapi.logging import get_logger
from entityapi.service.errors import (
    AlreadyExistsError,
    MissingPreconditionError,
    ObjectNotFoundError,
    ServiceError,
    UnexpectedError,
)
from entityapi.service.schema_registry import SYSTEM_FIELDS
from entityapi.storage.errors import ConstraintViolation
from entityapi.storage.models import SERVER_TIMESTAMP, CollectionRef, Document, DocumentRef

logger = get_logger(__name__)

OBJECTS_COLLECTION = "objects"
TIMESTAMP_FIELDS = ("createdAt", "updatedAt")


def objects_collection(
    workspace: str,
    entity: str,
    object_id: Optional[str] = None,
    sub_entity: Optional[str] = None,
) -> CollectionRef:
    """Collection holding an entity's objects, or one object's sub-entity."""
    base = CollectionRef(f"{workspace}/{entity}/{OBJECTS_COLLECTION}")
    if sub_entity is None:
        return base
    if not object_id:
        raise MissingPreconditionError("missing objectId")
    return base.document(object_id).collection(sub_entity)


def object_ref(
    workspace: str,
    entity: str,
    object_id: str,
    sub_entity: Optional[str] = None,
    sub_object_id: Optional[str] = None,
) -> DocumentRef:
    if sub_entity is None:
        return objects_collection(workspace, entity).document(object_id)
    if not sub_object_id:
        raise MissingPreconditionError("missing subObjectId")
    return objects_collection(workspace, entity, object_id, sub_entity).document(sub_object_id)


def to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def normalize_document(document: Document) -> Dict[str, Any]:
    """Surface a stored document: ISO timestamps, ``objectId`` from its id, no vector."""
    data = dict(document.data)
    data.pop("embedding", None)
    for key in TIMESTAMP_FIELDS:
        value = data.get(key)
        if isinstance(value, datetime):
            data[key] = to_iso(value)
        elif value is None:
            data.pop(key, None)
    data["objectId"] = document.id
    return data


def strip_system_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        key: value
        for key, value in data.items()
        if key not in SYSTEM_FIELDS and key != "embedding"
    }


def _text_value(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value)


def searchable_text(data: Dict[str, Any], searchable_fields: Iterable[str]) -> str:
    """Embedding input: ``"{field} {value}"`` for each searchable field present."""
    fields = set(searchable_fields)
    return ", ".join(
        f"{key} {_text_value(value)}"
        for key, value in data.items()
        if key in fields and value is not None
    )


@contextmanager
def unexpected_errors(operation: str, path: str) -> Iterator[None]:
    """Let typed errors through; wrap anything else as a generic failure."""
    try:
        yield
    except ServiceError:
        raise
    except Exception as exc:
        logger.error(
            "object_store_failed",
            operation=operation,
            path=path,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        raise UnexpectedError() from exc


@dataclass
class ObjectResult:
    object: Dict[str, Any]
    cached: bool = False


class ObjectGateway:
    """Get/create/update/delete of single objects, fronted by the response cache."""

    def __init__(self, store: Any, cache: Any, search: Any) -> None:
        self.store = store
        self.cache = cache
        self.search = search

    async def get(self, ref: DocumentRef) -> ObjectResult:
        with unexpected_errors("get", ref.path):
            cached = await self.cache.get(ref.path)
            if cached:
                return ObjectResult(cached, cached=True)
            document = await asyncio.to_thread(self.store.get, ref)
            if document is None:
                raise ObjectNotFoundError("object not found", detail={"objectId": ref.id})
            obj = normalize_document(document)
            await self.cache.set(ref.path, obj)
            return ObjectResult(obj, cached=False)

    async def _embedding_fields(self, data: Dict[str, Any], searchable_fields: Iterable[str]) -> Dict[str, Any]:
        text = searchable_text(data, searchable_fields)
        if not text:
            return {}
        return {"embedding": await self.search.embed_document(text)}

    async def create(
        self,
        data: Dict[str, Any],
        ref: DocumentRef,
        searchable_fields: Iterable[str] = (),
        actor: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        with unexpected_errors("create", ref.path):
            payload = strip_system_fields(data)
            existing = await asyncio.to_thread(self.store.get, ref)
            if existing is not None:
                raise AlreadyExistsError("object already exists", detail={"objectId": ref.id})
            embedding = await self._embedding_fields(payload, searchable_fields)
            record = {
                **payload,
                **embedding,
                "createdAt": SERVER_TIMESTAMP,
                "createdBy": actor,
                "updatedAt": SERVER_TIMESTAMP,
                "objectId": ref.id,
            }
            try:
                await asyncio.to_thread(self.store.create, ref, record)
            except ConstraintViolation as exc:
                raise AlreadyExistsError(
                    "object already exists", detail={"objectId": ref.id}
                ) from exc
            await self.cache.delete(ref.path)
            created = (await self.get(ref)).object
            logger.info("object_created", path=ref.path)
            return created

    async def update(
        self,
        data: Dict[str, Any],
        ref: DocumentRef,
        searchable_fields: Iterable[str] = (),
        actor: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        with unexpected_errors("update", ref.path):
            current = (await self.get(ref)).object
            merged = {
                **strip_system_fields(current),
                **strip_system_fields(data),
            }
            embedding = await self._embedding_fields(merged, searchable_fields)
            record = {
                **merged,
                **embedding,
                "objectId": ref.id,
                "updatedAt": SERVER_TIMESTAMP,
                "updatedBy": actor,
            }
            await asyncio.to_thread(self.store.update, ref, record)
            # Invalidate strictly after the write commits
            await self.cache.delete(ref.path)
            updated = (await self.get(ref)).object
            logger.info("object_updated", path=ref.path)
            return updated

    async def delete(self, ref: DocumentRef) -> Dict[str, Any]:
        """Delete the object at ``ref`` and return its last state."""
        with unexpected_errors("delete", ref.path):
            current = (await self.get(ref)).object
            await asyncio.to_thread(self.store.delete, ref)
            await self.cache.delete(ref.path)
            logger.info("object_deleted", path=ref.path)
            return current
