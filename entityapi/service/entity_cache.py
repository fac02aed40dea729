from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

from entityapi.logging import get_logger
from entityapi.service.errors import EntityNotFoundError, UnexpectedError
from entityapi.storage.errors import StoreError
from entityapi.storage.models import DocumentRef

logger = get_logger(__name__)

OBJECT_SCHEMAS = "objectSchemas"
EXPRESSIONS = "expressions"
WEBHOOKS = "webhooks"
ACTIONS = "actions"
ROLES = "roles"
ENTITY_SUBCOLLECTIONS = (OBJECT_SCHEMAS, EXPRESSIONS, WEBHOOKS, ACTIONS)

# Workspace-level settings live under a reserved pseudo-entity
WORKSPACE_CONFIG_ENTITY = "config"


def entity_ref(workspace: str, entity: str) -> DocumentRef:
    return DocumentRef(f"{workspace}/{entity}")


@dataclass(frozen=True)
class EntityConfig:
    """Immutable snapshot of everything needed to serve one entity."""

    workspace: str
    entity: str
    config: Dict[str, Any]
    object_schemas: Tuple[Dict[str, Any], ...] = ()
    expressions: Tuple[Dict[str, Any], ...] = ()
    webhooks: Tuple[Dict[str, Any], ...] = ()
    actions: Tuple[Dict[str, Any], ...] = ()
    loaded_at: float = field(default=0.0, compare=False)

    def expression(self, expression_id: str) -> Optional[Dict[str, Any]]:
        return next((e for e in self.expressions if e.get("id") == expression_id), None)


class EntityCache:
    """Per-(workspace, entity) configuration cache.

    Entries are replaced whole, never mutated, and expire after
    ``ttl_seconds``. Writers call ``resolve(..., force=True)`` after
    committing a change to any entity sub-collection.
    """

    def __init__(
        self,
        store: Any,
        *,
        ttl_seconds: int = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, EntityConfig] = {}

    @staticmethod
    def _key(workspace: str, entity: str) -> str:
        return f"{workspace}/{entity}"

    def _fresh(self, entry: EntityConfig) -> bool:
        return self._clock() - entry.loaded_at < self.ttl_seconds

    def peek(self, workspace: str, entity: str) -> Optional[EntityConfig]:
        entry = self._entries.get(self._key(workspace, entity))
        if entry is not None and self._fresh(entry):
            return entry
        return None

    def invalidate(self, workspace: str, entity: str) -> None:
        self._entries.pop(self._key(workspace, entity), None)

    async def resolve(self, workspace: str, entity: str, force: bool = False) -> EntityConfig:
        if not force:
            entry = self.peek(workspace, entity)
            if entry is not None:
                return entry

        ref = entity_ref(workspace, entity)
        try:
            document = await asyncio.to_thread(self.store.get, ref)
            if document is None:
                raise EntityNotFoundError("entity not found", detail={"entity": entity})
            listings = await asyncio.gather(
                *(
                    asyncio.to_thread(self.store.list_documents, ref.collection(name))
                    for name in ENTITY_SUBCOLLECTIONS
                )
            )
        except StoreError as exc:
            logger.error(
                "entity_cache_refresh_failed",
                workspace=workspace,
                entity=entity,
                error=exc.message,
            )
            raise UnexpectedError() from exc

        sections = {
            name: tuple(doc.data for doc in docs)
            for name, docs in zip(ENTITY_SUBCOLLECTIONS, listings)
        }
        entry = EntityConfig(
            workspace=workspace,
            entity=entity,
            config=document.data,
            object_schemas=sections[OBJECT_SCHEMAS],
            expressions=sections[EXPRESSIONS],
            webhooks=sections[WEBHOOKS],
            actions=sections[ACTIONS],
            loaded_at=self._clock(),
        )
        self._entries[self._key(workspace, entity)] = entry
        logger.info(
            "entity_cache_refreshed",
            workspace=workspace,
            entity=entity,
            forced=force,
            schemas=len(entry.object_schemas),
        )
        return entry
