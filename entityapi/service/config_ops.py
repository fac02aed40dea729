from __future__ import annotations

import asyncio
import copy
from typing import Any, Dict, List, Optional, Set

from entityapi.logging import get_logger
from entityapi.service.entity_cache import (
    ACTIONS,
    ENTITY_SUBCOLLECTIONS,
    EXPRESSIONS,
    OBJECT_SCHEMAS,
    ROLES,
    WEBHOOKS,
    WORKSPACE_CONFIG_ENTITY,
    EntityCache,
    entity_ref,
)
from entityapi.service.embeddings import SEARCH_EMBEDDINGS_COLLECTION
from entityapi.service.errors import (
    ActionNotFoundError,
    EntityNotFoundError,
    ExpressionNotFoundError,
    MismatchError,
    MissingPreconditionError,
    RoleNotFoundError,
    SchemaNotFoundError,
    ValidationError,
    WebhookNotFoundError,
)
from entityapi.service.expressions import compile_expression
from entityapi.service.objects import OBJECTS_COLLECTION
from entityapi.service.schema_registry import (
    SchemaRegistry,
    validate_definition,
)
from entityapi.storage.models import CollectionRef, DocumentRef, new_document_id

logger = get_logger(__name__)

PUBLIC_ROLE = "public"

# Schema ids that would collide with entity sub-collections or route segments
RESERVED_SCHEMA_IDS = frozenset(
    [
        *ENTITY_SUBCOLLECTIONS,
        ROLES,
        WORKSPACE_CONFIG_ENTITY,
        OBJECTS_COLLECTION,
        SEARCH_EMBEDDINGS_COLLECTION,
        "schemas",
        "list",
        "security",
    ]
)

_NOT_FOUND = {
    EXPRESSIONS: (ExpressionNotFoundError, "expression not found"),
    WEBHOOKS: (WebhookNotFoundError, "webhook not found"),
    ACTIONS: (ActionNotFoundError, "action not found"),
}


def workspace_roles_collection(workspace: str) -> CollectionRef:
    return entity_ref(workspace, WORKSPACE_CONFIG_ENTITY).collection(ROLES)


def security_roles(definition: Dict[str, Any]) -> Set[str]:
    """Every role named in the schema-level or per-property security maps."""
    maps: List[Any] = [definition.get("security")]
    for prop in (definition.get("properties") or {}).values():
        if isinstance(prop, dict):
            maps.append(prop.get("security"))
    roles: Set[str] = set()
    for security in maps:
        if not isinstance(security, dict):
            continue
        for names in security.values():
            if isinstance(names, list):
                roles.update(name for name in names if isinstance(name, str))
    return roles


class ConfigOpsService:
    """Workspace configuration: entity schemas and their satellites.

    Every write refreshes the entity configuration cache once it has
    committed; schema writes also recompile the registry entries.
    """

    def __init__(
        self,
        store: Any,
        registry: SchemaRegistry,
        entity_cache: EntityCache,
        response_cache: Any,
    ) -> None:
        self.store = store
        self.registry = registry
        self.entity_cache = entity_cache
        self.response_cache = response_cache

    # -- schemas -----------------------------------------------------------

    async def list_schemas(self, workspace: str) -> List[Dict[str, Any]]:
        entities = await asyncio.to_thread(
            self.store.list_documents, CollectionRef(workspace)
        )
        names = [doc.id for doc in entities if doc.id != WORKSPACE_CONFIG_ENTITY]
        listings = await asyncio.gather(
            *(
                asyncio.to_thread(
                    self.store.list_documents,
                    entity_ref(workspace, name).collection(OBJECT_SCHEMAS),
                )
                for name in names
            )
        )
        result = []
        for name, docs in zip(names, listings):
            schemas = [doc.data for doc in docs]
            result.append(
                {
                    "dataEntity": name,
                    "schema": next((s for s in schemas if s.get("$id") == name), None),
                    "subDataEntities": [
                        {"subDataEntity": s.get("$id"), "schema": s}
                        for s in schemas
                        if s.get("$id") != name
                    ],
                }
            )
        return result

    def _schema_ref(self, workspace: str, schema_id: str, sub_schema_id: Optional[str]) -> DocumentRef:
        return entity_ref(workspace, schema_id).collection(OBJECT_SCHEMAS).document(
            sub_schema_id or schema_id
        )

    async def get_schema(
        self, workspace: str, schema_id: str, sub_schema_id: Optional[str] = None
    ) -> Dict[str, Any]:
        ref = self._schema_ref(workspace, schema_id, sub_schema_id)
        document = await asyncio.to_thread(self.store.get, ref)
        if document is None:
            raise SchemaNotFoundError(
                "schema not found", detail={"schemaId": sub_schema_id or schema_id}
            )
        return document.data

    async def _check_roles(self, workspace: str, definition: Dict[str, Any]) -> None:
        wanted = security_roles(definition) - {PUBLIC_ROLE}
        if not wanted:
            return
        known = {
            name
            for role in await self.list_roles(workspace)
            for name in (role.get("name"), role.get("id"))
            if name
        }
        unknown = sorted(wanted - known)
        if unknown:
            raise RoleNotFoundError(
                f"the following security roles are not allowed: {', '.join(unknown)}",
                detail={"roles": unknown},
            )

    async def save_schema(
        self,
        workspace: str,
        definition: Any,
        *,
        parent_id: Optional[str] = None,
        route_id: Optional[str] = None,
        must_exist: bool = False,
    ) -> Dict[str, Any]:
        """Validate, compile and store an entity or sub-entity schema.

        ``parent_id`` makes it a sub-entity of that entity. ``route_id`` is
        the id taken from the URL and must agree with the body's ``$id``.
        """
        if not workspace:
            raise MissingPreconditionError("missing workspace")
        if definition is None:
            raise MissingPreconditionError("missing body")
        validate_definition(definition)
        new_id = definition["$id"]
        if new_id in RESERVED_SCHEMA_IDS:
            raise ValidationError("invalid schema id", detail={"$id": new_id})
        if route_id is not None and route_id != new_id:
            raise MismatchError(
                "schema id mismatch", detail={"route": route_id, "$id": new_id}
            )
        entity = parent_id or new_id
        sub_entity = new_id if parent_id else None
        if parent_id is not None:
            parent = await asyncio.to_thread(self.store.get, entity_ref(workspace, parent_id))
            if parent is None:
                raise EntityNotFoundError("entity not found", detail={"entity": parent_id})
        ref = self._schema_ref(workspace, entity, sub_entity)
        if must_exist and await asyncio.to_thread(self.store.get, ref) is None:
            raise SchemaNotFoundError("schema not found", detail={"schemaId": new_id})

        await self._check_roles(workspace, definition)

        stored = copy.deepcopy(definition)
        stored.setdefault("additionalProperties", False)
        # Compile before persisting so a rejected schema never reaches the store
        self.registry.compile_pair(workspace, entity, sub_entity, stored)

        await asyncio.to_thread(self.store.set, ref, stored)
        if parent_id is None:
            await asyncio.to_thread(self.store.set, entity_ref(workspace, entity), {"id": entity})
        await self.entity_cache.resolve(workspace, entity, force=True)
        logger.info("schema_saved", workspace=workspace, entity=entity, sub_entity=sub_entity)
        return stored

    async def delete_schema(
        self, workspace: str, schema_id: str, sub_schema_id: Optional[str] = None
    ) -> Dict[str, Any]:
        ref = self._schema_ref(workspace, schema_id, sub_schema_id)
        document = await asyncio.to_thread(self.store.get, ref)
        if document is None:
            raise SchemaNotFoundError(
                "schema not found", detail={"schemaId": sub_schema_id or schema_id}
            )
        await asyncio.to_thread(self.store.delete, ref)
        if sub_schema_id:
            self.registry.invalidate(workspace, schema_id, sub_schema_id)
            await self.entity_cache.resolve(workspace, schema_id, force=True)
        else:
            sub_schemas = await asyncio.to_thread(
                self.store.list_documents,
                entity_ref(workspace, schema_id).collection(OBJECT_SCHEMAS),
            )
            for sub_schema in sub_schemas:
                await asyncio.to_thread(self.store.delete, DocumentRef(sub_schema.path))
            self.registry.invalidate_entity(
                workspace, schema_id, [doc.id for doc in sub_schemas]
            )
            await asyncio.to_thread(self.store.delete, entity_ref(workspace, schema_id))
            self.entity_cache.invalidate(workspace, schema_id)
        logger.info(
            "schema_deleted", workspace=workspace, entity=schema_id, sub_entity=sub_schema_id
        )
        return document.data

    # -- expressions, webhooks, actions -------------------------------------

    async def list_items(self, workspace: str, entity: str, kind: str) -> List[Dict[str, Any]]:
        config = await self.entity_cache.resolve(workspace, entity)
        return list(getattr(config, kind))

    async def get_item(
        self, workspace: str, entity: str, kind: str, item_id: str
    ) -> Dict[str, Any]:
        config = await self.entity_cache.resolve(workspace, entity)
        item = next((i for i in getattr(config, kind) if i.get("id") == item_id), None)
        if item is None:
            error, message = _NOT_FOUND[kind]
            raise error(message, detail={"id": item_id})
        return item

    async def save_item(
        self,
        workspace: str,
        entity: str,
        kind: str,
        data: Dict[str, Any],
        *,
        item_id: Optional[str] = None,
        must_exist: bool = False,
    ) -> Dict[str, Any]:
        """Store an expression, webhook or action under ``entity``."""
        if kind == EXPRESSIONS:
            compile_expression(data.get("expression"))
        # The entity must exist before anything can hang off it
        await self.entity_cache.resolve(workspace, entity)
        if must_exist and item_id is not None:
            await self.get_item(workspace, entity, kind, item_id)

        doc_id = item_id or data.get("id") or new_document_id()
        ref = entity_ref(workspace, entity).collection(kind).document(doc_id)
        stored = {**data, "id": ref.id}
        await asyncio.to_thread(self.store.set, ref, stored)
        await self.entity_cache.resolve(workspace, entity, force=True)
        logger.info("entity_config_saved", workspace=workspace, entity=entity, kind=kind, id=ref.id)
        return stored

    async def delete_item(
        self, workspace: str, entity: str, kind: str, item_id: str
    ) -> Dict[str, Any]:
        item = await self.get_item(workspace, entity, kind, item_id)
        ref = entity_ref(workspace, entity).collection(kind).document(item_id)
        await asyncio.to_thread(self.store.delete, ref)
        await self.entity_cache.resolve(workspace, entity, force=True)
        logger.info("entity_config_deleted", workspace=workspace, entity=entity, kind=kind, id=item_id)
        return item

    # -- workspace roles ----------------------------------------------------

    async def list_roles(self, workspace: str) -> List[Dict[str, Any]]:
        docs = await asyncio.to_thread(
            self.store.list_documents, workspace_roles_collection(workspace)
        )
        return [doc.data for doc in docs]

    async def get_role(self, workspace: str, role_id: str) -> Dict[str, Any]:
        ref = workspace_roles_collection(workspace).document(role_id)
        document = await asyncio.to_thread(self.store.get, ref)
        if document is None:
            raise RoleNotFoundError("role not found", detail={"id": role_id})
        return document.data

    async def save_role(
        self,
        workspace: str,
        data: Dict[str, Any],
        *,
        role_id: Optional[str] = None,
        must_exist: bool = False,
    ) -> Dict[str, Any]:
        if must_exist and role_id is not None:
            await self.get_role(workspace, role_id)
        ref = workspace_roles_collection(workspace).document(
            role_id or data.get("id") or new_document_id()
        )
        stored = {**data, "id": ref.id}
        await asyncio.to_thread(self.store.set, ref, stored)
        logger.info("role_saved", workspace=workspace, id=ref.id)
        return stored

    async def flush_cache(self) -> None:
        await self.response_cache.flush()
