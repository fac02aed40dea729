from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from entityapi.logging import get_logger
from entityapi.service.entity_cache import EntityCache, EntityConfig
from entityapi.service.errors import (
    AuthenticationError,
    ForbiddenError,
    MismatchError,
    MissingPreconditionError,
    ValidationError,
)
from entityapi.service.listing import ListPipeline, ListResult
from entityapi.service.objects import (
    ObjectGateway,
    ObjectResult,
    object_ref,
    objects_collection,
)
from entityapi.service.schema_registry import CompiledSchema, SchemaRegistry
from entityapi.storage.models import DocumentRef

logger = get_logger(__name__)

PUBLIC_ROLE = "public"

# HTTP method -> schema security operation for public routes
PUBLIC_OPERATIONS = {
    "GET": "read",
    "POST": "create",
    "PATCH": "update",
    "DELETE": "delete",
}


@dataclass(frozen=True)
class ResolvedEntity:
    """Everything one request needs to serve (workspace, entity[, sub-entity])."""

    workspace: str
    entity: str
    sub_entity: Optional[str]
    config: EntityConfig
    object_schema: CompiledSchema
    list_schema: CompiledSchema

    @property
    def schema_name(self) -> str:
        return f"{self.entity}/{self.sub_entity}" if self.sub_entity else self.entity


def _document_id(value: Any) -> str:
    doc_id = value if isinstance(value, str) else str(value)
    if not doc_id or "/" in doc_id:
        raise ValidationError("invalid object id", detail={"objectId": doc_id})
    return doc_id


def _id_value(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def _split_fields(fields: Optional[str]) -> List[str]:
    if not fields:
        return []
    return [name.strip() for name in fields.split(",") if name.strip()]


def check_public_access(method: str, object_schema: CompiledSchema) -> str:
    """Return the security operation for ``method`` if the schema opens it to the public."""
    operation = PUBLIC_OPERATIONS.get(method.upper())
    if operation is None:
        raise ForbiddenError("method not allowed", detail={"method": method})
    if PUBLIC_ROLE not in object_schema.security.get(operation, []):
        raise AuthenticationError("unauthorized", detail={"operation": operation})
    return operation


class DataEntityService:
    """Validating list/get/create/update/delete over tenant-defined entities.

    Payloads are validated against the compiled object schema on the way in
    and results are validated again on the way out.
    """

    def __init__(
        self,
        registry: SchemaRegistry,
        entity_cache: EntityCache,
        gateway: ObjectGateway,
        listing: ListPipeline,
    ) -> None:
        self.registry = registry
        self.entity_cache = entity_cache
        self.gateway = gateway
        self.listing = listing

    async def resolve(
        self, workspace: str, entity: str, sub_entity: Optional[str] = None
    ) -> ResolvedEntity:
        if not workspace:
            raise MissingPreconditionError("missing workspace")
        if not entity:
            raise MissingPreconditionError("missing data entity")
        config = await self.entity_cache.resolve(workspace, entity)
        object_schema, list_schema = self.registry.resolve(
            workspace, entity, sub_entity, config.object_schemas
        )
        return ResolvedEntity(
            workspace=workspace,
            entity=entity,
            sub_entity=sub_entity,
            config=config,
            object_schema=object_schema,
            list_schema=list_schema,
        )

    def _ref(
        self,
        resolved: ResolvedEntity,
        object_id: str,
        sub_object_id: Optional[str] = None,
    ) -> DocumentRef:
        if not object_id:
            raise MissingPreconditionError("missing objectId")
        return object_ref(
            resolved.workspace,
            resolved.entity,
            _document_id(object_id),
            resolved.sub_entity,
            _document_id(sub_object_id) if sub_object_id else None,
        )

    def list_parameters(
        self, resolved: ResolvedEntity, params: Mapping[str, Any]
    ) -> Tuple[List[Tuple[str, Any]], List[str]]:
        """Pick the filters and projection a list request may use.

        Filters on fields not flagged ``filter`` are dropped without error.
        A projection always carries the schema's required fields.
        """
        schema = resolved.list_schema
        filters = [
            (key, value) for key, value in params.items() if key in schema.filter_fields
        ]
        requested = _split_fields(params.get("fields"))
        selected = [name for name in schema.properties if name in requested]
        fields = list(dict.fromkeys([*selected, *schema.required])) if selected else []
        return filters, fields

    async def list_objects(
        self,
        resolved: ResolvedEntity,
        params: Mapping[str, Any],
        *,
        object_id: Optional[str] = None,
    ) -> ListResult:
        filters, fields = self.list_parameters(resolved, params)
        collection = objects_collection(
            resolved.workspace,
            resolved.entity,
            _document_id(object_id) if object_id else None,
            resolved.sub_entity,
        )
        result = await self.listing.list(
            collection,
            filters=filters,
            limit=params.get("limit"),
            offset=params.get("offset"),
            search_term=params.get("contextSearch"),
            count_total=params.get("countTotal") == "true",
            fields=fields,
            consistent_read=params.get("consistentRead") == "true",
        )
        resolved.list_schema.validate(result.objects)
        return result

    async def get_object(
        self,
        resolved: ResolvedEntity,
        object_id: str,
        sub_object_id: Optional[str] = None,
    ) -> ObjectResult:
        result = await self.gateway.get(self._ref(resolved, object_id, sub_object_id))
        resolved.object_schema.validate(result.object)
        return result

    async def create_object(
        self,
        resolved: ResolvedEntity,
        data: Any,
        *,
        object_id: Optional[str] = None,
        actor: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        if data is None:
            raise MissingPreconditionError("missing data")
        schema = resolved.object_schema
        schema.validate(data)

        collection = objects_collection(
            resolved.workspace,
            resolved.entity,
            _document_id(object_id) if object_id else None,
            resolved.sub_entity,
        )
        id_field = schema.object_id_field
        supplied = data.get(id_field) if id_field else None
        ref = (
            collection.document(_document_id(supplied))
            if supplied is not None
            else collection.document()
        )

        created = await self.gateway.create(data, ref, schema.searchable_fields, actor)
        schema.validate(created)
        return created

    async def update_object(
        self,
        resolved: ResolvedEntity,
        data: Any,
        object_id: str,
        *,
        sub_object_id: Optional[str] = None,
        actor: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        if data is None:
            raise MissingPreconditionError("missing data")
        schema = resolved.object_schema
        schema.validate(data)

        ref = self._ref(resolved, object_id, sub_object_id)
        id_field = schema.object_id_field
        if id_field and _id_value(data.get(id_field)) != ref.id:
            raise MismatchError(
                "objectId mismatch",
                detail={"objectId": ref.id, "field": id_field, "value": data.get(id_field)},
            )

        updated = await self.gateway.update(data, ref, schema.searchable_fields, actor)
        schema.validate(updated)
        return updated

    async def delete_object(
        self,
        resolved: ResolvedEntity,
        object_id: str,
        sub_object_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        return await self.gateway.delete(self._ref(resolved, object_id, sub_object_id))
