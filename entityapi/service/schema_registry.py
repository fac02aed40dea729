from __future__ import annotations

import copy
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError

from entityapi.logging import get_logger
from entityapi.service.errors import (
    EntityNotFoundError,
    SchemaCompilationError,
    SchemaValidationError,
)

logger = get_logger(__name__)

MAX_FILTER_FIELDS = 10
MAX_SEARCHABLE_FIELDS = 10
SECURITY_OPERATIONS = ("create", "read", "update", "delete", "list")
SYSTEM_FIELDS = ("objectId", "createdAt", "updatedAt", "createdBy", "updatedBy")

_ACTOR_SCHEMA: Dict[str, Any] = {
    "type": ["object", "null"],
    "default": None,
    "properties": {
        "email": {"type": "string", "format": "email"},
        "id": {"type": "string"},
    },
}

# Added to every entity schema before compilation; wins over user fields
SYSTEM_PROPERTIES: Dict[str, Dict[str, Any]] = {
    "createdAt": {"type": "string", "format": "date-time"},
    "createdBy": _ACTOR_SCHEMA,
    "objectId": {"type": "string"},
    "updatedAt": {"type": "string", "format": "date-time"},
    "updatedBy": _ACTOR_SCHEMA,
}

_BOOLEAN_KEYWORDS = ("objectId", "filter", "searchable")

_SECURITY_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        op: {"type": "array", "items": {"type": "string"}} for op in SECURITY_OPERATIONS
    },
    "additionalProperties": False,
}
_SECURITY_VALIDATOR = Draft202012Validator(_SECURITY_SCHEMA)

# Shape every stored entity schema definition must have
SCHEMA_DEFINITION_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "properties": {
        "$id": {"type": "string", "pattern": "^[A-Za-z0-9_-]+$"},
        "$schema": {"type": "string"},
        "additionalProperties": {"type": "boolean", "default": False},
        "description": {"type": "string"},
        "title": {"type": "string"},
        "properties": {
            "type": "object",
            "minProperties": 1,
            "additionalProperties": {
                "type": "object",
                "properties": {
                    "type": {
                        "anyOf": [
                            {"type": "string"},
                            {"type": "array", "items": {"type": "string"}},
                        ]
                    },
                    "description": {"type": "string"},
                    "format": {"type": "string"},
                    "security": {"type": "object"},
                },
                "required": ["type"],
            },
        },
        "required": {"type": "array", "items": {"type": "string"}},
        "security": {"type": "object"},
        "type": {"enum": ["object"]},
    },
    "required": ["$id", "type", "properties"],
    "additionalProperties": False,
}
_DEFINITION_VALIDATOR = Draft202012Validator(SCHEMA_DEFINITION_SCHEMA)


def schema_id(workspace: str, entity: str, sub_entity: Optional[str] = None) -> str:
    base = f"{workspace}/schemas/{entity}"
    return f"{base}/{sub_entity}" if sub_entity else base


def list_schema_id(workspace: str, entity: str, sub_entity: Optional[str] = None) -> str:
    return f"{schema_id(workspace, entity, sub_entity)}/list"


def collect_errors(validator: Any, instance: Any) -> List[Dict[str, Any]]:
    """Return every violation of ``instance``, ordered by location."""
    errors = sorted(
        validator.iter_errors(instance),
        key=lambda e: [str(p) for p in e.absolute_path],
    )
    return [
        {
            "path": "/" + "/".join(str(p) for p in e.absolute_path),
            "message": e.message,
            "keyword": e.validator,
        }
        for e in errors
    ]


@dataclass(frozen=True)
class SchemaKeywords:
    """Custom keyword side-table extracted once at compile time."""

    object_id_field: Optional[str] = None
    filter_fields: Tuple[str, ...] = ()
    searchable_fields: Tuple[str, ...] = ()
    security: Dict[str, List[str]] = field(default_factory=dict)


@dataclass(frozen=True)
class CompiledSchema:
    id: str
    schema: Dict[str, Any]
    validator: Any
    keywords: SchemaKeywords
    required: Tuple[str, ...] = ()
    properties: Tuple[str, ...] = ()

    @property
    def object_id_field(self) -> Optional[str]:
        return self.keywords.object_id_field

    @property
    def filter_fields(self) -> Tuple[str, ...]:
        return self.keywords.filter_fields

    @property
    def searchable_fields(self) -> Tuple[str, ...]:
        return self.keywords.searchable_fields

    @property
    def security(self) -> Dict[str, List[str]]:
        return self.keywords.security

    def iter_errors(self, instance: Any) -> List[Dict[str, Any]]:
        return collect_errors(self.validator, instance)

    def is_valid(self, instance: Any) -> bool:
        return self.validator.is_valid(instance)

    def validate(self, instance: Any, message: str = "invalid data") -> None:
        errors = self.iter_errors(instance)
        if errors:
            raise SchemaValidationError(message, errors)


def _check_security(value: Any, where: str) -> Dict[str, List[str]]:
    errors = collect_errors(_SECURITY_VALIDATOR, value)
    if errors:
        raise SchemaCompilationError(
            f"invalid security definition at {where}", detail=errors
        )
    return {op: list(roles) for op, roles in value.items()}


def extract_keywords(schema: Dict[str, Any]) -> SchemaKeywords:
    """Walk the property definitions once and enforce keyword invariants.

    An array schema is checked through its ``items`` definition.
    """
    target = schema
    if schema.get("type") == "array" and isinstance(schema.get("items"), dict):
        target = schema["items"]

    properties = target.get("properties") or {}
    if not isinstance(properties, dict):
        raise SchemaCompilationError("schema properties must be an object")
    required = target.get("required") or []

    object_ids: List[str] = []
    filters: List[str] = []
    searchable: List[str] = []
    for name, definition in properties.items():
        if not isinstance(definition, dict):
            continue
        for keyword in _BOOLEAN_KEYWORDS:
            if keyword in definition and not isinstance(definition[keyword], bool):
                raise SchemaCompilationError(
                    f"{keyword} must be a boolean", detail={"property": name}
                )
        if definition.get("objectId"):
            object_ids.append(name)
        if definition.get("filter"):
            filters.append(name)
        if definition.get("searchable"):
            searchable.append(name)
        if "security" in definition:
            _check_security(definition["security"], f"properties/{name}")

    if len(object_ids) > 1:
        raise SchemaCompilationError("too many unique params", detail={"fields": object_ids})
    if object_ids and object_ids[0] not in required:
        raise SchemaCompilationError(
            "objectId param is not set as required", detail={"field": object_ids[0]}
        )
    if len(filters) > MAX_FILTER_FIELDS:
        raise SchemaCompilationError(
            "too many filters", detail={"fields": filters, "max": MAX_FILTER_FIELDS}
        )
    if len(searchable) > MAX_SEARCHABLE_FIELDS:
        raise SchemaCompilationError(
            "too many searchable params",
            detail={"fields": searchable, "max": MAX_SEARCHABLE_FIELDS},
        )

    security = _check_security(target["security"], "security") if "security" in target else {}
    return SchemaKeywords(
        object_id_field=object_ids[0] if object_ids else None,
        filter_fields=tuple(filters),
        searchable_fields=tuple(searchable),
        security=security,
    )


def validate_definition(definition: Any) -> None:
    """Check a stored entity schema definition before it is compiled."""
    if not isinstance(definition, dict):
        raise SchemaValidationError("invalid schema", [{"path": "/", "message": "schema must be an object", "keyword": "type"}])
    errors = collect_errors(_DEFINITION_VALIDATOR, definition)
    if errors:
        raise SchemaValidationError("invalid schema", errors)


def augment_schema(definition: Dict[str, Any], compiled_id: str) -> Dict[str, Any]:
    """Return the object schema: the definition plus system-managed fields."""
    schema = copy.deepcopy(definition)
    schema["$id"] = compiled_id
    schema["properties"] = {
        **(schema.get("properties") or {}),
        **copy.deepcopy(SYSTEM_PROPERTIES),
    }
    return schema


def wrap_list_schema(object_schema: Dict[str, Any], compiled_id: str) -> Dict[str, Any]:
    items = {k: v for k, v in object_schema.items() if k != "$id"}
    return {"$id": compiled_id, "type": "array", "items": items}


class SchemaRegistry:
    """Owns compiled validators, keyed by their ``$id``.

    An id must be removed before it can be compiled again.
    """

    def __init__(self) -> None:
        self._compiled: Dict[str, CompiledSchema] = {}
        self._lock = threading.RLock()

    def compile(self, schema: Dict[str, Any]) -> CompiledSchema:
        compiled_id = schema.get("$id")
        if not compiled_id or not isinstance(compiled_id, str):
            raise SchemaCompilationError("schema is missing $id")
        keywords = extract_keywords(schema)
        body = {k: v for k, v in schema.items() if k != "$id"}
        try:
            Draft202012Validator.check_schema(body)
        except SchemaError as exc:
            raise SchemaCompilationError(
                "invalid schema",
                detail={
                    "reason": exc.message,
                    "path": "/" + "/".join(str(p) for p in exc.absolute_path),
                },
            ) from exc

        validator = Draft202012Validator(
            body, format_checker=Draft202012Validator.FORMAT_CHECKER
        )
        target = schema["items"] if schema.get("type") == "array" and isinstance(schema.get("items"), dict) else schema
        compiled = CompiledSchema(
            id=compiled_id,
            schema=schema,
            validator=validator,
            keywords=keywords,
            required=tuple(target.get("required") or ()),
            properties=tuple((target.get("properties") or {}).keys()),
        )
        with self._lock:
            if compiled_id in self._compiled:
                raise SchemaCompilationError(
                    "schema is already compiled", detail={"id": compiled_id}
                )
            self._compiled[compiled_id] = compiled
        return compiled

    def get_compiled(self, compiled_id: str) -> Optional[CompiledSchema]:
        return self._compiled.get(compiled_id)

    def remove(self, compiled_id: str) -> None:
        with self._lock:
            self._compiled.pop(compiled_id, None)

    def invalidate(self, workspace: str, entity: str, sub_entity: Optional[str] = None) -> None:
        self.remove(schema_id(workspace, entity, sub_entity))
        self.remove(list_schema_id(workspace, entity, sub_entity))

    def invalidate_entity(self, workspace: str, entity: str, sub_entities: Iterable[str] = ()) -> None:
        self.invalidate(workspace, entity)
        for sub_entity in sub_entities:
            self.invalidate(workspace, entity, sub_entity)

    def compile_pair(
        self,
        workspace: str,
        entity: str,
        sub_entity: Optional[str],
        definition: Dict[str, Any],
    ) -> Tuple[CompiledSchema, CompiledSchema]:
        """Compile the object and list validators for one definition.

        Existing entries for both ids are dropped first. If either compile
        fails, neither id stays registered.
        """
        object_id = schema_id(workspace, entity, sub_entity)
        list_id = list_schema_id(workspace, entity, sub_entity)
        object_schema = augment_schema(definition, object_id)
        list_schema = wrap_list_schema(object_schema, list_id)
        with self._lock:
            self.remove(object_id)
            self.remove(list_id)
            try:
                compiled_object = self.compile(object_schema)
                compiled_list = self.compile(list_schema)
            except SchemaCompilationError:
                self.remove(object_id)
                self.remove(list_id)
                raise
        logger.info("schema_compiled", schema_id=object_id)
        return compiled_object, compiled_list

    def resolve(
        self,
        workspace: str,
        entity: str,
        sub_entity: Optional[str],
        object_schemas: Iterable[Dict[str, Any]],
    ) -> Tuple[CompiledSchema, CompiledSchema]:
        """Return the compiled (object, list) pair, compiling on first use."""
        object_id = schema_id(workspace, entity, sub_entity)
        list_id = list_schema_id(workspace, entity, sub_entity)
        with self._lock:
            compiled_object = self.get_compiled(object_id)
            compiled_list = self.get_compiled(list_id)
            if compiled_object is not None and compiled_list is not None:
                return compiled_object, compiled_list

            wanted = sub_entity or entity
            definition = next(
                (s for s in object_schemas if isinstance(s, dict) and s.get("$id") == wanted),
                None,
            )
            if definition is None:
                raise EntityNotFoundError(
                    "entity not found",
                    detail={"entity": entity, "sub_entity": sub_entity},
                )
            return self.compile_pair(workspace, entity, sub_entity, definition)
