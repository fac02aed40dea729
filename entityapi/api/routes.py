from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query, Request, Response

from entityapi.api.schemas import (
    ActionRequest,
    Envelope,
    ExpressionRequest,
    RoleRequest,
    UserRequest,
    WebhookRequest,
)
from entityapi.logging import get_logger
from entityapi.service.data_entities import ResolvedEntity, check_public_access
from entityapi.service.entity_cache import ACTIONS, EXPRESSIONS, WEBHOOKS
from entityapi.service.errors import MismatchError, MissingPreconditionError
from entityapi.service.identity import resolve_actor
from entityapi.service.listing import clamp_limit, parse_offset
from entityapi.service.runtime import Runtime, get_runtime

logger = get_logger(__name__)

router = APIRouter(prefix="/v1")
public_router = APIRouter(prefix="/v1/public/data-entities")

X_WORKSPACE = "X-Workspace"
X_SCHEMA = "X-Schema"
X_CACHED = "X-Cached"
X_TOTAL_COUNT = "X-Total-Count"
X_EXPRESSION = "X-Expression"
X_WEBHOOK = "X-Webhook"


def get_workspace(request: Request, response: Response) -> str:
    """Workspace for this request: the configured override, else the host name."""
    runtime = get_runtime()
    workspace = runtime.settings.override_workspace or request.url.hostname
    if not workspace:
        raise MissingPreconditionError("missing workspace")
    response.headers[X_WORKSPACE] = workspace
    return workspace


# -- data entity pipelines ---------------------------------------------------


async def _resolve(
    request: Request,
    response: Response,
    workspace: str,
    entity: str,
    sub_entity: Optional[str],
    public: bool,
) -> ResolvedEntity:
    runtime = get_runtime()
    resolved = await runtime.data_entities.resolve(workspace, entity, sub_entity)
    if public:
        check_public_access(request.method, resolved.object_schema)
    response.headers[X_SCHEMA] = resolved.schema_name
    return resolved


async def _transform(
    runtime: Runtime,
    request: Request,
    response: Response,
    resolved: ResolvedEntity,
    payload: Any,
) -> Any:
    expression_id = request.query_params.get("expression")
    if not expression_id:
        return payload
    result = await runtime.expressions.evaluate(expression_id, payload, resolved.config)
    response.headers[X_EXPRESSION] = expression_id
    return result


async def _after_mutation(
    runtime: Runtime,
    request: Request,
    response: Response,
    resolved: ResolvedEntity,
    payload: Any,
    *,
    object_id: Optional[str],
    run_actions: bool = True,
) -> Any:
    webhook_ids = await runtime.webhooks.dispatch(
        resolved.config.webhooks,
        payload,
        method=request.method,
        workspace=resolved.workspace,
        entity=resolved.entity,
        object_id=object_id,
    )
    if webhook_ids:
        response.headers[X_WEBHOOK] = ",".join(webhook_ids)
    if not run_actions:
        return payload
    return await runtime.actions.run(
        resolved.config.actions,
        payload,
        workspace=resolved.workspace,
        entity=resolved.entity,
        object_id=object_id,
        schema_id=resolved.schema_name,
    )


async def _list_objects(
    request: Request,
    response: Response,
    workspace: str,
    entity: str,
    object_id: Optional[str] = None,
    sub_entity: Optional[str] = None,
    *,
    public: bool = False,
) -> Envelope:
    runtime = get_runtime()
    resolved = await _resolve(request, response, workspace, entity, sub_entity, public)
    result = await runtime.data_entities.list_objects(
        resolved, dict(request.query_params), object_id=object_id
    )
    if result.count is not None:
        response.headers[X_TOTAL_COUNT] = str(result.count)
    if result.cached:
        response.headers[X_CACHED] = "true"
    data = await _transform(runtime, request, response, resolved, result.objects)
    return Envelope(status="ok", data=data)


async def _get_object(
    request: Request,
    response: Response,
    workspace: str,
    entity: str,
    object_id: str,
    sub_entity: Optional[str] = None,
    sub_object_id: Optional[str] = None,
    *,
    public: bool = False,
) -> Envelope:
    runtime = get_runtime()
    resolved = await _resolve(request, response, workspace, entity, sub_entity, public)
    result = await runtime.data_entities.get_object(resolved, object_id, sub_object_id)
    if result.cached:
        response.headers[X_CACHED] = "true"
    data = await _transform(runtime, request, response, resolved, result.object)
    return Envelope(status="ok", data=data)


async def _create_object(
    request: Request,
    response: Response,
    workspace: str,
    entity: str,
    body: Any,
    object_id: Optional[str] = None,
    sub_entity: Optional[str] = None,
    *,
    public: bool = False,
) -> Envelope:
    runtime = get_runtime()
    resolved = await _resolve(request, response, workspace, entity, sub_entity, public)
    created = await runtime.data_entities.create_object(
        resolved, body, object_id=object_id, actor=resolve_actor(request.headers)
    )
    data = await _after_mutation(
        runtime, request, response, resolved, created, object_id=object_id
    )
    return Envelope(status="ok", data=data)


async def _update_object(
    request: Request,
    response: Response,
    workspace: str,
    entity: str,
    body: Any,
    object_id: str,
    sub_entity: Optional[str] = None,
    sub_object_id: Optional[str] = None,
    *,
    public: bool = False,
) -> Envelope:
    runtime = get_runtime()
    resolved = await _resolve(request, response, workspace, entity, sub_entity, public)
    updated = await runtime.data_entities.update_object(
        resolved,
        body,
        object_id,
        sub_object_id=sub_object_id,
        actor=resolve_actor(request.headers),
    )
    data = await _after_mutation(
        runtime, request, response, resolved, updated, object_id=object_id
    )
    return Envelope(status="ok", data=data)


async def _delete_object(
    request: Request,
    response: Response,
    workspace: str,
    entity: str,
    object_id: str,
    sub_entity: Optional[str] = None,
    sub_object_id: Optional[str] = None,
    *,
    public: bool = False,
) -> Envelope:
    runtime = get_runtime()
    resolved = await _resolve(request, response, workspace, entity, sub_entity, public)
    deleted = await runtime.data_entities.delete_object(resolved, object_id, sub_object_id)
    data = await _after_mutation(
        runtime,
        request,
        response,
        resolved,
        deleted,
        object_id=object_id,
        run_actions=False,
    )
    return Envelope(status="ok", data=data)


# -- schemas -------------------------------------------------------------------


@router.get("/data-entities/schemas", response_model=Envelope, tags=["schemas"])
async def list_schemas(workspace: str = Depends(get_workspace)):
    runtime = get_runtime()
    return Envelope(status="ok", data=await runtime.config_ops.list_schemas(workspace))


@router.post("/data-entities/schemas", response_model=Envelope, status_code=201, tags=["schemas"])
async def create_schema(body: Any = Body(None), workspace: str = Depends(get_workspace)):
    runtime = get_runtime()
    schema = await runtime.config_ops.save_schema(workspace, body)
    return Envelope(status="ok", data=schema)


@router.get("/data-entities/schemas/{schema_id}", response_model=Envelope, tags=["schemas"])
async def get_schema(schema_id: str, workspace: str = Depends(get_workspace)):
    runtime = get_runtime()
    return Envelope(status="ok", data=await runtime.config_ops.get_schema(workspace, schema_id))


@router.patch("/data-entities/schemas/{schema_id}", response_model=Envelope, tags=["schemas"])
async def update_schema(
    schema_id: str, body: Any = Body(None), workspace: str = Depends(get_workspace)
):
    runtime = get_runtime()
    schema = await runtime.config_ops.save_schema(
        workspace, body, route_id=schema_id, must_exist=True
    )
    return Envelope(status="ok", data=schema)


@router.delete("/data-entities/schemas/{schema_id}", response_model=Envelope, tags=["schemas"])
async def delete_schema(schema_id: str, workspace: str = Depends(get_workspace)):
    runtime = get_runtime()
    removed = await runtime.config_ops.delete_schema(workspace, schema_id)
    return Envelope(status="ok", data=removed)


@router.post(
    "/data-entities/schemas/{schema_id}/sub-schemas",
    response_model=Envelope,
    status_code=201,
    tags=["schemas"],
)
async def create_sub_schema(
    schema_id: str, body: Any = Body(None), workspace: str = Depends(get_workspace)
):
    runtime = get_runtime()
    schema = await runtime.config_ops.save_schema(workspace, body, parent_id=schema_id)
    return Envelope(status="ok", data=schema)


@router.get(
    "/data-entities/schemas/{schema_id}/sub-schemas/{sub_schema_id}",
    response_model=Envelope,
    tags=["schemas"],
)
async def get_sub_schema(
    schema_id: str, sub_schema_id: str, workspace: str = Depends(get_workspace)
):
    runtime = get_runtime()
    schema = await runtime.config_ops.get_schema(workspace, schema_id, sub_schema_id)
    return Envelope(status="ok", data=schema)


@router.patch(
    "/data-entities/schemas/{schema_id}/sub-schemas/{sub_schema_id}",
    response_model=Envelope,
    tags=["schemas"],
)
async def update_sub_schema(
    schema_id: str,
    sub_schema_id: str,
    body: Any = Body(None),
    workspace: str = Depends(get_workspace),
):
    runtime = get_runtime()
    schema = await runtime.config_ops.save_schema(
        workspace, body, parent_id=schema_id, route_id=sub_schema_id, must_exist=True
    )
    return Envelope(status="ok", data=schema)


@router.delete(
    "/data-entities/schemas/{schema_id}/sub-schemas/{sub_schema_id}",
    response_model=Envelope,
    tags=["schemas"],
)
async def delete_sub_schema(
    schema_id: str, sub_schema_id: str, workspace: str = Depends(get_workspace)
):
    runtime = get_runtime()
    removed = await runtime.config_ops.delete_schema(workspace, schema_id, sub_schema_id)
    return Envelope(status="ok", data=removed)


# -- expressions, webhooks, actions --------------------------------------------


@router.get("/data-entities/{entity}/expressions", response_model=Envelope, tags=["expressions"])
async def list_expressions(entity: str, workspace: str = Depends(get_workspace)):
    runtime = get_runtime()
    items = await runtime.config_ops.list_items(workspace, entity, EXPRESSIONS)
    return Envelope(status="ok", data=items)


@router.post(
    "/data-entities/{entity}/expressions",
    response_model=Envelope,
    status_code=201,
    tags=["expressions"],
)
async def create_expression(
    entity: str, body: ExpressionRequest, workspace: str = Depends(get_workspace)
):
    runtime = get_runtime()
    item = await runtime.config_ops.save_item(workspace, entity, EXPRESSIONS, body.to_record())
    return Envelope(status="ok", data=item)


@router.get(
    "/data-entities/{entity}/expressions/{expression_id}",
    response_model=Envelope,
    tags=["expressions"],
)
async def get_expression(
    entity: str, expression_id: str, workspace: str = Depends(get_workspace)
):
    runtime = get_runtime()
    item = await runtime.config_ops.get_item(workspace, entity, EXPRESSIONS, expression_id)
    return Envelope(status="ok", data=item)


@router.patch(
    "/data-entities/{entity}/expressions/{expression_id}",
    response_model=Envelope,
    tags=["expressions"],
)
async def update_expression(
    entity: str,
    expression_id: str,
    body: ExpressionRequest,
    workspace: str = Depends(get_workspace),
):
    runtime = get_runtime()
    item = await runtime.config_ops.save_item(
        workspace,
        entity,
        EXPRESSIONS,
        body.to_record(),
        item_id=expression_id,
        must_exist=True,
    )
    return Envelope(status="ok", data=item)


@router.delete(
    "/data-entities/{entity}/expressions/{expression_id}",
    response_model=Envelope,
    tags=["expressions"],
)
async def delete_expression(
    entity: str, expression_id: str, workspace: str = Depends(get_workspace)
):
    runtime = get_runtime()
    item = await runtime.config_ops.delete_item(workspace, entity, EXPRESSIONS, expression_id)
    return Envelope(status="ok", data=item)


@router.get("/data-entities/{entity}/webhooks", response_model=Envelope, tags=["webhooks"])
async def list_webhooks(entity: str, workspace: str = Depends(get_workspace)):
    runtime = get_runtime()
    items = await runtime.config_ops.list_items(workspace, entity, WEBHOOKS)
    return Envelope(status="ok", data=items)


@router.post(
    "/data-entities/{entity}/webhooks",
    response_model=Envelope,
    status_code=201,
    tags=["webhooks"],
)
async def create_webhook(
    entity: str, body: WebhookRequest, workspace: str = Depends(get_workspace)
):
    runtime = get_runtime()
    item = await runtime.config_ops.save_item(workspace, entity, WEBHOOKS, body.to_record())
    return Envelope(status="ok", data=item)


@router.get(
    "/data-entities/{entity}/webhooks/{webhook_id}",
    response_model=Envelope,
    tags=["webhooks"],
)
async def get_webhook(entity: str, webhook_id: str, workspace: str = Depends(get_workspace)):
    runtime = get_runtime()
    item = await runtime.config_ops.get_item(workspace, entity, WEBHOOKS, webhook_id)
    return Envelope(status="ok", data=item)


@router.patch(
    "/data-entities/{entity}/webhooks/{webhook_id}",
    response_model=Envelope,
    tags=["webhooks"],
)
async def update_webhook(
    entity: str,
    webhook_id: str,
    body: WebhookRequest,
    workspace: str = Depends(get_workspace),
):
    runtime = get_runtime()
    item = await runtime.config_ops.save_item(
        workspace, entity, WEBHOOKS, body.to_record(), item_id=webhook_id, must_exist=True
    )
    return Envelope(status="ok", data=item)


@router.delete(
    "/data-entities/{entity}/webhooks/{webhook_id}",
    response_model=Envelope,
    tags=["webhooks"],
)
async def delete_webhook(entity: str, webhook_id: str, workspace: str = Depends(get_workspace)):
    runtime = get_runtime()
    item = await runtime.config_ops.delete_item(workspace, entity, WEBHOOKS, webhook_id)
    return Envelope(status="ok", data=item)


@router.get("/data-entities/{entity}/actions", response_model=Envelope, tags=["actions"])
async def list_actions(entity: str, workspace: str = Depends(get_workspace)):
    runtime = get_runtime()
    items = await runtime.config_ops.list_items(workspace, entity, ACTIONS)
    return Envelope(status="ok", data=items)


@router.post(
    "/data-entities/{entity}/actions",
    response_model=Envelope,
    status_code=201,
    tags=["actions"],
)
async def create_action(entity: str, body: ActionRequest, workspace: str = Depends(get_workspace)):
    runtime = get_runtime()
    item = await runtime.config_ops.save_item(workspace, entity, ACTIONS, body.to_record())
    return Envelope(status="ok", data=item)


@router.get(
    "/data-entities/{entity}/actions/{action_id}",
    response_model=Envelope,
    tags=["actions"],
)
async def get_action(entity: str, action_id: str, workspace: str = Depends(get_workspace)):
    runtime = get_runtime()
    item = await runtime.config_ops.get_item(workspace, entity, ACTIONS, action_id)
    return Envelope(status="ok", data=item)


@router.patch(
    "/data-entities/{entity}/actions/{action_id}",
    response_model=Envelope,
    tags=["actions"],
)
async def update_action(
    entity: str,
    action_id: str,
    body: ActionRequest,
    workspace: str = Depends(get_workspace),
):
    runtime = get_runtime()
    item = await runtime.config_ops.save_item(
        workspace, entity, ACTIONS, body.to_record(), item_id=action_id, must_exist=True
    )
    return Envelope(status="ok", data=item)


@router.delete(
    "/data-entities/{entity}/actions/{action_id}",
    response_model=Envelope,
    tags=["actions"],
)
async def delete_action(entity: str, action_id: str, workspace: str = Depends(get_workspace)):
    runtime = get_runtime()
    item = await runtime.config_ops.delete_item(workspace, entity, ACTIONS, action_id)
    return Envelope(status="ok", data=item)


# -- workspace config: roles, users, cache -------------------------------------


@router.get("/config/roles", response_model=Envelope, tags=["config"])
async def list_roles(workspace: str = Depends(get_workspace)):
    runtime = get_runtime()
    return Envelope(status="ok", data=await runtime.config_ops.list_roles(workspace))


@router.post("/config/roles", response_model=Envelope, status_code=201, tags=["config"])
async def create_role(body: RoleRequest, workspace: str = Depends(get_workspace)):
    runtime = get_runtime()
    role = await runtime.config_ops.save_role(workspace, body.to_record())
    return Envelope(status="ok", data=role)


@router.get("/config/roles/{role_id}", response_model=Envelope, tags=["config"])
async def get_role(role_id: str, workspace: str = Depends(get_workspace)):
    runtime = get_runtime()
    return Envelope(status="ok", data=await runtime.config_ops.get_role(workspace, role_id))


@router.patch("/config/roles/{role_id}", response_model=Envelope, tags=["config"])
async def update_role(role_id: str, body: RoleRequest, workspace: str = Depends(get_workspace)):
    runtime = get_runtime()
    role = await runtime.config_ops.save_role(
        workspace, body.to_record(), role_id=role_id, must_exist=True
    )
    return Envelope(status="ok", data=role)


@router.get("/config/users", response_model=Envelope, tags=["config"])
async def list_users(
    limit: Optional[str] = Query(None),
    offset: Optional[str] = Query(None),
    workspace: str = Depends(get_workspace),
):
    runtime = get_runtime()
    users = await runtime.identity.list_users(
        workspace, offset=parse_offset(offset) or 0, limit=clamp_limit(limit)
    )
    return Envelope(status="ok", data=users)


@router.get("/config/users/{email}", response_model=Envelope, tags=["config"])
async def get_user(email: str, workspace: str = Depends(get_workspace)):
    runtime = get_runtime()
    return Envelope(status="ok", data=await runtime.identity.get_user(email, workspace))


@router.post("/config/users", response_model=Envelope, tags=["config"])
async def create_user(body: UserRequest, workspace: str = Depends(get_workspace)):
    runtime = get_runtime()
    user = await runtime.identity.create_user(body.to_record(), workspace)
    return Envelope(status="ok", data=user)


@router.patch("/config/users/{email}", response_model=Envelope, tags=["config"])
async def update_user(email: str, body: UserRequest, workspace: str = Depends(get_workspace)):
    runtime = get_runtime()
    if body.email != email.strip().lower():
        raise MismatchError("email mismatch", detail={"route": email, "email": body.email})
    user = await runtime.identity.update_user(body.to_record(), workspace)
    return Envelope(status="ok", data=user)


@router.delete("/config/cache", response_model=Envelope, tags=["config"])
async def flush_cache(workspace: str = Depends(get_workspace)):
    runtime = get_runtime()
    await runtime.config_ops.flush_cache()
    logger.info("response_cache_flush_requested", workspace=workspace)
    return Envelope(status="ok", data={"flushed": True})


# -- data entity objects (private) ---------------------------------------------


@router.get("/data-entities/{entity}", response_model=Envelope, tags=["data-entities"])
async def list_objects(
    entity: str, request: Request, response: Response, workspace: str = Depends(get_workspace)
):
    return await _list_objects(request, response, workspace, entity)


@router.post(
    "/data-entities/{entity}", response_model=Envelope, status_code=201, tags=["data-entities"]
)
async def create_object(
    entity: str,
    request: Request,
    response: Response,
    body: Any = Body(None),
    workspace: str = Depends(get_workspace),
):
    return await _create_object(request, response, workspace, entity, body)


@router.get("/data-entities/{entity}/{object_id}", response_model=Envelope, tags=["data-entities"])
async def get_object(
    entity: str,
    object_id: str,
    request: Request,
    response: Response,
    workspace: str = Depends(get_workspace),
):
    return await _get_object(request, response, workspace, entity, object_id)


@router.patch("/data-entities/{entity}/{object_id}", response_model=Envelope, tags=["data-entities"])
async def update_object(
    entity: str,
    object_id: str,
    request: Request,
    response: Response,
    body: Any = Body(None),
    workspace: str = Depends(get_workspace),
):
    return await _update_object(request, response, workspace, entity, body, object_id)


@router.delete("/data-entities/{entity}/{object_id}", response_model=Envelope, tags=["data-entities"])
async def delete_object(
    entity: str,
    object_id: str,
    request: Request,
    response: Response,
    workspace: str = Depends(get_workspace),
):
    return await _delete_object(request, response, workspace, entity, object_id)


@router.get(
    "/data-entities/{entity}/{object_id}/{sub_entity}",
    response_model=Envelope,
    tags=["data-entities"],
)
async def list_sub_objects(
    entity: str,
    object_id: str,
    sub_entity: str,
    request: Request,
    response: Response,
    workspace: str = Depends(get_workspace),
):
    return await _list_objects(request, response, workspace, entity, object_id, sub_entity)


@router.post(
    "/data-entities/{entity}/{object_id}/{sub_entity}",
    response_model=Envelope,
    status_code=201,
    tags=["data-entities"],
)
async def create_sub_object(
    entity: str,
    object_id: str,
    sub_entity: str,
    request: Request,
    response: Response,
    body: Any = Body(None),
    workspace: str = Depends(get_workspace),
):
    return await _create_object(
        request, response, workspace, entity, body, object_id, sub_entity
    )


@router.get(
    "/data-entities/{entity}/{object_id}/{sub_entity}/{sub_object_id}",
    response_model=Envelope,
    tags=["data-entities"],
)
async def get_sub_object(
    entity: str,
    object_id: str,
    sub_entity: str,
    sub_object_id: str,
    request: Request,
    response: Response,
    workspace: str = Depends(get_workspace),
):
    return await _get_object(
        request, response, workspace, entity, object_id, sub_entity, sub_object_id
    )


@router.patch(
    "/data-entities/{entity}/{object_id}/{sub_entity}/{sub_object_id}",
    response_model=Envelope,
    tags=["data-entities"],
)
async def update_sub_object(
    entity: str,
    object_id: str,
    sub_entity: str,
    sub_object_id: str,
    request: Request,
    response: Response,
    body: Any = Body(None),
    workspace: str = Depends(get_workspace),
):
    return await _update_object(
        request, response, workspace, entity, body, object_id, sub_entity, sub_object_id
    )


@router.delete(
    "/data-entities/{entity}/{object_id}/{sub_entity}/{sub_object_id}",
    response_model=Envelope,
    tags=["data-entities"],
)
async def delete_sub_object(
    entity: str,
    object_id: str,
    sub_entity: str,
    sub_object_id: str,
    request: Request,
    response: Response,
    workspace: str = Depends(get_workspace),
):
    return await _delete_object(
        request, response, workspace, entity, object_id, sub_entity, sub_object_id
    )


# -- data entity objects (public) ----------------------------------------------


@public_router.get("/{entity}", response_model=Envelope, tags=["public"])
async def public_list_objects(
    entity: str, request: Request, response: Response, workspace: str = Depends(get_workspace)
):
    return await _list_objects(request, response, workspace, entity, public=True)


@public_router.post("/{entity}", response_model=Envelope, status_code=201, tags=["public"])
async def public_create_object(
    entity: str,
    request: Request,
    response: Response,
    body: Any = Body(None),
    workspace: str = Depends(get_workspace),
):
    return await _create_object(request, response, workspace, entity, body, public=True)


@public_router.get("/{entity}/{object_id}", response_model=Envelope, tags=["public"])
async def public_get_object(
    entity: str,
    object_id: str,
    request: Request,
    response: Response,
    workspace: str = Depends(get_workspace),
):
    return await _get_object(request, response, workspace, entity, object_id, public=True)


@public_router.patch("/{entity}/{object_id}", response_model=Envelope, tags=["public"])
async def public_update_object(
    entity: str,
    object_id: str,
    request: Request,
    response: Response,
    body: Any = Body(None),
    workspace: str = Depends(get_workspace),
):
    return await _update_object(
        request, response, workspace, entity, body, object_id, public=True
    )


@public_router.delete("/{entity}/{object_id}", response_model=Envelope, tags=["public"])
async def public_delete_object(
    entity: str,
    object_id: str,
    request: Request,
    response: Response,
    workspace: str = Depends(get_workspace),
):
    return await _delete_object(request, response, workspace, entity, object_id, public=True)


@public_router.get("/{entity}/{object_id}/{sub_entity}", response_model=Envelope, tags=["public"])
async def public_list_sub_objects(
    entity: str,
    object_id: str,
    sub_entity: str,
    request: Request,
    response: Response,
    workspace: str = Depends(get_workspace),
):
    return await _list_objects(
        request, response, workspace, entity, object_id, sub_entity, public=True
    )


@public_router.post(
    "/{entity}/{object_id}/{sub_entity}",
    response_model=Envelope,
    status_code=201,
    tags=["public"],
)
async def public_create_sub_object(
    entity: str,
    object_id: str,
    sub_entity: str,
    request: Request,
    response: Response,
    body: Any = Body(None),
    workspace: str = Depends(get_workspace),
):
    return await _create_object(
        request, response, workspace, entity, body, object_id, sub_entity, public=True
    )


@public_router.get(
    "/{entity}/{object_id}/{sub_entity}/{sub_object_id}",
    response_model=Envelope,
    tags=["public"],
)
async def public_get_sub_object(
    entity: str,
    object_id: str,
    sub_entity: str,
    sub_object_id: str,
    request: Request,
    response: Response,
    workspace: str = Depends(get_workspace),
):
    return await _get_object(
        request, response, workspace, entity, object_id, sub_entity, sub_object_id, public=True
    )


@public_router.patch(
    "/{entity}/{object_id}/{sub_entity}/{sub_object_id}",
    response_model=Envelope,
    tags=["public"],
)
async def public_update_sub_object(
    entity: str,
    object_id: str,
    sub_entity: str,
    sub_object_id: str,
    request: Request,
    response: Response,
    body: Any = Body(None),
    workspace: str = Depends(get_workspace),
):
    return await _update_object(
        request,
        response,
        workspace,
        entity,
        body,
        object_id,
        sub_entity,
        sub_object_id,
        public=True,
    )


@public_router.delete(
    "/{entity}/{object_id}/{sub_entity}/{sub_object_id}",
    response_model=Envelope,
    tags=["public"],
)
async def public_delete_sub_object(
    entity: str,
    object_id: str,
    sub_entity: str,
    sub_object_id: str,
    request: Request,
    response: Response,
    workspace: str = Depends(get_workspace),
):
    return await _delete_object(
        request, response, workspace, entity, object_id, sub_entity, sub_object_id, public=True
    )

