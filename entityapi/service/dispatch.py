from __future__ import annotations

import asyncio
import json
import threading
from typing import Any, Dict, List, Optional, Sequence

import httpx

from entityapi.logging import get_logger
from entityapi.service.errors import ActionFailedError

logger = get_logger(__name__)

TRIGGER_TYPES = {"POST": "create", "PATCH": "update", "DELETE": "delete"}

X_DATA_ENTITY = "X-Data-Entity"
X_OBJECT_ID = "X-Object-Id"
X_SCHEMA = "X-Schema"
X_WORKSPACE = "X-Workspace"


def trigger_type_for(method: str) -> Optional[str]:
    return TRIGGER_TYPES.get(method.upper())


class ActionRunner:
    """Runs an entity's actions as a waterfall.

    Each action receives the previous action's response body; the first one
    receives the mutation result. Any failure aborts the rest of the chain.
    """

    def __init__(
        self,
        *,
        default_timeout_ms: int = 500,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.default_timeout_ms = default_timeout_ms
        self._transport = transport

    def _headers(
        self,
        action: Dict[str, Any],
        *,
        workspace: str,
        entity: str,
        object_id: Optional[str],
        schema_id: Optional[str],
    ) -> Dict[str, str]:
        headers = {str(k): str(v) for k, v in (action.get("headers") or {}).items()}
        headers[X_DATA_ENTITY] = entity
        headers[X_WORKSPACE] = workspace
        if object_id:
            headers[X_OBJECT_ID] = object_id
        if schema_id:
            headers[X_SCHEMA] = schema_id
        return headers

    @staticmethod
    def _body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except json.JSONDecodeError:
            return response.text

    async def run(
        self,
        actions: Sequence[Dict[str, Any]],
        payload: Any,
        *,
        workspace: str,
        entity: str,
        object_id: Optional[str] = None,
        schema_id: Optional[str] = None,
    ) -> Any:
        if not actions:
            return payload
        async with httpx.AsyncClient(transport=self._transport) as client:
            for action in actions:
                timeout_ms = action.get("timeout") or self.default_timeout_ms
                try:
                    response = await client.post(
                        action["url"],
                        json=payload,
                        headers=self._headers(
                            action,
                            workspace=workspace,
                            entity=entity,
                            object_id=object_id,
                            schema_id=schema_id,
                        ),
                        timeout=timeout_ms / 1000,
                    )
                    response.raise_for_status()
                except httpx.HTTPError as exc:
                    logger.error(
                        "action_failed",
                        action_id=action.get("id"),
                        entity=entity,
                        error_type=type(exc).__name__,
                        error=str(exc),
                    )
                    raise ActionFailedError(
                        "action failed",
                        detail={"actionId": action.get("id"), "name": action.get("name")},
                    ) from exc
                payload = self._body(response)
                logger.info("action_completed", action_id=action.get("id"), entity=entity)
        return payload


class LocalTopicPublisher:
    """In-process stand-in for the message broker; keeps every message."""

    def __init__(self) -> None:
        self.messages: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    async def publish(self, topic: str, attributes: Dict[str, str], payload: Dict[str, Any]) -> str:
        with self._lock:
            self.messages.append({"topic": topic, "attributes": attributes, "payload": payload})
            return str(len(self.messages))

    def clear(self) -> None:
        with self._lock:
            self.messages.clear()


class WebhookDispatcher:
    """Publishes one message per webhook whose trigger matches the mutation."""

    def __init__(self, publisher: Any, topic: Optional[str]) -> None:
        self.publisher = publisher
        self.topic = topic

    @staticmethod
    def _message(
        webhook: Dict[str, Any],
        data: Any,
        *,
        workspace: str,
        entity: str,
        trigger_type: str,
        object_id: Optional[str],
    ) -> tuple[Dict[str, str], Dict[str, Any]]:
        attributes = {
            "entity": entity,
            "triggerType": trigger_type,
            "webhookId": str(webhook.get("id")),
            "webhookName": str(webhook.get("name")),
            "workspace": workspace,
        }
        if object_id:
            attributes = {"objectId": object_id, **attributes}
        body = {**attributes, "data": data}
        payload = {
            "data": json.dumps(body),
            "method": "POST",
            "url": webhook.get("url"),
        }
        return attributes, payload

    async def dispatch(
        self,
        webhooks: Sequence[Dict[str, Any]],
        data: Any,
        *,
        method: str,
        workspace: str,
        entity: str,
        object_id: Optional[str] = None,
    ) -> List[str]:
        """Publish to every matching webhook and return their ids."""
        trigger_type = trigger_type_for(method)
        matching = [w for w in webhooks if trigger_type and w.get("triggerType") == trigger_type]
        if not matching or not self.topic:
            return []

        await asyncio.gather(
            *(
                self.publisher.publish(
                    self.topic,
                    *self._message(
                        webhook,
                        data,
                        workspace=workspace,
                        entity=entity,
                        trigger_type=trigger_type,
                        object_id=object_id,
                    ),
                )
                for webhook in matching
            )
        )
        webhook_ids = [str(w.get("id")) for w in matching]
        logger.info(
            "webhooks_published",
            entity=entity,
            trigger_type=trigger_type,
            webhook_ids=webhook_ids,
        )
        return webhook_ids
