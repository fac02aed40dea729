from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Mapping, Optional

from entityapi.logging import get_logger
from entityapi.service.entity_cache import WORKSPACE_CONFIG_ENTITY, entity_ref
from entityapi.service.errors import (
    MissingPreconditionError,
    UserNotFoundError,
    ValidationError,
)
from entityapi.service.objects import to_iso
from entityapi.storage.models import CollectionRef, DocumentRef, new_document_id

logger = get_logger(__name__)

USERS_COLLECTION = "users"

USER_EMAIL_HEADER = "X-Authenticated-User-Email"
USER_ID_HEADER = "X-Authenticated-User-Id"

_USER_DEFAULTS: Dict[str, Any] = {
    "displayName": None,
    "active": True,
    "emailVerified": False,
    "roles": [],
    "lastLoginAt": None,
}


def resolve_actor(headers: Mapping[str, str]) -> Optional[Dict[str, str]]:
    """The acting user as set by the fronting proxy, or None when anonymous."""
    email = headers.get(USER_EMAIL_HEADER) or None
    user_id = headers.get(USER_ID_HEADER) or None
    if email and user_id:
        return {"email": email, "id": user_id}
    return None


def _normalize_email(email: Any) -> str:
    if not isinstance(email, str) or not email.strip():
        raise MissingPreconditionError("missing email")
    normalized = email.strip().lower()
    if "/" in normalized:
        raise ValidationError("invalid email address", detail={"email": normalized})
    return normalized


def _surface(data: Dict[str, Any]) -> Dict[str, Any]:
    user = dict(data)
    if user.get("lastLoginAt") is not None and not isinstance(user["lastLoginAt"], str):
        user["lastLoginAt"] = to_iso(user["lastLoginAt"])
    return user


class IdentityService:
    """Per-workspace user directory kept in the document store."""

    def __init__(self, store: Any) -> None:
        self.store = store

    @staticmethod
    def _users(workspace: str) -> CollectionRef:
        return entity_ref(workspace, WORKSPACE_CONFIG_ENTITY).collection(USERS_COLLECTION)

    def _ref(self, workspace: str, email: str) -> DocumentRef:
        return self._users(workspace).document(email)

    async def list_users(self, workspace: str, offset: int = 0, limit: int = 10) -> List[Dict[str, Any]]:
        query = self.store.query(self._users(workspace)).limit(limit)
        if offset:
            query.offset(offset)
        documents = await asyncio.to_thread(query.get)
        return [_surface(doc.data) for doc in documents]

    async def get_user(self, email: str, workspace: str) -> Dict[str, Any]:
        email = _normalize_email(email)
        document = await asyncio.to_thread(self.store.get, self._ref(workspace, email))
        if document is None:
            raise UserNotFoundError("user not found", detail={"email": email})
        return _surface(document.data)

    async def create_user(self, user: Dict[str, Any], workspace: str) -> Dict[str, Any]:
        """Register ``user``; an already registered email returns the existing user."""
        email = _normalize_email(user.get("email"))
        ref = self._ref(workspace, email)
        existing = await asyncio.to_thread(self.store.get, ref)
        if existing is not None:
            return _surface(existing.data)
        record = {
            **_USER_DEFAULTS,
            **{k: v for k, v in user.items() if v is not None},
            "email": email,
            "uid": user.get("uid") or new_document_id(),
        }
        await asyncio.to_thread(self.store.set, ref, record)
        logger.info("user_created", workspace=workspace, uid=record["uid"])
        return _surface(record)

    async def update_user(self, user: Dict[str, Any], workspace: str) -> Dict[str, Any]:
        email = _normalize_email(user.get("email"))
        ref = self._ref(workspace, email)
        existing = await asyncio.to_thread(self.store.get, ref)
        if existing is None:
            raise UserNotFoundError("user not found", detail={"email": email})
        changes = {
            k: v for k, v in user.items() if v is not None and k not in ("email", "uid")
        }
        await asyncio.to_thread(self.store.update, ref, changes)
        logger.info("user_updated", workspace=workspace, uid=existing.data.get("uid"))
        return await self.get_user(email, workspace)
