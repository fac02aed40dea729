from __future__ import annotations

import re
from typing import Any, Dict, List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "forbidden",
    "not_found",
    "rate_limited",
    "validation_error",
    "conflict",
    "server_error",
})


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str = Field(..., description="Stable error code")
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    """API envelope format."""

    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


_URL_PATTERN = re.compile(r"^https?://[^\s/$.?#][^\s]*$", re.IGNORECASE)
_EMAIL_PATTERN = re.compile(r"^[^@\s/]+@[^@\s/]+\.[^@\s/]+$")


def _validate_url(value: str) -> str:
    if not _URL_PATTERN.match(value):
        raise ValueError("url must be an absolute http(s) URL")
    return value


class _ConfigItem(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: Optional[str] = Field(None, pattern="^[^/]+$")
    description: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class ExpressionRequest(_ConfigItem):
    expression: str = Field(..., min_length=1, description="JSONata source")


class WebhookRequest(_ConfigItem):
    name: str
    url: str
    triggerType: Literal["create", "update", "delete"] = "create"
    headers: Optional[Dict[str, str]] = None

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        return _validate_url(value)


class ActionRequest(_ConfigItem):
    name: str
    url: str
    timeout: int = Field(500, gt=0, description="Milliseconds before the call fails")
    headers: Optional[Dict[str, str]] = None

    # Actions accept unknown keys, the way stored configs may carry extras
    model_config = ConfigDict(extra="allow")

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        return _validate_url(value)


class RoleRequest(_ConfigItem):
    name: str
    dataEntities: List[str] = Field(default_factory=list)


class UserRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: str
    uid: Optional[str] = None
    displayName: Optional[str] = None
    active: Optional[bool] = None
    emailVerified: Optional[bool] = None
    roles: Optional[List[str]] = None
    lastLoginAt: Optional[str] = None

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        normalized = value.strip().lower()
        if len(normalized) > 254 or not _EMAIL_PATTERN.match(normalized):
            raise ValueError("invalid email address")
        return normalized

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)
