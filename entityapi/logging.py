from __future__ import annotations

import logging
import os
import re
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Mapping, Optional

import structlog

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Keys whose values are configured outbound headers (action/webhook auth)
_HEADER_KEYS = {"headers", "action_headers", "webhook_headers"}
# Keys whose string values are credentials or connection strings
_SECRET_KEYS = {"api_key", "authorization", "database_url", "redis_url", "password", "token"}
# Keys holding an address or an actor record carrying one
_EMAIL_KEYS = {"email", "createdBy", "updatedBy", "actor"}

_URL_CREDENTIALS = re.compile(r"(?P<scheme>[a-z][a-z0-9+.-]*://)[^/\s:@]*:[^/\s@]+@", re.I)
_BEARER = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/=-]+")
_SQL_STATEMENT = re.compile(
    r"(?is)\b(?:select|insert\s+into|update|delete\s+from)\b.*?\bentity_document\b[^\n]*"
)
_PG_CONTEXT_LINE = re.compile(r"(?m)^(?:LINE \d+|DETAIL|HINT|CONTEXT):.*$")
_VECTOR_LITERAL = re.compile(r"\[(?:-?\d+(?:\.\d+)?(?:e-?\d+)?,\s*){8,}-?\d+(?:\.\d+)?(?:e-?\d+)?\]")

MAX_CLIENT_ERROR_LENGTH = 500


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Bind the request's correlation id, generating one when the client sent none."""
    cid = correlation_id or str(uuid.uuid4())
    correlation_id_var.set(cid)
    return cid


def mask_email(value: str) -> str:
    local, sep, domain = value.partition("@")
    if not sep:
        return "***"
    return f"{local[:1]}***@{domain}"


def _mask_value(key: str, value: Any) -> Any:
    if key in _HEADER_KEYS and isinstance(value, Mapping):
        return {name: "***" for name in value}
    if key.lower() in _SECRET_KEYS and isinstance(value, str):
        return _URL_CREDENTIALS.sub(r"\g<scheme>***@", value) if "://" in value else "***"
    if key in _EMAIL_KEYS:
        if isinstance(value, str):
            return mask_email(value)
        if isinstance(value, Mapping) and isinstance(value.get("email"), str):
            return {**value, "email": mask_email(value["email"])}
    return value


def _add_correlation_id(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    cid = get_correlation_id()
    if cid:
        event_dict.setdefault("correlation_id", cid)
    return event_dict


def redact_event(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Mask outbound headers, connection credentials and user addresses.

    Nested ``detail`` mappings from service errors are masked one level down.
    """
    for key, value in list(event_dict.items()):
        if key == "detail" and isinstance(value, Mapping):
            event_dict[key] = {k: _mask_value(k, v) for k, v in value.items()}
        else:
            event_dict[key] = _mask_value(key, value)
    return event_dict


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def configure_logging(
    level: Optional[str] = None,
    *,
    json_output: Optional[bool] = None,
    dev_mode: Optional[bool] = None,
) -> None:
    """Configure structlog from LOG_LEVEL, LOG_JSON and LOG_DEV_MODE.

    Explicit arguments win over the environment.
    """
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    if json_output is None:
        json_output = _env_flag("LOG_JSON", "true")
    if dev_mode is None:
        dev_mode = _env_flag("LOG_DEV_MODE", "false")

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _add_correlation_id,
        redact_event,
        structlog.processors.StackInfoRenderer(),
    ]
    if dev_mode or not json_output:
        processors.append(structlog.dev.ConsoleRenderer(colors=dev_mode))
    else:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level, logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def sanitize_error_message(error: Any, *, replacement: str = "[redacted]") -> str:
    """Make a store or driver error safe to log next to request data.

    Drops SQL against the document table and the context lines Postgres
    appends to it, embedding vectors, bearer tokens and credentials inside
    database/Redis URLs.
    """
    if not error or not isinstance(error, str):
        return "something went wrong"
    result = _PG_CONTEXT_LINE.sub("", error)
    result = _SQL_STATEMENT.sub(replacement, result)
    result = _VECTOR_LITERAL.sub("[vector]", result)
    result = _URL_CREDENTIALS.sub(r"\g<scheme>***@", result)
    result = _BEARER.sub("Bearer ***", result).strip()
    if len(result) > MAX_CLIENT_ERROR_LENGTH:
        result = result[: MAX_CLIENT_ERROR_LENGTH - 3] + "..."
    return result
