from __future__ import annotations

from typing import Any, Dict, Optional


class StoreError(Exception):
    """Raised when the document backend fails to read or write."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class ConstraintViolation(StoreError):
    """Raised when a conditional write finds a conflicting document."""


__all__ = ["StoreError", "ConstraintViolation"]
