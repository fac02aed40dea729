from __future__ import annotations

import asyncio
import threading
from typing import Any, Dict, Optional

import jsonata

from entityapi.logging import get_logger
from entityapi.service.entity_cache import EntityConfig
from entityapi.service.errors import ExpressionNotFoundError, ValidationError

logger = get_logger(__name__)


def compile_expression(source: Any) -> jsonata.Jsonata:
    """Compile a JSONata program, rejecting anything that is not valid source."""
    if not isinstance(source, str) or not source.strip():
        raise ValidationError("expression is not valid")
    try:
        return jsonata.Jsonata(source)
    except Exception as exc:
        raise ValidationError(
            "expression is not valid", detail={"reason": str(exc)}
        ) from exc


class ExpressionEvaluator:
    """Applies an entity's stored expression to a response payload.

    Compiled programs are memoized by their source text.
    """

    def __init__(self) -> None:
        self._compiled: Dict[str, jsonata.Jsonata] = {}
        self._lock = threading.Lock()

    def _program(self, source: str) -> jsonata.Jsonata:
        with self._lock:
            program = self._compiled.get(source)
        if program is not None:
            return program
        try:
            program = compile_expression(source)
        except ValidationError as exc:
            raise ExpressionNotFoundError(
                "expression not found", detail=exc.detail
            ) from exc
        with self._lock:
            self._compiled[source] = program
        return program

    def transform(self, source: str, payload: Any) -> Any:
        program = self._program(source)
        if isinstance(payload, list):
            return [program.evaluate(item) for item in payload]
        return program.evaluate(payload)

    async def evaluate(
        self,
        expression_id: Optional[str],
        payload: Any,
        entity_config: EntityConfig,
    ) -> Any:
        if not expression_id:
            return payload
        expression = entity_config.expression(expression_id)
        source = expression.get("expression") if expression else None
        if not source:
            raise ExpressionNotFoundError(
                "expression not found", detail={"expression": expression_id}
            )
        result = await asyncio.to_thread(self.transform, source, payload)
        logger.info(
            "expression_applied",
            entity=entity_config.entity,
            expression=expression_id,
            items=len(payload) if isinstance(payload, list) else 1,
        )
        return result
