from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from entityapi.logging import get_logger
from entityapi.service.objects import normalize_document, unexpected_errors
from entityapi.storage.models import CollectionRef

logger = get_logger(__name__)

DEFAULT_LIMIT = 10
MIN_LIMIT = 1
MAX_LIMIT = 100


def clamp_limit(
    limit: Any, *, default: int = DEFAULT_LIMIT, maximum: int = MAX_LIMIT
) -> int:
    if limit is None or limit == "":
        value = default
    else:
        try:
            value = int(limit)
        except (TypeError, ValueError):
            value = default
    return max(MIN_LIMIT, min(value, maximum))


def parse_offset(offset: Any) -> Optional[int]:
    if offset is None or offset == "":
        return None
    try:
        return max(0, int(offset))
    except (TypeError, ValueError):
        return None


def coerce_filter_value(value: Any) -> Any:
    """Only the literals "true"/"false" are coerced; everything else stays a string."""
    if value == "true":
        return True
    if value == "false":
        return False
    return value


def list_cache_key(
    path: str,
    limit: int,
    offset: Optional[int],
    filters: Sequence[Tuple[str, Any]],
    fields: Optional[Sequence[str]],
    search_term: Optional[str],
) -> str:
    return ":".join(
        [
            path,
            str(limit),
            str(offset or 0),
            json.dumps([list(f) for f in filters], separators=(",", ":")),
            ",".join(fields or ()),
            search_term or "",
        ]
    )


@dataclass
class ListResult:
    objects: List[Dict[str, Any]]
    count: Optional[int] = None
    cached: bool = False


class ListPipeline:
    """Turns list parameters into a store query or a vector search.

    Equality filters and vector search are mutually exclusive: when a search
    term is given, filters, offset and projection are not applied.
    """

    def __init__(self, store: Any, cache: Any, search: Any, *, ttl_seconds: int = 300) -> None:
        self.store = store
        self.cache = cache
        self.search = search
        self.ttl_seconds = ttl_seconds

    async def list(
        self,
        collection: CollectionRef,
        *,
        filters: Sequence[Tuple[str, Any]] = (),
        limit: Any = None,
        offset: Any = None,
        search_term: Optional[str] = None,
        count_total: bool = False,
        fields: Optional[Sequence[str]] = None,
        consistent_read: bool = False,
        max_limit: int = MAX_LIMIT,
    ) -> ListResult:
        resolved_limit = clamp_limit(limit, maximum=max_limit)
        resolved_offset = parse_offset(offset)
        coerced = [(key, coerce_filter_value(value)) for key, value in filters]
        projection = list(dict.fromkeys([*fields, "createdAt", "updatedAt"])) if fields else None
        search_term = search_term or None
        key = list_cache_key(
            collection.path, resolved_limit, resolved_offset, coerced, projection, search_term
        )

        with unexpected_errors("list", collection.path):
            if not consistent_read:
                cached = await self.cache.get(key)
                if cached:
                    return ListResult(objects=cached, cached=True)

            query = self.store.query(collection)
            if search_term:
                vector = await self.search.embed_query(search_term, collection)
                query.find_nearest(vector, limit=resolved_limit)
                if coerced:
                    logger.info(
                        "list_filters_ignored_for_search",
                        collection=collection.path,
                        filters=[k for k, _ in coerced],
                    )
            else:
                for field_name, value in coerced:
                    query.where(field_name, value)
                if projection:
                    query.select(projection)
                query.limit(resolved_limit)
                if resolved_offset is not None:
                    query.offset(resolved_offset)

            if count_total:
                documents, count = await asyncio.gather(
                    asyncio.to_thread(query.get), asyncio.to_thread(query.count)
                )
            else:
                documents, count = await asyncio.to_thread(query.get), None

            objects = [normalize_document(document) for document in documents]
            if objects:
                await self.cache.set(key, objects, self.ttl_seconds)
            return ListResult(objects=objects, count=count, cached=False)
