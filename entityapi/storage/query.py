from __future__ import annotations

from dataclasses import replace
from typing import Any, List, Sequence

from entityapi.storage.models import CollectionRef, Document, NearestQuery, QuerySpec


class Query:
    """Chainable query over one collection.

    Setters return the same builder; nothing touches the store until
    ``get()`` or ``count()`` is called.
    """

    def __init__(self, store: Any, collection: CollectionRef) -> None:
        self._store = store
        self._spec = QuerySpec(collection=collection)

    @property
    def spec(self) -> QuerySpec:
        return self._spec

    def where(self, key: str, value: Any) -> "Query":
        self._spec = replace(self._spec, filters=self._spec.filters + ((key, value),))
        return self

    def select(self, fields: Sequence[str]) -> "Query":
        self._spec = replace(self._spec, fields=tuple(dict.fromkeys(fields)))
        return self

    def limit(self, limit: int) -> "Query":
        self._spec = replace(self._spec, limit=limit)
        return self

    def offset(self, offset: int) -> "Query":
        self._spec = replace(self._spec, offset=offset)
        return self

    def find_nearest(
        self,
        vector: Sequence[float],
        *,
        limit: int,
        field: str = "embedding",
        distance: str = "dot_product",
    ) -> "Query":
        nearest = NearestQuery(
            vector=tuple(float(v) for v in vector),
            limit=limit,
            field=field,
            distance=distance,
        )
        self._spec = replace(self._spec, nearest=nearest)
        return self

    def get(self) -> List[Document]:
        if self._spec.nearest is not None:
            return self._store.vector_search(self._spec.collection, self._spec.nearest)
        return self._store.run_query(self._spec)

    def count(self) -> int:
        return self._store.count(self._spec.collection, filters=self._spec.filters)
