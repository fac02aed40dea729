from __future__ import annotations

import asyncio
import hashlib
import math
import re
from enum import Enum
from typing import Any, Callable, Iterable, List, Optional

import httpx

from entityapi.logging import get_logger

logger = get_logger(__name__)

EMBEDDING_DIM = 64
SEARCH_EMBEDDINGS_COLLECTION = "searchEmbeddings"

_HTML_TAG = re.compile(r"<[^>]*>")


class EmbeddingMode(str, Enum):
    """Task type hint passed to the encoder."""

    DOCUMENT = "RETRIEVAL_DOCUMENT"
    QUERY = "RETRIEVAL_QUERY"


def validate_embedding(vec: Iterable[float], *, name: str = "embedding") -> List[float]:
    """Validate embedding vector for NaN/Infinity values.

    Raises:
        ValueError: If vector contains NaN or Infinity values
    """
    result = [float(v) for v in vec]
    for i, val in enumerate(result):
        if math.isnan(val):
            raise ValueError(f"{name}[{i}] contains NaN")
        if math.isinf(val):
            raise ValueError(f"{name}[{i}] contains Infinity")
    return result


def ensure_embedding_dim(
    vec: Iterable[float] | None, *, dim: int = EMBEDDING_DIM, sanitize: bool = True
) -> List[float]:
    """Ensure embedding has the correct dimension by padding or truncating."""
    if not vec:
        return [0.0] * dim
    trimmed = list(vec)[:dim]
    if sanitize:
        trimmed = [0.0 if (math.isnan(v) or math.isinf(v)) else v for v in trimmed]
    if len(trimmed) < dim:
        trimmed += [0.0] * (dim - len(trimmed))
    return trimmed


def deterministic_embedding(text: str, dim: int = EMBEDDING_DIM) -> List[float]:
    """Generate a small deterministic embedding without external models.

    Tokens are hashed into buckets and the result is unit-normalized, so the
    dot product of two embeddings is their cosine similarity.
    """

    if not text:
        return ensure_embedding_dim([], dim=dim)
    tokens = re.findall(r"\w+", text.lower())
    vec = [0.0] * dim
    for tok in tokens:
        h = int(hashlib.sha256(tok.encode()).hexdigest(), 16)
        vec[h % dim] += 1.0
    norm = sum(v * v for v in vec) ** 0.5 or 1.0
    return ensure_embedding_dim([v / norm for v in vec], dim=dim)


def dot_product(a: Iterable[float], b: Iterable[float]) -> float:
    return sum(x * y for x, y in zip(a, b))


def strip_html(text: str) -> str:
    return _HTML_TAG.sub("", text or "").strip()


def sanitize_query_text(text: str) -> str:
    return strip_html(text).lower().strip()


class RemoteEmbeddingEncoder:
    """Encoder for an OpenAI-compatible ``/embeddings`` endpoint."""

    def __init__(
        self,
        base_url: str,
        model_id: str,
        *,
        api_key: Optional[str] = None,
        dim: int = EMBEDDING_DIM,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.model_id = model_id
        self.dim = dim
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=5.0),
            transport=transport,
        )

    def __call__(self, text: str, mode: EmbeddingMode) -> List[float]:
        response = self._client.post(
            "/embeddings",
            json={"model": self.model_id, "input": text, "task_type": mode.value},
        )
        response.raise_for_status()
        body = response.json()
        vector = body["data"][0]["embedding"]
        return ensure_embedding_dim(validate_embedding(vector), dim=self.dim)

    def close(self) -> None:
        self._client.close()


class EmbeddingsService:
    """Wrapper for embedding providers with a stable model identifier."""

    def __init__(
        self,
        model_id: str,
        *,
        encoder: Optional[Callable[[str, EmbeddingMode], List[float]]] = None,
        dim: int = EMBEDDING_DIM,
    ):
        self.model_id = model_id
        self.dim = dim
        self._encoder = encoder or (lambda text, mode: deterministic_embedding(text, dim))

    def embed(self, text: str, mode: EmbeddingMode = EmbeddingMode.DOCUMENT) -> List[float]:
        return self._encoder(text, mode)


class SearchEmbeddings:
    """Embeds documents on write and search terms on read.

    Query embeddings are cached in two tiers: the response cache, then a
    persistent ``searchEmbeddings`` document beside the entity's objects.
    """

    def __init__(self, embeddings: EmbeddingsService, store: Any, cache: Any) -> None:
        self.embeddings = embeddings
        self.store = store
        self.cache = cache

    async def embed_document(self, text: str) -> List[float]:
        return await asyncio.to_thread(
            self.embeddings.embed, strip_html(text), EmbeddingMode.DOCUMENT
        )

    def _cache_ref(self, collection: Any, text: str) -> Any:
        # Search terms may contain '/', so the document id is a digest
        digest = hashlib.sha256(text.encode()).hexdigest()
        owner = collection.parent
        if owner is None:
            raise ValueError(f"collection has no owning document: {collection.path}")
        return owner.collection(SEARCH_EMBEDDINGS_COLLECTION).document(digest)

    async def embed_query(self, text: str, collection: Any) -> List[float]:
        sanitized = sanitize_query_text(text)
        cache_ref = self._cache_ref(collection, sanitized)

        cached = await self.cache.get(cache_ref.path)
        if isinstance(cached, dict) and cached.get("vector"):
            return list(cached["vector"])

        stored = await asyncio.to_thread(self.store.get, cache_ref)
        if stored is not None and stored.data.get("vector"):
            vector = list(stored.data["vector"])
            await self.cache.set(cache_ref.path, {"vector": vector})
            return vector

        vector = await asyncio.to_thread(
            self.embeddings.embed, sanitized, EmbeddingMode.QUERY
        )
        await asyncio.to_thread(
            self.store.set,
            cache_ref,
            {"text": sanitized, "vector": vector, "model": self.embeddings.model_id},
        )
        await self.cache.set(cache_ref.path, {"vector": vector})
        logger.info("query_embedding_computed", collection=collection.path)
        return vector
