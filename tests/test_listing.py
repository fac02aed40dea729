import pytest

from entityapi.service.embeddings import EmbeddingsService, SearchEmbeddings
from entityapi.service.listing import (
    DEFAULT_LIMIT,
    MAX_LIMIT,
    ListPipeline,
    clamp_limit,
    coerce_filter_value,
    list_cache_key,
    parse_offset,
)
from entityapi.service.objects import objects_collection
from entityapi.service.response_cache import LocalCache, ResponseCache
from entityapi.storage.memory import MemoryStore


def make_pipeline():
    store = MemoryStore()
    cache = ResponseCache(LocalCache(), default_ttl_seconds=60)
    search = SearchEmbeddings(EmbeddingsService("test"), store, cache)
    return ListPipeline(store, cache, search, ttl_seconds=60), store, search


def seed(store):
    books = objects_collection("acme", "books")
    store.set(books.document("a"), {"title": "Dune", "genre": "scifi", "inPrint": True})
    store.set(books.document("b"), {"title": "Emma", "genre": "romance", "inPrint": True})
    store.set(books.document("c"), {"title": "Solaris", "genre": "scifi", "inPrint": False})
    return books


class TestListParameters:
    @pytest.mark.parametrize(
        "raw,expected",
        [(None, DEFAULT_LIMIT), ("", DEFAULT_LIMIT), ("5", 5), ("0", 1), ("999", MAX_LIMIT), ("x", DEFAULT_LIMIT)],
    )
    def test_clamp_limit(self, raw, expected):
        assert clamp_limit(raw) == expected

    def test_parse_offset(self):
        assert parse_offset(None) is None
        assert parse_offset("3") == 3
        assert parse_offset("-2") == 0
        assert parse_offset("abc") is None

    def test_only_boolean_literals_are_coerced(self):
        assert coerce_filter_value("true") is True
        assert coerce_filter_value("false") is False
        assert coerce_filter_value("1") == "1"
        assert coerce_filter_value("True") == "True"

    def test_cache_key_covers_every_parameter(self):
        base = list_cache_key("acme/books/objects", 10, None, [("genre", "scifi")], None, None)
        assert base != list_cache_key("acme/books/objects", 10, 1, [("genre", "scifi")], None, None)
        assert base != list_cache_key("acme/books/objects", 10, None, [("genre", "drama")], None, None)
        assert base != list_cache_key("acme/books/objects", 10, None, [("genre", "scifi")], ["title"], None)
        assert base != list_cache_key("acme/books/objects", 10, None, [("genre", "scifi")], None, "dune")


class TestListPipeline:
    async def test_filters_and_count(self):
        pipeline, store, _ = make_pipeline()
        books = seed(store)
        result = await pipeline.list(
            books, filters=[("genre", "scifi"), ("inPrint", "true")], count_total=True
        )
        assert [obj["objectId"] for obj in result.objects] == ["a"]
        assert result.count == 1
        assert result.cached is False

    async def test_second_call_is_cached(self):
        pipeline, store, _ = make_pipeline()
        books = seed(store)
        await pipeline.list(books, filters=[("genre", "scifi")])
        store.delete(books.document("a"))
        result = await pipeline.list(books, filters=[("genre", "scifi")])
        assert result.cached is True
        assert len(result.objects) == 2

    async def test_consistent_read_skips_cache(self):
        pipeline, store, _ = make_pipeline()
        books = seed(store)
        await pipeline.list(books)
        store.delete(books.document("a"))
        result = await pipeline.list(books, consistent_read=True)
        assert result.cached is False
        assert [obj["objectId"] for obj in result.objects] == ["b", "c"]

    async def test_empty_results_are_not_cached(self):
        pipeline, store, _ = make_pipeline()
        books = seed(store)
        await pipeline.list(books, filters=[("genre", "horror")])
        store.set(books.document("d"), {"title": "It", "genre": "horror"})
        result = await pipeline.list(books, filters=[("genre", "horror")])
        assert [obj["objectId"] for obj in result.objects] == ["d"]

    async def test_projection_selects_fields(self):
        pipeline, store, _ = make_pipeline()
        books = seed(store)
        result = await pipeline.list(books, fields=["title"], limit=1)
        assert result.objects == [{"title": "Dune", "objectId": "a"}]

    async def test_limit_and_offset(self):
        pipeline, store, _ = make_pipeline()
        books = seed(store)
        result = await pipeline.list(books, limit="1", offset="1")
        assert [obj["objectId"] for obj in result.objects] == ["b"]

    async def test_search_ranks_by_similarity_and_ignores_filters(self):
        pipeline, store, search = make_pipeline()
        books = objects_collection("acme", "books")
        for doc_id, title, genre in (("a", "desert planet spice", "scifi"), ("b", "regency marriage", "romance")):
            vector = await search.embed_document(f"title {title}")
            store.set(books.document(doc_id), {"title": title, "genre": genre, "embedding": vector})
        result = await pipeline.list(
            books, search_term="Spice desert", filters=[("genre", "romance")], limit=1
        )
        assert [obj["objectId"] for obj in result.objects] == ["a"]

    async def test_query_embedding_is_persisted(self):
        pipeline, store, search = make_pipeline()
        books = seed(store)
        await pipeline.list(books, search_term="dune")
        stored = store.list_documents(books.parent.collection("searchEmbeddings"))
        assert len(stored) == 1
        assert stored[0].data["text"] == "dune"
