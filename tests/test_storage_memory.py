from datetime import datetime

import pytest

from entityapi.service.embeddings import deterministic_embedding
from entityapi.storage.errors import ConstraintViolation, StoreError
from entityapi.storage.memory import MemoryStore
from entityapi.storage.models import SERVER_TIMESTAMP, CollectionRef, DocumentRef


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def books():
    return CollectionRef("acme/books/objects")


class TestRefs:
    def test_collection_and_document_paths_alternate(self):
        collection = CollectionRef("acme/books/objects")
        doc = collection.document("b1")
        assert doc.path == "acme/books/objects/b1"
        assert doc.parent == collection
        assert doc.collection("reviews").path == "acme/books/objects/b1/reviews"

    def test_bad_segment_counts_are_rejected(self):
        with pytest.raises(ValueError):
            CollectionRef("acme/books")
        with pytest.raises(ValueError):
            DocumentRef("acme")

    def test_document_id_cannot_contain_slash(self, books):
        with pytest.raises(ValueError):
            books.document("a/b")

    def test_generated_ids_are_unique(self, books):
        assert books.document().id != books.document().id


class TestMemoryStoreWrites:
    def test_server_timestamp_is_replaced(self, store, books):
        ref = books.document("b1")
        store.set(ref, {"title": "Dune", "createdAt": SERVER_TIMESTAMP})
        doc = store.get(ref)
        assert isinstance(doc.data["createdAt"], datetime)
        assert doc.id == "b1"

    def test_create_refuses_existing_document(self, store, books):
        ref = books.document("b1")
        store.create(ref, {"title": "Dune"})
        with pytest.raises(ConstraintViolation):
            store.create(ref, {"title": "Emma"})
        assert store.get(ref).data == {"title": "Dune"}

    def test_update_merges_fields(self, store, books):
        ref = books.document("b1")
        store.set(ref, {"title": "Dune", "pages": 412})
        store.update(ref, {"pages": 500})
        assert store.get(ref).data == {"title": "Dune", "pages": 500}

    def test_update_of_missing_document_fails(self, store, books):
        with pytest.raises(StoreError):
            store.update(books.document("missing"), {"pages": 1})

    def test_returned_data_is_a_copy(self, store, books):
        ref = books.document("b1")
        store.set(ref, {"tags": ["a"]})
        store.get(ref).data["tags"].append("b")
        assert store.get(ref).data == {"tags": ["a"]}

    def test_embedding_is_kept_out_of_data(self, store, books):
        ref = books.document("b1")
        store.set(ref, {"title": "Dune", "embedding": [1.0, 0.0]})
        assert "embedding" not in store.get(ref).data
        assert store.embeddings[ref.path] == [1.0, 0.0]

    def test_delete_removes_document_and_vector(self, store, books):
        ref = books.document("b1")
        store.set(ref, {"title": "Dune", "embedding": [1.0]})
        store.delete(ref)
        assert store.get(ref) is None
        assert ref.path not in store.embeddings


class TestMemoryStoreQueries:
    def _seed(self, store, books):
        store.set(books.document("a"), {"genre": "scifi", "inPrint": True, "n": 1})
        store.set(books.document("b"), {"genre": "scifi", "inPrint": False, "n": 2})
        store.set(books.document("c"), {"genre": "drama", "inPrint": True, "n": 3})
        # Nested documents are not part of the collection
        store.set(books.document("a").collection("reviews").document("r1"), {"genre": "scifi"})

    def test_equality_filters_are_anded(self, store, books):
        self._seed(store, books)
        docs = store.query(books).where("genre", "scifi").where("inPrint", True).get()
        assert [d.id for d in docs] == ["a"]

    def test_boolean_does_not_match_integer(self, store, books):
        store.set(books.document("x"), {"flag": 1})
        assert store.query(books).where("flag", True).get() == []

    def test_limit_offset_and_projection(self, store, books):
        self._seed(store, books)
        docs = store.query(books).select(["n"]).offset(1).limit(1).get()
        assert [(d.id, d.data) for d in docs] == [("b", {"n": 2})]

    def test_count_ignores_limit(self, store, books):
        self._seed(store, books)
        assert store.query(books).where("genre", "scifi").limit(1).count() == 2

    def test_vector_search_orders_by_similarity(self, store, books):
        store.set(books.document("a"), {"t": "a", "embedding": deterministic_embedding("desert planet spice")})
        store.set(books.document("b"), {"t": "b", "embedding": deterministic_embedding("regency romance")})
        store.set(books.document("c"), {"t": "c"})
        query = deterministic_embedding("spice desert")
        docs = store.query(books).find_nearest(query, limit=5).get()
        assert [d.id for d in docs] == ["a", "b"]
