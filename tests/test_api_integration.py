"""End-to-end data entity flows through the HTTP surface."""

import httpx
import pytest

from entityapi.service.dispatch import ActionRunner

ACTOR_HEADERS = {
    "X-Authenticated-User-Email": "ada@example.com",
    "X-Authenticated-User-Id": "u1",
}


def book_schema():
    return {
        "$id": "books",
        "type": "object",
        "properties": {
            "isbn": {"type": "string", "objectId": True},
            "title": {"type": "string", "searchable": True},
            "genre": {"type": "string", "filter": True},
            "inPrint": {"type": "boolean", "filter": True},
            "pages": {"type": "integer"},
        },
        "required": ["isbn", "title"],
        "security": {"read": ["public"]},
    }


def review_schema():
    return {
        "$id": "reviews",
        "type": "object",
        "properties": {"stars": {"type": "integer"}, "text": {"type": "string"}},
        "required": ["stars"],
    }


@pytest.fixture
def books(client):
    response = client.post("/v1/data-entities/schemas", json=book_schema())
    assert response.status_code == 201, response.text
    return client


def create_book(client, isbn="978-0", title="Dune", **extra):
    body = {"isbn": isbn, "title": title, **extra}
    return client.post("/v1/data-entities/books", json=body, headers=ACTOR_HEADERS)


class TestObjectLifecycle:
    def test_create_returns_created_object(self, books):
        response = create_book(books, genre="scifi")
        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "ok"
        data = body["data"]
        assert data["objectId"] == "978-0"
        assert data["createdBy"] == {"email": "ada@example.com", "id": "u1"}
        assert data["createdAt"].endswith("Z")
        assert "embedding" not in data
        assert response.headers["X-Workspace"] == "testserver"
        assert response.headers["X-Schema"] == "books"
        assert response.headers["X-Request-ID"]

    def test_object_without_id_field_gets_generated_id(self, client):
        schema = {"$id": "notes", "type": "object", "properties": {"text": {"type": "string"}}}
        assert client.post("/v1/data-entities/schemas", json=schema).status_code == 201
        response = client.post("/v1/data-entities/notes", json={"text": "hello"})
        assert response.status_code == 201
        assert len(response.json()["data"]["objectId"]) == 32

    def test_numeric_id_field_can_be_updated(self, client):
        schema = {
            "$id": "parts",
            "type": "object",
            "properties": {
                "sku": {"type": "integer", "objectId": True},
                "name": {"type": "string"},
            },
            "required": ["sku"],
        }
        assert client.post("/v1/data-entities/schemas", json=schema).status_code == 201
        created = client.post("/v1/data-entities/parts", json={"sku": 5, "name": "bolt"})
        assert created.status_code == 201
        assert created.json()["data"]["objectId"] == "5"

        updated = client.patch("/v1/data-entities/parts/5", json={"sku": 5, "name": "nut"})
        assert updated.status_code == 200, updated.text
        assert updated.json()["data"]["name"] == "nut"

        mismatch = client.patch("/v1/data-entities/parts/5", json={"sku": 6})
        assert mismatch.status_code == 404
        assert mismatch.json()["error"]["message"] == "objectId mismatch"

    def test_get_after_create_has_both_timestamps(self, books):
        create_book(books)
        data = books.get("/v1/data-entities/books/978-0").json()["data"]
        assert data["createdAt"].endswith("Z")
        assert data["updatedAt"] == data["createdAt"]

    def test_duplicate_create_conflicts(self, books):
        create_book(books)
        response = create_book(books)
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "conflict"

    def test_invalid_payload_lists_errors(self, books):
        response = books.post("/v1/data-entities/books", json={"isbn": "1", "pages": "x", "color": "red"})
        assert response.status_code == 400
        error = response.json()["error"]
        assert error["message"] == "invalid data"
        keywords = sorted(item["keyword"] for item in error["details"])
        assert keywords == ["additionalProperties", "required", "type"]

    def test_missing_body(self, books):
        response = books.post("/v1/data-entities/books")
        assert response.status_code == 400
        assert response.json()["error"]["message"] == "missing data"

    def test_malformed_json(self, books):
        response = books.post(
            "/v1/data-entities/books",
            content="{not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "validation_error"

    def test_get_is_cached_after_write(self, books):
        create_book(books)
        response = books.get("/v1/data-entities/books/978-0")
        assert response.status_code == 200
        assert response.json()["data"]["title"] == "Dune"
        assert response.headers["X-Cached"] == "true"

    def test_get_missing_object(self, books):
        response = books.get("/v1/data-entities/books/nope")
        assert response.status_code == 404
        assert response.json()["error"]["message"] == "object not found"

    def test_update_merges_and_stamps(self, books):
        create_book(books, pages=412)
        response = books.patch(
            "/v1/data-entities/books/978-0",
            json={"isbn": "978-0", "title": "Dune Messiah"},
            headers=ACTOR_HEADERS,
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["title"] == "Dune Messiah"
        assert data["pages"] == 412
        assert data["updatedBy"] == {"email": "ada@example.com", "id": "u1"}
        assert "updatedAt" in data

    def test_update_id_mismatch(self, books):
        create_book(books)
        response = books.patch(
            "/v1/data-entities/books/978-0", json={"isbn": "978-1", "title": "Dune"}
        )
        assert response.status_code == 404
        assert response.json()["error"]["message"] == "objectId mismatch"

    def test_update_missing_object(self, books):
        response = books.patch("/v1/data-entities/books/978-9", json={"isbn": "978-9", "title": "x"})
        assert response.status_code == 404

    def test_delete_returns_last_state(self, books):
        create_book(books)
        response = books.delete("/v1/data-entities/books/978-0")
        assert response.status_code == 200
        assert response.json()["data"]["title"] == "Dune"
        assert books.get("/v1/data-entities/books/978-0").status_code == 404

    def test_unknown_entity(self, client):
        response = client.get("/v1/data-entities/ghosts")
        assert response.status_code == 404
        assert response.json()["error"]["message"] == "entity not found"

    def test_unknown_route_is_enveloped(self, client):
        response = client.get("/v2/nothing")
        assert response.status_code == 404
        assert response.json()["status"] == "error"


class TestListing:
    def test_filters_and_total_count(self, books):
        create_book(books, "1", "Dune", genre="scifi", inPrint=True)
        create_book(books, "2", "Emma", genre="romance", inPrint=True)
        create_book(books, "3", "Solaris", genre="scifi", inPrint=False)
        response = books.get(
            "/v1/data-entities/books",
            params={"genre": "scifi", "inPrint": "true", "countTotal": "true"},
        )
        assert response.status_code == 200
        assert [obj["objectId"] for obj in response.json()["data"]] == ["1"]
        assert response.headers["X-Total-Count"] == "1"

    def test_unflagged_filters_are_ignored(self, books):
        create_book(books, "1", "Dune", pages=10)
        create_book(books, "2", "Emma", pages=20)
        response = books.get("/v1/data-entities/books", params={"pages": "10"})
        assert len(response.json()["data"]) == 2

    def test_repeat_list_is_cached_unless_consistent(self, books):
        create_book(books, "1", "Dune")
        first = books.get("/v1/data-entities/books")
        assert "X-Cached" not in first.headers
        create_book(books, "2", "Emma")
        cached = books.get("/v1/data-entities/books")
        assert cached.headers["X-Cached"] == "true"
        assert len(cached.json()["data"]) == 1
        fresh = books.get("/v1/data-entities/books", params={"consistentRead": "true"})
        assert len(fresh.json()["data"]) == 2

    def test_fields_projection_keeps_required(self, books):
        create_book(books, "1", "Dune", genre="scifi", pages=10)
        response = books.get("/v1/data-entities/books", params={"fields": "pages,bogus"})
        [obj] = response.json()["data"]
        assert set(obj) == {"isbn", "title", "pages", "objectId", "createdAt", "updatedAt"}

    def test_limit_and_offset(self, books):
        for isbn in ("1", "2", "3"):
            create_book(books, isbn, f"Book {isbn}")
        response = books.get("/v1/data-entities/books", params={"limit": "1", "offset": "1"})
        assert [obj["objectId"] for obj in response.json()["data"]] == ["2"]

    def test_context_search(self, books):
        create_book(books, "1", "desert planet spice", genre="scifi")
        create_book(books, "2", "regency marriage", genre="romance")
        response = books.get(
            "/v1/data-entities/books",
            params={"contextSearch": "spice desert", "limit": "1", "genre": "romance"},
        )
        assert [obj["objectId"] for obj in response.json()["data"]] == ["1"]


class TestSubEntities:
    def test_sub_entity_crud(self, books):
        response = books.post("/v1/data-entities/schemas/books/sub-schemas", json=review_schema())
        assert response.status_code == 201, response.text
        create_book(books)

        created = books.post("/v1/data-entities/books/978-0/reviews", json={"stars": 5})
        assert created.status_code == 201
        assert created.headers["X-Schema"] == "books/reviews"
        review_id = created.json()["data"]["objectId"]

        listed = books.get("/v1/data-entities/books/978-0/reviews")
        assert [r["objectId"] for r in listed.json()["data"]] == [review_id]

        path = f"/v1/data-entities/books/978-0/reviews/{review_id}"
        assert books.get(path).json()["data"]["stars"] == 5
        patched = books.patch(path, json={"stars": 3, "text": "meh"})
        assert patched.json()["data"]["text"] == "meh"
        assert books.delete(path).status_code == 200
        assert books.get(path).status_code == 404

    def test_sub_schema_needs_parent(self, client):
        response = client.post("/v1/data-entities/schemas/ghosts/sub-schemas", json=review_schema())
        assert response.status_code == 404

    def test_unknown_sub_entity(self, books):
        create_book(books)
        response = books.get("/v1/data-entities/books/978-0/ghosts")
        assert response.status_code == 404


class TestPipelines:
    def test_expression_on_get_and_list(self, books):
        response = books.post(
            "/v1/data-entities/books/expressions", json={"id": "title", "expression": "title"}
        )
        assert response.status_code == 201, response.text
        create_book(books)

        single = books.get("/v1/data-entities/books/978-0", params={"expression": "title"})
        assert single.json()["data"] == "Dune"
        assert single.headers["X-Expression"] == "title"

        listed = books.get("/v1/data-entities/books", params={"expression": "title"})
        assert listed.json()["data"] == ["Dune"]

    def test_unknown_expression(self, books):
        create_book(books)
        response = books.get("/v1/data-entities/books/978-0", params={"expression": "nope"})
        assert response.status_code == 404
        assert response.json()["error"]["message"] == "expression not found"

    def test_webhooks_published_on_matching_trigger(self, books, runtime):
        books.post(
            "/v1/data-entities/books/webhooks",
            json={"id": "w1", "name": "created", "url": "https://hooks.test/a", "triggerType": "create"},
        )
        books.post(
            "/v1/data-entities/books/webhooks",
            json={"id": "w2", "name": "deleted", "url": "https://hooks.test/b", "triggerType": "delete"},
        )
        created = create_book(books)
        assert created.headers["X-Webhook"] == "w1"
        deleted = books.delete("/v1/data-entities/books/978-0")
        assert deleted.headers["X-Webhook"] == "w2"

        attributes = [m["attributes"] for m in runtime.publisher.messages]
        assert [(a["webhookId"], a["triggerType"]) for a in attributes] == [
            ("w1", "create"),
            ("w2", "delete"),
        ]

    def test_actions_transform_the_response(self, books, runtime):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["X-Data-Entity"] == "books"
            return httpx.Response(200, json={"enriched": True})

        runtime.actions = ActionRunner(transport=httpx.MockTransport(handler))
        response = books.post(
            "/v1/data-entities/books/actions",
            json={"id": "enrich", "name": "enrich", "url": "https://actions.test/enrich"},
        )
        assert response.status_code == 201
        created = create_book(books)
        assert created.status_code == 201
        assert created.json()["data"] == {"enriched": True}

    def test_failed_action_is_bad_gateway(self, books, runtime):
        runtime.actions = ActionRunner(
            transport=httpx.MockTransport(lambda request: httpx.Response(503))
        )
        books.post(
            "/v1/data-entities/books/actions",
            json={"id": "enrich", "name": "enrich", "url": "https://actions.test/enrich"},
        )
        response = create_book(books)
        assert response.status_code == 502
        assert response.json()["error"]["details"]["actionId"] == "enrich"


class TestPublicRoutes:
    def test_public_read_allowed(self, books):
        create_book(books)
        response = books.get("/v1/public/data-entities/books/978-0")
        assert response.status_code == 200
        assert response.json()["data"]["title"] == "Dune"

    def test_public_list_allowed(self, books):
        create_book(books)
        response = books.get("/v1/public/data-entities/books")
        assert response.status_code == 200

    def test_public_write_rejected(self, books):
        response = books.post(
            "/v1/public/data-entities/books", json={"isbn": "1", "title": "Dune"}
        )
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "unauthorized"

    def test_public_delete_rejected(self, books):
        create_book(books)
        assert books.delete("/v1/public/data-entities/books/978-0").status_code == 401
        assert books.get("/v1/data-entities/books/978-0").status_code == 200


class TestHealth:
    def test_healthz(self, client):
        response = client.get("/healthz")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["type"] == "memory"
        assert body["checks"]["redis"]["status"] == "not_configured"

    def test_security_headers_and_request_id(self, client):
        response = client.get("/healthz", headers={"X-Request-ID": "req-1"})
        assert response.headers["X-Request-ID"] == "req-1"
        assert response.headers["X-Content-Type-Options"] == "nosniff"

    def test_factory_returns_module_app(self):
        from entityapi.app import app, create_app

        assert create_app() is app
