from entityapi.logging import (
    get_correlation_id,
    mask_email,
    redact_event,
    sanitize_error_message,
    set_correlation_id,
)


class TestCorrelationId:
    def test_reuses_client_id(self):
        assert set_correlation_id("req-1") == "req-1"
        assert get_correlation_id() == "req-1"

    def test_generates_when_missing(self):
        cid = set_correlation_id(None)
        assert len(cid) == 36
        assert get_correlation_id() == cid


class TestRedactEvent:
    def test_masks_action_headers(self):
        event = redact_event(None, "info", {"event": "action_failed", "headers": {"X-Key": "k1"}})
        assert event["headers"] == {"X-Key": "***"}
        assert event["event"] == "action_failed"

    def test_masks_connection_credentials(self):
        event = redact_event(None, "info", {"redis_url": "redis://:hunter2@cache:6379/0"})
        assert event["redis_url"] == "redis://***@cache:6379/0"

    def test_masks_plain_secrets(self):
        assert redact_event(None, "info", {"api_key": "sk-123"})["api_key"] == "***"

    def test_masks_actor_email(self):
        event = redact_event(
            None, "info", {"createdBy": {"email": "ada@example.com", "id": "u1"}}
        )
        assert event["createdBy"] == {"email": "a***@example.com", "id": "u1"}

    def test_masks_inside_error_detail(self):
        event = redact_event(None, "warning", {"detail": {"email": "bob@example.com", "field": "sku"}})
        assert event["detail"] == {"email": "b***@example.com", "field": "sku"}

    def test_leaves_domain_fields_alone(self):
        event = {"path": "acme/books/objects/b1", "entity": "books"}
        assert redact_event(None, "info", dict(event)) == event


class TestMaskEmail:
    def test_non_address(self):
        assert mask_email("nobody") == "***"


class TestSanitizeErrorMessage:
    def test_strips_document_table_sql(self):
        message = (
            'duplicate key value violates unique constraint\n'
            'INSERT INTO entity_document (path, data) VALUES (%s, %s)\n'
            'DETAIL: Key (path)=(acme/books/objects/b1) already exists.'
        )
        sanitized = sanitize_error_message(message)
        assert "entity_document" not in sanitized
        assert "DETAIL" not in sanitized
        assert sanitized.startswith("duplicate key value")

    def test_strips_dsn_credentials(self):
        sanitized = sanitize_error_message(
            "connection to postgresql://app:s3cret@db:5432/entities failed"
        )
        assert "s3cret" not in sanitized
        assert "postgresql://***@db:5432/entities" in sanitized

    def test_collapses_vectors(self):
        vector = "[" + ", ".join(["0.125"] * 16) + "]"
        assert sanitize_error_message(f"bad embedding {vector}") == "bad embedding [vector]"

    def test_strips_bearer_tokens(self):
        assert "abc.def" not in sanitize_error_message("401 for Bearer abc.def")

    def test_truncates_long_messages(self):
        assert len(sanitize_error_message("x" * 2000)) == 500

    def test_non_string(self):
        assert sanitize_error_message(None) == "something went wrong"
