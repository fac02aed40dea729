import pytest

from entityapi.service.errors import (
    EntityNotFoundError,
    SchemaCompilationError,
    SchemaValidationError,
)
from entityapi.service.schema_registry import (
    MAX_FILTER_FIELDS,
    MAX_SEARCHABLE_FIELDS,
    SchemaRegistry,
    extract_keywords,
    list_schema_id,
    schema_id,
    validate_definition,
)


def book_schema(**overrides):
    schema = {
        "$id": "books",
        "type": "object",
        "properties": {
            "isbn": {"type": "string", "objectId": True},
            "title": {"type": "string", "searchable": True},
            "genre": {"type": "string", "filter": True},
            "pages": {"type": "integer"},
        },
        "required": ["isbn", "title"],
        "additionalProperties": False,
        "security": {"read": ["public"]},
    }
    schema.update(overrides)
    return schema


class TestValidateDefinition:
    def test_accepts_well_formed_schema(self):
        validate_definition(book_schema())

    def test_rejects_non_object(self):
        with pytest.raises(SchemaValidationError):
            validate_definition(["not", "a", "schema"])

    def test_reports_every_problem(self):
        definition = {"$id": "bad id", "type": "array"}
        with pytest.raises(SchemaValidationError) as excinfo:
            validate_definition(definition)
        keywords = {error["keyword"] for error in excinfo.value.errors}
        assert {"pattern", "enum", "required"} <= keywords

    def test_property_without_type_is_rejected(self):
        definition = book_schema(properties={"title": {"description": "no type"}})
        with pytest.raises(SchemaValidationError):
            validate_definition(definition)


class TestExtractKeywords:
    def test_collects_custom_keywords(self):
        keywords = extract_keywords(book_schema())
        assert keywords.object_id_field == "isbn"
        assert keywords.filter_fields == ("genre",)
        assert keywords.searchable_fields == ("title",)
        assert keywords.security == {"read": ["public"]}

    def test_only_one_object_id(self):
        schema = book_schema()
        schema["properties"]["title"]["objectId"] = True
        with pytest.raises(SchemaCompilationError, match="too many unique params"):
            extract_keywords(schema)

    def test_object_id_must_be_required(self):
        with pytest.raises(SchemaCompilationError, match="not set as required"):
            extract_keywords(book_schema(required=["title"]))

    def test_keyword_values_must_be_boolean(self):
        schema = book_schema()
        schema["properties"]["genre"]["filter"] = "yes"
        with pytest.raises(SchemaCompilationError, match="filter must be a boolean"):
            extract_keywords(schema)

    def test_filter_limit(self):
        properties = {
            f"f{i}": {"type": "string", "filter": True} for i in range(MAX_FILTER_FIELDS + 1)
        }
        with pytest.raises(SchemaCompilationError, match="too many filters"):
            extract_keywords(book_schema(properties=properties, required=[]))

    def test_searchable_limit(self):
        properties = {
            f"s{i}": {"type": "string", "searchable": True}
            for i in range(MAX_SEARCHABLE_FIELDS + 1)
        }
        with pytest.raises(SchemaCompilationError, match="too many searchable params"):
            extract_keywords(book_schema(properties=properties, required=[]))

    def test_searchable_at_limit(self):
        properties = {
            f"s{i}": {"type": "string", "searchable": True}
            for i in range(MAX_SEARCHABLE_FIELDS)
        }
        keywords = extract_keywords(book_schema(properties=properties, required=[]))
        assert len(keywords.searchable_fields) == MAX_SEARCHABLE_FIELDS

    def test_unknown_security_operation(self):
        with pytest.raises(SchemaCompilationError):
            extract_keywords(book_schema(security={"publish": ["public"]}))

    def test_array_schema_reads_items(self):
        wrapped = {"type": "array", "items": book_schema()}
        assert extract_keywords(wrapped).object_id_field == "isbn"


class TestSchemaRegistry:
    def test_compile_pair_registers_object_and_list(self):
        registry = SchemaRegistry()
        compiled, listed = registry.compile_pair("acme", "books", None, book_schema())
        assert compiled.id == schema_id("acme", "books") == "acme/schemas/books"
        assert listed.id == list_schema_id("acme", "books") == "acme/schemas/books/list"
        assert registry.get_compiled(compiled.id) is compiled

    def test_system_fields_are_allowed(self):
        registry = SchemaRegistry()
        compiled, listed = registry.compile_pair("acme", "books", None, book_schema())
        obj = {
            "isbn": "1",
            "title": "Dune",
            "objectId": "1",
            "createdAt": "2024-01-01T00:00:00.000Z",
            "createdBy": {"email": "a@example.com", "id": "u1"},
        }
        compiled.validate(obj)
        listed.validate([obj, obj])

    def test_validation_collects_all_errors(self):
        registry = SchemaRegistry()
        compiled, _ = registry.compile_pair("acme", "books", None, book_schema())
        with pytest.raises(SchemaValidationError) as excinfo:
            compiled.validate({"isbn": "1", "pages": "many", "extra": 1})
        keywords = sorted(error["keyword"] for error in excinfo.value.errors)
        assert keywords == ["additionalProperties", "required", "type"]
        assert excinfo.value.message == "invalid data"

    def test_compiling_same_id_twice_fails(self):
        registry = SchemaRegistry()
        compiled, _ = registry.compile_pair("acme", "books", None, book_schema())
        with pytest.raises(SchemaCompilationError, match="already compiled"):
            registry.compile(compiled.schema)

    def test_recompile_replaces_entries(self):
        registry = SchemaRegistry()
        first, _ = registry.compile_pair("acme", "books", None, book_schema())
        second, _ = registry.compile_pair("acme", "books", None, book_schema())
        assert registry.get_compiled(first.id) is second

    def test_failed_compile_leaves_nothing_registered(self):
        registry = SchemaRegistry()
        registry.compile_pair("acme", "books", None, book_schema())
        with pytest.raises(SchemaCompilationError):
            registry.compile_pair("acme", "books", None, book_schema(required=["title"]))
        assert registry.get_compiled(schema_id("acme", "books")) is None
        assert registry.get_compiled(list_schema_id("acme", "books")) is None

    def test_resolve_compiles_on_first_use(self):
        registry = SchemaRegistry()
        reviews = {"$id": "reviews", "type": "object", "properties": {"stars": {"type": "integer"}}}
        compiled, _ = registry.resolve("acme", "books", "reviews", [book_schema(), reviews])
        assert compiled.id == "acme/schemas/books/reviews"
        again, _ = registry.resolve("acme", "books", "reviews", [])
        assert again is compiled

    def test_resolve_unknown_schema(self):
        registry = SchemaRegistry()
        with pytest.raises(EntityNotFoundError):
            registry.resolve("acme", "books", "reviews", [book_schema()])

    def test_invalidate_drops_both_entries(self):
        registry = SchemaRegistry()
        registry.compile_pair("acme", "books", None, book_schema())
        registry.invalidate("acme", "books")
        assert registry.get_compiled(schema_id("acme", "books")) is None
        assert registry.get_compiled(list_schema_id("acme", "books")) is None
