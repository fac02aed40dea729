import pytest

from entityapi.service.entity_cache import (
    EXPRESSIONS,
    OBJECT_SCHEMAS,
    WEBHOOKS,
    EntityCache,
    entity_ref,
)
from entityapi.service.errors import EntityNotFoundError
from entityapi.storage.memory import MemoryStore


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def seed_entity(store, workspace="acme", entity="books"):
    ref = entity_ref(workspace, entity)
    store.set(ref, {"id": entity})
    store.set(
        ref.collection(OBJECT_SCHEMAS).document(entity),
        {"$id": entity, "type": "object", "properties": {"title": {"type": "string"}}},
    )
    store.set(ref.collection(EXPRESSIONS).document("short"), {"id": "short", "expression": "title"})
    return ref


class TestEntityCache:
    """Per-entity configuration snapshots."""

    async def test_missing_entity_raises(self):
        cache = EntityCache(MemoryStore())
        with pytest.raises(EntityNotFoundError):
            await cache.resolve("acme", "books")

    async def test_snapshot_holds_every_section(self):
        store = MemoryStore()
        seed_entity(store)
        config = await EntityCache(store).resolve("acme", "books")
        assert config.entity == "books"
        assert [s["$id"] for s in config.object_schemas] == ["books"]
        assert config.expression("short")["expression"] == "title"
        assert config.webhooks == ()
        assert config.actions == ()

    async def test_fresh_entry_is_reused(self):
        store = MemoryStore()
        ref = seed_entity(store)
        clock = FakeClock()
        cache = EntityCache(store, ttl_seconds=60, clock=clock)
        first = await cache.resolve("acme", "books")
        store.set(ref.collection(WEBHOOKS).document("w1"), {"id": "w1", "triggerType": "create"})
        clock.now += 30
        assert await cache.resolve("acme", "books") is first

    async def test_expired_entry_is_reloaded(self):
        store = MemoryStore()
        ref = seed_entity(store)
        clock = FakeClock()
        cache = EntityCache(store, ttl_seconds=60, clock=clock)
        await cache.resolve("acme", "books")
        store.set(ref.collection(WEBHOOKS).document("w1"), {"id": "w1", "triggerType": "create"})
        clock.now += 61
        config = await cache.resolve("acme", "books")
        assert [w["id"] for w in config.webhooks] == ["w1"]

    async def test_force_bypasses_fresh_entry(self):
        store = MemoryStore()
        ref = seed_entity(store)
        cache = EntityCache(store)
        await cache.resolve("acme", "books")
        store.set(ref.collection(WEBHOOKS).document("w1"), {"id": "w1"})
        config = await cache.resolve("acme", "books", force=True)
        assert [w["id"] for w in config.webhooks] == ["w1"]

    async def test_invalidate_forgets_entry(self):
        store = MemoryStore()
        seed_entity(store)
        cache = EntityCache(store)
        await cache.resolve("acme", "books")
        cache.invalidate("acme", "books")
        assert cache.peek("acme", "books") is None

    async def test_workspaces_are_isolated(self):
        store = MemoryStore()
        seed_entity(store, workspace="acme")
        cache = EntityCache(store)
        await cache.resolve("acme", "books")
        with pytest.raises(EntityNotFoundError):
            await cache.resolve("globex", "books")
