"""
Unit tests for CacheInvalidationManager and with_cache_invalidation
Feature: memory-cache
"""
import pytest

from storefront_core.cache.invalidation import CacheInvalidationManager, with_cache_invalidation
from storefront_core.cache.registry import CacheRegistry


@pytest.fixture
def registry(clock, null_reporter):
    return CacheRegistry(error_reporter=null_reporter, clock=clock)


@pytest.fixture
def manager(registry):
    return CacheInvalidationManager(registry)


async def warm_template(registry, template_id):
    ops = registry.operations("template")
    await ops.read(template_id, lambda: {"template_id": template_id})
    return ops


class TestEntityUpdates:
    """Version tracking and registry invalidation"""

    @pytest.mark.asyncio
    async def test_update_invalidates_registry(self, registry, manager):
        ops = await warm_template(registry, 5)

        results = await manager.on_entity_updated("template", 5)

        assert results == {"registry": 1}
        assert not ops.cache.has(ops.key_for(5))

    @pytest.mark.asyncio
    async def test_unchanged_content_skips_invalidation(self, registry, manager):
        content = {"template_id": 5, "name": "Shop"}
        await manager.on_entity_updated("template", 5, content)
        ops = await warm_template(registry, 5)

        assert await manager.on_entity_updated("template", 5, dict(content)) == {}
        assert ops.cache.has(ops.key_for(5))

    @pytest.mark.asyncio
    async def test_changed_content_invalidates(self, registry, manager):
        await manager.on_entity_updated("template", 5, {"name": "Shop"})
        await warm_template(registry, 5)

        results = await manager.on_entity_updated("template", 5, {"name": "Boutique"})

        assert results["registry"] == 1

    @pytest.mark.asyncio
    async def test_delete_forgets_version(self, registry, manager):
        await manager.on_entity_updated("template", 5, "v1")
        await warm_template(registry, 5)

        results = await manager.on_entity_deleted("template", 5)

        assert results == {"registry": 1}
        assert manager.get_health()["tracked_entities"] == 0
        # Same content after delete is treated as new
        assert await manager.on_entity_updated("template", 5, "v1") == {"registry": 0}

    @pytest.mark.asyncio
    async def test_tracked_versions_are_bounded(self, registry):
        manager = CacheInvalidationManager(registry, max_versions=2)
        for template_id in (1, 2, 3):
            await manager.on_entity_updated("template", template_id, {"v": template_id})

        assert manager.get_health()["tracked_entities"] == 2
        # The oldest version was dropped, so identical content invalidates again
        assert await manager.on_entity_updated("template", 1, {"v": 1}) == {"registry": 0}
        assert await manager.on_entity_updated("template", 3, {"v": 3}) == {}

    @pytest.mark.asyncio
    async def test_invalidate_all(self, registry, manager):
        await warm_template(registry, 1)
        await registry["orders"].set("a", 1)
        await manager.on_entity_updated("order", 1, {"status": "paid"})

        assert await manager.invalidate_all() == {"registry": 2}
        assert manager.get_health()["tracked_entities"] == 0


class TestHandlers:
    """Downstream purge handlers"""

    @pytest.mark.asyncio
    async def test_handlers_receive_entity(self, registry, manager):
        calls = []

        async def cdn_purge(entity_type, entity_id):
            calls.append((entity_type, entity_id))
            return 3

        manager.register_handler("cdn", cdn_purge)
        results = await manager.on_entity_updated("blog", 12)

        assert calls == [("blog", "12")]
        assert results == {"registry": 0, "cdn": 3}

    @pytest.mark.asyncio
    async def test_failing_handler_reported_as_minus_one(self, manager):
        async def broken(entity_type, entity_id):
            raise ConnectionError("cdn unreachable")

        manager.register_handler("cdn", broken)

        assert await manager.on_entity_deleted("order", 1) == {"registry": 0, "cdn": -1}

    @pytest.mark.asyncio
    async def test_unregister(self, manager):
        async def purge(entity_type, entity_id):
            return 1

        manager.register_handler("edge", purge)

        assert manager.unregister_handler("edge") is True
        assert manager.unregister_handler("edge") is False
        assert await manager.on_entity_updated("order", 1) == {"registry": 0}

    @pytest.mark.asyncio
    async def test_health(self, registry, manager):
        await warm_template(registry, 1)

        async def purge(entity_type, entity_id):
            return 2

        manager.register_handler("cdn", purge)
        await manager.on_entity_updated("template", 1, {"v": 1})

        health = manager.get_health()
        assert health["tracked_entities"] == 1
        assert health["registered_handlers"] == ["cdn"]
        assert health["total_invalidations"] == 3
        assert health["last_invalidation"] is not None


class TestMutationDecorator:
    """Invalidate after successful mutations only"""

    @pytest.mark.asyncio
    async def test_async_mutation_invalidates(self, registry):
        ops = await warm_template(registry, 1)

        @with_cache_invalidation(registry, "template")
        async def update_template(template_id, data):
            return {"success": True, "id": template_id}

        assert await update_template(1, {}) == {"success": True, "id": 1}
        assert ops.cache.size == 0

    @pytest.mark.asyncio
    async def test_failed_result_keeps_cache(self, registry):
        ops = await warm_template(registry, 1)

        @with_cache_invalidation(registry, "template")
        async def update_template(template_id):
            return {"success": False, "error": "validation"}

        await update_template(1)

        assert ops.cache.size == 1

    @pytest.mark.asyncio
    async def test_exception_keeps_cache_and_propagates(self, registry):
        ops = await warm_template(registry, 1)

        @with_cache_invalidation(registry, "template")
        async def update_template(template_id):
            raise RuntimeError("database down")

        with pytest.raises(RuntimeError):
            await update_template(1)

        assert ops.cache.size == 1

    @pytest.mark.asyncio
    async def test_sync_mutation(self, registry):
        await registry["orders"].set("storefront:orders:id=1", {"order_id": 1})

        @with_cache_invalidation(registry, "order")
        def cancel_order(order_id):
            return None

        cancel_order(1)

        assert registry["orders"].size == 0
        assert cancel_order.__name__ == "cancel_order"
