"""
Tests for the per-lead score cache.

Verifies TTL expiry (including expiry that happens before any sweep),
per-(lead, model) keying, capacity eviction, invalidation and runtime
settings changes.
"""

import pytest

from leadscore.core.errors import ValidationError
from leadscore.models.schemas import Score
from leadscore.services.score_cache import ScoreCache
from leadscore.tests.factories import FakeClock


pytestmark = pytest.mark.asyncio


def make_score(lead_id: str = "lead-1", model_id: str = "model-a", value: float = 0.7) -> Score:
    return Score(
        leadId=lead_id,
        value=value,
        confidence=abs(value - 0.5) * 2,
        modelId=model_id,
        modelVersion="20261001.120000",
    )


class TestCacheLookups:
    """get/set behaviour within and beyond the TTL."""

    async def test_hit_within_ttl(self, clock: FakeClock) -> None:
        cache = ScoreCache(ttl_seconds=300, clock=clock)
        score = make_score()
        await cache.set(score)

        clock.advance(299)
        assert await cache.get("lead-1", "model-a") == score
        assert cache.hits == 1

    async def test_expired_entry_is_never_returned_before_sweep(self, clock: FakeClock) -> None:
        cache = ScoreCache(ttl_seconds=300, clock=clock)
        await cache.set(make_score())

        clock.advance(300)
        assert await cache.get("lead-1", "model-a") is None
        assert cache.misses == 1
        assert len(cache) == 0

    async def test_scores_are_keyed_per_model(self, clock: FakeClock) -> None:
        cache = ScoreCache(clock=clock)
        await cache.set(make_score(model_id="model-a", value=0.2))

        assert await cache.get("lead-1", "model-b") is None
        assert (await cache.get("lead-1", "model-a")).value == 0.2

    async def test_disabled_cache_never_stores(self, clock: FakeClock) -> None:
        cache = ScoreCache(enabled=False, clock=clock)
        await cache.set(make_score())

        assert len(cache) == 0
        assert await cache.get("lead-1", "model-a") is None


class TestCacheMaintenance:
    """Eviction, sweeping, invalidation and settings updates."""

    async def test_oldest_entry_evicted_at_capacity(self, clock: FakeClock) -> None:
        cache = ScoreCache(max_entries=2, clock=clock)
        await cache.set(make_score("lead-1"))
        await cache.set(make_score("lead-2"))
        await cache.set(make_score("lead-3"))

        assert len(cache) == 2
        assert cache.evictions == 1
        assert await cache.get("lead-1", "model-a") is None
        assert await cache.get("lead-3", "model-a") is not None

    async def test_sweep_removes_only_expired(self, clock: FakeClock) -> None:
        cache = ScoreCache(ttl_seconds=100, clock=clock)
        await cache.set(make_score("lead-1"))
        clock.advance(60)
        await cache.set(make_score("lead-2"))
        clock.advance(50)

        assert await cache.sweep_expired() == 1
        assert len(cache) == 1

    async def test_invalidate_one_lead_across_models(self, clock: FakeClock) -> None:
        cache = ScoreCache(clock=clock)
        await cache.set(make_score("lead-1", "model-a"))
        await cache.set(make_score("lead-1", "model-b"))
        await cache.set(make_score("lead-2", "model-a"))

        assert await cache.invalidate("lead-1") == 2
        assert len(cache) == 1
        assert await cache.invalidate() == 1
        assert len(cache) == 0

    async def test_lowering_ttl_shortens_existing_entries(self, clock: FakeClock) -> None:
        cache = ScoreCache(ttl_seconds=300, clock=clock)
        await cache.set(make_score())
        clock.advance(120)

        await cache.update_settings(ttl_seconds=60)
        assert await cache.get("lead-1", "model-a") is None

    async def test_shrinking_capacity_evicts_immediately(self, clock: FakeClock) -> None:
        cache = ScoreCache(max_entries=10, clock=clock)
        for i in range(5):
            await cache.set(make_score(f"lead-{i}"))

        stats = await cache.update_settings(max_entries=2)
        assert stats["size"] == 2
        assert stats["maxEntries"] == 2

    async def test_disabling_clears_entries(self, clock: FakeClock) -> None:
        cache = ScoreCache(clock=clock)
        await cache.set(make_score())

        stats = await cache.update_settings(enabled=False)
        assert stats["enabled"] is False
        assert stats["size"] == 0

    @pytest.mark.parametrize("settings", [{"ttl_seconds": 0}, {"max_entries": 0}])
    async def test_invalid_settings_rejected(self, clock: FakeClock, settings) -> None:
        cache = ScoreCache(clock=clock)
        with pytest.raises(ValidationError):
            await cache.update_settings(**settings)
