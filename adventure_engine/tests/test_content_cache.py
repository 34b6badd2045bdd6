"""
Tests for the content cache and preloader.
"""

import asyncio

import pytest

from adventure_engine.engine.content_cache import ContentCache
from adventure_engine.schemas import ChoiceHistoryRecord, Scene


class FakeClock:
    """Settable clock in seconds"""

    def __init__(self, now: float = 10_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def chain_graph(length):
    """s0 -> s1 -> ... -> s{length-1}"""
    graph = {}
    for i in range(length):
        choices = [{"id": "next", "targetSceneId": f"s{i + 1}"}] if i + 1 < length else []
        graph[f"s{i}"] = {"id": f"s{i}", "choices": choices}
    return graph


class CountingLoader:
    def __init__(self, delay: float = 0.0):
        self.calls = []
        self.delay = delay

    async def __call__(self, content_id):
        self.calls.append(content_id)
        if self.delay:
            await asyncio.sleep(self.delay)
        return f"content of {content_id}"


class TestLoadContent:
    """Test loading, hits and coalescing"""

    @pytest.mark.asyncio
    async def test_miss_then_hit(self):
        cache = ContentCache()
        loader = CountingLoader()

        assert await cache.load_content("s1", loader) == "content of s1"
        assert await cache.load_content("s1", loader) == "content of s1"

        assert loader.calls == ["s1"]
        stats = cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["total_requests"] == 2
        assert stats["hit_rate"] == 50
        assert stats["cache_size"] == 1

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_one_load(self):
        cache = ContentCache()
        loader = CountingLoader(delay=0.01)

        results = await asyncio.gather(*(cache.load_content("s1", loader) for _ in range(5)))

        assert loader.calls == ["s1"]
        assert results == ["content of s1"] * 5

    @pytest.mark.asyncio
    async def test_sync_loader(self):
        cache = ContentCache()
        assert await cache.load_content("s1", lambda cid: {"id": cid}) == {"id": "s1"}

    @pytest.mark.asyncio
    async def test_callers_get_private_copies(self):
        cache = ContentCache()
        source = {"id": "s1", "tags": ["dark"]}

        first = await cache.load_content("s1", lambda cid: source)
        first["tags"].append("mutated")
        second = await cache.load_content("s1", lambda cid: source)

        assert second["tags"] == ["dark"]
        assert source["tags"] == ["dark"]

    @pytest.mark.asyncio
    async def test_loader_failure_propagates_and_clears_slot(self):
        cache = ContentCache()

        def failing(cid):
            raise RuntimeError("disk on fire")

        with pytest.raises(RuntimeError):
            await cache.load_content("s1", failing)

        assert not cache.is_loading("s1")
        assert await cache.load_content("s1", CountingLoader()) == "content of s1"

    @pytest.mark.asyncio
    async def test_large_content_round_trip(self):
        cache = ContentCache(compression_threshold=100)
        content = "The long corridor stretches on. ✨ " * 1000

        assert await cache.load_content("big", lambda cid: content) == content
        assert cache.entries["big"].compressed
        assert cache.entries["big"].size < len(content.encode("utf-8"))
        assert await cache.load_content("big", lambda cid: "wrong") == content

    @pytest.mark.asyncio
    async def test_large_json_round_trip(self):
        cache = ContentCache(compression_threshold=100)
        content = {"paragraphs": [f"Line {i}" for i in range(500)]}

        await cache.load_content("big", lambda cid: content)
        assert await cache.load_content("big", lambda cid: None) == content

    @pytest.mark.asyncio
    async def test_large_content_keeps_tuples_and_int_keys(self):
        """Content JSON cannot reproduce is stored as is"""
        cache = ContentCache(compression_threshold=100)
        content = {1: "x" * 20000, "t": (1, 2)}

        first = await cache.load_content("a", lambda cid: content)
        second = await cache.load_content("a", lambda cid: None)

        assert first == content
        assert second == content
        assert list(second) == [1, "t"]
        assert isinstance(second["t"], tuple)
        assert not cache.entries["a"].compressed

    @pytest.mark.asyncio
    async def test_model_content_is_measured(self):
        cache = ContentCache(compression_threshold=100)
        scene = Scene(id="a", title="A", content="x" * 5000)

        loaded = await cache.load_content("a", lambda cid: scene)

        assert loaded == scene
        assert cache.entries["a"].size > 5000
        assert not cache.entries["a"].compressed

    @pytest.mark.asyncio
    async def test_model_content_counts_toward_memory_threshold(self):
        cache = ContentCache(memory_threshold=3000, compression_enabled=False)

        def loader(cid):
            return Scene(id=cid, title=cid, content="x" * 2000)

        await cache.load_content("a", loader)
        await cache.load_content("b", loader)

        assert len(cache) == 1
        assert cache.get_stats()["content_unloaded"] == 1

    @pytest.mark.asyncio
    async def test_compression_disabled(self):
        cache = ContentCache(compression_threshold=10, compression_enabled=False)
        await cache.load_content("s1", lambda cid: "x" * 100)
        assert not cache.entries["s1"].compressed


class TestPreloading:
    """Test breadth-first preloading"""

    def test_find_preload_targets(self):
        cache = ContentCache(preload_distance=2)
        targets = cache.find_preload_targets("s0", chain_graph(5))
        assert targets == [("s1", 1), ("s2", 2)]

    def test_targets_capped_at_ten(self):
        graph = {"hub": {"id": "hub", "choices": [{"id": f"c{i}", "targetSceneId": f"r{i}"} for i in range(20)]}}
        assert len(ContentCache().find_preload_targets("hub", graph)) == 10

    @pytest.mark.asyncio
    async def test_preload_adjacent_content(self):
        cache = ContentCache(preload_distance=2)
        loader = CountingLoader()

        scheduled = cache.preload_adjacent_content("s0", chain_graph(5), loader)
        await cache.wait_for_background()

        assert scheduled == ["s1", "s2"]
        assert cache.entries["s1"].priority == 9
        assert cache.entries["s2"].priority == 8
        assert "s0" not in cache

    @pytest.mark.asyncio
    async def test_preload_skips_cached(self):
        cache = ContentCache()
        loader = CountingLoader()
        await cache.load_content("s1", loader)

        scheduled = cache.preload_adjacent_content("s0", chain_graph(3), loader)
        await cache.wait_for_background()
        assert scheduled == ["s2"]

    @pytest.mark.asyncio
    async def test_preload_failures_swallowed(self):
        cache = ContentCache()

        def failing(cid):
            raise RuntimeError("missing")

        cache.preload_adjacent_content("s0", chain_graph(3), failing)
        await cache.wait_for_background()
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_accepts_scene_models(self):
        graph = {
            "a": Scene(id="a", choices=[{"id": "go", "targetSceneId": "b"}]),
            "b": Scene(id="b"),
        }
        cache = ContentCache()
        assert cache.preload_adjacent_content("a", graph, CountingLoader()) == ["b"]
        await cache.cancel_background()


class TestEviction:
    """Test distance-based unloading and cleanup"""

    @pytest.mark.asyncio
    async def test_unload_respects_protection(self):
        clock = FakeClock()
        cache = ContentCache(unload_distance=1, clock=clock)
        loader = CountingLoader()
        graph = chain_graph(6)

        await cache.load_content("s5", loader, priority=1)  # far, low, will go idle
        await cache.load_content("s4", loader, priority=5)  # far but high priority
        clock.now += 400
        await cache.load_content("s3", loader, priority=1)  # far but recently loaded

        assert cache.unload_distant_content("s0", graph) == 1
        assert "s5" not in cache
        assert "s4" in cache
        assert "s3" in cache

    @pytest.mark.asyncio
    async def test_unload_keeps_reachable(self):
        clock = FakeClock()
        cache = ContentCache(unload_distance=5, clock=clock)
        await cache.load_content("s2", CountingLoader())
        clock.now += 1000
        assert cache.unload_distant_content("s0", chain_graph(6)) == 0

    @pytest.mark.asyncio
    async def test_insert_over_capacity_forces_cleanup(self):
        cache = ContentCache(max_entries=3)
        loader = CountingLoader()
        for i in range(5):
            await cache.load_content(f"s{i}", loader)
        assert len(cache) == 3
        assert cache.get_stats()["content_unloaded"] == 2

    @pytest.mark.asyncio
    async def test_cleanup_evicts_lowest_score_first(self):
        clock = FakeClock()
        cache = ContentCache(max_entries=10, clock=clock)
        loader = CountingLoader()
        await cache.load_content("keep", loader, priority=10)
        await cache.load_content("drop", loader, priority=1)

        cache.max_entries = 1
        assert await cache.cleanup(force=True) == 1
        assert "keep" in cache

    @pytest.mark.asyncio
    async def test_cleanup_rate_limited(self):
        clock = FakeClock()
        cache = ContentCache(cleanup_interval=300, clock=clock)
        await cache.load_content("a", CountingLoader())
        cache.max_entries = 0

        assert await cache.cleanup() == 0
        clock.now += 301
        assert await cache.cleanup() == 1


class TestPrefetch:
    """Test history-based prediction"""

    @pytest.fixture
    def graph(self):
        return {
            "crossroads": {
                "id": "crossroads",
                "choices": [
                    {"id": "n", "targetSceneId": "north"},
                    {"id": "s", "targetSceneId": "south"},
                ],
            },
            "north": {"id": "north", "choices": [{"id": "back", "targetSceneId": "crossroads"}]},
        }

    def test_predict_next_scenes(self, graph):
        history = [ChoiceHistoryRecord(choice_id="n", scene_id="crossroads")] * 4 + [
            {"choiceId": "back", "sceneId": "north"}
        ]
        predictions = ContentCache().predict_next_scenes(history, graph)
        assert predictions[0] == ("north", 0.4)
        assert ("south", 0.4) in predictions
        assert ("crossroads", 0.1) in predictions

    @pytest.mark.asyncio
    async def test_prefetch_by_pattern(self, graph):
        history = [{"choiceId": "n", "sceneId": "crossroads"}] * 4 + [
            {"choiceId": "back", "sceneId": "north"}
        ]
        cache = ContentCache()
        scheduled = cache.prefetch_by_pattern(history, graph, CountingLoader())
        await cache.wait_for_background()

        assert sorted(scheduled) == ["north", "south"]
        assert cache.entries["north"].priority == 4

    @pytest.mark.asyncio
    async def test_three_hits_are_not_enough(self, graph):
        """A probability of exactly 0.3 does not pass the threshold"""
        history = [{"choiceId": "n", "sceneId": "crossroads"}] * 3
        cache = ContentCache()

        assert cache.predict_next_scenes(history, graph) == [("north", 0.3), ("south", 0.3)]
        assert cache.prefetch_by_pattern(history, graph, CountingLoader()) == []

    def test_only_last_ten_records_count(self, graph):
        history = [{"sceneId": "crossroads"}] * 3 + [{"sceneId": "nowhere"}] * 10
        assert ContentCache().predict_next_scenes(history, graph) == []


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_clear_cache(self):
        cache = ContentCache()
        await cache.load_content("a", CountingLoader())
        cache.clear_cache()
        assert len(cache) == 0
        assert cache.memory_usage == 0

    @pytest.mark.asyncio
    async def test_background_cleanup_and_close(self):
        cache = ContentCache(cleanup_interval=0.01)
        await cache.load_content("a", CountingLoader())
        cache.max_entries = 0
        cache.start_background_cleanup()
        await asyncio.sleep(0.05)
        assert len(cache) == 0
        await cache.close()
