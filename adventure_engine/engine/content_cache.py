"""
Content cache and preloader for adventure scenes.

Scene content is loaded on demand through a caller-supplied loader and kept
in a bounded cache. Key behaviours:

1. Request coalescing - concurrent requests for the same id share one load
2. Compression - large content is gzip-packed in memory
3. Preloading - scenes a few hops ahead are loaded in the background
4. Eviction - low-value entries are dropped when caps are exceeded

Each caller receives its own copy of the content, so mutating a returned
value never affects the cache or other callers.
"""

import asyncio
import copy
import inspect
import math
import sys
import time
from collections import Counter, deque
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Set,
    Tuple,
    Union,
)

from adventure_engine.config import settings
from adventure_engine.schemas import Choice, ChoiceHistoryRecord, Scene
from adventure_engine.utils.compression import (
    CompressedPayload,
    compress_content,
    content_size,
    decompress_content,
)
from adventure_engine.utils.logger import get_logger

logger = get_logger(__name__)

ContentLoader = Callable[[str], Union[Any, Awaitable[Any]]]
SceneLike = Union[Scene, Mapping[str, Any]]
SceneGraph = Mapping[str, SceneLike]

MAX_PRELOAD_TARGETS = 10
PATTERN_WINDOW = 10
MAX_PREDICTIONS = 5


@dataclass
class CacheEntry:
    """A cached piece of content with its bookkeeping"""

    content: Any
    size: int
    priority: int
    last_accessed: float
    access_count: int = 1
    compressed: bool = False
    load_time_ms: float = 0.0


def scene_targets(scene: Optional[SceneLike]) -> List[str]:
    """Target scene ids of a scene's choices, for Scene models or raw documents"""
    if scene is None:
        return []
    if isinstance(scene, Scene):
        return scene.target_scene_ids()

    targets = []
    for choice in scene.get("choices") or []:
        if isinstance(choice, Choice):
            target = choice.target_scene_id
        elif isinstance(choice, Mapping):
            target = choice.get("targetSceneId") or choice.get("target_scene_id")
        else:
            target = None
        if target:
            targets.append(target)
    return targets


def _history_scene_id(record: Any) -> Optional[str]:
    if isinstance(record, ChoiceHistoryRecord):
        return record.scene_id
    if isinstance(record, Mapping):
        return record.get("sceneId") or record.get("scene_id")
    return None


class ContentCache:
    """Bounded async content cache with preloading and prefetching"""

    def __init__(
        self,
        max_entries: Optional[int] = None,
        memory_threshold: Optional[int] = None,
        preload_distance: Optional[int] = None,
        unload_distance: Optional[int] = None,
        cleanup_interval: Optional[float] = None,
        compression_enabled: Optional[bool] = None,
        compression_threshold: Optional[int] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize the content cache. Unset options come from settings.

        Args:
            max_entries: Maximum number of cached entries
            memory_threshold: Maximum total stored bytes
            preload_distance: Hops ahead to preload
            unload_distance: Hops beyond which content may be unloaded
            cleanup_interval: Minimum seconds between unforced cleanups
            compression_enabled: Compress content above compression_threshold
            compression_threshold: Size in bytes above which content is packed
            clock: Current time in seconds
        """
        self.max_entries = max_entries or settings.content_cache_max_entries
        self.memory_threshold = memory_threshold or settings.content_cache_memory_threshold
        self.preload_distance = (
            settings.preload_distance if preload_distance is None else preload_distance
        )
        self.unload_distance = (
            settings.unload_distance if unload_distance is None else unload_distance
        )
        self.cleanup_interval = (
            settings.cleanup_interval_seconds
            if cleanup_interval is None
            else cleanup_interval
        )
        self.compression_enabled = (
            settings.compression_enabled
            if compression_enabled is None
            else compression_enabled
        )
        self.compression_threshold = (
            compression_threshold or settings.compression_threshold_bytes
        )
        self.clock = clock or time.time

        self.entries: Dict[str, CacheEntry] = {}
        self._in_flight: Dict[str, "asyncio.Task[Any]"] = {}
        self._background: Set["asyncio.Task[Any]"] = set()
        self._cleanup_task: Optional["asyncio.Task[None]"] = None
        self._generation = 0
        self.last_cleanup = self.clock()

        self.hits = 0
        self.misses = 0
        self.content_loaded = 0
        self.content_unloaded = 0
        self.total_requests = 0
        self.memory_usage = 0
        self.average_load_time_ms = 0.0

    def __contains__(self, content_id: str) -> bool:
        return content_id in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def is_loading(self, content_id: str) -> bool:
        return content_id in self._in_flight

    # Loading

    async def load_content(
        self, content_id: str, loader: ContentLoader, priority: int = 1
    ) -> Any:
        """
        Return content for an id, loading it on a miss.

        Args:
            content_id: Content identifier, normally a scene id
            loader: Sync or async callable taking the id
            priority: Eviction priority; higher survives longer

        Returns:
            A private copy of the content

        Raises:
            Whatever the loader raises, for the callers awaiting that load
        """
        self.total_requests += 1

        entry = self.entries.get(content_id)
        if entry is not None:
            entry.last_accessed = self.clock()
            entry.access_count += 1
            self.hits += 1
            logger.debug(f"Content cache hit: {content_id}")
            return await self._read_entry(entry)

        self.misses += 1

        task = self._in_flight.get(content_id)
        if task is None:
            task = asyncio.ensure_future(self._load(content_id, loader, priority))
            self._in_flight[content_id] = task
        else:
            logger.debug(f"Joining in-flight load: {content_id}")

        # Shielded so one cancelled caller does not cancel the shared load
        content = await asyncio.shield(task)
        return copy.deepcopy(content)

    async def _load(self, content_id: str, loader: ContentLoader, priority: int) -> Any:
        generation = self._generation
        started = time.perf_counter()
        try:
            raw = loader(content_id)
            if inspect.isawaitable(raw):
                raw = await raw
            content = copy.deepcopy(raw)

            size = self._measure(content)
            stored: Any = content
            compressed = False
            if self.compression_enabled and size > self.compression_threshold:
                try:
                    stored = await asyncio.to_thread(compress_content, content)
                    compressed = True
                    size = stored.size
                except (TypeError, ValueError) as e:
                    logger.debug(f"Keeping {content_id} uncompressed: {e}")

            load_time_ms = (time.perf_counter() - started) * 1000

            if generation != self._generation:
                logger.debug(f"Cache cleared while loading {content_id}, not storing")
                return content

            self.entries[content_id] = CacheEntry(
                content=stored,
                size=size,
                priority=priority,
                last_accessed=self.clock(),
                compressed=compressed,
                load_time_ms=load_time_ms,
            )
            self.content_loaded += 1
            self.memory_usage += size
            self._update_average_load_time(load_time_ms)
            logger.debug(
                f"Loaded {content_id} ({size} bytes, priority {priority}, "
                f"compressed={compressed})"
            )

            if self._over_limits():
                await self.cleanup(force=True)

            return content
        except Exception as e:
            logger.error(f"Failed to load content {content_id}: {e}")
            raise
        finally:
            if self._in_flight.get(content_id) is asyncio.current_task():
                del self._in_flight[content_id]

    async def _read_entry(self, entry: CacheEntry) -> Any:
        if entry.compressed:
            payload: CompressedPayload = entry.content
            if payload.original_size > self.compression_threshold * 10:
                return await asyncio.to_thread(decompress_content, payload)
            return decompress_content(payload)
        return copy.deepcopy(entry.content)

    def _measure(self, content: Any) -> int:
        """Approximate stored size in bytes"""
        try:
            return content_size(content)
        except (TypeError, ValueError):
            # Circular structures or unserializable keys
            return sys.getsizeof(content)

    def _update_average_load_time(self, load_time_ms: float) -> None:
        total = self.average_load_time_ms * (self.content_loaded - 1) + load_time_ms
        self.average_load_time_ms = total / self.content_loaded

    # Preloading

    def find_preload_targets(
        self, current_scene_id: str, scene_graph: SceneGraph
    ) -> List[Tuple[str, int]]:
        """Breadth-first (scene id, distance) pairs within preload_distance"""
        targets: List[Tuple[str, int]] = []
        visited: Set[str] = set()
        queue = deque([(current_scene_id, 0)])

        while queue and len(targets) < MAX_PRELOAD_TARGETS:
            scene_id, distance = queue.popleft()
            if scene_id in visited or distance > self.preload_distance:
                continue
            visited.add(scene_id)

            if distance > 0:
                targets.append((scene_id, distance))

            for target in scene_targets(scene_graph.get(scene_id)):
                if target not in visited:
                    queue.append((target, distance + 1))

        return targets

    def preload_adjacent_content(
        self, current_scene_id: str, scene_graph: SceneGraph, loader: ContentLoader
    ) -> List[str]:
        """
        Start background loads for scenes near the current one.

        Closer scenes get higher priority. Failures are logged, never raised.

        Returns:
            Ids of the scenes scheduled for loading
        """
        scheduled = []
        for scene_id, distance in self.find_preload_targets(current_scene_id, scene_graph):
            if scene_id in self.entries or scene_id in self._in_flight:
                continue
            self._spawn(scene_id, loader, max(1, 10 - distance), "Preload")
            scheduled.append(scene_id)

        if scheduled:
            logger.debug(f"Preloading {len(scheduled)} scenes from {current_scene_id}")
        return scheduled

    def predict_next_scenes(
        self, history: Iterable[Any], scene_graph: SceneGraph
    ) -> List[Tuple[str, float]]:
        """
        Predict likely next scenes from recent choices.

        Each of the last few history records adds 0.1 to every target of
        the scene it was made in.

        Returns:
            Up to five (scene id, probability) pairs, most likely first
        """
        counts: Counter = Counter()
        for record in list(history)[-PATTERN_WINDOW:]:
            for target in scene_targets(scene_graph.get(_history_scene_id(record))):
                counts[target] += 1

        ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
        return [(scene_id, count / 10) for scene_id, count in ranked[:MAX_PREDICTIONS]]

    def prefetch_by_pattern(
        self, history: Iterable[Any], scene_graph: SceneGraph, loader: ContentLoader
    ) -> List[str]:
        """Start background loads for likely next scenes; returns the ids"""
        scheduled = []
        for scene_id, probability in self.predict_next_scenes(history, scene_graph):
            if probability <= settings.prefetch_probability_threshold:
                continue
            if scene_id in self.entries or scene_id in self._in_flight:
                continue
            self._spawn(scene_id, loader, math.ceil(probability * 10), "Prefetch")
            scheduled.append(scene_id)
        return scheduled

    def _spawn(self, content_id: str, loader: ContentLoader, priority: int, label: str) -> None:
        task = asyncio.ensure_future(
            self._background_load(content_id, loader, priority, label)
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _background_load(
        self, content_id: str, loader: ContentLoader, priority: int, label: str
    ) -> None:
        try:
            await self.load_content(content_id, loader, priority)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"{label} failed for {content_id}: {e}")

    async def wait_for_background(self) -> None:
        """Wait until scheduled preloads and prefetches have finished"""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def cancel_background(self) -> None:
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # Eviction

    def find_distant_scenes(
        self, current_scene_id: str, scene_graph: SceneGraph
    ) -> List[str]:
        """Cached ids not reachable within unload_distance"""
        reachable: Set[str] = set()
        queue = deque([(current_scene_id, 0)])

        while queue:
            scene_id, distance = queue.popleft()
            if scene_id in reachable or distance > self.unload_distance:
                continue
            reachable.add(scene_id)

            for target in scene_targets(scene_graph.get(scene_id)):
                if target not in reachable:
                    queue.append((target, distance + 1))

        return [content_id for content_id in self.entries if content_id not in reachable]

    def unload_distant_content(
        self, current_scene_id: str, scene_graph: SceneGraph
    ) -> int:
        """
        Evict far-away content that is low priority and idle.

        Returns:
            Number of evicted entries
        """
        now = self.clock()
        unloaded = 0
        for content_id in self.find_distant_scenes(current_scene_id, scene_graph):
            entry = self.entries[content_id]
            if (
                entry.priority < settings.unload_priority_threshold
                and now - entry.last_accessed > settings.unload_idle_seconds
            ):
                self._evict(content_id)
                unloaded += 1

        if unloaded:
            logger.debug(f"Unloaded {unloaded} distant entries from {current_scene_id}")
        return unloaded

    def cleanup_score(self, entry: CacheEntry, now: float) -> float:
        """Lower scores are evicted first"""
        hours_since_access = (now - entry.last_accessed) / 3600
        return (entry.priority or 1) * math.log(entry.access_count + 1) - hours_since_access

    async def cleanup(self, force: bool = False) -> int:
        """
        Evict the lowest-scoring entries until the caps hold.

        Unforced cleanups run at most once per cleanup_interval.

        Returns:
            Number of evicted entries
        """
        now = self.clock()
        if not force and now - self.last_cleanup < self.cleanup_interval:
            return 0
        self.last_cleanup = now

        ranked = sorted(self.entries.items(), key=lambda item: self.cleanup_score(item[1], now))

        removed = 0
        for content_id, _ in ranked:
            if not self._over_limits():
                break
            self._evict(content_id)
            removed += 1

        if removed:
            logger.info(f"Content cache cleanup evicted {removed} entries")
        return removed

    def _over_limits(self) -> bool:
        return (
            len(self.entries) > self.max_entries
            or self.memory_usage > self.memory_threshold
        )

    def _evict(self, content_id: str) -> None:
        entry = self.entries.pop(content_id)
        self.memory_usage -= entry.size
        self.content_unloaded += 1

    def start_background_cleanup(self) -> None:
        """Run cleanup every cleanup_interval until close()"""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.ensure_future(self._cleanup_loop())

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            try:
                await self.cleanup()
            except Exception as e:
                logger.error(f"Background cleanup failed: {e}")

    async def close(self) -> None:
        """Stop background work and drop all content"""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            await asyncio.gather(self._cleanup_task, return_exceptions=True)
            self._cleanup_task = None
        await self.cancel_background()
        self.clear_cache()

    # Stats

    def get_stats(self) -> Dict[str, Any]:
        hit_rate = (self.hits / self.total_requests * 100) if self.total_requests else 0
        return {
            "hits": self.hits,
            "misses": self.misses,
            "content_loaded": self.content_loaded,
            "content_unloaded": self.content_unloaded,
            "total_requests": self.total_requests,
            "hit_rate": round(hit_rate),
            "cache_size": len(self.entries),
            "average_load_time_ms": round(self.average_load_time_ms, 2),
            "memory_usage_mb": round(self.memory_usage / (1024 * 1024), 2),
            "compression_enabled": self.compression_enabled,
        }

    def clear_cache(self) -> None:
        """Drop all entries; loads already running finish without storing"""
        self.entries.clear()
        self._in_flight.clear()
        self.memory_usage = 0
        self._generation += 1
        logger.info("Content cache cleared")
