"""
Player state: stats, flags, inventory, visited scenes and achievements.

GameState is the in-memory oracle the choice evaluator reads. Every mutation
bumps a version counter so memoised evaluations can be dropped.
"""

from typing import Any, Dict, Iterable, List, Optional, Protocol, Set

from adventure_engine.schemas import ChoiceHistoryRecord, StatDefinition
from adventure_engine.utils.logger import get_logger

logger = get_logger(__name__)


class StatOracle(Protocol):
    """State queries the choice evaluator depends on"""

    def get_stat(self, key: str) -> Any: ...

    def get_flag(self, key: str) -> bool: ...

    def get_item_count(self, key: str) -> int: ...

    def has_visited(self, scene_id: str) -> bool: ...

    def get_all_stats(self) -> Dict[str, Any]: ...

    def get_all_flags(self) -> Dict[str, bool]: ...

    def get_all_inventory(self) -> Dict[str, int]: ...

    def get_visited_scenes(self) -> List[str]: ...

    def get_version(self) -> int: ...


class GameState:
    """Mutable player state with a monotonically increasing version"""

    def __init__(self, stat_definitions: Optional[Iterable[StatDefinition]] = None):
        self.stat_definitions: Dict[str, StatDefinition] = {
            definition.id: definition for definition in stat_definitions or []
        }
        self.stats: Dict[str, Any] = {
            stat_id: definition.default_value
            for stat_id, definition in self.stat_definitions.items()
        }
        self.flags: Dict[str, bool] = {}
        self.inventory: Dict[str, int] = {}
        self.visited_scenes: List[str] = []
        self.achievements: Set[str] = set()
        self.discovered_secrets: List[str] = []
        self.choice_history: List[ChoiceHistoryRecord] = []
        self._version = 0

    def _bump(self) -> None:
        self._version += 1

    def get_version(self) -> int:
        return self._version

    # Stats

    def get_stat(self, key: str) -> Any:
        return self.stats.get(key)

    def get_all_stats(self) -> Dict[str, Any]:
        return dict(self.stats)

    def set_stat(self, key: str, value: Any) -> Any:
        definition = self.stat_definitions.get(key)
        if definition is not None and isinstance(value, (int, float)):
            if definition.min is not None:
                value = max(definition.min, value)
            if definition.max is not None:
                value = min(definition.max, value)
        self.stats[key] = value
        self._bump()
        return value

    def add_to_stat(self, key: str, amount: Any) -> Any:
        current = self.stats.get(key) or 0
        return self.set_stat(key, current + amount)

    def multiply_stat(self, key: str, factor: Any) -> Any:
        current = self.stats.get(key) or 0
        return self.set_stat(key, current * factor)

    # Flags

    def get_flag(self, key: str) -> bool:
        return bool(self.flags.get(key, False))

    def get_all_flags(self) -> Dict[str, bool]:
        return dict(self.flags)

    def set_flag(self, key: str, value: Any = True) -> None:
        self.flags[key] = bool(value)
        self._bump()

    def toggle_flag(self, key: str) -> bool:
        self.flags[key] = not self.get_flag(key)
        self._bump()
        return self.flags[key]

    # Inventory

    def get_item_count(self, key: str) -> int:
        return self.inventory.get(key, 0)

    def get_all_inventory(self) -> Dict[str, int]:
        return dict(self.inventory)

    def add_item(self, key: str, quantity: int = 1) -> int:
        return self.set_item_count(key, self.get_item_count(key) + quantity)

    def remove_item(self, key: str, quantity: int = 1) -> int:
        return self.set_item_count(key, self.get_item_count(key) - quantity)

    def set_item_count(self, key: str, count: int) -> int:
        count = max(0, int(count))
        if count == 0:
            self.inventory.pop(key, None)
        else:
            self.inventory[key] = count
        self._bump()
        return count

    # Progress

    def has_visited(self, scene_id: str) -> bool:
        return scene_id in self.visited_scenes

    def get_visited_scenes(self) -> List[str]:
        return list(self.visited_scenes)

    def visit_scene(self, scene_id: str) -> None:
        if scene_id not in self.visited_scenes:
            self.visited_scenes.append(scene_id)
            self._bump()

    def add_achievement(self, key: str) -> bool:
        if key in self.achievements:
            return False
        self.achievements.add(key)
        self._bump()
        return True

    def discover_secrets(self, choice_ids: Iterable[str]) -> List[str]:
        """Record discovered secret choices, returning the ids that were new"""
        added = [cid for cid in choice_ids if cid not in self.discovered_secrets]
        if added:
            self.discovered_secrets.extend(added)
            logger.info(f"Discovered secret choices: {', '.join(added)}")
        return added

    def record_choice(
        self, choice_id: str, scene_id: Optional[str], timestamp: float
    ) -> ChoiceHistoryRecord:
        """Append to the choice log; records are never changed afterwards"""
        record = ChoiceHistoryRecord(
            choice_id=choice_id, scene_id=scene_id, timestamp=timestamp
        )
        self.choice_history.append(record)
        return record

    def snapshot(self) -> Dict[str, Any]:
        """Plain-data view of the state, for hosts that persist saves"""
        return {
            "stats": self.get_all_stats(),
            "flags": self.get_all_flags(),
            "inventory": self.get_all_inventory(),
            "visited_scenes": self.get_visited_scenes(),
            "achievements": sorted(self.achievements),
            "discovered_secrets": list(self.discovered_secrets),
            "choice_history": [r.dict(by_alias=True) for r in self.choice_history],
            "version": self._version,
        }

    @classmethod
    def from_snapshot(
        cls,
        data: Dict[str, Any],
        stat_definitions: Optional[Iterable[StatDefinition]] = None,
    ) -> "GameState":
        state = cls(stat_definitions)
        state.stats.update(data.get("stats") or {})
        state.flags.update({k: bool(v) for k, v in (data.get("flags") or {}).items()})
        state.inventory.update(data.get("inventory") or {})
        state.visited_scenes.extend(data.get("visited_scenes") or [])
        state.achievements.update(data.get("achievements") or [])
        state.discovered_secrets.extend(data.get("discovered_secrets") or [])
        state.choice_history.extend(
            ChoiceHistoryRecord(**record) for record in data.get("choice_history") or []
        )
        state._version = int(data.get("version") or 0)
        return state
