"""
Adventure document schema definitions

Documents on disk use camelCase keys. Models expose snake_case attributes
with camelCase aliases and accept either spelling on input.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, PrivateAttr, validator

from adventure_engine.utils.compression import (
    CompressedPayload,
    compress_content,
    decompress_content,
)


class ConditionKind(str, Enum):
    """What part of the game state a condition reads"""

    STAT = "stat"
    FLAG = "flag"
    SCENE_VISITED = "scene_visited"
    INVENTORY = "inventory"


class Operator(str, Enum):
    """Comparison applied between the current value and the target"""

    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"


OPERATOR_ALIASES = {
    "==": "eq",
    "!=": "ne",
    ">": "gt",
    ">=": "gte",
    "<": "lt",
    "<=": "lte",
}

# JSONLogic operator for each comparison
OPERATOR_SYMBOLS = {
    Operator.EQ: "==",
    Operator.NE: "!=",
    Operator.GT: ">",
    Operator.GTE: ">=",
    Operator.LT: "<",
    Operator.LTE: "<=",
}

# Display form used in requirement messages
OPERATOR_DISPLAY = {
    Operator.EQ: "=",
    Operator.NE: "≠",
    Operator.GT: ">",
    Operator.GTE: "≥",
    Operator.LT: "<",
    Operator.LTE: "≤",
}


class ActionKind(str, Enum):
    """Effect an action has on the game state"""

    SET_STAT = "set_stat"
    ADD_STAT = "add_stat"
    MULTIPLY_STAT = "multiply_stat"
    SET_FLAG = "set_flag"
    TOGGLE_FLAG = "toggle_flag"
    ADD_INVENTORY = "add_inventory"
    REMOVE_INVENTORY = "remove_inventory"
    SET_INVENTORY = "set_inventory"
    ADD_ACHIEVEMENT = "add_achievement"


def _none_to_list(v):
    return [] if v is None else v


class Condition(BaseModel):
    """Flat condition or requirement record; lists of them are conjunctive"""

    type: ConditionKind = Field(..., description="State source to read")
    operator: Operator = Field(default=Operator.EQ, description="Comparison")
    key: str = Field(..., description="Stat, flag, scene or item id")
    value: Optional[Any] = Field(None, description="Target value")

    @validator("operator", pre=True)
    def normalize_operator(cls, v):
        if isinstance(v, str):
            return OPERATOR_ALIASES.get(v, v)
        return v

    class Config:
        extra = "allow"


class Action(BaseModel):
    """Effect applied when a choice is selected or a scene is entered/left"""

    type: ActionKind = Field(..., description="Action type")
    key: str = Field(..., description="Stat, flag, item or achievement id")
    value: Optional[Any] = Field(None, description="Value for the action")
    probability: float = Field(
        default=1.0, ge=0.0, le=1.0, description="Chance the action runs"
    )

    class Config:
        extra = "allow"


class Choice(BaseModel):
    """A player-selectable transition from one scene to another"""

    id: str = Field(..., description="Unique within the scene")
    text: str = Field(default="", description="Choice label")
    target_scene_id: Optional[str] = Field(None, alias="targetSceneId")
    conditions: List[Condition] = Field(
        default_factory=list, description="Visibility / discovery gate"
    )
    requirements: List[Condition] = Field(
        default_factory=list, description="Selectability gate"
    )
    selectable_if: List[Condition] = Field(
        default_factory=list,
        alias="selectableIf",
        description="Extra selectability gate applied after the primary verdict",
    )
    actions: List[Action] = Field(default_factory=list)
    is_hidden: bool = Field(default=False, alias="isHidden")
    is_secret: bool = Field(default=False, alias="isSecret")
    is_locked: bool = Field(default=False, alias="isLocked")
    one_time: bool = Field(default=False, alias="oneTime")
    max_uses: int = Field(default=0, ge=0, alias="maxUses", description="0 = unlimited")
    cooldown: int = Field(default=0, ge=0, description="Cooldown in milliseconds")

    @validator("conditions", "requirements", "selectable_if", "actions", pre=True)
    def default_lists(cls, v):
        return _none_to_list(v)

    @validator("max_uses", "cooldown", pre=True)
    def default_numbers(cls, v):
        return 0 if v is None else v

    class Config:
        populate_by_name = True
        extra = "allow"


class Scene(BaseModel):
    """A node in the adventure graph"""

    id: str = Field(..., description="Unique scene identifier")
    title: str = Field(default="")
    content: str = Field(default="", description="Scene text")
    choices: List[Choice] = Field(default_factory=list)
    on_enter: List[Action] = Field(default_factory=list, alias="onEnter")
    on_exit: List[Action] = Field(default_factory=list, alias="onExit")

    _packed_content: Optional[CompressedPayload] = PrivateAttr(default=None)

    @validator("choices", "on_enter", "on_exit", pre=True)
    def default_lists(cls, v):
        return _none_to_list(v)

    @property
    def is_content_compressed(self) -> bool:
        return self._packed_content is not None

    def compress_content(self) -> bool:
        """Pack the content in memory; read_content() restores it"""
        if self._packed_content is not None or not self.content:
            return False
        self._packed_content = compress_content(self.content)
        self.content = ""
        return True

    def read_content(self) -> str:
        if self._packed_content is not None:
            return decompress_content(self._packed_content)
        return self.content

    def target_scene_ids(self) -> List[str]:
        return [c.target_scene_id for c in self.choices if c.target_scene_id]

    class Config:
        populate_by_name = True
        extra = "allow"


class StatDefinition(BaseModel):
    """Declared stat with its default and optional bounds"""

    id: str
    name: str = ""
    type: str = "number"
    default_value: Optional[Any] = Field(0, alias="defaultValue")
    min: Optional[float] = None
    max: Optional[float] = None
    hidden: bool = False

    class Config:
        populate_by_name = True
        extra = "allow"


class ChoiceHistoryRecord(BaseModel):
    """One selection in the append-only choice log"""

    choice_id: str = Field(..., alias="choiceId")
    scene_id: Optional[str] = Field(None, alias="sceneId")
    timestamp: float = Field(0, description="Milliseconds since the epoch")

    class Config:
        populate_by_name = True
        frozen = True


class Adventure(BaseModel):
    """Complete adventure document"""

    id: str = Field(..., description="Unique adventure identifier")
    title: str = Field(default="")
    author: str = Field(default="")
    version: str = Field(default="1.0")
    description: str = Field(default="")
    start_scene_id: Optional[str] = Field(None, alias="startSceneId")
    scenes: List[Scene] = Field(default_factory=list)
    stats: List[StatDefinition] = Field(default_factory=list)
    flags: List[Dict[str, Any]] = Field(default_factory=list)
    inventory: List[Dict[str, Any]] = Field(default_factory=list)
    achievements: List[Dict[str, Any]] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @validator("version", pre=True)
    def version_as_string(cls, v):
        return "1.0" if v is None else str(v)

    @validator("scenes", "stats", "flags", "inventory", "achievements", pre=True)
    def default_lists(cls, v):
        return _none_to_list(v)

    class Config:
        populate_by_name = True
        extra = "allow"

    def get_scene(self, scene_id: str) -> Optional[Scene]:
        for scene in self.scenes:
            if scene.id == scene_id:
                return scene
        return None

    def scene_graph(self) -> Dict[str, Scene]:
        """Scenes keyed by id, for graph walks"""
        return {scene.id: scene for scene in self.scenes}

    def to_document(self) -> Dict[str, Any]:
        """Serialize to the camelCase document shape with plain scene text"""
        data = self.dict(by_alias=True, exclude_none=True)
        for scene, scene_data in zip(self.scenes, data["scenes"]):
            if scene.is_content_compressed:
                scene_data["content"] = scene.read_content()
        return data
