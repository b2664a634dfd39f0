# battle_logic/entities.py
from __future__ import annotations
import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Union

from .constants import Side, StatusType


@dataclass
class Card:
    id: str
    name: str
    cost: Union[int, str] = 1
    effect: str = ""
    type: str = "Skill"
    rarity: str = "Common"
    emoji: str = "🃏"
    description: str = ""
    discard_effect: str = ""
    retain: bool = False
    exhaust: bool = False
    ethereal: bool = False
    original_id: Optional[str] = None
    # trigger_effect 标记：下次打出时效果执行两次
    double_effect: bool = False

    @property
    def is_x_cost(self) -> bool:
        return self.cost == "energy"

    @property
    def numeric_cost(self) -> Optional[int]:
        if isinstance(self.cost, bool):
            return None
        if isinstance(self.cost, (int, float)):
            return int(self.cost)
        if isinstance(self.cost, str) and self.cost.isdigit():
            return int(self.cost)
        return None

    def copy_with_id(self, new_id: str) -> "Card":
        return replace(self, id=new_id, double_effect=False)

    @classmethod
    def generated(cls, data: Union[str, Mapping[str, Any]]) -> "Card":
        """由效果生成的卡牌，缺失字段用默认值补齐。"""
        if isinstance(data, str):
            data = {"id": data}
        card_id = str(data.get("id") or f"generated_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}")
        return cls(
            id=f"{card_id}_{uuid.uuid4().hex[:8]}",
            original_id=card_id,
            name=str(data.get("name") or card_id),
            emoji=str(data.get("emoji") or "🃏"),
            type=str(data.get("type") or "Skill"),
            rarity=str(data.get("rarity") or "Common"),
            cost=data.get("cost", 1),
            description=str(data.get("description") or "由效果生成的卡牌"),
            effect=str(data.get("effect") or ""),
            discard_effect=str(data.get("discard_effect") or ""),
            retain=bool(data.get("retain", False)),
            exhaust=bool(data.get("exhaust", False)),
            ethereal=bool(data.get("ethereal", False)),
        )


@dataclass
class StatusEffectInstance:
    id: str
    name: str
    type: StatusType
    stacks: int
    emoji: str = ""
    description: str = ""
    duration: Optional[int] = None

    @property
    def display(self) -> str:
        return f"{self.emoji}{self.name}({self.stacks}层)"


@dataclass
class Ability:
    id: str
    trigger: str
    effect: str

    @classmethod
    def create(cls, trigger: str, effect: str) -> "Ability":
        return cls(id=f"ability_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}", trigger=trigger, effect=effect)


@dataclass
class Relic:
    id: str
    name: str
    effect: str = ""
    description: str = ""
    emoji: str = "🔮"


@dataclass
class LustEffect:
    name: str
    effect: str
    description: str = ""


@dataclass
class EnemyAction:
    name: str
    effect: str
    description: str = ""
    weight: float = 1.0


_ATTRIBUTE_FIELDS = {
    "hp": "current_hp",
    "current_hp": "current_hp",
    "lust": "current_lust",
    "current_lust": "current_lust",
    "block": "block",
    "max_hp": "max_hp",
    "max_lust": "max_lust",
}


@dataclass
class Combatant:
    """玩家与敌人共有的战斗数值与状态/能力列表。"""
    side: ClassVar[Side]

    name: str
    max_hp: float = 100
    current_hp: float = 100
    max_lust: float = 100
    current_lust: float = 0
    block: float = 0
    status_effects: List[StatusEffectInstance] = field(default_factory=list)
    abilities: List[Ability] = field(default_factory=list)
    # 直接存储的修饰符，与状态 hold 推导出的修饰符一起参与计算
    modifiers: Dict[str, float] = field(default_factory=dict)

    @property
    def is_player(self) -> bool:
        return self.side is Side.PLAYER

    def is_dead(self) -> bool:
        return self.current_hp <= 0

    def get_status(self, status_id: str) -> Optional[StatusEffectInstance]:
        return next((s for s in self.status_effects if s.id == status_id), None)

    def has_status(self, status_id: str) -> bool:
        return self.get_status(status_id) is not None

    def get_attribute(self, attribute: str) -> float:
        field_name = _ATTRIBUTE_FIELDS.get(attribute)
        if field_name is None:
            raise KeyError(attribute)
        return float(getattr(self, field_name))

    def set_attribute(self, attribute: str, value: float) -> None:
        field_name = _ATTRIBUTE_FIELDS.get(attribute)
        if field_name is None:
            raise KeyError(attribute)
        setattr(self, field_name, value)
        # 上限降低时，当前值随之收紧
        if field_name == "max_hp" and self.current_hp > value:
            self.current_hp = value
        elif field_name == "max_lust" and self.current_lust > value:
            self.current_lust = value


@dataclass
class Player(Combatant):
    side: ClassVar[Side] = Side.PLAYER

    energy: int = 3
    max_energy: int = 3
    relics: List[Relic] = field(default_factory=list)
    hand: List[Card] = field(default_factory=list)
    draw_pile: List[Card] = field(default_factory=list)
    discard_pile: List[Card] = field(default_factory=list)
    exhaust_pile: List[Card] = field(default_factory=list)

    def get_attribute(self, attribute: str) -> float:
        if attribute in ("energy", "current_energy"):
            return float(self.energy)
        if attribute == "max_energy":
            return float(self.max_energy)
        return super().get_attribute(attribute)

    def set_attribute(self, attribute: str, value: float) -> None:
        if attribute in ("energy", "current_energy"):
            self.energy = int(value)
        elif attribute == "max_energy":
            self.max_energy = int(value)
        else:
            super().set_attribute(attribute, value)


@dataclass
class Enemy(Combatant):
    side: ClassVar[Side] = Side.ENEMY

    emoji: str = "👹"
    description: str = ""
    actions: List[EnemyAction] = field(default_factory=list)
    action_mode: str = "random"
    lust_effect: Optional[LustEffect] = None
    next_action: Optional[EnemyAction] = None
    action_index: int = 0
