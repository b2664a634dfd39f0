# battle_logic/constants.py
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple


class Target(Enum):
    ME = "ME"
    OP = "OP"
    ALL = "ALL"


class Side(Enum):
    PLAYER = "player"
    ENEMY = "enemy"

    @property
    def opposite(self) -> "Side":
        return Side.ENEMY if self is Side.PLAYER else Side.PLAYER

    @property
    def display_name(self) -> str:
        return "玩家" if self is Side.PLAYER else "敌人"


class AttributeCategory(Enum):
    BASIC = "basic"
    MODIFIER = "modifier"
    STATUS = "status"
    ABILITY = "ability"
    CARD = "card"
    SPECIAL = "special"


class StatusType(Enum):
    BUFF = "buff"
    DEBUFF = "debuff"
    NEUTRAL = "neutral"


class BattleState(Enum):
    PREPARING = "preparing"
    PLAYER_TURN = "player_turn"
    ENEMY_TURN = "enemy_turn"
    ENDED = "ended"


class BattleOutcome(Enum):
    VICTORY = "victory"
    DEFEAT = "defeat"


@dataclass(frozen=True)
class AttributeDefinition:
    name: str
    category: AttributeCategory
    display_name: str
    priority: int
    player_only: bool = False


DEFAULT_PRIORITY = 999
DEFAULT_MAX_STACKS = 999
MAX_HAND_SIZE = 10

_BASIC, _MOD, _STATUS = AttributeCategory.BASIC, AttributeCategory.MODIFIER, AttributeCategory.STATUS
_ABILITY, _CARD, _SPECIAL = AttributeCategory.ABILITY, AttributeCategory.CARD, AttributeCategory.SPECIAL

# 数值越小越先执行
ATTRIBUTE_DEFINITIONS: Dict[str, AttributeDefinition] = {d.name: d for d in [
    AttributeDefinition("max_hp", _BASIC, "最大生命值", 10),
    AttributeDefinition("max_lust", _BASIC, "最大欲望值", 11),
    AttributeDefinition("max_energy", _BASIC, "最大能量", 12, player_only=True),
    AttributeDefinition("hp", _BASIC, "生命值", 13),
    AttributeDefinition("lust", _BASIC, "欲望值", 14),
    AttributeDefinition("energy", _BASIC, "当前能量", 15, player_only=True),
    AttributeDefinition("block", _BASIC, "格挡", 16),
    AttributeDefinition("status", _STATUS, "状态效果", 20),
    AttributeDefinition("stun", _STATUS, "无法行动", 21),
    AttributeDefinition("damage_modifier", _MOD, "伤害修饰符", 30),
    AttributeDefinition("damage_taken_modifier", _MOD, "受伤害修饰符", 31),
    AttributeDefinition("lust_damage_modifier", _MOD, "欲望伤害修饰符", 32),
    AttributeDefinition("lust_damage_taken_modifier", _MOD, "受欲望伤害修饰符", 33),
    AttributeDefinition("block_modifier", _MOD, "格挡修饰符", 34),
    AttributeDefinition("ability", _ABILITY, "能力", 50),
    AttributeDefinition("draw", _CARD, "抽牌", 60, player_only=True),
    AttributeDefinition("discard", _CARD, "弃牌", 61, player_only=True),
    AttributeDefinition("add_to_hand", _CARD, "加入手牌", 62, player_only=True),
    AttributeDefinition("add_to_deck", _CARD, "加入抽牌堆", 63, player_only=True),
    AttributeDefinition("exhaust", _CARD, "消耗", 64, player_only=True),
    AttributeDefinition("reduce_cost", _CARD, "降低费用", 65, player_only=True),
    AttributeDefinition("copy_card", _CARD, "复制卡牌", 66, player_only=True),
    AttributeDefinition("trigger_effect", _CARD, "触发效果", 67, player_only=True),
    AttributeDefinition("exile", _CARD, "放逐", 68, player_only=True),
    AttributeDefinition("narrate", _SPECIAL, "叙事", 70),
]}

MODIFIER_TYPES: Tuple[str, ...] = tuple(
    name for name, d in ATTRIBUTE_DEFINITIONS.items() if d.category is AttributeCategory.MODIFIER
)

# 状态被移除时需要一并清理的直接修饰符键
DIRECT_MODIFIER_KEYS: Tuple[str, ...] = MODIFIER_TYPES + ("draw", "discard", "energy_gain", "card_play_limit")

# 只属于玩家的变量，无论由谁引用都解析到玩家
PLAYER_ONLY_VARIABLES = frozenset({
    "energy", "max_energy", "current_energy", "hand_size", "deck_size",
    "discard_pile_size", "cards_played_this_turn",
})

OPERATOR_NAMES = {"+": "增加", "-": "减少", "*": "乘以", "/": "除以", "=": "设置为"}

TARGET_NAMES = {Target.ME: "己方", Target.OP: "对方", Target.ALL: "双方"}

# 触发器: 名称 -> (显示名, 图标)
TRIGGER_DEFINITIONS: Dict[str, Tuple[str, str]] = {
    "battle_start": ("战斗开始时", "🚀"),
    "ability_gain": ("获得能力时", "🎯"),
    "turn_start": ("回合开始时", "🔄"),
    "turn_end": ("回合结束时", "🔚"),
    "card_played": ("打出卡牌时", "🃏"),
    "on_card_played": ("打出卡牌时", "🃏"),
    "on_discard": ("弃牌时", "🗑️"),
    "passive": ("被动效果", "⭐"),
    "take_damage": ("受到伤害时", "💥"),
    "take_heal": ("受到治疗时", "💚"),
    "deal_damage": ("造成伤害时", "⚔️"),
    "deal_heal": ("造成治疗时", "🌟"),
    "lust_increase": ("欲望增加时", "💖"),
    "lust_decrease": ("欲望减少时", "💙"),
    "deal_lust_increase": ("造成欲望增加时", "💕"),
    "deal_lust_decrease": ("造成欲望减少时", "🧊"),
    "gain_block": ("获得格挡时", "🛡️"),
    "lose_block": ("失去格挡时", "💨"),
    "gain_buff": ("获得增益时", "✨"),
    "gain_debuff": ("获得减益时", "🌫️"),
    "lose_buff": ("失去增益时", "💨"),
    "lose_debuff": ("失去减益时", "🌈"),
    "enemy_gain_buff": ("对方获得增益时", "⚠️"),
    "enemy_gain_debuff": ("对方获得减益时", "🎯"),
    "enemy_lose_buff": ("对方失去增益时", "📉"),
    "enemy_lose_debuff": ("对方失去减益时", "📈"),
}

# 只在状态定义的 triggers 中出现的触发器
STATUS_TRIGGER_DEFINITIONS: Dict[str, Tuple[str, str]] = {
    "apply": ("施加时", "✨"),
    "tick": ("每回合", "⏱️"),
    "remove": ("移除时", "💨"),
    "hold": ("持有时", "🤲"),
    "stack": ("叠加时", "📚"),
}

VARIABLE_DISPLAY_NAMES: Dict[str, str] = {
    "max_hp": "最大生命值",
    "max_lust": "最大欲望值",
    "max_energy": "最大能量",
    "current_hp": "当前生命值",
    "current_lust": "当前欲望值",
    "current_energy": "当前能量",
    "hp": "生命值",
    "lust": "欲望值",
    "energy": "当前能量",
    "block": "格挡",
    "draw": "抽牌数",
    "discard": "弃牌数",
    "hand_size": "手牌数",
    "deck_size": "抽牌堆数",
    "discard_pile_size": "弃牌堆数",
    "cards_played_this_turn": "本回合出牌数",
    "stacks": "层数",
}

# 效果字符串中会被剥离的装饰性表情
DECORATIVE_EMOJIS = "⭐⚡🔥💖💔🛡️⚔️✨🎯"


def get_attribute_definition(name: str) -> Optional[AttributeDefinition]:
    return ATTRIBUTE_DEFINITIONS.get(name)


def get_attribute_priority(name: str) -> int:
    definition = ATTRIBUTE_DEFINITIONS.get(name)
    return definition.priority if definition else DEFAULT_PRIORITY


def is_player_only(name: str) -> bool:
    definition = ATTRIBUTE_DEFINITIONS.get(name)
    if definition is not None:
        return definition.player_only
    return name in PLAYER_ONLY_VARIABLES


def is_valid_trigger(name: str) -> bool:
    """能力触发器 (不含状态专属触发器)。"""
    return name in TRIGGER_DEFINITIONS


def get_trigger_display_name(name: str) -> str:
    if name in TRIGGER_DEFINITIONS:
        return TRIGGER_DEFINITIONS[name][0]
    if name in STATUS_TRIGGER_DEFINITIONS:
        return STATUS_TRIGGER_DEFINITIONS[name][0]
    return name


def get_display_name(name: str) -> str:
    definition = ATTRIBUTE_DEFINITIONS.get(name)
    if definition:
        return definition.display_name
    return VARIABLE_DISPLAY_NAMES.get(name, name)
