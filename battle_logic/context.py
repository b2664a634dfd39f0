# battle_logic/context.py
from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Any, Mapping, Optional, Union, TYPE_CHECKING

from .constants import Side

if TYPE_CHECKING:
    from .entities import Ability, Card, Relic, StatusEffectInstance


@dataclass(frozen=True)
class ExecutionContext:
    """
    单次 execute_effect_string 调用的上下文，不可变且按值传递。
    嵌套调用通过 child() 得到新实例，子调用的 trigger_type/status_context 不会回流到父调用。
    """
    source_is_player: bool
    target_type: Optional[str] = None
    trigger_type: Optional[str] = None
    card_context: Optional["Card"] = None
    # 正在触发的状态实例；此时 ME 指状态持有者
    status_context: Optional["StatusEffectInstance"] = None
    # 替换 stacks 时使用的层数 (移除时为移除前层数)
    status_stacks: Optional[int] = None
    ability_context: Optional["Ability"] = None
    is_relic_effect: bool = False
    relic_context: Optional["Relic"] = None
    energy_before_card_play: Optional[int] = None
    # 打出前该卡在手牌中的下标，供 current_left/current_right 定位
    card_hand_index: Optional[int] = None

    @property
    def source_side(self) -> Side:
        return Side.PLAYER if self.source_is_player else Side.ENEMY

    @property
    def stacks(self) -> int:
        if self.status_stacks is not None:
            return self.status_stacks
        return self.status_context.stacks if self.status_context else 0

    def child(self, **changes: Any) -> "ExecutionContext":
        return replace(self, **changes)

    @classmethod
    def build(
        cls, source_is_player: bool, context: Union["ExecutionContext", Mapping[str, Any], None] = None
    ) -> "ExecutionContext":
        """以调用方给出的 source_is_player 为准，忽略 context 中携带的同名字段。"""
        if context is None:
            return cls(source_is_player=source_is_player)
        if isinstance(context, ExecutionContext):
            return replace(context, source_is_player=source_is_player)
        fields = {k: v for k, v in context.items() if k != "source_is_player"}
        return cls(source_is_player=source_is_player, **fields)
