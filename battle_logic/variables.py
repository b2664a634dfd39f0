# battle_logic/variables.py
from __future__ import annotations
import re
from typing import TYPE_CHECKING

from astrbot.api import logger

from .constants import MODIFIER_TYPES, StatusType, is_player_only
from .evaluator import safe_evaluate_condition, safe_evaluate_math

if TYPE_CHECKING:
    from .combat_state import CombatState
    from .context import ExecutionContext
    from .entities import Combatant
    from .modifiers import ModifierResolver

_STACKS_RE = re.compile(r"\b(ME|OP|ALL)\.stacks\.(\w+)")
_VARIABLE_RE = re.compile(r"\b(ME|OP|ALL)\.([A-Za-z_]\w*)|(?<![\w.])([A-Za-z_]\w*)\b")


def _format_value(value: float) -> str:
    value = float(value)
    if value.is_integer():
        text = str(int(value))
    else:
        text = f"{value:.6f}".rstrip("0").rstrip(".")
    return f"({text})" if value < 0 else text


class VariableResolver:
    """
    把表达式中的变量引用替换为实时数值。
    先替换 X.stacks.<id> 两级引用，再替换 X.attr 与裸变量，避免裸变量误吞已替换的内容。
    """
    def __init__(self, state: "CombatState", modifiers: "ModifierResolver"):
        self.state = state
        self.modifiers = modifiers

    def _entity_for(self, prefix: str, ctx: "ExecutionContext") -> "Combatant":
        side = ctx.source_side if prefix == "ME" else ctx.source_side.opposite
        return self.state.entity(side)

    def get_variable_value(self, name: str, entity: "Combatant", ctx: "ExecutionContext") -> float:
        player = self.state.player
        if name in ("hp", "current_hp", "lust", "current_lust", "max_hp", "max_lust", "block"):
            return entity.get_attribute(name)
        if name in ("energy", "current_energy"):
            if ctx.card_context is not None and ctx.energy_before_card_play is not None:
                return float(ctx.energy_before_card_play)
            return float(player.energy)
        if name == "max_energy":
            return float(player.max_energy)
        if name == "hand_size":
            return float(len(player.hand))
        if name == "deck_size":
            return float(len(player.draw_pile))
        if name == "discard_pile_size":
            return float(len(player.discard_pile))
        if name == "cards_played_this_turn":
            return float(self.state.cards_played_this_turn)
        if name == "stacks":
            return float(ctx.stacks)
        if name in MODIFIER_TYPES or name in entity.modifiers:
            return self.modifiers.compute_modifier(entity, name)
        logger.warning(f"未知变量 '{name}'，按 0 处理。")
        return 0.0

    def resolve_stacks_reference(self, prefix: str, key: str, ctx: "ExecutionContext") -> int:
        if prefix == "ALL":
            return self._count_stacks(self.state.player, key) + self._count_stacks(self.state.enemy, key)
        return self._count_stacks(self._entity_for(prefix, ctx), key)

    @staticmethod
    def _count_stacks(entity: "Combatant", key: str) -> int:
        if key == "all_buffs":
            return sum(s.stacks for s in entity.status_effects)
        if key == "buffs":
            return sum(s.stacks for s in entity.status_effects if s.type is StatusType.BUFF)
        if key == "debuffs":
            return sum(s.stacks for s in entity.status_effects if s.type is StatusType.DEBUFF)
        status = entity.get_status(key)
        return status.stacks if status else 0

    def substitute(
        self, text: str, ctx: "ExecutionContext", bare_entity: "Combatant", *, all_as_player: bool = False
    ) -> str:
        """
        Args:
            bare_entity: 裸变量 (非玩家专属) 解析到的实体。
            all_as_player: 条件表达式中 ALL.attr 取玩家的值；算术表达式中取 0。
        """
        text = _STACKS_RE.sub(
            lambda m: _format_value(self.resolve_stacks_reference(m.group(1), m.group(2), ctx)), text
        )

        def variable_sub(match: re.Match) -> str:
            prefix, name, bare = match.group(1), match.group(2), match.group(3)
            if prefix == "ALL":
                if all_as_player:
                    logger.warning(f"条件中的 ALL.{name} 含义不明确，使用玩家的值。")
                    return _format_value(self.get_variable_value(name, self.state.player, ctx))
                logger.warning(f"算术表达式不支持 ALL.{name}，按 0 处理。")
                return "0"
            if prefix:
                return _format_value(self.get_variable_value(name, self._entity_for(prefix, ctx), ctx))
            if bare == "stacks":
                return _format_value(ctx.stacks)
            entity = self.state.player if is_player_only(bare) else bare_entity
            return _format_value(self.get_variable_value(bare, entity, ctx))

        return _VARIABLE_RE.sub(variable_sub, text)

    def calculate_dynamic_value(self, expression: str, ctx: "ExecutionContext", context_target: "Combatant") -> int:
        substituted = self.substitute(expression, ctx, context_target)
        result = safe_evaluate_math(substituted)
        logger.debug(f"动态数值 '{expression}' -> '{substituted}' = {result}")
        return result

    def resolve_reference(self, name: str, ctx: "ExecutionContext", target: "Combatant") -> float:
        """单个变量引用解析为实时数值 (不取整)。"""
        substituted = self.substitute(name, ctx, target).strip("()")
        try:
            return float(substituted)
        except ValueError:
            logger.warning(f"变量引用 '{name}' 无法解析为数值，按 0 处理。")
            return 0.0

    def evaluate_condition(self, condition: str, ctx: "ExecutionContext") -> bool:
        source = self.state.entity(ctx.source_side)
        substituted = self.substitute(condition, ctx, source, all_as_player=True)
        result = safe_evaluate_condition(substituted)
        logger.debug(f"条件 '{condition}' -> '{substituted}' = {result}")
        return result
