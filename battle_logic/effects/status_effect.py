# battle_logic/effects/status_effect.py

from __future__ import annotations
import math
from typing import TYPE_CHECKING
from .base_effect import BaseEffect
from ..expression import EffectValue, ExpressionValue, LiteralValue, VariableRef

if TYPE_CHECKING:
    from ..context import ExecutionContext
    from ..entities import Combatant

_REMOVE_KINDS = ("all_buffs", "buffs", "debuffs")


class StatusEffect(BaseEffect):
    """
    效果处理器：施加/移除状态效果。
    `status apply burn 3` / `status.apply(burn:3)` / `status remove debuffs`，
    以及 `stun` 属性 (等价于对 id 为 stun 的状态进行施加/移除)。
    """
    async def execute(self, ctx: 'ExecutionContext') -> None:
        expr = self.expression
        target = self.executor.resolve_target(expr, ctx)

        if expr.attribute == "stun":
            if expr.operator in ("remove", "-"):
                await self.executor.remove_status_effect(target, "stun")
            else:
                stacks = self._resolve_stacks(expr.value, ctx, target)
                await self.executor.apply_status_effect(target, "stun", stacks, expr.duration)
            return

        if expr.operator == "apply":
            stacks = self._resolve_stacks(expr.stacks or LiteralValue(1), ctx, target)
            await self.executor.apply_status_effect(target, expr.status_id, stacks, expr.duration)
        elif expr.status_id in _REMOVE_KINDS:
            await self.executor.remove_statuses_by_kind(target, expr.status_id)
        else:
            await self.executor.remove_status_effect(target, expr.status_id)

    def _resolve_stacks(self, value: EffectValue, ctx: 'ExecutionContext', target: 'Combatant') -> int:
        if isinstance(value, LiteralValue):
            return math.floor(value.number)
        if isinstance(value, ExpressionValue):
            return self.executor.variables.calculate_dynamic_value(value.text, ctx, target)
        if isinstance(value, VariableRef):
            return math.floor(self.executor.variables.resolve_reference(value.name, ctx, target))
        # 无法识别的层数按 1 层处理
        try:
            return int(value.text)
        except ValueError:
            return 1
