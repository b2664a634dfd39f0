# battle_logic/effects/basic_attribute.py

from __future__ import annotations
from typing import TYPE_CHECKING
from .base_effect import BaseEffect

if TYPE_CHECKING:
    from ..context import ExecutionContext


class BasicAttributeEffect(BaseEffect):
    """
    效果处理器：hp / lust / block / energy / max_* 等基础数值。
    伤害 (hp -) 与欲望伤害 (lust +) 依次套用发动者的输出修饰符和目标的承受修饰符，
    格挡 (block +) 套用目标的格挡修饰符；伤害在结算生命值前先被格挡吸收。
    """
    async def execute(self, ctx: 'ExecutionContext') -> None:
        expr = self.expression
        executor = self.executor
        target = executor.resolve_target(expr, ctx)
        amount = executor.resolve_numeric_value(expr, ctx, target)
        source = self.state.entity(ctx.source_side)
        modifiers = executor.modifiers

        if expr.attribute == "hp" and expr.operator == "-":
            amount = modifiers.apply_modifiers(source, "damage_modifier", amount)
            amount = modifiers.apply_modifiers(target, "damage_taken_modifier", amount)
            amount = await executor.absorb_block(target, max(0.0, amount), ctx)
        elif expr.attribute == "lust" and expr.operator == "+":
            amount = modifiers.apply_modifiers(source, "lust_damage_modifier", amount)
            amount = max(0.0, modifiers.apply_modifiers(target, "lust_damage_taken_modifier", amount))
        elif expr.attribute == "block" and expr.operator == "+":
            amount = max(0.0, modifiers.apply_modifiers(target, "block_modifier", amount))

        await executor.commit_attribute_change(target, expr.attribute, expr.operator, amount, ctx)
