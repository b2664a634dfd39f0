# battle_logic/effects/ability_effect.py

from __future__ import annotations
from typing import TYPE_CHECKING
from astrbot.api import logger
from .base_effect import BaseEffect
from ..expression import value_to_text

if TYPE_CHECKING:
    from ..context import ExecutionContext


class AbilityEffect(BaseEffect):
    """
    效果处理器：为实体添加或移除 `trigger(effects)` 形式的能力。
    遗物上下文中，包装语法不注册能力，而是直接执行括号内的效果；passive 片段跳过。
    """
    async def execute(self, ctx: 'ExecutionContext') -> None:
        expr = self.expression
        text = value_to_text(expr.value)

        if expr.prefix and ctx.is_relic_effect:
            if expr.prefix == "passive":
                logger.debug("遗物 passive 效果不执行，由修饰符解析读取。")
                return
            definition = self.executor.parser.parse_ability(text)
            if definition is not None:
                await self.executor.execute_effect_string(definition.inner, ctx.source_is_player, ctx)
                return

        if expr.target is None:
            target = self.state.entity(ctx.source_side)
        else:
            target = self.executor.resolve_target(expr, ctx)

        if expr.operator == "remove":
            self.executor.remove_ability(target, text)
        else:
            await self.executor.add_ability(target, text)
