# battle_logic/effects/modifier_attribute.py

from __future__ import annotations
from typing import TYPE_CHECKING
from .base_effect import BaseEffect
from ..events import EventType
from ..expression import format_number
from ..constants import get_display_name

if TYPE_CHECKING:
    from ..context import ExecutionContext


class ModifierAttributeEffect(BaseEffect):
    """
    效果处理器：直接写入实体的修饰符 (如 `ME.damage_modifier+2`)。
    只基于直接存储的值做运算，状态 hold 与遗物 passive 的贡献由修饰符解析器在使用时另行叠加。
    """
    async def execute(self, ctx: 'ExecutionContext') -> None:
        expr = self.expression
        target = self.executor.resolve_target(expr, ctx)
        amount = self.executor.resolve_numeric_value(expr, ctx, target)

        current = float(target.modifiers.get(expr.attribute, 0))
        new_value = round(self.executor.calculate_new_value(current, expr.operator, amount), 2)
        target.modifiers[expr.attribute] = new_value

        if new_value != current:
            self.executor.emit(
                EventType.ATTRIBUTE_CHANGED,
                f"{target.name}的{get_display_name(expr.attribute)}: "
                f"{format_number(current)} → {format_number(new_value)}",
                side=target.side, attribute=expr.attribute, old_value=current, new_value=new_value,
            )
