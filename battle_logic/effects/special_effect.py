# battle_logic/effects/special_effect.py

from __future__ import annotations
from typing import TYPE_CHECKING
from .base_effect import BaseEffect
from ..constants import Side
from ..events import EventType
from ..expression import value_to_text

if TYPE_CHECKING:
    from ..context import ExecutionContext


class NarrateEffect(BaseEffect):
    """效果处理器：叙事。以玩家胜利的形式结束战斗，并把文本交给宿主的叙事入口。"""
    async def execute(self, ctx: 'ExecutionContext') -> None:
        text = value_to_text(self.expression.value)
        self.executor.emit(EventType.NARRATIVE, f"📜 {text}", data={"text": text})
        await self.executor.declare_game_over(Side.PLAYER, narrative=text)
