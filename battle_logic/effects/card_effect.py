# battle_logic/effects/card_effect.py

from __future__ import annotations
import math
import uuid
from typing import List, TYPE_CHECKING
from astrbot.api import logger
from .base_effect import BaseEffect
from ..entities import Card
from ..events import EventType
from ..expression import LiteralValue

if TYPE_CHECKING:
    from ..context import ExecutionContext


def _is_cost_reducible(card: Card) -> bool:
    cost = card.numeric_cost
    return card.type != "Curse" and cost is not None and cost > 0


def _names(cards: List[Card]) -> str:
    return "、".join(f"【{c.name}】" for c in cards)


class CardEffect(BaseEffect):
    """
    效果处理器：抽牌、弃牌、减费、放逐、复制、双重触发、生成卡牌。
    卡牌属性全部属于玩家，选择器语法见 selectors.py。
    """
    async def execute(self, ctx: 'ExecutionContext') -> None:
        handler = getattr(self, f"_do_{self.expression.attribute}", None)
        if handler is None:
            logger.warning(f"未知卡牌效果: {self.expression.attribute}")
            return
        await handler(ctx)

    def _amount(self, ctx: 'ExecutionContext') -> float:
        expr = self.expression
        if expr.attribute in ("add_to_hand", "add_to_deck"):
            return float(expr.card_count)
        return self.executor.resolve_numeric_value(expr, ctx, self.state.player)

    async def _select(
        self, ctx: 'ExecutionContext', default_selector: str, count: int = 1, predicate=None
    ) -> List[Card]:
        return await self.executor.selector.select(
            self.state.player,
            self.expression.selector or default_selector,
            count,
            current_card=ctx.card_context,
            current_index=ctx.card_hand_index,
            chooser=self.executor.host.choose_cards,
            predicate=predicate,
        )

    def _emit_moved(self, message: str, cards: List[Card], action: str) -> None:
        self.executor.emit(
            EventType.CARD_MOVED, message, data={"action": action, "cards": [c.id for c in cards]}
        )

    # --- 各属性 ---

    async def _do_draw(self, ctx: 'ExecutionContext') -> None:
        count = max(0, math.floor(self._amount(ctx)))
        if count == 0 and not isinstance(self.expression.value, LiteralValue):
            # 由变量/表达式推导出 0 时按 1 张处理，只有字面量 0 才真正不抽
            count = 1
        drawn = self.state.draw_cards(count)
        if drawn:
            self._emit_moved(f"抽了 {len(drawn)} 张牌：{_names(drawn)}", drawn, "draw")
        else:
            logger.debug("没有可抽的牌或手牌已满。")

    async def _do_discard(self, ctx: 'ExecutionContext') -> None:
        count = max(0, math.floor(self._amount(ctx)))
        if self.expression.selector:
            cards = await self._select(ctx, "hand.random", count)
        else:
            candidates = [c for c in self.state.player.hand if c is not ctx.card_context]
            cards = self.executor.rng.sample(candidates, min(count, len(candidates)))
        for card in cards:
            await self.discard_card(card)

    async def discard_card(self, card: Card) -> bool:
        """先移入弃牌堆再触发弃牌效果、on_discard 能力与遗物的弃牌检测。"""
        if not self.state.move_card(card, self.state.player.discard_pile):
            return False
        self._emit_moved(f"弃掉了【{card.name}】", [card], "discard")
        if card.discard_effect:
            await self.executor.execute_effect_string(card.discard_effect, True)
        await self.executor.triggers.on_discard()
        await self.executor.triggers.on_card_discarded()
        return True

    async def _do_reduce_cost(self, ctx: 'ExecutionContext') -> None:
        reduction = math.floor(self._amount(ctx))
        cards = await self._select(ctx, "hand.choose", 1, predicate=_is_cost_reducible)
        if not cards:
            logger.info("无可减费目标，效果跳过。")
            self.executor.emit(
                EventType.EXPRESSION_SKIPPED, "无可减费目标，效果跳过", data={"raw": self.expression.raw}
            )
            return
        for card in cards:
            old_cost = card.numeric_cost or 0
            card.cost = max(0, old_cost - reduction)
            self.executor.emit(
                EventType.CARD_MODIFIED,
                f"【{card.name}】费用 {old_cost} → {card.cost}",
                data={"card": card.id, "old_cost": old_cost, "new_cost": card.cost},
            )

    async def _do_exile(self, ctx: 'ExecutionContext') -> None:
        cards = await self._select(ctx, "hand.choose", 1)
        for card in cards:
            self.state.move_card(card, self.state.player.exhaust_pile)
        if cards:
            self._emit_moved(f"放逐了{_names(cards)}", cards, "exile")

    async def _do_copy_card(self, ctx: 'ExecutionContext') -> None:
        copies = []
        for card in await self._select(ctx, "hand.choose", 1):
            copy = card.copy_with_id(f"{card.id}_copy_{uuid.uuid4().hex[:8]}")
            if not self.state.add_card_to_hand(copy):
                logger.debug("手牌已满，复制的卡牌被丢弃。")
                break
            copies.append(copy)
        if copies:
            self._emit_moved(f"复制了{_names(copies)}", copies, "copy")

    async def _do_trigger_effect(self, ctx: 'ExecutionContext') -> None:
        for card in await self._select(ctx, "hand.choose", 1):
            card.double_effect = True
            self.executor.emit(
                EventType.CARD_MODIFIED, f"【{card.name}】下次使用时效果触发两次", data={"card": card.id}
            )

    async def _do_exhaust(self, ctx: 'ExecutionContext') -> None:
        # 消耗由出牌流程根据卡牌的 exhaust 标记处理
        logger.debug(f"消耗效果: {self.expression.raw}")

    async def _do_add_to_hand(self, ctx: 'ExecutionContext') -> None:
        added = []
        for _ in range(int(self._amount(ctx))):
            card = Card.generated(self.expression.card_data or {})
            if not self.state.add_card_to_hand(card):
                logger.debug("手牌已满，生成的卡牌未加入手牌。")
                break
            added.append(card)
        if added:
            self._emit_moved(f"获得卡牌：{_names(added)}", added, "add_to_hand")

    async def _do_add_to_deck(self, ctx: 'ExecutionContext') -> None:
        added = []
        for _ in range(int(self._amount(ctx))):
            card = Card.generated(self.expression.card_data or {})
            self.state.add_card_to_deck(card)
            added.append(card)
        self._emit_moved(f"获得卡牌：{_names(added)} (加入抽牌堆)", added, "add_to_deck")
