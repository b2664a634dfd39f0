# battle_logic/selectors.py
from __future__ import annotations
import random
import re
from typing import Awaitable, Callable, Dict, List, Optional, Tuple, TYPE_CHECKING

from astrbot.api import logger

if TYPE_CHECKING:
    from .entities import Card, Player

CardChooser = Callable[[List["Card"], int, str], Awaitable[List["Card"]]]

DOMAIN_NAMES: Dict[str, str] = {"hand": "手牌", "draw": "抽牌堆", "discard": "弃牌堆"}
_PICK_NAMES = {"random": "随机", "leftmost": "最左侧", "rightmost": "最右侧", "choose": "选择"}
_CURRENT_NAMES = {
    "current": "当前",
    "current_left": "当前左侧",
    "current_right": "当前右侧",
    "current_adjacent": "当前相邻",
}
_PICK_RE = re.compile(r"^(leftmost|rightmost|random|choose)(\d+)?$")


def normalize_selector(selector: str) -> str:
    """`random[2]` 与 `random2` 两种写法等价。"""
    return re.sub(r"\[(\d*)\]", r"\1", selector.strip())


def split_selector(selector: str) -> Tuple[str, List[str]]:
    """拆出牌堆域 (默认手牌) 和以 + 连接的选择器片段。"""
    text = normalize_selector(selector)
    domain = "hand"
    head, _, rest = text.partition(".")
    if head in DOMAIN_NAMES:
        domain, text = head, rest or "random"
    parts = [part for part in text.split("+") if part]
    return domain, parts


def describe_selector(selector: str) -> str:
    domain, parts = split_selector(selector)
    domain_name = DOMAIN_NAMES[domain]
    descriptions = []
    for part in parts:
        if part == "all":
            descriptions.append(f"所有{domain_name}")
        elif part == "all_cards":
            descriptions.append("全部卡牌（手牌+抽牌堆+弃牌堆）")
        elif part in _CURRENT_NAMES:
            descriptions.append(_CURRENT_NAMES[part])
        else:
            match = _PICK_RE.match(part)
            if not match:
                descriptions.append(part)
            elif match.group(2):
                descriptions.append(f"{domain_name}{_PICK_NAMES[match.group(1)]}{match.group(2)}张")
            else:
                descriptions.append(f"{_PICK_NAMES[match.group(1)]}{domain_name}")
    return "和".join(descriptions)


class CardSelector:
    """
    按选择器语法从玩家牌堆中挑选卡牌。
    已被选中的卡牌不会再进入后续片段的候选池；正在打出的卡牌只能通过 current 系列选中。
    """
    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    async def select(
        self,
        player: "Player",
        selector: str,
        count: int = 1,
        *,
        current_card: Optional["Card"] = None,
        current_index: Optional[int] = None,
        chooser: Optional[CardChooser] = None,
        predicate: Optional[Callable[["Card"], bool]] = None,
    ) -> List["Card"]:
        domain, parts = split_selector(selector)
        pools = {"hand": player.hand, "draw": player.draw_pile, "discard": player.discard_pile}

        def allowed(card: "Card") -> bool:
            return card is not current_card and (predicate is None or predicate(card))

        candidates = [card for card in pools[domain] if allowed(card)]
        chosen: List["Card"] = []
        for part in parts:
            available = [card for card in candidates if not _contains(chosen, card)]
            if part == "all":
                chosen.extend(available)
            elif part == "all_cards":
                every = player.hand + player.draw_pile + player.discard_pile
                chosen.extend(card for card in every if allowed(card) and not _contains(chosen, card))
            elif part in _CURRENT_NAMES:
                picked = self._pick_current(player.hand, current_card, current_index, part)
                chosen.extend(c for c in picked if (predicate is None or predicate(c)) and not _contains(chosen, c))
            else:
                match = _PICK_RE.match(part)
                if not match:
                    logger.warning(f"未知的卡牌选择器片段: '{part}' (完整选择器: '{selector}')")
                    continue
                amount = int(match.group(2)) if match.group(2) else count
                chosen.extend(await self._pick(match.group(1), available, amount, chooser, selector))
        return chosen

    async def _pick(
        self, kind: str, available: List["Card"], amount: int, chooser: Optional[CardChooser], selector: str
    ) -> List["Card"]:
        amount = max(0, min(amount, len(available)))
        if amount == 0:
            return []
        if kind == "leftmost":
            return available[:amount]
        if kind == "rightmost":
            return available[-amount:]
        if kind == "random":
            return self.rng.sample(available, amount)
        if chooser is None:
            return available[:amount]
        picked = await chooser(list(available), amount, describe_selector(selector))
        return [card for card in picked if _contains(available, card)][:amount]

    @staticmethod
    def _pick_current(
        hand: List["Card"], current: Optional["Card"], current_index: Optional[int], part: str
    ) -> List["Card"]:
        if current is None:
            return []
        index = next((i for i, card in enumerate(hand) if card is current), None)
        if index is not None:
            left = [hand[index - 1]] if index > 0 else []
            right = [hand[index + 1]] if index + 1 < len(hand) else []
        elif current_index is not None:
            # 打出的卡已离开手牌，右侧邻居前移到原下标
            left = [hand[current_index - 1]] if 0 < current_index <= len(hand) else []
            right = [hand[current_index]] if 0 <= current_index < len(hand) else []
        else:
            left, right = [], []
        if part == "current":
            return [current]
        if part == "current_left":
            return left
        if part == "current_right":
            return right
        return left + right


def _contains(cards: List["Card"], card: "Card") -> bool:
    return any(c is card for c in cards)
