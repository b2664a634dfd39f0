# battle_logic/combat_state.py
from __future__ import annotations
import random
from typing import List, Optional, Union

from astrbot.api import logger

from .constants import BattleState, Side, MAX_HAND_SIZE
from .entities import Card, Combatant, Enemy, LustEffect, Player


class CombatState:
    """
    一场战斗的全部可变状态：双方实体、牌堆、回合数与胜负。
    执行器在原地修改它；同一时刻只允许一个效果执行在运行。
    """
    def __init__(
        self,
        player: Player,
        enemy: Enemy,
        *,
        player_lust_effect: Optional[LustEffect] = None,
        max_hand_size: int = MAX_HAND_SIZE,
        rng: Optional[random.Random] = None,
    ):
        self.player = player
        self.enemy = enemy
        self.player_lust_effect = player_lust_effect
        self.max_hand_size = max_hand_size
        self.rng = rng or random.Random()
        self.turn: int = 0
        self.phase: BattleState = BattleState.PREPARING
        self.cards_played_this_turn: int = 0
        self.is_game_over: bool = False
        self.winner: Optional[Side] = None
        self.initial_player_hp: float = player.current_hp
        self.initial_player_lust: float = player.current_lust

    # --- 实体访问 ---

    def entity(self, side: Side) -> Combatant:
        return self.player if side is Side.PLAYER else self.enemy

    def opponent_of(self, entity: Combatant) -> Combatant:
        return self.entity(entity.side.opposite)

    # --- 牌堆操作 ---

    def shuffle_discard_into_draw(self) -> None:
        player = self.player
        player.draw_pile = player.discard_pile + player.draw_pile
        player.discard_pile = []
        self.rng.shuffle(player.draw_pile)
        logger.debug(f"弃牌堆洗入抽牌堆，共 {len(player.draw_pile)} 张。")

    def draw_cards(self, count: int) -> List[Card]:
        """从抽牌堆顶 (列表末尾) 抽牌，抽牌堆为空时洗入弃牌堆，手牌达到上限时停止。"""
        player = self.player
        drawn: List[Card] = []
        for _ in range(max(0, count)):
            if len(player.hand) >= self.max_hand_size:
                logger.debug("手牌已满，停止抽牌。")
                break
            if not player.draw_pile:
                if not player.discard_pile:
                    break
                self.shuffle_discard_into_draw()
            card = player.draw_pile.pop()
            player.hand.append(card)
            drawn.append(card)
        return drawn

    def add_card_to_hand(self, card: Card) -> bool:
        if len(self.player.hand) >= self.max_hand_size:
            return False
        self.player.hand.append(card)
        return True

    def add_card_to_deck(self, card: Card) -> None:
        """随机插入抽牌堆的任意位置。"""
        index = self.rng.randint(0, len(self.player.draw_pile))
        self.player.draw_pile.insert(index, card)

    def find_pile(self, card: Card) -> Optional[List[Card]]:
        for pile in (self.player.hand, self.player.draw_pile, self.player.discard_pile, self.player.exhaust_pile):
            if any(c is card for c in pile):
                return pile
        return None

    def move_card(self, card: Card, destination: List[Card]) -> bool:
        pile = self.find_pile(card)
        if pile is None:
            return False
        pile[:] = [c for c in pile if c is not card]
        destination.append(card)
        return True

    def find_card_in_hand(self, reference: Union[int, str]) -> Optional[Card]:
        """按 1 起始的序号或卡名/卡牌 id 查找手牌。"""
        hand = self.player.hand
        if isinstance(reference, int) or (isinstance(reference, str) and reference.isdigit()):
            index = int(reference) - 1
            return hand[index] if 0 <= index < len(hand) else None
        return next((c for c in hand if c.name == reference or c.id == reference), None)

    # --- 胜负 ---

    def set_game_over(self, winner: Side) -> bool:
        """只会成功一次，重复调用返回 False。"""
        if self.is_game_over:
            return False
        self.is_game_over = True
        self.winner = winner
        self.phase = BattleState.ENDED
        return True
