# battle_logic/battle.py
from __future__ import annotations
import asyncio
from typing import Any, Dict, Iterable, List, Optional, Union, TYPE_CHECKING

from astrbot.api import logger

from .constants import BattleOutcome, BattleState, Side
from .context import ExecutionContext
from .entities import Card, EnemyAction, LustEffect
from .events import BattleObserver, EventBus, EventType
from .errors import BattleActionError
from .executor import EffectExecutor
from .settings import BattleSettings
from .summary import build_battle_result

if TYPE_CHECKING:
    from .combat_state import CombatState
    from .data_models import BattleResultModel
    from .host import BattleHost
    from .parser import EffectParser
    from .status_store import StatusDefinitionStore


def _lust_effect_data(effect: LustEffect) -> Dict[str, str]:
    return {"name": effect.name, "effect": effect.effect, "description": effect.description}


class Battle:
    """
    一场卡牌战斗的回合流程。
    所有玩家操作都经过行动锁串行化；效果的实际结算全部交给 EffectExecutor。
    """
    def __init__(
        self,
        state: "CombatState",
        store: "StatusDefinitionStore",
        settings: Optional[BattleSettings] = None,
        *,
        host: Optional["BattleHost"] = None,
        observers: Optional[Iterable[BattleObserver]] = None,
        parser: Optional["EffectParser"] = None,
    ):
        self.state = state
        self.store = store
        self.settings = settings or BattleSettings()
        self.bus = EventBus(observers)
        self.executor = EffectExecutor(
            state, store, parser,
            bus=self.bus, host=host, rng=state.rng, max_depth=self.settings.max_effect_depth,
        )
        self._action_lock = asyncio.Lock()

    @property
    def triggers(self):
        return self.executor.triggers

    def is_over(self) -> bool:
        return self.state.is_game_over

    # --- 战斗开始 ---

    async def start(self) -> None:
        """
        【核心流程】洗牌并抽起始手牌 → 战斗开始触发 (状态/能力/遗物) → 决定敌人意图 → 进入第一回合。
        第一回合不再额外抽牌。
        """
        async with self._action_lock:
            if self.state.phase is not BattleState.PREPARING:
                raise BattleActionError("战斗已经开始了。")
            player, enemy = self.state.player, self.state.enemy
            logger.info(f"战斗开始: {player.name} vs {enemy.name} ({len(player.draw_pile)} 张牌)")

            self.state.turn = 1
            self.state.rng.shuffle(player.draw_pile)
            self._draw(self.settings.cards_per_turn)

            await self.triggers.process_battle_start()
            if self.is_over():
                return
            self.choose_enemy_intent()
            self._announce_turn()
            await self.start_player_turn(first_turn=True)

    async def start_player_turn(self, first_turn: bool = False) -> None:
        """
        重置格挡/能量/出牌数 → turn_start 触发 → 抽牌。调用方需持有行动锁。
        第一回合保留战斗开始时获得的格挡，也不再抽牌。
        """
        player = self.state.player
        self.state.phase = BattleState.PLAYER_TURN
        if not first_turn:
            player.block = 0
        player.energy = player.max_energy
        self.state.cards_played_this_turn = 0

        await self.triggers.process_turn_start(player)
        if self.is_over() or first_turn:
            return
        self._draw(self.settings.cards_per_turn)

    # --- 玩家操作 ---

    async def play_card(self, reference: Union[int, str]) -> Card:
        """
        打出一张手牌。
        卡牌先离开手牌进入弃牌堆 (exhaust 卡进入消耗堆)，随后才执行效果；
        X 费卡 (cost 为 "energy") 消耗全部能量，效果中的 energy 读取打出前的能量值。
        """
        async with self._action_lock:
            self._ensure_player_turn()
            player = self.state.player
            card = self.state.find_card_in_hand(reference)
            if card is None:
                raise BattleActionError(f"手牌中没有找到 '{reference}'。")
            if card.type == "Curse":
                raise BattleActionError(f"【{card.name}】是诅咒牌，无法打出。")
            if self.executor.is_stunned(player):
                raise BattleActionError("你处于无法行动状态，本回合不能出牌。")

            cost = player.energy if card.is_x_cost else card.numeric_cost
            if cost is None:
                raise BattleActionError(f"【{card.name}】的费用 '{card.cost}' 无法识别。")
            if cost > player.energy:
                raise BattleActionError(f"能量不足：【{card.name}】需要 {cost} 点能量，当前只有 {player.energy} 点。")

            energy_before = player.energy
            hand_index = next(i for i, c in enumerate(player.hand) if c is card)
            player.energy -= cost
            self.state.move_card(card, player.exhaust_pile if card.exhaust else player.discard_pile)
            self.executor.emit(
                EventType.CARD_MOVED,
                f"{card.emoji} 打出了【{card.name}】(消耗 {cost} 点能量)",
                side=Side.PLAYER, data={"action": "play", "cards": [card.id], "cost": cost},
            )

            ctx = ExecutionContext(
                source_is_player=True, card_context=card,
                energy_before_card_play=energy_before, card_hand_index=hand_index,
            )
            repeat = 2 if card.double_effect else 1
            card.double_effect = False
            for _ in range(repeat):
                if not card.effect or self.is_over():
                    break
                await self.executor.execute_effect_string(card.effect, True, ctx)

            self.state.cards_played_this_turn += 1
            if not self.is_over():
                await self.triggers.on_card_played()
            return card

    async def end_player_turn(self) -> None:
        """结束玩家回合，完整执行敌人回合后进入下一个玩家回合。"""
        async with self._action_lock:
            self._ensure_player_turn()
            self._discard_hand_at_turn_end()

            await self.triggers.process_turn_end(self.state.player)
            if self.is_over():
                return

            await self._run_enemy_turn()
            if self.is_over():
                return

            self.state.turn += 1
            self._announce_turn()
            await self.start_player_turn()

    async def flee(self) -> None:
        async with self._action_lock:
            if self.is_over():
                raise BattleActionError("战斗已经结束了。")
            await self.executor.declare_game_over(Side.ENEMY, narrative="玩家逃离了战斗。")

    async def run_effect(self, text: str, source_is_player: bool = True) -> None:
        """以玩家 (或敌人) 身份直接执行一条效果字符串，供调试指令使用。"""
        async with self._action_lock:
            if self.is_over():
                raise BattleActionError("战斗已经结束了。")
            await self.executor.execute_effect_string(text, source_is_player)

    # --- 敌人 ---

    def choose_enemy_intent(self) -> Optional[EnemyAction]:
        """random 模式按权重抽取，sequential 模式按顺序循环。"""
        enemy = self.state.enemy
        if not enemy.actions:
            enemy.next_action = None
            return None
        if enemy.action_mode == "sequential":
            action = enemy.actions[enemy.action_index % len(enemy.actions)]
            enemy.action_index += 1
        else:
            weights = [max(0.0, a.weight) for a in enemy.actions]
            if sum(weights) > 0:
                action = self.state.rng.choices(enemy.actions, weights=weights, k=1)[0]
            else:
                action = self.state.rng.choice(enemy.actions)
        enemy.next_action = action
        logger.debug(f"{enemy.name} 的下一个行动: {action.name} ({action.effect})")
        return action

    async def _run_enemy_turn(self) -> None:
        enemy = self.state.enemy
        self.state.phase = BattleState.ENEMY_TURN
        enemy.block = 0

        await self.triggers.process_turn_start(enemy)
        if self.is_over():
            return

        action = enemy.next_action
        if self.executor.is_stunned(enemy):
            self.executor.emit(
                EventType.ENEMY_ACTION, f"{enemy.emoji}{enemy.name}无法行动！",
                side=Side.ENEMY, data={"action": None, "stunned": True},
            )
        elif action is not None:
            self.executor.emit(
                EventType.ENEMY_ACTION, f"{enemy.emoji}{enemy.name}使用了【{action.name}】！",
                side=Side.ENEMY, data={"action": action.name, "effect": action.effect},
            )
            await self.executor.execute_effect_string(action.effect, False)
        if self.is_over():
            return

        await self.triggers.process_turn_end(enemy)
        if self.is_over():
            return
        self.choose_enemy_intent()

    # --- 辅助 ---

    def _ensure_player_turn(self) -> None:
        if self.is_over():
            raise BattleActionError("战斗已经结束了。")
        if self.state.phase is not BattleState.PLAYER_TURN:
            raise BattleActionError("现在不是你的回合。")

    def _announce_turn(self) -> None:
        self.executor.emit(
            EventType.TURN_CHANGED, f"--- 第 {self.state.turn} 回合 ---", data={"turn": self.state.turn}
        )

    def _draw(self, count: int) -> List[Card]:
        drawn = self.state.draw_cards(count)
        if drawn:
            self.executor.emit(
                EventType.CARD_MOVED,
                f"抽了 {len(drawn)} 张牌：" + "、".join(f"【{c.name}】" for c in drawn),
                side=Side.PLAYER, data={"action": "draw", "cards": [c.id for c in drawn]},
            )
        return drawn

    def _discard_hand_at_turn_end(self) -> None:
        """
        回合结束时的手牌处理：虚无 (ethereal) 卡被消耗；保留 (retain) 卡与诅咒卡留在手牌；
        其余卡牌进入弃牌堆。此处弃牌不触发任何弃牌效果。
        """
        player = self.state.player
        kept: List[Card] = []
        discarded: List[Card] = []
        exhausted: List[Card] = []
        for card in player.hand:
            if card.ethereal:
                player.exhaust_pile.append(card)
                exhausted.append(card)
            elif card.retain or card.type == "Curse":
                kept.append(card)
            else:
                player.discard_pile.append(card)
                discarded.append(card)
        player.hand = kept
        if exhausted:
            self.executor.emit(
                EventType.CARD_MOVED, "虚无的卡牌消散了：" + "、".join(f"【{c.name}】" for c in exhausted),
                side=Side.PLAYER, data={"action": "exhaust", "cards": [c.id for c in exhausted]},
            )
        if discarded:
            logger.debug(f"回合结束弃置 {len(discarded)} 张手牌。")

    # --- 结果 ---

    def result(self) -> Optional["BattleResultModel"]:
        if not self.is_over():
            return None
        outcome = BattleOutcome.VICTORY if self.state.winner is Side.PLAYER else BattleOutcome.DEFEAT
        return build_battle_result(self.state, outcome.value)

    def export_snapshot(self) -> Dict[str, Any]:
        """把当前战斗状态按载入时的外部变量格式导出 (stat_data.battle)。"""
        player, enemy = self.state.player, self.state.enemy
        cards = player.hand + player.draw_pile + player.discard_pile
        snapshot: Dict[str, Any] = {
            "core": {
                "hp": player.current_hp,
                "max_hp": player.max_hp,
                "lust": player.current_lust,
                "max_lust": player.max_lust,
                "max_energy": player.max_energy,
            },
            "enemy": {
                "name": enemy.name,
                "emoji": enemy.emoji,
                "hp": enemy.current_hp,
                "max_hp": enemy.max_hp,
                "lust": enemy.current_lust,
                "max_lust": enemy.max_lust,
                "description": enemy.description,
                "action_mode": enemy.action_mode,
                "actions": [
                    {"name": a.name, "effect": a.effect, "description": a.description, "weight": a.weight}
                    for a in enemy.actions
                ],
                "abilities": [a.effect for a in enemy.abilities],
                "status_effects": [{"id": s.id, "stacks": s.stacks} for s in enemy.status_effects],
            },
            "cards": [
                {
                    "id": c.original_id or c.id, "name": c.name, "emoji": c.emoji, "type": c.type,
                    "rarity": c.rarity, "cost": c.cost, "description": c.description, "effect": c.effect,
                    "discard_effect": c.discard_effect, "retain": c.retain, "exhaust": c.exhaust,
                    "ethereal": c.ethereal,
                }
                for c in cards
            ],
            "artifacts": [
                {"id": r.id, "name": r.name, "emoji": r.emoji, "description": r.description, "effect": r.effect}
                for r in player.relics
            ],
            "player_abilities": [a.effect for a in player.abilities],
            "player_status_effects": [{"id": s.id, "stacks": s.stacks} for s in player.status_effects],
            "statuses": self.store.export_ai_definitions(),
        }
        if enemy.lust_effect is not None:
            snapshot["enemy"]["lust_effect"] = _lust_effect_data(enemy.lust_effect)
        if self.state.player_lust_effect is not None:
            snapshot["player_lust_effect"] = _lust_effect_data(self.state.player_lust_effect)
        return snapshot
