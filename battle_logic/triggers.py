# battle_logic/triggers.py
from __future__ import annotations
import math
from typing import Optional, Union, TYPE_CHECKING

from astrbot.api import logger

from .constants import get_trigger_display_name
from .context import ExecutionContext
from .events import EventType
from .modifiers import process_stacks_expression
from .parser import extract_wrapped_segments

if TYPE_CHECKING:
    from .entities import Combatant, StatusEffectInstance
    from .executor import EffectExecutor

_CARD_PLAYED_ALIASES = frozenset({"card_played", "on_card_played"})


class TriggerDispatcher:
    """
    能力、状态、遗物三类触发源的统一派发。
    所有派发都基于列表快照：派发过程中新增/移除的能力或状态不影响本轮。
    """
    def __init__(self, executor: "EffectExecutor"):
        self.executor = executor

    @property
    def state(self):
        return self.executor.state

    # --- 能力 ---

    async def process_abilities_by_trigger(self, entity: "Combatant", trigger: str) -> None:
        accepted = _CARD_PLAYED_ALIASES if trigger in _CARD_PLAYED_ALIASES else {trigger}
        for ability in list(entity.abilities):
            definition = self.executor.parser.parse_ability(ability.effect)
            if definition is None:
                logger.warning(f"能力格式错误，应为 trigger(effects)，已跳过: {ability.effect}")
                continue
            if definition.trigger not in accepted:
                continue
            self.executor.emit(
                EventType.ABILITY_TRIGGERED,
                f"{entity.name}的能力【{get_trigger_display_name(definition.trigger)}】发动",
                side=entity.side, data={"ability_id": ability.id, "trigger": trigger},
            )
            ctx = ExecutionContext(source_is_player=entity.is_player, trigger_type=trigger, ability_context=ability)
            await self.executor.execute_effect_string(definition.inner, entity.is_player, ctx)

    # --- 状态 ---

    async def process_status_effects_by_trigger(
        self,
        holder: "Combatant",
        trigger: str,
        instance: Optional["StatusEffectInstance"] = None,
        stacks: Optional[int] = None,
    ) -> None:
        """
        触发状态定义中的某个触发器。效果在持有者视角下执行 (ME = 持有者)，
        文本中的 stacks 先替换为层数 (移除时为移除前的层数)。
        hold 只作为修饰符与眩晕判定的输入，从不触发。
        """
        if trigger == "hold":
            return
        instances = [instance] if instance is not None else list(holder.status_effects)
        for status in instances:
            effects = self.executor.store.get_trigger_effects(status.id, trigger)
            if not effects:
                continue
            count = stacks if stacks is not None else status.stacks
            self.executor.emit(
                EventType.ABILITY_TRIGGERED,
                f"{status.emoji}{status.name}触发{get_trigger_display_name(trigger)}效果",
                side=holder.side, data={"status_id": status.id, "trigger": trigger},
            )
            ctx = ExecutionContext(
                source_is_player=holder.is_player, trigger_type=trigger,
                status_context=status, status_stacks=count,
            )
            for effect in effects:
                await self.executor.execute_effect_string(
                    process_stacks_expression(effect, count), holder.is_player, ctx
                )

    # --- 遗物 ---

    async def trigger_relics(self, trigger: str) -> None:
        """执行玩家遗物中所有 trigger(...) 片段；passive 片段只供修饰符解析读取。"""
        if trigger == "passive":
            return
        for relic in list(self.state.player.relics):
            for segment in extract_wrapped_segments(relic.effect, trigger):
                logger.debug(f"遗物 {relic.name} 触发 {trigger}: {segment}")
                self.executor.emit(
                    EventType.ABILITY_TRIGGERED,
                    f"{relic.emoji}遗物【{relic.name}】触发",
                    data={"relic_id": relic.id, "trigger": trigger},
                )
                ctx = ExecutionContext(
                    source_is_player=True, trigger_type=trigger, is_relic_effect=True, relic_context=relic
                )
                await self.executor.execute_effect_string(segment, True, ctx)

    # --- 回合流程 ---

    async def process_battle_start(self) -> None:
        for entity in (self.state.player, self.state.enemy):
            await self.process_status_effects_by_trigger(entity, "battle_start")
            await self.process_abilities_by_trigger(entity, "battle_start")
        await self.trigger_relics("battle_start")

    async def process_turn_start(self, entity: "Combatant") -> None:
        await self.process_status_effects_by_trigger(entity, "turn_start")
        await self.process_abilities_by_trigger(entity, "turn_start")
        if entity.is_player:
            await self.trigger_relics("turn_start")

    async def process_turn_end(self, entity: "Combatant") -> None:
        """tick → 状态 turn_end → 能力 turn_end → 遗物 turn_end → 层数衰减。"""
        await self.process_status_effects_by_trigger(entity, "tick")
        await self.process_status_effects_by_trigger(entity, "turn_end")
        await self.process_abilities_by_trigger(entity, "turn_end")
        if entity.is_player:
            await self.trigger_relics("turn_end")
        await self.apply_status_stacks_decay(entity)

    async def apply_status_stacks_decay(self, entity: "Combatant") -> None:
        for status in list(entity.status_effects):
            definition = self.executor.store.get(status.id)
            before = status.stacks
            after = self.compute_decay(before, definition.stacks_change if definition else None)
            if definition is not None and definition.max_stacks:
                after = min(after, definition.max_stacks)
            if after <= 0:
                await self.executor.remove_status_instance(entity, status, stacks_before=before)
            elif after != before:
                status.stacks = after
                self.executor.emit(
                    EventType.STATUS_STACKS_CHANGED,
                    f"{entity.name}的 {status.emoji}{status.name} 层数 {before} → {after}",
                    side=entity.side, data={"status_id": status.id, "old": before, "new": after},
                )

    @staticmethod
    def compute_decay(stacks: int, change: Union[int, float, str, None]) -> int:
        """
        回合结束的层数变化规则：
        数字为增减量 (不低于 0)；"x0.5" 按比例向下取整；"reset" 清零；"keep" 或未定义时不变。
        """
        if change is None:
            return stacks
        if isinstance(change, (int, float)) and not isinstance(change, bool):
            return max(0, math.floor(stacks + change))
        text = str(change).strip().lower()
        if text == "reset":
            return 0
        if text in ("keep", ""):
            return stacks
        try:
            if text.startswith("x"):
                return max(0, math.floor(stacks * float(text[1:])))
            return max(0, math.floor(stacks + float(text)))
        except ValueError:
            logger.warning(f"无法识别的层数变化规则 '{change}'，层数保持不变。")
            return stacks

    # --- 具名派发入口 ---

    async def on_card_played(self) -> None:
        await self.process_abilities_by_trigger(self.state.player, "card_played")
        await self.trigger_relics("card_played")

    async def on_discard(self) -> None:
        await self.process_abilities_by_trigger(self.state.player, "on_discard")

    async def on_card_discarded(self) -> None:
        await self.trigger_relics("card_discarded")

