# battle_logic/executor.py
"""
统一效果执行器。

一次 execute_effect_string 调用 = 解析 → 丢弃无效单元 → 按属性优先级稳定排序 (条件表达式最后) →
逐个 await 执行 → 最外层调用结束时统一结算待定死亡。
效果触发的能力/状态/遗物会再次调用 execute_effect_string，这些嵌套调用在同一个任务内完成，
不会与其他顶层调用交错；顶层调用之间由单飞锁串行化。
"""
from __future__ import annotations
import asyncio
import random
import re
from contextvars import ContextVar
from typing import Any, List, Mapping, Optional, Set, Union, TYPE_CHECKING

from astrbot.api import logger

from .constants import (
    BattleOutcome, DEFAULT_MAX_STACKS, DEFAULT_PRIORITY, DIRECT_MODIFIER_KEYS, Side, StatusType, Target,
    get_attribute_definition, get_attribute_priority, get_display_name, is_player_only,
)
from .context import ExecutionContext
from .entities import Ability, Combatant, StatusEffectInstance
from .errors import EffectDepthError, EffectError, EffectValueError, TargetResolutionError
from .events import BattleEvent, BattleObserver, EventBus, EventType
from .expression import EffectExpression, ExpressionValue, LiteralValue, VariableRef, format_number
from .host import BattleHost
from .modifiers import ModifierResolver
from .parser import EffectParser
from .selectors import CardSelector
from .summary import build_battle_result, build_narrative_text
from .triggers import TriggerDispatcher
from .variables import VariableResolver

if TYPE_CHECKING:
    from .combat_state import CombatState
    from .status_store import StatusDefinitionStore

# 当前任务中正在运行的执行器；同一执行器的嵌套调用据此跳过单飞锁
_ACTIVE_EXECUTOR: ContextVar[Optional["EffectExecutor"]] = ContextVar("active_effect_executor", default=None)

_STUN_RE = re.compile(r"\bstun\b")


def entity_label(entity: Combatant) -> str:
    return f"{entity.side.display_name}【{entity.name}】"


class EffectExecutor:
    """
    每个战斗会话一个实例，依赖全部通过构造函数注入。
    """
    def __init__(
        self,
        state: "CombatState",
        store: "StatusDefinitionStore",
        parser: Optional[EffectParser] = None,
        *,
        bus: Optional[EventBus] = None,
        host: Optional[BattleHost] = None,
        rng: Optional[random.Random] = None,
        max_depth: int = 32,
    ):
        self.state = state
        self.store = store
        self.parser = parser or EffectParser()
        self.bus = bus or EventBus()
        self.host = host or BattleHost()
        self.rng = rng or state.rng
        self.max_depth = max_depth
        self.modifiers = ModifierResolver(store)
        self.variables = VariableResolver(state, self.modifiers)
        self.selector = CardSelector(self.rng)
        self.triggers = TriggerDispatcher(self)

        self._lock = asyncio.Lock()
        self._depth = 0
        self._pending_deaths: Set[Side] = set()
        self._overflowing: Set[Side] = set()

    # --- 事件 ---

    def subscribe(self, observer: BattleObserver) -> None:
        self.bus.subscribe(observer)

    def emit(self, event_type: EventType, message: str = "", **fields: Any) -> None:
        self.bus.emit(BattleEvent(type=event_type, message=message, **fields))

    # --- 顶层入口 ---

    async def execute_effect_string(
        self,
        text: str,
        source_is_player: bool,
        context: Union[ExecutionContext, Mapping[str, Any], None] = None,
    ) -> None:
        """
        执行一条效果字符串。source_is_player 总以调用方传入的为准，context 中的同名字段被忽略。
        """
        ctx = ExecutionContext.build(source_is_player, context)
        if _ACTIVE_EXECUTOR.get() is self:
            await self._execute_batch(text, ctx)
            return
        async with self._lock:
            token = _ACTIVE_EXECUTOR.set(self)
            try:
                await self._execute_batch(text, ctx)
            finally:
                _ACTIVE_EXECUTOR.reset(token)

    async def _execute_batch(self, text: str, ctx: ExecutionContext) -> None:
        outermost = self._depth == 0
        if outermost:
            if self.state.is_game_over:
                logger.debug(f"战斗已结束，忽略效果: {text}")
                return
            self._pending_deaths.clear()
        elif self._depth >= self.max_depth:
            raise EffectDepthError(f"效果嵌套超过最大深度 {self.max_depth}: {text}")

        self._depth += 1
        try:
            for expression in self._prepare_units(text):
                if self.state.is_game_over:
                    break
                await self.execute_expression(expression, ctx)
        except Exception as e:
            if outermost and not isinstance(e, EffectError):
                logger.error(f"执行效果字符串 '{text}' 时发生意外错误: {e}", exc_info=True)
            raise
        finally:
            self._depth -= 1

        if outermost:
            await self._process_pending_deaths()

    def _prepare_units(self, text: str) -> List[EffectExpression]:
        units = []
        for expression in self.parser.parse(text):
            if not expression.is_valid:
                self._skip(expression, expression.error_message or "表达式无效")
                continue
            units.append(expression)
        # sorted 是稳定排序，同优先级保持书写顺序
        return sorted(units, key=self._priority)

    @staticmethod
    def _priority(expression: EffectExpression) -> int:
        if expression.is_conditional:
            return DEFAULT_PRIORITY
        return get_attribute_priority(expression.attribute)

    def _skip(self, expression: EffectExpression, reason: str) -> None:
        self.emit(
            EventType.EXPRESSION_SKIPPED,
            f"效果 {expression.raw} 未生效：{reason}",
            data={"raw": expression.raw, "reason": reason},
        )

    # --- 单元分派 ---

    async def execute_expression(self, expression: EffectExpression, ctx: ExecutionContext) -> None:
        """执行单个单元。EffectError 在这里被捕获，只跳过当前单元。"""
        try:
            if expression.target is Target.ALL:
                # ALL 在分派前展开为 ME、OP 两次执行
                for target in (Target.ME, Target.OP):
                    await self.execute_expression(expression.with_target(target), ctx)
                return

            if ctx.card_context is None and ctx.status_context is None:
                self.emit(
                    EventType.EFFECT_EXECUTED,
                    f"{self._source_label(ctx)}执行效果：{expression.description or expression.raw}",
                    side=ctx.source_side,
                    data={"raw": expression.raw},
                )

            if expression.is_conditional:
                await self._execute_conditional(expression, ctx)
                return

            definition = get_attribute_definition(expression.attribute)
            if definition is None:
                raise EffectValueError(f"未知属性: {expression.attribute}")

            from .effects import EFFECT_HANDLER_MAP
            handler_class = EFFECT_HANDLER_MAP.get(definition.category)
            if handler_class is None:
                raise EffectValueError(f"属性类别 {definition.category.value} 没有对应的处理器")
            await handler_class(self, expression, definition).execute(ctx)
        except EffectError as e:
            logger.warning(f"效果单元 '{expression.raw}' 已跳过: {e}")
            self._skip(expression, str(e))

    async def _execute_conditional(self, expression: EffectExpression, ctx: ExecutionContext) -> None:
        passed = self.variables.evaluate_condition(expression.condition or "", ctx)
        branch = expression.true_effect if passed else expression.false_effect
        logger.debug(f"条件 [{expression.condition}] -> {passed}，执行分支: {branch or '(无)'}")
        if not branch:
            return
        await self.execute_effect_string(branch, ctx.source_is_player, ctx.child(trigger_type=None))

    def _source_label(self, ctx: ExecutionContext) -> str:
        source = self.state.entity(ctx.source_side)
        if ctx.relic_context is not None:
            return f"遗物【{ctx.relic_context.name}】"
        if ctx.ability_context is not None:
            return f"{source.name}的能力"
        return source.name

    # --- 目标与数值 ---

    def resolve_target(self, expression: EffectExpression, ctx: ExecutionContext) -> Combatant:
        """
        ME 为发动者 (状态触发时为状态持有者)，OP 为其对手；玩家专属属性总是指向玩家。
        未写目标且不在状态上下文中时抛出 TargetResolutionError。
        """
        if is_player_only(expression.attribute):
            return self.state.player
        if expression.target is Target.ME:
            return self.state.entity(ctx.source_side)
        if expression.target is Target.OP:
            return self.state.entity(ctx.source_side.opposite)
        if expression.target is Target.ALL:
            raise TargetResolutionError("ALL 目标必须在分派前展开")
        if ctx.status_context is not None:
            return self.state.entity(ctx.source_side)
        raise TargetResolutionError(f"效果 '{expression.raw}' 没有指定目标 (ME./OP./ALL.)")

    def resolve_numeric_value(self, expression: EffectExpression, ctx: ExecutionContext, target: Combatant) -> float:
        """按解析时确定的种类求值；变量在此刻读取目标的实时数值。"""
        value = expression.value
        if isinstance(value, LiteralValue):
            return value.number
        if isinstance(value, VariableRef):
            return self.variables.resolve_reference(value.name, ctx, target)
        if isinstance(value, ExpressionValue):
            return float(self.variables.calculate_dynamic_value(value.text, ctx, target))
        try:
            return float(value.text)
        except ValueError:
            raise EffectValueError(f"无效的数值: {value.text}") from None

    @staticmethod
    def calculate_new_value(current: float, operator: str, value: float) -> float:
        if operator == "+":
            return current + value
        if operator == "-":
            return current - value
        if operator == "*":
            return current * value
        if operator == "/":
            if value == 0:
                logger.warning("除数为 0，数值保持不变。")
                return current
            return current / value
        if operator == "=":
            return value
        raise EffectValueError(f"不支持的运算符: {operator}")

    @staticmethod
    def clamp(entity: Combatant, attribute: str, value: float) -> float:
        if attribute in ("hp", "current_hp"):
            value = min(max(value, 0), entity.max_hp)
        elif attribute in ("lust", "current_lust"):
            value = min(max(value, 0), entity.max_lust)
        elif attribute in ("block", "energy", "current_energy"):
            value = max(value, 0)
        elif attribute in ("max_hp", "max_lust", "max_energy"):
            value = max(value, 1)
        return round(value, 1)

    # --- 基础属性 ---

    async def absorb_block(self, target: Combatant, incoming: float, ctx: ExecutionContext) -> float:
        """格挡先于生命值结算，返回穿透格挡后的剩余伤害。"""
        if incoming <= 0 or target.block <= 0:
            return incoming
        used = min(target.block, incoming)
        old_block = target.block
        target.block = round(old_block - used, 1)
        self.emit(
            EventType.BLOCK_ABSORBED,
            f"{entity_label(target)}的格挡抵消了 {format_number(used)} 点伤害",
            side=target.side, attribute="block", old_value=old_block, new_value=target.block,
        )
        await self.triggers.process_abilities_by_trigger(target, "lose_block")
        return incoming - used

    async def commit_attribute_change(
        self, entity: Combatant, attribute: str, operator: str, amount: float, ctx: ExecutionContext
    ) -> None:
        """先计算、再限幅、最后写入，随后触发属性变化带来的连锁效果。"""
        old_value = entity.get_attribute(attribute)
        new_value = self.clamp(entity, attribute, self.calculate_new_value(old_value, operator, amount))
        entity.set_attribute(attribute, new_value)
        logger.debug(
            f"{entity.name}.{attribute}: {format_number(old_value)} {operator} {format_number(amount)} "
            f"-> {format_number(new_value)}"
        )
        if new_value != old_value:
            delta = new_value - old_value
            self.emit(
                EventType.ATTRIBUTE_CHANGED,
                f"{entity_label(entity)}{get_display_name(attribute)} {format_number(old_value)} → "
                f"{format_number(new_value)} ({'+' if delta > 0 else ''}{format_number(round(delta, 1))})",
                side=entity.side, attribute=attribute, old_value=old_value, new_value=new_value,
            )
        await self._after_attribute_change(entity, attribute, old_value, new_value, ctx)

    async def _after_attribute_change(
        self, entity: Combatant, attribute: str, old_value: float, new_value: float, ctx: ExecutionContext
    ) -> None:
        change = new_value - old_value
        source = self.state.entity(ctx.source_side)
        dispatch = self.triggers.process_abilities_by_trigger

        if attribute in ("hp", "current_hp"):
            if change < 0:
                await dispatch(entity, "take_damage")
                if source is not entity:
                    await dispatch(source, "deal_damage")
            elif change > 0:
                await dispatch(entity, "take_heal")
                if source is not entity:
                    await dispatch(source, "deal_heal")
            if new_value <= 0:
                # 死亡延迟到最外层调用结束时统一结算
                self._pending_deaths.add(entity.side)
        elif attribute in ("lust", "current_lust"):
            if change > 0:
                await dispatch(entity, "lust_increase")
                if source is not entity:
                    await dispatch(source, "deal_lust_increase")
                if entity.is_player:
                    await self.triggers.trigger_relics("lust_increase")
            elif change < 0:
                await dispatch(entity, "lust_decrease")
                if source is not entity:
                    await dispatch(source, "deal_lust_decrease")
            if change > 0 and entity.current_lust >= entity.max_lust:
                await self.handle_lust_overflow(entity)
        elif attribute == "block":
            if change > 0:
                await dispatch(entity, "gain_block")
            elif change < 0:
                await dispatch(entity, "lose_block")

    async def handle_lust_overflow(self, entity: Combatant) -> None:
        """欲望达到上限：执行对方配置的溢出效果，然后把溢出方的欲望清零。"""
        if entity.side in self._overflowing:
            return
        lust_effect = self.state.enemy.lust_effect if entity.is_player else self.state.player_lust_effect
        self._overflowing.add(entity.side)
        try:
            name = lust_effect.name if lust_effect else "欲望爆发"
            self.emit(
                EventType.LUST_OVERFLOW,
                f"{entity_label(entity)}欲望达到上限，触发【{name}】！",
                side=entity.side, data={"effect": lust_effect.effect if lust_effect else ""},
            )
            logger.info(f"{entity.name} 欲望溢出，触发 {name}")
            if lust_effect and lust_effect.effect:
                await self.execute_effect_string(lust_effect.effect, not entity.is_player)
            old_value = entity.current_lust
            entity.current_lust = 0
            if old_value:
                self.emit(
                    EventType.ATTRIBUTE_CHANGED,
                    f"{entity_label(entity)}欲望值归零",
                    side=entity.side, attribute="lust", old_value=old_value, new_value=0,
                )
        finally:
            self._overflowing.discard(entity.side)

    # --- 状态效果 ---

    async def apply_status_effect(
        self, holder: Combatant, status_id: str, stacks: int, duration: Optional[int] = None
    ) -> Optional[StatusEffectInstance]:
        """
        施加状态。层数不超过定义的上限 (默认 999)。已持有同名状态时用新实例替换，
        先触发 stack 再触发 apply；叠加规则完全由状态作者在效果文本中定义。
        缺少定义时记录错误并跳过，不视为致命错误。
        """
        definition = self.store.get(status_id)
        if definition is None:
            logger.error(f"未找到状态定义: {status_id}")
            self.emit(
                EventType.EXPRESSION_SKIPPED,
                f"未找到状态定义: {status_id}",
                side=holder.side, data={"status_id": status_id},
            )
            return None
        stacks = min(int(stacks), definition.max_stacks or DEFAULT_MAX_STACKS)
        if stacks <= 0:
            logger.warning(f"状态 {status_id} 的层数 {stacks} 无效，已跳过。")
            return None

        instance = StatusEffectInstance(
            id=definition.id, name=definition.name, type=StatusType(definition.type), stacks=stacks,
            emoji=definition.emoji, description=definition.description, duration=duration,
        )
        existing = holder.get_status(status_id)
        if existing is not None:
            holder.status_effects = [instance if s is existing else s for s in holder.status_effects]
        else:
            holder.status_effects.append(instance)
        self.emit(
            EventType.STATUS_APPLIED,
            f"{entity_label(holder)}获得了 {instance.display}",
            side=holder.side, data={"status_id": status_id, "stacks": stacks, "replaced": existing is not None},
        )

        if existing is not None and definition.trigger_effects("stack"):
            await self.triggers.process_status_effects_by_trigger(holder, "stack", instance=instance)
        await self.triggers.process_status_effects_by_trigger(holder, "apply", instance=instance)
        await self._dispatch_status_change(holder, instance.type, gained=True)
        return instance

    async def remove_status_effect(self, holder: Combatant, status_id: str) -> bool:
        instance = holder.get_status(status_id)
        if instance is None:
            logger.debug(f"{holder.name} 没有状态 {status_id}，无需移除。")
            return False
        await self.remove_status_instance(holder, instance)
        return True

    async def remove_statuses_by_kind(self, holder: Combatant, kind: str) -> int:
        """kind: all_buffs (全部状态) / buffs / debuffs。"""
        if kind == "all_buffs":
            targets = list(holder.status_effects)
        elif kind == "buffs":
            targets = [s for s in holder.status_effects if s.type is StatusType.BUFF]
        elif kind == "debuffs":
            targets = [s for s in holder.status_effects if s.type is StatusType.DEBUFF]
        else:
            raise EffectValueError(f"未知的状态类别: {kind}")
        for instance in targets:
            await self.remove_status_instance(holder, instance)
        return len(targets)

    async def remove_status_instance(
        self, holder: Combatant, instance: StatusEffectInstance, stacks_before: Optional[int] = None
    ) -> None:
        """移除实例 → 以移除前层数触发 remove → 清理相关直接修饰符 → 派发失去增益/减益。"""
        stacks = stacks_before if stacks_before is not None else instance.stacks
        holder.status_effects = [s for s in holder.status_effects if s is not instance]
        self.emit(
            EventType.STATUS_REMOVED,
            f"{entity_label(holder)}的 {instance.emoji}{instance.name} 已移除",
            side=holder.side, data={"status_id": instance.id, "stacks": stacks},
        )
        await self.triggers.process_status_effects_by_trigger(holder, "remove", instance=instance, stacks=stacks)
        self.clear_direct_modifiers(holder, instance.id)
        await self._dispatch_status_change(holder, instance.type, gained=False)

    async def _dispatch_status_change(self, holder: Combatant, status_type: StatusType, gained: bool) -> None:
        if status_type is StatusType.NEUTRAL:
            return
        verb = "gain" if gained else "lose"
        kind = "buff" if status_type is StatusType.BUFF else "debuff"
        await self.triggers.process_abilities_by_trigger(holder, f"{verb}_{kind}")
        await self.triggers.process_abilities_by_trigger(self.state.opponent_of(holder), f"enemy_{verb}_{kind}")

    def clear_direct_modifiers(self, holder: Combatant, status_id: str) -> List[str]:
        """清除该状态 hold/apply/tick 文本中出现过的直接修饰符键。"""
        definition = self.store.get(status_id)
        if definition is None or not holder.modifiers:
            return []
        texts = " ".join(
            effect for trigger in ("hold", "apply", "tick") for effect in definition.trigger_effects(trigger)
        )
        cleared = []
        for key in DIRECT_MODIFIER_KEYS:
            if key in holder.modifiers and re.search(rf"\b{re.escape(key)}\b", texts):
                del holder.modifiers[key]
                cleared.append(key)
        if cleared:
            logger.debug(f"{holder.name} 移除 {status_id} 时清理直接修饰符: {cleared}")
        return cleared

    def is_stunned(self, entity: Combatant) -> bool:
        """任一持有状态的 hold 文本包含 stun 即视为无法行动。"""
        return any(
            _STUN_RE.search(effect)
            for status in entity.status_effects
            for effect in self.store.get_trigger_effects(status.id, "hold")
        )

    # --- 能力 ---

    async def add_ability(self, entity: Combatant, effect: str) -> Ability:
        definition = self.parser.parse_ability(effect)
        if definition is None:
            raise EffectValueError(f"能力格式错误，应为 trigger(effects): {effect}")
        ability = Ability.create(definition.trigger, effect)
        entity.abilities.append(ability)
        self.emit(
            EventType.ABILITY_ADDED,
            f"{entity_label(entity)}获得能力：{self.parser.describe(effect) or effect}",
            side=entity.side, data={"ability_id": ability.id, "effect": effect},
        )
        await self.triggers.process_abilities_by_trigger(entity, "ability_gain")
        return ability

    def remove_ability(self, entity: Combatant, identifier: str) -> bool:
        """按 id 或完整效果文本移除第一个完全匹配的能力。"""
        identifier = identifier.strip()
        for ability in entity.abilities:
            if ability.id == identifier or ability.effect == identifier:
                entity.abilities = [a for a in entity.abilities if a is not ability]
                self.emit(
                    EventType.ABILITY_REMOVED,
                    f"{entity_label(entity)}失去能力：{ability.effect}",
                    side=entity.side, data={"ability_id": ability.id},
                )
                return True
        logger.warning(f"{entity.name} 没有匹配 '{identifier}' 的能力。")
        return False

    # --- 胜负 ---

    async def _process_pending_deaths(self) -> None:
        dead = {side for side in self._pending_deaths if self.state.entity(side).is_dead()}
        self._pending_deaths.clear()
        if not dead:
            return
        # 双方同时死亡判定玩家胜利
        winner = Side.PLAYER if Side.ENEMY in dead else Side.ENEMY
        await self.declare_game_over(winner)

    async def declare_game_over(self, winner: Side, narrative: Optional[str] = None) -> bool:
        """只会生效一次。保存战斗结果，并把叙事文本交给宿主。"""
        if not self.state.set_game_over(winner):
            return False
        outcome = (BattleOutcome.VICTORY if winner is Side.PLAYER else BattleOutcome.DEFEAT).value
        logger.info(f"战斗结束: {outcome} (第 {self.state.turn} 回合)")
        result = build_battle_result(self.state, outcome, narrative)
        self.emit(
            EventType.GAME_OVER,
            "🏆 战斗胜利！" if winner is Side.PLAYER else "💀 战斗失败……",
            side=winner, data={"result": outcome},
        )
        await self.host.save_battle_result(result)
        await self.host.request_narrative(build_narrative_text(result, narrative))
        return True
