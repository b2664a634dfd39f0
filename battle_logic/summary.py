# battle_logic/summary.py
from __future__ import annotations
import time
from typing import Optional, TYPE_CHECKING

from .data_models import (
    AbilitySummaryModel, BattleResultModel, BattleStatsModel, EnemyResultModel,
    PlayerResultModel, StatusSummaryModel,
)
from .expression import format_number

if TYPE_CHECKING:
    from .combat_state import CombatState
    from .entities import Combatant


def _status_summaries(entity: "Combatant"):
    return [
        StatusSummaryModel(name=s.name, stacks=s.stacks, type=s.type.value, description=s.description)
        for s in entity.status_effects
    ]


def build_battle_result(state: "CombatState", outcome: str, narrative: Optional[str] = None) -> BattleResultModel:
    """把当前战斗状态汇总为写回外部存储的结果。"""
    player, enemy = state.player, state.enemy
    return BattleResultModel(
        result=outcome,
        player=PlayerResultModel(
            initial_hp=state.initial_player_hp,
            final_hp=player.current_hp,
            max_hp=player.max_hp,
            initial_lust=state.initial_player_lust,
            final_lust=player.current_lust,
            max_lust=player.max_lust,
            status_effects=_status_summaries(player),
            abilities=[AbilitySummaryModel(effect=a.effect) for a in player.abilities],
            remaining_energy=player.energy,
            hand_size=len(player.hand),
            deck_size=len(player.draw_pile),
            discard_size=len(player.discard_pile),
        ),
        enemy=EnemyResultModel(
            name=enemy.name,
            final_hp=enemy.current_hp,
            max_hp=enemy.max_hp,
            final_lust=enemy.current_lust,
            max_lust=enemy.max_lust,
            status_effects=_status_summaries(enemy),
        ),
        battle_stats=BattleStatsModel(turn_count=state.turn, timestamp=int(time.time() * 1000)),
        narrative=narrative,
    )


def build_narrative_text(result: BattleResultModel, narrative: Optional[str] = None) -> str:
    """交给宿主叙事入口的文本：战斗结论 + 双方最终数值 + 可选的叙事内容。"""
    player, enemy = result.player, result.enemy
    if narrative:
        headline = f"战斗因事件而终止：{narrative}"
    elif result.result == "victory":
        headline = "玩家在战斗中取得了胜利。"
    else:
        headline = "玩家在战斗中落败。"
    lines = [
        headline,
        f"战斗持续 {result.battle_stats.turn_count} 回合。",
        f"玩家生命 {format_number(player.initial_hp)} → {format_number(player.final_hp)}/{format_number(player.max_hp)}，"
        f"欲望 {format_number(player.initial_lust)} → {format_number(player.final_lust)}/{format_number(player.max_lust)}。",
    ]
    if enemy is not None:
        lines.append(
            f"{enemy.name} 剩余生命 {format_number(enemy.final_hp)}/{format_number(enemy.max_hp)}，"
            f"欲望 {format_number(enemy.final_lust)}/{format_number(enemy.max_lust)}。"
        )
    if player.status_effects:
        lines.append("玩家身上的状态：" + "、".join(f"{s.name}({s.stacks}层)" for s in player.status_effects))
    return "\n".join(lines)
