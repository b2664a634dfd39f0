# ui.py

from typing import List, Optional, TYPE_CHECKING

from .battle_logic.constants import Side, StatusType
from .battle_logic.expression import format_number

# 避免循环导入，仅在类型检查时导入GameSession
if TYPE_CHECKING:
    from .service import GameSession
    from .battle_logic.battle import Battle
    from .battle_logic.entities import Card, Combatant, Enemy, Player
    from .battle_logic.status_store import StatusDefinitionStore

_STATUS_TYPE_NAMES = {StatusType.BUFF: "增益", StatusType.DEBUFF: "减益", StatusType.NEUTRAL: "中性"}

# --- UI 格式化辅助函数 ---

def format_statuses(entity: 'Combatant') -> str:
    if not entity.status_effects:
        return ""
    return " ".join(f"[{s.display}]" for s in entity.status_effects)

def format_combatant(entity: 'Combatant') -> str:
    """格式化一方的生命、欲望、格挡与状态。"""
    lines = [
        f"  HP: {format_number(entity.current_hp)}/{format_number(entity.max_hp)}"
        f" | 欲望: {format_number(entity.current_lust)}/{format_number(entity.max_lust)}"
        f" | 格挡: {format_number(entity.block)}"
    ]
    statuses = format_statuses(entity)
    if statuses:
        lines.append(f"  状态: {statuses}")
    if entity.abilities:
        lines.append("  能力: " + "；".join(a.effect for a in entity.abilities))
    return "\n".join(lines)

def format_card(index: int, card: 'Card', describe=None) -> str:
    cost = "X" if card.is_x_cost else card.cost
    text = card.description or (describe(card.effect) if describe else card.effect)
    tags = [tag for flag, tag in ((card.retain, "保留"), (card.exhaust, "消耗"), (card.ethereal, "虚无")) if flag]
    tag_str = f" ({'/'.join(tags)})" if tags else ""
    return f"  {index}. {card.emoji}`{card.name}` [{cost}费]{tag_str} {text}".rstrip()

def format_hand(player: 'Player', describe=None) -> str:
    if not player.hand:
        return "  (无手牌)"
    return "\n".join(format_card(i + 1, c, describe) for i, c in enumerate(player.hand))

def format_enemy_intent(enemy: 'Enemy') -> str:
    action = enemy.next_action
    if action is None:
        return "意图未知"
    return f"{action.name}" + (f"：{action.description}" if action.description else "")

def generate_regular_ui_body(session: 'GameSession') -> str:
    """
    生成常规战斗界面的核心部分。
    """
    battle: 'Battle' = session.battle
    if not battle: return "错误：战斗实例未找到。"

    state = battle.state
    player, enemy = state.player, state.enemy
    describe = battle.executor.parser.describe

    status_parts = [
        f"**第 {state.turn} 回合**",
        "**👤 你的状态**",
        format_combatant(player),
        f"  能量: {player.energy}/{player.max_energy} | 抽牌堆: {len(player.draw_pile)} | 弃牌堆: {len(player.discard_pile)}",
    ]
    if player.relics:
        status_parts.append("  遗物: " + " ".join(f"{r.emoji}{r.name}" for r in player.relics))
    status_parts += [
        "**🃏 手牌**",
        format_hand(player, describe),
        "\n" + ("-"*20) + "\n",
        f"**{enemy.emoji} {enemy.name}**",
        format_combatant(enemy),
        f"  意图: {format_enemy_intent(enemy)}",
    ]
    return "\n".join(status_parts)

def generate_final_message(ui_body: str, session: 'GameSession', turn_log: str = "") -> str:
    """将UI核心和行动提示组合成最终消息。"""
    final_message = (f"```\n{turn_log}\n```\n" if turn_log else "") + ui_body
    battle: 'Battle' = session.battle
    if not battle or battle.is_over(): return final_message

    action_prompts = ["使用以下指令行动:", "/fish play [序号/卡名]", "/fish end (结束回合)", "/fish flee (逃跑)"]
    return final_message + "\n\n" + "\n".join(action_prompts)

def generate_battle_over_message(battle: 'Battle', turn_log: str = "") -> str:
    winner_msg = "🏆 **你获得了胜利！** 🏆" if battle.state.winner is Side.PLAYER else "💀 **你被击败了……** 💀"
    result = battle.result()
    lines = [f"```\n{turn_log}\n```" if turn_log else "", winner_msg]
    if result is not None:
        lines.append(
            f"战斗持续 {result.battle_stats.turn_count} 回合，"
            f"剩余生命 {format_number(result.player.final_hp)}/{format_number(result.player.max_hp)}。"
        )
    return "\n".join(line for line in lines if line)

def generate_status_definitions_msg(store: 'StatusDefinitionStore', describe=None) -> str:
    """生成状态定义列表消息。"""
    definitions = store.all_definitions()
    if not definitions:
        return "当前没有任何状态定义。"

    response_parts = [f"已定义的状态 ({len(definitions)}):"]
    for d in definitions:
        type_name = _STATUS_TYPE_NAMES.get(StatusType(d.type), d.type)
        max_stacks = f"，上限{d.max_stacks}层" if d.max_stacks else ""
        response_parts.append(f"\n- {d.emoji}**{d.name}** (`{d.id}`，{type_name}{max_stacks})")
        response_parts.append(f"  {d.description}")
        for trigger, effects in d.triggers.items():
            for effect in ([effects] if isinstance(effects, str) else effects):
                text = describe(effect) if describe else effect
                response_parts.append(f"  · {trigger}: {text or effect}")
    return "\n".join(response_parts)

def generate_effect_preview(text: str, describe) -> Optional[str]:
    description = describe(text)
    return f"效果预览：{description}" if description else None

def join_log(lines: List[str]) -> str:
    return "\n".join(lines)
