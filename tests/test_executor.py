# tests/test_executor.py
import asyncio

import pytest

from astrbot_plugin_fish_battle.battle_logic.constants import Side, StatusType
from astrbot_plugin_fish_battle.battle_logic.entities import (
    Ability, Card, Enemy, LustEffect, Player, Relic, StatusEffectInstance,
)
from astrbot_plugin_fish_battle.battle_logic.events import EventType
from astrbot_plugin_fish_battle.battle_logic.host import BattleHost


def assert_log_contains(log: str, expected: list):
    last_index = -1
    for sub in expected:
        current_index = log.find(sub, last_index + 1)
        assert current_index != -1, f"日志未找到期望内容: '{sub}'\n完整日志:\n---\n{log}\n---"
        last_index = current_index


# --- 基础属性与格挡 ---

@pytest.mark.asyncio
async def test_block_absorbs_damage_before_hp(env):
    env.enemy.block = 5
    env.enemy.abilities.append(Ability.create("lose_block", "lose_block(ME.lust+1)"))

    await env.run("OP.hp-8")

    assert env.enemy.block == 0
    assert env.enemy.current_hp == 97
    # lose_block 只触发一次
    assert env.enemy.current_lust == 1
    assert env.count(EventType.BLOCK_ABSORBED) == 1


@pytest.mark.asyncio
async def test_fully_blocked_damage_does_not_touch_hp(env):
    env.enemy.block = 10
    env.enemy.abilities.append(Ability.create("take_damage", "take_damage(ME.block+100)"))

    await env.run("OP.hp-6")

    assert env.enemy.block == 4
    assert env.enemy.current_hp == 100


@pytest.mark.asyncio
async def test_vulnerable_increases_damage_taken(env):
    await env.run("OP.status apply vulnerable 1")
    await env.run("OP.hp-6")
    assert env.enemy.current_hp == 92


@pytest.mark.asyncio
async def test_strength_and_weak_combine_additive_first(env):
    await env.run("ME.status apply strength 2, ME.status apply weak 1")
    await env.run("OP.hp-6")
    # (6 + 2) × 0.5
    assert env.enemy.current_hp == 96


@pytest.mark.asyncio
async def test_damage_never_heals_after_negative_modifiers(env):
    env.player.modifiers["damage_modifier"] = -10
    await env.run("OP.hp-6")
    assert env.enemy.current_hp == 100


@pytest.mark.asyncio
async def test_attribute_clamps(env):
    await env.run("ME.hp+50, ME.block-3, OP.lust-5")
    assert env.player.current_hp == 100
    assert env.player.block == 0
    assert env.enemy.current_lust == 0

    await env.run("ME.max_hp=50")
    assert env.player.max_hp == 50
    assert env.player.current_hp == 50


@pytest.mark.asyncio
async def test_all_target_expands_to_me_then_op(env):
    await env.run("ALL.hp-3")

    changes = env.events.of_type(EventType.ATTRIBUTE_CHANGED)
    assert [e.side for e in changes] == [Side.PLAYER, Side.ENEMY]
    assert env.player.current_hp == 97
    assert env.enemy.current_hp == 97


@pytest.mark.asyncio
async def test_units_execute_in_attribute_priority_order(env):
    await env.run("if[ME.block>=5][OP.hp-10], ME.block+5")
    assert env.player.block == 5
    assert env.enemy.current_hp == 90


@pytest.mark.asyncio
async def test_conditional_else_branch(env):
    await env.run("if[ME.hp<50][OP.hp-10]else[ME.block+2]")
    assert env.enemy.current_hp == 100
    assert env.player.block == 2


@pytest.mark.asyncio
async def test_invalid_units_are_skipped_and_siblings_run(env):
    await env.run("OP.hp-3, if[ME.hp<30], hp-5, ME.block+2")

    assert env.enemy.current_hp == 97
    assert env.player.current_hp == 100
    assert env.player.block == 2
    assert env.count(EventType.EXPRESSION_SKIPPED) == 2


@pytest.mark.asyncio
async def test_energy_reads_value_before_card_play(env):
    env.player.energy = 0
    card = Card(id="whirlwind_0", name="旋风斩", cost="energy", effect="OP.hp-energy*5")

    await env.run(card.effect, context={"source_is_player": False, "card_context": card, "energy_before_card_play": 3})

    assert env.enemy.current_hp == 85


# --- 胜负 ---

@pytest.mark.asyncio
async def test_simultaneous_death_resolves_once_in_player_favor(make_env):
    env = make_env(
        player=Player(name="玩家", max_hp=100, current_hp=3),
        enemy=Enemy(name="敌人", max_hp=100, current_hp=3),
    )
    await env.run("ALL.hp-5")

    assert env.state.is_game_over
    assert env.state.winner is Side.PLAYER
    assert env.count(EventType.GAME_OVER) == 1


@pytest.mark.asyncio
async def test_death_is_deferred_until_outermost_call(make_env):
    env = make_env(enemy=Enemy(name="敌人", max_hp=100, current_hp=5))
    env.enemy.abilities.append(Ability.create("take_damage", "take_damage(ME.hp+10)"))

    await env.run("OP.hp-5")

    # 受伤触发的回复在结算死亡之前完成
    assert env.enemy.current_hp == 10
    assert not env.state.is_game_over


@pytest.mark.asyncio
async def test_game_over_ignores_further_effects(env, mocker):
    host = mocker.AsyncMock(spec=BattleHost)
    env.executor.host = host

    await env.run('narrate "敌人投降了"')
    await env.run("OP.hp-10")

    assert env.state.winner is Side.PLAYER
    assert env.enemy.current_hp == 100
    host.save_battle_result.assert_awaited_once()
    assert host.save_battle_result.await_args.args[0].narrative == "敌人投降了"
    host.request_narrative.assert_awaited_once()


@pytest.mark.asyncio
async def test_declare_game_over_only_once(env):
    assert await env.executor.declare_game_over(Side.ENEMY)
    assert not await env.executor.declare_game_over(Side.PLAYER)
    assert env.state.winner is Side.ENEMY
    assert env.count(EventType.GAME_OVER) == 1


# --- 欲望溢出 ---

@pytest.mark.asyncio
async def test_enemy_lust_overflow_runs_player_effect_and_resets(env):
    await env.run("OP.lust+30")

    assert env.count(EventType.LUST_OVERFLOW) == 1
    # 玩家的溢出效果 OP.hp-10 以玩家身份执行
    assert env.enemy.current_hp == 90
    assert env.enemy.current_lust == 0


@pytest.mark.asyncio
async def test_player_lust_overflow_runs_enemy_effect(env):
    await env.run("ME.lust+100")

    assert env.count(EventType.LUST_OVERFLOW) == 1
    assert env.player.current_hp == 95
    assert env.player.current_lust == 0


@pytest.mark.asyncio
async def test_lust_overflow_does_not_reenter(make_env):
    env = make_env(player_lust_effect=LustEffect(name="再次挑逗", effect="OP.lust=0, OP.lust+40"))

    await env.run("OP.lust+30")

    assert env.count(EventType.LUST_OVERFLOW) == 1
    assert env.enemy.current_lust == 0


@pytest.mark.asyncio
async def test_lust_damage_modifiers_apply(env):
    env.player.modifiers["lust_damage_modifier"] = 2
    await env.run("OP.lust+5")
    assert env.enemy.current_lust == 7


# --- 状态 ---

@pytest.mark.asyncio
async def test_applied_stacks_are_capped_and_replaced(env):
    await env.run("OP.status apply vulnerable 9")
    assert env.enemy.get_status("vulnerable").stacks == 5

    await env.run("OP.status apply vulnerable 2")
    assert env.enemy.get_status("vulnerable").stacks == 2
    assert len(env.enemy.status_effects) == 1


@pytest.mark.asyncio
async def test_reapply_fires_stack_before_apply(env):
    await env.run("ME.status apply thorns 3")
    assert env.player.block == 3

    await env.run("ME.status apply thorns 2")
    assert env.player.block == 6
    assert_log_contains("\n".join(env.log.lines), ["荆棘触发叠加时效果", "荆棘触发施加时效果"])


@pytest.mark.asyncio
async def test_unknown_status_is_skipped(env):
    await env.run("OP.status apply nothing 2, OP.hp-1")
    assert env.enemy.status_effects == []
    assert env.enemy.current_hp == 99


@pytest.mark.asyncio
async def test_stun_attribute_and_is_stunned(env):
    await env.run("OP.stun+1")
    assert env.executor.is_stunned(env.enemy)

    await env.run("OP.stun-1")
    assert not env.executor.is_stunned(env.enemy)


@pytest.mark.asyncio
async def test_remove_by_kind(env):
    env.player.status_effects = [
        StatusEffectInstance(id="strength", name="力量", type=StatusType.BUFF, stacks=1),
        StatusEffectInstance(id="burn", name="燃烧", type=StatusType.DEBUFF, stacks=2),
        StatusEffectInstance(id="focus_mark", name="专注", type=StatusType.NEUTRAL, stacks=1),
    ]
    await env.run("ME.status remove debuffs")
    assert [s.id for s in env.player.status_effects] == ["strength", "focus_mark"]

    await env.run("ME.status remove all_buffs")
    assert env.player.status_effects == []


# --- 能力 ---

@pytest.mark.asyncio
async def test_ability_add_and_remove(env):
    await env.run("turn_end(ME.block+1)")
    assert [a.effect for a in env.player.abilities] == ["turn_end(ME.block+1)"]

    await env.run("ME.ability remove turn_end(ME.block+1)")
    assert env.player.abilities == []


@pytest.mark.asyncio
async def test_targeted_ability_goes_to_opponent(env):
    await env.run("OP.take_damage(ME.lust+2)")
    assert len(env.enemy.abilities) == 1

    await env.run("OP.hp-1")
    assert env.enemy.current_lust == 2


# --- 嵌套与并发 ---

@pytest.mark.asyncio
async def test_runaway_recursion_is_stopped_by_depth_limit(make_env):
    env = make_env(max_depth=3)
    env.player.abilities.append(Ability.create("gain_block", "gain_block(ME.block+1)"))

    await env.run("ME.block+1")

    assert env.player.block == 3
    assert any("最大深度" in e.message for e in env.events.of_type(EventType.EXPRESSION_SKIPPED))
    assert env.executor._depth == 0


@pytest.mark.asyncio
async def test_concurrent_top_level_calls_are_serialized(env):
    env.player.abilities.append(Ability.create("gain_block", "gain_block(OP.hp-1)"))

    await asyncio.gather(env.run("ME.block+1"), env.run("ME.block+1"))

    assert env.player.block == 2
    assert env.enemy.current_hp == 98
    assert env.executor._depth == 0


@pytest.mark.asyncio
async def test_relic_battle_start_wrapper_executes_directly(env):
    env.player.relics.append(Relic(id="whetstone", name="磨刀石", effect="battle_start(ME.block+3)"))

    await env.executor.triggers.process_battle_start()

    assert env.player.block == 3
    assert env.player.abilities == []
