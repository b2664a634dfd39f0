# tests/test_status_lifecycle.py
import pytest

from astrbot_plugin_fish_battle.battle_logic.entities import Ability
from astrbot_plugin_fish_battle.battle_logic.events import EventType


@pytest.mark.asyncio
async def test_remove_trigger_uses_stacks_before_removal(env):
    await env.run("ME.status apply thorns 3")

    await env.run("ME.status remove thorns")

    assert not env.player.has_status("thorns")
    assert env.enemy.current_hp == 97
    types = env.types()
    removed_at = types.index(EventType.STATUS_REMOVED)
    assert EventType.ATTRIBUTE_CHANGED in types[removed_at:]


@pytest.mark.asyncio
async def test_direct_modifiers_from_status_are_cleared_on_removal(env):
    await env.run("ME.status apply guard 1")
    assert env.player.modifiers["block_modifier"] == 3

    await env.run("ME.block+5")
    assert env.player.block == 8

    await env.run("ME.status remove guard")
    assert "block_modifier" not in env.player.modifiers

    await env.run("ME.block+5")
    assert env.player.block == 13


@pytest.mark.asyncio
async def test_unrelated_direct_modifiers_survive_removal(env):
    env.player.modifiers["damage_modifier"] = 2
    await env.run("ME.status apply guard 1")
    await env.run("ME.status remove guard")
    assert env.player.modifiers == {"damage_modifier": 2}


@pytest.mark.asyncio
async def test_gain_and_lose_buff_dispatch_to_both_sides(env):
    env.player.abilities.append(Ability.create("lose_buff", "lose_buff(ME.block+1)"))
    env.enemy.abilities += [
        Ability.create("enemy_gain_buff", "enemy_gain_buff(ME.block+2)"),
        Ability.create("enemy_lose_buff", "enemy_lose_buff(ME.block+3)"),
    ]

    await env.run("ME.status apply strength 1")
    assert env.enemy.block == 2

    await env.run("ME.status remove strength")
    assert env.player.block == 1
    assert env.enemy.block == 5


@pytest.mark.asyncio
async def test_gain_debuff_dispatch(env):
    env.enemy.abilities.append(Ability.create("gain_debuff", "gain_debuff(ME.block+2)"))
    await env.run("OP.status apply burn 1")
    assert env.enemy.block == 2


@pytest.mark.asyncio
async def test_neutral_status_dispatches_nothing(env):
    env.player.abilities += [
        Ability.create("gain_buff", "gain_buff(ME.block+1)"),
        Ability.create("gain_debuff", "gain_debuff(ME.block+1)"),
    ]
    await env.run("ME.status apply focus_mark 1")
    await env.run("ME.status remove focus_mark")
    assert env.player.block == 0
    assert env.count(EventType.ABILITY_TRIGGERED) == 0


@pytest.mark.asyncio
async def test_status_trigger_without_target_uses_holder(env):
    env.executor.store.add_definition({
        "id": "regen", "name": "再生", "emoji": "💚", "description": "回合开始回复", "type": "buff",
        "triggers": {"turn_start": "hp+stacks"},
    })
    env.enemy.current_hp = 90
    await env.run("OP.status apply regen 4")

    await env.executor.triggers.process_turn_start(env.enemy)

    assert env.enemy.current_hp == 94
    assert env.player.current_hp == 100


@pytest.mark.asyncio
async def test_removing_missing_status_is_a_noop(env):
    await env.run("ME.status remove burn")
    assert env.count(EventType.STATUS_REMOVED) == 0
    assert env.count(EventType.EXPRESSION_SKIPPED) == 0
