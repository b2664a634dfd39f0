# tests/test_modifiers.py
import pytest

from astrbot_plugin_fish_battle.battle_logic.constants import StatusType
from astrbot_plugin_fish_battle.battle_logic.entities import Player, Relic, StatusEffectInstance
from astrbot_plugin_fish_battle.battle_logic.modifiers import ModifierResolver, process_stacks_expression
from astrbot_plugin_fish_battle.battle_logic.status_store import StatusDefinitionStore


def _with_status(player: Player, status_id: str, stacks: int, status_type: StatusType = StatusType.BUFF) -> Player:
    player.status_effects.append(StatusEffectInstance(id=status_id, name=status_id, type=status_type, stacks=stacks))
    return player


@pytest.mark.parametrize("effect, stacks, expected", [
    ("damage_modifier+2", 3, "ME.damage_modifier+2"),
    ("ME.damage_modifier+stacks", 3, "ME.damage_modifier+3"),
    ("ME.damage_modifier+0.25*stacks", 4, "ME.damage_modifier+1"),
    ("ME.hp-stacks*2", 3, "ME.hp-6"),
    ("OP.block_modifier+stacks/2", 3, "OP.block_modifier+1.5"),
    ("ME.stacks.burn>0", 2, "ME.stacks.burn>0"),
])
def test_process_stacks_expression(effect: str, stacks: int, expected: str):
    assert process_stacks_expression(effect, stacks) == expected


def test_process_stacks_expression_is_idempotent():
    once = process_stacks_expression("damage_modifier+2, block_modifier*stacks", 3)
    assert process_stacks_expression(once, 3) == once


def test_fury_stacks_fold_into_additive_term(status_store: StatusDefinitionStore):
    resolver = ModifierResolver(status_store)
    player = _with_status(Player(name="玩家"), "fury", 4)

    breakdown = resolver.breakdown(player, "damage_modifier")
    assert breakdown.add == pytest.approx(1.0)
    assert breakdown.mul == 1.0
    assert resolver.apply_modifiers(player, "damage_modifier", 6) == pytest.approx(7.0)


def test_additive_terms_are_summed_before_multiplying(status_store: StatusDefinitionStore):
    resolver = ModifierResolver(status_store)
    player = Player(name="玩家", relics=[Relic(id="whetstone", name="磨刀石", effect="passive(damage_modifier+1)")])
    _with_status(player, "strength", 2)
    _with_status(player, "weak", 1, StatusType.DEBUFF)
    player.modifiers["damage_modifier"] = 1

    breakdown = resolver.breakdown(player, "damage_modifier")
    assert [term.source for term in breakdown.terms] == ["遗物:磨刀石", "状态:strength", "状态:weak", "直接修饰"]
    # (6 + 1 + 2 + 1) × 0.5
    assert resolver.apply_modifiers(player, "damage_modifier", 6) == pytest.approx(5.0)
    assert resolver.compute_modifier(player, "damage_modifier") == pytest.approx(4.0)


def test_assignment_and_zero_division_terms_are_ignored():
    store = StatusDefinitionStore([
        {"id": "odd", "name": "怪异", "emoji": "❔", "description": "测试", "type": "buff",
         "triggers": {"hold": ["ME.damage_modifier=10", "ME.damage_modifier/0", "ME.damage_modifier+1"]}},
    ])
    resolver = ModifierResolver(store)
    player = _with_status(Player(name="玩家"), "odd", 1)

    breakdown = resolver.breakdown(player, "damage_modifier")
    assert len(breakdown.terms) == 1
    assert resolver.apply_modifiers(player, "damage_modifier", 5) == pytest.approx(6.0)


def test_modifier_prefix_does_not_leak_into_longer_names(status_store: StatusDefinitionStore):
    resolver = ModifierResolver(status_store)
    player = _with_status(Player(name="玩家"), "vulnerable", 1, StatusType.DEBUFF)

    assert resolver.breakdown(player, "damage_modifier").terms == []
    assert resolver.breakdown(player, "damage_taken_modifier").add == pytest.approx(2.0)


def test_no_terms_returns_base_untouched(status_store: StatusDefinitionStore):
    resolver = ModifierResolver(status_store)
    assert resolver.apply_modifiers(Player(name="玩家"), "block_modifier", 5) == 5
