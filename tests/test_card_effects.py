# tests/test_card_effects.py
import pytest

from astrbot_plugin_fish_battle.battle_logic.entities import Card
from astrbot_plugin_fish_battle.battle_logic.events import EventType
from astrbot_plugin_fish_battle.battle_logic.host import BattleHost
from astrbot_plugin_fish_battle.battle_logic.selectors import describe_selector, split_selector


def make_cards(*names, cost=1):
    return [Card(id=f"c{i}", name=name, cost=cost) for i, name in enumerate(names)]


def test_split_selector_defaults_to_hand():
    assert split_selector("random[2]") == ("hand", ["random2"])
    assert split_selector("discard.leftmost+rightmost") == ("discard", ["leftmost", "rightmost"])
    assert split_selector("draw") == ("draw", ["random"])


def test_describe_selector():
    assert describe_selector("hand.random2") == "手牌随机2张"
    assert describe_selector("hand.current_left+current_right") == "当前左侧和当前右侧"


@pytest.mark.asyncio
async def test_draw_reshuffles_discard_when_draw_pile_is_empty(env):
    env.player.discard_pile = make_cards("甲", "乙")

    await env.run("ME.draw+2")

    assert len(env.player.hand) == 2
    assert env.player.discard_pile == []


@pytest.mark.asyncio
async def test_draw_stops_at_hand_limit(env):
    env.state.max_hand_size = 3
    env.player.hand = make_cards("甲", "乙")
    env.player.draw_pile = [Card(id=f"d{i}", name="丙") for i in range(5)]

    await env.run("ME.draw+4")

    assert len(env.player.hand) == 3
    assert len(env.player.draw_pile) == 4


@pytest.mark.asyncio
async def test_draw_from_zero_valued_variable_draws_one(env):
    env.player.draw_pile = make_cards("甲", "乙", "丙")

    await env.run("ME.draw+hand_size")
    assert len(env.player.hand) == 1

    await env.run("ME.draw+0")
    assert len(env.player.hand) == 1


@pytest.mark.asyncio
async def test_reduce_cost_skips_curses_and_free_cards(env):
    strike, free = make_cards("打击", "免费")
    free.cost = 0
    curse = Card(id="curse", name="诅咒", type="Curse", cost=1)
    env.player.hand = [strike, free, curse]

    await env.run("reduce_cost.hand.all 1")

    assert strike.cost == 0
    assert free.cost == 0
    assert curse.cost == 1


@pytest.mark.asyncio
async def test_reduce_cost_without_candidates_is_skipped(env):
    env.player.hand = [Card(id="curse", name="诅咒", type="Curse", cost=1)]
    await env.run("reduce_cost.hand.all 1")
    assert env.count(EventType.EXPRESSION_SKIPPED) == 1


@pytest.mark.asyncio
async def test_copy_and_exile(env):
    left, right = make_cards("左", "右")
    env.player.hand = [left, right]

    await env.run("copy_card.hand.leftmost")
    assert [c.name for c in env.player.hand] == ["左", "右", "左"]
    assert env.player.hand[2].id != left.id

    await env.run("exile.hand.rightmost")
    assert [c.name for c in env.player.hand] == ["左", "右"]
    assert env.player.exhaust_pile[0].name == "左"


@pytest.mark.asyncio
async def test_choose_selector_asks_host(env, mocker):
    host = mocker.AsyncMock(spec=BattleHost)
    host.choose_cards.side_effect = lambda cards, count, prompt: [cards[-1]]
    env.executor.host = host
    first, second = make_cards("一", "二")
    env.player.hand = [first, second]

    await env.run("trigger_effect.hand.choose")

    assert second.double_effect and not first.double_effect
    host.choose_cards.assert_awaited_once()


@pytest.mark.asyncio
async def test_current_card_is_never_selected_by_pool_selectors(env):
    played, other = make_cards("正在打出", "其他")
    env.player.hand = [played, other]

    await env.run("discard.hand.all", context={"card_context": played, "card_hand_index": 0})

    assert env.player.hand == [played]
    assert env.player.discard_pile == [other]


@pytest.mark.asyncio
async def test_add_generated_cards(env):
    await env.run('add_to_hand {"id": "wound", "name": "伤口", "type": "Curse", "cost": 0} 2, add_to_deck slime 3')

    assert [c.name for c in env.player.hand] == ["伤口", "伤口"]
    assert env.player.hand[0].id != env.player.hand[1].id
    assert env.player.hand[0].original_id == "wound"
    assert len(env.player.draw_pile) == 3
    assert all(c.name == "slime" for c in env.player.draw_pile)


@pytest.mark.asyncio
async def test_add_to_hand_respects_hand_limit(env):
    env.state.max_hand_size = 1
    await env.run("add_to_hand wound 3")
    assert len(env.player.hand) == 1


@pytest.mark.asyncio
async def test_card_effects_always_act_on_player_piles(env):
    env.player.draw_pile = make_cards("甲")
    await env.run("ME.draw+1", source_is_player=False)
    assert len(env.player.hand) == 1


@pytest.mark.asyncio
async def test_selector_with_trailing_amount_discards_that_many(env):
    first, second, third = make_cards("一", "二", "三")
    env.player.hand = [first, second, third]

    await env.run("discard.hand.leftmost+2")

    assert env.player.hand == [third]
    assert env.player.discard_pile == [first, second]
