# tests/test_battle.py
import json
from pathlib import Path

import pytest

from astrbot_plugin_fish_battle.battle_logic.battle import Battle
from astrbot_plugin_fish_battle.battle_logic.constants import BattleState, Side
from astrbot_plugin_fish_battle.battle_logic.entities import Ability, Card, EnemyAction
from astrbot_plugin_fish_battle.battle_logic.errors import BattleActionError, BattleDataError
from astrbot_plugin_fish_battle.battle_logic.events import BattleLogRecorder
from astrbot_plugin_fish_battle.battle_logic.factory import GameDataFactory
from astrbot_plugin_fish_battle.battle_logic.host import BattleHost
from astrbot_plugin_fish_battle.battle_logic.settings import BattleSettings


# --- Fixture 和辅助函数 ---

@pytest.fixture
def recorder() -> BattleLogRecorder:
    return BattleLogRecorder()


@pytest.fixture
def battle(game_factory: GameDataFactory, recorder: BattleLogRecorder) -> Battle:
    return game_factory.create_battle(BattleSettings(rng_seed=0), observers=[recorder])


def arrange_hand(battle: Battle, card_ids: list, extra: list = ()):
    """把指定 id 的卡牌按顺序放入手牌，其余卡牌放回抽牌堆。"""
    player = battle.state.player
    pool = player.hand + player.draw_pile
    by_id = {card.id: card for card in pool}
    player.hand = [by_id[card_id] for card_id in card_ids] + list(extra)
    player.draw_pile = [card for card in pool if card.id not in card_ids]


def assert_log_contains(log: str, expected: list):
    last_index = -1
    for sub in expected:
        current_index = log.find(sub, last_index + 1)
        assert current_index != -1, f"日志未找到期望内容: '{sub}'\n完整日志:\n---\n{log}\n---"
        assert current_index > last_index, f"日志内容顺序错误: '{sub}' 未按预期顺序出现\n完整日志:\n---\n{log}\n---"
        last_index = current_index


def assert_log_not_contains(log: str, unexpected: list):
    for sub in unexpected:
        assert sub not in log, f"日志中出现了不应有的内容: '{sub}'"


# --- 战斗开始 ---

@pytest.mark.asyncio
async def test_start_draws_hand_and_fires_battle_start(battle: Battle, recorder: BattleLogRecorder):
    await battle.start()
    state, player = battle.state, battle.state.player

    assert state.turn == 1
    assert state.phase is BattleState.PLAYER_TURN
    assert len(player.hand) == 5
    assert len(player.draw_pile) == 6
    assert player.energy == 3
    # 磨刀石的格挡保留到第一回合
    assert player.block == 3
    assert state.enemy.next_action.name == "撞击"
    assert_log_contains(recorder.text(), ["抽了 5 张牌", "🪨遗物【磨刀石】触发", "--- 第 1 回合 ---"])


@pytest.mark.asyncio
async def test_start_twice_is_rejected(battle: Battle):
    await battle.start()
    with pytest.raises(BattleActionError, match="战斗已经开始了"):
        await battle.start()


@pytest.mark.asyncio
async def test_actions_before_start_are_rejected(battle: Battle):
    with pytest.raises(BattleActionError, match="现在不是你的回合"):
        await battle.play_card(1)


# --- 出牌 ---

@pytest.mark.asyncio
async def test_play_card_by_name_applies_strength_and_moves_to_discard(battle: Battle, recorder: BattleLogRecorder):
    await battle.start()
    arrange_hand(battle, ["strike_0", "defend_0", "focus_0"])
    recorder.drain()

    card = await battle.play_card("打击")

    player, enemy = battle.state.player, battle.state.enemy
    assert card.id == "strike_0"
    assert player.energy == 2
    # 6 点基础伤害 + 1 层力量
    assert enemy.current_hp == 43
    assert player.discard_pile[-1] is card
    assert [c.id for c in player.hand] == ["defend_0", "focus_0"]
    assert battle.state.cards_played_this_turn == 1
    assert_log_contains(recorder.text(), ["⚔️ 打出了【打击】(消耗 1 点能量)", "生命值 50 → 43"])


@pytest.mark.asyncio
async def test_play_card_by_index_and_zero_cost_draw(battle: Battle):
    await battle.start()
    arrange_hand(battle, ["strike_0", "defend_0", "focus_0"])

    await battle.play_card("3")

    player = battle.state.player
    assert player.energy == 3
    assert len(player.hand) == 3
    assert len(player.draw_pile) == 7


@pytest.mark.asyncio
async def test_play_card_rejections(battle: Battle):
    await battle.start()
    curse = Card(id="shame_0", name="羞耻", type="Curse", cost=0)
    arrange_hand(battle, ["strike_0"], extra=[curse])

    with pytest.raises(BattleActionError, match="手牌中没有找到"):
        await battle.play_card("不存在的卡")
    with pytest.raises(BattleActionError, match="诅咒牌"):
        await battle.play_card("羞耻")

    battle.state.player.energy = 0
    with pytest.raises(BattleActionError, match="能量不足"):
        await battle.play_card("打击")
    # 被拒绝的操作不改变任何状态
    assert len(battle.state.player.hand) == 2
    assert battle.state.cards_played_this_turn == 0


@pytest.mark.asyncio
async def test_stunned_player_cannot_play(battle: Battle):
    await battle.start()
    await battle.run_effect("ME.stun+1")
    with pytest.raises(BattleActionError, match="无法行动"):
        await battle.play_card(1)


@pytest.mark.asyncio
async def test_x_cost_card_spends_all_energy(battle: Battle):
    await battle.start()
    whirlwind = Card(id="whirlwind_0", name="旋风斩", cost="energy", effect="OP.hp-energy*5")
    arrange_hand(battle, [], extra=[whirlwind])

    await battle.play_card("旋风斩")

    assert battle.state.player.energy == 0
    # 3 × 5 + 1 层力量
    assert battle.state.enemy.current_hp == 34


@pytest.mark.asyncio
async def test_trigger_effect_on_right_neighbour_doubles_next_play(battle: Battle):
    await battle.start()
    echo = Card(id="echo_0", name="回响", cost=0, effect="trigger_effect.hand.current_right")
    arrange_hand(battle, ["strike_0"], extra=[])
    battle.state.player.hand.insert(0, echo)

    await battle.play_card("回响")
    strike = battle.state.player.hand[0]
    assert strike.double_effect

    await battle.play_card("打击")
    assert battle.state.enemy.current_hp == 36
    assert not strike.double_effect


@pytest.mark.asyncio
async def test_exhaust_card_goes_to_exhaust_pile(battle: Battle):
    await battle.start()
    iron_will = Card(id="iron_will_0", name="钢铁意志", cost=1, exhaust=True, effect="ME.turn_start(ME.block+3)")
    arrange_hand(battle, [], extra=[iron_will])

    await battle.play_card(1)

    player = battle.state.player
    assert player.exhaust_pile == [iron_will]
    assert [a.effect for a in player.abilities][-1] == "turn_start(ME.block+3)"


@pytest.mark.asyncio
async def test_discard_effects_and_on_discard_abilities(battle: Battle):
    await battle.start()
    player = battle.state.player
    player.status_effects = []
    player.block = 0
    player.abilities.append(Ability.create("on_discard", "on_discard(ME.block+2)"))
    juggle = Card(id="juggle_0", name="杂耍", cost=0, effect="discard.hand.leftmost, ME.draw+2")
    shame = Card(id="shame_0", name="羞耻", type="Curse", cost=1, discard_effect="ME.hp-2")
    arrange_hand(battle, [], extra=[juggle, shame])

    await battle.play_card("杂耍")

    assert shame in player.discard_pile
    assert player.current_hp == 78
    assert player.block == 2
    assert len(player.hand) == 2


# --- 回合结束与敌人回合 ---

@pytest.mark.asyncio
async def test_end_turn_runs_enemy_turn_and_starts_next(battle: Battle, recorder: BattleLogRecorder):
    await battle.start()
    keeper = Card(id="keeper_0", name="保留牌", cost=1, retain=True, effect="ME.block+1")
    ghost = Card(id="ghost_0", name="幻影", cost=1, ethereal=True, effect="OP.hp-1")
    arrange_hand(battle, ["strike_0", "defend_0"], extra=[keeper, ghost])
    recorder.drain()

    await battle.end_player_turn()

    state, player, enemy = battle.state, battle.state.player, battle.state.enemy
    # 格挡 3 + 回合结束能力 1，撞击 6 点伤害穿透 2 点
    assert player.current_hp == 78
    assert state.turn == 2
    assert state.phase is BattleState.PLAYER_TURN
    assert player.block == 0
    assert player.energy == 3
    assert keeper in player.hand
    assert player.exhaust_pile == [ghost]
    assert len(player.hand) == 6
    assert enemy.next_action.name == "硬化"
    assert_log_contains(recorder.text(), [
        "虚无的卡牌消散了：【幻影】",
        "玩家的能力【回合结束时】发动",
        "🟢测试史莱姆使用了【撞击】！",
        "--- 第 2 回合 ---",
        "抽了 5 张牌",
    ])


@pytest.mark.asyncio
async def test_sequential_intents_cycle(battle: Battle):
    await battle.start()
    await battle.end_player_turn()
    await battle.end_player_turn()

    enemy = battle.state.enemy
    assert enemy.block == 5
    assert enemy.next_action.name == "撞击"
    assert battle.state.turn == 3


@pytest.mark.asyncio
async def test_stunned_enemy_skips_action(battle: Battle, recorder: BattleLogRecorder):
    await battle.start()
    await battle.run_effect("OP.stun+1")
    recorder.drain()

    await battle.end_player_turn()

    log = recorder.text()
    assert_log_contains(log, ["🟢测试史莱姆无法行动！"])
    assert_log_not_contains(log, ["使用了【撞击】"])
    assert battle.state.player.current_hp == 80
    assert not battle.executor.is_stunned(battle.state.enemy)


def test_random_intent_respects_weights(battle: Battle):
    enemy = battle.state.enemy
    enemy.action_mode = "random"
    enemy.actions = [EnemyAction(name="发呆", effect="ME.block+1", weight=0), EnemyAction(name="猛击", effect="OP.hp-9")]

    picks = {battle.choose_enemy_intent().name for _ in range(20)}

    assert picks == {"猛击"}


def test_no_actions_means_no_intent(battle: Battle):
    battle.state.enemy.actions = []
    assert battle.choose_enemy_intent() is None
    assert battle.state.enemy.next_action is None


# --- 战斗结束 ---

@pytest.mark.asyncio
async def test_killing_blow_ends_battle(battle: Battle):
    await battle.start()
    arrange_hand(battle, ["strike_0", "strike_1"])
    battle.state.enemy.current_hp = 5

    await battle.play_card("打击")

    assert battle.is_over()
    assert battle.state.winner is Side.PLAYER
    assert battle.result().result == "victory"
    with pytest.raises(BattleActionError, match="战斗已经结束了"):
        await battle.play_card("打击")


@pytest.mark.asyncio
async def test_player_death_on_enemy_turn(battle: Battle):
    await battle.start()
    player = battle.state.player
    player.current_hp = 1
    player.block = 0

    await battle.end_player_turn()

    assert battle.state.winner is Side.ENEMY
    assert battle.state.phase is BattleState.ENDED
    assert battle.state.turn == 1


@pytest.mark.asyncio
async def test_flee_reports_defeat_to_host(game_factory: GameDataFactory, mocker):
    host = mocker.AsyncMock(spec=BattleHost)
    battle = game_factory.create_battle(BattleSettings(rng_seed=0), host=host)
    await battle.start()

    await battle.flee()

    assert battle.state.winner is Side.ENEMY
    result = host.save_battle_result.await_args.args[0]
    assert result.result == "defeat"
    assert result.narrative == "玩家逃离了战斗。"
    assert "战斗因事件而终止：玩家逃离了战斗。" in host.request_narrative.await_args.args[0]
    with pytest.raises(BattleActionError):
        await battle.flee()


def test_result_is_none_while_running(battle: Battle):
    assert battle.result() is None


# --- 快照 ---

@pytest.mark.asyncio
async def test_export_snapshot_round_trips_through_factory(battle: Battle):
    await battle.start()
    snapshot = battle.export_snapshot()

    reloaded = GameDataFactory(variables={"stat_data": {"battle": snapshot}})

    assert reloaded.get_enemy_data().name == "测试史莱姆"
    assert len(reloaded.get_card_models()) == 11
    assert snapshot["player_status_effects"] == [{"id": "strength", "stacks": 1}]
    assert snapshot["enemy"]["lust_effect"]["effect"] == "OP.hp-5"
    assert len(snapshot["statuses"]) == 10


# --- 越界快照 ---

def load_snapshot_factory(mutate) -> GameDataFactory:
    """读取测试快照，经 mutate 修改 stat_data.battle 后交给工厂校验。"""
    with open(Path(__file__).parent / "test_data" / "battle.json", "r", encoding="utf-8") as f:
        variables = json.load(f)
    mutate(variables["stat_data"]["battle"])
    return GameDataFactory(variables=variables)


def test_snapshot_hp_and_lust_are_clamped_into_range():
    def mutate(battle):
        battle["core"].update(hp=-5, lust=150)
        battle["enemy"].update(hp=999, lust=-3)

    factory = load_snapshot_factory(mutate)
    state = factory.create_combat_state(factory.create_status_store())

    assert state.player.current_hp == 0
    assert state.player.current_lust == 100
    assert state.enemy.current_hp == 50
    assert state.enemy.current_lust == 0


def test_snapshot_stacks_are_capped_and_empty_instances_dropped():
    def mutate(battle):
        battle["player_status_effects"] = [
            {"id": "vulnerable", "stacks": 50},
            {"id": "weak", "stacks": 0},
            {"id": "strength", "stacks": -2},
            {"id": "burn", "stacks": 3},
        ]
        battle["enemy"]["status_effects"] = [{"id": "fury", "stacks": 30}]

    factory = load_snapshot_factory(mutate)
    state = factory.create_combat_state(factory.create_status_store())

    assert [(s.id, s.stacks) for s in state.player.status_effects] == [("vulnerable", 5), ("burn", 3)]
    assert [(s.id, s.stacks) for s in state.enemy.status_effects] == [("fury", 10)]


def test_snapshot_with_non_positive_maximums():
    def broken_core(battle):
        battle["core"].update(max_hp=0)

    factory = load_snapshot_factory(broken_core)
    state = factory.create_combat_state(factory.create_status_store())
    # 玩家核心数值校验失败时整体回落到默认值
    assert state.player.max_hp == 100
    assert state.player.current_hp == 80

    def broken_enemy(battle):
        battle["enemy"].update(max_hp=-1)

    with pytest.raises(BattleDataError):
        load_snapshot_factory(broken_enemy)
