# tests/conftest.py
import random
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import pytest

from astrbot_plugin_fish_battle.battle_logic.combat_state import CombatState
from astrbot_plugin_fish_battle.battle_logic.entities import Enemy, LustEffect, Player
from astrbot_plugin_fish_battle.battle_logic.events import BattleLogRecorder, EventRecorder, EventType
from astrbot_plugin_fish_battle.battle_logic.executor import EffectExecutor
from astrbot_plugin_fish_battle.battle_logic.factory import GameDataFactory
from astrbot_plugin_fish_battle.battle_logic.status_store import StatusDefinitionStore

TEST_DATA_PATH = Path(__file__).parent / "test_data"


@pytest.fixture(scope="function")
def game_factory() -> GameDataFactory:
    if not TEST_DATA_PATH.exists():
        pytest.fail("测试数据目录 'tests/test_data' 未找到")
    return GameDataFactory(TEST_DATA_PATH)


@pytest.fixture
def status_store(game_factory: GameDataFactory) -> StatusDefinitionStore:
    return game_factory.create_status_store()


@dataclass
class EffectEnv:
    """一组独立的战斗状态 + 执行器 + 事件记录，供效果层测试直接驱动。"""
    state: CombatState
    executor: EffectExecutor
    events: EventRecorder
    log: BattleLogRecorder

    @property
    def player(self) -> Player:
        return self.state.player

    @property
    def enemy(self) -> Enemy:
        return self.state.enemy

    async def run(self, text: str, source_is_player: bool = True, context: Optional[Any] = None) -> None:
        await self.executor.execute_effect_string(text, source_is_player, context)

    def types(self):
        return [e.type for e in self.events.events]

    def count(self, event_type: EventType) -> int:
        return len(self.events.of_type(event_type))


@pytest.fixture
def make_env(status_store: StatusDefinitionStore):
    def _make(
        player: Optional[Player] = None,
        enemy: Optional[Enemy] = None,
        *,
        max_depth: int = 32,
        player_lust_effect: Optional[LustEffect] = None,
    ) -> EffectEnv:
        player = player or Player(name="玩家", max_hp=100, current_hp=100, max_lust=100)
        enemy = enemy or Enemy(
            name="测试敌人", max_hp=100, current_hp=100, max_lust=30,
            lust_effect=LustEffect(name="欲望爆发", effect="OP.hp-5"),
        )
        state = CombatState(
            player, enemy,
            player_lust_effect=player_lust_effect or LustEffect(name="榨精支配", effect="OP.hp-10"),
            rng=random.Random(0),
        )
        events, log = EventRecorder(), BattleLogRecorder()
        executor = EffectExecutor(state, status_store, max_depth=max_depth)
        executor.subscribe(events)
        executor.subscribe(log)
        return EffectEnv(state=state, executor=executor, events=events, log=log)
    return _make


@pytest.fixture
def env(make_env) -> EffectEnv:
    return make_env()
