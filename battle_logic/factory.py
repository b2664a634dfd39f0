# battle_logic/factory.py
import json
import random
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

from astrbot.api import logger
from pydantic import ValidationError

from .battle import Battle
from .combat_state import CombatState
from .constants import DEFAULT_MAX_STACKS, StatusType
from .data_models import (
    AbilityModel, CardModel, CoreStatsModel, EnemyModel, LustEffectModel, RelicModel, StatusInstanceModel,
)
from .entities import Ability, Card, Enemy, EnemyAction, LustEffect, Player, Relic, StatusEffectInstance
from .errors import BattleDataError
from .events import BattleObserver
from .host import BattleHost
from .parser import EffectParser
from .settings import BattleSettings
from .status_store import StatusDefinitionStore, normalize_store_array

DEFAULT_PLAYER_LUST_EFFECT = LustEffectModel(
    name="榨精支配",
    description="敌人欲望达到上限时，你获得治疗并对敌人施加虚弱",
    effect="ME.hp+15, OP.status apply weak 2",
)


class GameDataFactory:
    """
    战斗数据工厂，负责从外部变量存储 (stat_data.battle) 加载、校验并组装一场战斗。
    这是连接数据层和战斗逻辑的唯一入口：工厂只保存校验后的模型，每次 create_battle 都生成全新的实体。
    """
    def __init__(
        self,
        data_path: Optional[Path] = None,
        *,
        data_file: str = "battle.json",
        variables: Optional[Mapping[str, Any]] = None,
    ):
        """
        初始化工厂实例。

        Args:
            data_path: 存放战斗快照 JSON 文件的目录。
            data_file: 快照文件名。
            variables: 直接传入的外部变量存储；提供时不再读取文件。
        """
        self._data_path = data_path
        self._parser = EffectParser()
        self._variables: Dict[str, Any] = {}

        self._core = CoreStatsModel()
        self._enemy: Optional[EnemyModel] = None
        self._cards: List[CardModel] = []
        self._relics: List[RelicModel] = []
        self._player_abilities: List[AbilityModel] = []
        self._player_statuses: List[StatusInstanceModel] = []
        self._player_lust_effect: LustEffectModel = DEFAULT_PLAYER_LUST_EFFECT

        if variables is not None:
            self.load_variables(variables)
        elif data_path is not None:
            self._load_data(data_path / data_file)
        else:
            raise BattleDataError("必须提供战斗数据目录或外部变量。")

    def _load_data(self, file_path: Path):
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                variables = json.load(f)
        except FileNotFoundError as e:
            logger.error(f"战斗数据文件未找到: {e}", exc_info=True); raise
        except json.JSONDecodeError as e:
            logger.error(f"战斗数据文件 {file_path} 不是有效的 JSON: {e}", exc_info=True); raise
        self.load_variables(variables)

    def load_variables(self, variables: Mapping[str, Any]) -> None:
        """
        【核心】校验 stat_data.battle 下的各部分数据。
        单张卡牌/遗物/状态校验失败只跳过该条目；缺少敌人数据时战斗无法开始。
        """
        self._variables = dict(variables)
        battle = (variables.get("stat_data") or {}).get("battle")
        if not isinstance(battle, Mapping):
            logger.error("外部变量中缺少 stat_data.battle。")
            raise BattleDataError("外部变量中缺少 stat_data.battle。")

        try:
            self._core = CoreStatsModel.model_validate(battle.get("core") or {})
        except ValidationError as e:
            logger.error(f"校验玩家核心数值时失败，使用默认值:\n{e}")
            self._core = CoreStatsModel()

        try:
            self._enemy = EnemyModel.model_validate(battle.get("enemy") or {})
        except ValidationError as e:
            logger.error(f"校验敌人数据时失败:\n{e}")
            raise BattleDataError("敌人数据未找到或无效，请确认 battle.enemy 已正确设置。") from e

        self._cards = self._validate_each(CardModel, battle.get("cards"), "卡牌")
        self._relics = self._validate_each(RelicModel, battle.get("artifacts"), "遗物")
        self._player_abilities = self._validate_each(
            AbilityModel, [_ability_payload(a) for a in normalize_store_array(battle.get("player_abilities"))], "能力"
        )
        self._player_statuses = self._validate_each(
            StatusInstanceModel, battle.get("player_status_effects"), "玩家状态"
        )

        lust_effect = battle.get("player_lust_effect")
        try:
            self._player_lust_effect = (
                LustEffectModel.model_validate(lust_effect) if lust_effect else DEFAULT_PLAYER_LUST_EFFECT
            )
        except ValidationError as e:
            logger.error(f"校验玩家欲望效果时失败，使用默认效果:\n{e}")
            self._player_lust_effect = DEFAULT_PLAYER_LUST_EFFECT

        logger.info(
            f"战斗数据加载成功: {len(self._cards)}种卡牌, {len(self._relics)}个遗物, "
            f"{len(self._player_abilities)}个能力, 敌人: {self._enemy.name}"
        )

    @staticmethod
    def _validate_each(model, raw_items: Any, label: str) -> List[Any]:
        validated = []
        for item in normalize_store_array(raw_items):
            if not isinstance(item, Mapping):
                continue
            try:
                validated.append(model.model_validate(item))
            except ValidationError as e:
                logger.error(f"校验{label} '{item.get('id') or item.get('name')}' 数据时失败:\n{e}")
        return validated

    # --- 只读访问 ---

    @property
    def variables(self) -> Dict[str, Any]:
        return self._variables

    def get_enemy_data(self) -> Optional[EnemyModel]:
        return self._enemy

    def get_card_models(self) -> List[CardModel]:
        return list(self._cards)

    # --- 组装 ---

    def create_status_store(self) -> StatusDefinitionStore:
        store = StatusDefinitionStore()
        store.load_from_variables(self._variables)
        return store

    def create_combat_state(
        self,
        store: StatusDefinitionStore,
        settings: Optional[BattleSettings] = None,
        rng: Optional[random.Random] = None,
    ) -> CombatState:
        """每次调用都生成一组全新的实体，牌组按 quantity 展开为独立的卡牌实例。"""
        settings = settings or BattleSettings()
        core, enemy_data = self._core, self._enemy
        max_energy = core.max_energy if core.max_energy is not None else settings.max_energy

        player = Player(
            name="玩家",
            max_hp=core.max_hp,
            current_hp=_clamp(core.hp, core.max_hp),
            max_lust=core.max_lust,
            current_lust=_clamp(core.lust, core.max_lust),
            energy=max_energy,
            max_energy=max_energy,
            relics=[Relic(id=r.id, name=r.name, effect=r.effect, description=r.description, emoji=r.emoji)
                    for r in self._relics],
            draw_pile=self._build_deck(),
            abilities=self._build_abilities(self._player_abilities),
            status_effects=self._build_statuses(self._player_statuses, store),
        )

        enemy_max_hp = enemy_data.max_hp
        enemy = Enemy(
            name=enemy_data.name,
            emoji=enemy_data.emoji,
            description=enemy_data.description,
            max_hp=enemy_max_hp,
            current_hp=_clamp(enemy_data.hp, enemy_max_hp) if enemy_data.hp is not None else enemy_max_hp,
            max_lust=enemy_data.max_lust,
            current_lust=_clamp(enemy_data.lust, enemy_data.max_lust),
            actions=[EnemyAction(name=a.name, effect=a.effect, description=a.description, weight=a.weight)
                     for a in enemy_data.actions],
            action_mode=enemy_data.action_mode,
            lust_effect=LustEffect(
                name=enemy_data.lust_effect.name,
                effect=enemy_data.lust_effect.effect,
                description=enemy_data.lust_effect.description,
            ),
            abilities=self._build_abilities(
                [AbilityModel.model_validate(_ability_payload(a)) if isinstance(a, str) else a
                 for a in enemy_data.abilities]
            ),
            status_effects=self._build_statuses(enemy_data.status_effects, store),
        )

        lust = self._player_lust_effect
        return CombatState(
            player, enemy,
            player_lust_effect=LustEffect(name=lust.name, effect=lust.effect, description=lust.description),
            max_hand_size=settings.max_hand_size,
            rng=rng,
        )

    def create_battle(
        self,
        settings: Optional[BattleSettings] = None,
        *,
        host: Optional[BattleHost] = None,
        observers: Optional[Iterable[BattleObserver]] = None,
        rng: Optional[random.Random] = None,
    ) -> Battle:
        """组装一场新战斗：状态仓库、战斗状态与执行器都是该场战斗独享的实例。"""
        settings = settings or BattleSettings()
        rng = rng or random.Random(settings.rng_seed)
        store = self.create_status_store()
        state = self.create_combat_state(store, settings, rng)
        return Battle(state, store, settings, host=host, observers=observers, parser=self._parser)

    def _build_deck(self) -> List[Card]:
        deck: List[Card] = []
        for model in self._cards:
            for index in range(max(0, model.quantity)):
                deck.append(Card(
                    id=f"{model.id}_{index}",
                    original_id=model.id,
                    name=model.name,
                    cost=model.cost,
                    effect=model.effect,
                    type=model.type,
                    rarity=model.rarity,
                    emoji=model.emoji,
                    description=model.description,
                    discard_effect=model.discard_effect,
                    retain=model.retain,
                    exhaust=model.exhaust,
                    ethereal=model.ethereal,
                ))
        return deck

    def _build_abilities(self, models: Iterable[AbilityModel]) -> List[Ability]:
        abilities: List[Ability] = []
        for model in models:
            definition = self._parser.parse_ability(model.effect)
            if definition is None:
                logger.warning(f"能力格式错误，应为 trigger(effects)，已忽略: {model.effect}")
                continue
            ability = Ability.create(model.trigger or definition.trigger, model.effect)
            if model.id:
                ability.id = model.id
            abilities.append(ability)
        return abilities

    @staticmethod
    def _build_statuses(
        models: Iterable[StatusInstanceModel], store: StatusDefinitionStore
    ) -> List[StatusEffectInstance]:
        """
        快照中的状态实例以仓库中的定义为准补全名称与类型。
        层数按定义的上限 (默认 999) 截断，层数不大于 0 的实例直接丢弃。
        """
        instances: List[StatusEffectInstance] = []
        for model in models:
            definition = store.get(model.id)
            if definition is None and model.type is None:
                logger.warning(f"状态 '{model.id}' 没有定义，已忽略。")
                continue
            max_stacks = (definition.max_stacks if definition else None) or DEFAULT_MAX_STACKS
            stacks = min(model.stacks, max_stacks)
            if stacks <= 0:
                logger.warning(f"快照中状态 '{model.id}' 的层数 {model.stacks} 无效，已忽略。")
                continue
            instances.append(StatusEffectInstance(
                id=model.id,
                name=model.name or (definition.name if definition else model.id),
                type=StatusType(model.type or definition.type),
                stacks=stacks,
                emoji=model.emoji or (definition.emoji if definition else ""),
                description=model.description or (definition.description if definition else ""),
            ))
        return instances


def _clamp(value: float, upper: float) -> float:
    """快照数值限制在 [0, 上限] 之内。"""
    return max(0, min(value, upper))


def _ability_payload(item: Any) -> Any:
    """能力可以只写效果字符串。"""
    return {"effect": item} if isinstance(item, str) else item
