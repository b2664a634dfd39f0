"""
Pydantic 数据模型，用于校验外部变量存储 (stat_data.battle) 传入的战斗快照，
以及战斗结束时写回的战斗结果。
"""
from typing import List, Optional, Dict, Any, Union, Literal
from pydantic import BaseModel, Field, AliasChoices

# --- Status Models ---

class StatusDefinitionModel(BaseModel):
    """单个状态效果定义。triggers 的值可以是一条效果字符串或字符串列表。"""
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    emoji: str = Field(min_length=1)
    description: str = Field(min_length=1)
    type: Literal["buff", "debuff", "neutral"]
    # 数字表示每回合增减的层数；"x0.5" 表示按比例衰减；"reset"/"keep" 为特殊规则
    stacks_change: Optional[Union[int, float, str]] = None
    max_stacks: Optional[int] = Field(default=None, validation_alias=AliasChoices("maxStacks", "max_stacks"))
    triggers: Dict[str, Union[str, List[str]]] = Field(default_factory=dict)
    source: Literal["ai", "system"] = "ai"
    created_at: Optional[Union[int, float, str]] = Field(
        default=None, validation_alias=AliasChoices("createdAt", "created_at")
    )

    model_config = {
        "extra": "allow",
        "populate_by_name": True,
    }

    def trigger_effects(self, trigger: str) -> List[str]:
        """把某个触发器的效果统一成列表返回。"""
        raw = self.triggers.get(trigger)
        if not raw:
            return []
        if isinstance(raw, str):
            return [raw]
        return [effect for effect in raw if isinstance(effect, str) and effect.strip()]

    def to_store_dict(self) -> Dict[str, Any]:
        data = self.model_dump(exclude={"max_stacks", "created_at"}, exclude_none=True)
        if self.max_stacks is not None:
            data["maxStacks"] = self.max_stacks
        if self.created_at is not None:
            data["createdAt"] = self.created_at
        return data

# --- Card / Relic Models ---

class CardModel(BaseModel):
    """卡牌定义，quantity 表示牌组中的张数。"""
    id: str
    name: str
    emoji: str = "🃏"
    type: str = "Skill"
    rarity: str = "Common"
    cost: Union[int, str] = 0
    description: str = ""
    effect: str = ""
    # 【兼容】AI 生成的数据对弃牌效果有多种命名
    discard_effect: str = Field(
        default="",
        validation_alias=AliasChoices("discard_effect", "discardEffect", "on_discard", "onDiscard"),
    )
    retain: bool = False
    exhaust: bool = False
    ethereal: bool = False
    quantity: int = 1

    model_config = {
        "extra": "allow"
    }

class RelicModel(BaseModel):
    id: str
    name: str
    emoji: str = "🔮"
    description: str = ""
    effect: str = ""

class LustEffectModel(BaseModel):
    """欲望溢出时触发的效果。"""
    name: str = "欲望爆发"
    description: str = ""
    effect: str

class EnemyActionModel(BaseModel):
    name: str
    effect: str
    description: str = ""
    weight: float = 1.0

class AbilityModel(BaseModel):
    """能力既可以写成完整对象，也可以只写效果字符串。"""
    effect: str
    id: Optional[str] = None
    trigger: Optional[str] = None

class StatusInstanceModel(BaseModel):
    id: str
    stacks: int = 1
    name: Optional[str] = None
    type: Optional[Literal["buff", "debuff", "neutral"]] = None
    emoji: Optional[str] = None
    description: Optional[str] = None

# --- Entity Models ---

class CoreStatsModel(BaseModel):
    """玩家核心数值 (stat_data.battle.core)。"""
    hp: float = 80
    max_hp: float = Field(default=100, gt=0)
    lust: float = 0
    max_lust: float = Field(default=100, gt=0)
    # 未提供时使用插件配置的 max_energy
    max_energy: Optional[int] = None

class EnemyModel(BaseModel):
    name: str = Field(min_length=1)
    emoji: str = "👹"
    hp: Optional[float] = None
    max_hp: float = Field(default=100, gt=0)
    lust: float = 0
    max_lust: float = Field(default=100, gt=0)
    description: str = ""
    actions: List[EnemyActionModel] = Field(default_factory=list)
    action_mode: Literal["random", "sequential"] = Field(
        default="random", validation_alias=AliasChoices("action_mode", "actionMode")
    )
    abilities: List[Union[str, AbilityModel]] = Field(default_factory=list)
    status_effects: List[StatusInstanceModel] = Field(default_factory=list)
    lust_effect: LustEffectModel = Field(
        default_factory=lambda: LustEffectModel(
            name="欲望爆发", description="敌人欲望达到上限时，对玩家造成额外伤害", effect="OP.hp-5"
        )
    )

# --- Battle Result Models ---

class StatusSummaryModel(BaseModel):
    name: str
    stacks: int
    type: str
    description: str = ""

class AbilitySummaryModel(BaseModel):
    effect: str
    description: str = ""

class PlayerResultModel(BaseModel):
    initial_hp: float
    final_hp: float
    max_hp: float
    initial_lust: float
    final_lust: float
    max_lust: float
    status_effects: List[StatusSummaryModel] = Field(default_factory=list)
    abilities: List[AbilitySummaryModel] = Field(default_factory=list)
    remaining_energy: int = 0
    hand_size: int = 0
    deck_size: int = 0
    discard_size: int = 0

class EnemyResultModel(BaseModel):
    name: str
    final_hp: float
    max_hp: float
    final_lust: float
    max_lust: float
    status_effects: List[StatusSummaryModel] = Field(default_factory=list)

class BattleStatsModel(BaseModel):
    turn_count: int
    timestamp: int

class BattleResultModel(BaseModel):
    """战斗结束时写回外部变量存储的结果摘要。"""
    result: Literal["victory", "defeat"]
    player: PlayerResultModel
    enemy: Optional[EnemyResultModel] = None
    battle_stats: BattleStatsModel
    narrative: Optional[str] = None
