# battle_logic/host.py
from __future__ import annotations
from typing import List, TYPE_CHECKING

from astrbot.api import logger

if TYPE_CHECKING:
    from .data_models import BattleResultModel
    from .entities import Card


class BattleHost:
    """
    战斗核心与宿主平台之间的出站接口。默认实现不做持久化，
    需要 UI 选择卡牌时取最左侧的候选。插件层通过子类接入具体会话。
    """

    async def choose_cards(self, cards: List["Card"], count: int, prompt: str) -> List["Card"]:
        return cards[:count]

    async def save_battle_result(self, result: "BattleResultModel") -> None:
        logger.debug(f"战斗结果 ({result.result}) 未配置持久化，已忽略。")

    async def request_narrative(self, text: str) -> None:
        logger.debug(f"叙事请求未配置宿主入口，已忽略: {text[:50]}")
