# battle_logic/settings.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from .constants import MAX_HAND_SIZE


@dataclass
class BattleSettings:
    """插件配置解析后的战斗参数，由插件构造时一次性生成并注入服务层。"""
    max_hand_size: int = MAX_HAND_SIZE
    cards_per_turn: int = 5
    max_energy: int = 3
    max_effect_depth: int = 32
    rng_seed: Optional[int] = None
    data_file: str = "battle.json"
    enable_effect_command: bool = False
