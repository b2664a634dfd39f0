# battle_logic/events.py
"""
结构化战斗事件。

核心逻辑不直接拼接展示文本，而是向订阅者广播 BattleEvent；
日志、聊天回复等外部表现层各自订阅需要的事件。
"""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Protocol, runtime_checkable

from astrbot.api import logger

from .constants import Side


class EventType(Enum):
    EFFECT_EXECUTED = "effect_executed"
    ATTRIBUTE_CHANGED = "attribute_changed"
    BLOCK_ABSORBED = "block_absorbed"
    STATUS_APPLIED = "status_applied"
    STATUS_REMOVED = "status_removed"
    STATUS_STACKS_CHANGED = "status_stacks_changed"
    ABILITY_ADDED = "ability_added"
    ABILITY_REMOVED = "ability_removed"
    ABILITY_TRIGGERED = "ability_triggered"
    LUST_OVERFLOW = "lust_overflow"
    CARD_MOVED = "card_moved"
    CARD_MODIFIED = "card_modified"
    NARRATIVE = "narrative"
    GAME_OVER = "game_over"
    EXPRESSION_SKIPPED = "expression_skipped"
    TURN_CHANGED = "turn_changed"
    ENEMY_ACTION = "enemy_action"


@dataclass
class BattleEvent:
    type: EventType
    message: str = ""
    side: Optional[Side] = None
    attribute: Optional[str] = None
    old_value: Optional[float] = None
    new_value: Optional[float] = None
    data: Dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class BattleObserver(Protocol):
    """任何实现 notify 的对象都可以订阅战斗事件。"""
    def notify(self, event: BattleEvent) -> None:
        ...


class EventBus:
    def __init__(self, observers: Optional[Iterable[BattleObserver]] = None):
        self._observers: List[BattleObserver] = list(observers or [])

    def subscribe(self, observer: BattleObserver) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def emit(self, event: BattleEvent) -> None:
        for observer in list(self._observers):
            observer.notify(event)


class LoggingObserver:
    """把所有事件转发到 AstrBot 日志 (debug 级别)。"""
    def notify(self, event: BattleEvent) -> None:
        if event.message:
            logger.debug(f"[战斗事件:{event.type.value}] {event.message}")


class BattleLogRecorder:
    """收集面向玩家的战斗日志行，服务层在每次操作后取走。"""
    def __init__(self, hidden_types: Optional[Iterable[EventType]] = None):
        self.hidden_types = set(hidden_types) if hidden_types is not None else {EventType.EFFECT_EXECUTED}
        self.lines: List[str] = []

    def notify(self, event: BattleEvent) -> None:
        if event.message and event.type not in self.hidden_types:
            self.lines.append(event.message)

    def drain(self) -> List[str]:
        lines, self.lines = self.lines, []
        return lines

    def text(self) -> str:
        return "\n".join(self.lines)


class EventRecorder:
    """按顺序保存完整事件对象，便于按类型检索。"""
    def __init__(self):
        self.events: List[BattleEvent] = []

    def notify(self, event: BattleEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: EventType) -> List[BattleEvent]:
        return [e for e in self.events if e.type is event_type]
