# service.py
from typing import Any, Awaitable, Callable, Dict, List, Optional
from dataclasses import dataclass, field

from . import ui
from .battle_logic.factory import GameDataFactory
from .battle_logic.battle import Battle
from .battle_logic.data_models import BattleResultModel
from .battle_logic.errors import BattleActionError
from .battle_logic.events import BattleLogRecorder, LoggingObserver
from .battle_logic.host import BattleHost
from .battle_logic.settings import BattleSettings
from astrbot.api import logger

@dataclass
class ServiceResult:
    success: bool; message: str; log_level: Optional[str] = None

class SessionBattleHost(BattleHost):
    """把战斗结果与叙事请求保存在会话内，插件层在下一次回复时读取。"""
    def __init__(self):
        self.results: List[BattleResultModel] = []
        self.narratives: List[str] = []

    async def save_battle_result(self, result: BattleResultModel) -> None:
        self.results.append(result)
        logger.info(f"战斗结果已记录: {result.result}，共 {result.battle_stats.turn_count} 回合")

    async def request_narrative(self, text: str) -> None:
        self.narratives.append(text)

@dataclass
class GameSession:
    battle: Battle
    recorder: BattleLogRecorder = field(default_factory=BattleLogRecorder)
    host: SessionBattleHost = field(default_factory=SessionBattleHost)

    def is_over(self) -> bool: return self.battle.is_over()

class GameService:
    def __init__(self, factory: GameDataFactory, settings: Optional[BattleSettings] = None):
        self.factory = factory
        self.settings = settings or BattleSettings()
        self.sessions: Dict[str, GameSession] = {}

    def get_session(self, session_id: str) -> Optional[GameSession]:
        return self.sessions.get(session_id)

    async def _run_battle_action(
        self, session_id: str, action: Callable[[Battle], Awaitable[Any]]
    ) -> ServiceResult:
        """
        【核心】执行一次战斗操作并生成回复。
        不合法的操作直接提示玩家；意外错误记录完整堆栈，会话保留以便继续。
        """
        session = self.sessions.get(session_id)
        if not session: return ServiceResult(False, "你当前不在任何战斗中。使用 /fish start 开始战斗。")
        try:
            await action(session.battle)
        except BattleActionError as e:
            session.recorder.drain()
            return ServiceResult(False, f"❌ {e}")
        except Exception as e:
            logger.error(f"处理战斗操作时发生意外错误: {e}", exc_info=True)
            session.recorder.drain()
            return ServiceResult(False, "❌ 战斗处理出错，请查看后台日志。", log_level="error")
        return self._handle_turn_result(session_id, session)

    def _handle_turn_result(self, session_id: str, session: GameSession) -> ServiceResult:
        turn_log = ui.join_log(session.recorder.drain())
        if session.is_over():
            final_log = ui.generate_battle_over_message(session.battle, turn_log)
            if session_id in self.sessions: del self.sessions[session_id]
            return ServiceResult(success=True, message=final_log)
        ui_body = ui.generate_regular_ui_body(session)
        final_message = ui.generate_final_message(ui_body, session, turn_log=turn_log)
        return ServiceResult(success=True, message=final_message)

    async def start_battle(self, session_id: str) -> ServiceResult:
        existing = self.sessions.get(session_id)
        if existing and not existing.is_over():
            return ServiceResult(False, "你已经在战斗中了！使用 /fish flee 放弃当前战斗。")
        host, recorder = SessionBattleHost(), BattleLogRecorder()
        battle = self.factory.create_battle(self.settings, host=host, observers=[recorder, LoggingObserver()])
        session = GameSession(battle=battle, recorder=recorder, host=host)
        self.sessions[session_id] = session
        recorder.lines.append("⚔️ 战斗开始！ ⚔️")
        result = await self._run_battle_action(session_id, lambda b: b.start())
        if not result.success: self.sessions.pop(session_id, None)
        return result

    async def get_status(self, session_id: str) -> ServiceResult:
        session = self.sessions.get(session_id)
        if not session: return ServiceResult(False, "你当前不在任何战斗中。")
        return ServiceResult(True, ui.generate_final_message(ui.generate_regular_ui_body(session), session))

    async def play_card(self, session_id: str, reference: str) -> ServiceResult:
        return await self._run_battle_action(session_id, lambda b: b.play_card(reference))

    async def end_turn(self, session_id: str) -> ServiceResult:
        return await self._run_battle_action(session_id, lambda b: b.end_player_turn())

    async def flee(self, session_id: str) -> ServiceResult:
        if session_id not in self.sessions: return ServiceResult(False, "你当前不在任何战斗中。")
        result = await self._run_battle_action(session_id, lambda b: b.flee())
        if result.success: result.message = "你从战斗中逃跑了，战斗结束！\n" + result.message
        return result

    async def list_statuses(self, session_id: str) -> ServiceResult:
        session = self.sessions.get(session_id)
        if session:
            store, describe = session.battle.store, session.battle.executor.parser.describe
        else:
            store, describe = self.factory.create_status_store(), None
        return ServiceResult(True, ui.generate_status_definitions_msg(store, describe))

    async def run_effect(self, session_id: str, text: str) -> ServiceResult:
        if not self.settings.enable_effect_command:
            return ServiceResult(False, "调试指令未启用。")
        if not text.strip(): return ServiceResult(False, "格式错误。正确用法: /fish effect <效果字符串>")
        result = await self._run_battle_action(session_id, lambda b: b.run_effect(text))
        session = self.sessions.get(session_id)
        if result.success and session:
            preview = ui.generate_effect_preview(text, session.battle.executor.parser.describe)
            if preview: result.message = preview + "\n" + result.message
        return result
