# astrbot_plugin_fish_battle/main.py

from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from astrbot.api import logger, AstrBotConfig
from astrbot.api.event import AstrMessageEvent, filter
from astrbot.api.star import Context, Star, register

from .service import GameService, ServiceResult
from .battle_logic.factory import GameDataFactory
from .battle_logic.settings import BattleSettings

@register("FishBattle", "YourName", "卡牌战斗效果引擎", "1.0.0")
class FishBattlePlugin(Star):
    """
    卡牌战斗插件。

    架构设计:
    - Main (本文件): 插件入口，负责处理AstrBot指令，并将业务逻辑委托给GameService。采用命令执行器模式
      (`_execute_command`)来消除重复代码，保持指令处理函数整洁。
    - Service: 应用服务层，处理会话管理、战斗流程编排和UI生成。
    - UI: 表现层，负责生成所有用户可见的消息文本。
    - Battle_Logic (领域层): 效果表达式解析、统一效果执行器、修饰符、状态与触发器，
      与AstrBot框架无关 (仅依赖其日志)，可独立测试。
    """

    def __init__(self, context: Context, config: AstrBotConfig):
        """
        初始化插件，加载数据，并准备服务。
        """
        super().__init__(context)
        self.factory: Optional[GameDataFactory] = None
        self.service: Optional[GameService] = None
        self.settings: BattleSettings = BattleSettings()

        try:
            # 1. 解析配置
            self.settings = self._parse_battle_config(config)

            # 2. 初始化数据工厂
            data_path = Path(__file__).parent / "data"
            self.factory = GameDataFactory(data_path, data_file=self.settings.data_file)

            # 3. 初始化核心服务
            self.service = GameService(self.factory, self.settings)

            logger.info("卡牌战斗插件服务启动成功。")
        except Exception as e:
            # 如果任何步骤失败，记录详细错误并阻止插件服务启动
            logger.error(f"卡牌战斗插件因初始化失败而无法启动: {e}", exc_info=True)
            self.service = None

    def _parse_battle_config(self, config: AstrBotConfig) -> BattleSettings:
        """
        从插件配置中解析战斗参数，缺失或类型不符的配置项使用默认值。

        Args:
            config: AstrBot的配置对象。

        Returns:
            解析后的 BattleSettings。
        """
        defaults = BattleSettings()

        def _int(key: str, default: Optional[int], minimum: int = 0) -> Optional[int]:
            value = config.get(key, default)
            if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
                if value != default:
                    logger.warning(f"卡牌战斗插件：配置项 {key}={value!r} 无效，使用默认值 {default}。")
                return default
            return value

        seed = config.get("rng_seed")
        data_file = config.get("data_file", defaults.data_file)
        settings = BattleSettings(
            max_hand_size=_int("max_hand_size", defaults.max_hand_size, 1),
            cards_per_turn=_int("cards_per_turn", defaults.cards_per_turn),
            max_energy=_int("max_energy", defaults.max_energy, 1),
            max_effect_depth=_int("max_effect_depth", defaults.max_effect_depth, 1),
            rng_seed=seed if isinstance(seed, int) and not isinstance(seed, bool) else None,
            data_file=data_file if isinstance(data_file, str) and data_file.strip() else defaults.data_file,
            enable_effect_command=bool(config.get("enable_effect_command", False)),
        )
        logger.info(
            f"卡牌战斗插件：手牌上限 {settings.max_hand_size}，每回合抽 {settings.cards_per_turn} 张，"
            f"能量 {settings.max_energy}，最大嵌套深度 {settings.max_effect_depth}。"
        )
        return settings

    async def _handle_service_call(self, event: AstrMessageEvent, result: ServiceResult):
        """
        统一处理来自GameService的ServiceResult，并生成回复。
        """
        if not result.success and result.log_level:
            log_func = getattr(logger, result.log_level, logger.info)
            log_func(f"卡牌战斗插件业务逻辑失败: {result.message} (用户: {event.get_user_id()})")
        yield event.plain_result(result.message)

    async def _execute_command(
        self,
        event: AstrMessageEvent,
        service_method: Callable[..., Awaitable[ServiceResult]],
        *args: Any,
        **kwargs: Any
    ):
        """
        命令执行器，封装了所有指令的通用处理逻辑：
        检查服务是否可用 → 调用service方法 → 通过_handle_service_call转换为回复。
        """
        if not self.service:
            yield event.plain_result("错误：卡牌战斗插件未成功初始化，请检查后台日志。")
            return

        result = await service_method(*args, **kwargs)

        async for msg in self._handle_service_call(event, result):
            yield msg

    # --- 指令处理函数 ---

    @filter.command_group("fish")
    async def fish_group(self, event: AstrMessageEvent):
        """处理无效的 /fish 子命令，提供帮助信息。"""
        yield event.plain_result("无效的子命令。可用: start, status, play, end, flee, statuses, effect")

    @fish_group.command("start")
    async def start_battle(self, event: AstrMessageEvent):
        """按配置的战斗快照开始一场新战斗。"""
        async for msg in self._execute_command(event, self.service and self.service.start_battle, event.get_session_id()):
            yield msg

    @fish_group.command("status")
    async def battle_status(self, event: AstrMessageEvent):
        """查看双方状态、手牌与敌人意图。"""
        async for msg in self._execute_command(event, self.service and self.service.get_status, event.get_session_id()):
            yield msg

    @fish_group.command("play", args=(1,))
    async def play_card(self, event: AstrMessageEvent, card: str):
        """打出一张手牌 (序号或卡名)。"""
        async for msg in self._execute_command(
            event, self.service and self.service.play_card, event.get_session_id(), card
        ):
            yield msg

    @fish_group.command("end")
    async def end_turn(self, event: AstrMessageEvent):
        """结束当前回合。"""
        async for msg in self._execute_command(event, self.service and self.service.end_turn, event.get_session_id()):
            yield msg

    @fish_group.command("flee")
    async def flee_battle(self, event: AstrMessageEvent):
        """从战斗中逃跑。"""
        async for msg in self._execute_command(event, self.service and self.service.flee, event.get_session_id()):
            yield msg

    @fish_group.command("statuses")
    async def list_statuses(self, event: AstrMessageEvent):
        """列出当前的状态定义。"""
        async for msg in self._execute_command(
            event, self.service and self.service.list_statuses, event.get_session_id()
        ):
            yield msg

    @fish_group.command("effect")
    async def run_effect(self, event: AstrMessageEvent):
        """(调试) 以玩家身份执行一条效果字符串。"""
        parts = event.message_str.split(maxsplit=2)
        if len(parts) < 3:
            yield event.plain_result("格式错误。正确用法: /fish effect <效果字符串>"); return

        async for msg in self._execute_command(
            event, self.service and self.service.run_effect, event.get_session_id(), parts[2]
        ):
            yield msg
