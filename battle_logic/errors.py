# battle_logic/errors.py
"""
战斗逻辑层的异常类型。

EffectError 及其子类只用于“单个效果单元”级别的失败：执行器在单元边界捕获它们，
记录日志后跳过该单元，同一批次的其他单元继续执行。其他异常会向上传播给调用方。
"""


class EffectError(Exception):
    """单个效果单元执行失败的基类。"""


class TargetResolutionError(EffectError):
    """效果未能解析出目标实体 (缺少 ME./OP. 且不属于玩家专属属性)。"""


class UnsafeExpressionError(EffectError):
    """算术/条件表达式包含白名单之外的字符，或结果类型不符合预期。"""


class EffectValueError(EffectError):
    """效果的数值、运算符或载荷无法被解释。"""


class EffectDepthError(EffectError):
    """效果嵌套触发超过配置的最大深度。"""


class StatusDefinitionError(ValueError):
    """状态定义未通过校验。"""


class BattleDataError(RuntimeError):
    """外部传入的战斗快照缺少必要数据。"""


class BattleActionError(RuntimeError):
    """玩家的战斗操作在当前状态下不合法 (如能量不足、非玩家回合)。"""
