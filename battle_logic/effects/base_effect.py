# battle_logic/effects/base_effect.py

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..constants import AttributeDefinition
    from ..context import ExecutionContext
    from ..executor import EffectExecutor
    from ..expression import EffectExpression


class BaseEffect(ABC):
    """
    效果处理器的抽象基类。
    构造函数接收执行器实例 (依赖注入)，子类只负责某一类属性的语义，
    目标解析、数值求值、状态/能力增删等共享操作都委托给执行器。
    """
    def __init__(self, executor: 'EffectExecutor', expression: 'EffectExpression', definition: 'AttributeDefinition'):
        self.executor = executor
        self.expression = expression
        self.definition = definition

    @property
    def state(self):
        return self.executor.state

    @abstractmethod
    async def execute(self, ctx: 'ExecutionContext') -> None:
        raise NotImplementedError
