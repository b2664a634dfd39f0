# battle_logic/expression.py
"""
效果表达式的结构化表示。

解析器在解析时就确定每个数值字段的种类 (字面量 / 变量引用 / 算术表达式 / 文本)，
执行器按种类分派，不再在每个使用点重新嗅探字符串。
"""
from __future__ import annotations
import re
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Union

from .constants import Target, VARIABLE_DISPLAY_NAMES


@dataclass(frozen=True)
class LiteralValue:
    number: float


@dataclass(frozen=True)
class VariableRef:
    """`max_hp`、`ME.block`、`OP.stacks.burn` 这类单个变量引用。"""
    name: str


@dataclass(frozen=True)
class ExpressionValue:
    """包含变量和运算符的算术表达式，如 `ME.max_hp*0.5`。"""
    text: str


@dataclass(frozen=True)
class TextValue:
    """不参与数值计算的原始文本 (状态载荷、能力定义、叙事文本等)。"""
    text: str


EffectValue = Union[LiteralValue, VariableRef, ExpressionValue, TextValue]

BARE_VARIABLES = frozenset(VARIABLE_DISPLAY_NAMES) - {"draw", "discard"}
_NUMBER_RE = re.compile(r"^[+-]?\d+(?:\.\d+)?$")
_PREFIXED_VARIABLE_RE = re.compile(r"^(ME|OP|ALL)\.\w+$")
_STACKS_VARIABLE_RE = re.compile(r"^(ME|OP|ALL)\.stacks\.\w+$")
_ARITHMETIC_CHARS_RE = re.compile(r"^[\w.+\-*/()\s]+$")


def is_variable_reference(text: str) -> bool:
    text = text.strip()
    return bool(
        text in BARE_VARIABLES
        or _PREFIXED_VARIABLE_RE.match(text)
        or _STACKS_VARIABLE_RE.match(text)
    )


def classify_value(raw: Any) -> EffectValue:
    """解析时一次性判定数值字段的种类。"""
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return LiteralValue(float(raw))
    text = str(raw).strip()
    if _NUMBER_RE.match(text):
        return LiteralValue(float(text))
    if is_variable_reference(text):
        return VariableRef(text)
    if re.search(r"[+\-*/()]", text) and _ARITHMETIC_CHARS_RE.match(text):
        return ExpressionValue(text)
    return TextValue(text)


def value_to_text(value: EffectValue) -> str:
    if isinstance(value, LiteralValue):
        return format_number(value.number)
    if isinstance(value, VariableRef):
        return value.name
    return value.text


def format_number(number: float) -> str:
    """整数值去掉小数点，其余保留原样。"""
    number = float(number)
    if number.is_integer():
        return str(int(number))
    return str(round(number, 2))


@dataclass(frozen=True)
class EffectExpression:
    raw: str
    attribute: str = ""
    target: Optional[Target] = None
    operator: str = "="
    value: EffectValue = TextValue("")
    selector: Optional[str] = None
    is_conditional: bool = False
    condition: Optional[str] = None
    true_effect: Optional[str] = None
    false_effect: Optional[str] = None
    duration: Optional[int] = None
    # 能力包装语法 trigger(...) 的触发器名称
    prefix: Optional[str] = None
    # status apply/remove 的载荷
    status_id: Optional[str] = None
    stacks: Optional[EffectValue] = None
    # add_to_hand / add_to_deck 的卡牌数据
    card_data: Optional[Dict[str, Any]] = field(default=None, compare=False)
    card_count: int = 1
    is_valid: bool = True
    error_message: Optional[str] = None
    description: str = ""

    @property
    def is_variable_reference(self) -> bool:
        return isinstance(self.value, (VariableRef, ExpressionValue))

    def with_target(self, target: Target) -> "EffectExpression":
        """ALL 展开时复制出一个指定目标的单元。"""
        raw = self.raw
        if self.target is not None and raw.startswith(f"{self.target.value}."):
            raw = f"{target.value}.{raw[len(self.target.value) + 1:]}"
        return replace(self, target=target, raw=raw)


def invalid_expression(raw: str, message: str, attribute: str = "") -> EffectExpression:
    return EffectExpression(raw=raw, attribute=attribute, is_valid=False, error_message=message)
