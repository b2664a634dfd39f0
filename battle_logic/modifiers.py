# battle_logic/modifiers.py
"""
修饰符解析。

来源按顺序收集为 ModifierTerm：玩家遗物的 passive(...) 片段 → 持有状态的 hold 效果 → 实体上直接存储的修饰符。
所有来源统一使用同一套组合代数：先累加全部加法项，再乘以全部乘法项，即 (base + add) × mul。
执行伤害/欲望/格挡时与展示分解时都由同一批 ModifierTerm 计算，两条路径的数值天然一致。
"""
from __future__ import annotations
import re
from dataclasses import dataclass, field
from typing import List, TYPE_CHECKING

from astrbot.api import logger

from .constants import MODIFIER_TYPES
from .expression import format_number
from .parser import extract_wrapped_segments

if TYPE_CHECKING:
    from .entities import Combatant
    from .status_store import StatusDefinitionStore

_STACKS_TOKEN_RE = re.compile(r"(?<![\w.])stacks(?![\w.])")
_FOLD_RE = re.compile(r"(\d+(?:\.\d+)?)\s*([*/])\s*(\d+(?:\.\d+)?)")


def _term_pattern(modifier_type: str) -> re.Pattern:
    return re.compile(rf"(?<![\w.])(?:ME\.)?{re.escape(modifier_type)}\s*([+\-*/=])\s*(\d+(?:\.\d+)?)")


_TERM_PATTERNS = {modifier_type: _term_pattern(modifier_type) for modifier_type in MODIFIER_TYPES}


def _fold_number(a: float, op: str, b: float) -> str:
    result = a * b if op == "*" else a / b
    text = f"{result:.2f}"
    return text.rstrip("0").rstrip(".") if "." in text else text


def process_stacks_expression(effect: str, stacks: int) -> str:
    """
    把效果文本中的 stacks 替换成当前层数，给未限定的修饰符补上 ME. 前缀，
    再把纯数字的乘除折叠成结果。对已处理过的文本再次调用结果不变。
    """
    text = _STACKS_TOKEN_RE.sub(str(stacks), effect)
    for modifier_type in MODIFIER_TYPES:
        text = re.sub(rf"(?<![\w.]){re.escape(modifier_type)}\b", f"ME.{modifier_type}", text)

    def fold(match: re.Match) -> str:
        left, op, right = float(match.group(1)), match.group(2), float(match.group(3))
        if op == "/" and right == 0:
            return match.group(0)
        return _fold_number(left, op, right)

    previous = None
    while previous != text:
        previous = text
        text = _FOLD_RE.sub(fold, text)
    return text


@dataclass(frozen=True)
class ModifierTerm:
    operator: str
    value: float
    source: str


@dataclass
class ModifierBreakdown:
    modifier_type: str
    add: float = 0.0
    mul: float = 1.0
    terms: List[ModifierTerm] = field(default_factory=list)

    def apply(self, base: float) -> float:
        return (base + self.add) * self.mul

    def describe(self) -> str:
        parts = []
        if self.add:
            parts.append(f"{'+' if self.add > 0 else ''}{format_number(round(self.add, 1))}")
        if self.mul != 1:
            parts.append(f"×{format_number(round(self.mul, 2))}")
        return " ".join(parts)


class ModifierResolver:
    def __init__(self, store: "StatusDefinitionStore"):
        self.store = store

    def collect_terms(self, entity: "Combatant", modifier_type: str) -> List[ModifierTerm]:
        pattern = _TERM_PATTERNS.get(modifier_type) or _term_pattern(modifier_type)
        terms: List[ModifierTerm] = []

        for relic in getattr(entity, "relics", []):
            for segment in extract_wrapped_segments(relic.effect, "passive"):
                terms.extend(self._scan(pattern, segment, f"遗物:{relic.name}"))

        for status in entity.status_effects:
            for effect in self.store.get_trigger_effects(status.id, "hold"):
                if modifier_type not in effect:
                    continue
                processed = process_stacks_expression(effect, status.stacks)
                terms.extend(self._scan(pattern, processed, f"状态:{status.name}"))

        direct = entity.modifiers.get(modifier_type)
        if direct:
            terms.append(ModifierTerm("+", float(direct), "直接修饰"))
        return terms

    @staticmethod
    def _scan(pattern: re.Pattern, text: str, source: str) -> List[ModifierTerm]:
        terms = []
        for match in pattern.finditer(text):
            operator, value = match.group(1), float(match.group(2))
            if operator == "=":
                logger.warning(f"修饰符组合不支持 '=' 运算 ({source}: '{match.group(0)}')，该项不生效。")
                continue
            if operator == "/" and value == 0:
                logger.warning(f"修饰符除数为 0 ({source}: '{match.group(0)}')，该项不生效。")
                continue
            terms.append(ModifierTerm(operator, value, source))
        return terms

    def breakdown(self, entity: "Combatant", modifier_type: str) -> ModifierBreakdown:
        result = ModifierBreakdown(modifier_type)
        for term in self.collect_terms(entity, modifier_type):
            result.terms.append(term)
            if term.operator == "+":
                result.add += term.value
            elif term.operator == "-":
                result.add -= term.value
            elif term.operator == "*":
                result.mul *= term.value
            elif term.operator == "/":
                result.mul *= 1 / term.value
        return result

    def compute_modifier(self, entity: "Combatant", modifier_type: str) -> float:
        """加法部分的合计值。"""
        return self.breakdown(entity, modifier_type).add

    def apply_modifiers(self, entity: "Combatant", modifier_type: str, base: float) -> float:
        breakdown = self.breakdown(entity, modifier_type)
        if not breakdown.terms:
            return base
        modified = breakdown.apply(base)
        logger.debug(
            f"{entity.name} 的 {modifier_type} 生效: {format_number(base)} -> {format_number(modified)} "
            f"({breakdown.describe()})"
        )
        return modified
