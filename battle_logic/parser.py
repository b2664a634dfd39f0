# battle_logic/parser.py
"""
统一效果表达式解析器。

把 `ME.hp-6, if[ME.block>0][ME.block-5], turn_start(ME.draw+1)` 这样的效果字符串
拆成可独立执行的 EffectExpression 单元。单个单元语法错误只会让该单元无效，不影响其他单元。
解析结果按原始字符串缓存，效果字符串一经编写便不会改变，因此缓存永不失效。
"""
from __future__ import annotations
import json
import re
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple

from astrbot.api import logger

from .constants import (
    AttributeCategory, Target, TARGET_NAMES, OPERATOR_NAMES, DECORATIVE_EMOJIS,
    get_attribute_definition, get_display_name, get_trigger_display_name, is_valid_trigger,
)
from .expression import (
    EffectExpression, LiteralValue, TextValue, VariableRef, ExpressionValue, EffectValue,
    classify_value, invalid_expression, value_to_text, format_number, BARE_VARIABLES,
)
from .selectors import describe_selector

_EMOJI_CHARS = frozenset(DECORATIVE_EMOJIS)
_ABILITY_WITH_TARGET_RE = re.compile(r"^(ME|OP|ALL)\.(\w+)\((.+)\)$", re.S)
_ABILITY_RE = re.compile(r"^(\w+)\((.+)\)$", re.S)
_ABILITY_LOOSE_RE = re.compile(r"^(\w+)\((.*)$", re.S)
_ABILITY_DEFINITION_RE = re.compile(r"^(?:(ME|OP)\.)?(\w+)\((.+)\)$", re.S)
_VERB_CALL_RE = re.compile(r"^(?:(ME|OP|ALL)\.)?(status|ability)\.(apply|remove|add)\((.+)\)$", re.S)
_CARD_INSERT_RE = re.compile(r"^(?:(ME|OP|ALL)\.)?(add_to_hand|add_to_deck)\s+(.+)$", re.S)
_DIRECT_RE = re.compile(r"^(ME|OP|ALL)\.(\w+)\s*([+\-*/=]|apply\b|remove\b)\s*(.+)$", re.S)
_DURATION_RE = re.compile(r"^(.+?)\s*@(\d+)$", re.S)
_NARRATE_RE = re.compile(r'^narrate\s*(?:=\s*)?["“](.*)["”]$', re.S)
_SELECTOR = r"[a-zA-Z_][\w|\[\]]*(?:[.+][a-zA-Z_][\w|\[\]]*)*"
_SELECTOR_OP_RE = re.compile(rf"^([a-zA-Z_]\w*)\.({_SELECTOR})(?:\s*([+\-=*/])\s*(.+))?$")
_SELECTOR_VALUE_RE = re.compile(rf"^([a-zA-Z_]\w*)\.({_SELECTOR})\s+(.+)$")
_SIMPLE_RE = re.compile(r"^(?:(ME|OP|ALL)\.)?(\w+)\s*([+\-*/=])\s*(.+)$", re.S)
_BARE_RE = re.compile(r"^(?:(ME|OP|ALL)\.)?(\w+)$")
_STACKS_REF_RE = re.compile(r"\b(ME|OP|ALL)\.stacks\.(\w+)")
_PREFIXED_REF_RE = re.compile(r"\b(ME|OP|ALL)\.(\w+)")


@dataclass(frozen=True)
class AbilityDefinition:
    """能力效果字符串 `trigger(inner)` 解析后的结构。"""
    trigger: str
    inner: str
    target: Optional[Target] = None


def split_effects(text: str) -> List[str]:
    """
    按顶层逗号 (含全角逗号) 拆分效果字符串；括号、方括号、花括号和引号内的逗号不拆分。
    装饰性 emoji 只在顶层去除，引号内的叙事文本原样保留，括号内的内容留给下一层解析。
    """
    parts: List[str] = []
    buffer: List[str] = []
    depth = 0
    quote: Optional[str] = None
    escaped = False
    for char in text or "":
        if quote:
            buffer.append(char)
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == quote:
                quote = None
            continue
        if char in "\"“":
            quote = "”" if char == "“" else char
        elif char in "([{":
            depth += 1
        elif char in ")]}":
            depth = max(0, depth - 1)
        elif char in ",，" and depth == 0:
            parts.append("".join(buffer).strip())
            buffer = []
            continue
        elif char == "，":
            char = ","
        elif depth == 0 and char in _EMOJI_CHARS:
            continue
        elif char.isspace():
            if buffer and buffer[-1] == " ":
                continue
            char = " "
        buffer.append(char)
    parts.append("".join(buffer).strip())
    return [part for part in parts if part]


def find_closing(text: str, start: int, opening: str = "(", closing: str = ")") -> int:
    """返回与 text[start] 处开括号匹配的闭括号下标，找不到时返回 -1。"""
    depth = 0
    quote: Optional[str] = None
    for index in range(start, len(text)):
        char = text[index]
        if quote:
            if char == quote:
                quote = None
            continue
        if char == '"':
            quote = char
        elif char == opening:
            depth += 1
        elif char == closing:
            depth -= 1
            if depth == 0:
                return index
    return -1


def extract_wrapped_segments(text: str, trigger: str) -> List[str]:
    """取出 `trigger(...)` 形式片段的内部文本，支持嵌套括号。"""
    segments = []
    for match in re.finditer(rf"(?<![\w.]){re.escape(trigger)}\s*\(", text or ""):
        open_index = match.end() - 1
        close_index = find_closing(text, open_index)
        if close_index == -1:
            segments.append(text[open_index + 1:].strip())
        else:
            segments.append(text[open_index + 1:close_index].strip())
    return [segment for segment in segments if segment]


def replace_variables_in_expression(text: str) -> str:
    """把表达式里的变量引用替换成中文描述，用于日志和预览。"""
    def stacks_sub(match: re.Match) -> str:
        return f"{TARGET_NAMES[Target(match.group(1))]}{match.group(2)}层数"

    def prefixed_sub(match: re.Match) -> str:
        return f"{TARGET_NAMES[Target(match.group(1))]}的{get_display_name(match.group(2))}"

    def bare_sub(match: re.Match) -> str:
        name = match.group(0)
        return f"己方的{get_display_name(name)}" if name in BARE_VARIABLES else name

    result = _STACKS_REF_RE.sub(stacks_sub, text)
    result = _PREFIXED_REF_RE.sub(prefixed_sub, result)
    return re.sub(r"(?<![\w.一-鿿])[a-z_]+\b", bare_sub, result)


class EffectParser:
    """
    效果字符串解析器。实例持有按原始字符串索引的解析缓存，
    每个战斗会话构造一个实例并注入执行器。
    """
    def __init__(self):
        self._cache: Dict[str, Tuple[EffectExpression, ...]] = {}
        self._ability_cache: Dict[str, Optional[AbilityDefinition]] = {}

    def parse(self, text: str) -> List[EffectExpression]:
        if not text or not text.strip():
            return []
        cached = self._cache.get(text)
        if cached is None:
            cached = tuple(self._parse_unit(unit) for unit in split_effects(text))
            self._cache[text] = cached
        return list(cached)

    def parse_ability(self, effect: str) -> Optional[AbilityDefinition]:
        """解析已存储能力的 `[ME.|OP.]trigger(inner)` 结构，不匹配时返回 None。"""
        if effect in self._ability_cache:
            return self._ability_cache[effect]
        match = _ABILITY_DEFINITION_RE.match((effect or "").strip())
        definition = None
        if match:
            target = Target(match.group(1)) if match.group(1) else None
            definition = AbilityDefinition(trigger=match.group(2), inner=match.group(3).strip(), target=target)
        self._ability_cache[effect] = definition
        return definition

    def describe(self, text: str) -> str:
        return "，".join(expr.description or expr.raw for expr in self.parse(text) if expr.is_valid)

    # --- 单元解析 ---

    def _parse_unit(self, unit: str) -> EffectExpression:
        try:
            expression = self._parse_unit_inner(unit.strip())
        except (ValueError, KeyError) as e:
            logger.warning(f"解析效果单元 '{unit}' 失败: {e}")
            return invalid_expression(unit, f"解析失败: {e}")
        if not expression.is_valid:
            logger.warning(f"无效的效果单元 '{unit}': {expression.error_message}")
        return expression

    def _parse_unit_inner(self, unit: str) -> EffectExpression:
        if re.match(r"^if\s*\[", unit):
            return self._parse_conditional(unit)

        match = _ABILITY_WITH_TARGET_RE.match(unit)
        if match:
            target, trigger, inner = Target(match.group(1)), match.group(2), match.group(3)
            if not is_valid_trigger(trigger):
                return invalid_expression(unit, f"未知的触发条件: {trigger}", "ability")
            return self._ability_expression(unit, target, trigger, inner)

        match = _ABILITY_RE.match(unit) or _ABILITY_LOOSE_RE.match(unit)
        if match and is_valid_trigger(match.group(1)):
            return self._ability_expression(unit, Target.ME, match.group(1), match.group(2))

        match = _VERB_CALL_RE.match(unit)
        if match:
            target = Target(match.group(1)) if match.group(1) else None
            return self._direct_expression(unit, target, match.group(2), match.group(3), match.group(4))

        match = _CARD_INSERT_RE.match(unit)
        if match:
            return self._parse_card_insertion(unit, match.group(2), match.group(3))

        body, duration = unit, None
        duration_match = _DURATION_RE.match(unit)
        if duration_match:
            body, duration = duration_match.group(1).strip(), int(duration_match.group(2))

        match = _DIRECT_RE.match(body)
        if match:
            expression = self._direct_expression(
                unit, Target(match.group(1)), match.group(2), match.group(3), match.group(4)
            )
            return self._with_duration(expression, duration)

        return self._with_duration(self._parse_basic(unit, body), duration)

    def _ability_expression(self, raw: str, target: Target, trigger: str, inner: str) -> EffectExpression:
        inner = inner.strip()
        if inner.endswith(")") and inner.count("(") < inner.count(")"):
            inner = inner[:-1].rstrip()
        value = TextValue(f"{trigger}({inner})")
        description = f"{TARGET_NAMES[target]}获得能力【{get_trigger_display_name(trigger)}: {self.describe(inner)}】"
        return EffectExpression(
            raw=raw, attribute="ability", target=target, operator="add",
            value=value, prefix=trigger, description=description,
        )

    def _direct_expression(
        self, raw: str, target: Optional[Target], attribute: str, operator: str, payload: str
    ) -> EffectExpression:
        payload = payload.strip()
        if attribute == "status" and operator in ("apply", "add", "+"):
            status_id, stacks = self._split_status_payload(payload)
            description = f"{self._target_name(target)}施加{value_to_text(stacks)}层{status_id}状态"
            return EffectExpression(
                raw=raw, attribute="status", target=target, operator="apply",
                value=TextValue(f"{status_id} {value_to_text(stacks)}"),
                status_id=status_id, stacks=stacks, description=description,
            )
        if attribute == "status" and operator in ("remove", "-"):
            return EffectExpression(
                raw=raw, attribute="status", target=target, operator="remove",
                value=TextValue(payload), status_id=payload,
                description=f"{self._target_name(target)}移除{payload}状态",
            )
        if attribute == "ability":
            operator = "remove" if operator in ("remove", "-") else "add"
            verb = "失去" if operator == "remove" else "获得"
            return EffectExpression(
                raw=raw, attribute="ability", target=target, operator=operator,
                value=TextValue(payload), description=f"{self._target_name(target)}{verb}能力【{payload}】",
            )
        if operator in ("apply", "remove"):
            return invalid_expression(raw, f"属性 {attribute} 不支持 {operator} 操作", attribute)
        value = classify_value(payload)
        return EffectExpression(
            raw=raw, attribute=attribute, target=target, operator=operator, value=value,
            description=self._describe_numeric(target, attribute, operator, value),
        )

    @staticmethod
    def _split_status_payload(payload: str) -> Tuple[str, EffectValue]:
        """`burn 3`、`burn:3` (旧格式) 与 `burn` 三种写法。"""
        if " " in payload:
            status_id, stacks = payload.split(None, 1)
        elif ":" in payload:
            status_id, stacks = payload.split(":", 1)
        else:
            status_id, stacks = payload, "1"
        return status_id.strip(), classify_value(stacks.strip() or "1")

    def _parse_conditional(self, unit: str) -> EffectExpression:
        blocks: List[str] = []
        position = unit.index("[")
        while position < len(unit) and len(blocks) < 3:
            while position < len(unit) and unit[position] == " ":
                position += 1
            if len(blocks) == 2 and unit.startswith("else", position):
                position += 4
                while position < len(unit) and unit[position] == " ":
                    position += 1
            if position >= len(unit) or unit[position] != "[":
                break
            closing = find_closing(unit, position, "[", "]")
            if closing == -1:
                return invalid_expression(unit, "if语句不完整", "conditional")
            blocks.append(unit[position + 1:closing].strip())
            position = closing + 1
        tail = unit[position:].strip()
        if len(blocks) < 2 or not blocks[0] or tail not in ("", ")", "))"):
            return invalid_expression(unit, "if语句不完整", "conditional")

        condition, true_effect = blocks[0], blocks[1]
        false_effect = blocks[2] if len(blocks) > 2 and blocks[2] else None
        description = f"如果{replace_variables_in_expression(condition)}，则{self.describe(true_effect)}"
        if false_effect:
            description += f"；否则{self.describe(false_effect)}"
        return EffectExpression(
            raw=unit, attribute="conditional", operator="if-else" if false_effect else "if",
            is_conditional=True, condition=condition, true_effect=true_effect,
            false_effect=false_effect, description=description,
        )

    def _parse_card_insertion(self, raw: str, attribute: str, payload: str) -> EffectExpression:
        payload = payload.strip()
        count = 1
        if payload.startswith("{"):
            closing = find_closing(payload, 0, "{", "}")
            if closing == -1:
                return invalid_expression(raw, "卡牌数据格式错误: 花括号不完整", attribute)
            try:
                card_data = json.loads(payload[:closing + 1].replace('\\"', '"'))
            except json.JSONDecodeError as e:
                return invalid_expression(raw, f"卡牌数据格式错误: {e}", attribute)
            rest = payload[closing + 1:].strip()
        else:
            card_id, _, rest = payload.partition(" ")
            card_data = {"id": card_id.strip()}
            rest = rest.strip()
        if rest:
            if not rest.isdigit():
                return invalid_expression(raw, f"卡牌数量无效: {rest}", attribute)
            count = int(rest)
        if not isinstance(card_data, dict):
            return invalid_expression(raw, "卡牌数据必须是对象", attribute)
        name = card_data.get("name") or card_data.get("id") or "卡牌"
        place = "手牌" if attribute == "add_to_hand" else "抽牌堆"
        return EffectExpression(
            raw=raw, attribute=attribute, operator="=", value=TextValue(str(card_data.get("id", ""))),
            card_data=card_data, card_count=count, description=f"将{count}张{name}加入{place}",
        )

    def _parse_basic(self, raw: str, body: str) -> EffectExpression:
        match = _NARRATE_RE.match(body)
        if match:
            text = match.group(1).strip()
            return EffectExpression(
                raw=raw, attribute="narrate", operator="=", value=TextValue(text), description=f"叙事：{text}",
            )

        for pattern in (_SELECTOR_OP_RE, _SELECTOR_VALUE_RE):
            match = pattern.match(body)
            if match and self._is_card_attribute(match.group(1)):
                attribute, selector = match.group(1), match.group(2)
                if pattern is _SELECTOR_OP_RE:
                    operator, payload = match.group(3) or "=", match.group(4) or "1"
                else:
                    operator, payload = "=", match.group(3)
                value = classify_value(payload)
                return EffectExpression(
                    raw=raw, attribute=attribute, operator=operator, value=value, selector=selector,
                    description=self._describe_selector_effect(attribute, selector, value),
                )

        match = _SIMPLE_RE.match(body)
        if match:
            target = Target(match.group(1)) if match.group(1) else None
            attribute, operator, payload = match.group(2), match.group(3), match.group(4).strip()
            if attribute == "narrate":
                text = payload.strip("\"“”")
                return EffectExpression(
                    raw=raw, attribute="narrate", operator="=", value=TextValue(text), description=f"叙事：{text}",
                )
            value = classify_value(payload)
            return EffectExpression(
                raw=raw, attribute=attribute, target=target, operator=operator, value=value,
                description=self._describe_numeric(target, attribute, operator, value),
            )

        match = _BARE_RE.match(body)
        if match:
            target = Target(match.group(1)) if match.group(1) else None
            attribute = match.group(2)
            value = LiteralValue(1.0)
            return EffectExpression(
                raw=raw, attribute=attribute, target=target, operator="=", value=value,
                description=self._describe_numeric(target, attribute, "=", value),
            )

        return invalid_expression(raw, "表达式格式错误")

    @staticmethod
    def _with_duration(expression: EffectExpression, duration: Optional[int]) -> EffectExpression:
        if duration is None or not expression.is_valid:
            return expression
        return replace(expression, duration=duration, description=f"{expression.description}，持续{duration}回合")

    @staticmethod
    def _is_card_attribute(name: str) -> bool:
        definition = get_attribute_definition(name)
        return definition is not None and definition.category is AttributeCategory.CARD

    # --- 描述生成 ---

    @staticmethod
    def _target_name(target: Optional[Target]) -> str:
        return TARGET_NAMES[target] if target else ""

    def _describe_numeric(self, target: Optional[Target], attribute: str, operator: str, value: EffectValue) -> str:
        value_text = self._describe_value(value)
        if attribute == "draw":
            return f"抽{value_text}张牌"
        if attribute == "discard":
            return f"随机弃{value_text}张牌"
        if attribute == "exhaust":
            return "消耗这张牌"
        operator_name = OPERATOR_NAMES.get(operator, operator)
        return f"{self._target_name(target)}{get_display_name(attribute)}{operator_name}{value_text}"

    @staticmethod
    def _describe_value(value: EffectValue) -> str:
        if isinstance(value, LiteralValue):
            return format_number(value.number)
        if isinstance(value, (VariableRef, ExpressionValue)):
            return replace_variables_in_expression(value_to_text(value))
        return value.text

    def _describe_selector_effect(self, attribute: str, selector: str, value: EffectValue) -> str:
        selector_text = describe_selector(selector)
        value_text = self._describe_value(value)
        if attribute == "discard":
            return f"弃掉{selector_text}的卡牌"
        if attribute == "reduce_cost":
            return f"{selector_text}费用减少{value_text}"
        if attribute == "copy_card":
            return f"复制{selector_text}的卡牌"
        if attribute == "trigger_effect":
            return f"{selector_text}的卡牌下次使用效果触发两次"
        if attribute == "exile":
            return f"放逐{selector_text}的卡牌"
        return f"{get_display_name(attribute)}：{selector_text}"
