# battle_logic/evaluator.py
"""
沙箱化的算术/条件求值器。

效果字符串可能由 AI 生成，因此输入在变量替换后必须先通过字符白名单，
再交给只接受数字、四则运算、比较和逻辑运算节点的 AST 遍历器求值，绝不使用 eval。
"""
from __future__ import annotations
import ast
import math
import re
from typing import Union

from astrbot.api import logger

from .errors import UnsafeExpressionError

Number = Union[int, float]

_MATH_WHITELIST = re.compile(r"^[0-9+\-*/.()]+$")
_CONDITION_WHITELIST = re.compile(r"^[0-9+\-*/.()>=<!&| ]+$")

_FULLWIDTH_GLYPHS = {"≥": ">=", "≤": "<=", "＝": "=", "≠": "!=", "＞": ">", "＜": "<", "！": "!"}

# 多字符运算符先换成占位符，剩下的单个 = 才会被当作相等比较
_OPERATOR_PLACEHOLDERS = (
    ("!==", "§NEQ3§"),
    ("===", "§EQ3§"),
    ("!=", "§NEQ2§"),
    ("==", "§EQ2§"),
    (">=", "§GE§"),
    ("<=", "§LE§"),
    ("&&", "§AND§"),
    ("||", "§OR§"),
)
_PLACEHOLDER_TOKENS = {
    "§NEQ3§": " != ",
    "§EQ3§": " == ",
    "§NEQ2§": " != ",
    "§EQ2§": " == ",
    "§EQ1§": " == ",
    "§GE§": " >= ",
    "§LE§": " <= ",
    "§AND§": " and ",
    "§OR§": " or ",
    "§NOT§": " not ",
}

_BIN_OPS = {
    ast.Add: lambda a, b: a + b,
    ast.Sub: lambda a, b: a - b,
    ast.Mult: lambda a, b: a * b,
    ast.Div: lambda a, b: a / b,
}
_COMPARE_OPS = {
    ast.Eq: lambda a, b: a == b,
    ast.NotEq: lambda a, b: a != b,
    ast.Lt: lambda a, b: a < b,
    ast.LtE: lambda a, b: a <= b,
    ast.Gt: lambda a, b: a > b,
    ast.GtE: lambda a, b: a >= b,
}


def _eval_node(node: ast.AST):
    if isinstance(node, ast.Expression):
        return _eval_node(node.body)

    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
        return node.value

    if isinstance(node, ast.BinOp) and type(node.op) in _BIN_OPS:
        return _BIN_OPS[type(node.op)](_eval_node(node.left), _eval_node(node.right))

    if isinstance(node, ast.UnaryOp):
        operand = _eval_node(node.operand)
        if isinstance(node.op, ast.USub):
            return -operand
        if isinstance(node.op, ast.UAdd):
            return +operand
        if isinstance(node.op, ast.Not):
            return not operand

    if isinstance(node, ast.BoolOp):
        if isinstance(node.op, ast.And):
            return all(_truthy(_eval_node(v)) for v in node.values)
        if isinstance(node.op, ast.Or):
            return any(_truthy(_eval_node(v)) for v in node.values)

    if isinstance(node, ast.Compare):
        left = _eval_node(node.left)
        for op, comparator in zip(node.ops, node.comparators):
            if type(op) not in _COMPARE_OPS:
                raise UnsafeExpressionError(f"不支持的比较运算符: {type(op).__name__}")
            right = _eval_node(comparator)
            if not _COMPARE_OPS[type(op)](left, right):
                return False
            left = right
        return True

    raise UnsafeExpressionError(f"不支持的表达式节点: {type(node).__name__}")


def _truthy(value) -> bool:
    if isinstance(value, bool):
        return value
    raise UnsafeExpressionError("逻辑运算的操作数必须是布尔值")


def evaluate_math(expression: str) -> int:
    """对已完成变量替换的算术表达式求值并向下取整。非法输入抛出 UnsafeExpressionError。"""
    compact = re.sub(r"\s+", "", expression or "")
    if not compact or not _MATH_WHITELIST.match(compact):
        raise UnsafeExpressionError(f"不安全的数学表达式: '{expression}'")
    try:
        result = _eval_node(ast.parse(compact, mode="eval"))
    except (SyntaxError, ZeroDivisionError, TypeError) as e:
        raise UnsafeExpressionError(f"数学表达式求值失败: '{expression}' ({e})") from e
    if isinstance(result, bool) or not math.isfinite(result):
        raise UnsafeExpressionError(f"数学表达式结果无效: '{expression}' -> {result}")
    return math.floor(result)


def normalize_condition(condition: str) -> str:
    """全角符号转半角，并把所有比较/逻辑运算符改写成 Python 语法。"""
    text = re.sub(r"\s+", " ", condition or "").strip()
    for glyph, ascii_op in _FULLWIDTH_GLYPHS.items():
        text = text.replace(glyph, ascii_op)
    if not text or not _CONDITION_WHITELIST.match(text):
        raise UnsafeExpressionError(f"不安全的条件表达式: '{condition}'")
    for operator, placeholder in _OPERATOR_PLACEHOLDERS:
        text = text.replace(operator, placeholder)
    text = re.sub(r"(?<![><!=])=(?!=)", "§EQ1§", text)
    text = text.replace("!", "§NOT§")
    for placeholder, token in _PLACEHOLDER_TOKENS.items():
        text = text.replace(placeholder, token)
    return text


def evaluate_condition(condition: str) -> bool:
    """对已完成变量替换的条件表达式求值。结果不是布尔值时视为失败。"""
    normalized = normalize_condition(condition)
    try:
        result = _eval_node(ast.parse(normalized.strip(), mode="eval"))
    except (SyntaxError, ZeroDivisionError, TypeError) as e:
        raise UnsafeExpressionError(f"条件表达式求值失败: '{condition}' ({e})") from e
    if not isinstance(result, bool):
        raise UnsafeExpressionError(f"条件表达式结果不是布尔值: '{condition}' -> {result}")
    return result


def safe_evaluate_math(expression: str) -> int:
    try:
        return evaluate_math(expression)
    except UnsafeExpressionError as e:
        logger.warning(f"算术表达式求值失败，返回 0: {e}")
        return 0


def safe_evaluate_condition(condition: str) -> bool:
    try:
        return evaluate_condition(condition)
    except UnsafeExpressionError as e:
        logger.warning(f"条件表达式求值失败，视为不成立: {e}")
        return False
