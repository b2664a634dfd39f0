# battle_logic/status_store.py
from __future__ import annotations
import time
from typing import Any, Dict, Iterable, List, Mapping, MutableMapping, Optional

from astrbot.api import logger
from pydantic import ValidationError

from .data_models import StatusDefinitionModel
from .errors import StatusDefinitionError

STATUS_STORE_PATH = ("stat_data", "battle", "statuses")
META_EXTENSIBLE_MARKER = "$__META_EXTENSIBLE__$"


def normalize_store_array(value: Any, max_depth: int = 3) -> List[Any]:
    """
    外部变量存储中的数组可能被多层包裹 ([[...]]、[[[...]]])，
    逐层展开至多 max_depth 层，并丢弃扩展标记。
    """
    if value is None:
        return []
    items = value if isinstance(value, list) else [value]
    for _ in range(max_depth):
        if not any(isinstance(item, list) for item in items):
            break
        flattened: List[Any] = []
        for item in items:
            if isinstance(item, list):
                flattened.extend(item)
            else:
                flattened.append(item)
        items = flattened
    return [item for item in items if item != META_EXTENSIBLE_MARKER]


def _dig(variables: Mapping[str, Any], path: Iterable[str]) -> Any:
    node: Any = variables
    for key in path:
        if not isinstance(node, Mapping):
            return None
        node = node.get(key)
    return node


class StatusDefinitionStore:
    """
    状态定义仓库，按 id 保存 AI/系统声明的状态效果定义。
    每个战斗会话持有自己的实例，由工厂从外部变量存储载入。
    """
    def __init__(self, definitions: Optional[Iterable[Mapping[str, Any]]] = None):
        self._definitions: Dict[str, StatusDefinitionModel] = {}
        if definitions is not None:
            self.load(definitions)

    def __contains__(self, status_id: str) -> bool:
        return status_id in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)

    def load(self, raw_items: Iterable[Any]) -> int:
        """载入一批原始定义，返回成功载入的数量。无效条目记录日志后跳过。"""
        loaded = 0
        for item in normalize_store_array(list(raw_items)):
            if not isinstance(item, Mapping):
                continue
            if not item.get("id") or not item.get("name"):
                logger.warning(f"跳过缺少 id 或 name 的状态定义: {item}")
                continue
            data = dict(item)
            data.setdefault("source", "ai")
            data.setdefault("createdAt", int(time.time() * 1000))
            try:
                definition = StatusDefinitionModel.model_validate(data)
            except ValidationError as e:
                logger.error(f"校验状态定义 '{item.get('id')}' 时失败:\n{e}")
                continue
            self._definitions[definition.id] = definition
            loaded += 1
        return loaded

    def load_from_variables(self, variables: Mapping[str, Any]) -> int:
        count = self.load(normalize_store_array(_dig(variables, STATUS_STORE_PATH)))
        logger.info(f"状态定义仓库已载入 {count} 个状态定义。")
        return count

    def reload(self, variables: Mapping[str, Any]) -> int:
        self._definitions.clear()
        return self.load_from_variables(variables)

    def get(self, status_id: str) -> Optional[StatusDefinitionModel]:
        return self._definitions.get(status_id)

    def all_definitions(self) -> List[StatusDefinitionModel]:
        return list(self._definitions.values())

    def get_trigger_effects(self, status_id: str, trigger: str) -> List[str]:
        definition = self._definitions.get(status_id)
        return definition.trigger_effects(trigger) if definition else []

    def add_definition(self, data: Mapping[str, Any]) -> StatusDefinitionModel:
        """校验并新增一个 AI 状态定义，同 id 的旧定义会被覆盖。"""
        payload = dict(data)
        payload["source"] = "ai"
        payload.setdefault("createdAt", int(time.time() * 1000))
        try:
            definition = StatusDefinitionModel.model_validate(payload)
        except ValidationError as e:
            raise StatusDefinitionError(f"状态定义 '{payload.get('id')}' 校验失败: {e}") from e
        self._definitions[definition.id] = definition
        logger.info(f"新增状态定义: {definition.emoji}{definition.name} ({definition.id})")
        return definition

    def export_ai_definitions(self) -> List[Dict[str, Any]]:
        return [d.to_store_dict() for d in self._definitions.values() if d.source == "ai"]

    def save_to_variables(self, variables: MutableMapping[str, Any]) -> None:
        """只把 source 为 ai 的定义写回外部变量存储。"""
        node = variables
        for key in STATUS_STORE_PATH[:-1]:
            node = node.setdefault(key, {})
        node[STATUS_STORE_PATH[-1]] = self.export_ai_definitions()
