"""工具注册表。

在连接后端后由 ChatSession 填充一次，之后每次查询只读。
"""

import copy
from typing import Any, Dict, Iterable, List, Mapping, Optional

from mcp_chat.infrastructure.logging.logger import logger
from mcp_chat.tools.definitions import ToolDescriptor


EMPTY_OBJECT_SCHEMA: Dict[str, Any] = {"type": "object", "properties": {}}


class ToolRegistry:
    """保存当前后端可用的工具，并按后端给出的顺序提供快照。"""

    def __init__(self) -> None:
        self._tools: List[ToolDescriptor] = []

    def populate(self, raw_tools: Iterable[Mapping[str, Any]]) -> List[ToolDescriptor]:
        """用后端原始工具描述替换当前内容。

        缺少 name 或与已有名称重复的条目会被跳过并记录警告，
        保证在部分工具异常时仍然可用。
        """

        tools: List[ToolDescriptor] = []
        seen = set()
        for idx, raw in enumerate(raw_tools):
            name = raw.get("name") if isinstance(raw, Mapping) else None
            if not name:
                logger.warning("Skipping tool without name", extra={"extra": {"index": idx}})
                continue
            if name in seen:
                logger.warning("Skipping duplicate tool", extra={"extra": {"index": idx, "tool_name": name}})
                continue
            seen.add(name)
            schema = raw.get("inputSchema") or EMPTY_OBJECT_SCHEMA
            tools.append(
                ToolDescriptor(
                    name=str(name),
                    description=raw.get("description") or "",
                    parameters=copy.deepcopy(dict(schema)),
                )
            )
        self._tools = tools
        logger.info(
            "Tool registry populated",
            extra={"extra": {"tool_count": len(tools), "tools": [t.name for t in tools]}},
        )
        return self.snapshot()

    def snapshot(self) -> List[ToolDescriptor]:
        return list(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return any(tool.name == name for tool in self._tools)
