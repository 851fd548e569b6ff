"""设备工具：供模型通过函数调用使用的本地操作。"""

from agri_assistant.tools.definitions import ToolCall, ToolCallResult, ToolDef, ToolError, ToolParam
from agri_assistant.tools.registry import ToolRegistry, create_tool_registry, default_tool_defs

__all__ = [
    "ToolCall",
    "ToolCallResult",
    "ToolDef",
    "ToolError",
    "ToolParam",
    "ToolRegistry",
    "create_tool_registry",
    "default_tool_defs",
]
