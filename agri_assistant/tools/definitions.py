"""工具数据结构定义。

这些 dataclass 描述了“工具调用”的 schema，既用于：
- 将可用工具列表暴露给模型（ToolDef / ToolParam）。
- 在 Loop Controller 中保存和执行模型触发的工具调用（ToolCall / ToolCallResult）。
"""

from dataclasses import dataclass, field
from typing import Dict, Any


@dataclass
class ToolParam:
    """单个工具参数的定义。"""

    name: str
    description: str
    required: bool
    schema: Dict[str, Any]


@dataclass
class ToolDef:
    """一个可供模型调用的工具定义。"""

    name: str
    description: str
    params: Dict[str, ToolParam] = field(default_factory=dict)

    def parameters_schema(self) -> Dict[str, Any]:
        """生成 JSON Schema 形式的参数描述，供各 Provider 复用。"""

        properties: Dict[str, Any] = {}
        required = []
        for name, param in self.params.items():
            schema = param.schema or {"type": "string"}
            if param.description:
                schema = {**schema, "description": param.description}
            properties[name] = schema
            if param.required:
                required.append(name)
        return {"type": "object", "properties": properties, "required": required}


@dataclass
class ToolCall:
    """模型发起的一次工具调用请求。"""

    id: str
    name: str
    arguments: Dict[str, Any]


@dataclass(frozen=True)
class ToolError:
    """工具层面的失败，作为结果值返回给模型而不是抛出。

    code 取值：NOT_FOUND、NOT_RENTABLE、INVALID_ARGUMENTS、UNKNOWN_TOOL、TOOL_FAILED。
    """

    code: str
    message: str

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code}


@dataclass
class ToolCallResult:
    """一次工具调用的执行结果，同时也是审计记录。"""

    call_id: str
    name: str
    arguments: Dict[str, Any]
    result: Dict[str, Any]
    round: int = 1

    @property
    def is_error(self) -> bool:
        return "error" in self.result

    @property
    def error_code(self) -> str:
        return str(self.result.get("code") or "") if self.is_error else ""
