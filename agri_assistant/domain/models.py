"""统一的对话与结果数据模型。

本模块定义了助手内部在不同 Provider 之间共享的标准数据结构：

- ImageBlob / UserInput: 用户本回合的输入（文本 + 可选图片）。
- ChatMessage: 一条发往模型的消息（user/assistant/tool）。
- ChatRequest: 发给底层 Model Client 的完整请求。
- ChatResult: 从 Provider 解析后的统一响应结果。

所有 Provider 适配器（如 GeminiClient）都必须只依赖这些模型，
并负责在各自的 API JSON 和这些模型之间做转换。
"""

import base64
import binascii
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Optional, Any, Dict, List, TYPE_CHECKING, Union

from agri_assistant.domain.exceptions import ValidationError

if TYPE_CHECKING:
    # 仅在类型检查时导入，避免运行时循环依赖
    from agri_assistant.tools.definitions import ToolCall, ToolDef


# 发往模型的消息角色；Provider 负责映射为各家的 role 字段（如 Gemini 的 "model"）
Role = Literal["user", "assistant", "tool"]


@dataclass(frozen=True)
class ImageBlob:
    """用户上传的图片，只在携带它的那次请求中使用。"""

    mime_type: str
    data: bytes

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.to_base64()}"

    @classmethod
    def from_data_url(cls, url: str) -> "ImageBlob":
        """解析浏览器 FileReader 产生的 data URL：data:<mime>;base64,<payload>。"""

        header, sep, payload = (url or "").partition(",")
        if not sep or not header.startswith("data:") or ";base64" not in header:
            raise ValidationError(code="INVALID_IMAGE", message="Image must be a base64 data URL")
        mime_type = header[len("data:"):].split(";", 1)[0] or "application/octet-stream"
        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValidationError(code="INVALID_IMAGE", message=f"Invalid base64 image: {exc}")
        return cls(mime_type=mime_type, data=data)

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "ImageBlob":
        p = Path(path).expanduser()
        mime_type, _ = mimetypes.guess_type(p.name)
        if not mime_type or not mime_type.startswith("image/"):
            raise ValidationError(code="INVALID_IMAGE", message=f"Not an image file: {p.name}")
        try:
            data = p.read_bytes()
        except OSError as exc:
            raise ValidationError(code="INVALID_IMAGE", message=str(exc))
        return cls(mime_type=mime_type, data=data)


@dataclass(frozen=True)
class UserInput:
    """正在处理的新输入（尚未写入 Conversation Store）。"""

    text: str
    image: Optional[ImageBlob] = None


@dataclass
class ChatMessage:
    """一条对话消息，既可用于请求，也可用于响应。

    - role: 消息角色，如 user/assistant/tool。
    - content: 纯文本内容。
    - image: 仅当前回合的用户消息会携带图片。
    - tool_calls: 当 role 为 "assistant" 且模型触发工具调用时，
      这里保存模型发起的工具调用列表。
    - tool_call_id / tool_name / tool_result: 当 role 为 "tool" 时，
      用于关联某一次工具调用并携带结构化结果。
    """

    role: Role
    content: str = ""
    image: Optional[ImageBlob] = None
    tool_calls: Optional[List["ToolCall"]] = None
    tool_call_id: Optional[str] = None
    tool_name: Optional[str] = None
    tool_result: Optional[Dict[str, Any]] = None


@dataclass
class ChatRequest:
    """一次完整的聊天请求。

    Loop Controller 会把历史回合、新输入以及工具轮次的中间消息组装成
    ChatRequest，再交给具体的 ModelClient。模型名由 client 自身绑定。
    """

    messages: List[ChatMessage]
    system_prompt: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    # 工具定义列表：当模型支持工具调用时，会通过 Provider 转成对应 schema
    tools: Optional[List["ToolDef"]] = None
    # 模型是否必须/禁止使用工具
    tool_choice: Literal["auto", "none", "required"] = "auto"


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class ChatChoice:
    """单个候选回答（目前只使用 index=0 的一条）。"""

    index: int
    message: ChatMessage
    finish_reason: Optional[str] = None


@dataclass
class ChatResult:
    """一次模型调用的最终结果。

    choices[0].message 带 tool_calls 时即为 ToolCallBatch，否则为最终文本。
    """

    provider: str
    model: str
    choices: List[ChatChoice]
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = None

    @property
    def message(self) -> ChatMessage:
        return self.choices[0].message

    @property
    def tool_calls(self) -> List["ToolCall"]:
        return list(self.message.tool_calls or [])
