"""Model Client 抽象接口。

上层 Loop Controller 不直接依赖具体厂商的 HTTP 接口，而是依赖此协议：

- 每个后端层级（主模型、备用模型）各有一个 ModelClient 实例，模型名在构造时绑定。
- 负责：将 ChatRequest 转成具体 API 请求，并把响应 JSON 解析为 ChatResult。
- 任何 HTTP 非成功状态或网络失败都以 TransportError 抛出，交给失败分类器处理。
"""

from typing import List, Protocol, Sequence

from agri_assistant.domain.conversation import Turn
from agri_assistant.domain.models import ChatMessage, ChatRequest, ChatResult, UserInput


class ModelClient(Protocol):
    """模型后端客户端协议。

    实现者需要提供：
    - name: Provider 名称，用于日志。
    - model: 实际调用的厂商模型 ID。
    - send(req): 执行一次非流式调用，返回统一的 ChatResult。
    """

    name: str
    model: str

    def send(self, req: ChatRequest) -> ChatResult:
        ...


def build_history_messages(history: Sequence[Turn], new_input: UserInput) -> List[ChatMessage]:
    """由历史回合和本回合输入构造发往模型的消息列表。

    第一条回合只有在由用户发出时才保留，预置的开场白不会发给模型；
    之后的回合全部保留。历史中的图片不会重复发送。
    """

    messages = [
        ChatMessage(role=turn.role, content=turn.text)
        for i, turn in enumerate(history)
        if i > 0 or turn.role == "user"
    ]
    messages.append(ChatMessage(role="user", content=new_input.text, image=new_input.image))
    return messages
