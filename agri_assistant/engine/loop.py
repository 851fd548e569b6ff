"""工具调用循环（Loop Controller）。

状态机：

    SENDING -> AWAITING_RESULT -> DISPATCHING -> SENDING ...
                               -> DONE
    任意状态 -> ERRORED（传输失败、轮数超限、调用方取消）

每一轮模型请求的全部工具调用都执行完毕、结果全部收集后，才会发出下一次请求。
工具轮次只写入审计日志，不写入会话历史。
"""

import logging
import threading
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from agri_assistant.domain.conversation import Turn
from agri_assistant.domain.exceptions import ApiError, RoundLimitExceededError, TurnCancelledError
from agri_assistant.domain.models import ChatMessage, ChatRequest, ChatResult, UserInput
from agri_assistant.engine.audit import ToolAuditLog
from agri_assistant.infrastructure.logging.logger import logger
from agri_assistant.providers.base import ModelClient, build_history_messages
from agri_assistant.tools.definitions import ToolCall, ToolCallResult, ToolError
from agri_assistant.tools.registry import ToolRegistry


DEFAULT_MAX_ROUNDS = 8


class LoopState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    AWAITING_RESULT = "awaiting_result"
    DISPATCHING = "dispatching"
    DONE = "done"
    ERRORED = "errored"


class LoopController:
    def __init__(
        self,
        client: ModelClient,
        registry: ToolRegistry,
        *,
        max_rounds: int = DEFAULT_MAX_ROUNDS,
        temperature: Optional[float] = None,
        system_prompt: Optional[str] = None,
    ):
        self._client = client
        self._registry = registry
        self._max_rounds = max(1, max_rounds)
        self._temperature = temperature
        self._system_prompt = system_prompt
        self.state = LoopState.IDLE

    @property
    def client(self) -> ModelClient:
        return self._client

    def run(
        self,
        history: Sequence[Turn],
        user_input: UserInput,
        *,
        audit: ToolAuditLog,
        cancel_event: Optional[threading.Event] = None,
        log_ctx: Optional[Dict[str, Any]] = None,
    ) -> str:
        """驱动一次回合直到得到最终文本。

        实现流程：
        1. 发送历史 + 新输入 + 工具目录
        2. 如果有 tool_calls，执行整批工具并把结果追加到消息列表
        3. 重复步骤 1-2，最多 max_rounds 轮工具执行
        4. 返回最终文本；传输错误原样抛出，交给降级链处理

        取消只在每次发送前和收到响应后检查；进行中的请求由 http_timeout 限时，
        取消后到达的响应直接丢弃，不再执行其中的工具调用。
        """
        ctx = dict(log_ctx or {})
        ctx.update(provider=self._client.name, model=self._client.model)
        current_messages = build_history_messages(history, user_input)
        tool_defs = self._registry.tool_defs

        try:
            for round_num in range(self._max_rounds + 1):
                self._check_cancelled(cancel_event)
                self.state = LoopState.SENDING
                req = ChatRequest(
                    messages=list(current_messages),
                    system_prompt=self._system_prompt,
                    temperature=self._temperature,
                    tools=tool_defs,
                    tool_choice="auto",
                )
                self._log(logging.INFO, "Calling model", ctx, round=round_num, message_count=len(req.messages))
                self.state = LoopState.AWAITING_RESULT
                result: ChatResult = self._client.send(req)
                self._check_cancelled(cancel_event)
                assistant_msg = result.message

                if not assistant_msg.tool_calls:
                    text = assistant_msg.content or ""
                    if not text.strip():
                        # 被安全策略拦截或截断时没有任何 part，交给降级链处理
                        raise ApiError(
                            code="EMPTY_RESPONSE",
                            message=f"Model returned no text (finish_reason={result.choices[0].finish_reason})",
                            http_status=502,
                        )
                    self.state = LoopState.DONE
                    self._log(logging.INFO, "Model produced final text", ctx, tool_rounds=round_num)
                    return text

                if round_num == self._max_rounds:
                    raise RoundLimitExceededError(
                        code="ROUND_LIMIT_EXCEEDED",
                        message=f"Model kept requesting tools after {self._max_rounds} rounds",
                        max_rounds=self._max_rounds,
                    )

                self.state = LoopState.DISPATCHING
                batch = self._dispatch_batch(assistant_msg.tool_calls, round_num + 1, ctx)
                audit.extend(batch)
                current_messages.append(assistant_msg)
                current_messages.extend(
                    ChatMessage(
                        role="tool",
                        content="",
                        tool_call_id=res.call_id,
                        tool_name=res.name,
                        tool_result=res.result,
                    )
                    for res in batch
                )
        except Exception as e:
            self.state = LoopState.ERRORED
            self._log(logging.WARNING, "Tool loop errored", ctx, error_type=type(e).__name__, error=str(e))
            raise
        raise AssertionError("unreachable")

    def _dispatch_batch(self, calls: List[ToolCall], round_num: int, ctx: Dict[str, Any]) -> List[ToolCallResult]:
        self._log(logging.INFO, "Executing tool calls", ctx, round=round_num, call_count=len(calls))
        results: List[ToolCallResult] = []
        for call in calls:
            self._log(
                logging.INFO,
                "Tool call received",
                ctx,
                tool_name=call.name,
                tool_call_id=call.id,
                tool_args=call.arguments,
            )
            try:
                res = self._registry.execute(call, round_num)
            except Exception as e:
                self._log(
                    logging.ERROR,
                    "Tool execution failed",
                    ctx,
                    tool_call_id=call.id,
                    error=str(e),
                )
                res = ToolCallResult(
                    call_id=call.id,
                    name=call.name,
                    arguments=dict(call.arguments),
                    result=ToolError("TOOL_FAILED", f"Error: {e}").to_payload(),
                    round=round_num,
                )
            self._log(
                logging.INFO,
                "Tool execution finished",
                ctx,
                tool_call_id=call.id,
                is_error=res.is_error,
                result_preview=str(res.result)[:200],
            )
            results.append(res)
        return results

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise TurnCancelledError(code="TURN_CANCELLED", message="Turn abandoned by caller")

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
