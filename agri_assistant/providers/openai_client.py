"""OpenAI 兼容 Provider 适配器。

接口风格使用 chat/completions 端点：
- URL: {base_url}/chat/completions
- 认证: Authorization: Bearer <api_key>

具体字段以官方文档为准，本实现只依赖公共字段：model/messages/temperature/max_tokens/tools/tool_choice。
"""

import json
from typing import Any, Dict, List, Optional

import httpx

from agri_assistant.config.settings import settings
from agri_assistant.domain.exceptions import ApiError, NetworkError, RateLimitError, ValidationError
from agri_assistant.domain.models import (
    ChatChoice,
    ChatMessage,
    ChatRequest,
    ChatResult,
    ChatUsage,
)
from agri_assistant.providers.registry import OPENAI_CONFIG, ModelConfig, resolve_model
from agri_assistant.tools.definitions import ToolCall, ToolDef


class ChatCompletionsClient:
    """OpenAI 兼容接口客户端实现。"""

    name = "openai"

    def __init__(self, cfg=settings, model: Optional[str] = None):
        self._settings = cfg
        self._model_cfg: ModelConfig = resolve_model(
            OPENAI_CONFIG, model or getattr(cfg, "primary_model", "assistant-chat")
        )

    @property
    def model(self) -> str:
        return self._model_cfg.provider_model

    def send(self, req: ChatRequest) -> ChatResult:
        api_key = getattr(self._settings, "openai_api_key", None)
        if not api_key:
            raise ValidationError(code="MISSING_API_KEY", message="OPENAI_API_KEY not set")
        payload = self._build_payload(req)
        base = getattr(self._settings, "openai_base_url", None) or OPENAI_CONFIG.base_url
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.post(
                    f"{base}/chat/completions",
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {api_key}",
                        "Content-Type": "application/json",
                    },
                )
        except httpx.TimeoutException as e:
            raise NetworkError(code="TIMEOUT", message=f"Chat completions request timed out: {e}")
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        if resp.status_code == 429:
            raise RateLimitError(code="RATE_LIMIT", message=resp.text or "rate limit", http_status=429)
        if resp.status_code >= 400:
            raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code)
        try:
            data = resp.json()
        except ValueError as e:
            raise ApiError(code="INVALID_RESPONSE", message=f"non-JSON body: {e}", http_status=502)
        return self._parse_response(data)

    # ---- 辅助方法 ----

    def _build_payload(self, req: ChatRequest) -> dict:
        msgs: List[Dict[str, Any]] = []
        if req.system_prompt:
            msgs.append({"role": "system", "content": req.system_prompt})
        msgs.extend(self._message_to_payload(m) for m in req.messages)
        payload = {
            "model": self.model,
            "messages": msgs,
            "temperature": req.temperature if req.temperature is not None else self._model_cfg.default_temperature,
            "max_tokens": req.max_tokens or self._model_cfg.max_tokens,
        }
        if req.tools:
            payload["tools"] = [self._serialize_tool(tool) for tool in req.tools]
            payload["tool_choice"] = req.tool_choice
        return payload

    def _parse_response(self, data: dict) -> ChatResult:
        choices: list[ChatChoice] = []
        for i, ch in enumerate(data.get("choices", [])):
            msg = ch.get("message") or {}
            cm = self._build_chat_message(msg)
            choices.append(ChatChoice(index=i, message=cm, finish_reason=ch.get("finish_reason")))
        if not choices:
            raise ApiError(code="EMPTY_RESPONSE", message="Response contained no choices", http_status=502)
        usage_raw = data.get("usage") or {}
        usage = ChatUsage(
            prompt_tokens=usage_raw.get("prompt_tokens", 0),
            completion_tokens=usage_raw.get("completion_tokens", 0),
            total_tokens=usage_raw.get("total_tokens", 0),
        )
        return ChatResult(provider=self.name, model=self.model, choices=choices, usage=usage, raw=data)

    def _build_chat_message(self, payload: Dict[str, Any]) -> ChatMessage:
        """解析 message，兼容 tool_calls/function_call。"""

        tool_calls_raw = payload.get("tool_calls") or []
        tool_calls: List[ToolCall] = []
        for idx, call in enumerate(tool_calls_raw):
            func = call.get("function") or {}
            tool_calls.append(
                ToolCall(
                    id=call.get("id") or f"tool_call_{idx}",
                    name=func.get("name") or call.get("name") or "",
                    arguments=self._parse_arguments(func.get("arguments")),
                )
            )

        # 部分兼容实现仍会返回旧版 function_call 字段
        function_call = payload.get("function_call")
        if function_call:
            tool_calls.append(
                ToolCall(
                    id=function_call.get("id") or "function_call",
                    name=function_call.get("name") or "",
                    arguments=self._parse_arguments(function_call.get("arguments")),
                )
            )

        return ChatMessage(
            role="assistant",
            content=payload.get("content") or "",
            tool_calls=tool_calls or None,
        )

    def _message_to_payload(self, message: ChatMessage) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"role": message.role}
        if message.role == "tool":
            result = message.tool_result if message.tool_result is not None else message.content
            payload["content"] = json.dumps(result, ensure_ascii=False)
            payload["tool_call_id"] = message.tool_call_id
            return payload
        if message.image is not None:
            payload["content"] = [
                {"type": "text", "text": message.content},
                {"type": "image_url", "image_url": {"url": message.image.to_data_url()}},
            ]
        elif message.content:
            payload["content"] = message.content
        if message.tool_calls:
            payload["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {
                        "name": call.name,
                        "arguments": json.dumps(call.arguments, ensure_ascii=False),
                    },
                }
                for call in message.tool_calls
            ]
        return payload

    def _serialize_tool(self, tool: ToolDef) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters_schema(),
            },
        }

    @staticmethod
    def _parse_arguments(raw: Any) -> Dict[str, Any]:
        if isinstance(raw, dict):
            return raw
        if isinstance(raw, str):
            try:
                parsed = json.loads(raw)
            except json.JSONDecodeError:
                return {"_raw": raw}
            return parsed if isinstance(parsed, dict) else {"_raw": raw}
        return {}
