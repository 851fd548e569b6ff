"""Gemini Provider 适配器。

本模块负责：

1. 接收统一的 ChatRequest。
2. 将其转换为 Gemini generateContent 的 HTTP 请求格式：
   - URL: {base_url}/models/{model}:generateContent
   - 认证: x-goog-api-key: <api_key>
3. 调用 HTTP 接口并处理网络/限流/API 异常。
4. 将响应 JSON 解析为统一的 ChatResult / ChatMessage 结构（含函数调用）。

Gemini 与 OpenAI 风格的主要差异：
- 角色只有 user / model，工具结果以 functionResponse part 放在 user 消息里。
- 函数调用没有 id，按 name 与结果配对；同一轮的多个结果必须合并在一条消息中。
- 图片以 inlineData（base64）part 附在用户消息上。
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
from agri_assistant.providers.registry import GEMINI_CONFIG, ModelConfig, resolve_model
from agri_assistant.tools.definitions import ToolCall, ToolDef


TOOL_MODES = {"auto": "AUTO", "none": "NONE", "required": "ANY"}


class GeminiClient:
    """Gemini 客户端实现，每个实例绑定一个逻辑模型。"""

    name = "gemini"

    def __init__(self, cfg=settings, model: Optional[str] = None):
        # Settings 里包含 base_url、api_key、超时等配置
        self._settings = cfg
        self._model_cfg: ModelConfig = resolve_model(
            GEMINI_CONFIG, model or getattr(cfg, "primary_model", "assistant-chat")
        )

    @property
    def model(self) -> str:
        return self._model_cfg.provider_model

    def send(self, req: ChatRequest) -> ChatResult:
        """执行一次非流式调用。

        步骤：
        1. 构造 generateContent 请求 payload。
        2. 发送请求并捕获网络错误/超时/限流/服务端错误。
        3. 使用统一的解析函数构造 ChatResult。
        """

        api_key = getattr(self._settings, "gemini_api_key", None)
        if not api_key:
            # 配置缺失走 ValidationError，方便上层统一处理
            raise ValidationError(code="MISSING_API_KEY", message="GEMINI_API_KEY not set")
        payload = self._build_payload(req)
        base = getattr(self._settings, "gemini_base_url", None) or GEMINI_CONFIG.base_url
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.post(
                    f"{base}/models/{self.model}:generateContent",
                    json=payload,
                    headers={
                        "x-goog-api-key": api_key,
                        "Content-Type": "application/json",
                    },
                )
        except httpx.TimeoutException as e:
            raise NetworkError(code="TIMEOUT", message=f"Gemini request timed out: {e}")
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接被重置等
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        if resp.status_code == 429:
            # 配额耗尽/限流：由降级链决定是否跳过备用模型
            raise RateLimitError(code="RATE_LIMIT", message=resp.text or "Gemini quota exceeded", http_status=429)
        if resp.status_code >= 400:
            raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code)
        try:
            data = resp.json()
        except ValueError as e:
            raise ApiError(code="INVALID_RESPONSE", message=f"Gemini returned non-JSON body: {e}", http_status=502)
        return self._parse_response(data)

    # ---- 辅助方法 ----

    def _build_payload(self, req: ChatRequest) -> Dict[str, Any]:
        """将 ChatRequest 转成 generateContent 所需的请求 JSON。"""

        payload: Dict[str, Any] = {
            "contents": self._build_contents(req.messages),
            "generationConfig": {
                "temperature": req.temperature if req.temperature is not None else self._model_cfg.default_temperature,
                "maxOutputTokens": req.max_tokens or self._model_cfg.max_tokens,
            },
        }
        if req.system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": req.system_prompt}]}
        if req.tools:
            payload["tools"] = [{"functionDeclarations": [self._serialize_tool(t) for t in req.tools]}]
            payload["toolConfig"] = {
                "functionCallingConfig": {"mode": TOOL_MODES.get(req.tool_choice, "AUTO")}
            }
        return payload

    def _build_contents(self, messages: List[ChatMessage]) -> List[Dict[str, Any]]:
        contents: List[Dict[str, Any]] = []
        for message in messages:
            if message.role == "tool":
                part = {
                    "functionResponse": {
                        "name": message.tool_name or "",
                        "response": {"result": message.tool_result if message.tool_result is not None else message.content},
                    }
                }
                # 同一轮的多个工具结果合并成一条消息
                if contents and contents[-1].get("_tool_batch"):
                    contents[-1]["parts"].append(part)
                else:
                    contents.append({"role": "user", "parts": [part], "_tool_batch": True})
                continue
            contents.append(self._message_to_content(message))
        for content in contents:
            content.pop("_tool_batch", None)
        return contents

    def _message_to_content(self, message: ChatMessage) -> Dict[str, Any]:
        role = "model" if message.role == "assistant" else "user"
        parts: List[Dict[str, Any]] = []
        if message.content:
            parts.append({"text": message.content})
        if message.image is not None:
            parts.append(
                {"inlineData": {"mimeType": message.image.mime_type, "data": message.image.to_base64()}}
            )
        for call in message.tool_calls or []:
            parts.append({"functionCall": {"name": call.name, "args": call.arguments}})
        if not parts:
            parts.append({"text": ""})
        return {"role": role, "parts": parts}

    def _serialize_tool(self, tool: ToolDef) -> Dict[str, Any]:
        """把内部的 ToolDef 转成 Gemini 的 functionDeclaration。"""

        return {
            "name": tool.name,
            "description": tool.description,
            "parameters": tool.parameters_schema(),
        }

    def _parse_response(self, data: Dict[str, Any]) -> ChatResult:
        """将 Gemini 的原始响应 JSON 解析为统一的 ChatResult。"""

        candidates = data.get("candidates") or []
        if not candidates:
            feedback = data.get("promptFeedback") or {}
            reason = feedback.get("blockReason") or "no candidates"
            raise ApiError(code="EMPTY_RESPONSE", message=f"Gemini returned no candidates: {reason}", http_status=502)
        choices: List[ChatChoice] = []
        for i, cand in enumerate(candidates):
            content = cand.get("content") or {}
            choices.append(
                ChatChoice(
                    index=cand.get("index", i),
                    message=self._build_chat_message(content.get("parts") or []),
                    finish_reason=cand.get("finishReason"),
                )
            )
        usage_raw = data.get("usageMetadata") or {}
        usage = ChatUsage(
            prompt_tokens=usage_raw.get("promptTokenCount", 0),
            completion_tokens=usage_raw.get("candidatesTokenCount", 0),
            total_tokens=usage_raw.get("totalTokenCount", 0),
        )
        return ChatResult(provider=self.name, model=self.model, choices=choices, usage=usage, raw=data)

    def _build_chat_message(self, parts: List[Dict[str, Any]]) -> ChatMessage:
        """将 candidate 的 parts 转换为 ChatMessage，functionCall 解析为 ToolCall 列表。"""

        texts: List[str] = []
        tool_calls: List[ToolCall] = []
        for part in parts:
            if "functionCall" in part:
                call = part.get("functionCall") or {}
                tool_calls.append(
                    ToolCall(
                        id=call.get("id") or f"tool_call_{len(tool_calls)}",
                        name=call.get("name") or "",
                        arguments=self._parse_arguments(call.get("args")),
                    )
                )
            elif part.get("text"):
                texts.append(part["text"])
        return ChatMessage(
            role="assistant",
            content="".join(texts),
            tool_calls=tool_calls or None,
        )

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
