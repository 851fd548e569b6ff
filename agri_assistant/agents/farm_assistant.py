"""农业助手 Agent 的入口包装。

把 Conversation Store、Tool Registry、Loop Controller、降级链和离线应答器组装在一起，
对外只暴露 submit_turn。
"""

import random
import threading
import uuid
from dataclasses import dataclass, field
from typing import List, Optional

from agri_assistant.config.settings import settings
from agri_assistant.domain.conversation import ConversationStore, Turn
from agri_assistant.domain.exceptions import (
    AssistantUnavailableError,
    TurnInFlightError,
    ValidationError,
)
from agri_assistant.domain.inventory import Inventory
from agri_assistant.domain.models import ImageBlob, UserInput
from agri_assistant.domain.outcomes import Exhausted, Tier
from agri_assistant.engine.audit import ToolAuditLog
from agri_assistant.engine.loop import LoopController
from agri_assistant.engine.offline import OfflineResponder
from agri_assistant.flows.chain import DegradationChain
from agri_assistant.infrastructure.inventory.yaml_inventory import load_inventory
from agri_assistant.infrastructure.logging.logger import logger
from agri_assistant.infrastructure.storage.memory_store import InMemoryConversationStore
from agri_assistant.prompts import load_system_prompt
from agri_assistant.providers import create_model_client
from agri_assistant.providers.base import ModelClient
from agri_assistant.tools.definitions import ToolCallResult
from agri_assistant.tools.registry import create_tool_registry


@dataclass
class TurnReply:
    reply_text: str
    tier: Tier
    tool_trace: List[ToolCallResult] = field(default_factory=list)


class FarmAssistant:
    """单会话农业助手。

    同一时刻只处理一个回合：上一个回合未结束时提交新回合会抛出 TurnInFlightError，
    排队与否由调用方决定。
    """

    def __init__(
        self,
        store: ConversationStore,
        chain: DegradationChain,
        *,
        image_prompt: Optional[str] = None,
    ):
        self._store = store
        self._chain = chain
        self._image_prompt = image_prompt or settings.image_prompt
        self._audit = ToolAuditLog()
        self._in_flight = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        cfg=None,
        *,
        inventory: Optional[Inventory] = None,
        store: Optional[ConversationStore] = None,
        primary_client: Optional[ModelClient] = None,
        secondary_client: Optional[ModelClient] = None,
        rng: Optional[random.Random] = None,
    ) -> "FarmAssistant":
        """按配置组装完整的助手，测试可以替换其中任意组件。"""

        cfg = cfg or settings
        if inventory is None:
            inventory = load_inventory(cfg.inventory_file)
        registry = create_tool_registry(inventory, rng=rng)
        loop = LoopController(
            primary_client or create_model_client("primary", cfg),
            registry,
            max_rounds=cfg.max_tool_rounds,
            temperature=cfg.temperature,
            system_prompt=load_system_prompt(),
        )
        if cfg.enable_secondary_fallback:
            secondary_client = secondary_client or create_model_client("secondary", cfg)
        else:
            secondary_client = None
        chain = DegradationChain(
            loop,
            secondary_client=secondary_client,
            offline=OfflineResponder() if cfg.enable_offline_fallback else None,
            temperature=cfg.temperature,
        )
        if store is None:
            store = InMemoryConversationStore(greeting=cfg.greeting)
        return cls(store, chain, image_prompt=cfg.image_prompt)

    @property
    def store(self) -> ConversationStore:
        return self._store

    @property
    def audit_log(self) -> ToolAuditLog:
        return self._audit

    def submit_turn(
        self,
        text: str,
        image: Optional[ImageBlob] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> TurnReply:
        """处理一个用户回合并返回最终回复。

        Args:
            text: 用户输入文本；只上传图片时可以为空
            image: 可选图片，只随本次请求发送
            cancel_event: 调用方放弃回合时 set()，回合以 TurnCancelledError 结束；
                同步 httpx 调用无法从其他线程中断：已发出的请求最多持续
                http_timeout 秒，其响应在返回后被丢弃，不会写入会话历史

        Returns:
            TurnReply，包含回复文本、本回合的工具调用记录和最终所在层级

        Raises:
            ValidationError: 文本和图片都为空
            TurnInFlightError: 上一个回合仍在处理
            TurnCancelledError: 回合被调用方取消
            AssistantUnavailableError: 所有层级都不可用（离线回复被禁用）
        """
        text = (text or "").strip()
        if not text and image is None:
            raise ValidationError(code="EMPTY_TURN", message="A turn needs text or an image")
        if not text:
            text = self._image_prompt

        if not self._in_flight.acquire(blocking=False):
            raise TurnInFlightError(code="TURN_IN_FLIGHT", message="Another turn is still being processed")
        trace_id = str(uuid.uuid4())
        turn_audit = ToolAuditLog()
        try:
            user_input = UserInput(text=text, image=image)
            logger.info(
                "Turn submitted",
                extra={"extra": {"trace_id": trace_id, "text_len": len(text), "has_image": image is not None}},
            )
            outcome = self._chain.run(
                self._store.turns(),
                user_input,
                audit=turn_audit,
                cancel_event=cancel_event,
                trace_id=trace_id,
            )
            if isinstance(outcome, Exhausted):
                raise AssistantUnavailableError(
                    code="ASSISTANT_UNAVAILABLE",
                    message="No assistant tier is available",
                    http_status=503,
                    reason=outcome.reason.value,
                )
            # 用户回合与助手回合一起提交，失败或取消的回合不留下任何记录
            self._store.extend([
                Turn(role="user", text=text, image=image),
                Turn(role="assistant", text=outcome.text),
            ])
            logger.info(
                "Turn completed",
                extra={
                    "extra": {
                        "trace_id": trace_id,
                        "tier": outcome.tier.value,
                        "tool_calls": len(turn_audit),
                    }
                },
            )
            return TurnReply(reply_text=outcome.text, tier=outcome.tier, tool_trace=turn_audit.records)
        finally:
            self._audit.extend(turn_audit)
            self._in_flight.release()
