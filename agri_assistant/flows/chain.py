"""High-level entry point for the degradation chain."""

from __future__ import annotations

import threading
import uuid
from typing import Optional, Sequence

from agri_assistant.domain.conversation import Turn
from agri_assistant.domain.models import UserInput
from agri_assistant.domain.outcomes import DegradationOutcome, Exhausted
from agri_assistant.engine.audit import ToolAuditLog
from agri_assistant.engine.failures import FailureKind, classify_failure
from agri_assistant.engine.loop import LoopController
from agri_assistant.engine.offline import OfflineResponder
from agri_assistant.flows.graph import Classifier, build_degradation_graph
from agri_assistant.flows.state import ChainState
from agri_assistant.infrastructure.logging.logger import logger
from agri_assistant.providers.base import ModelClient


class DegradationChain:
    """按 primary -> secondary -> offline 的固定顺序尝试，不重试、不并行。

    Args:
        primary_loop: 绑定主模型的 Loop Controller（开启工具调用）。
        secondary_client: 备用模型；为 None 时 MODEL_UNAVAILABLE 直接走离线。
        offline: 离线应答器；为 None 时链路可能返回 Exhausted。
        classifier: 失败分类函数，默认 classify_failure。
    """

    def __init__(
        self,
        primary_loop: LoopController,
        secondary_client: Optional[ModelClient] = None,
        offline: Optional[OfflineResponder] = None,
        classifier: Classifier = classify_failure,
        *,
        temperature: Optional[float] = None,
    ):
        self._graph = build_degradation_graph(
            primary_loop,
            secondary_client,
            offline,
            classifier,
            temperature=temperature,
        )

    def run(
        self,
        history: Sequence[Turn],
        user_input: UserInput,
        *,
        audit: ToolAuditLog,
        cancel_event: Optional[threading.Event] = None,
        trace_id: Optional[str] = None,
    ) -> DegradationOutcome:
        state: ChainState = {
            "history": list(history),
            "user_input": user_input,
            "audit": audit,
            "cancel_event": cancel_event,
            "trace_id": trace_id or str(uuid.uuid4()),
            "reason": None,
            "error": None,
            "outcome": None,
        }
        result = self._graph.invoke(state)
        outcome = result.get("outcome")
        if outcome is None:
            # 图的每条路径都以 outcome 结束，这里只兜底
            outcome = Exhausted(reason=result.get("reason") or FailureKind.UNKNOWN)
        logger.info(
            "degradation_chain.outcome",
            extra={
                "extra": {
                    "trace_id": state["trace_id"],
                    "outcome": type(outcome).__name__,
                    "tier": getattr(getattr(outcome, "tier", None), "value", None),
                    "reason": getattr(getattr(outcome, "reason", None), "value", None),
                }
            },
        )
        return outcome
