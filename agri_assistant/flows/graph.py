"""LangGraph construction and node implementations for the degradation chain.

primary ──(Success)──────────────────────────────► END
   │
   ├─(MODEL_UNAVAILABLE)─► secondary ──(Degraded)─► END
   │                           │
   │                           └─(failed)─┐
   └─(QUOTA_EXCEEDED / TRANSIENT / UNKNOWN)┴─► offline ─► END
"""

from __future__ import annotations

from typing import Callable, Optional

from langgraph.graph import END, StateGraph
from langgraph.graph.state import CompiledStateGraph

from agri_assistant.domain.exceptions import ApiError, TurnCancelledError
from agri_assistant.domain.models import ChatMessage, ChatRequest
from agri_assistant.domain.outcomes import Degraded, Exhausted, Success, Tier
from agri_assistant.engine.failures import FailureKind
from agri_assistant.engine.loop import LoopController
from agri_assistant.engine.offline import OfflineResponder
from agri_assistant.flows.state import ChainState
from agri_assistant.infrastructure.logging.logger import logger
from agri_assistant.providers.base import ModelClient


Classifier = Callable[[BaseException], FailureKind]


def _check_cancelled(state: ChainState) -> None:
    event = state.get("cancel_event")
    if event is not None and event.is_set():
        raise TurnCancelledError(code="TURN_CANCELLED", message="Turn abandoned by caller")


def primary_node(state: ChainState, loop: LoopController, classifier: Classifier) -> ChainState:
    trace_id = state.get("trace_id")
    logger.info("primary_node.start", extra={"extra": {"trace_id": trace_id, "model": loop.client.model}})
    try:
        text = loop.run(
            state.get("history") or [],
            state["user_input"],
            audit=state["audit"],
            cancel_event=state.get("cancel_event"),
            log_ctx={"trace_id": trace_id, "tier": Tier.PRIMARY.value},
        )
    except TurnCancelledError:
        raise
    except Exception as exc:
        reason = classifier(exc)
        logger.warning(
            "primary_node.failed",
            extra={
                "extra": {
                    "trace_id": trace_id,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                    "reason": reason.value,
                }
            },
        )
        return {"reason": reason, "error": str(exc)}
    logger.info("primary_node.end", extra={"extra": {"trace_id": trace_id}})
    return {"outcome": Success(text)}


def secondary_node(state: ChainState, client: ModelClient, temperature: Optional[float]) -> ChainState:
    """单次请求：只带本回合文本，不带历史、工具和图片。"""

    trace_id = state.get("trace_id")
    _check_cancelled(state)
    logger.info("secondary_node.start", extra={"extra": {"trace_id": trace_id, "model": client.model}})
    req = ChatRequest(
        messages=[ChatMessage(role="user", content=state["user_input"].text)],
        temperature=temperature,
        tools=None,
        tool_choice="none",
    )
    try:
        result = client.send(req)
        text = result.message.content or ""
        if not text.strip():
            raise ApiError(code="EMPTY_RESPONSE", message="Secondary model returned no text", http_status=502)
    except Exception as exc:
        logger.warning(
            "secondary_node.failed",
            extra={"extra": {"trace_id": trace_id, "error_type": type(exc).__name__, "error": str(exc)}},
        )
        return {"error": str(exc)}
    _check_cancelled(state)
    logger.info("secondary_node.end", extra={"extra": {"trace_id": trace_id}})
    return {"outcome": Degraded(text=text, tier=Tier.SECONDARY, reason=FailureKind.MODEL_UNAVAILABLE)}


def offline_node(state: ChainState, offline: Optional[OfflineResponder]) -> ChainState:
    reason = state.get("reason") or FailureKind.UNKNOWN
    trace_id = state.get("trace_id")
    if offline is None:
        logger.error("offline_node.disabled", extra={"extra": {"trace_id": trace_id, "reason": reason.value}})
        return {"outcome": Exhausted(reason=reason)}
    reply = offline.respond(state["user_input"].text, reason)
    logger.info(
        "offline_node.reply",
        extra={"extra": {"trace_id": trace_id, "topic": reply.topic, "reason": reason.value}},
    )
    return {"outcome": Degraded(text=reply.render(), tier=Tier.OFFLINE, reason=reason)}


def primary_router(state: ChainState, has_secondary: bool) -> str:
    if state.get("outcome") is not None:
        return "done"
    if state.get("reason") == FailureKind.MODEL_UNAVAILABLE and has_secondary:
        return "secondary"
    return "offline"


def secondary_router(state: ChainState) -> str:
    if state.get("outcome") is not None:
        return "done"
    return "offline"


def build_degradation_graph(
    loop: LoopController,
    secondary_client: Optional[ModelClient],
    offline: Optional[OfflineResponder],
    classifier: Classifier,
    *,
    temperature: Optional[float] = None,
) -> CompiledStateGraph:
    graph = StateGraph(ChainState)
    graph.add_node("primary", lambda s: primary_node(s, loop, classifier))
    graph.add_node("offline", lambda s: offline_node(s, offline))
    graph.set_entry_point("primary")
    if secondary_client is not None:
        graph.add_node("secondary", lambda s: secondary_node(s, secondary_client, temperature))
        graph.add_conditional_edges(
            "primary",
            lambda s: primary_router(s, True),
            {"done": END, "secondary": "secondary", "offline": "offline"},
        )
        graph.add_conditional_edges("secondary", secondary_router, {"done": END, "offline": "offline"})
    else:
        graph.add_conditional_edges(
            "primary",
            lambda s: primary_router(s, False),
            {"done": END, "offline": "offline"},
        )
    graph.add_edge("offline", END)
    return graph.compile()
