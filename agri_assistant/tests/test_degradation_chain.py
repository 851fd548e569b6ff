import random
import threading

import pytest

from agri_assistant.domain.conversation import Turn
from agri_assistant.domain.exceptions import (
    ApiError,
    NetworkError,
    RateLimitError,
    TurnCancelledError,
)
from agri_assistant.domain.models import ChatChoice, ChatMessage, ChatResult, ImageBlob, UserInput
from agri_assistant.domain.outcomes import Degraded, Exhausted, Success, Tier
from agri_assistant.engine.audit import ToolAuditLog
from agri_assistant.engine.failures import FailureKind
from agri_assistant.engine.loop import LoopController
from agri_assistant.engine.offline import CANNED_REPLIES, QUOTA_NOTE, UNREACHABLE_NOTE, OfflineResponder
from agri_assistant.flows.chain import DegradationChain
from agri_assistant.infrastructure.inventory.yaml_inventory import load_inventory
from agri_assistant.tools.registry import create_tool_registry


def _text(content):
    msg = ChatMessage(role="assistant", content=content)
    return ChatResult(provider="fake", model="fake-model", choices=[ChatChoice(index=0, message=msg)])


class FakeClient:
    name = "fake"

    def __init__(self, *responses, model="fake-model"):
        self.model = model
        self._responses = list(responses)
        self.requests = []

    def send(self, req):
        self.requests.append(req)
        item = self._responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _chain(primary, secondary=None, offline=True):
    registry = create_tool_registry(load_inventory(), rng=random.Random(0))
    loop = LoopController(primary, registry, max_rounds=3)
    return DegradationChain(loop, secondary_client=secondary, offline=OfflineResponder() if offline else None)


HISTORY = [Turn(role="assistant", text="greeting"), Turn(role="user", text="earlier"), Turn(role="assistant", text="answer")]


def test_primary_success():
    secondary = FakeClient()
    outcome = _chain(FakeClient(_text("Use drip irrigation.")), secondary).run(
        HISTORY, UserInput(text="water tips"), audit=ToolAuditLog()
    )
    assert outcome == Success("Use drip irrigation.")
    assert outcome.tier == Tier.PRIMARY
    assert not hasattr(outcome, "reason")
    assert secondary.requests == []


def test_quota_skips_secondary():
    secondary = FakeClient(_text("should not be used"))
    primary = FakeClient(RateLimitError(code="RATE_LIMIT", message="RESOURCE_EXHAUSTED", http_status=429))
    outcome = _chain(primary, secondary).run(HISTORY, UserInput(text="Will it rain?"), audit=ToolAuditLog())

    assert isinstance(outcome, Degraded)
    assert outcome.tier == Tier.OFFLINE
    assert outcome.reason == FailureKind.QUOTA_EXCEEDED
    assert outcome.text == f"{CANNED_REPLIES['weather']}\n\n{QUOTA_NOTE}"
    assert secondary.requests == []


def test_model_unavailable_tries_secondary_once():
    secondary = FakeClient(_text("Lite answer"), model="lite-model")
    primary = FakeClient(ApiError(code="API_ERROR", message="model not found", http_status=404))
    image = ImageBlob(mime_type="image/png", data=b"img")
    outcome = _chain(primary, secondary).run(HISTORY, UserInput(text="crop advice", image=image), audit=ToolAuditLog())

    assert outcome == Degraded(text="Lite answer", tier=Tier.SECONDARY, reason=FailureKind.MODEL_UNAVAILABLE)
    assert len(secondary.requests) == 1
    req = secondary.requests[0]
    # 单次请求：只有本回合文本，没有历史、工具和图片
    assert [(m.role, m.content) for m in req.messages] == [("user", "crop advice")]
    assert req.messages[0].image is None
    assert not req.tools


def test_secondary_failure_falls_to_offline():
    secondary = FakeClient(NetworkError(code="TIMEOUT", message="timed out"))
    primary = FakeClient(ApiError(code="API_ERROR", message="model not found", http_status=404))
    outcome = _chain(primary, secondary).run(HISTORY, UserInput(text="pest control"), audit=ToolAuditLog())

    assert outcome.tier == Tier.OFFLINE
    assert outcome.reason == FailureKind.MODEL_UNAVAILABLE
    assert outcome.text == f"{CANNED_REPLIES['pest']}\n\n{UNREACHABLE_NOTE}"
    assert len(secondary.requests) == 1


def test_model_unavailable_without_secondary_goes_offline():
    primary = FakeClient(ApiError(code="API_ERROR", message="model not found", http_status=404))
    outcome = _chain(primary, None).run([], UserInput(text="hello"), audit=ToolAuditLog())
    assert outcome.tier == Tier.OFFLINE
    assert outcome.reason == FailureKind.MODEL_UNAVAILABLE


@pytest.mark.parametrize(
    "error, reason",
    [
        (NetworkError(code="NETWORK_ERROR", message="connection reset"), FailureKind.TRANSIENT),
        (ApiError(code="API_ERROR", message="internal", http_status=500), FailureKind.UNKNOWN),
    ],
)
def test_transient_and_unknown_go_offline(error, reason):
    secondary = FakeClient(_text("unused"))
    outcome = _chain(FakeClient(error), secondary).run([], UserInput(text="market price"), audit=ToolAuditLog())
    assert outcome.tier == Tier.OFFLINE
    assert outcome.reason == reason
    assert secondary.requests == []


def test_offline_disabled_returns_exhausted():
    primary = FakeClient(NetworkError(code="TIMEOUT", message="timed out"))
    outcome = _chain(primary, None, offline=False).run([], UserInput(text="hi"), audit=ToolAuditLog())
    assert outcome == Exhausted(reason=FailureKind.TRANSIENT)


def test_cancellation_is_not_degraded():
    event = threading.Event()
    event.set()
    secondary = FakeClient(_text("unused"))
    with pytest.raises(TurnCancelledError):
        _chain(FakeClient(_text("unused")), secondary).run(
            [], UserInput(text="hi"), audit=ToolAuditLog(), cancel_event=event
        )
    assert secondary.requests == []


def test_blank_primary_reply_degrades_to_offline():
    secondary = FakeClient(_text("unused"))
    outcome = _chain(FakeClient(_text("")), secondary).run([], UserInput(text="seed advice"), audit=ToolAuditLog())
    assert outcome.tier == Tier.OFFLINE
    assert outcome.reason == FailureKind.UNKNOWN
    assert outcome.text == f"{CANNED_REPLIES['crop']}\n\n{UNREACHABLE_NOTE}"
    assert secondary.requests == []
