import random
import re
import threading

import pytest

from agri_assistant.agents.farm_assistant import FarmAssistant
from agri_assistant.api import service
from agri_assistant.domain.exceptions import (
    AssistantUnavailableError,
    NetworkError,
    RateLimitError,
    TurnCancelledError,
    TurnInFlightError,
    ValidationError,
)
from agri_assistant.domain.models import ChatChoice, ChatMessage, ChatResult, ImageBlob
from agri_assistant.domain.outcomes import Tier
from agri_assistant.engine.offline import QUOTA_NOTE
from agri_assistant.tools.definitions import ToolCall


GREETING = "Hello! I am your AgriSmart farming assistant."


class SettingsStub:
    inventory_file = None
    max_tool_rounds = 8
    temperature = 0.7
    enable_secondary_fallback = True
    enable_offline_fallback = True
    greeting = GREETING
    image_prompt = "Analyze this image for farming advice."


def _result(content="", tool_calls=None):
    msg = ChatMessage(role="assistant", content=content, tool_calls=tool_calls)
    return ChatResult(provider="fake", model="fake-model", choices=[ChatChoice(index=0, message=msg)])


class FakeClient:
    name = "fake"
    model = "fake-model"

    def __init__(self, *responses):
        self._responses = list(responses)
        self.requests = []

    def send(self, req):
        self.requests.append(req)
        item = self._responses.pop(0)
        if isinstance(item, Exception):
            raise item
        if callable(item):
            return item(req)
        return item


def _assistant(primary, secondary=None, cfg=None):
    return FarmAssistant.from_settings(
        cfg or SettingsStub(),
        primary_client=primary,
        secondary_client=secondary or FakeClient(),
        rng=random.Random(11),
    )


def _confirm_booking(req):
    booking = req.messages[-1].tool_result
    return _result(f"Your Drone is booked for 3 acres. Booking ID: {booking['bookingId']}.")


def test_drone_booking_turn():
    primary = FakeClient(
        _result(tool_calls=[ToolCall(id="c1", name="list_items", arguments={})]),
        _result(tool_calls=[ToolCall(id="c2", name="book_item", arguments={"itemId": 2, "duration": 3})]),
        _confirm_booking,
    )
    assistant = _assistant(primary)
    reply = assistant.submit_turn("I need a drone for 3 acres")

    assert reply.tier == Tier.PRIMARY
    assert [r.name for r in reply.tool_trace] == ["list_items", "book_item"]
    booking_id = reply.tool_trace[1].result["bookingId"]
    assert re.fullmatch(r"RNT-\d{1,4}", booking_id)
    assert booking_id in reply.reply_text
    assert len(assistant.audit_log) == 2

    # 工具轮次不进入会话历史
    turns = assistant.store.turns()
    assert [(t.role, t.text) for t in turns] == [
        ("assistant", GREETING),
        ("user", "I need a drone for 3 acres"),
        ("assistant", reply.reply_text),
    ]


def test_direct_answer_has_empty_trace():
    assistant = _assistant(FakeClient(_result("Rotate your crops.")))
    reply = assistant.submit_turn("crop tips")
    assert reply.reply_text == "Rotate your crops."
    assert reply.tier == Tier.PRIMARY
    assert reply.tool_trace == []


def test_history_is_replayed_without_greeting():
    primary = FakeClient(_result("First answer."), _result("Second answer."))
    assistant = _assistant(primary)
    assistant.submit_turn("first question")
    assistant.submit_turn("second question")

    sent = primary.requests[1].messages
    assert [(m.role, m.content) for m in sent] == [
        ("user", "first question"),
        ("assistant", "First answer."),
        ("user", "second question"),
    ]


def test_empty_turn_rejected():
    primary = FakeClient()
    assistant = _assistant(primary)
    with pytest.raises(ValidationError) as exc:
        assistant.submit_turn("   ")
    assert exc.value.code == "EMPTY_TURN"
    assert len(assistant.store) == 1
    assert primary.requests == []


def test_image_only_turn_uses_default_prompt():
    primary = FakeClient(_result("Looks like leaf rust."))
    assistant = _assistant(primary)
    image = ImageBlob(mime_type="image/jpeg", data=b"leaf")
    reply = assistant.submit_turn("", image=image)

    last = primary.requests[0].messages[-1]
    assert last.content == "Analyze this image for farming advice."
    assert last.image is image
    assert reply.reply_text == "Looks like leaf rust."
    assert assistant.store.turns()[1].image is image


def test_quota_failure_degrades_to_offline_and_is_stored():
    primary = FakeClient(RateLimitError(code="RATE_LIMIT", message="quota", http_status=429))
    secondary = FakeClient()
    assistant = _assistant(primary, secondary)
    reply = assistant.submit_turn("what is the weather?")

    assert reply.tier == Tier.OFFLINE
    assert reply.reply_text.endswith(QUOTA_NOTE)
    assert secondary.requests == []
    assert assistant.store.turns()[-1].text == reply.reply_text


def test_exhausted_raises_and_leaves_store_untouched():
    class NoOffline(SettingsStub):
        enable_offline_fallback = False

    assistant = _assistant(FakeClient(NetworkError(code="TIMEOUT", message="timed out")), cfg=NoOffline())
    with pytest.raises(AssistantUnavailableError):
        assistant.submit_turn("hello")
    assert len(assistant.store) == 1


def test_cancelled_turn_leaves_no_trace_in_store():
    event = threading.Event()
    event.set()
    assistant = _assistant(FakeClient(_result("never")))
    with pytest.raises(TurnCancelledError):
        assistant.submit_turn("hello", cancel_event=event)
    assert len(assistant.store) == 1
    # 取消后可以继续提交
    event.clear()
    assert assistant.submit_turn("hello", cancel_event=event).reply_text == "never"


def test_concurrent_submission_rejected():
    entered = threading.Event()
    release = threading.Event()

    def _slow(req):
        entered.set()
        release.wait(5)
        return _result("slow answer")

    assistant = _assistant(FakeClient(_slow))
    replies = []
    worker = threading.Thread(target=lambda: replies.append(assistant.submit_turn("first")))
    worker.start()
    try:
        assert entered.wait(5)
        with pytest.raises(TurnInFlightError):
            assistant.submit_turn("second")
    finally:
        release.set()
        worker.join(5)
    assert replies[0].reply_text == "slow answer"
    assert len(assistant.store) == 3


def test_service_helpers(monkeypatch, tmp_path):
    primary = FakeClient(
        _result(tool_calls=[ToolCall(id="c1", name="get_item_details", arguments={"name": "Drone"})]),
        _result("The Drone rents for ₹800/acre."),
    )
    monkeypatch.setattr(service, "_assistant", _assistant(primary))
    image_path = tmp_path / "leaf.png"
    image_path.write_bytes(b"\x89PNG")

    data = service.run_assistant_turn("drone price?", image_path=str(image_path))
    assert data["reply"] == "The Drone rents for ₹800/acre."
    assert data["tier"] == "primary"
    assert data["tool_trace"][0]["name"] == "get_item_details"
    assert data["tool_trace"][0]["is_error"] is False

    history = service.get_history()
    assert [h["role"] for h in history] == ["assistant", "user", "assistant"]
    assert history[1]["has_image"] is True


def test_blocked_gemini_candidate_never_stores_blank_reply(monkeypatch):
    class Resp:
        status_code = 200
        text = ""

        def json(self):
            return {"candidates": [{"finishReason": "SAFETY"}]}

    class Client:
        def __init__(self, *a, **kw):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def post(self, *a, **kw):
            return Resp()

    class GeminiSettings(SettingsStub):
        provider = "gemini"
        primary_model = "assistant-chat"
        secondary_model = "assistant-lite"
        gemini_api_key = "gemini-test-key"
        gemini_base_url = "https://gemini.test/v1beta"
        http_timeout = 1.0

    monkeypatch.setattr("httpx.Client", Client)
    assistant = FarmAssistant.from_settings(GeminiSettings(), secondary_client=FakeClient(), rng=random.Random(1))
    reply = assistant.submit_turn("tell me about pest control")

    assert reply.tier == Tier.OFFLINE
    assert reply.reply_text.strip()
    assert assistant.store.turns()[-1].text == reply.reply_text


def test_cancel_while_request_in_flight_discards_response():
    event = threading.Event()

    def _cancelled_mid_request(req):
        event.set()
        return _result("late answer")

    assistant = _assistant(FakeClient(_cancelled_mid_request))
    with pytest.raises(TurnCancelledError):
        assistant.submit_turn("hello", cancel_event=event)
    assert len(assistant.store) == 1
