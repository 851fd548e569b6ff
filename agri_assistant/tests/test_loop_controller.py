import random
import threading

import pytest

from agri_assistant.domain.conversation import Turn
from agri_assistant.domain.exceptions import ApiError, RoundLimitExceededError, TurnCancelledError
from agri_assistant.domain.models import ChatChoice, ChatMessage, ChatResult, UserInput
from agri_assistant.engine.audit import ToolAuditLog
from agri_assistant.engine.loop import LoopController, LoopState
from agri_assistant.infrastructure.inventory.yaml_inventory import load_inventory
from agri_assistant.tools.definitions import ToolCall
from agri_assistant.tools.registry import create_tool_registry


def _text(content):
    msg = ChatMessage(role="assistant", content=content)
    return ChatResult(provider="fake", model="fake-model", choices=[ChatChoice(index=0, message=msg)])


def _calls(*calls):
    msg = ChatMessage(role="assistant", tool_calls=list(calls))
    return ChatResult(provider="fake", model="fake-model", choices=[ChatChoice(index=0, message=msg)])


class ScriptedClient:
    name = "fake"
    model = "fake-model"

    def __init__(self, *responses):
        self._responses = list(responses)
        self.requests = []

    def send(self, req):
        # 复制消息列表，记录发送时的快照
        self.requests.append(list(req.messages))
        self.last_request = req
        item = self._responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class RepeatingClient(ScriptedClient):
    def send(self, req):
        self.requests.append(list(req.messages))
        return _calls(ToolCall(id=f"c{len(self.requests)}", name="list_items", arguments={}))


def _loop(client, max_rounds=8):
    registry = create_tool_registry(load_inventory(), rng=random.Random(3))
    return LoopController(client, registry, max_rounds=max_rounds, temperature=0.2, system_prompt="sys")


def test_final_text_on_first_response():
    client = ScriptedClient(_text("Sow wheat in November."))
    loop = _loop(client)
    audit = ToolAuditLog()
    text = loop.run([Turn(role="assistant", text="greeting")], UserInput(text="what to sow?"), audit=audit)

    assert text == "Sow wheat in November."
    assert len(audit) == 0
    assert loop.state == LoopState.DONE
    req = client.last_request
    assert req.system_prompt == "sys"
    assert req.tool_choice == "auto"
    assert [t.name for t in req.tools] == ["list_items", "get_item_details", "book_item"]
    assert [m.content for m in client.requests[0]] == ["what to sow?"]


def test_every_call_in_batch_has_result_before_next_send():
    client = ScriptedClient(
        _calls(
            ToolCall(id="a", name="list_items", arguments={}),
            ToolCall(id="b", name="get_item_details", arguments={"name": "Drone"}),
            ToolCall(id="c", name="book_item", arguments={"itemId": 6, "duration": 1}),
        ),
        _calls(ToolCall(id="d", name="book_item", arguments={"itemId": 2, "duration": 3})),
        _text("Booked."),
    )
    audit = ToolAuditLog()
    text = _loop(client).run([], UserInput(text="rent a drone"), audit=audit)

    assert text == "Booked."
    assert len(client.requests) == 3
    second = client.requests[1]
    tool_msgs = [m for m in second if m.role == "tool"]
    assert [m.tool_call_id for m in tool_msgs] == ["a", "b", "c"]
    assert second[-4].role == "assistant" and len(second[-4].tool_calls) == 3
    assert tool_msgs[2].tool_result["code"] == "NOT_RENTABLE"
    third = client.requests[2]
    assert [m.tool_call_id for m in third if m.role == "tool"] == ["a", "b", "c", "d"]

    records = audit.records
    assert [r.call_id for r in records] == ["a", "b", "c", "d"]
    assert [r.round for r in records] == [1, 1, 1, 2]
    assert records[3].result["bookingId"].startswith("RNT-")


def test_tool_exception_is_relayed_as_error_value():
    class BrokenRegistry:
        tool_defs = []

        def execute(self, call, round_num=1):
            raise RuntimeError("disk on fire")

    client = ScriptedClient(_calls(ToolCall(id="x", name="list_items", arguments={})), _text("Sorry."))
    loop = LoopController(client, BrokenRegistry(), max_rounds=2)
    audit = ToolAuditLog()

    assert loop.run([], UserInput(text="list"), audit=audit) == "Sorry."
    assert audit.records[0].error_code == "TOOL_FAILED"
    assert "disk on fire" in audit.records[0].result["error"]


def test_round_limit_exceeded():
    client = RepeatingClient()
    loop = _loop(client, max_rounds=2)
    audit = ToolAuditLog()
    with pytest.raises(RoundLimitExceededError):
        loop.run([], UserInput(text="loop forever"), audit=audit)

    # 2 轮工具执行 + 1 次超限请求，超限那一批不执行
    assert len(client.requests) == 3
    assert len(audit) == 2
    assert loop.state == LoopState.ERRORED


def test_transport_error_propagates():
    client = ScriptedClient(ApiError(code="API_ERROR", message="gone", http_status=404))
    loop = _loop(client)
    with pytest.raises(ApiError):
        loop.run([], UserInput(text="hi"), audit=ToolAuditLog())
    assert loop.state == LoopState.ERRORED


def test_cancel_before_send():
    client = ScriptedClient(_text("never"))
    event = threading.Event()
    event.set()
    with pytest.raises(TurnCancelledError):
        _loop(client).run([], UserInput(text="hi"), audit=ToolAuditLog(), cancel_event=event)
    assert client.requests == []


def test_cancel_after_response_stops_dispatch():
    event = threading.Event()

    class CancellingClient(ScriptedClient):
        def send(self, req):
            result = super().send(req)
            event.set()
            return result

    client = CancellingClient(_calls(ToolCall(id="a", name="book_item", arguments={"itemId": 2, "duration": 1})))
    audit = ToolAuditLog()
    with pytest.raises(TurnCancelledError):
        _loop(client).run([], UserInput(text="book"), audit=audit, cancel_event=event)
    assert len(audit) == 0


def test_blank_final_text_is_an_error():
    msg = ChatMessage(role="assistant", content="  ")
    blocked = ChatResult(
        provider="fake",
        model="fake-model",
        choices=[ChatChoice(index=0, message=msg, finish_reason="SAFETY")],
    )
    loop = _loop(ScriptedClient(blocked))
    with pytest.raises(ApiError) as exc:
        loop.run([], UserInput(text="hi"), audit=ToolAuditLog())
    assert exc.value.code == "EMPTY_RESPONSE"
    assert "SAFETY" in exc.value.message
    assert loop.state == LoopState.ERRORED
