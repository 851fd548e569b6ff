import math
import random
from typing import Callable, Dict, Any, List, Optional

from agri_assistant.domain.inventory import Inventory
from .definitions import ToolCall, ToolCallResult, ToolDef, ToolError, ToolParam


ToolFunc = Callable[[Dict[str, Any]], Dict[str, Any]]
BOOKING_PREFIX = "RNT-"
BOOKING_SUFFIX_MAX = 9999


class ToolRegistry:
    def __init__(self, tools: Dict[str, ToolFunc], tool_defs: List[ToolDef]):
        self._tools = tools
        self._tool_defs = tool_defs

    @property
    def tool_defs(self) -> List[ToolDef]:
        return list(self._tool_defs)

    def dispatch(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        func = self._tools.get(name)
        if not func:
            return ToolError("UNKNOWN_TOOL", f"Tool '{name}' is not registered").to_payload()
        return func(dict(arguments or {}))

    def execute(self, call: ToolCall, round_num: int = 1) -> ToolCallResult:
        result = self.dispatch(call.name, call.arguments)
        return ToolCallResult(
            call_id=call.id,
            name=call.name,
            arguments=dict(call.arguments),
            result=result,
            round=round_num,
        )


def _as_number(raw: Any) -> Optional[float]:
    """数值参数统一转为有限 float；nan/inf 无法序列化为 JSON，视为无效。"""
    if isinstance(raw, bool):
        return None
    if not isinstance(raw, (int, float, str)):
        return None
    try:
        value = float(raw.strip() if isinstance(raw, str) else raw)
    except (ValueError, OverflowError):
        return None
    return value if math.isfinite(value) else None


def _format_quantity(value: float) -> str:
    return str(int(value)) if value.is_integer() else str(value)


def _make_list_items_tool(inventory: Inventory) -> ToolFunc:
    def _run(args: Dict[str, Any]) -> Dict[str, Any]:
        return {"items": [item.summary() for item in inventory.list_items()]}

    return _run


def _make_get_item_details_tool(inventory: Inventory) -> ToolFunc:
    def _run(args: Dict[str, Any]) -> Dict[str, Any]:
        name = str(args.get("name") or "").strip()
        if not name:
            return ToolError("INVALID_ARGUMENTS", "Argument 'name' is required").to_payload()
        item = inventory.find_by_name(name)
        if item is None:
            return ToolError(
                "NOT_FOUND",
                f"Tool '{name}' not found. Please use list_items to see available equipment.",
            ).to_payload()
        return item.details()

    return _run


def _make_book_item_tool(inventory: Inventory, rng: random.Random) -> ToolFunc:
    def _run(args: Dict[str, Any]) -> Dict[str, Any]:
        item_id = _as_number(args.get("itemId"))
        duration = _as_number(args.get("duration"))
        if item_id is None or not item_id.is_integer():
            return ToolError("INVALID_ARGUMENTS", "Argument 'itemId' must be an integer").to_payload()
        if duration is None or duration <= 0:
            return ToolError("INVALID_ARGUMENTS", "Argument 'duration' must be a positive number").to_payload()
        item = inventory.find_by_id(int(item_id))
        if item is None:
            return ToolError("NOT_FOUND", f"Tool ID {int(item_id)} not found.").to_payload()
        if not item.is_rentable:
            return ToolError(
                "NOT_RENTABLE",
                f"{item.name} is only available for purchase, not rental.",
            ).to_payload()
        # 随机后缀不保证跨会话唯一
        booking_id = f"{BOOKING_PREFIX}{rng.randint(0, BOOKING_SUFFIX_MAX)}"
        qty = _format_quantity(duration)
        return {
            "success": True,
            "bookingId": booking_id,
            "itemId": item.id,
            "toolName": item.name,
            "duration": duration,
            "message": f"Successfully booked {item.name} for {qty} units.",
            "totalCost": f"Check local rates (Approx: {item.rental_rate} x {qty})",
            "confirmation": "Your booking is confirmed. The provider will contact you shortly.",
        }

    return _run


def default_tools(inventory: Inventory, rng: Optional[random.Random] = None) -> Dict[str, ToolFunc]:
    rng = rng or random.Random()
    return {
        "list_items": _make_list_items_tool(inventory),
        "get_item_details": _make_get_item_details_tool(inventory),
        "book_item": _make_book_item_tool(inventory, rng),
    }


def default_tool_defs() -> List[ToolDef]:
    return [
        ToolDef(
            name="list_items",
            description=(
                "List all available farming tools, machinery, and equipment available "
                "for rent or purchase."
            ),
            params={},
        ),
        ToolDef(
            name="get_item_details",
            description=(
                "Get detailed information about a specific farming tool, including its price, "
                "rental rate, efficiency, and description."
            ),
            params={
                "name": ToolParam(
                    name="name",
                    description="The name of the tool to get details for (e.g., 'Drone', 'Harvester').",
                    required=True,
                    schema={"type": "string"},
                )
            },
        ),
        ToolDef(
            name="book_item",
            description="Book a rental for a specific farming tool.",
            params={
                "itemId": ToolParam(
                    name="itemId",
                    description="The unique ID of the tool to rent.",
                    required=True,
                    schema={"type": "number"},
                ),
                "duration": ToolParam(
                    name="duration",
                    description="The duration of the rental (e.g., number of hours or acres).",
                    required=True,
                    schema={"type": "number"},
                ),
            },
        ),
    ]


def create_tool_registry(inventory: Inventory, rng: Optional[random.Random] = None) -> ToolRegistry:
    return ToolRegistry(default_tools(inventory, rng), default_tool_defs())
