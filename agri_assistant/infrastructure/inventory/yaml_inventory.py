from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import yaml

from agri_assistant.domain.exceptions import BusinessError
from agri_assistant.domain.inventory import InventoryItem


DEFAULT_CATALOG = Path(__file__).resolve().parents[2] / "data" / "equipment.yaml"


class StaticInventory:
    """只读的内存设备目录。"""

    def __init__(self, items: Iterable[InventoryItem]):
        self._items: List[InventoryItem] = list(items)
        self._by_id: Dict[int, InventoryItem] = {item.id: item for item in self._items}

    def list_items(self) -> List[InventoryItem]:
        return list(self._items)

    def find_by_id(self, item_id: int) -> Optional[InventoryItem]:
        return self._by_id.get(item_id)

    def find_by_name(self, name: str) -> Optional[InventoryItem]:
        key = (name or "").strip().lower()
        for item in self._items:
            if item.name.lower() == key:
                return item
        return None


def load_inventory(path: Union[str, Path, None] = None) -> StaticInventory:
    """从 YAML 目录文件加载设备，默认使用包内 data/equipment.yaml。"""

    catalog = Path(path).expanduser() if path else DEFAULT_CATALOG
    try:
        data = yaml.safe_load(catalog.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise BusinessError(code="INVENTORY_READ_ERROR", message=str(e))
    raw_items = data.get("items") if isinstance(data, dict) else None
    if not isinstance(raw_items, list):
        raise BusinessError(code="INVENTORY_READ_ERROR", message=f"{catalog} has no 'items' list")
    try:
        return StaticInventory(_to_item(raw) for raw in raw_items)
    except (KeyError, TypeError, ValueError) as e:
        raise BusinessError(code="INVENTORY_READ_ERROR", message=f"Invalid item in {catalog}: {e}")


def _to_item(data: Dict[str, Any]) -> InventoryItem:
    return InventoryItem(
        id=int(data["id"]),
        name=str(data["name"]),
        category=str(data.get("category") or ""),
        purchase_price=str(data.get("price") or ""),
        rental_rate=str(data.get("rental") or "N/A"),
        description=str(data.get("description") or ""),
        efficiency=str(data.get("efficiency") or ""),
        url=str(data.get("url") or ""),
    )
