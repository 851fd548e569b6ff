"""设备目录（inventory 协作方）的领域模型。

助手只读取目录，不修改条目；预订也不会改变设备本身。
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol


# 目录中表示“仅售不租”的租金占位值
NOT_RENTABLE = "N/A"


@dataclass(frozen=True)
class InventoryItem:
    id: int
    name: str
    category: str
    purchase_price: str
    rental_rate: str
    description: str = ""
    efficiency: str = ""
    url: str = ""

    @property
    def is_rentable(self) -> bool:
        return self.rental_rate.strip().upper() != NOT_RENTABLE

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "rentalRate": self.rental_rate,
            "purchasePrice": self.purchase_price,
        }

    def details(self) -> Dict[str, Any]:
        return {
            **self.summary(),
            "description": self.description,
            "efficiency": self.efficiency,
            "url": self.url,
        }


class Inventory(Protocol):
    def list_items(self) -> List[InventoryItem]:
        ...

    def find_by_id(self, item_id: int) -> Optional[InventoryItem]:
        ...

    def find_by_name(self, name: str) -> Optional[InventoryItem]:
        ...
