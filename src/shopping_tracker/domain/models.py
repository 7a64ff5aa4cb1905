from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Optional


def _known(cls, row: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in row.items() if k in names}


def _float_or_none(value: Any) -> Optional[float]:
    if value is None:
        return None
    return float(value)


@dataclass
class ShoppingList:
    id: str
    user_id: str
    name: str
    month: int = 0
    year: int = 0
    is_active: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ShoppingList":
        data = _known(cls, row)
        data["is_active"] = bool(data.get("is_active"))
        return cls(**data)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ShoppingItem:
    id: str
    category_id: str
    name: str
    quantity: int = 1
    unit_price: Optional[float] = None
    market: Optional[str] = None
    is_checked: bool = False
    sort_order: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ShoppingItem":
        data = _known(cls, row)
        data["quantity"] = int(data.get("quantity") or 0)
        data["unit_price"] = _float_or_none(data.get("unit_price"))
        data["is_checked"] = bool(data.get("is_checked"))
        return cls(**data)

    def line_total(self) -> float:
        if self.unit_price is None:
            return 0.0
        return self.quantity * self.unit_price

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Category:
    id: str
    list_id: str
    name: str
    is_custom: bool = False
    sort_order: int = 0
    created_at: Optional[str] = None


@dataclass
class CategoryWithItems(Category):
    items: List[ShoppingItem] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: Dict[str, Any], items: Optional[List[ShoppingItem]] = None) -> "CategoryWithItems":
        data = _known(Category, row)
        data["is_custom"] = bool(data.get("is_custom"))
        return cls(**data, items=list(items or []))

    def find_item(self, item_id: str) -> Optional[ShoppingItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PriceHistory:
    id: str
    item_name: str
    user_id: str
    unit_price: float
    market: Optional[str] = None
    recorded_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "PriceHistory":
        data = _known(cls, row)
        data["unit_price"] = float(data["unit_price"])
        return cls(**data)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ReceiptItem:
    id: str
    receipt_id: str
    name: str
    quantity: float
    unit_price: float
    total_price: float

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ReceiptItem":
        data = _known(cls, row)
        for key in ("quantity", "unit_price", "total_price"):
            data[key] = float(data.get(key) or 0)
        return cls(**data)


@dataclass
class Receipt:
    """Immutable snapshot of a completed purchase with its line items."""

    id: str
    user_id: str
    title: str
    total_amount: float
    payment_method: Optional[str] = None
    has_discount: bool = False
    discount_amount: float = 0.0
    market: Optional[str] = None
    purchase_date: Optional[str] = None
    list_id: Optional[str] = None
    created_at: Optional[str] = None
    items: List[ReceiptItem] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: Dict[str, Any], items: Optional[List[ReceiptItem]] = None) -> "Receipt":
        data = _known(cls, row)
        data.pop("items", None)
        data["total_amount"] = float(data.get("total_amount") or 0)
        data["discount_amount"] = float(data.get("discount_amount") or 0)
        data["has_discount"] = bool(data.get("has_discount"))
        return cls(**data, items=list(items or []))

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)
