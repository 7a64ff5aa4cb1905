from __future__ import annotations

from typing import Optional

from ..domain.models import Receipt
from ..logging import get_logger
from .list_store import ShoppingListStore
from .receipt_store import ReceiptStore

LOG = get_logger("checkout")

MEAL_VOUCHERS = {"vr": "VR", "va": "VA"}


def format_payment_method(method: str, card_brand: Optional[str] = None) -> str:
    """Meal vouchers carry their card brand: ``("vr", "Alelo") -> "VR - Alelo"``.

    Without a brand the method is stored as chosen.
    """
    chosen = (method or "").strip()
    label = MEAL_VOUCHERS.get(chosen.lower())
    brand = (card_brand or "").strip()
    if label is None or not brand:
        return chosen
    return f"{label} - {brand}"


def checkout(
    list_store: ShoppingListStore,
    receipt_store: ReceiptStore,
    *,
    title: str,
    payment_method: str,
    total_amount: Optional[float] = None,
    has_discount: bool = False,
    discount_amount: float = 0.0,
    market: str = "",
    card_brand: Optional[str] = None,
) -> Optional[Receipt]:
    """Turn the priced items of the active list into a saved receipt."""
    priced = list_store.get_items_with_price()
    if not priced:
        list_store.notifier.warning("Nenhum item com preço para finalizar")
        return None
    if not (title or "").strip():
        list_store.notifier.warning("Informe um título para a compra")
        return None

    items = [
        {
            "name": item.name,
            "quantity": item.quantity,
            "unit_price": item.unit_price,
            "total_price": item.quantity * item.unit_price,
        }
        for item in priced
    ]
    total = list_store.calculate_subtotal() if total_amount is None else float(total_amount)
    current = list_store.current_list
    LOG.info(f"Checkout of {len(items)} item(s), total {total:.2f}")
    return receipt_store.create_receipt(
        title.strip(),
        total,
        format_payment_method(payment_method, card_brand),
        has_discount,
        discount_amount if has_discount else 0.0,
        market,
        items,
        list_id=current.id if current is not None else None,
    )
