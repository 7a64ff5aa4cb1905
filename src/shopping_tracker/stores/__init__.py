"""Stateful stores that keep the user's lists, receipts and prices in step with a record store."""

from .checkout import checkout, format_payment_method
from .list_store import ShoppingListStore
from .price_history import PriceHistoryStore
from .receipt_store import ReceiptStore
from .reconcile import Reconcile, reconciles, strategy_of

__all__ = [
    "PriceHistoryStore",
    "Reconcile",
    "ReceiptStore",
    "ShoppingListStore",
    "checkout",
    "format_payment_method",
    "reconciles",
    "strategy_of",
]
