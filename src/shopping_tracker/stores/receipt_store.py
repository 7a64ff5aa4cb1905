from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional

from ..domain.models import Receipt, ReceiptItem
from ..errors import StoreError
from ..logging import get_logger
from ..remote.base import TABLE_RECEIPT_ITEMS, TABLE_RECEIPTS, RecordStore
from ..session import Session
from .reconcile import Reconcile, reconciles

LOG = get_logger("receipt-store")


def _line_row(receipt_id: str, item: Mapping[str, Any]) -> Dict[str, Any]:
    quantity = float(item.get("quantity") or 0)
    unit_price = float(item.get("unit_price") or 0)
    total = item.get("total_price")
    return {
        "receipt_id": receipt_id,
        "name": str(item.get("name") or "").strip(),
        "quantity": quantity,
        "unit_price": unit_price,
        "total_price": float(total) if total is not None else quantity * unit_price,
    }


class ReceiptStore:
    """The user's purchase history: receipt headers plus their line items.

    A receipt is written as a header followed by one bulk insert of its
    items. The two writes are not atomic; when the item insert fails the
    header is kept (and logged) unless ``rollback_partial`` is set, in
    which case the header is deleted again.
    """

    def __init__(self, records: RecordStore, session: Session, *, rollback_partial: bool = False) -> None:
        self.records = records
        self.session = session
        self.notifier = session.notifier
        self.rollback_partial = bool(rollback_partial)
        self.receipts: List[Receipt] = []

    def fetch(self) -> List[Receipt]:
        try:
            headers = self.records.select(
                TABLE_RECEIPTS,
                filters={"user_id": self.session.user_id},
                order_by="purchase_date",
                descending=True,
            )
            ids = [row["id"] for row in headers]
            item_rows = self.records.select(TABLE_RECEIPT_ITEMS, filters={"receipt_id": ids}) if ids else []
        except StoreError as exc:
            LOG.error(f"Error fetching receipts: {exc}")
            self.notifier.error("Erro ao carregar compras")
            return list(self.receipts)

        grouped: Dict[str, List[ReceiptItem]] = {}
        for row in item_rows:
            grouped.setdefault(row["receipt_id"], []).append(ReceiptItem.from_row(row))
        self.receipts = [Receipt.from_row(row, grouped.get(row["id"])) for row in headers]
        LOG.debug("Fetched %d receipts", len(self.receipts))
        return list(self.receipts)

    @reconciles(Reconcile.RESYNC)
    def create_receipt(
        self,
        title: str,
        total_amount: float,
        payment_method: Optional[str],
        has_discount: bool,
        discount_amount: float,
        market: Optional[str],
        items: Iterable[Mapping[str, Any]],
        list_id: Optional[str] = None,
        purchase_date: Optional[str] = None,
    ) -> Optional[Receipt]:
        header: Dict[str, Any] = {
            "user_id": self.session.user_id,
            "title": title,
            "total_amount": float(total_amount or 0),
            "payment_method": payment_method or None,
            "has_discount": bool(has_discount),
            "discount_amount": float(discount_amount or 0) if has_discount else 0.0,
            "market": (market or "").strip() or None,
            "list_id": list_id,
        }
        if purchase_date:
            header["purchase_date"] = purchase_date
        try:
            rows = self.records.insert(TABLE_RECEIPTS, header)
        except StoreError as exc:
            LOG.error(f"Error creating receipt: {exc}")
            self.notifier.error("Erro ao salvar compra")
            return None
        receipt_row = rows[0]
        receipt_id = receipt_row["id"]

        line_rows = [_line_row(receipt_id, item) for item in items]
        created_items: List[ReceiptItem] = []
        items_failed = False
        if line_rows:
            try:
                created_items = [ReceiptItem.from_row(r) for r in self.records.insert(TABLE_RECEIPT_ITEMS, line_rows)]
            except StoreError as exc:
                items_failed = True
                LOG.error(f"Error creating items of receipt {receipt_id}: {exc}")

        if items_failed and self.rollback_partial:
            try:
                self.records.delete(TABLE_RECEIPTS, filters={"id": receipt_id})
                LOG.warning(f"Rolled back receipt {receipt_id} after item insert failure")
            except StoreError as exc:
                LOG.error(f"Rollback of receipt {receipt_id} failed: {exc}")
            self.notifier.error("Erro ao salvar itens da compra")
            self.fetch()
            return None
        if items_failed:
            LOG.warning(f"Receipt {receipt_id} kept without its items")
            self.notifier.warning("Compra salva, mas os itens não puderam ser gravados")

        self.fetch()
        if not items_failed:
            self.notifier.success("Compra salva!")
        return Receipt.from_row(receipt_row, created_items)

    @reconciles(Reconcile.PATCH)
    def delete_receipt(self, receipt_id: str) -> bool:
        """Delete a receipt header; the store's schema cascades to its line items."""
        try:
            self.records.delete(TABLE_RECEIPTS, filters={"id": receipt_id})
        except StoreError as exc:
            LOG.error(f"Error deleting receipt {receipt_id}: {exc}")
            self.notifier.error("Erro ao remover compra")
            return False
        self.receipts = [r for r in self.receipts if r.id != receipt_id]
        self.notifier.success("Compra removida!")
        return True
