from __future__ import annotations

import base64
import binascii
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Union

from ..config import DEFAULT_MAX_IMAGE_BYTES
from ..domain.models import Receipt
from ..errors import ScanError, ScanParseError
from ..logging import get_logger
from ..session import Session
from ..stores.receipt_store import ReceiptStore
from .extraction import ReceiptScanner, ScannedItem, ScannedReceipt, build_data_url

LOG = get_logger("scan-workflow")

CAPTURE = "capture"
PROCESSING = "processing"
EDITING = "editing"

UNKNOWN_PAYMENT = "Não identificado"

EDITABLE_FIELDS = ("name", "quantity", "unit_price", "total_price")


def payload_size(image: Union[bytes, str]) -> int:
    """Decoded byte size of raw bytes, bare base64 or a base64 data URL."""
    if isinstance(image, bytes):
        return len(image)
    text = image.strip()
    if text.startswith("data:") and "," in text:
        text = text.split(",", 1)[1]
    try:
        return len(base64.b64decode(text, validate=False))
    except (binascii.Error, ValueError):
        return len(text)


@dataclass
class StagedReceipt:
    """Editable copy of a scanned receipt, waiting to be saved."""

    items: List[ScannedItem] = field(default_factory=list)
    total_amount: float = 0.0
    market: Optional[str] = None
    payment_method: Optional[str] = None
    purchase_date: Optional[str] = None

    @classmethod
    def from_scan(cls, scanned: ScannedReceipt) -> "StagedReceipt":
        items = [ScannedItem(**asdict(i)) for i in scanned.items]
        total = scanned.total_amount
        if total is None:
            total = sum(i.total_price for i in items)
        return cls(
            items=items,
            total_amount=total,
            market=scanned.market,
            payment_method=scanned.payment_method,
            purchase_date=scanned.purchase_date,
        )

    def recompute_total(self) -> float:
        self.total_amount = sum(i.total_price for i in self.items)
        return self.total_amount

    def title(self, today: Optional[date] = None) -> str:
        if self.market:
            return f"Compra - {self.market}"
        return f"Compra escaneada - {(today or date.today()).strftime('%d/%m/%Y')}"

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ScanWorkflow:
    """Capture -> processing -> editing flow for turning a photo into a receipt.

    One scanner call per submitted image; failures drop the image and go
    back to capture without retrying.
    """

    def __init__(
        self,
        scanner: ReceiptScanner,
        receipt_store: ReceiptStore,
        session: Session,
        *,
        max_image_bytes: int = DEFAULT_MAX_IMAGE_BYTES,
    ) -> None:
        self.scanner = scanner
        self.receipt_store = receipt_store
        self.session = session
        self.notifier = session.notifier
        self.max_image_bytes = int(max_image_bytes)
        self.state = CAPTURE
        self.staged: Optional[StagedReceipt] = None
        self.image_data_url: Optional[str] = None
        self.last_raw: Optional[str] = None

    def reset(self) -> None:
        self.state = CAPTURE
        self.staged = None
        self.image_data_url = None

    def submit_image(self, image: Union[bytes, str], mime_type: str = "image/jpeg") -> Optional[StagedReceipt]:
        size = payload_size(image)
        if size > self.max_image_bytes:
            LOG.warning(f"Rejected image of {size} bytes (limit {self.max_image_bytes})")
            limit_mb = self.max_image_bytes // (1024 * 1024)
            self.notifier.warning(f"Imagem muito grande. Máximo {limit_mb}MB.")
            return None

        self.state = PROCESSING
        self.image_data_url = build_data_url(image, mime_type)
        self.last_raw = None
        try:
            scanned = self.scanner.scan(self.image_data_url)
        except ScanParseError as exc:
            LOG.error(f"Scan answer could not be parsed: {exc}")
            self.last_raw = exc.raw
            self.notifier.error("Erro ao processar imagem. Tente novamente.")
            self.reset()
            return None
        except ScanError as exc:
            LOG.error(f"Scan failed: {exc}")
            self.notifier.error("Erro ao processar imagem. Tente novamente.")
            self.reset()
            return None

        self.staged = StagedReceipt.from_scan(scanned)
        self.state = EDITING
        self.notifier.success(f"Nota fiscal escaneada! {len(self.staged.items)} itens encontrados.")
        return self.staged

    def _require_staged(self) -> StagedReceipt:
        if self.state != EDITING or self.staged is None:
            raise ScanError("No scanned receipt to edit")
        return self.staged

    def update_item(self, index: int, field_name: str, value: Any) -> StagedReceipt:
        """Edit one line; quantity/price edits recompute the line and overall totals."""
        staged = self._require_staged()
        if field_name not in EDITABLE_FIELDS:
            raise ValueError(f"Unknown receipt item field: {field_name}")
        item = staged.items[index]
        if field_name == "name":
            item.name = str(value)
            return staged
        setattr(item, field_name, float(value))
        if field_name in ("quantity", "unit_price"):
            item.total_price = item.quantity * item.unit_price
        staged.recompute_total()
        return staged

    def remove_item(self, index: int) -> StagedReceipt:
        staged = self._require_staged()
        del staged.items[index]
        staged.recompute_total()
        return staged

    def set_market(self, market: Optional[str]) -> None:
        self._require_staged().market = (market or "").strip() or None

    def set_payment_method(self, method: Optional[str]) -> None:
        self._require_staged().payment_method = (method or "").strip() or None

    def set_total(self, total_amount: float) -> None:
        self._require_staged().total_amount = float(total_amount)

    def commit(self, today: Optional[date] = None) -> Optional[Receipt]:
        """Save the staged receipt; staging is cleared only when the save succeeds."""
        staged = self._require_staged()
        receipt = self.receipt_store.create_receipt(
            staged.title(today),
            staged.total_amount,
            staged.payment_method or UNKNOWN_PAYMENT,
            False,
            0.0,
            staged.market or "",
            [i.as_dict() for i in staged.items],
            purchase_date=staged.purchase_date,
        )
        if receipt is None:
            LOG.error("Scanned receipt could not be saved; keeping it staged")
            return None
        self.reset()
        return receipt
