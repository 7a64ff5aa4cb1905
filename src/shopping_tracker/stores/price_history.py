from __future__ import annotations

from typing import List, Optional

from ..errors import StoreError
from ..logging import get_logger
from ..domain.models import PriceHistory
from ..remote.base import TABLE_PRICE_HISTORY, RecordStore
from ..session import Session

LOG = get_logger("price-history")

RECENT_LIMIT = 50
ITEM_LIMIT = 10


class PriceHistoryStore:
    """Append-only log of recorded unit prices, keyed by exact item name.

    Names are matched verbatim: "Arroz" and "arroz" are separate histories.
    """

    def __init__(self, records: RecordStore, session: Session) -> None:
        self.records = records
        self.session = session
        self.entries: List[PriceHistory] = []

    def record(self, item_name: str, unit_price: float, market: Optional[str] = None) -> Optional[PriceHistory]:
        """Append one price entry; raises StoreError on failure."""
        rows = self.records.insert(
            TABLE_PRICE_HISTORY,
            {
                "item_name": item_name,
                "user_id": self.session.user_id,
                "unit_price": float(unit_price),
                "market": market or None,
            },
        )
        if not rows:
            return None
        entry = PriceHistory.from_row(rows[0])
        LOG.debug("Recorded price %.2f for %r", entry.unit_price, entry.item_name)
        return entry

    def fetch_all(self) -> List[PriceHistory]:
        """The user's most recent price entries, newest first."""
        try:
            rows = self.records.select(
                TABLE_PRICE_HISTORY,
                filters={"user_id": self.session.user_id},
                order_by="recorded_at",
                descending=True,
                limit=RECENT_LIMIT,
            )
        except StoreError as exc:
            LOG.error(f"Error fetching price history: {exc}")
            return []
        self.entries = [PriceHistory.from_row(r) for r in rows]
        return list(self.entries)

    def fetch_for_item(self, item_name: str) -> List[PriceHistory]:
        """Last recorded prices for one exact item name, newest first."""
        try:
            rows = self.records.select(
                TABLE_PRICE_HISTORY,
                filters={"user_id": self.session.user_id, "item_name": item_name},
                order_by="recorded_at",
                descending=True,
                limit=ITEM_LIMIT,
            )
        except StoreError as exc:
            LOG.error(f"Error fetching price history for {item_name!r}: {exc}")
            return []
        return [PriceHistory.from_row(r) for r in rows]
