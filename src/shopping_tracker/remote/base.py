from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Union

# Collections the application reads and writes.
TABLE_LISTS = "shopping_lists"
TABLE_CATEGORIES = "categories"
TABLE_ITEMS = "shopping_items"
TABLE_PRICE_HISTORY = "price_history"
TABLE_RECEIPTS = "receipts"
TABLE_RECEIPT_ITEMS = "receipt_items"

TABLES: Sequence[str] = (
    TABLE_LISTS,
    TABLE_CATEGORIES,
    TABLE_ITEMS,
    TABLE_PRICE_HISTORY,
    TABLE_RECEIPTS,
    TABLE_RECEIPT_ITEMS,
)

Row = Dict[str, Any]
Filters = Mapping[str, Any]


class RecordStore(Protocol):
    """Generic CRUD over named collections.

    Filters are equality matches; a list/tuple/set value means "IN".
    Every failure raises ``StoreError``.
    """

    def select(
        self,
        table: str,
        *,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Row]:
        ...

    def insert(self, table: str, rows: Union[Row, Sequence[Row]]) -> List[Row]:
        ...

    def update(self, table: str, values: Row, *, filters: Filters) -> List[Row]:
        ...

    def delete(self, table: str, *, filters: Filters) -> int:
        ...


def is_multi(value: Any) -> bool:
    return isinstance(value, (list, tuple, set, frozenset))


def as_rows(rows: Union[Row, Iterable[Row]]) -> List[Row]:
    if isinstance(rows, Mapping):
        return [dict(rows)]
    return [dict(r) for r in rows]
