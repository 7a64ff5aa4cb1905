from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Any, Callable, List, Optional, Set, Tuple

import pytest

from shopping_tracker.errors import ScanError, StoreError
from shopping_tracker.remote.sqlite import SqliteRecordStore
from shopping_tracker.scan.extraction import ScannedReceipt
from shopping_tracker.session import Session
from shopping_tracker.stores import PriceHistoryStore, ReceiptStore, ShoppingListStore


class FlakyStore:
    """Wraps a real record store and fails chosen (operation, table) pairs."""

    def __init__(self, inner: SqliteRecordStore) -> None:
        self.inner = inner
        self.failing: Set[Tuple[str, str]] = set()
        self.calls: List[Tuple[str, str]] = []

    def fail(self, operation: str, table: str) -> None:
        self.failing.add((operation, table))

    def heal(self) -> None:
        self.failing.clear()

    def _check(self, operation: str, table: str) -> None:
        self.calls.append((operation, table))
        if (operation, table) in self.failing:
            raise StoreError(f"{operation} on {table} refused", table=table)

    def select(self, table: str, **kwargs: Any) -> List[dict]:
        self._check("select", table)
        return self.inner.select(table, **kwargs)

    def insert(self, table: str, rows: Any) -> List[dict]:
        self._check("insert", table)
        return self.inner.insert(table, rows)

    def update(self, table: str, values: dict, **kwargs: Any) -> List[dict]:
        self._check("update", table)
        return self.inner.update(table, values, **kwargs)

    def delete(self, table: str, **kwargs: Any) -> int:
        self._check("delete", table)
        return self.inner.delete(table, **kwargs)


class FakeScanner:
    """Scanner double: returns a canned receipt or raises the given error."""

    def __init__(self, result: Optional[ScannedReceipt] = None, error: Optional[ScanError] = None) -> None:
        self.result = result
        self.error = error
        self.calls: List[str] = []

    def scan(self, data_url: str) -> ScannedReceipt:
        self.calls.append(data_url)
        if self.error is not None:
            raise self.error
        assert self.result is not None
        return self.result


@pytest.fixture
def records(tmp_path: Path) -> SqliteRecordStore:
    return SqliteRecordStore(str(tmp_path / "shopping.sqlite3"))


@pytest.fixture
def flaky(records: SqliteRecordStore) -> FlakyStore:
    return FlakyStore(records)


@pytest.fixture
def session() -> Session:
    return Session(user_id="user-1")


@pytest.fixture
def list_store(flaky: FlakyStore, session: Session) -> ShoppingListStore:
    store = ShoppingListStore(flaky, session)
    store.bootstrap(date(2024, 1, 15))
    session.notifier.drain()
    return store


@pytest.fixture
def receipt_store(flaky: FlakyStore, session: Session) -> ReceiptStore:
    return ReceiptStore(flaky, session)


@pytest.fixture
def price_history(flaky: FlakyStore, session: Session) -> PriceHistoryStore:
    return PriceHistoryStore(flaky, session)


@pytest.fixture
def make_scanner() -> Callable[..., FakeScanner]:
    return FakeScanner
