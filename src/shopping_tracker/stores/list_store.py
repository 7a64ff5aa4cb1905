from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, TypeVar

from ..domain.defaults import (
    APPEND_SORT_ORDER,
    CUSTOM_CATEGORY,
    DEFAULT_CATEGORIES,
    INITIAL_ITEMS,
    default_list_name,
)
from ..domain.models import CategoryWithItems, ShoppingItem, ShoppingList
from ..domain.reorder import ReorderController
from ..errors import StoreError
from ..logging import get_logger
from ..remote.base import TABLE_CATEGORIES, TABLE_ITEMS, TABLE_LISTS, RecordStore
from ..session import Session
from .price_history import PriceHistoryStore
from .reconcile import Reconcile, reconciles

LOG = get_logger("list-store")

T = TypeVar("T")


def _apply_order(entities: Sequence[T], ordered_ids: Sequence[str]) -> List[T]:
    """Arrange entities by ``ordered_ids``; unknown ids are skipped and
    entities that were not named keep their relative order at the end."""
    by_id: Dict[str, T] = {getattr(e, "id"): e for e in entities}
    ordered: List[T] = []
    seen = set()
    for entity_id in ordered_ids:
        if entity_id in by_id and entity_id not in seen:
            ordered.append(by_id[entity_id])
            seen.add(entity_id)
    ordered.extend(e for e in entities if getattr(e, "id") not in seen)
    return ordered


class ShoppingListStore:
    """In-memory state of the active shopping list, kept in step with the record store.

    Every mutation writes remotely first and then reconciles local state,
    either by patching the cached records (``Reconcile.PATCH``) or by
    re-fetching the list (``Reconcile.RESYNC``). Failures are logged and
    surfaced through the session's notifier; nothing here raises to the
    caller on a remote error.
    """

    def __init__(
        self,
        records: RecordStore,
        session: Session,
        *,
        price_history: Optional[PriceHistoryStore] = None,
        max_workers: int = 8,
    ) -> None:
        self.records = records
        self.session = session
        self.notifier = session.notifier
        self.price_history = price_history or PriceHistoryStore(records, session)
        self.max_workers = max(1, int(max_workers))
        self.current_list: Optional[ShoppingList] = None
        self.categories: List[CategoryWithItems] = []

    # ---------- lookups ----------
    def all_items(self) -> List[ShoppingItem]:
        return [item for cat in self.categories for item in cat.items]

    def find_item(self, item_id: str) -> Optional[ShoppingItem]:
        for cat in self.categories:
            item = cat.find_item(item_id)
            if item is not None:
                return item
        return None

    def find_category(self, category_id: str) -> Optional[CategoryWithItems]:
        for cat in self.categories:
            if cat.id == category_id:
                return cat
        return None

    def _clean_name(self, name: Optional[str], message: str) -> Optional[str]:
        cleaned = (name or "").strip()
        if not cleaned:
            self.notifier.warning(message)
            return None
        return cleaned

    # ---------- loading ----------
    def _load(self, list_id: str) -> bool:
        try:
            cat_rows = self.records.select(
                TABLE_CATEGORIES, filters={"list_id": list_id}, order_by="sort_order"
            )
        except StoreError as exc:
            LOG.error(f"Error fetching categories: {exc}")
            self.notifier.error("Erro ao carregar categorias")
            return False

        item_rows: List[Dict[str, Any]] = []
        category_ids = [row["id"] for row in cat_rows]
        if category_ids:
            try:
                item_rows = self.records.select(
                    TABLE_ITEMS, filters={"category_id": category_ids}, order_by="sort_order"
                )
            except StoreError as exc:
                LOG.error(f"Error fetching items: {exc}")
                self.notifier.error("Erro ao carregar itens")
                return False

        grouped: Dict[str, List[ShoppingItem]] = {cid: [] for cid in category_ids}
        for row in item_rows:
            grouped.setdefault(row["category_id"], []).append(ShoppingItem.from_row(row))
        self.categories = [CategoryWithItems.from_row(row, grouped.get(row["id"])) for row in cat_rows]
        LOG.debug(
            "Loaded list %s: %d categories, %d items", list_id, len(self.categories), len(item_rows)
        )
        return True

    def _resync(self) -> None:
        if self.current_list is not None:
            self._load(self.current_list.id)

    @reconciles(Reconcile.RESYNC)
    def bootstrap(self, today: Optional[date] = None) -> Optional[ShoppingList]:
        """Load the user's active list, creating this month's default list if none exists."""
        try:
            rows = self.records.select(
                TABLE_LISTS,
                filters={"user_id": self.session.user_id, "is_active": True},
                order_by="created_at",
                descending=True,
                limit=1,
            )
        except StoreError as exc:
            LOG.error(f"Error fetching list: {exc}")
            self.notifier.error("Erro ao carregar lista")
            return None

        if rows:
            self.current_list = ShoppingList.from_row(rows[0])
            self._load(self.current_list.id)
            return self.current_list

        today = today or date.today()
        LOG.info(f"No active list for user {self.session.user_id}; creating default list")
        return self.create_default_list(today.month, today.year)

    def refresh(self) -> Optional[ShoppingList]:
        return self.bootstrap()

    def get_all_lists(self) -> List[ShoppingList]:
        try:
            rows = self.records.select(
                TABLE_LISTS,
                filters={"user_id": self.session.user_id},
                order_by="created_at",
                descending=True,
            )
        except StoreError as exc:
            LOG.error(f"Error fetching lists: {exc}")
            return []
        return [ShoppingList.from_row(r) for r in rows]

    # ---------- list lifecycle ----------
    def _create_list(self, name: str, month: int, year: int, *, seed_items: bool) -> Optional[ShoppingList]:
        try:
            previous = self.records.select(
                TABLE_LISTS, filters={"user_id": self.session.user_id, "is_active": True}
            )
            rows = self.records.insert(
                TABLE_LISTS,
                {
                    "user_id": self.session.user_id,
                    "name": name,
                    "month": month,
                    "year": year,
                    "is_active": True,
                },
            )
        except StoreError as exc:
            LOG.error(f"Error creating list: {exc}")
            self.notifier.error("Erro ao criar lista")
            return None
        new_list = ShoppingList.from_row(rows[0])

        category_rows = [
            {
                "list_id": new_list.id,
                "name": cat_name,
                "is_custom": cat_name == CUSTOM_CATEGORY,
                "sort_order": index,
            }
            for index, cat_name in enumerate(DEFAULT_CATEGORIES)
        ]
        try:
            created = self.records.insert(TABLE_CATEGORIES, category_rows)
        except StoreError as exc:
            LOG.error(f"Error creating categories: {exc}; rolling back list {new_list.id}")
            try:
                self.records.delete(TABLE_LISTS, filters={"id": new_list.id})
            except StoreError as rollback_exc:
                LOG.error(f"Rollback of list {new_list.id} failed: {rollback_exc}")
            self.notifier.error("Erro ao criar categorias")
            return None

        previous_ids = [row["id"] for row in previous if row["id"] != new_list.id]
        if previous_ids:
            try:
                self.records.update(TABLE_LISTS, {"is_active": False}, filters={"id": previous_ids})
            except StoreError as exc:
                LOG.warning(f"Could not deactivate previous list(s) {previous_ids}: {exc}")

        if seed_items:
            category_map = {row["name"]: row["id"] for row in created}
            item_rows: List[Dict[str, Any]] = []
            for cat_name, items in INITIAL_ITEMS.items():
                category_id = category_map.get(cat_name)
                if not category_id:
                    continue
                for index, (item_name, quantity) in enumerate(items):
                    item_rows.append(
                        {
                            "category_id": category_id,
                            "name": item_name,
                            "quantity": quantity,
                            "sort_order": index,
                        }
                    )
            try:
                self.records.insert(TABLE_ITEMS, item_rows)
            except StoreError as exc:
                LOG.error(f"Error seeding starter items: {exc}")

        self.current_list = new_list
        self._load(new_list.id)
        LOG.info(f"Created list {new_list.name!r} ({new_list.id})")
        return new_list

    @reconciles(Reconcile.RESYNC)
    def create_default_list(self, month: int, year: int) -> Optional[ShoppingList]:
        """Monthly list with the default sections and the starter items."""
        return self._create_list(default_list_name(month, year), month, year, seed_items=True)

    @reconciles(Reconcile.RESYNC)
    def create_custom_list(self, name: str) -> Optional[ShoppingList]:
        cleaned = self._clean_name(name, "Nome da lista não pode estar vazio")
        if cleaned is None:
            return None
        created = self._create_list(cleaned, 0, 0, seed_items=False)
        if created is not None:
            self.notifier.success("Lista criada com sucesso!")
        return created

    @reconciles(Reconcile.RESYNC)
    def switch_list(self, list_id: str) -> Optional[ShoppingList]:
        previous = self.current_list
        if previous is not None and previous.id != list_id:
            try:
                self.records.update(TABLE_LISTS, {"is_active": False}, filters={"id": previous.id})
            except StoreError as exc:
                LOG.warning(f"Could not deactivate list {previous.id}: {exc}")

        try:
            rows = self.records.update(TABLE_LISTS, {"is_active": True}, filters={"id": list_id})
        except StoreError as exc:
            LOG.error(f"Error activating list {list_id}: {exc}")
            rows = []
        if not rows:
            if previous is not None and previous.id != list_id:
                try:
                    self.records.update(TABLE_LISTS, {"is_active": True}, filters={"id": previous.id})
                except StoreError as exc:
                    LOG.error(f"Could not reactivate list {previous.id}: {exc}")
            self.notifier.error("Erro ao mudar lista")
            return None

        self.current_list = ShoppingList.from_row(rows[0])
        if self._load(list_id):
            self.notifier.success("Lista alterada!")
        return self.current_list

    @reconciles(Reconcile.RESYNC)
    def delete_list(self, list_id: str) -> bool:
        """Delete a list with its sections and items; keeps an active list around."""
        was_active = self.current_list is not None and self.current_list.id == list_id
        try:
            cat_rows = self.records.select(TABLE_CATEGORIES, filters={"list_id": list_id})
            category_ids = [row["id"] for row in cat_rows]
            if category_ids:
                self.records.delete(TABLE_ITEMS, filters={"category_id": category_ids})
                self.records.delete(TABLE_CATEGORIES, filters={"list_id": list_id})
            self.records.delete(TABLE_LISTS, filters={"id": list_id})
        except StoreError as exc:
            LOG.error(f"Error deleting list {list_id}: {exc}")
            self.notifier.error("Erro ao remover lista")
            if was_active:
                self._resync()
            return False

        if was_active:
            self.current_list = None
            self.categories = []
            self.bootstrap()
        self.notifier.success("Lista removida!")
        return True

    @reconciles(Reconcile.PATCH)
    def rename_list(self, list_id: str, new_name: str) -> bool:
        cleaned = self._clean_name(new_name, "Nome da lista não pode estar vazio")
        if cleaned is None:
            return False
        try:
            self.records.update(TABLE_LISTS, {"name": cleaned}, filters={"id": list_id})
        except StoreError as exc:
            LOG.error(f"Error renaming list {list_id}: {exc}")
            self.notifier.error("Erro ao atualizar nome da lista")
            return False
        if self.current_list is not None and self.current_list.id == list_id:
            self.current_list.name = cleaned
        self.notifier.success("Nome da lista atualizado!")
        return True

    # ---------- categories ----------
    @reconciles(Reconcile.PATCH)
    def add_category(self, name: str) -> Optional[CategoryWithItems]:
        if self.current_list is None:
            self.notifier.error("Nenhuma lista ativa")
            return None
        cleaned = self._clean_name(name, "Nome da seção não pode estar vazio")
        if cleaned is None:
            return None
        next_order = max((cat.sort_order for cat in self.categories), default=-1) + 1
        try:
            rows = self.records.insert(
                TABLE_CATEGORIES,
                {
                    "list_id": self.current_list.id,
                    "name": cleaned,
                    "is_custom": True,
                    "sort_order": next_order,
                },
            )
        except StoreError as exc:
            LOG.error(f"Error creating category: {exc}")
            self.notifier.error("Erro ao criar seção")
            return None
        category = CategoryWithItems.from_row(rows[0])
        self.categories.append(category)
        self.notifier.success("Seção criada!")
        return category

    @reconciles(Reconcile.PATCH)
    def rename_category(self, category_id: str, new_name: str) -> bool:
        cleaned = self._clean_name(new_name, "Nome da categoria não pode estar vazio")
        if cleaned is None:
            return False
        try:
            self.records.update(TABLE_CATEGORIES, {"name": cleaned}, filters={"id": category_id})
        except StoreError as exc:
            LOG.error(f"Error renaming category {category_id}: {exc}")
            self.notifier.error("Erro ao atualizar nome da categoria")
            return False
        category = self.find_category(category_id)
        if category is not None:
            category.name = cleaned
        self.notifier.success("Nome da categoria atualizado!")
        return True

    @reconciles(Reconcile.RESYNC)
    def delete_category(self, category_id: str) -> bool:
        """Delete a section's items, then the section itself."""
        try:
            self.records.delete(TABLE_ITEMS, filters={"category_id": category_id})
        except StoreError as exc:
            LOG.error(f"Error deleting items of category {category_id}: {exc}")
            self.notifier.error("Erro ao remover itens da seção")
            return False
        try:
            self.records.delete(TABLE_CATEGORIES, filters={"id": category_id})
        except StoreError as exc:
            LOG.error(f"Error deleting category {category_id}: {exc}")
            self.notifier.error("Erro ao remover seção")
            self._resync()
            return False
        if self.current_list is not None:
            self._load(self.current_list.id)
        else:
            self.categories = [cat for cat in self.categories if cat.id != category_id]
        self.notifier.success("Seção removida!")
        return True

    # ---------- items ----------
    @reconciles(Reconcile.PATCH)
    def add_item(self, category_id: str, name: str, quantity: int = 1) -> Optional[ShoppingItem]:
        cleaned = self._clean_name(name, "Nome do item não pode estar vazio")
        if cleaned is None:
            return None
        try:
            rows = self.records.insert(
                TABLE_ITEMS,
                {
                    "category_id": category_id,
                    "name": cleaned,
                    "quantity": max(0, int(quantity)),
                    "sort_order": APPEND_SORT_ORDER,
                },
            )
        except StoreError as exc:
            LOG.error(f"Error adding item: {exc}")
            self.notifier.error("Erro ao adicionar item")
            return None
        item = ShoppingItem.from_row(rows[0])
        category = self.find_category(category_id)
        if category is not None:
            category.items.append(item)
        self.notifier.success("Item adicionado!")
        return item

    @reconciles(Reconcile.PATCH)
    def delete_item(self, item_id: str) -> bool:
        try:
            self.records.delete(TABLE_ITEMS, filters={"id": item_id})
        except StoreError as exc:
            LOG.error(f"Error deleting item {item_id}: {exc}")
            self.notifier.error("Erro ao remover item")
            return False
        for cat in self.categories:
            cat.items = [item for item in cat.items if item.id != item_id]
        self.notifier.success("Item removido")
        return True

    @reconciles(Reconcile.PATCH)
    def rename_item(self, item_id: str, new_name: str) -> bool:
        cleaned = self._clean_name(new_name, "Nome do item não pode estar vazio")
        if cleaned is None:
            return False
        try:
            self.records.update(TABLE_ITEMS, {"name": cleaned}, filters={"id": item_id})
        except StoreError as exc:
            LOG.error(f"Error renaming item {item_id}: {exc}")
            self.notifier.error("Erro ao atualizar nome do item")
            return False
        item = self.find_item(item_id)
        if item is not None:
            item.name = cleaned
        self.notifier.success("Nome do item atualizado!")
        return True

    @reconciles(Reconcile.PATCH)
    def update_quantity(self, item_id: str, new_quantity: int) -> bool:
        """Set an item's quantity; negative values are ignored."""
        if new_quantity < 0:
            return False
        quantity = int(new_quantity)
        try:
            self.records.update(TABLE_ITEMS, {"quantity": quantity}, filters={"id": item_id})
        except StoreError as exc:
            LOG.error(f"Error updating quantity of {item_id}: {exc}")
            self.notifier.error("Erro ao atualizar quantidade")
            return False
        item = self.find_item(item_id)
        if item is not None:
            item.quantity = quantity
        return True

    @reconciles(Reconcile.PATCH)
    def update_price(self, item_id: str, unit_price: float, market: Optional[str] = None) -> bool:
        """Record a unit price for an item and append it to the price history.

        The history entry is tagged with the item's name as known locally;
        when the item is not in local state the history write is skipped.
        """
        if unit_price is None or unit_price < 0:
            self.notifier.warning("Preço inválido")
            return False
        market_value = (market or "").strip() or None
        try:
            self.records.update(
                TABLE_ITEMS,
                {"unit_price": float(unit_price), "market": market_value},
                filters={"id": item_id},
            )
        except StoreError as exc:
            LOG.error(f"Error updating price of {item_id}: {exc}")
            self.notifier.error("Erro ao atualizar preço")
            return False

        item = self.find_item(item_id)
        if item is not None:
            try:
                self.price_history.record(item.name, unit_price, market_value)
            except StoreError as exc:
                LOG.warning(f"Price history write for {item.name!r} failed: {exc}")
            item.unit_price = float(unit_price)
            item.market = market_value
        else:
            LOG.debug("Item %s not in local state; price history not recorded", item_id)
        self.notifier.success("Preço atualizado!")
        return True

    @reconciles(Reconcile.PATCH)
    def toggle_checked(self, item_id: str) -> Optional[bool]:
        item = self.find_item(item_id)
        if item is None:
            return None
        checked = not item.is_checked
        try:
            self.records.update(TABLE_ITEMS, {"is_checked": checked}, filters={"id": item_id})
        except StoreError as exc:
            LOG.error(f"Error toggling item {item_id}: {exc}")
            self.notifier.error("Erro ao marcar item")
            return None
        item.is_checked = checked
        return checked

    # ---------- ordering ----------
    def _write_positions(self, table: str, ordered_ids: Sequence[str], apply_local) -> bool:
        """Write ``sort_order = index`` for every id concurrently.

        Local state is reordered right after the writes are issued, before
        they complete; failed writes are reported but not rolled back.
        """
        ids = list(ordered_ids)
        if not ids:
            apply_local()
            return True
        failures = 0
        workers = max(1, min(self.max_workers, len(ids)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {
                pool.submit(self.records.update, table, {"sort_order": index}, filters={"id": entity_id}): entity_id
                for index, entity_id in enumerate(ids)
            }
            apply_local()
            for future in as_completed(futures):
                try:
                    future.result()
                except StoreError as exc:
                    failures += 1
                    LOG.error(f"Position write for {futures[future]} failed: {exc}")
        if failures:
            self.notifier.error("Erro ao salvar nova ordem")
            return False
        return True

    @reconciles(Reconcile.PATCH)
    def reorder_items(self, category_id: str, ordered_ids: Sequence[str]) -> bool:
        def apply_local() -> None:
            category = self.find_category(category_id)
            if category is not None:
                category.items = _apply_order(category.items, ordered_ids)

        return self._write_positions(TABLE_ITEMS, ordered_ids, apply_local)

    @reconciles(Reconcile.PATCH)
    def reorder_categories(self, ordered_ids: Sequence[str]) -> bool:
        def apply_local() -> None:
            self.categories = _apply_order(self.categories, ordered_ids)

        return self._write_positions(TABLE_CATEGORIES, ordered_ids, apply_local)

    def category_reorder_controller(self) -> ReorderController:
        """Drag controller over the section order; dragged sections collapse."""
        return ReorderController(
            lambda: [cat.id for cat in self.categories],
            self.reorder_categories,
            collapse_while_dragging=True,
        )

    def item_reorder_controller(self, category_id: str) -> ReorderController:
        def current() -> List[str]:
            category = self.find_category(category_id)
            return [item.id for item in category.items] if category else []

        return ReorderController(current, lambda ids: self.reorder_items(category_id, ids))

    # ---------- derived values ----------
    def calculate_subtotal(self) -> float:
        """Sum of quantity × unit price over items that have a price."""
        return sum(
            item.quantity * item.unit_price for item in self.all_items() if item.unit_price is not None
        )

    def get_items_with_price(self) -> List[ShoppingItem]:
        return [item for item in self.all_items() if item.unit_price is not None and item.unit_price > 0]
