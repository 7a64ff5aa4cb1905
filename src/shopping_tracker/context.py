from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .auth import AuthClient, AuthSession
from .config import AppConfig, build_app_config
from .logging import get_logger
from .remote import RecordStore, RestRecordStore, build_record_store
from .scan import ReceiptScanner, ScanWorkflow, build_scanner
from .session import Session
from .stores import PriceHistoryStore, ReceiptStore, ShoppingListStore

LOG = get_logger("context")


@dataclass
class AppContext:
    """Everything one user's session needs, wired together once."""

    session: Session
    records: RecordStore
    lists: ShoppingListStore
    receipts: ReceiptStore
    prices: PriceHistoryStore
    scanner: ReceiptScanner
    workflow: ScanWorkflow
    config: Optional[AppConfig] = None
    auth: Optional[AuthClient] = None
    local_user_id: Optional[str] = None

    @classmethod
    def assemble(
        cls,
        records: RecordStore,
        scanner: ReceiptScanner,
        session: Session,
        *,
        config: Optional[AppConfig] = None,
        auth: Optional[AuthClient] = None,
        max_image_bytes: Optional[int] = None,
        rollback_partial: bool = False,
    ) -> "AppContext":
        prices = PriceHistoryStore(records, session)
        lists = ShoppingListStore(records, session, price_history=prices)
        receipts = ReceiptStore(records, session, rollback_partial=rollback_partial)
        limit = max_image_bytes
        if limit is None:
            limit = config.scan.max_image_bytes if config is not None else None
        workflow = (
            ScanWorkflow(scanner, receipts, session, max_image_bytes=limit)
            if limit is not None
            else ScanWorkflow(scanner, receipts, session)
        )
        return cls(
            session=session,
            records=records,
            lists=lists,
            receipts=receipts,
            prices=prices,
            scanner=scanner,
            workflow=workflow,
            config=config,
            auth=auth,
            local_user_id=session.user_id,
        )

    def _forget_user_state(self) -> None:
        self.lists.current_list = None
        self.lists.categories = []
        self.receipts.receipts = []
        self.prices.entries = []
        self.workflow.reset()

    def sign_in(self, auth_session: AuthSession) -> None:
        """Scope every store to the signed-in user and send their token to the backend."""
        self.session.user_id = auth_session.user_id
        self.session.access_token = auth_session.access_token
        if isinstance(self.records, RestRecordStore):
            self.records.set_access_token(auth_session.access_token)
        self._forget_user_state()
        LOG.info(f"Session switched to user {auth_session.user_id}")

    def sign_out(self) -> None:
        self.session.user_id = self.local_user_id or self.session.user_id
        self.session.access_token = None
        if isinstance(self.records, RestRecordStore):
            self.records.set_access_token(None)
        self._forget_user_state()
        LOG.info(f"Signed out; back to user {self.session.user_id}")


def build_auth_client(config: AppConfig) -> Optional[AuthClient]:
    """Backend sign-in is available only when a hosted backend is configured."""
    if not config.store.url or not config.store.api_key:
        LOG.info("No STORE_URL/STORE_API_KEY; sign-in disabled")
        return None
    return AuthClient(config.store.url, config.store.api_key, timeout=config.store.timeout)


def build_context(root_dir: Optional[str] = None, *, config: Optional[AppConfig] = None) -> AppContext:
    """Build the context from env/.env configuration."""
    config = config or build_app_config(root_dir)
    records = build_record_store(config.store, root_dir=config.root_dir)
    session = Session(user_id=config.user_id)
    LOG.info(f"Session ready for user {session.user_id}")
    return AppContext.assemble(
        records,
        build_scanner(config.scan),
        session,
        config=config,
        auth=build_auth_client(config),
        rollback_partial=config.store.rollback_partial,
    )
