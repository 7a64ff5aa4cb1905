"""Remote record store adapters.

Modules:
- base: the generic CRUD protocol and table names
- sqlite: local single-file store (development, tests, offline use)
- rest: PostgREST-style client for a hosted backend
"""

from typing import Optional

from ..config import StoreSettings
from ..logging import get_logger
from .base import RecordStore
from .rest import RestRecordStore
from .sqlite import SqliteRecordStore

LOG = get_logger("store")


def build_record_store(settings: StoreSettings, *, root_dir: Optional[str] = None) -> RecordStore:
    """Return the configured record store implementation."""
    if settings.backend == "rest":
        if not settings.url or not settings.api_key:
            raise ValueError("STORE_URL and STORE_API_KEY are required for the rest backend")
        LOG.info(f"Using hosted record store at {settings.url}")
        return RestRecordStore(settings.url, settings.api_key, timeout=settings.timeout)
    return SqliteRecordStore(settings.db_path, root_dir=root_dir)


__all__ = [
    "RecordStore",
    "RestRecordStore",
    "SqliteRecordStore",
    "build_record_store",
]
