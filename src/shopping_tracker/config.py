import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from dotenv import dotenv_values

from .logging import get_logger
from .paths import expand_abs, find_project_root, find_upwards

log = get_logger("config")

DEFAULT_SCAN_MODEL = "google/gemini-2.5-flash"
DEFAULT_SCAN_ENDPOINT = "https://openrouter.ai/api/v1/chat/completions"
OPENAI_SCAN_ENDPOINT = "https://api.openai.com/v1/chat/completions"
DEFAULT_MAX_IMAGE_BYTES = 10 * 1024 * 1024
DEFAULT_USER_ID = "local-user"


def _read_dotenv(dotenv_dir: str) -> Dict[str, str]:
    """Read the nearest .env without mutating the process environment."""
    path = find_upwards(dotenv_dir, ".env")
    if not path:
        log.debug(f"No .env found starting from: {os.path.abspath(dotenv_dir)}")
        return {}
    values = {k: v.strip() for k, v in dotenv_values(path).items() if v is not None}
    log.debug(f"Loaded {len(values)} key(s) from .env at {path}")
    return values


def _lookup(dotenv_dir: str, *names: str) -> Optional[str]:
    for name in names:
        v = os.environ.get(name)
        if v and v.strip():
            return v.strip()
    env = _read_dotenv(dotenv_dir)
    for name in names:
        v = env.get(name)
        if v:
            return v
    return None


@dataclass(frozen=True)
class StoreSettings:
    backend: str                 # sqlite | rest
    url: Optional[str] = None
    api_key: Optional[str] = None
    db_path: Optional[str] = None
    timeout: int = 30
    rollback_partial: bool = False


@dataclass(frozen=True)
class ScanSettings:
    backend: str                 # openrouter | openai
    model: str
    endpoint: str
    api_key: Optional[str]
    max_image_bytes: int = DEFAULT_MAX_IMAGE_BYTES
    timeout: int = 120


@dataclass
class AppConfig:
    root_dir: str
    user_id: str
    store: StoreSettings
    scan: ScanSettings
    allow_origins: List[str] = field(default_factory=list)


def load_store_settings(dotenv_dir: str) -> StoreSettings:
    backend = (_lookup(dotenv_dir, "STORE_BACKEND") or "sqlite").lower()
    if backend not in {"sqlite", "rest"}:
        log.warning(f"Unknown STORE_BACKEND={backend!r}; defaulting to 'sqlite'")
        backend = "sqlite"
    db_path = _lookup(dotenv_dir, "STORE_DB_PATH")
    timeout_raw = _lookup(dotenv_dir, "STORE_TIMEOUT")
    try:
        timeout = int(timeout_raw) if timeout_raw else 30
    except ValueError:
        log.warning(f"STORE_TIMEOUT={timeout_raw!r} is not an integer; using 30s")
        timeout = 30
    return StoreSettings(
        backend=backend,
        url=_lookup(dotenv_dir, "STORE_URL"),
        api_key=_lookup(dotenv_dir, "STORE_API_KEY"),
        db_path=expand_abs(db_path) if db_path else None,
        timeout=timeout,
        rollback_partial=(_lookup(dotenv_dir, "STORE_ROLLBACK_PARTIAL") or "").lower() in {"1", "true", "yes", "on"},
    )


def load_user_id(dotenv_dir: str) -> str:
    return _lookup(dotenv_dir, "APP_USER_ID") or DEFAULT_USER_ID


def load_openrouter(dotenv_dir: str) -> Optional[str]:
    """Return OpenRouter API key from env or .env (OPEN_ROUTER_API_KEY)."""
    return _lookup(dotenv_dir, "OPEN_ROUTER_API_KEY", "open_router_api_key")


def load_openai(dotenv_dir: str) -> Optional[str]:
    """Return OpenAI API key from env or .env."""
    return _lookup(dotenv_dir, "OPENAI_API_KEY", "openai_api_key")


def load_scan_settings(dotenv_dir: str) -> ScanSettings:
    backend = (_lookup(dotenv_dir, "SCAN_BACKEND") or "openrouter").lower()
    if backend not in {"openrouter", "openai"}:
        log.warning(f"Unknown SCAN_BACKEND={backend!r}; defaulting to 'openrouter'")
        backend = "openrouter"
    api_key = load_openai(dotenv_dir) if backend == "openai" else load_openrouter(dotenv_dir)
    max_raw = _lookup(dotenv_dir, "SCAN_MAX_IMAGE_BYTES")
    try:
        max_bytes = int(max_raw) if max_raw else DEFAULT_MAX_IMAGE_BYTES
    except ValueError:
        log.warning(f"SCAN_MAX_IMAGE_BYTES={max_raw!r} is not an integer; using default")
        max_bytes = DEFAULT_MAX_IMAGE_BYTES
    return ScanSettings(
        backend=backend,
        model=_lookup(dotenv_dir, "SCAN_MODEL") or DEFAULT_SCAN_MODEL,
        endpoint=_lookup(dotenv_dir, "SCAN_ENDPOINT")
        or (OPENAI_SCAN_ENDPOINT if backend == "openai" else DEFAULT_SCAN_ENDPOINT),
        api_key=api_key,
        max_image_bytes=max_bytes,
    )


def load_allow_origins(dotenv_dir: str) -> List[str]:
    raw = _lookup(dotenv_dir, "ALLOW_ORIGINS")
    if not raw:
        return ["http://localhost:5173", "http://127.0.0.1:5173"]
    return [o.strip() for o in raw.split(",") if o.strip()]


def build_app_config(root_dir: Optional[str] = None) -> AppConfig:
    """Assemble the application config from env/.env and log a summary."""
    root = find_project_root(root_dir)
    store = load_store_settings(root)
    scan = load_scan_settings(root)
    config = AppConfig(
        root_dir=root,
        user_id=load_user_id(root),
        store=store,
        scan=scan,
        allow_origins=load_allow_origins(root),
    )
    log.info("Application configuration prepared")
    log.info(f"Project root    : {root}")
    log.info(f"Store backend   : {store.backend}")
    log.info(f"Scan backend    : {scan.backend} ({scan.model})")
    log.info(f"Scan API key    : {'set' if scan.api_key else 'missing'}")
    return config
