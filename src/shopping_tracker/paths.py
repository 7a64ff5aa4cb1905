import os
from typing import Iterator, Optional

from .logging import get_logger

log = get_logger("paths")

PROJECT_MARKERS = ("pyproject.toml", ".env", "README.md")
STATE_DIRNAME = "var"


def expand_abs(path: str) -> str:
    """Expand env vars and ~ then return absolute path."""
    return os.path.abspath(os.path.expanduser(os.path.expandvars(path or "")))


def parents(start_dir: Optional[str] = None) -> Iterator[str]:
    """Yield start_dir and each of its ancestors up to the filesystem root."""
    d = os.path.abspath(start_dir or os.getcwd() or ".")
    while True:
        yield d
        parent = os.path.dirname(d)
        if parent == d:
            return
        d = parent


def find_upwards(start_dir: Optional[str], filename: str) -> Optional[str]:
    """First ``filename`` found in start_dir or above, so `.env` is found from `src/` too."""
    for d in parents(start_dir):
        candidate = os.path.join(d, filename)
        if os.path.isfile(candidate):
            return candidate
    return None


def find_project_root(start_dir: Optional[str] = None) -> str:
    """Nearest directory holding .git/ or one of PROJECT_MARKERS; start_dir if none."""
    for d in parents(start_dir):
        if os.path.isdir(os.path.join(d, ".git")):
            return d
        if any(os.path.isfile(os.path.join(d, marker)) for marker in PROJECT_MARKERS):
            return d
    start = os.path.abspath(start_dir or os.getcwd() or ".")
    log.debug(f"No project marker found above {start}; using it as root")
    return start


def state_dir(root_dir: str, *parts: str, create: bool = False) -> str:
    """Local state folder ``<root>/var/<parts...>`` (DB, stored credentials)."""
    path = os.path.join(os.path.abspath(root_dir), STATE_DIRNAME, *parts)
    if create:
        os.makedirs(path, exist_ok=True)
    return path
