from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from .logging import get_logger

LOG = get_logger("notify")

INFO = "info"
SUCCESS = "success"
WARNING = "warning"
ERROR = "error"

_LOG_LEVELS = {INFO: 20, SUCCESS: 20, WARNING: 30, ERROR: 40}


@dataclass(frozen=True)
class Notification:
    level: str
    message: str

    def as_dict(self) -> dict:
        return {"level": self.level, "message": self.message}


class Notifier:
    """Collects transient user notifications (the app's toasts).

    Each one is logged as it is raised; the API layer drains the queue into
    its responses.
    """

    def __init__(self) -> None:
        self._pending: List[Notification] = []

    def notify(self, level: str, message: str) -> Notification:
        note = Notification(level, message)
        self._pending.append(note)
        LOG.log(_LOG_LEVELS.get(level, 20), "%s: %s", level, message)
        return note

    def info(self, message: str) -> Notification:
        return self.notify(INFO, message)

    def success(self, message: str) -> Notification:
        return self.notify(SUCCESS, message)

    def warning(self, message: str) -> Notification:
        return self.notify(WARNING, message)

    def error(self, message: str) -> Notification:
        return self.notify(ERROR, message)

    @property
    def pending(self) -> List[Notification]:
        return list(self._pending)

    def drain(self) -> List[Notification]:
        notes, self._pending = self._pending, []
        return notes


@dataclass
class Session:
    """Who is acting and where their notifications go.

    Passed explicitly to every store instead of living in module globals.
    """

    user_id: str
    notifier: Notifier = field(default_factory=Notifier)
    access_token: Optional[str] = None
