from __future__ import annotations

import functools
from enum import Enum
from typing import Any, Callable, TypeVar

from ..logging import get_logger

LOG = get_logger("reconcile")

F = TypeVar("F", bound=Callable[..., Any])


class Reconcile(str, Enum):
    """How a mutation brings local state back in line with the remote store.

    PATCH: edit the cached record in place after the write succeeds.
    RESYNC: discard the affected local state and re-fetch it.
    """

    PATCH = "patch"
    RESYNC = "resync"


def reconciles(strategy: Reconcile) -> Callable[[F], F]:
    """Tag a store mutation with the reconciliation strategy it uses."""

    def decorator(fn: F) -> F:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            LOG.debug("%s (%s)", fn.__qualname__, strategy.value)
            return fn(*args, **kwargs)

        wrapper.reconcile = strategy  # type: ignore[attr-defined]
        return wrapper  # type: ignore[return-value]

    return decorator


def strategy_of(fn: Callable[..., Any]) -> Any:
    return getattr(fn, "reconcile", None)
