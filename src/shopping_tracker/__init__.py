"""
Shopping Tracker – shopping lists, purchase receipts and price history.

Shared foundations (config, logging, paths, errors, session) live at the
top level; the stores keep one user's state in step with a record store,
and the api/cli modules expose them.
"""

__all__ = [
    "config",
    "errors",
    "logging",
    "paths",
    "session",
]
