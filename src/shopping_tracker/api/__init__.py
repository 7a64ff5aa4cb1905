"""JSON API over the shopping stores, served by Starlette."""

from .app import create_app

__all__ = ["create_app"]
