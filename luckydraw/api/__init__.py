"""HTTP interface for draws and admin operations."""

from .app import create_app

__all__ = ["create_app"]
