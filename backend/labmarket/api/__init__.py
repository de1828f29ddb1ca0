"""HTTP API for the experiment ledger."""

from .server import create_app

__all__ = ["create_app"]
