"""HTTP API for taskmaster-sync."""

from .server import build_pipeline, create_app

__all__ = ["build_pipeline", "create_app"]
