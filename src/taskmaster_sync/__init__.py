"""Taskmaster Sync - webhook-driven synchronization of Task Master projects."""

__version__ = "0.1.0"

__all__ = ["__version__"]
