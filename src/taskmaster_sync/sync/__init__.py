"""Sync decision, project resolution and dispatch."""

from .decision import DEFAULT_RESERVED_PREFIX, SyncDecision, SyncDecisionEngine, decide
from .dispatcher import SyncDispatcher
from .resolver import ProjectResolver, derive_tag

__all__ = [
    "DEFAULT_RESERVED_PREFIX",
    "ProjectResolver",
    "SyncDecision",
    "SyncDecisionEngine",
    "SyncDispatcher",
    "decide",
    "derive_tag",
]
