"""Persistence protocols and the in-memory reference store."""

from runspine.storage.memory import InMemoryStore
from runspine.storage.protocols import AlertStore, ExecutionStore, RunbookStore

__all__ = ["AlertStore", "ExecutionStore", "RunbookStore", "InMemoryStore"]
