"""Persistent storage for agents, tasks and assignments."""

from delegator.storage.database import Database
from delegator.storage.store import Store

__all__ = ["Database", "Store"]
