"""Persistent store contract and its implementations."""

from src.planning.store.base import ScheduleStore
from src.planning.store.memory import InMemoryStore

__all__ = [
    "ScheduleStore",
    "InMemoryStore",
]
