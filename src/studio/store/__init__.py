"""Document store abstraction and the in-memory reference implementation."""

from src.studio.store.base import (
    CLASSES,
    DELETE_FIELD,
    GLOBAL_SETTINGS_ID,
    INSTRUCTORS,
    SETTINGS,
    USERS,
    DocumentStore,
    Transaction,
    WriteBatch,
)
from src.studio.store.memory import InMemoryStore

__all__ = [
    "CLASSES",
    "DELETE_FIELD",
    "GLOBAL_SETTINGS_ID",
    "INSTRUCTORS",
    "SETTINGS",
    "USERS",
    "DocumentStore",
    "InMemoryStore",
    "Transaction",
    "WriteBatch",
]
