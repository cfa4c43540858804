"""Document store contract used by the booking core.

The core treats persistence as a keyed transactional document store:
documents are dicts addressed by ``(collection, doc_id)``. Besides point
reads and writes the store offers equality queries, change subscriptions,
optimistic multi-document transactions and bounded write batches.

Collections used by the core:
    classes/{template_id}
    users/{user_id}
    instructors/{instructor_id}
    settings/global
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, TypeVar

T = TypeVar("T")

CLASSES = "classes"
USERS = "users"
INSTRUCTORS = "instructors"
SETTINGS = "settings"
GLOBAL_SETTINGS_ID = "global"


class _DeleteField:
    """Sentinel: remove the addressed (possibly nested) field on update."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "DELETE_FIELD"


DELETE_FIELD = _DeleteField()

Document = dict[str, Any]
Snapshot = list[Document]
Unsubscribe = Callable[[], None]


class Transaction(ABC):
    """A unit of atomic read-then-write work.

    Reads go to authoritative state and are recorded. Writes are buffered and
    applied only if no document in the read set changed before commit.
    """

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Document | None: ...

    @abstractmethod
    def set(self, collection: str, doc_id: str, data: Document) -> None: ...

    @abstractmethod
    def update(self, collection: str, doc_id: str, changes: Document) -> None: ...

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> None: ...


class WriteBatch(ABC):
    """Blind writes committed together, bounded by ``max_operations``."""

    max_operations: int

    @abstractmethod
    def set(self, collection: str, doc_id: str, data: Document) -> None: ...

    @abstractmethod
    def update(self, collection: str, doc_id: str, changes: Document) -> None: ...

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> None: ...

    @abstractmethod
    def commit(self) -> None: ...

    @abstractmethod
    def __len__(self) -> int: ...


class DocumentStore(ABC):
    """Keyed transactional document store."""

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Document | None:
        """Return a copy of the document (with its ``id``), or None."""

    @abstractmethod
    def set(self, collection: str, doc_id: str, data: Document) -> None: ...

    @abstractmethod
    def update(self, collection: str, doc_id: str, changes: Document) -> None:
        """Merge ``changes`` into an existing document.

        Keys may be dotted paths (``"bookings.2024-03-06"``) to address a
        nested map entry; the value ``DELETE_FIELD`` removes the entry.

        Raises:
            NotFoundError: If the document does not exist.
        """

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> None: ...

    @abstractmethod
    def query(self, collection: str, **equals: Any) -> Snapshot:
        """All documents whose top-level fields equal the given values."""

    @abstractmethod
    def subscribe(
        self, collection: str, callback: Callable[[Snapshot], None], **equals: Any
    ) -> Unsubscribe:
        """Call ``callback`` with the current and every later query snapshot.

        Returns:
            A function that stops further callbacks.
        """

    @abstractmethod
    def run_transaction(self, fn: Callable[[Transaction], T]) -> T:
        """Run ``fn`` atomically, retrying it when its read set is invalidated.

        Exceptions raised by ``fn`` abort the transaction without writing.

        Raises:
            TransactionAbortedError: If the commit kept conflicting.
        """

    @abstractmethod
    def batch(self) -> WriteBatch: ...

    @property
    @abstractmethod
    def max_batch_operations(self) -> int: ...
