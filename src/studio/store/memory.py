"""Thread-safe in-memory document store with optimistic transactions.

Every document carries a version drawn from a store-wide counter (kept after
deletes, so a delete-then-recreate never reuses a version). A transaction
records the version of each document it reads; at commit the whole read set
is compared against current versions under the store lock and the buffered
writes are applied only if nothing changed. A stale read set raises
TransactionConflictError, which tenacity retries by re-running the
transaction function against fresh state.
"""

import copy
import json
import threading
from collections.abc import Callable
from decimal import Decimal
from pathlib import Path
from typing import Any, TypeVar

from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random,
)

from src.studio.config import StudioConfig
from src.studio.errors import (
    InvalidInputError,
    NotFoundError,
    TransactionAbortedError,
    TransactionConflictError,
)
from src.studio.logging import get_logger
from src.studio.store.base import (
    DELETE_FIELD,
    Document,
    DocumentStore,
    Snapshot,
    Transaction,
    Unsubscribe,
    WriteBatch,
)

T = TypeVar("T")

logger = get_logger(__name__)

_Key = tuple[str, str]
# (operation, collection, doc_id, payload)
_Write = tuple[str, str, str, Document | None]


def _apply_update(document: Document, changes: Document) -> Document:
    """Merge changes into a copy of document, honouring dotted paths."""
    result = copy.deepcopy(document)
    for path, value in changes.items():
        parts = path.split(".")
        target = result
        for part in parts[:-1]:
            nested = target.get(part)
            if not isinstance(nested, dict):
                nested = {}
                target[part] = nested
            target = nested
        if value is DELETE_FIELD:
            target.pop(parts[-1], None)
        else:
            target[parts[-1]] = copy.deepcopy(value)
    return result


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class _Subscription:
    def __init__(
        self, collection: str, callback: Callable[[Snapshot], None], equals: dict[str, Any]
    ) -> None:
        self.collection = collection
        self.callback = callback
        self.equals = equals
        self.active = True


class _MemoryTransaction(Transaction):
    def __init__(self, store: "InMemoryStore") -> None:
        self._store = store
        self.reads: dict[_Key, int] = {}
        self.writes: list[_Write] = []

    def get(self, collection: str, doc_id: str) -> Document | None:
        if self.writes:
            raise RuntimeError("Transaction reads must happen before writes")
        version, data = self._store._read(collection, doc_id)
        self.reads.setdefault((collection, doc_id), version)
        return data

    def set(self, collection: str, doc_id: str, data: Document) -> None:
        self.writes.append(("set", collection, doc_id, copy.deepcopy(data)))

    def update(self, collection: str, doc_id: str, changes: Document) -> None:
        self.writes.append(("update", collection, doc_id, dict(changes)))

    def delete(self, collection: str, doc_id: str) -> None:
        self.writes.append(("delete", collection, doc_id, None))


class _MemoryBatch(WriteBatch):
    def __init__(self, store: "InMemoryStore", max_operations: int) -> None:
        self._store = store
        self.max_operations = max_operations
        self._writes: list[_Write] = []
        self._committed = False

    def _add(self, write: _Write) -> None:
        if self._committed:
            raise RuntimeError("Batch already committed")
        if len(self._writes) >= self.max_operations:
            raise InvalidInputError(
                f"Write batch is limited to {self.max_operations} operations",
                max_operations=self.max_operations,
            )
        self._writes.append(write)

    def set(self, collection: str, doc_id: str, data: Document) -> None:
        self._add(("set", collection, doc_id, copy.deepcopy(data)))

    def update(self, collection: str, doc_id: str, changes: Document) -> None:
        self._add(("update", collection, doc_id, dict(changes)))

    def delete(self, collection: str, doc_id: str) -> None:
        self._add(("delete", collection, doc_id, None))

    def commit(self) -> None:
        self._store._commit({}, self._writes)
        self._committed = True

    def __len__(self) -> int:
        return len(self._writes)


class InMemoryStore(DocumentStore):
    """Reference DocumentStore keeping all documents in process memory."""

    def __init__(
        self,
        max_attempts: int = 5,
        retry_wait_seconds: float = 0.01,
        max_batch_operations: int = 400,
    ) -> None:
        self._lock = threading.RLock()
        self._docs: dict[str, dict[str, Document]] = {}
        self._versions: dict[_Key, int] = {}
        self._clock = 0
        self._subscriptions: list[_Subscription] = []
        self._max_attempts = max_attempts
        self._retry_wait_seconds = retry_wait_seconds
        self._max_batch_operations = max_batch_operations

    @classmethod
    def from_config(cls, config: StudioConfig) -> "InMemoryStore":
        return cls(
            max_attempts=config.transaction_max_attempts,
            retry_wait_seconds=config.transaction_retry_wait_seconds,
            max_batch_operations=config.batch_max_operations,
        )

    # ------------------------------------------------------------------
    # Point access
    # ------------------------------------------------------------------
    def _read(self, collection: str, doc_id: str) -> tuple[int, Document | None]:
        with self._lock:
            version = self._versions.get((collection, doc_id), 0)
            data = self._docs.get(collection, {}).get(doc_id)
            return version, copy.deepcopy(data) if data is not None else None

    def get(self, collection: str, doc_id: str) -> Document | None:
        return self._read(collection, doc_id)[1]

    def set(self, collection: str, doc_id: str, data: Document) -> None:
        self._commit({}, [("set", collection, doc_id, copy.deepcopy(data))])

    def update(self, collection: str, doc_id: str, changes: Document) -> None:
        self._commit({}, [("update", collection, doc_id, dict(changes))])

    def delete(self, collection: str, doc_id: str) -> None:
        self._commit({}, [("delete", collection, doc_id, None)])

    # ------------------------------------------------------------------
    # Queries and subscriptions
    # ------------------------------------------------------------------
    def query(self, collection: str, **equals: Any) -> Snapshot:
        with self._lock:
            return [
                copy.deepcopy(doc)
                for doc in self._docs.get(collection, {}).values()
                if all(doc.get(field) == value for field, value in equals.items())
            ]

    def subscribe(
        self, collection: str, callback: Callable[[Snapshot], None], **equals: Any
    ) -> Unsubscribe:
        subscription = _Subscription(collection, callback, equals)
        with self._lock:
            self._subscriptions.append(subscription)
        callback(self.query(collection, **equals))
        logger.debug("subscription_added", collection=collection, filter=equals)

        def unsubscribe() -> None:
            subscription.active = False
            with self._lock:
                if subscription in self._subscriptions:
                    self._subscriptions.remove(subscription)
            logger.debug("subscription_removed", collection=collection, filter=equals)

        return unsubscribe

    def _notify(self, collections: frozenset[str]) -> None:
        with self._lock:
            targets = [s for s in self._subscriptions if s.collection in collections]
        for subscription in targets:
            if subscription.active:
                subscription.callback(
                    self.query(subscription.collection, **subscription.equals)
                )

    # ------------------------------------------------------------------
    # Commit path
    # ------------------------------------------------------------------
    def _stage(self, writes: list[_Write]) -> dict[_Key, Document | None]:
        """Compute the final state of every touched document, or raise."""
        staged: dict[_Key, Document | None] = {}
        for operation, collection, doc_id, payload in writes:
            key = (collection, doc_id)
            current = staged[key] if key in staged else self._docs.get(collection, {}).get(doc_id)
            if operation == "set":
                staged[key] = {**copy.deepcopy(payload), "id": doc_id}
            elif operation == "update":
                if current is None:
                    raise NotFoundError(
                        f"Document {collection}/{doc_id} not found",
                        collection=collection,
                        doc_id=doc_id,
                    )
                staged[key] = _apply_update(current, payload)
            else:
                staged[key] = None
        return staged

    def _commit(self, reads: dict[_Key, int], writes: list[_Write]) -> None:
        with self._lock:
            for key, version in reads.items():
                if self._versions.get(key, 0) != version:
                    raise TransactionConflictError(
                        f"Document {key[0]}/{key[1]} changed during transaction",
                        collection=key[0],
                        doc_id=key[1],
                    )
            staged = self._stage(writes)
            for (collection, doc_id), data in staged.items():
                self._clock += 1
                self._versions[(collection, doc_id)] = self._clock
                if data is None:
                    self._docs.get(collection, {}).pop(doc_id, None)
                else:
                    self._docs.setdefault(collection, {})[doc_id] = data
        if staged:
            self._notify(frozenset(collection for collection, _ in staged))

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        logger.debug(
            "transaction_retry",
            attempt=retry_state.attempt_number,
            error=str(outcome.exception()) if outcome else None,
        )

    def run_transaction(self, fn: Callable[[Transaction], T]) -> T:
        retrying = Retrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_random(0, self._retry_wait_seconds),
            retry=retry_if_exception_type(TransactionConflictError),
            before_sleep=self._log_retry,
        )
        result: T
        try:
            for attempt in retrying:
                with attempt:
                    transaction = _MemoryTransaction(self)
                    result = fn(transaction)
                    self._commit(transaction.reads, transaction.writes)
        except RetryError as e:
            logger.warning("transaction_aborted", attempts=self._max_attempts)
            raise TransactionAbortedError(
                "Transaction could not be committed, please retry",
                attempts=self._max_attempts,
            ) from e
        return result

    def batch(self) -> WriteBatch:
        return _MemoryBatch(self, self._max_batch_operations)

    @property
    def max_batch_operations(self) -> int:
        return self._max_batch_operations

    # ------------------------------------------------------------------
    # File persistence (used by the CLIs)
    # ------------------------------------------------------------------
    def dump_json(self, path: str | Path) -> Path:
        """Write every collection to a JSON file.

        Returns:
            Path to the written file.
        """
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            payload = copy.deepcopy(self._docs)
        with open(target, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False, default=_json_default)
        logger.info("store_dumped", path=str(target))
        return target

    @classmethod
    def load_json(cls, path: str | Path, **kwargs: Any) -> "InMemoryStore":
        """Build a store from a file written by ``dump_json``."""
        with open(path, encoding="utf-8") as f:
            payload = json.load(f)
        store = cls(**kwargs)
        for collection, documents in payload.items():
            for doc_id, data in documents.items():
                store.set(collection, doc_id, data)
        logger.info(
            "store_loaded",
            path=str(path),
            documents=sum(len(docs) for docs in payload.values()),
        )
        return store
