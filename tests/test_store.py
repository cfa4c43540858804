import typing
from decimal import Decimal

import pytest

from src.studio.errors import InvalidInputError, NotFoundError, TransactionAbortedError
from src.studio.repository import StudioRepository
from src.studio.store import CLASSES, DELETE_FIELD, USERS, InMemoryStore
from tests.conftest import add_student, add_template


def test_dotted_update_and_delete_field():
    store = InMemoryStore()
    add_template(store, "class1", substitutions={"2024-03-06": "instructor2"})

    store.update(CLASSES, "class1", {"bookings.2024-03-06": ["student1"]})
    store.update(CLASSES, "class1", {"substitutions.2024-03-06": DELETE_FIELD})

    document = store.get(CLASSES, "class1")
    assert document["bookings"] == {"2024-03-06": ["student1"]}
    assert document["substitutions"] == {}


def test_update_missing_document_raises():
    store = InMemoryStore()
    with pytest.raises(NotFoundError):
        store.update(USERS, "nobody", {"name": "x"})


def test_query_filters_by_equality():
    store = InMemoryStore()
    add_template(store, "class1")
    add_template(store, "class2", archived=True, archived_at="2024-02-01")

    assert [d["id"] for d in store.query(CLASSES, archived=False)] == ["class1"]
    assert len(store.query(CLASSES)) == 2


def test_transaction_retries_after_concurrent_write():
    store = InMemoryStore(max_attempts=3, retry_wait_seconds=0)
    add_student(store, "student1", credits="5")
    attempts = []

    def _increment(tx):
        document = tx.get(USERS, "student1")
        attempts.append(1)
        if len(attempts) == 1:
            # Another writer commits between our read and our commit
            store.update(USERS, "student1", {"credits": Decimal("7")})
        tx.update(USERS, "student1", {"credits": document["credits"] + 1})

    store.run_transaction(_increment)

    assert len(attempts) == 2
    assert store.get(USERS, "student1")["credits"] == Decimal("8")


def test_transaction_aborts_after_max_attempts():
    store = InMemoryStore(max_attempts=3, retry_wait_seconds=0)
    add_student(store, "student1", credits="5")
    attempts = []

    def _always_loses(tx):
        tx.get(USERS, "student1")
        attempts.append(1)
        store.update(USERS, "student1", {"name": f"writer {len(attempts)}"})
        tx.update(USERS, "student1", {"credits": Decimal("0")})

    with pytest.raises(TransactionAbortedError):
        store.run_transaction(_always_loses)

    assert len(attempts) == 3
    assert store.get(USERS, "student1")["credits"] == Decimal("5")


def test_failed_transaction_writes_nothing():
    store = InMemoryStore()
    add_student(store, "student1", credits="5")

    def _fails(tx):
        tx.get(USERS, "student1")
        tx.update(USERS, "student1", {"credits": Decimal("0")})
        tx.update(USERS, "missing", {"credits": Decimal("1")})

    with pytest.raises(NotFoundError):
        store.run_transaction(_fails)
    assert store.get(USERS, "student1")["credits"] == Decimal("5")


def test_reads_after_writes_are_rejected():
    store = InMemoryStore()
    add_student(store, "student1")

    def _bad(tx):
        tx.update(USERS, "student1", {"name": "x"})
        tx.get(USERS, "student1")

    with pytest.raises(RuntimeError):
        store.run_transaction(_bad)


def test_batch_is_bounded():
    store = InMemoryStore(max_batch_operations=2)
    batch = store.batch()
    batch.delete(CLASSES, "a")
    batch.delete(CLASSES, "b")
    with pytest.raises(InvalidInputError):
        batch.delete(CLASSES, "c")


def test_subscribe_delivers_initial_and_changed_snapshots():
    store = InMemoryStore()
    add_template(store, "class1")
    snapshots = []

    unsubscribe = store.subscribe(CLASSES, snapshots.append, archived=False)
    store.update(CLASSES, "class1", {"archived": True})
    unsubscribe()
    add_template(store, "class2")

    assert [len(s) for s in snapshots] == [1, 0]


def test_store_annotations_resolve_to_builtins():
    hints = typing.get_type_hints(InMemoryStore._notify)
    assert hints["collections"] == frozenset[str]


def test_json_round_trip_keeps_credits_exact(tmp_path):
    store = InMemoryStore()
    add_student(store, "student1", credits="1.50")
    add_template(store, "class1", points_cost=Decimal("0.40"))

    path = store.dump_json(tmp_path / "store.json")
    loaded = StudioRepository(InMemoryStore.load_json(path))

    assert loaded.get_user("student1").credits == Decimal("1.5")
    assert loaded.get_template("class1").points_cost == Decimal("0.4")
