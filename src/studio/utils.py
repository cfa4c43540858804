"""Shared helpers for identifiers, batching and credit arithmetic."""

from collections.abc import Iterable, Iterator, Sequence
from decimal import ROUND_HALF_UP, Decimal
from typing import TypeVar

T = TypeVar("T")

CENT = Decimal("0.01")


def next_sequential_id(prefix: str, existing_ids: Iterable[str]) -> str:
    """Smallest unused ``{prefix}{n}`` id, counting from 1.

    Ids freed by hard deletes are reused, matching how the studio numbers
    its classes, instructors and students.
    """
    taken = set(existing_ids)
    num = 1
    while f"{prefix}{num}" in taken:
        num += 1
    return f"{prefix}{num}"


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Split a sequence into consecutive chunks of at most ``size`` items."""
    if size <= 0:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(items), size):
        yield items[start : start + size]


def to_credits(value: Decimal | int | float | str) -> Decimal:
    """Convert to a credit amount with exactly two decimal places.

    Floats go through ``str`` first so 0.1 becomes Decimal("0.10") rather
    than its binary expansion.
    """
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def subtract_credits(balance: Decimal, cost: Decimal) -> Decimal:
    return to_credits(to_credits(balance) - to_credits(cost))


def add_credits(balance: Decimal, amount: Decimal) -> Decimal:
    return to_credits(to_credits(balance) + to_credits(amount))
