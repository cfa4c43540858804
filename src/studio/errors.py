"""Error hierarchy for booking and scheduling failures.

Every failure carries an ``ErrorKind`` so callers can render a specific
message without string matching. The hierarchy also classifies failures the
way tenacity needs them: transient failures (an optimistic commit lost a race,
a webhook timed out) may succeed on retry, permanent failures (a business rule
said no) never will.

Example usage with tenacity:
    @retry(retry=retry_if_exception_type(TransientError), stop=stop_after_attempt(5))
    def commit(...):
        ...
"""

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    TOO_EARLY = "TOO_EARLY"
    MEMBERSHIP_INVALID = "MEMBERSHIP_INVALID"
    INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"
    TIME_CONFLICT = "TIME_CONFLICT"
    FULL = "FULL"
    INSTRUCTOR_CONFLICT = "INSTRUCTOR_CONFLICT"
    TRANSACTION_ABORTED = "TRANSACTION_ABORTED"
    VALIDATION = "VALIDATION"
    ALREADY_STARTED = "ALREADY_STARTED"
    FORBIDDEN = "FORBIDDEN"
    DELIVERY_FAILED = "DELIVERY_FAILED"


class StudioError(Exception):
    """Base exception for all studio errors."""

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        """Serializable form for API responses and logs."""
        return {"kind": self.kind.value, "message": self.message, **self.context}


class TransientError(StudioError):
    """Temporary failure that may succeed on retry.

    Examples: optimistic commit collisions, webhook timeouts, 503 responses.
    """

    pass


class TransactionConflictError(TransientError):
    """A document read inside a transaction changed before commit.

    Raised by the store on a failed compare-and-swap and retried by the
    store's own retry loop. Callers only ever see TransactionAbortedError.
    """

    kind = ErrorKind.TRANSACTION_ABORTED


class NotificationDeliveryError(TransientError):
    """Notification endpoint unavailable or timed out."""

    kind = ErrorKind.DELIVERY_FAILED


class PermanentError(StudioError):
    """Failure that won't succeed on retry without a change of input or state."""

    pass


class NotificationRejectedError(PermanentError):
    """Notification endpoint refused the message (4xx); resending will not help."""

    kind = ErrorKind.DELIVERY_FAILED


class NotFoundError(PermanentError):
    kind = ErrorKind.NOT_FOUND


class TooEarlyError(PermanentError):
    """Booking window for the occurrence has not opened yet."""

    kind = ErrorKind.TOO_EARLY


class MembershipInvalidError(PermanentError):
    """Unlimited membership missing or expired for the occurrence date.

    ``overridable`` is True when the actor is an admin, who may confirm and
    retry with ``confirm_override=True``.
    """

    kind = ErrorKind.MEMBERSHIP_INVALID


class InsufficientCreditsError(PermanentError):
    """Credit balance cannot cover the class cost.

    For students ``top_up_suggested`` is set so the caller can route to a
    top-up flow instead of a dead end.
    """

    kind = ErrorKind.INSUFFICIENT_CREDITS


class TimeConflictError(PermanentError):
    """Student already holds an overlapping booking on the same date."""

    kind = ErrorKind.TIME_CONFLICT


class ClassFullError(PermanentError):
    kind = ErrorKind.FULL


class InstructorConflictError(PermanentError):
    """Instructor already teaches an overlapping class."""

    kind = ErrorKind.INSTRUCTOR_CONFLICT


class AlreadyStartedError(PermanentError):
    kind = ErrorKind.ALREADY_STARTED


class PermissionDeniedError(PermanentError):
    kind = ErrorKind.FORBIDDEN


class InvalidInputError(PermanentError):
    """Malformed input, rejected before any store call."""

    kind = ErrorKind.VALIDATION


class TransactionAbortedError(PermanentError):
    """Store could not commit after exhausting its retries.

    Nothing was written. The caller may retry the whole operation.
    """

    kind = ErrorKind.TRANSACTION_ABORTED
