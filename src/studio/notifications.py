"""Notification rendering and dispatch.

The core only renders a message and hands it, with a list of recipients, to a
dispatcher. Carrier-specific phone formatting and delivery receipts are the
dispatcher backend's concern.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import date

import requests
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.studio.config import StudioConfig
from src.studio.dates import WEEKDAY_NAMES, to_date
from src.studio.errors import (
    InvalidInputError,
    NotificationDeliveryError,
    NotificationRejectedError,
)
from src.studio.logging import get_logger
from src.studio.models import Notice, Principal, Recipient, Role, User

logger = get_logger(__name__)


def recipients_for(users: Iterable[User]) -> tuple[list[Recipient], int]:
    """Recipients with a phone number, plus how many users had none."""
    recipients: list[Recipient] = []
    missing = 0
    for user in users:
        if user.phone_number:
            recipients.append(Recipient(name=user.name, phone=user.phone_number))
        else:
            missing += 1
    return recipients, missing


class NotificationDispatcher(ABC):
    @abstractmethod
    def dispatch(self, message: str, recipients: list[Recipient]) -> None:
        """Hand a rendered message to the delivery backend.

        Raises:
            NotificationDeliveryError: Backend temporarily unavailable.
            NotificationRejectedError: Backend refused the message.
        """


class LoggingDispatcher(NotificationDispatcher):
    """Default dispatcher: records the message in the log only."""

    def dispatch(self, message: str, recipients: list[Recipient]) -> None:
        logger.info(
            "notification_logged",
            message=message,
            recipients=[r.phone for r in recipients],
        )


class WebhookDispatcher(NotificationDispatcher):
    """POSTs ``{"message", "recipients"}`` JSON to an SMS/notification webhook."""

    def __init__(self, url: str, timeout_seconds: float = 10) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, max=5),
        retry=retry_if_exception_type(NotificationDeliveryError),
        reraise=True,
    )
    def dispatch(self, message: str, recipients: list[Recipient]) -> None:
        payload = {
            "message": message,
            "recipients": [r.model_dump() for r in recipients],
        }
        try:
            resp = requests.post(self.url, json=payload, timeout=self.timeout_seconds)
        except (requests.Timeout, requests.ConnectionError) as e:
            logger.warning("notification_transport_error", url=self.url, error=str(e))
            raise NotificationDeliveryError(f"Notification webhook unreachable: {e}") from e

        if resp.status_code >= 500:
            logger.warning("notification_server_error", status=resp.status_code)
            raise NotificationDeliveryError(
                f"Notification webhook returned {resp.status_code}", status=resp.status_code
            )
        if resp.status_code >= 400:
            logger.error("notification_rejected", status=resp.status_code, body=resp.text)
            raise NotificationRejectedError(
                f"Notification webhook rejected the message ({resp.status_code})",
                status=resp.status_code,
            )
        logger.info("notification_sent", recipients=len(recipients))


def build_dispatcher(config: StudioConfig) -> NotificationDispatcher:
    if config.notify_webhook_url:
        return WebhookDispatcher(config.notify_webhook_url, config.notify_timeout_seconds)
    return LoggingDispatcher()


# ---------------------------------------------------------------------------
# Message templates
# ---------------------------------------------------------------------------
def _when(on: date | str, start_time: str) -> str:
    day = to_date(on)
    return f"{day.month}/{day.day} ({WEEKDAY_NAMES[day.isoweekday()]}) {start_time}"


def substitution_notice(
    title: str, on: date | str, start_time: str, original_name: str, substitute_name: str
) -> str:
    return (
        f"Hello, the {title} class on {_when(on, start_time)} will be taught by "
        f"{substitute_name} instead of {original_name}. Sorry for any inconvenience."
    )


def cancellation_notice(title: str, on: date | str, start_time: str) -> str:
    return (
        f"Hello, we regret that the {title} class on {_when(on, start_time)} "
        f"is cancelled this week. Sorry for any inconvenience."
    )


def payment_notice(student_name: str, last_five_digits: str) -> str:
    return f"Payment reported\nStudent: {student_name}\nAccount last five digits: {last_five_digits}"


def notify_admin_payment(
    dispatcher: NotificationDispatcher,
    principal: Principal,
    users: Iterable[User],
    last_five_digits: str,
) -> bool:
    """Tell admins a student reports a manual bank transfer.

    Payment is handled out of band; this only records the notify event.

    Returns:
        True if the notice was handed to the dispatcher.
    """
    users = list(users)
    if not (last_five_digits.isdigit() and len(last_five_digits) == 5):
        raise InvalidInputError(
            "Expected the last five digits of the paying account", field="last_five_digits"
        )
    student = next((u for u in users if u.id == principal.user_id), None)
    admins, _ = recipients_for(u for u in users if u.role == Role.ADMIN)
    message = payment_notice(student.name if student else principal.user_id, last_five_digits)
    try:
        dispatcher.dispatch(message, admins)
    except (NotificationDeliveryError, NotificationRejectedError) as e:
        logger.warning("payment_notice_failed", student_id=principal.user_id, error=str(e))
        return False
    logger.info("payment_notice_sent", student_id=principal.user_id, admins=len(admins))
    return True


def roster_notice(message: str, users: Iterable[User]) -> Notice:
    """Bundle a message with the phone-reachable users it should go to."""
    recipients, missing = recipients_for(users)
    return Notice(message=message, recipients=recipients, missing_phone_count=missing)
