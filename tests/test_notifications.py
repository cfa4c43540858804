import pytest
import requests

from src.studio.errors import (
    InvalidInputError,
    NotificationDeliveryError,
    NotificationRejectedError,
)
from src.studio.models import Principal, Recipient, Role, User
from src.studio.notifications import (
    LoggingDispatcher,
    NotificationDispatcher,
    WebhookDispatcher,
    build_dispatcher,
    notify_admin_payment,
    recipients_for,
    substitution_notice,
)

RECIPIENTS = [Recipient(name="Dana", phone="0912345678")]


class FakeResponse:
    def __init__(self, status_code, text=""):
        self.status_code = status_code
        self.text = text


def test_webhook_retries_server_errors(monkeypatch):
    responses = [FakeResponse(503), FakeResponse(502), FakeResponse(200)]
    calls = []

    def fake_post(url, json, timeout):
        calls.append(json)
        return responses.pop(0)

    monkeypatch.setattr(requests, "post", fake_post)

    WebhookDispatcher("https://hooks.example.com/sms", timeout_seconds=1).dispatch("hi", RECIPIENTS)

    assert len(calls) == 3
    assert calls[0] == {"message": "hi", "recipients": [{"name": "Dana", "phone": "0912345678"}]}


def test_webhook_client_error_is_not_retried(monkeypatch):
    calls = []

    def fake_post(url, json, timeout):
        calls.append(url)
        return FakeResponse(400, "bad recipient")

    monkeypatch.setattr(requests, "post", fake_post)

    with pytest.raises(NotificationRejectedError):
        WebhookDispatcher("https://hooks.example.com/sms").dispatch("hi", RECIPIENTS)
    assert len(calls) == 1


def test_webhook_timeout_gives_up_after_retries(monkeypatch):
    calls = []

    def fake_post(url, json, timeout):
        calls.append(url)
        raise requests.Timeout("slow")

    monkeypatch.setattr(requests, "post", fake_post)

    with pytest.raises(NotificationDeliveryError):
        WebhookDispatcher("https://hooks.example.com/sms").dispatch("hi", RECIPIENTS)
    assert len(calls) == 3


def test_build_dispatcher_defaults_to_logging(config):
    assert isinstance(build_dispatcher(config), LoggingDispatcher)
    config.notify_webhook_url = "https://hooks.example.com/sms"
    assert isinstance(build_dispatcher(config), WebhookDispatcher)


def test_recipients_skip_missing_phones():
    users = [User(id="student1", name="A", phone_number="0911"), User(id="student2", name="B")]
    recipients, missing = recipients_for(users)
    assert [r.name for r in recipients] == ["A"]
    assert missing == 1


def test_substitution_notice_mentions_both_instructors():
    message = substitution_notice("Yoga", "2024-03-10", "10:00", "Amy", "Ben")
    assert "3/10 (Sunday) 10:00" in message
    assert "Ben" in message and "Amy" in message


def _users():
    return [
        User(id="student1", name="Dana"),
        User(id="admin1", name="Owner", role=Role.ADMIN, phone_number="0900000000"),
    ]


def test_payment_notice_goes_to_admins(dispatcher):
    principal = Principal(user_id="student1", role=Role.STUDENT)

    assert notify_admin_payment(dispatcher, principal, _users(), "12345")

    (message, recipients), = dispatcher.sent
    assert "Dana" in message and "12345" in message
    assert [r.phone for r in recipients] == ["0900000000"]


def test_payment_notice_validates_digits(dispatcher):
    principal = Principal(user_id="student1", role=Role.STUDENT)
    with pytest.raises(InvalidInputError):
        notify_admin_payment(dispatcher, principal, _users(), "12a45")


def test_payment_notice_reports_delivery_failure():
    class Down(NotificationDispatcher):
        def dispatch(self, message, recipients):
            raise NotificationDeliveryError("down")

    principal = Principal(user_id="student1", role=Role.STUDENT)
    assert notify_admin_payment(Down(), principal, _users(), "12345") is False


def test_payment_notice_reports_rejected_webhook(monkeypatch):
    monkeypatch.setattr(requests, "post", lambda url, json, timeout: FakeResponse(403, "blocked"))

    principal = Principal(user_id="student1", role=Role.STUDENT)
    dispatcher = WebhookDispatcher("https://hooks.example.com/sms")
    assert notify_admin_payment(dispatcher, principal, _users(), "12345") is False
