"""Tests for booking emails and log sanitising."""

import logging
import smtplib

from experience_booking_platform.services.booking_ledger import BookingLedger
from experience_booking_platform.services.notification_service import NotificationService
from experience_booking_platform.utils.logging_config import JSONFormatter, SensitiveDataFilter


class FakeSMTP:
    sent = []

    def __init__(self, host, port):
        self.host = host
        self.port = port

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        pass

    def login(self, username, password):
        pass

    def send_message(self, msg):
        FakeSMTP.sent.append(msg)


async def _booking(session_factory, seed):
    async with session_factory() as db:
        return await BookingLedger(db).create_booking(
            seed.business_id, seed.session_id, seed.guest_id, 2, [seed.wine_id]
        )


async def test_template_data_lists_every_line(session_factory, seed):
    booking = await _booking(session_factory, seed)

    async with session_factory() as db:
        service = NotificationService(db)
        data = service.build_template_data(await service._get_booking_with_details(booking.id))

    assert data["guest_name"] == "Ada Lovelace"
    assert data["experience_name"] == "Sunset Cruise"
    assert data["total"] == "$45.90"
    assert [line["label"] for line in data["lines"]] == ["Tickets", "Wine"]


async def test_confirmation_skipped_without_smtp(session_factory, seed):
    booking = await _booking(session_factory, seed)

    async with session_factory() as db:
        assert await NotificationService(db).send_booking_confirmation(booking.id) is False


async def test_cancellation_email_is_sent(session_factory, seed, monkeypatch):
    booking = await _booking(session_factory, seed)
    FakeSMTP.sent = []
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)

    async with session_factory() as db:
        service = NotificationService(db)
        monkeypatch.setattr(service.settings, "smtp_server", "smtp.example.com")
        monkeypatch.setattr(service.settings, "smtp_username", "bookings@example.com")
        assert await service.send_booking_cancellation(booking.id) is True

    message = FakeSMTP.sent[0]
    assert message["To"] == "ada@example.com"
    assert message["Subject"] == "Booking Cancellation - Sunset Cruise"


def test_sensitive_data_filter_masks_emails_and_secrets():
    record = logging.LogRecord("test", logging.INFO, __file__, 1, "Guest ada@example.com booked", None, None)
    record.details = {"token": "abc", "nested": {"email": "grace@example.com"}}

    SensitiveDataFilter().filter(record)

    assert record.msg == "Guest ***EMAIL*** booked"
    assert record.details == {"token": "***MASKED***", "nested": {"email": "***EMAIL***"}}


def test_json_formatter_includes_extra_fields():
    record = logging.LogRecord("test", logging.INFO, __file__, 1, "Booking created", None, None)
    record.booking_id = "b-1"

    formatted = JSONFormatter().format(record)

    assert '"message": "Booking created"' in formatted
    assert '"booking_id": "b-1"' in formatted
