"""
Guest emails for confirmed and cancelled bookings.

Sending is best effort: a missing SMTP configuration or a refused connection
is logged and reported as False, never raised into the booking flow.
"""

import logging
import smtplib
from dataclasses import dataclass
from datetime import datetime, timezone
from email.message import EmailMessage
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..config import get_settings
from ..models.booking import Booking
from ..models.booking_item import BookingItem, BookingItemType
from ..models.event import Event
from ..models.session import Session

logger = logging.getLogger(__name__)

DATE_FORMAT = "%B %d, %Y at %I:%M %p"


@dataclass(frozen=True)
class Notice:
    subject: str
    heading: str
    intro: str


CONFIRMATION = Notice("Booking Confirmation", "Booking Confirmed!", "Your booking is confirmed.")
CANCELLATION = Notice("Booking Cancellation", "Booking Cancelled", "Your booking has been cancelled.")


class NotificationService:

    def __init__(self, db: AsyncSession):
        self.db = db
        self.settings = get_settings()

    async def send_booking_confirmation(self, booking_id: UUID) -> bool:
        return await self._notify(booking_id, CONFIRMATION)

    async def send_booking_cancellation(self, booking_id: UUID) -> bool:
        return await self._notify(
            booking_id,
            CANCELLATION,
            cancellation_date=datetime.now(timezone.utc).strftime(DATE_FORMAT),
        )

    async def _notify(self, booking_id: UUID, notice: Notice, **extra: Any) -> bool:
        booking = await self._get_booking_with_details(booking_id)
        if booking is None:
            logger.error(f"Cannot notify for booking {booking_id}: not found")
            return False

        data = self.build_template_data(booking)
        data.update(extra)

        message = EmailMessage()
        message["Subject"] = f"{notice.subject} - {data['experience_name']}"
        message["From"] = self.settings.smtp_username or ""
        message["To"] = booking.guest.email
        message.set_content(render_text(notice, data))
        message.add_alternative(render_html(notice, data), subtype="html")

        sent = self._deliver(message)
        if sent:
            logger.info(f"{notice.subject} sent for booking {booking_id}")
        return sent

    def build_template_data(self, booking: Booking) -> Dict[str, Any]:
        """Flatten a booking into the values the email bodies use."""
        session = booking.session

        lines = []
        for item in booking.items:
            if item.item_type == BookingItemType.SESSION:
                label = "Tickets"
            else:
                label = item.add_on.name if item.add_on else "Add-on"
            lines.append({
                "label": label,
                "quantity": item.quantity,
                "unit_price": f"${item.unit_price:.2f}",
                "total_price": f"${item.total_price:.2f}",
            })

        return {
            "guest_name": booking.guest.full_name,
            "experience_name": session.event.experience.name,
            "event_name": session.event.name,
            "session_start": session.start_time.strftime(DATE_FORMAT),
            "quantity": booking.quantity,
            "total": f"${booking.total:.2f}",
            "booking_id": str(booking.id),
            "lines": lines,
        }

    def _deliver(self, message: EmailMessage) -> bool:
        settings = self.settings
        if not settings.smtp_server or not settings.smtp_username:
            logger.warning("SMTP is not configured, skipping guest email")
            return False

        try:
            with smtplib.SMTP(settings.smtp_server, settings.smtp_port) as server:
                if settings.smtp_use_tls:
                    server.starttls()
                server.login(settings.smtp_username, settings.smtp_password)
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send '{message['Subject']}': {e}")
            return False
        return True

    async def _get_booking_with_details(self, booking_id: UUID) -> Optional[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.id == booking_id)
            .options(
                selectinload(Booking.guest),
                selectinload(Booking.items).selectinload(BookingItem.add_on),
                selectinload(Booking.session)
                .selectinload(Session.event)
                .selectinload(Event.experience),
            )
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()


def render_text(notice: Notice, data: Dict[str, Any]) -> str:
    parts = [
        notice.heading.upper().rstrip("!"),
        "",
        f"Dear {data['guest_name']},",
        notice.intro,
        "",
        f"Experience: {data['experience_name']}",
        f"Event: {data['event_name']}",
        f"Session: {data['session_start']}",
        "",
    ]
    parts.extend(
        f"  {line['label']}: {line['quantity']} x {line['unit_price']} = {line['total_price']}"
        for line in data["lines"]
    )
    parts += ["", f"Total: {data['total']}", f"Booking ID: {data['booking_id']}"]
    if "cancellation_date" in data:
        parts.append(f"Cancelled on: {data['cancellation_date']}")
    return "\n".join(parts) + "\n"


def render_html(notice: Notice, data: Dict[str, Any]) -> str:
    rows = "".join(
        f"<tr><td>{line['label']}</td><td>{line['quantity']}</td>"
        f"<td>{line['unit_price']}</td><td>{line['total_price']}</td></tr>"
        for line in data["lines"]
    )
    cancelled = ""
    if "cancellation_date" in data:
        cancelled = f"<p><strong>Cancelled on:</strong> {data['cancellation_date']}</p>"

    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{notice.heading}</title></head>
<body style="font-family: Arial, sans-serif; color: #333;">
  <div style="max-width: 600px; margin: 0 auto;">
    <h1 style="background: #2E7D6B; color: white; padding: 20px; text-align: center;">{notice.heading}</h1>
    <p>Dear {data['guest_name']},</p>
    <p>{notice.intro}</p>
    <p><strong>Experience:</strong> {data['experience_name']}<br>
       <strong>Event:</strong> {data['event_name']}<br>
       <strong>Session:</strong> {data['session_start']}</p>
    <table style="width: 100%; border-collapse: collapse;">
      <tr><th align="left">Item</th><th align="left">Qty</th><th align="left">Unit</th><th align="left">Total</th></tr>
      {rows}
    </table>
    <p><strong>Total:</strong> {data['total']}</p>
    <p><strong>Booking ID:</strong> {data['booking_id']}</p>
    {cancelled}
  </div>
</body>
</html>
"""
