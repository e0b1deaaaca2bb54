"""Order confirmation e-mails over SMTP."""

from __future__ import annotations

import asyncio
import html
import logging
import smtplib
from dataclasses import dataclass
from datetime import datetime
from email.message import EmailMessage
from typing import Optional
from zoneinfo import ZoneInfo

from ...config import settings

SUBJECT = "Your order is confirmed"

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class OrderEmailDetails:
    order_id: str
    pickup_address: str
    dropoff_address: str
    time: datetime
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None


def render_order_email(details: OrderEmailDetails, tz: ZoneInfo) -> tuple[str, str]:
    """Return (plain text, HTML) bodies for a confirmation."""
    when = details.time.astimezone(tz) if details.time.tzinfo else details.time
    formatted_time = when.strftime("%d.%m.%Y %H:%M")
    driver = details.driver_name or "to be assigned"
    lines = [
        f"Order #{details.order_id} is confirmed.",
        f"Pickup: {details.pickup_address}",
        f"Drop-off: {details.dropoff_address}",
        f"Time: {formatted_time}",
        f"Driver: {driver}",
    ]
    if details.driver_phone:
        lines.append(f"Driver phone: {details.driver_phone}")
    text = "\n".join(lines)
    body = "".join(f"<p>{html.escape(line)}</p>" for line in lines)
    return text, f"<html><body>{body}</body></html>"


class EmailNotifier:
    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        user: str | None = None,
        password: str | None = None,
        sender: str | None = None,
        tz: str | None = None,
    ) -> None:
        self.host = host or settings.smtp_host
        if not self.host:
            raise ValueError("SMTP host is not configured.")
        self.port = port or settings.smtp_port
        self.user = user if user is not None else settings.smtp_user
        self.password = password if password is not None else settings.smtp_password
        self.sender = sender or settings.smtp_sender or self.user
        self.tz = ZoneInfo(tz or settings.timezone)

    def build_message(self, recipient: str, details: OrderEmailDetails) -> EmailMessage:
        text, html_body = render_order_email(details, self.tz)
        message = EmailMessage()
        message["Subject"] = SUBJECT
        message["From"] = self.sender or ""
        message["To"] = recipient
        message.set_content(text)
        message.add_alternative(html_body, subtype="html")
        return message

    def _deliver(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=10) as smtp:
            smtp.starttls()
            if self.user:
                smtp.login(self.user, self.password or "")
            smtp.send_message(message)

    async def send_order_email(self, recipient: str, details: OrderEmailDetails) -> None:
        message = self.build_message(recipient, details)
        await asyncio.to_thread(self._deliver, message)
        logger.info(f"Confirmation e-mail for order {details.order_id} sent to {recipient}")
