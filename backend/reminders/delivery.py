"""Follow-up delivery transports.

The reminder scheduler only needs ``send_message`` returning a message
id or raising DeliveryError. EmailDelivery is the SMTP implementation.
"""

import asyncio
import smtplib
from abc import ABC, abstractmethod
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import Callable, Optional

import structlog

from core.exceptions import DeliveryError
from reminders.templates import to_html

logger = structlog.get_logger(__name__)


class MessageDelivery(ABC):
    """Abstract delivery transport."""

    @abstractmethod
    async def send_message(
        self,
        to: str,
        subject: str,
        body: str,
        html_body: Optional[str] = None,
    ) -> str:
        """Send a message and return its transport message id.

        Raises:
            DeliveryError: if the message was not accepted
        """
        ...


class EmailDelivery(MessageDelivery):
    """Send follow-ups via SMTP email.

    Config:
        smtp_host, smtp_port, smtp_user, smtp_password,
        from_address, use_tls
    """

    def __init__(self, config: dict = None, smtp_factory: Callable = smtplib.SMTP):
        self.config = config or {}
        self._smtp_factory = smtp_factory

    def build_message(
        self, to: str, subject: str, body: str, html_body: Optional[str]
    ) -> MIMEMultipart:
        from_addr = self.config.get("from_address", "reminders@localhost")
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = from_addr
        msg["To"] = to
        msg["Message-ID"] = make_msgid(domain=from_addr.rpartition("@")[2] or None)

        msg.attach(MIMEText(body, "plain"))
        if html_body:
            msg.attach(MIMEText(html_body, "html"))
        return msg

    async def send_message(
        self,
        to: str,
        subject: str,
        body: str,
        html_body: Optional[str] = None,
    ) -> str:
        if not to:
            raise DeliveryError("Recipient address is empty", recipient=to)

        msg = self.build_message(to, subject, body, html_body)

        # Send via SMTP (run in executor to avoid blocking)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, lambda: self._send_smtp(to, msg))
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("email_send_failed", recipient=to, error=str(exc))
            raise DeliveryError(f"SMTP delivery failed: {exc}", recipient=to) from exc

        return msg["Message-ID"]

    def _send_smtp(self, to_addr: str, msg: MIMEMultipart) -> None:
        """Synchronous SMTP send."""
        host = self.config.get("smtp_host", "localhost")
        port = self.config.get("smtp_port", 587)
        user = self.config.get("smtp_user", "")
        password = self.config.get("smtp_password", "")

        with self._smtp_factory(host, port) as server:
            if self.config.get("use_tls", True):
                server.starttls()
            if user and password:
                server.login(user, password)
            server.sendmail(msg["From"], to_addr, msg.as_string())


async def send_with_timeout(
    delivery: MessageDelivery, to: str, subject: str, body: str, timeout: float
) -> str:
    """Send through ``delivery``; a timeout is reported as DeliveryError."""
    try:
        return await asyncio.wait_for(
            delivery.send_message(to, subject, body, to_html(body)),
            timeout=timeout,
        )
    except asyncio.TimeoutError as exc:
        raise DeliveryError("Delivery timed out", recipient=to) from exc
