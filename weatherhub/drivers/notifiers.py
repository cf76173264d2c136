from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from typing import Sequence

import httpx

from ..domain.errors import DeliveryError

logger = logging.getLogger(__name__)


class LogNotifier:
    """Writes alerts to the log only (default / development)."""

    async def notify(self, subject: str, body: str) -> None:
        logger.warning("ALERT %s: %s", subject, body)


class WebhookNotifier:
    """Posts alerts as JSON to a distribution webhook (chat room, mailing relay, ...)."""

    def __init__(self, url: str, timeout: float = 5.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._url = url
        self._timeout = timeout
        self._transport = transport

    async def notify(self, subject: str, body: str) -> None:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(self._url, json={"subject": subject, "body": body})
                resp.raise_for_status()
        except httpx.HTTPError as e:
            raise DeliveryError(f"Webhook delivery to {self._url} failed: {e}") from e
        logger.info("Alert posted to webhook: %s", subject)


class SmtpNotifier:
    """E-mails every alert to a fixed recipient list."""

    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        recipients: Sequence[str],
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self._host = host
        self._port = port
        self._sender = sender
        self._recipients = list(recipients)
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._timeout = timeout

    def _send(self, msg: EmailMessage) -> dict:
        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as smtp:
            if self._use_tls:
                smtp.starttls()
            if self._username:
                smtp.login(self._username, self._password)
            return smtp.send_message(msg, to_addrs=self._recipients)

    async def notify(self, subject: str, body: str) -> None:
        if not self._recipients:
            logger.info("No alert recipients configured, skipping: %s", subject)
            return

        msg = EmailMessage()
        msg["From"] = self._sender
        msg["To"] = ", ".join(self._recipients)
        msg["Subject"] = subject
        msg.set_content(body)

        loop = asyncio.get_running_loop()
        try:
            refused = await loop.run_in_executor(None, self._send, msg)
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryError(f"SMTP delivery via {self._host} failed: {e}") from e

        for addr, reason in refused.items():
            logger.warning("Alert refused for %s: %s", addr, reason)
        logger.info("Alert e-mailed to %d recipient(s): %s", len(self._recipients) - len(refused), subject)
