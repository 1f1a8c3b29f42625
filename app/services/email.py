"""Transactional email — SMTP delivery and the client-side sending helper.

SMTPMailer backs the POST /send-email endpoint. send_transactional_email()
is what other services call: it posts to the primary endpoint and falls
back to the platform's send-email function when that endpoint is
unreachable or refuses the message.
"""

import asyncio
import logging
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import formataddr, make_msgid

import httpx

from app.config import ConfigurationError, settings
from app.integrations.supabase_rest import BackendError, SupabaseClient
from app.schemas import SendEmailRequest

logger = logging.getLogger(__name__)

SMTP_TIMEOUT_SECONDS = 20


class EmailDeliveryError(Exception):
    """The message could not be handed to any mail transport."""


class SMTPMailer:
    """Sends mail through the configured SMTP relay.

    Port 465 uses implicit TLS; if that handshake fails the mailer retries
    with STARTTLS on 587, matching how the relay is provisioned.
    """

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        user: str | None = None,
        password: str | None = None,
    ):
        self.host = host if host is not None else settings.smtp_host
        self.port = port if port is not None else settings.smtp_port
        self.user = user if user is not None else settings.smtp_user
        self.password = password if password is not None else settings.smtp_pass

    @property
    def configured(self) -> bool:
        return bool(self.host and self.user and self.password)

    def build_message(self, req: SendEmailRequest, recipient: str) -> EmailMessage:
        from_email = req.from_email or settings.from_email
        msg = EmailMessage()
        msg["From"] = formataddr((req.from_name or settings.from_name, from_email))
        msg["To"] = recipient
        msg["Subject"] = req.subject
        msg["Message-ID"] = make_msgid(domain=from_email.partition("@")[2] or None)
        msg.set_content(req.text or "")
        msg.add_alternative(req.html, subtype="html")
        return msg

    async def send(self, req: SendEmailRequest) -> str:
        """Send one copy per recipient. Returns the first Message-ID."""
        if not self.configured:
            raise ConfigurationError("SMTP is not configured on the server")
        if not req.is_complete():
            raise EmailDeliveryError("Missing 'to', 'subject' or 'html'")

        messages = [self.build_message(req, r) for r in req.recipients]
        try:
            await asyncio.to_thread(self._deliver, messages)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("SMTP send failed | host=%s | %s", self.host, str(e)[:200])
            raise EmailDeliveryError(str(e) or type(e).__name__) from e

        logger.info("Email sent | recipients=%d | subject=%s", len(messages), req.subject[:60])
        return messages[0]["Message-ID"]

    def _deliver(self, messages: list[EmailMessage]):
        try:
            smtp = self._connect_tls() if self.port == 465 else self._connect_starttls(self.port)
        except (smtplib.SMTPException, OSError) as e:
            if self.port != 465:
                raise
            logger.warning("SMTP TLS connect failed, trying STARTTLS | %s", str(e)[:100])
            smtp = self._connect_starttls(587)

        with smtp:
            smtp.login(self.user, self.password)
            for msg in messages:
                smtp.send_message(msg)

    def _connect_tls(self) -> smtplib.SMTP:
        return smtplib.SMTP_SSL(
            self.host, self.port, timeout=SMTP_TIMEOUT_SECONDS, context=ssl.create_default_context(),
        )

    def _connect_starttls(self, port: int) -> smtplib.SMTP:
        smtp = smtplib.SMTP(self.host, port, timeout=SMTP_TIMEOUT_SECONDS)
        try:
            smtp.starttls(context=ssl.create_default_context())
        except (smtplib.SMTPException, OSError):
            smtp.close()
            raise
        return smtp


async def send_transactional_email(
    req: SendEmailRequest,
    supabase: SupabaseClient | None = None,
) -> dict:
    """Primary SMTP endpoint first, platform function as fallback."""
    body = req.model_dump(by_alias=True, exclude_none=True)

    try:
        async with httpx.AsyncClient(timeout=settings.request_timeout) as client:
            resp = await client.post(settings.smtp_endpoint, json=body)
        if resp.status_code >= 400:
            raise EmailDeliveryError(_response_error(resp))
        return resp.json()
    except (httpx.HTTPError, EmailDeliveryError, ValueError) as e:
        logger.warning("Email endpoint failed — using send-email function | %s", str(e)[:200])

    if supabase is None:
        raise EmailDeliveryError("Email send failed")

    try:
        data = await supabase.invoke_function("send-email", body)
    except BackendError as e:
        raise EmailDeliveryError(str(e) or "Email send failed") from e
    if isinstance(data, dict) and data.get("error"):
        raise EmailDeliveryError(str(data["error"]))
    return data


def _response_error(resp: httpx.Response) -> str:
    try:
        err = resp.json().get("error")
    except (ValueError, AttributeError):
        err = None
    return err or f"HTTP {resp.status_code}"
