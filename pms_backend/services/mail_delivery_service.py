"""
Outbound mail for verification codes.

Codes go out as short plain-text messages. Brevo's transactional API is used
when BREVO_API_KEY is set; SMTP (a Gmail account by default) is the fallback.
"""
import asyncio
import json
import logging
import os
import re
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple

import aiohttp

from ..config import env_bool, env_int


logger = logging.getLogger(__name__)

BREVO_SEND_URL = "https://api.brevo.com/v3/smtp/email"

_INVISIBLE_CHARS = re.compile(
    r"[\u0000-\u001F\u007F\u00A0\u1680\u180E\u2000-\u200F\u2028-\u202F\u205F-\u206F\u3000\uFEFF]"
)
_ADDRESS_SHAPE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def clean_address(raw: Optional[str]) -> str:
    """Trim, drop invisible characters pasted along with the address, lower-case."""
    return _INVISIBLE_CHARS.sub("", str(raw or "").strip()).lower()


def looks_like_address(address: str) -> bool:
    return bool(_ADDRESS_SHAPE.match(address or ""))


class MailDeliveryError(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        provider: str,
        category: str = "delivery_failed",
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.category = category
        self.status_code = status_code


def classify_failure(reason: str, status_code: Optional[int]) -> str:
    text = (reason or "").lower()
    if status_code in {401, 403} or "unauthorized" in text or "authentication" in text:
        return "auth_failed"
    if status_code == 429 or "too many" in text or "rate limit" in text or "quota" in text:
        return "rate_limited"
    if ("recipient" in text or "email" in text) and ("invalid" in text or "malformed" in text):
        return "invalid_recipient"
    return "delivery_failed"


def brevo_error_reason(body: str) -> str:
    try:
        parsed = json.loads(body) if body else {}
    except json.JSONDecodeError:
        parsed = {}
    if isinstance(parsed, dict):
        reason = parsed.get("message") or parsed.get("code")
        if reason:
            return str(reason)
    return (body or "unknown provider error")[:300]


class Mailer(Protocol):
    async def send_email(self, *, to_email: str, subject: str, text_body: str) -> Dict[str, Any]:
        ...


@dataclass(frozen=True)
class OutgoingMail:
    to_email: str
    subject: str
    text_body: str


Transport = Callable[[OutgoingMail], Awaitable[Dict[str, Any]]]


class MailDeliveryService:
    def __init__(self):
        # auto tries Brevo then SMTP; "smtp" skips Brevo entirely.
        self.provider_preference = (os.getenv("EMAIL_PROVIDER") or "auto").strip().lower()

        self.brevo_api_key = (os.getenv("BREVO_API_KEY") or "").strip()
        self.brevo_sender = clean_address(os.getenv("BREVO_FROM_EMAIL") or os.getenv("EMAIL_USER"))
        self.sender_name = (os.getenv("BREVO_FROM_NAME") or "Property Manager").strip()

        # EMAIL_USER / EMAIL_PASS are a Gmail account with an app password.
        self.smtp_host = (os.getenv("SMTP_HOST") or "smtp.gmail.com").strip()
        self.smtp_port = env_int("SMTP_PORT", 587)
        self.smtp_user = (os.getenv("EMAIL_USER") or os.getenv("SMTP_USER") or "").strip()
        self.smtp_pass = (os.getenv("EMAIL_PASS") or os.getenv("SMTP_PASS") or "").strip()
        self.smtp_from = clean_address(os.getenv("SMTP_FROM") or self.smtp_user)
        self.smtp_tls = env_bool("SMTP_TLS", True)

    @property
    def brevo_configured(self) -> bool:
        return bool(self.brevo_api_key and self.brevo_sender)

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_user and self.smtp_pass and self.smtp_from)

    def transports(self) -> List[Tuple[str, Transport]]:
        available: List[Tuple[str, Transport]] = []
        if self.provider_preference != "smtp" and self.brevo_configured:
            available.append(("brevo", self._send_via_brevo))
        if self.smtp_configured:
            available.append(("smtp", self._send_via_smtp))
        return available

    async def send_email(self, *, to_email: str, subject: str, text_body: str) -> Dict[str, Any]:
        recipient = clean_address(to_email)
        if not looks_like_address(recipient):
            raise MailDeliveryError(
                "Invalid recipient email.",
                provider="none",
                category="invalid_recipient",
            )

        transports = self.transports()
        if not transports:
            raise RuntimeError("Email provider is not configured.")

        mail = OutgoingMail(
            to_email=recipient,
            subject=str(subject or "").strip()[:255],
            text_body=str(text_body or "").strip(),
        )
        last_error: Optional[Exception] = None
        for name, send in transports:
            try:
                return await send(mail)
            except MailDeliveryError as exc:
                # Another transport would reject the same recipient.
                if exc.category == "invalid_recipient":
                    raise
                last_error = exc
            except (aiohttp.ClientError, asyncio.TimeoutError, smtplib.SMTPException, OSError) as exc:
                last_error = exc
            logger.warning("Email send via %s failed: %s", name, last_error)

        if isinstance(last_error, MailDeliveryError):
            raise last_error
        raise RuntimeError(f"Email send failed: {last_error}") from last_error

    async def _send_via_brevo(self, mail: OutgoingMail) -> Dict[str, Any]:
        payload = {
            "sender": {"email": self.brevo_sender, "name": self.sender_name},
            "to": [{"email": mail.to_email}],
            "subject": mail.subject,
            "textContent": mail.text_body,
        }
        headers = {"accept": "application/json", "api-key": self.brevo_api_key}
        timeout = aiohttp.ClientTimeout(total=20)
        async with aiohttp.ClientSession(timeout=timeout, headers=headers) as session:
            async with session.post(BREVO_SEND_URL, json=payload) as response:
                if response.status >= 400:
                    reason = brevo_error_reason(await response.text())
                    raise MailDeliveryError(
                        f"Brevo send failed ({response.status}): {reason}",
                        provider="brevo",
                        category=classify_failure(reason, response.status),
                        status_code=response.status,
                    )
                return {"provider": "brevo", "status_code": response.status}

    async def _send_via_smtp(self, mail: OutgoingMail) -> Dict[str, Any]:
        message = EmailMessage()
        message["From"] = self.smtp_from
        message["To"] = mail.to_email
        message["Subject"] = mail.subject
        message.set_content(mail.text_body)

        def _deliver() -> None:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=15) as server:
                if self.smtp_tls:
                    server.starttls()
                server.login(self.smtp_user, self.smtp_pass)
                server.send_message(message)

        try:
            await asyncio.to_thread(_deliver)
        except smtplib.SMTPAuthenticationError as exc:
            raise MailDeliveryError(
                f"SMTP login failed: {exc.smtp_code}",
                provider="smtp",
                category="auth_failed",
                status_code=exc.smtp_code,
            ) from exc
        except smtplib.SMTPRecipientsRefused as exc:
            raise MailDeliveryError(
                "SMTP server refused the recipient.",
                provider="smtp",
                category="invalid_recipient",
            ) from exc
        return {"provider": "smtp", "status_code": 200}
