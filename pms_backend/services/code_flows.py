"""
Issuing and verifying one-time codes.

Both the admin-approved signup and the plain OTP check are the same two
flows configured differently: who receives the code, which fields are
required, and what happens after a code is accepted.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from ..exceptions import (
    CodeExpiredError,
    CodeMismatchError,
    CodeNotFoundError,
    DispatchFailedError,
    InvalidInputError,
)
from .code_store import VerificationCodeStore, normalize_subject
from .mail_delivery_service import Mailer


logger = logging.getLogger(__name__)

RECIPIENT_ADMIN = "admin"
RECIPIENT_SUBJECT = "subject"

OnVerified = Callable[[str, Dict[str, Any]], Awaitable[None]]


@dataclass(frozen=True)
class FlowMessages:
    missing_issue_fields: str
    missing_verify_fields: str
    sent: str
    dispatch_failed: str
    not_found: str
    expired: str
    mismatch: str
    verified: str


@dataclass(frozen=True)
class FlowSettings:
    name: str
    recipient_mode: str
    messages: FlowMessages
    mail_subject: str
    mail_text: str
    required_fields: Tuple[str, ...] = ()
    admin_recipient: Optional[str] = None

    def recipient_for(self, email: str) -> str:
        if self.recipient_mode == RECIPIENT_ADMIN:
            if not self.admin_recipient:
                raise DispatchFailedError(self.messages.dispatch_failed)
            return self.admin_recipient
        return email


SIGNUP_APPROVAL_MESSAGES = FlowMessages(
    missing_issue_fields="Email and password are required.",
    missing_verify_fields="Email and code are required.",
    sent="Authorization code sent to admin.",
    dispatch_failed="Internal Server Error",
    not_found="No authorization code found for this email.",
    expired="Authorization code has expired. Please request a new one.",
    mismatch="Invalid authorization code.",
    verified="Authorization code verified.",
)

OTP_MESSAGES = FlowMessages(
    missing_issue_fields="Email is required.",
    missing_verify_fields="Missing email or OTP.",
    sent="OTP sent successfully.",
    dispatch_failed="Failed to send OTP.",
    not_found="No OTP found for this email.",
    expired="OTP expired. Please request a new one.",
    mismatch="Invalid OTP.",
    verified="OTP verified successfully.",
)


def signup_approval_settings(admin_recipient: Optional[str]) -> FlowSettings:
    return FlowSettings(
        name="signup_approval",
        recipient_mode=RECIPIENT_ADMIN,
        admin_recipient=admin_recipient,
        required_fields=("password",),
        messages=SIGNUP_APPROVAL_MESSAGES,
        mail_subject="New User Authorization Code",
        mail_text="Authorization code for user {email}: {code}",
    )


def otp_settings(ttl_seconds: int) -> FlowSettings:
    minutes = max(1, ttl_seconds // 60)
    return FlowSettings(
        name="otp",
        recipient_mode=RECIPIENT_SUBJECT,
        messages=OTP_MESSAGES,
        mail_subject="Your OTP Code",
        mail_text=f"Your OTP is {{code}}. It is valid for {minutes} minutes.",
    )


def _clean(value: Optional[str]) -> str:
    return str(value or "").strip()


class CodeIssuanceFlow:
    def __init__(self, store: VerificationCodeStore, mailer: Mailer, settings: FlowSettings):
        self.store = store
        self.mailer = mailer
        self.settings = settings

    async def issue(
        self,
        email: Optional[str],
        password: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> None:
        messages = self.settings.messages
        subject = normalize_subject(email)
        fields = {"password": _clean(password)}
        if not subject or any(not fields[name] for name in self.settings.required_fields):
            raise InvalidInputError(messages.missing_issue_fields)

        payload: Dict[str, Any] = {}
        # Passwords are kept verbatim; only emptiness is judged on the trimmed value.
        if password and fields["password"]:
            payload["password"] = password
        if _clean(first_name):
            payload["firstName"] = _clean(first_name)
        if _clean(last_name):
            payload["lastName"] = _clean(last_name)

        code = await self.store.issue(subject, payload)

        # The record stays in the store whether or not the mail goes out.
        try:
            await self.mailer.send_email(
                to_email=self.settings.recipient_for(subject),
                subject=self.settings.mail_subject,
                text_body=self.settings.mail_text.format(email=subject, code=code),
            )
        except DispatchFailedError:
            logger.error("[%s] No recipient configured for %s", self.settings.name, subject)
            raise
        except Exception as exc:
            logger.error("[%s] Code dispatch failed for %s: %s", self.settings.name, subject, exc)
            raise DispatchFailedError(messages.dispatch_failed) from exc

        logger.info("[%s] Code issued for %s", self.settings.name, subject)


class CodeVerificationFlow:
    def __init__(
        self,
        store: VerificationCodeStore,
        settings: FlowSettings,
        on_verified: Optional[OnVerified] = None,
    ):
        self.store = store
        self.settings = settings
        self.on_verified = on_verified

    async def verify(self, email: Optional[str], code: Optional[str]) -> Dict[str, Any]:
        messages = self.settings.messages
        subject = normalize_subject(email)
        if not subject or not _clean(code):
            raise InvalidInputError(messages.missing_verify_fields)

        try:
            payload = await self.store.verify(subject, code or "")
        except CodeNotFoundError as exc:
            raise CodeNotFoundError(messages.not_found) from exc
        except CodeExpiredError as exc:
            raise CodeExpiredError(messages.expired) from exc
        except CodeMismatchError as exc:
            raise CodeMismatchError(messages.mismatch) from exc

        logger.info("[%s] Code verified for %s", self.settings.name, subject)

        if self.on_verified is not None:
            # The code is already spent, so follow-up failures cannot undo success.
            try:
                await self.on_verified(subject, payload)
            except Exception:
                logger.exception("[%s] Post-verification step failed for %s", self.settings.name, subject)

        return payload
