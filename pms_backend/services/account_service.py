"""
Account creation that follows a successful code check.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from ..config import Settings
from ..exceptions import ConflictError, InvalidInputError
from ..models import Account, NewAccount, ProfileRecord, Role
from .code_flows import CodeVerificationFlow
from .code_store import normalize_subject
from .document_store import DocumentStore
from .identity_provider import IdentityProvider


logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _display_name(first_name: Optional[str], last_name: Optional[str]) -> Optional[str]:
    parts = [str(part).strip() for part in (first_name, last_name) if part and str(part).strip()]
    return " ".join(parts) or None


class AccountService:
    def __init__(
        self,
        identity: IdentityProvider,
        documents: DocumentStore,
        settings: Settings,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.identity = identity
        self.documents = documents
        self.settings = settings
        self._clock = clock

    def _initial_role(self, account: Account) -> Role:
        if account.is_admin or self.settings.is_admin_email(account.email):
            return Role.ADMIN
        return Role.USER

    async def upsert_profile(self, account: Account, display_name: Optional[str] = None) -> None:
        """Mirror ``account`` into its canonical profile, granting the admin claim if due."""
        role = self._initial_role(account)
        if role is Role.ADMIN and not account.is_admin:
            await self.identity.set_custom_claims(account.uid, {"admin": True})

        collection = self.settings.users_collection
        existing = await self.documents.get(collection, account.uid)

        now = self._clock()
        record = ProfileRecord(
            uid=account.uid,
            email=account.email,
            role=role,
            display_name=display_name or account.display_name,
            updated_at=now,
            created_at=now if existing is None else None,
        )
        await self.documents.set(collection, account.uid, record.to_document(), merge=True)

    async def provision_approved_signup(self, email: str, payload: Dict[str, Any]) -> None:
        """
        Create the account for an admin-approved signup and mirror its profile.

        An account that already exists for the email is reused rather than
        treated as an error, so approving twice is harmless.
        """
        if not self.settings.signup_create_account:
            return

        display_name = _display_name(payload.get("firstName"), payload.get("lastName"))
        password = payload.get("password")
        if not password:
            logger.warning("Approved signup for %s carried no password; skipping account creation", email)
            return

        try:
            account = await self.identity.create_user(
                NewAccount(email=email, password=password, display_name=display_name)
            )
        except ConflictError:
            account = await self.identity.get_user_by_email(email)
            if account is None:
                raise
            logger.info("Approved signup for %s reuses existing account %s", email, account.uid)

        await self.upsert_profile(account, display_name)

    async def signup_with_otp(
        self,
        otp_flow: CodeVerificationFlow,
        email: Optional[str],
        password: Optional[str],
        code: Optional[str],
        display_name: Optional[str] = None,
    ) -> Account:
        subject = normalize_subject(email)
        code = str(code or "").strip()
        if not subject or not password or not code:
            raise InvalidInputError("email, password and otp required")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise InvalidInputError(
                f"password must be at least {MIN_PASSWORD_LENGTH} characters"
            )

        # Any code failure ends the request before an account exists.
        await otp_flow.verify(subject, code)

        display_name = str(display_name or "").strip() or None
        account = await self.identity.create_user(
            NewAccount(email=subject, password=password, display_name=display_name)
        )

        try:
            await self.upsert_profile(account, display_name)
        except Exception:
            logger.warning("Profile upsert failed for new account %s", account.uid, exc_info=True)

        logger.info("Account %s created for %s via OTP signup", account.uid, subject)
        return account
