"""
Role assignment and account deletion.

The identity provider's custom claim and the mirrored profile documents are
not updated transactionally. Mutations therefore run as an ordered sequence
of steps and report the step that failed; re-running a request converges.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set

from ..config import Settings
from ..exceptions import (
    AccountNotFoundError,
    ForbiddenError,
    InvalidInputError,
    PartialFailureError,
)
from ..models import Account, ProfileRecord, Role
from .document_store import BatchOperation, DocumentStore
from .identity_provider import IdentityProvider


logger = logging.getLogger(__name__)

STEP_SET_CLAIMS = "set_claims"
STEP_REVOKE_SESSIONS = "revoke_sessions"
STEP_WRITE_PROFILE = "write_profile"
STEP_RECONCILE_LEGACY = "reconcile_legacy"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _clean(value: Optional[str]) -> str:
    return str(value or "").strip()


class RoleService:
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

    @property
    def collection(self) -> str:
        return self.settings.users_collection

    async def resolve_account(self, uid: Optional[str] = None, email: Optional[str] = None) -> Account:
        """Look up by uid first; fall back to email only when one was given."""
        uid = _clean(uid)
        email = _clean(email).lower()
        if not uid and not email:
            raise InvalidInputError("uid or email required")

        if uid:
            account = await self.identity.get_user(uid)
            if account is not None:
                return account
            if not email:
                raise AccountNotFoundError()

        account = await self.identity.get_user_by_email(email)
        if account is None:
            raise AccountNotFoundError()
        return account

    async def _legacy_document_ids(self, account: Account) -> List[str]:
        """Ids of documents that describe ``account`` but are not its canonical doc."""
        lookups = [self.documents.query_where(self.collection, "uid", account.uid)]
        if account.email:
            lookups.append(self.documents.query_where(self.collection, "email", account.email))
        results = await asyncio.gather(*lookups)

        seen: Set[str] = {account.uid}
        doc_ids: List[str] = []
        for matches in results:
            for doc_id, _data in matches:
                if doc_id not in seen:
                    seen.add(doc_id)
                    doc_ids.append(doc_id)
        return doc_ids

    async def set_role(
        self,
        uid: Optional[str] = None,
        email: Optional[str] = None,
        role: Optional[str] = None,
    ) -> Account:
        target_role = Role.parse(role)
        if target_role is None:
            raise InvalidInputError('role must be "admin" or "user"')

        account = await self.resolve_account(uid, email)

        if self.settings.is_protected_email(account.email) and target_role is not Role.ADMIN:
            raise ForbiddenError("Protected admin cannot be demoted")

        is_admin = target_role is Role.ADMIN
        try:
            await self.identity.set_custom_claims(account.uid, {"admin": is_admin})
        except Exception as exc:
            raise PartialFailureError(STEP_SET_CLAIMS, exc) from exc

        # Existing sessions would keep the old claim until their tokens expire.
        try:
            await self.identity.revoke_sessions(account.uid)
        except Exception as exc:
            raise PartialFailureError(STEP_REVOKE_SESSIONS, exc) from exc

        fields: Dict[str, object] = ProfileRecord(
            uid=account.uid,
            email=account.email,
            role=target_role,
            updated_at=self._clock(),
        ).to_document()
        try:
            await self.documents.set(self.collection, account.uid, fields, merge=True)
        except Exception as exc:
            raise PartialFailureError(STEP_WRITE_PROFILE, exc) from exc

        try:
            legacy_ids = await self._legacy_document_ids(account)
            if legacy_ids:
                await self.documents.commit_batch(
                    [BatchOperation.set(self.collection, doc_id, fields) for doc_id in legacy_ids]
                )
        except Exception as exc:
            raise PartialFailureError(STEP_RECONCILE_LEGACY, exc) from exc

        logger.info(
            "Role for %s (%s) set to %s; %d legacy profile(s) reconciled",
            account.uid,
            account.email,
            target_role.value,
            len(legacy_ids),
        )
        return account

    async def delete_user(self, uid: Optional[str] = None, email: Optional[str] = None) -> Account:
        account = await self.resolve_account(uid, email)

        if self.settings.is_protected_email(account.email):
            raise ForbiddenError("Protected admin cannot be deleted")

        existed = await self.identity.delete_user(account.uid)
        if not existed:
            logger.info("Account %s was already absent from the identity provider", account.uid)

        # Profile cleanup is advisory; the identity provider is the source of truth.
        try:
            doc_ids = [account.uid] + await self._legacy_document_ids(account)
            await self.documents.commit_batch(
                [BatchOperation.delete(self.collection, doc_id) for doc_id in doc_ids]
            )
        except Exception:
            logger.warning("Profile cleanup failed for %s", account.uid, exc_info=True)

        logger.info("Deleted account %s (%s)", account.uid, account.email)
        return account
