"""
Identity provider boundary.

The flows depend on ``IdentityProvider``; ``FirebaseIdentityProvider`` is the
production implementation on top of the Firebase Admin SDK. Admin SDK calls
are blocking, so each one runs in a worker thread.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from firebase_admin import auth as firebase_auth

from ..exceptions import ConflictError, InvalidInputError
from ..models import Account, NewAccount
from ..utils.firestore_client import init_firebase


logger = logging.getLogger(__name__)


@runtime_checkable
class IdentityProvider(Protocol):
    async def get_user(self, uid: str) -> Optional[Account]:
        """Return the account for ``uid``, or None if it does not exist."""
        ...

    async def get_user_by_email(self, email: str) -> Optional[Account]:
        ...

    async def create_user(self, new_account: NewAccount) -> Account:
        """Create an account. Raises ConflictError if the email is taken."""
        ...

    async def delete_user(self, uid: str) -> bool:
        """Delete an account. Returns False if it was already absent."""
        ...

    async def set_custom_claims(self, uid: str, claims: Dict[str, Any]) -> None:
        ...

    async def revoke_sessions(self, uid: str) -> None:
        ...


def _to_account(record: Any) -> Account:
    claims = getattr(record, "custom_claims", None) or {}
    return Account(
        uid=record.uid,
        email=record.email,
        is_admin=bool(claims.get("admin")),
        display_name=record.display_name,
        disabled=bool(record.disabled),
    )


class FirebaseIdentityProvider:
    async def _call(self, fn, *args, **kwargs):
        def _run():
            init_firebase()
            return fn(*args, **kwargs)

        return await asyncio.to_thread(_run)

    async def get_user(self, uid: str) -> Optional[Account]:
        try:
            record = await self._call(firebase_auth.get_user, uid)
        except firebase_auth.UserNotFoundError:
            return None
        except ValueError:
            logger.info("Malformed uid treated as unknown account")
            return None
        return _to_account(record)

    async def get_user_by_email(self, email: str) -> Optional[Account]:
        try:
            record = await self._call(firebase_auth.get_user_by_email, email)
        except firebase_auth.UserNotFoundError:
            return None
        except ValueError as exc:
            raise InvalidInputError("Invalid email.") from exc
        return _to_account(record)

    async def create_user(self, new_account: NewAccount) -> Account:
        kwargs: Dict[str, Any] = {
            "email": new_account.email,
            "password": new_account.password,
        }
        if new_account.display_name:
            kwargs["display_name"] = new_account.display_name
        try:
            record = await self._call(firebase_auth.create_user, **kwargs)
        except firebase_auth.EmailAlreadyExistsError as exc:
            raise ConflictError("Account already exists") from exc
        except ValueError as exc:
            # The SDK validates email/password/display name locally.
            raise InvalidInputError(str(exc)) from exc
        logger.info("Created account %s for %s", record.uid, new_account.email)
        return _to_account(record)

    async def delete_user(self, uid: str) -> bool:
        try:
            await self._call(firebase_auth.delete_user, uid)
        except firebase_auth.UserNotFoundError:
            return False
        return True

    async def set_custom_claims(self, uid: str, claims: Dict[str, Any]) -> None:
        await self._call(firebase_auth.set_custom_user_claims, uid, claims)

    async def revoke_sessions(self, uid: str) -> None:
        await self._call(firebase_auth.revoke_refresh_tokens, uid)
