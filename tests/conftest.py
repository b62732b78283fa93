import copy
import itertools
import re
from typing import Any, Dict, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient

from pms_backend.config import Settings
from pms_backend.dependencies import ServiceContainer
from pms_backend.exceptions import ConflictError
from pms_backend.main import create_app
from pms_backend.models import Account, NewAccount
from pms_backend.services.document_store import BatchOperation
from pms_backend.services.mail_delivery_service import MailDeliveryError


ADMIN_EMAIL = "owner@example.com"
ADMIN_KEY = "s3cret-admin-key"


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeIdentityProvider:
    def __init__(self):
        self.accounts: Dict[str, Account] = {}
        self.passwords: Dict[str, str] = {}
        self.revoked: List[str] = []
        self.calls: List[Tuple[str, str]] = []
        self.failures: Dict[str, Exception] = {}
        self._ids = itertools.count(1)

    def add(self, email: str, *, uid: Optional[str] = None, is_admin: bool = False) -> Account:
        account = Account(uid=uid or f"uid-{next(self._ids)}", email=email, is_admin=is_admin)
        self.accounts[account.uid] = account
        return account

    def _maybe_fail(self, name: str) -> None:
        if name in self.failures:
            raise self.failures[name]

    async def get_user(self, uid: str) -> Optional[Account]:
        self.calls.append(("get_user", uid))
        return self.accounts.get(uid)

    async def get_user_by_email(self, email: str) -> Optional[Account]:
        self.calls.append(("get_user_by_email", email))
        for account in self.accounts.values():
            if account.normalized_email == email.strip().lower():
                return account
        return None

    async def create_user(self, new_account: NewAccount) -> Account:
        self.calls.append(("create_user", new_account.email))
        self._maybe_fail("create_user")
        if await self.get_user_by_email(new_account.email) is not None:
            raise ConflictError("Account already exists")
        account = self.add(new_account.email)
        account = account.model_copy(update={"display_name": new_account.display_name})
        self.accounts[account.uid] = account
        self.passwords[account.uid] = new_account.password
        return account

    async def delete_user(self, uid: str) -> bool:
        self.calls.append(("delete_user", uid))
        self._maybe_fail("delete_user")
        return self.accounts.pop(uid, None) is not None

    async def set_custom_claims(self, uid: str, claims: Dict[str, Any]) -> None:
        self.calls.append(("set_custom_claims", uid))
        self._maybe_fail("set_custom_claims")
        account = self.accounts[uid]
        self.accounts[uid] = account.model_copy(update={"is_admin": bool(claims.get("admin"))})

    async def revoke_sessions(self, uid: str) -> None:
        self.calls.append(("revoke_sessions", uid))
        self._maybe_fail("revoke_sessions")
        self.revoked.append(uid)

    def mutations(self) -> List[Tuple[str, str]]:
        return [call for call in self.calls if not call[0].startswith("get_user")]


class InMemoryDocumentStore:
    def __init__(self):
        self.collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.batches: List[List[BatchOperation]] = []
        self.failures: Dict[str, Exception] = {}
        self._ids = itertools.count(1)

    def _docs(self, collection: str) -> Dict[str, Dict[str, Any]]:
        return self.collections.setdefault(collection, {})

    def add(self, collection: str, fields: Dict[str, Any], doc_id: Optional[str] = None) -> str:
        doc_id = doc_id or f"auto-{next(self._ids)}"
        self._docs(collection)[doc_id] = dict(fields)
        return doc_id

    def _maybe_fail(self, name: str) -> None:
        if name in self.failures:
            raise self.failures[name]

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        doc = self._docs(collection).get(doc_id)
        return dict(doc) if doc is not None else None

    async def set(self, collection: str, doc_id: str, fields: Dict[str, Any], merge: bool = True) -> None:
        self._maybe_fail("set")
        docs = self._docs(collection)
        if merge and doc_id in docs:
            docs[doc_id].update(fields)
        else:
            docs[doc_id] = dict(fields)

    async def delete(self, collection: str, doc_id: str) -> None:
        self._docs(collection).pop(doc_id, None)

    async def query_where(self, collection: str, field_name: str, value: Any) -> List[Tuple[str, Dict[str, Any]]]:
        self._maybe_fail("query_where")
        return [
            (doc_id, dict(data))
            for doc_id, data in self._docs(collection).items()
            if data.get(field_name) == value
        ]

    async def commit_batch(self, operations: List[BatchOperation]) -> None:
        self._maybe_fail("commit_batch")
        staged = copy.deepcopy(self.collections)
        for op in operations:
            docs = staged.setdefault(op.collection, {})
            if op.kind == "set":
                if op.merge and op.doc_id in docs:
                    docs[op.doc_id].update(op.fields)
                else:
                    docs[op.doc_id] = dict(op.fields)
            else:
                docs.pop(op.doc_id, None)
        self.collections = staged
        self.batches.append(list(operations))


class RecordingMailer:
    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.fail = False

    async def send_email(self, *, to_email: str, subject: str, text_body: str):
        if self.fail:
            raise MailDeliveryError("SMTP down", provider="smtp", category="delivery_failed")
        self.sent.append({"to": to_email, "subject": subject, "text": text_body})
        return {"provider": "recording", "status_code": 200}

    def last_code(self) -> str:
        text = self.sent[-1]["text"]
        match = re.search(r"(?:: |is )([A-Z0-9]{6})\b", text)
        assert match, text
        return match.group(1)


@pytest.fixture
def settings(monkeypatch):
    for name in (
        "ADMIN_API_KEY",
        "ADMIN_NOTIFICATION_EMAIL",
        "PROTECTED_ADMIN_EMAIL",
        "OTP_TTL_SECONDS",
        "SIGNUP_CODE_TTL_SECONDS",
        "SIGNUP_CREATE_ACCOUNT",
        "USERS_COLLECTION",
        "CORS_ORIGINS",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("ADMIN_EMAIL", ADMIN_EMAIL)
    return Settings()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def identity():
    return FakeIdentityProvider()


@pytest.fixture
def documents():
    return InMemoryDocumentStore()


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def container(settings, identity, documents, mailer, clock):
    return ServiceContainer(
        settings,
        identity=identity,
        documents=documents,
        mailer=mailer,
        clock=clock,
    )


@pytest.fixture
def client(container):
    with TestClient(create_app(container)) as test_client:
        yield test_client


@pytest.fixture
def guarded_client(monkeypatch, settings, identity, documents, mailer, clock):
    monkeypatch.setenv("ADMIN_API_KEY", ADMIN_KEY)
    guarded = ServiceContainer(
        Settings(),
        identity=identity,
        documents=documents,
        mailer=mailer,
        clock=clock,
    )
    with TestClient(create_app(guarded)) as test_client:
        yield test_client
