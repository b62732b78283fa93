from datetime import datetime, timezone

import pytest

from pms_backend.exceptions import (
    AccountNotFoundError,
    ForbiddenError,
    InvalidInputError,
    PartialFailureError,
)
from pms_backend.services.role_service import RoleService

from conftest import ADMIN_EMAIL


NOW = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


@pytest.fixture
def roles(identity, documents, settings):
    return RoleService(identity, documents, settings, clock=lambda: NOW)


@pytest.mark.asyncio
async def test_set_role_updates_claim_sessions_and_profile(roles, identity, documents):
    account = identity.add("tenant@example.com", uid="u1")

    result = await roles.set_role(uid="u1", role="ADMIN")

    assert result.uid == account.uid
    assert identity.accounts["u1"].is_admin is True
    assert identity.revoked == ["u1"]
    assert documents.collections["users"]["u1"] == {
        "uid": "u1",
        "email": "tenant@example.com",
        "role": "admin",
        "isAdmin": True,
        "updatedAt": NOW,
    }
    assert identity.mutations() == [("set_custom_claims", "u1"), ("revoke_sessions", "u1")]


@pytest.mark.asyncio
async def test_set_role_merges_into_existing_profile(roles, identity, documents):
    identity.add("tenant@example.com", uid="u1", is_admin=True)
    documents.add("users", {"uid": "u1", "role": "admin", "displayName": "Ten Ant"}, doc_id="u1")

    await roles.set_role(email="tenant@example.com", role="user")

    profile = documents.collections["users"]["u1"]
    assert profile["role"] == "user"
    assert profile["isAdmin"] is False
    assert profile["displayName"] == "Ten Ant"
    assert identity.accounts["u1"].is_admin is False


@pytest.mark.asyncio
async def test_set_role_reconciles_legacy_profiles(roles, identity, documents):
    identity.add("tenant@example.com", uid="u1")
    by_uid = documents.add("users", {"uid": "u1", "role": "user", "isAdmin": False})
    by_email = documents.add("users", {"email": "tenant@example.com", "role": "user"})
    unrelated = documents.add("users", {"email": "other@example.com", "role": "user"})

    await roles.set_role(uid="u1", role="admin")

    users = documents.collections["users"]
    for doc_id in ("u1", by_uid, by_email):
        assert users[doc_id]["role"] == "admin"
        assert users[doc_id]["isAdmin"] is True
    assert users[unrelated]["role"] == "user"
    assert len(documents.batches) == 1
    assert sorted(op.doc_id for op in documents.batches[0]) == sorted([by_uid, by_email])


@pytest.mark.asyncio
async def test_set_role_is_idempotent(roles, identity, documents):
    identity.add("tenant@example.com", uid="u1")

    await roles.set_role(uid="u1", role="admin")
    first = dict(documents.collections["users"]["u1"])
    await roles.set_role(uid="u1", role="admin")

    assert documents.collections["users"]["u1"] == first
    assert identity.accounts["u1"].is_admin is True


@pytest.mark.asyncio
async def test_set_role_rejects_unknown_role(roles, identity):
    identity.add("tenant@example.com", uid="u1")

    with pytest.raises(InvalidInputError) as excinfo:
        await roles.set_role(uid="u1", role="superuser")

    assert excinfo.value.message == 'role must be "admin" or "user"'
    assert identity.mutations() == []


@pytest.mark.asyncio
async def test_set_role_requires_a_target(roles):
    with pytest.raises(InvalidInputError) as excinfo:
        await roles.set_role(role="admin")
    assert excinfo.value.message == "uid or email required"


@pytest.mark.asyncio
async def test_unknown_uid_without_email_is_not_found(roles, identity):
    identity.add("tenant@example.com", uid="u1")

    with pytest.raises(AccountNotFoundError) as excinfo:
        await roles.set_role(uid="missing", role="admin")

    assert excinfo.value.status_code == 404
    assert excinfo.value.message == "Target user not found"


@pytest.mark.asyncio
async def test_unknown_uid_falls_back_to_email(roles, identity):
    identity.add("tenant@example.com", uid="u1")

    account = await roles.set_role(uid="stale", email="Tenant@Example.com", role="admin")

    assert account.uid == "u1"


@pytest.mark.asyncio
async def test_protected_admin_cannot_be_demoted(roles, identity, documents):
    identity.add(ADMIN_EMAIL, uid="owner", is_admin=True)

    with pytest.raises(ForbiddenError) as excinfo:
        await roles.set_role(uid="owner", role="user")

    assert excinfo.value.message == "Protected admin cannot be demoted"
    assert identity.mutations() == []
    assert documents.collections == {}


@pytest.mark.asyncio
async def test_protected_admin_can_be_reaffirmed_as_admin(roles, identity):
    identity.add(ADMIN_EMAIL, uid="owner", is_admin=True)

    await roles.set_role(uid="owner", role="admin")

    assert identity.accounts["owner"].is_admin is True


@pytest.mark.asyncio
async def test_claim_failure_reports_step_and_writes_nothing(roles, identity, documents):
    identity.add("tenant@example.com", uid="u1")
    identity.failures["set_custom_claims"] = RuntimeError("quota exceeded")

    with pytest.raises(PartialFailureError) as excinfo:
        await roles.set_role(uid="u1", role="admin")

    assert excinfo.value.step == "set_claims"
    assert excinfo.value.status_code == 500
    assert identity.revoked == []
    assert documents.collections == {}


@pytest.mark.asyncio
async def test_revoke_failure_leaves_claim_applied(roles, identity, documents):
    identity.add("tenant@example.com", uid="u1")
    identity.failures["revoke_sessions"] = RuntimeError("timeout")

    with pytest.raises(PartialFailureError) as excinfo:
        await roles.set_role(uid="u1", role="admin")

    assert excinfo.value.step == "revoke_sessions"
    assert identity.accounts["u1"].is_admin is True
    assert documents.collections == {}


@pytest.mark.asyncio
async def test_profile_write_failure_reports_step(roles, identity, documents):
    identity.add("tenant@example.com", uid="u1")
    documents.failures["set"] = RuntimeError("firestore unavailable")

    with pytest.raises(PartialFailureError) as excinfo:
        await roles.set_role(uid="u1", role="admin")

    assert excinfo.value.step == "write_profile"
    assert identity.revoked == ["u1"]


@pytest.mark.asyncio
async def test_legacy_failure_keeps_canonical_profile(roles, identity, documents):
    identity.add("tenant@example.com", uid="u1")
    documents.add("users", {"uid": "u1", "role": "user"})
    documents.failures["commit_batch"] = RuntimeError("batch rejected")

    with pytest.raises(PartialFailureError) as excinfo:
        await roles.set_role(uid="u1", role="admin")

    assert excinfo.value.step == "reconcile_legacy"
    assert documents.collections["users"]["u1"]["role"] == "admin"


@pytest.mark.asyncio
async def test_rerun_after_partial_failure_converges(roles, identity, documents):
    identity.add("tenant@example.com", uid="u1")
    legacy = documents.add("users", {"email": "tenant@example.com", "role": "user"})
    documents.failures["commit_batch"] = RuntimeError("batch rejected")

    with pytest.raises(PartialFailureError):
        await roles.set_role(uid="u1", role="admin")

    del documents.failures["commit_batch"]
    await roles.set_role(uid="u1", role="admin")

    assert documents.collections["users"][legacy]["role"] == "admin"


@pytest.mark.asyncio
async def test_delete_user_removes_account_and_profiles(roles, identity, documents):
    identity.add("tenant@example.com", uid="u1")
    documents.add("users", {"uid": "u1", "role": "user"}, doc_id="u1")
    legacy = documents.add("users", {"email": "tenant@example.com"})
    kept = documents.add("users", {"email": "other@example.com"})

    account = await roles.delete_user(email="tenant@example.com")

    assert account.uid == "u1"
    assert "u1" not in identity.accounts
    assert set(documents.collections["users"]) == {kept}
    assert legacy not in documents.collections["users"]


@pytest.mark.asyncio
async def test_delete_protected_admin_is_forbidden(roles, identity):
    identity.add(ADMIN_EMAIL, uid="owner", is_admin=True)

    with pytest.raises(ForbiddenError) as excinfo:
        await roles.delete_user(uid="owner")

    assert excinfo.value.message == "Protected admin cannot be deleted"
    assert "owner" in identity.accounts


@pytest.mark.asyncio
async def test_delete_ignores_profile_cleanup_failure(roles, identity, documents):
    identity.add("tenant@example.com", uid="u1")
    documents.add("users", {"uid": "u1"}, doc_id="u1")
    documents.failures["commit_batch"] = RuntimeError("firestore unavailable")

    account = await roles.delete_user(uid="u1")

    assert account.uid == "u1"
    assert "u1" not in identity.accounts
    assert "u1" in documents.collections["users"]


@pytest.mark.asyncio
async def test_delete_identity_failure_propagates(roles, identity, documents):
    identity.add("tenant@example.com", uid="u1")
    identity.failures["delete_user"] = RuntimeError("identity provider down")

    with pytest.raises(RuntimeError):
        await roles.delete_user(uid="u1")
    assert documents.batches == []


@pytest.mark.asyncio
async def test_delete_already_absent_account_still_cleans_profiles(roles, identity, documents):
    identity.add("tenant@example.com", uid="u1")
    documents.add("users", {"uid": "u1", "role": "user"}, doc_id="u1")
    legacy = documents.add("users", {"email": "tenant@example.com"})

    async def _already_gone(uid):
        identity.calls.append(("delete_user", uid))
        return False

    identity.delete_user = _already_gone

    account = await roles.delete_user(uid="u1")

    assert account.uid == "u1"
    assert identity.mutations() == [("delete_user", "u1")]
    assert "u1" not in documents.collections["users"]
    assert legacy not in documents.collections["users"]
