import pytest
from firebase_admin import auth as firebase_auth
from firebase_admin.exceptions import FirebaseError

from app.core.errors import AuthenticationRequired, IdentityProviderError
from app.features.users import auth
from app.features.users.auth import FirebaseIdentityProvider, IdentityClaim


@pytest.fixture(autouse=True)
def no_firebase_app(monkeypatch):
    monkeypatch.setattr(auth.FirebaseApp, "get_app", lambda: None)


def token_check(monkeypatch, outcome):
    """Make verify_id_token return ``outcome``, or raise it if it is an exception."""
    calls = []

    def verify_id_token(credential, app=None, check_revoked=False):
        calls.append((credential, check_revoked))
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(firebase_auth, "verify_id_token", verify_id_token)
    return calls


@pytest.mark.parametrize(
    "error, message",
    [
        (firebase_auth.ExpiredIdTokenError("Token expired", cause=None), "Token has expired"),
        (firebase_auth.RevokedIdTokenError("Token revoked"), "Token has been revoked"),
        (firebase_auth.UserDisabledError("User disabled"), "User account is disabled"),
        (firebase_auth.InvalidIdTokenError("Malformed token"), "Invalid token: Malformed token"),
        (FirebaseError("unavailable", "Backend unavailable"), "Failed to verify token"),
        (ValueError("No project id"), "Failed to verify token"),
    ],
)
async def test_verification_failures_require_authentication(monkeypatch, error, message):
    token_check(monkeypatch, error)
    with pytest.raises(AuthenticationRequired) as exc_info:
        await FirebaseIdentityProvider(check_revoked=True).verify("token")
    assert exc_info.value.message == message


async def test_payload_without_subject_is_rejected(monkeypatch):
    token_check(monkeypatch, {"email": "alice@acme.io", "uid": "  "})
    with pytest.raises(AuthenticationRequired) as exc_info:
        await FirebaseIdentityProvider().verify("token")
    assert exc_info.value.message == "Invalid token payload"


async def test_missing_credential_skips_firebase(monkeypatch):
    calls = token_check(monkeypatch, {"uid": "alice"})
    with pytest.raises(AuthenticationRequired):
        await FirebaseIdentityProvider().verify("")
    assert calls == []


async def test_valid_token_yields_claim(monkeypatch):
    calls = token_check(
        monkeypatch,
        {"uid": "alice", "email": "alice@acme.io", "name": "Alice", "email_verified": True},
    )
    claim = await FirebaseIdentityProvider(check_revoked=True).verify("token")

    assert claim == IdentityClaim(
        subject_id="alice",
        email="alice@acme.io",
        display_name="Alice",
        disabled=False,
        email_verified=True,
    )
    assert calls == [("token", True)]


async def test_subject_falls_back_to_sub(monkeypatch):
    token_check(monkeypatch, {"sub": "alice"})
    claim = await FirebaseIdentityProvider().verify("token")
    assert claim.subject_id == "alice"
    assert claim.email is None


async def test_set_disabled_updates_firebase_account(monkeypatch):
    updates = []
    monkeypatch.setattr(
        firebase_auth, "update_user", lambda uid, app=None, **fields: updates.append((uid, fields))
    )

    provider = FirebaseIdentityProvider()
    await provider.set_disabled("alice", True)
    await provider.set_disabled("alice", False)

    assert updates == [("alice", {"disabled": True}), ("alice", {"disabled": False})]


async def test_set_disabled_skips_unknown_account(monkeypatch):
    def update_user(uid, app=None, **fields):
        raise firebase_auth.UserNotFoundError("No user record")

    monkeypatch.setattr(firebase_auth, "update_user", update_user)
    await FirebaseIdentityProvider().set_disabled("ghost", True)


async def test_account_change_failures_raise(monkeypatch):
    def fail(uid, app=None, **fields):
        raise FirebaseError("internal", "Backend unavailable")

    monkeypatch.setattr(firebase_auth, "update_user", fail)
    monkeypatch.setattr(firebase_auth, "delete_user", fail)
    provider = FirebaseIdentityProvider()

    with pytest.raises(IdentityProviderError):
        await provider.set_disabled("alice", True)
    with pytest.raises(IdentityProviderError) as exc_info:
        await provider.delete_account("alice")
    assert exc_info.value.status_code == 502


async def test_delete_account(monkeypatch):
    deleted = []
    monkeypatch.setattr(firebase_auth, "delete_user", lambda uid, app=None: deleted.append(uid))

    await FirebaseIdentityProvider().delete_account("alice")

    assert deleted == ["alice"]
