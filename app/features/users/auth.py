"""
Authentication against Firebase ID tokens.

The service never verifies credentials itself: Firebase does, and every
failure is reported as AuthenticationRequired. Account state changes made by
admins (disable, enable, delete) are pushed back to Firebase.
"""
import asyncio
from dataclasses import dataclass
from typing import Optional, Protocol

import firebase_admin
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials
from firebase_admin.exceptions import FirebaseError

from app.core import config
from app.core.errors import AuthenticationRequired, IdentityProviderError
from app.utils import get_logger


log = get_logger(__name__)


@dataclass(frozen=True)
class IdentityClaim:
    """Verified identity extracted from a credential."""
    subject_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    disabled: bool = False
    email_verified: bool = False


class IdentityProvider(Protocol):
    async def verify(self, credential: str) -> IdentityClaim:
        ...

    async def set_disabled(self, subject_id: str, disabled: bool) -> None:
        ...

    async def delete_account(self, subject_id: str) -> None:
        ...


class FirebaseApp:
    """Singleton Firebase Admin app for server-side token verification."""

    _instance: Optional[firebase_admin.App] = None

    @classmethod
    def get_app(cls) -> firebase_admin.App:
        """Get or initialize the Firebase Admin app."""
        if cls._instance is None:
            if config.FIREBASE_CREDENTIALS:
                cred = credentials.Certificate(config.FIREBASE_CREDENTIALS)
            else:
                cred = credentials.ApplicationDefault()
            options = {"projectId": config.FIREBASE_PROJECT_ID} if config.FIREBASE_PROJECT_ID else None
            cls._instance = firebase_admin.initialize_app(cred, options)
            log.info("Firebase Admin initialized for project %s", config.FIREBASE_PROJECT_ID or "<default>")
        return cls._instance


class FirebaseIdentityProvider:
    """
    Verify Firebase ID tokens.

    verify_id_token is blocking (it may fetch public keys), so it runs in a
    worker thread.
    """

    def __init__(self, check_revoked: Optional[bool] = None):
        self.check_revoked = config.FIREBASE_CHECK_REVOKED if check_revoked is None else check_revoked

    def _verify_sync(self, credential: str) -> dict:
        return firebase_auth.verify_id_token(
            credential,
            app=FirebaseApp.get_app(),
            check_revoked=self.check_revoked,
        )

    async def verify(self, credential: str) -> IdentityClaim:
        """
        Verify a Firebase ID token and return the identity claim.

        Raises:
            AuthenticationRequired: if the token is missing, invalid, expired,
                revoked, or the user is disabled
        """
        if not credential:
            raise AuthenticationRequired("Missing bearer token")
        try:
            decoded = await asyncio.to_thread(self._verify_sync, credential)
        except firebase_auth.ExpiredIdTokenError:
            raise AuthenticationRequired("Token has expired")
        except firebase_auth.RevokedIdTokenError:
            raise AuthenticationRequired("Token has been revoked")
        except firebase_auth.UserDisabledError:
            raise AuthenticationRequired("User account is disabled")
        except firebase_auth.InvalidIdTokenError as e:
            raise AuthenticationRequired(f"Invalid token: {e}")
        except (FirebaseError, ValueError) as e:
            log.warning("Firebase token verification failed: %s", type(e).__name__)
            raise AuthenticationRequired("Failed to verify token")

        subject_id = str(decoded.get("uid") or decoded.get("sub") or "").strip()
        if not subject_id:
            raise AuthenticationRequired("Invalid token payload")

        return IdentityClaim(
            subject_id=subject_id,
            email=decoded.get("email"),
            display_name=decoded.get("name"),
            disabled=bool(decoded.get("disabled", False)),
            email_verified=bool(decoded.get("email_verified", False)),
        )

    async def set_disabled(self, subject_id: str, disabled: bool) -> None:
        """
        Enable or disable the Firebase account so it can no longer mint tokens.

        A uid unknown to Firebase is logged and skipped; the local account
        state still applies.

        Raises:
            IdentityProviderError: if Firebase rejects the update
        """
        try:
            await asyncio.to_thread(
                firebase_auth.update_user, subject_id, disabled=disabled, app=FirebaseApp.get_app()
            )
        except firebase_auth.UserNotFoundError:
            log.warning("Firebase user %s not found while setting disabled=%s", subject_id, disabled)
            return
        except FirebaseError as e:
            log.error("Firebase update of %s failed: %s", subject_id, e)
            raise IdentityProviderError("Failed to update identity provider account", subject_id=subject_id)
        log.info("Firebase user %s disabled=%s", subject_id, disabled)

    async def delete_account(self, subject_id: str) -> None:
        """
        Delete the Firebase account.

        Raises:
            IdentityProviderError: if Firebase rejects the deletion
        """
        try:
            await asyncio.to_thread(firebase_auth.delete_user, subject_id, app=FirebaseApp.get_app())
        except firebase_auth.UserNotFoundError:
            log.warning("Firebase user %s already gone", subject_id)
            return
        except FirebaseError as e:
            log.error("Firebase deletion of %s failed: %s", subject_id, e)
            raise IdentityProviderError("Failed to delete identity provider account", subject_id=subject_id)
        log.info("Firebase user %s deleted", subject_id)


_provider: Optional[IdentityProvider] = None


def get_identity_provider() -> IdentityProvider:
    """FastAPI dependency; tests override it with a fake provider."""
    global _provider
    if _provider is None:
        _provider = FirebaseIdentityProvider()
    return _provider
