"""
FastAPI dependencies for authentication.
"""
from typing import Annotated, Optional
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.base import utcnow
from app.core.database.engine import get_db
from app.core.errors import AuthenticationRequired
from app.features.users.auth import IdentityClaim, IdentityProvider, get_identity_provider
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)

security = HTTPBearer(auto_error=False)


async def sync_user(db: AsyncSession, claim: IdentityClaim) -> User:
    """
    Look up the local user for a verified claim, creating it on first sign-in.

    Profile attributes from the identity provider are refreshed on each call.
    """
    result = await db.execute(select(User).where(User.firebase_uid == claim.subject_id))
    user = result.scalar_one_or_none()

    if user is None:
        user = User(
            firebase_uid=claim.subject_id,
            email=claim.email,
            display_name=claim.display_name,
            email_verified=claim.email_verified,
        )
        db.add(user)
        log.info("Created local user for identity %s", claim.subject_id)
    else:
        if claim.email:
            user.email = claim.email
        if claim.display_name:
            user.display_name = claim.display_name
        user.email_verified = claim.email_verified

    user.last_login_at = utcnow()
    await db.flush()
    await db.refresh(user)
    return user


async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    provider: Annotated[IdentityProvider, Depends(get_identity_provider)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """
    Get the current authenticated user from the bearer token.

    This dependency:
    1. Extracts the ID token from the Authorization header
    2. Verifies it with the identity provider
    3. Looks up or creates the user in the local database
    4. Rejects disabled, deactivated or deleted accounts

    Usage:
        @router.get("/me")
        async def get_me(user: User = Depends(get_current_user)):
            return user
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationRequired("Missing Authorization: Bearer <token>")

    claim = await provider.verify(credentials.credentials)
    if claim.disabled:
        raise AuthenticationRequired("User account is disabled")

    user = await sync_user(db, claim)
    if not user.can_sign_in:
        log.info("Rejected sign-in for inactive user %s", user.id)
        raise AuthenticationRequired("User account is deactivated")

    return user


def get_authorization_header(request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"
