"""
Bootstrap script to create the first super admin.

System roles can only be changed by a super admin over the API, so the first
one has to be promoted directly in the database. The Firebase uid must be
the one the user signs in with; the local user row is created if the user
has never signed in.

Usage:
    python -m scripts.bootstrap_super_admin <firebase_uid> [email]
"""
import asyncio
import sys
from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db, init_db
from app.features.users.models import SystemRole, User
from app.utils import get_logger


log = get_logger(__name__)


async def promote_super_admin(db: AsyncSession, firebase_uid: str, email: Optional[str] = None) -> User:
    """Create or update the user with this Firebase uid as an active super admin."""
    result = await db.execute(select(User).where(User.firebase_uid == firebase_uid))
    user = result.scalar_one_or_none()

    if user is None:
        user = User(firebase_uid=firebase_uid, email=email)
        db.add(user)
        log.info("Created local user for %s", firebase_uid)
    elif email and not user.email:
        user.email = email

    user.system_role = SystemRole.SUPER_ADMIN
    user.is_active = True
    user.restore()
    await db.flush()
    await db.refresh(user)
    return user


async def main(firebase_uid: str, email: Optional[str] = None):
    log.info("Initializing database tables...")
    await init_db()

    async for db in get_db():
        user = await promote_super_admin(db, firebase_uid, email)
        await db.commit()
        log.info("User %s (%s) is now a super admin", user.id, firebase_uid)
        break  # Only use first session


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)
    asyncio.run(main(sys.argv[1], sys.argv[2] if len(sys.argv) > 2 else None))
