"""
Pytest configuration and fixtures.

Each test gets a fresh in-memory SQLite database. Authentication is faked:
a bearer token is taken as the Firebase uid of the caller, and tokens
listed in ``FakeIdentityProvider.rejected`` fail verification.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("RATE_LIMIT_DEFAULT", "10000/minute")

from typing import AsyncGenerator, Optional  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from app.core.database.base import Base  # noqa: E402
from app.core.database.engine import get_db  # noqa: E402
from app.core.errors import AuthenticationRequired  # noqa: E402
from app.features.organizations import memberships  # noqa: E402
from app.features.organizations.models import Membership, Organization, default_settings  # noqa: E402
from app.features.permissions.matrix import OrganizationRole  # noqa: E402
from app.features.tenancy.dependencies import get_access_stamper  # noqa: E402
from app.features.users.auth import IdentityClaim, get_identity_provider  # noqa: E402
from app.features.users.models import SystemRole, User  # noqa: E402
from app.main import app  # noqa: E402


TEST_ASYNC_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FakeIdentityProvider:
    def __init__(self):
        self.rejected: set[str] = set()
        self.disabled: set[str] = set()
        self.account_changes: list[tuple[str, str]] = []

    async def verify(self, credential: str) -> IdentityClaim:
        if not credential or credential in self.rejected:
            raise AuthenticationRequired("Invalid token")
        return IdentityClaim(
            subject_id=credential,
            email=f"{credential}@acme.io",
            display_name=credential.title(),
            disabled=credential in self.disabled,
            email_verified=True,
        )

    async def set_disabled(self, subject_id: str, disabled: bool) -> None:
        self.account_changes.append(("disable" if disabled else "enable", subject_id))
        if disabled:
            self.disabled.add(subject_id)
        else:
            self.disabled.discard(subject_id)

    async def delete_account(self, subject_id: str) -> None:
        self.account_changes.append(("delete", subject_id))


class RecordingStamper:
    """Stands in for AccessStamper; records the memberships it was asked to stamp."""

    def __init__(self):
        self.scheduled: list[str] = []

    def schedule(self, membership_id: str):
        self.scheduled.append(membership_id)
        return None

    async def drain(self) -> None:
        return None


@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(TEST_ASYNC_DATABASE_URL, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def identity_provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def stamper() -> RecordingStamper:
    return RecordingStamper()


@pytest_asyncio.fixture
async def client(db_session, identity_provider, stamper) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_identity_provider] = lambda: identity_provider
    app.dependency_overrides[get_access_stamper] = lambda: stamper

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db_session):
    async def _make(uid: str, system_role: SystemRole = SystemRole.USER, **fields) -> User:
        user = User(
            firebase_uid=uid,
            email=f"{uid}@acme.io",
            display_name=uid.title(),
            system_role=system_role,
            **fields,
        )
        db_session.add(user)
        await db_session.flush()
        await db_session.refresh(user)
        return user

    return _make


@pytest.fixture
def make_org(db_session):
    async def _make(name: str, slug: Optional[str] = None, parent: Optional[Organization] = None, **fields) -> Organization:
        org = Organization(
            name=name,
            slug=slug or name.lower().replace(" ", "-"),
            parent_id=parent.id if parent else None,
            settings=default_settings(),
            contact_info={},
            **fields,
        )
        db_session.add(org)
        await db_session.flush()
        await db_session.refresh(org)
        return org

    return _make


@pytest.fixture
def add_member(db_session):
    async def _add(user: User, org: Organization, role=OrganizationRole.EMPLOYEE, **fields) -> Membership:
        membership = memberships.build_membership(user.id, org.id, role=role)
        for key, value in fields.items():
            setattr(membership, key, value)
        db_session.add(membership)
        await db_session.flush()
        await db_session.refresh(membership)
        return membership

    return _add
