from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.database.base import Base
from app.features.users.models import SystemRole, User
from scripts import bootstrap_super_admin
from scripts.bootstrap_super_admin import promote_super_admin


async def test_promote_creates_missing_user(db_session):
    user = await promote_super_admin(db_session, "founder", "founder@acme.io")
    assert user.system_role == SystemRole.SUPER_ADMIN
    assert user.email == "founder@acme.io"
    assert user.bypasses_membership() is True


async def test_promote_restores_existing_user(db_session, make_user):
    existing = await make_user("alice", is_active=False)
    existing.soft_delete()
    await db_session.flush()

    user = await promote_super_admin(db_session, "alice")

    assert user.id == existing.id
    assert user.can_sign_in is True
    assert user.is_super_admin() and user.is_system_admin()


async def test_main_persists_super_admin(tmp_path, monkeypatch):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'bootstrap.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def file_get_db():
        async with factory() as session:
            yield session
            await session.commit()

    async def no_init_db():
        return None

    monkeypatch.setattr(bootstrap_super_admin, "get_db", file_get_db)
    monkeypatch.setattr(bootstrap_super_admin, "init_db", no_init_db)

    await bootstrap_super_admin.main("founder", "founder@acme.io")

    async with factory() as session:
        result = await session.execute(select(User).where(User.firebase_uid == "founder"))
        user = result.scalar_one()
    await engine.dispose()

    assert user.system_role == SystemRole.SUPER_ADMIN
    assert user.email == "founder@acme.io"
