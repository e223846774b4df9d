import os
import tempfile

# configure before any pantry module reads the environment
_db_dir = tempfile.mkdtemp(prefix="pantry-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_db_dir, 'test.db')}"
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ["REDIS_URL"] = ""

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool

from pantry.main import app
from pantry.database import Base, get_db
from pantry.backend import Backend, pwd_context
from pantry.models import AuthUser, User, new_id
from pantry.schemas import UserSchema

# file-backed so the Celery task's sync engine sees the same rows
engine = create_async_engine(os.environ["DATABASE_URL"], poolclass=NullPool)
TestingSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

TABLES = ("withdrawals", "items", "users", "auth_sessions", "auth_users")

PASSWORD = "segredo123"


@pytest_asyncio.fixture
async def db_session():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with TestingSessionLocal() as session:
        # wipe every table
        for tbl in TABLES:
            await session.execute(text(f"DELETE FROM {tbl}"))
        await session.commit()
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def backend(db_session: AsyncSession):
    return Backend(db_session)


@pytest_asyncio.fixture
async def make_account(db_session: AsyncSession):
    """Auth identity plus profile row, bypassing sign-up."""
    async def _make(email, full_name="Integrante", approved=True, admin=False, password=PASSWORD):
        user_id = new_id()
        db_session.add(AuthUser(id=user_id, email=email, password_hash=pwd_context.hash(password)))
        user = User(
            id=user_id,
            email=email,
            full_name=full_name,
            is_approved=approved,
            is_super_admin=admin,
        )
        db_session.add(user)
        await db_session.commit()
        return UserSchema.model_validate(user)
    return _make


@pytest_asyncio.fixture
async def admin(make_account):
    return await make_account("admin@paroquia.org", full_name="Maria Admin", admin=True)


@pytest_asyncio.fixture
async def member(make_account):
    return await make_account("ana@paroquia.org", full_name="Ana Souza")


@pytest_asyncio.fixture
async def pending(make_account):
    return await make_account("joao@paroquia.org", full_name="João Lima", approved=False)


@pytest_asyncio.fixture
async def client(db_session: AsyncSession):
    # route every request through the test session
    async def _get_db():
        yield db_session
    app.dependency_overrides[get_db] = _get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def _login(client: AsyncClient, email: str, password: str = PASSWORD):
    r = await client.post("/login", data={"username": email, "password": password})
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


@pytest_asyncio.fixture
async def admin_headers(client, admin):
    return await _login(client, admin.email)


@pytest_asyncio.fixture
async def member_headers(client, member):
    return await _login(client, member.email)
