# tests/conftest.py — Shared test fixtures
import os

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"

from models import Base, Company, Project, User, UserRole
from auth import AuthService, CurrentUser
from database import get_db_session
from storage import AttachmentStore, get_attachment_store
from main import app


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine):
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(tmp_path):
    """Attachment store rooted in a per-test temporary directory"""
    return AttachmentStore(str(tmp_path / "uploads"))


@pytest_asyncio.fixture(scope="function")
async def client(db_engine, store):
    """HTTP test client with overridden DB and storage dependencies"""
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    app.dependency_overrides[get_attachment_store] = lambda: store
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def _make_company(db_session, name, email, code) -> Company:
    company = Company(name=name, email=email, company_code=code)
    db_session.add(company)
    await db_session.commit()
    await db_session.refresh(company)
    return company


async def _make_user(db_session, company, name, email, role) -> User:
    user = User(
        company_id=company.id,
        name=name,
        email=email,
        password_hash=AuthService.hash_password("TestPassword123"),
        role=role,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def company(db_session):
    return await _make_company(db_session, "Acme Corp", "acme@example.com", "ACMECDE3")


@pytest_asyncio.fixture
async def other_company(db_session):
    return await _make_company(db_session, "Globex", "globex@example.com", "GLBXCDE2")


@pytest_asyncio.fixture
async def developer(db_session, company):
    """Project lead and creator of the default project"""
    return await _make_user(db_session, company, "Dana Developer", "dana@acme.dev", UserRole.DEVELOPER)


@pytest_asyncio.fixture
async def tester(db_session, company):
    return await _make_user(db_session, company, "Terry Tester", "terry@acme.dev", UserRole.TESTER)


@pytest_asyncio.fixture
async def manager(db_session, company):
    """Same company, not on the default project's team"""
    return await _make_user(db_session, company, "Morgan Manager", "morgan@acme.dev", UserRole.MANAGER)


@pytest_asyncio.fixture
async def admin_user(db_session, company):
    return await _make_user(db_session, company, "Avery Admin", "avery@acme.dev", UserRole.ADMIN)


@pytest_asyncio.fixture
async def outsider(db_session, other_company):
    return await _make_user(db_session, other_company, "Olly Outsider", "olly@globex.dev", UserRole.ADMIN)


@pytest_asyncio.fixture
async def project(db_session, company, developer, tester):
    """Project TRK led by the developer, with the tester on the team"""
    proj = Project(
        company_id=company.id,
        name="Tracker",
        key="TRK",
        description="Issue tracker project",
        project_lead=developer.id,
        created_by=developer.id,
        team_members=[developer, tester],
    )
    db_session.add(proj)
    await db_session.commit()
    await db_session.refresh(proj)
    return proj


def as_actor(user: User) -> CurrentUser:
    """The CurrentUser the auth dependency would produce for this user"""
    return CurrentUser(
        id=user.id,
        email=user.email,
        name=user.name,
        company_id=user.company_id,
        role=user.role.value if isinstance(user.role, UserRole) else user.role,
    )


async def get_auth_headers(db_session, user: User) -> dict:
    """Issue a real session token for a user"""
    token = await AuthService.issue_session_token(user, db_session)
    return {"Authorization": f"Bearer {token}"}
