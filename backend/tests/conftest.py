# tests/conftest.py — Shared test fixtures
import os
import uuid
import asyncio

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# The app engine only serves /health in tests; fixtures use a per-session temp file
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"

from models import (
    Base, User, Workspace, WorkspaceMember, WorkspaceBudget, Bounty,
    BountyStatus, WorkspaceRole,
)
from auth import AuthService, CurrentUser
from database import get_db_session
from main import app

FUNDED_BUDGET = 100_000
BOUNTY_AMOUNT = 5_000


@pytest.fixture(scope="session")
def event_loop():
    loop = asyncio.new_event_loop()
    yield loop
    loop.close()


@pytest.fixture(scope="session")
def test_db_url(tmp_path_factory):
    return f"sqlite+aiosqlite:///{tmp_path_factory.mktemp('db') / 'test.db'}"


@pytest_asyncio.fixture(scope="function")
async def db_engine(test_db_url):
    engine = create_async_engine(test_db_url, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(session_factory):
    """HTTP test client with overridden DB dependency"""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def make_pubkey() -> str:
    return "02" + uuid.uuid4().hex + uuid.uuid4().hex


async def create_user(db_session, username: str) -> User:
    user = User(id=str(uuid.uuid4()), pubkey=make_pubkey(), username=username)
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def owner(db_session):
    return await create_user(db_session, "owner")


@pytest_asyncio.fixture
async def admin(db_session):
    return await create_user(db_session, "admin")


@pytest_asyncio.fixture
async def contributor(db_session):
    return await create_user(db_session, "contributor")


@pytest_asyncio.fixture
async def other_contributor(db_session):
    return await create_user(db_session, "contributor2")


@pytest_asyncio.fixture
async def viewer(db_session):
    return await create_user(db_session, "viewer")


@pytest_asyncio.fixture
async def outsider(db_session):
    return await create_user(db_session, "outsider")


@pytest_asyncio.fixture
async def workspace(db_session, owner, admin, contributor, other_contributor, viewer):
    """Workspace with one member per role and a funded budget"""
    ws = Workspace(id=str(uuid.uuid4()), name="Test Workspace", owner_pubkey=owner.pubkey)
    db_session.add(ws)
    for user, role in (
        (owner, WorkspaceRole.OWNER),
        (admin, WorkspaceRole.ADMIN),
        (contributor, WorkspaceRole.CONTRIBUTOR),
        (other_contributor, WorkspaceRole.CONTRIBUTOR),
        (viewer, WorkspaceRole.VIEWER),
    ):
        db_session.add(WorkspaceMember(workspace_id=ws.id, user_pubkey=user.pubkey, role=role))
    db_session.add(WorkspaceBudget(
        workspace_id=ws.id,
        total_budget=FUNDED_BUDGET,
        available_budget=FUNDED_BUDGET,
        reserved_budget=0,
        paid_budget=0,
    ))
    await db_session.commit()
    await db_session.refresh(ws)
    return ws


async def create_bounty(
    db_session,
    workspace: Workspace,
    creator: User,
    status: BountyStatus = BountyStatus.OPEN,
    amount: int = BOUNTY_AMOUNT,
) -> Bounty:
    bounty = Bounty(
        id=str(uuid.uuid4()),
        workspace_id=workspace.id,
        creator_pubkey=creator.pubkey,
        title="Fix the payment retry loop",
        description="Payments are retried forever when the node is offline.",
        deliverables="A merged pull request with tests",
        amount=amount,
        status=status,
        tags=["backend"],
    )
    db_session.add(bounty)
    await db_session.commit()
    await db_session.refresh(bounty)
    return bounty


@pytest_asyncio.fixture
async def open_bounty(db_session, workspace, admin):
    return await create_bounty(db_session, workspace, admin)


@pytest_asyncio.fixture
async def draft_bounty(db_session, workspace, admin):
    return await create_bounty(db_session, workspace, admin, status=BountyStatus.DRAFT)


def as_current(user: User) -> CurrentUser:
    return CurrentUser(id=user.id, pubkey=user.pubkey, username=user.username)


def get_auth_headers(user: User) -> dict:
    """Generate session-token headers for a user"""
    token = AuthService.create_session_token(user.pubkey)
    return {"Authorization": f"Bearer {token}"}


def pubkey_headers(user: User) -> dict:
    """Identity as forwarded by the upstream verifier"""
    return {"x-user-pubkey": user.pubkey}
