# tests/conftest.py — Shared test fixtures
import os

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["ENVIRONMENT"] = "test"
os.environ["BCRYPT_ROUNDS"] = "4"
for _name in ("S3_ENDPOINT", "S3_PUBLIC_ENDPOINT", "S3_REGION", "S3_KEY", "S3_SECRET", "S3_BUCKET"):
    os.environ.pop(_name, None)

from models import Base, User, UserRole
from auth import AuthService, SessionStore
from database import get_db_session
from errors import NotFound
from storage import StoredObject
from main import app

TEST_BUCKET = "task-files"
ADMIN_PASSWORD = "AdminPassword123!"
COLLAB_PASSWORD = "CollabPassword123!"


class FakeObjectStore:
    """In-memory stand-in for ObjectStore with the same async surface"""

    def __init__(self, bucket: str = TEST_BUCKET):
        self.bucket = bucket
        self.bucket_exists = False
        self.objects = {}

    async def ensure_bucket(self) -> bool:
        created = not self.bucket_exists
        self.bucket_exists = True
        return created

    async def put_object(self, key: str, body: bytes, content_type: str) -> None:
        self.objects[key] = (body, content_type)

    async def get_object(self, key: str) -> StoredObject:
        if key not in self.objects:
            raise NotFound("File not found")
        body, content_type = self.objects[key]
        return StoredObject(body=body, content_type=content_type, content_length=len(body))

    def presigned_url(self, key: str, expires_in=None) -> str:
        return f"http://public.test/{self.bucket}/{key}?X-Amz-Expires={expires_in or 3600}"


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
def object_store():
    return FakeObjectStore()


@pytest_asyncio.fixture(scope="function")
async def client(db_engine, object_store):
    """HTTP test client with overridden DB dependency, fresh sessions and a fake object store"""
    session_factory = async_sessionmaker(
        db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False,
    )

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    app.state.sessions = SessionStore()
    app.state.object_store = object_store
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
    app.state.object_store = None


async def _make_user(db_session, email, name, role, password):
    user = User(
        email=email,
        name=name,
        password_hash=AuthService.hash_password(password),
        role=role,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def admin_user(db_session):
    """Create an administrator"""
    return await _make_user(db_session, "admin@example.com", "Ada Admin", UserRole.ADMINISTRATOR, ADMIN_PASSWORD)


@pytest_asyncio.fixture
async def collaborator(db_session):
    """Create a collaborator"""
    return await _make_user(db_session, "carla@example.com", "Carla Collab", UserRole.COLLABORATOR, COLLAB_PASSWORD)


@pytest_asyncio.fixture
async def other_collaborator(db_session):
    """Create a second collaborator"""
    return await _make_user(db_session, "bruno@example.com", "Bruno Collab", UserRole.COLLABORATOR, COLLAB_PASSWORD)


async def login(client: AsyncClient, user: User) -> dict:
    """Log in through the API; the client keeps the session cookie"""
    password = ADMIN_PASSWORD if user.role == UserRole.ADMINISTRATOR else COLLAB_PASSWORD
    res = await client.post("/auth/login", data={"email": user.email, "password": password})
    assert res.status_code == 200, res.text
    return res.json()


async def create_task(client: AsyncClient, assignee: User, task_type="review",
                      description="please review the attached contract"):
    return await client.post("/tasks/", data={
        "user_id": str(assignee.id),
        "task_type": task_type,
        "description": description,
    })
