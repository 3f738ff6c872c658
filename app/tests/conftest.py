"""
Pytest configuration and fixtures for testing.
Provides test database, test client, Clerk session tokens and shared fixtures.
"""
import base64
import os
import time

# Settings are read at import time, so the environment must be ready first
TEST_JWT_KEY = "test-clerk-signing-key-0123456789abcdef"
TEST_WEBHOOK_SECRET = "whsec_" + base64.b64encode(b"test-webhook-secret-0123456789ab").decode()

os.environ["DATABASE_URL"] = "sqlite:///./test_propertysell.db"
os.environ["CLERK_JWT_KEY"] = TEST_JWT_KEY
os.environ["CLERK_JWT_ALGORITHM"] = "HS256"
os.environ["CLERK_AUTHORIZED_PARTIES"] = ""
os.environ["CLERK_WEBHOOK_SECRET"] = TEST_WEBHOOK_SECRET
os.environ["ENVIRONMENT"] = "development"
os.environ["LOG_JSON"] = "false"

import pytest
from typing import Callable, Dict, Generator
from jose import jwt
from sqlalchemy.orm import sessionmaker, Session
from fastapi.testclient import TestClient
from db.database import Base, build_engine
from db.models import User
from db.repository import Repository
from main import app
from api.dependencies import get_db


# Test database URL (file-backed SQLite so relay sessions see committed rows)
TEST_DATABASE_URL = "sqlite:///./test_propertysell.db"

test_engine = build_engine(TEST_DATABASE_URL)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


def make_session_token(clerk_id: str, expires_in: int = 300, **claims) -> str:
    """Mint a Clerk-style session token signed with the test key."""
    now = int(time.time())
    payload = {
        "sub": clerk_id,
        "iat": now,
        "nbf": now - 5,
        "exp": now + expires_in,
        "sid": f"sess_{clerk_id}",
    }
    payload.update(claims)
    return jwt.encode(payload, TEST_JWT_KEY, algorithm="HS256")


@pytest.fixture(scope="function")
def test_db() -> Generator[Session, None, None]:
    """
    Create a fresh database for each test.
    Automatically creates and destroys tables.
    """
    Base.metadata.create_all(bind=test_engine)

    db = TestSessionLocal()

    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def test_client(test_db: Session) -> TestClient:
    """
    Create a test client with test database dependency override.
    """
    def override_get_db():
        try:
            yield test_db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    client = TestClient(app)
    yield client

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def seed_test_users(test_db: Session) -> list[User]:
    """
    Seed test database with 3 Clerk-linked users.
    Returns list of created users.
    """
    repository = Repository(test_db)
    users = []

    for i in range(1, 4):
        user = repository.create_user(
            email=f"user{i}@example.com",
            username=f"user{i}",
            clerk_id=f"user_clerk{i}",
            first_name=f"Test{i}",
            last_name="User"
        )
        users.append(user)

    return users


@pytest.fixture
def auth_headers() -> Callable[[User], Dict[str, str]]:
    """Build an Authorization header for a seeded user."""
    def _headers(user: User) -> Dict[str, str]:
        return {"Authorization": f"Bearer {make_session_token(user.clerk_id)}"}
    return _headers


@pytest.fixture
def conversation_id(test_client: TestClient, seed_test_users: list[User], auth_headers) -> int:
    """Conversation between user1 and user2, opened by user1."""
    response = test_client.post(
        "/api/conversation",
        json={"participant_id": seed_test_users[1].id},
        headers=auth_headers(seed_test_users[0])
    )
    assert response.status_code == 201
    return response.json()["id"]


@pytest.fixture
def session_factory():
    """Session factory bound to the test database, for code that opens its own sessions."""
    return TestSessionLocal


@pytest.fixture
def session_token() -> Callable[..., str]:
    """Expose make_session_token to tests."""
    return make_session_token
