import os
import tempfile

# Must be set before skillswap.database creates its engine
_db_dir = tempfile.mkdtemp(prefix="skillswap-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_db_dir, 'test.db')}"
os.environ["RABBITMQ_URL"] = ""
os.environ["AUTH_PROVIDER"] = "local"

import pytest
from fastapi.testclient import TestClient
from skillswap.auth import LocalAuthProvider
from skillswap.database import engine, SessionLocal
from skillswap.main import create_app
from skillswap.models import Base, User


@pytest.fixture(autouse=True)
def reset_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def provider():
    return LocalAuthProvider()


@pytest.fixture
def client(provider):
    with TestClient(create_app(auth_provider=provider)) as test_client:
        yield test_client


@pytest.fixture
def make_user(db):
    def _make(name: str) -> User:
        user = User(
            id=name,
            email=f"{name}@example.com",
            first_name=name.title(),
            last_name="Tester",
            profile_image_url=f"https://img.example.com/{name}.png",
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make


@pytest.fixture
def auth_headers(provider):
    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {provider.issue_token(user)}"}
    return _headers
