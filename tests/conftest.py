"""Pytest configuration and fixtures."""

import mongomock
import pytest
from fastapi.testclient import TestClient

import auth
from auth import Identity
from config import Settings
from database import USERS, ensure_indexes, to_oid
from main import app, get_db, get_mailer, get_uploader
from mailer import Mailer
from schemas import TemplateCreate
from templates import create_template
from uploads import Uploader

ENV_KEYS = (
    "CLOUDINARY_CLOUD_NAME", "CLOUDINARY_API_KEY", "CLOUDINARY_API_SECRET",
    "EMAIL_SERVER_HOST", "EMAIL_SERVER_USER", "EMAIL_SERVER_PASSWORD",
)


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    """Keep bcrypt cheap in tests."""
    monkeypatch.setattr(auth, "BCRYPT_ROUNDS", 4)


@pytest.fixture
def settings(monkeypatch) -> Settings:
    """Development settings with no Cloudinary or SMTP credentials."""
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("ENVIRONMENT", "development")
    return Settings()


@pytest.fixture
def db():
    """In-memory MongoDB database with the production indexes."""
    client = mongomock.MongoClient()
    database = client["portfolio_hub_test"]
    ensure_indexes(database)
    yield database
    client.close()


@pytest.fixture
def user() -> Identity:
    return Identity(user_id="64b000000000000000000001")


@pytest.fixture
def other_user() -> Identity:
    return Identity(user_id="64b000000000000000000002")


@pytest.fixture
def admin() -> Identity:
    return Identity(user_id="64b0000000000000000000aa", role="admin")


@pytest.fixture
def developer_template(db, admin) -> dict:
    """A published developer template created through the service."""
    return create_template(db, admin, TemplateCreate(
        name="Dev Starter",
        description="Clean developer portfolio",
        category="developer",
        is_published=True,
    ))


@pytest.fixture
def client(db, settings):
    """Test client wired to the in-memory database."""
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_uploader] = lambda: Uploader(settings)
    app.dependency_overrides[get_mailer] = lambda: Mailer(settings)
    yield TestClient(app)
    app.dependency_overrides.clear()


def signup(client, username: str, email: str = None, password: str = "Secret123!") -> dict:
    """Register through the API and return the response body (token + user)."""
    response = client.post("/auth/signup", json={
        "username": username,
        "email": email or f"{username}@example.com",
        "password": password,
        "full_name": username.title(),
    })
    assert response.status_code == 201, response.text
    return response.json()


def make_admin(db, user_id: str) -> None:
    db[USERS].update_one({"_id": to_oid(user_id)}, {"$set": {"role": "admin"}})


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
