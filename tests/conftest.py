"""Shared fixtures: settings, a stubbed database and an HTTP client around `create_app`."""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

from bson import ObjectId
from httpx import ASGITransport, AsyncClient
import pytest

from community_microhelp.config import Settings
from community_microhelp.database.tenant_collection import TenantAwareCollection
from community_microhelp.main import create_app

TENANT = "acme"


def make_cursor(items=None):
    """Motor-like cursor: chainable `sort`/`skip`/`limit` and an async `to_list`."""
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.skip.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.to_list = AsyncMock(return_value=list(items or []))
    return cursor


def make_collection(name):
    collection = MagicMock()
    collection.name = name
    collection.find_one = AsyncMock(return_value=None)
    collection.insert_one = AsyncMock(side_effect=lambda doc, *a, **k: MagicMock(inserted_id=ObjectId()))
    collection.insert_many = AsyncMock()
    collection.update_one = AsyncMock(return_value=MagicMock(matched_count=1, modified_count=1))
    collection.update_many = AsyncMock(return_value=MagicMock(matched_count=0, modified_count=0))
    collection.delete_one = AsyncMock(return_value=MagicMock(deleted_count=1))
    collection.delete_many = AsyncMock(return_value=MagicMock(deleted_count=0))
    collection.find_one_and_update = AsyncMock(return_value=None)
    collection.count_documents = AsyncMock(return_value=0)
    collection.find = MagicMock(return_value=make_cursor())
    collection.aggregate = MagicMock(return_value=make_cursor())
    return collection


class StubDatabase:
    """
    Stand-in for `DatabaseManager`.

    Raw collections are `MagicMock`s, but handlers still receive real
    `TenantAwareCollection` wrappers so tenant scoping is exercised.
    """

    def __init__(self):
        self.collections = {}
        self.healthy = True

    def raw(self, name):
        if name not in self.collections:
            self.collections[name] = make_collection(name)
        return self.collections[name]

    def get_tenant_collection(self, name, tenant_id):
        return TenantAwareCollection(self.raw(name), tenant_id)

    @asynccontextmanager
    async def transaction(self):
        yield None

    async def health_check(self):
        return self.healthy


def make_user(email="alice@example.com", username="alice", role="member", tenant_id=TENANT, **extra):
    user = {
        "_id": ObjectId(),
        "userId": f"local:{tenant_id}:{email}",
        "tenantId": tenant_id,
        "email": email,
        "username": username,
        "name": username.title(),
        "role": role,
        "emailVerified": True,
    }
    user.update(extra)
    return user


@pytest.fixture
def settings(tmp_path):
    return Settings(
        SECRET_KEY="unit-test-signing-key",
        MONGODB_URL="mongodb://localhost:27017",
        BCRYPT_ROUNDS=4,
        METRICS_ENABLED=False,
        RATE_LIMIT_ENABLED=False,
        REQUIRE_EMAIL_VERIFICATION=True,
        EXPOSE_DEBUG_TOKENS=True,
        UPLOAD_DIR=str(tmp_path / "uploads"),
        LOG_DIR=str(tmp_path / "logs"),
        SMTP_HOST=None,
    )


@pytest.fixture
def db():
    return StubDatabase()


@pytest.fixture
def app(settings, db):
    application = create_app(settings)
    application.state.db = db
    return application


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
        yield http_client


@pytest.fixture
def login_as(app, db):
    """Make `user` the authenticated caller and return its Authorization header."""

    def _login(user):
        db.raw("users").find_one.return_value = user
        token, _ = app.state.security.create_access_token(user)
        return {"Authorization": f"Bearer {token}"}

    return _login
