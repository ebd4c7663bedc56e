"""Shared fixtures: a throwaway SQLite database, in-memory redis and a recording email client."""
import os
import tempfile
from pathlib import Path

_TMP = Path(tempfile.mkdtemp(prefix="smaragdus-tests-"))
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP / 'test.db'}"
os.environ["REDIS_URL"] = ""
os.environ["JWT_SECRET_KEY"] = "test-secret"
os.environ["CHAT_CHECKER_API_KEY"] = "cron-secret"
os.environ.pop("RESEND_API_KEY", None)
os.environ.pop("SEED_ADMIN_EMAIL", None)

import itertools

import httpx
import pytest

from smaragdus import cache, crud, emails
from smaragdus.app import app
from smaragdus.auth import create_access_token
from smaragdus.db import AsyncSessionLocal, Base, engine
from smaragdus.emails import EmailSendResult
from smaragdus.models import Gemstone
from smaragdus.services import currency

PASSWORD = "Secret123"
_serials = itertools.count(1)


class FakeRedis:
    def __init__(self):
        self.store = {}

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self.store[key] = value

    async def exists(self, key):
        return int(key in self.store)

    async def delete(self, key):
        self.store.pop(key, None)

    async def aclose(self):
        pass


class RecordingEmailClient:
    def __init__(self):
        self.sent = []

    async def send(self, to, subject, html_body, tags=None):
        recipients = [to] if isinstance(to, str) else list(to)
        self.sent.append({"to": recipients, "subject": subject, "html": html_body, "tags": tags or {}})
        return EmailSendResult(success=True, message_id=f"msg-{len(self.sent)}")

    def of_type(self, notification_type):
        return [m for m in self.sent if m["tags"].get("notification_type") == notification_type]


@pytest.fixture(autouse=True)
async def database():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture(autouse=True)
def fake_redis():
    fake = FakeRedis()
    cache.set_redis(fake)
    yield fake
    cache.set_redis(None)


@pytest.fixture(autouse=True)
def offline_rates(monkeypatch):
    async def fake_fetch():
        return currency.fallback_rates()
    monkeypatch.setattr(currency, "fetch_rates_from_source", fake_fetch)


@pytest.fixture
def outbox(monkeypatch):
    client = RecordingEmailClient()
    monkeypatch.setattr(emails, "get_email_client", lambda: client)
    return client


@pytest.fixture
async def db():
    async with AsyncSessionLocal() as session:
        yield session


@pytest.fixture
async def client():
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


def auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': user.user_id})}"}


@pytest.fixture
def make_user(db):
    counter = itertools.count(1)

    async def _make(role="regular_customer", email=None, name=None, **patch):
        n = next(counter)
        user = await crud.create_user(
            db, name or f"User {n}", email or f"user{n}-{role}@example.com", PASSWORD, role=role,
        )
        if patch:
            user = await crud.update_user(db, user.user_id, patch)
        return user
    return _make


@pytest.fixture
async def admin(make_user):
    return await make_user("admin", email="admin@example.com", name="Site Admin")


@pytest.fixture
async def customer(make_user):
    return await make_user("regular_customer", email="jane@example.com", name="Jane Doe")


@pytest.fixture
def make_gemstone(db):
    async def _make(**fields):
        data = {
            "serial_number": f"SV-T-{next(_serials):04d}",
            "name": "emerald",
            "color": "green",
            "cut": "oval",
            "clarity": "VS1",
            "weight_carats": 1.5,
            "price_amount": 1000,
            "price_currency": "USD",
            "quantity": 1,
            "in_stock": True,
        }
        data.update(fields)
        g = Gemstone(**data)
        db.add(g)
        await db.commit()
        await db.refresh(g)
        return g
    return _make
