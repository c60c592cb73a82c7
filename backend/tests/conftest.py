"""
Test fixtures for the donations backend.

Every test gets a fresh in-memory SQLite database and talks to the ASGI app
in-process through httpx.  ``get_db`` is overridden so requests and direct
database checks share the same engine.
"""
import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["AUTO_CREATE_TABLES"] = "false"

from contextlib import asynccontextmanager
from datetime import date
from functools import lru_cache

import httpx
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app import models  # noqa: F401  (registers every table)
from app.database import Base, get_db
from app.main import app as fastapi_app
from app.middleware.auth import create_access_token, hash_password

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------
BASE_URL = "http://testserver"
PASSWORD = "admin123"


@lru_cache(maxsize=1)
def password_hash() -> str:
    """bcrypt is slow; hash the shared test password once per run."""
    return hash_password(PASSWORD)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def auth_headers(token: str) -> dict:
    """Return auth header dict for a given token."""
    return {"Authorization": f"Bearer {token}"}


def token_for(user) -> str:
    return create_access_token({"sub": user.username, "role": user.role, "user_id": str(user.id)})


async def create_campaign(client: httpx.AsyncClient, headers: dict, **overrides) -> dict:
    """Create a campaign through the API and return its JSON."""
    body = {
        "title": "Winter Relief",
        "description": "Blankets and heating for families",
        "start_date": date.today().isoformat(),
        "goal_amount": 1000,
    }
    body.update(overrides)
    r = await client.post("/api/campaigns", headers=headers, json=body)
    assert r.status_code == 201, f"Campaign create failed: {r.text}"
    return r.json()


async def create_donation(client: httpx.AsyncClient, headers: dict, **overrides) -> dict:
    """Create a donation through the API and return its JSON."""
    body = {
        "donor_name": "Amira Hassan",
        "donation_type": "cash",
        "amount": 100,
        "date_received": date.today().isoformat(),
    }
    body.update(overrides)
    r = await client.post("/api/donations", headers=headers, json=body)
    assert r.status_code == 201, f"Donation create failed: {r.text}"
    return r.json()


async def campaign_amount(client: httpx.AsyncClient, headers: dict, campaign_id: str) -> float:
    r = await client.get(f"/api/campaigns/{campaign_id}", headers=headers)
    assert r.status_code == 200, r.text
    return r.json()["current_amount"]


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database with every table created."""
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(eng.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_conn, _record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    """A session for arranging and inspecting state outside the API."""
    async with session_factory() as session:
        yield session


async def seed_users(session_factory) -> dict:
    """Seed one admin and two editors; returns them keyed by username."""
    from app.models.user import User

    seeded = {
        "admin": User(username="admin", password_hash=password_hash(),
                      display_name="Admin", email="admin@example.org", role="admin"),
        "nour": User(username="nour", password_hash=password_hash(),
                     display_name="Nour", email="nour@example.org", role="editor"),
        "karim": User(username="karim", password_hash=password_hash(),
                      display_name="Karim", email="karim@example.org", role="editor"),
    }
    async with session_factory() as session:
        session.add_all(seeded.values())
        await session.commit()
    return seeded


@pytest_asyncio.fixture
async def users(session_factory):
    return await seed_users(session_factory)


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------

@asynccontextmanager
async def app_client(session_factory):
    """In-process async HTTP client whose requests use *session_factory*."""

    async def _get_test_db():
        async with session_factory() as session:
            yield session

    fastapi_app.dependency_overrides[get_db] = _get_test_db
    transport = httpx.ASGITransport(app=fastapi_app)
    try:
        async with httpx.AsyncClient(transport=transport, base_url=BASE_URL, timeout=30.0) as c:
            yield c
    finally:
        fastapi_app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(session_factory, users):
    async with app_client(session_factory) as c:
        yield c


@pytest_asyncio.fixture
async def admin_token(users):
    """Admin JWT token."""
    return token_for(users["admin"])


@pytest_asyncio.fixture
async def admin_headers(admin_token):
    """Auth headers for admin."""
    return auth_headers(admin_token)


@pytest_asyncio.fixture
async def editor_headers(users):
    """Auth headers for the editor who creates most test campaigns."""
    return auth_headers(token_for(users["nour"]))


@pytest_asyncio.fixture
async def other_editor_headers(users):
    """Auth headers for a second editor."""
    return auth_headers(token_for(users["karim"]))


@pytest_asyncio.fixture
async def campaign(client, editor_headers):
    """An active campaign with a goal of 1000 created by the editor."""
    return await create_campaign(client, editor_headers)
