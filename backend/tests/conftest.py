import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from panel_payloads import PANEL_KEY, PANEL_URL


def pytest_configure(config):
    # Settings are read at import time; set them before anything imports app.*
    os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
    os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
    os.environ.setdefault("SECRET_KEY", "test-secret-key")
    os.environ.setdefault("ENCRYPTION_SECRET", "test-encryption-secret")
    os.environ.setdefault("ENV_FILE", "/nonexistent/.env")
    os.environ["PTERODACTYL_URL"] = ""
    os.environ["PTERODACTYL_API_KEY"] = ""


@pytest_asyncio.fixture
async def engine():
    from app.core.db import Base
    from app import models  # noqa: F401

    eng = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def cipher():
    from app.core.crypto import SecretCipher

    return SecretCipher("test-encryption-secret")


@pytest.fixture
def resolver(session_factory, cipher):
    from app.services.panel.config_resolver import PanelConfigResolver

    return PanelConfigResolver(
        session_factory=session_factory,
        cipher=cipher,
        ttl_seconds=300,
        env_url=PANEL_URL,
        env_key=PANEL_KEY,
    )


@pytest.fixture
def panel_client(resolver):
    from app.services.panel.client import PanelClient

    return PanelClient(resolver, timeout=5)


@pytest.fixture
def make_user(db):
    from app.core.security import hash_password
    from app.models.user import User

    counter = {"n": 0}

    async def _make(**overrides) -> User:
        counter["n"] += 1
        n = counter["n"]
        fields = {
            "username": f"user{n}",
            "email": f"user{n}@example.com",
            "password_hash": hash_password("password123"),
            "role": "user",
            "coins": 0,
            "server_slots": 1,
            "purchased_ram_mb": 0,
            "purchased_cpu_percent": 0,
            "purchased_storage_mb": 0,
        }
        fields.update(overrides)
        user = User(**fields)
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user

    return _make


@pytest.fixture
def make_server(db):
    from app.models.server import ProvisionedServer

    async def _make(user_id: int, **overrides) -> ProvisionedServer:
        fields = {
            "user_id": user_id,
            "remote_id": None,
            "name": "srv",
            "ram_mb": 1024,
            "cpu_percent": 100,
            "storage_mb": 5120,
            "public_address": None,
        }
        fields.update(overrides)
        server = ProvisionedServer(**fields)
        db.add(server)
        await db.commit()
        await db.refresh(server)
        return server

    return _make
