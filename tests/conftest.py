from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from consignment_service import crud
from consignment_service.api import create_app
from consignment_service.auth import ROLE_ADMIN, TokenSigner, hash_password
from consignment_service.changelog import Actor
from consignment_service.config import Settings
from consignment_service.database import Base, create_engine, get_session

ADMIN_USERNAME = "admin"
ADMIN_PASSWORD = "admin-password"


@pytest.fixture()
def test_settings(tmp_path) -> Settings:
    db_path = tmp_path / "test.db"
    return Settings(
        database_url=f"sqlite+aiosqlite:///{db_path}",
        environment="test",
        access_control_allow_origin="*",
        app_name="Test Consignment Service",
        secret_key="test-secret",
        log_level="WARNING",
    )


@pytest.fixture()
async def engine(test_settings: Settings) -> AsyncIterator[AsyncEngine]:
    db_engine = create_engine(test_settings.database_url, echo=False)
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield db_engine
    await db_engine.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture()
async def session(session_factory) -> AsyncIterator[AsyncSession]:
    async with session_factory() as db_session:
        yield db_session


@pytest.fixture()
async def admin_user(session_factory):
    async with session_factory() as db_session:
        user = await crud.create_user(
            db_session,
            username=ADMIN_USERNAME,
            password_hash=hash_password(ADMIN_PASSWORD),
            role=ROLE_ADMIN,
        )
        await db_session.commit()
    return user


@pytest.fixture()
def actor() -> Actor:
    return Actor(id="user-1", name="tester")


@pytest.fixture()
async def app(test_settings: Settings, session_factory) -> AsyncIterator[FastAPI]:
    async def override_get_session() -> AsyncIterator[AsyncSession]:
        async with session_factory() as db_session:
            yield db_session

    application = create_app(test_settings)
    application.dependency_overrides[get_session] = override_get_session
    yield application


@pytest.fixture()
async def anonymous_client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
        yield http_client


@pytest.fixture()
async def client(app: FastAPI, test_settings: Settings, admin_user) -> AsyncIterator[AsyncClient]:
    token, _, _ = TokenSigner(test_settings).issue(admin_user.username)
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"Authorization": f"Bearer {token}"},
    ) as http_client:
        yield http_client
