from __future__ import annotations

import pytest
from sqlalchemy import select

from consignment_service import management
from consignment_service.auth import ROLE_ADMIN, verify_password
from consignment_service.config import get_settings
from consignment_service.errors import DuplicateNameError
from consignment_service.models import User


async def _users(session_factory) -> list[User]:
    async with session_factory() as db_session:
        return (await db_session.execute(select(User).order_by(User.username))).scalars().all()


async def test_init_database_seeds_admin_once(engine, session_factory) -> None:
    settings = get_settings()

    await management.init_database(engine)
    await management.init_database(engine)

    users = await _users(session_factory)
    assert [user.username for user in users] == [settings.bootstrap_admin_username]
    assert users[0].role == ROLE_ADMIN
    assert verify_password(users[0].password_hash, settings.bootstrap_admin_password)


async def test_init_database_skips_seed_when_users_exist(engine, session_factory, admin_user) -> None:
    await management.init_database(engine)

    assert [user.username for user in await _users(session_factory)] == [admin_user.username]


async def test_create_user_rejects_duplicates(engine, session_factory) -> None:
    await management.create_user("clerk", "secret", db_engine=engine)

    with pytest.raises(DuplicateNameError):
        await management.create_user("clerk", "other", db_engine=engine)

    assert [user.role for user in await _users(session_factory)] == ["staff"]


def test_parser_requires_a_command() -> None:
    parser = management.build_parser()

    args = parser.parse_args(["create-user", "clerk", "secret", "--role", "admin"])
    assert (args.command, args.username, args.role) == ("create-user", "clerk", "admin")
    with pytest.raises(SystemExit):
        parser.parse_args([])
