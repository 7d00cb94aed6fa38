"""Utility helpers for administrative tasks."""
from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from . import crud
from .auth import ROLE_ADMIN, ROLE_STAFF, hash_password
from .config import get_settings
from .database import Base, atomic, engine
from .logging_config import setup_logging
from .models import User

logger = logging.getLogger(__name__)


async def init_database(db_engine: AsyncEngine | None = None, *, seed_admin: bool = True) -> None:
    """Create database tables and the bootstrap administrator on an empty user table."""

    engine_to_use = db_engine or engine
    async with engine_to_use.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    if not seed_admin:
        return

    settings = get_settings()
    factory = async_sessionmaker(bind=engine_to_use, expire_on_commit=False)
    async with factory() as session:
        async with atomic(session):
            user_count = (await session.execute(select(func.count()).select_from(User))).scalar_one()
            if user_count:
                return
            await crud.create_user(
                session,
                username=settings.bootstrap_admin_username,
                password_hash=hash_password(settings.bootstrap_admin_password),
                role=ROLE_ADMIN,
            )
    logger.info("Created bootstrap administrator %r", settings.bootstrap_admin_username)


async def create_user(
    username: str,
    password: str,
    role: str = ROLE_STAFF,
    db_engine: AsyncEngine | None = None,
) -> User:
    factory = async_sessionmaker(bind=db_engine or engine, expire_on_commit=False)
    async with factory() as session:
        async with atomic(session):
            user = await crud.create_user(
                session, username=username, password_hash=hash_password(password), role=role
            )
    logger.info("Created user %r with role %s", username, role)
    return user


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="consignment-manage")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("init-db", help="Create tables and the bootstrap administrator.")
    user_parser = subparsers.add_parser("create-user", help="Add an API user.")
    user_parser.add_argument("username")
    user_parser.add_argument("password")
    user_parser.add_argument("--role", choices=[ROLE_ADMIN, ROLE_STAFF], default=ROLE_STAFF)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    """CLI wrapper executed from :mod:`python -m`."""

    args = build_parser().parse_args(argv)
    setup_logging()
    if args.command == "init-db":
        asyncio.run(init_database())
    elif args.command == "create-user":
        asyncio.run(create_user(args.username, args.password, args.role))


if __name__ == "__main__":
    main()
