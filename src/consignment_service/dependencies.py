"""FastAPI dependencies shared by the routers."""
from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from . import crud
from .auth import ROLE_ADMIN, TokenSigner
from .changelog import Actor
from .config import Settings, get_settings
from .database import get_session
from .models import User


def provide_settings() -> Settings:
    """Dependency returning the active :class:`Settings` instance."""

    return get_settings()


def provide_token_signer(settings: Settings = Depends(provide_settings)) -> TokenSigner:
    return TokenSigner(settings)


def extract_api_token(authorization: Optional[str], api_token: Optional[str]) -> Optional[str]:
    if authorization:
        scheme, _, token_value = authorization.partition(" ")
        if scheme.lower() == "bearer" and token_value.strip():
            return token_value.strip()
    if api_token and api_token.strip():
        return api_token.strip()
    return None


async def get_current_user(
    authorization: Optional[str] = Header(None),
    api_token: Optional[str] = Header(None, alias="X-API-Token"),
    signer: TokenSigner = Depends(provide_token_signer),
    session: AsyncSession = Depends(get_session),
) -> User:
    token = extract_api_token(authorization, api_token)
    username = signer.read(token) if token else None
    user = await crud.get_user_by_username(session, username) if username else None
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != ROLE_ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Administrator role required")
    return user


async def get_current_actor(user: User = Depends(get_current_user)) -> Actor:
    return Actor(id=user.id, name=user.username)


__all__ = [
    "provide_settings",
    "provide_token_signer",
    "extract_api_token",
    "get_current_user",
    "require_admin",
    "get_current_actor",
]
