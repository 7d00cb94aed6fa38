"""API token issuing and password checks."""
from __future__ import annotations

import time
from typing import Any, Optional, Tuple

from itsdangerous import BadData, URLSafeSerializer
from werkzeug.security import check_password_hash, generate_password_hash

from .config import Settings

ROLE_ADMIN = "admin"
ROLE_STAFF = "staff"


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password_hash: str | None, password: str) -> bool:
    return bool(password_hash) and check_password_hash(password_hash, password)


class TokenSigner:
    """Signs ``{"u", "iat", "exp"}`` payloads and checks their expiry on read."""

    def __init__(self, settings: Settings) -> None:
        self.default_age = settings.api_token_default_age
        self.max_age = settings.api_token_max_age
        self._serializer = URLSafeSerializer(settings.secret_key, salt=settings.api_token_salt)

    def lifetime(self, requested: Optional[int]) -> int:
        if requested is None or requested <= 0:
            return self.default_age
        return min(requested, self.max_age)

    def issue(self, username: str, lifetime: Optional[int] = None) -> Tuple[str, int, int]:
        issued_at = int(time.time())
        expires_at = issued_at + self.lifetime(lifetime)
        payload = {"u": username, "iat": issued_at, "exp": expires_at}
        return self._serializer.dumps(payload), issued_at, expires_at

    def read(self, token: str) -> Optional[str]:
        """Return the username of a valid, unexpired token."""

        try:
            payload: Any = self._serializer.loads(token)
        except BadData:
            return None
        if not isinstance(payload, dict):
            return None
        username = payload.get("u")
        exp_value = payload.get("exp")
        if not username or exp_value is None:
            return None
        try:
            expires_at = int(exp_value)
        except (TypeError, ValueError):
            return None
        if time.time() > expires_at:
            return None
        return str(username)


__all__ = ["ROLE_ADMIN", "ROLE_STAFF", "hash_password", "verify_password", "TokenSigner"]
