from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt
from passlib.context import CryptContext


# pbkdf2_sha256 hashes embed a random per-user salt; verify() compares in constant time.
_pwd = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
_JWT_ALG = "HS256"


def hash_password(password: str) -> str:
    if not password:
        raise ValueError("password_blank")
    return _pwd.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password or not password_hash:
        # Still burn a hash so a blank field is not a timing oracle.
        _pwd.dummy_verify()
        return False
    try:
        return _pwd.verify(password, password_hash)
    except ValueError:
        # Malformed / unknown hash format stored in the row.
        return False


def dummy_verify() -> None:
    """Spend the same time as a real verification (used when the user is unknown)."""
    _pwd.dummy_verify()


def create_access_token(
    *,
    secret: str,
    user_id: int,
    role: str,
    expires_minutes: int,
    now: datetime | None = None,
) -> str:
    if not secret:
        raise ValueError("jwt_secret_blank")

    issued = now or datetime.now(timezone.utc)
    exp = issued + timedelta(minutes=max(1, int(expires_minutes)))

    payload: Dict[str, Any] = {
        "sub": str(user_id),
        "role": role,
        "iat": int(issued.timestamp()),
        "exp": int(exp.timestamp()),
    }
    return jwt.encode(payload, secret, algorithm=_JWT_ALG)


def decode_access_token(*, token: str, secret: str) -> Dict[str, Any]:
    """Verify signature + expiry and return the claims.

    Raises jwt.ExpiredSignatureError / jwt.InvalidTokenError on bad tokens.
    """
    if not token:
        raise jwt.InvalidTokenError("token_blank")
    if not secret:
        raise ValueError("jwt_secret_blank")
    return jwt.decode(
        token,
        secret,
        algorithms=[_JWT_ALG],
        options={"require": ["sub", "role", "iat", "exp"]},
    )


@dataclass(frozen=True)
class TokenService:
    """Mints and verifies session tokens with a server-held secret. Holds no other state."""

    secret: str
    expires_minutes: int

    def mint(self, *, user_id: int, role: str) -> str:
        return create_access_token(
            secret=self.secret,
            user_id=user_id,
            role=role,
            expires_minutes=self.expires_minutes,
        )

    def decode(self, token: str) -> Dict[str, Any]:
        return decode_access_token(token=token, secret=self.secret)
