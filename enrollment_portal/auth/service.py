from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from enrollment_portal.db import Database
from enrollment_portal.errors import ErrorKind, ServiceError, invalid_input
from enrollment_portal.models import Role, UserProfile
from enrollment_portal.util.normalization import is_valid_email, normalize_email

from .crud import create_user, get_user_by_login, public_user, touch_last_login
from .security import TokenService, dummy_verify, verify_password


LOGIN_TYPES = ("email", "phone")


def _debug(msg: str) -> None:
    print(f"[auth] {msg}")


@dataclass(frozen=True)
class AuthResult:
    user: Dict[str, Any]
    token: str

    def to_dict(self) -> Dict[str, Any]:
        return {"access_token": self.token, "token_type": "bearer", "user": self.user}


class AuthService:
    """Login and self-serve registration.

    Both operations return the same `AuthResult` shape (public user + session token),
    so a caller cannot tell a fresh registration from a login by payload alone.
    """

    def __init__(self, db: Database, tokens: TokenService, *, min_password_length: int = 8) -> None:
        self.db = db
        self.tokens = tokens
        self.min_password_length = max(1, int(min_password_length))

    def authenticate(self, login_field: str, password: str, login_type: str) -> AuthResult:
        """Verify credentials and mint a token.

        Unknown identifier, inactive account and wrong password all raise the same
        INVALID_CREDENTIALS error, and all three pay for one hash verification.
        """
        if login_type not in LOGIN_TYPES:
            raise invalid_input("invalid_login_type")
        if not login_field or not password:
            raise invalid_input("login_field_and_password_required")

        with self.db.connect() as conn:
            row = get_user_by_login(conn, login_type, login_field)
            if row is None:
                dummy_verify()
                raise ServiceError(ErrorKind.INVALID_CREDENTIALS, "invalid_credentials")
            if not verify_password(password, str(row["password_hash"] or "")):
                raise ServiceError(ErrorKind.INVALID_CREDENTIALS, "invalid_credentials")

            touch_last_login(conn, int(row["user_id"]))
            user = public_user(row)

        return self._issue(user)

    def register(self, profile: UserProfile, password: str) -> AuthResult:
        """Create a volunteer account. Any role the caller asks for is ignored."""
        email = normalize_email(profile.email)
        if not email:
            raise invalid_input("email_required")
        if not is_valid_email(email):
            raise invalid_input("invalid_email")
        if len(password or "") < self.min_password_length:
            raise invalid_input("password_too_short")

        with self.db.connect() as conn:
            user = create_user(
                conn,
                email=email,
                password=password,
                role=Role.VOLUNTEER,
                phone=profile.phone,
                first_name=profile.first_name,
                last_name=profile.last_name,
                district=profile.district,
                taluka=profile.taluka,
            )

        _debug(f"Registered user_id={user['user_id']} role={user['role']}")
        return self._issue(user)

    def _issue(self, user: Dict[str, Any]) -> AuthResult:
        token = self.tokens.mint(user_id=int(user["user_id"]), role=str(user["role"]))
        return AuthResult(user=user, token=token)
