from __future__ import annotations

from typing import Any, Dict, Optional

from enrollment_portal.db import Database, fetch_first, row_to_dict
from enrollment_portal.errors import ErrorKind, ServiceError, invalid_input
from enrollment_portal.models import Role
from enrollment_portal.util.normalization import clean_text, normalize_email, normalize_phone
from enrollment_portal.util.time import utcnow_iso

from .security import hash_password


def _debug(msg: str) -> None:
    print(f"[auth] {msg}")


# Columns that are safe to hand back to callers (never password_hash).
PUBLIC_USER_COLUMNS = (
    "user_id",
    "email",
    "phone",
    "role",
    "first_name",
    "last_name",
    "district",
    "taluka",
    "is_active",
    "last_login_at",
    "created_at",
    "updated_at",
)


def public_user(row: Any | Dict[str, Any]) -> Dict[str, Any]:
    d = row_to_dict(row)
    d.pop("password_hash", None)
    d["is_active"] = bool(int(d.get("is_active") or 0))
    return d


def get_user_by_login(conn: Any, field: str, value: str) -> Optional[Any]:
    """Look up an active user by email or phone. `field` must already be validated."""
    if field == "email":
        v = normalize_email(value)
    elif field == "phone":
        v = normalize_phone(value)
    else:
        raise invalid_input("invalid_login_type")
    if not v:
        return None
    return conn.execute(
        f"SELECT * FROM users WHERE {field}=? AND is_active=1",
        (v,),
    ).fetchone()


def get_user_by_id(conn: Any, user_id: int) -> Optional[Any]:
    return conn.execute(
        "SELECT * FROM users WHERE user_id=?",
        (int(user_id),),
    ).fetchone()


def create_user(
    conn: Any,
    *,
    email: str | None,
    password: str,
    role: Role | str = Role.VOLUNTEER,
    phone: str | None = None,
    first_name: str | None = None,
    last_name: str | None = None,
    district: str | None = None,
    taluka: str | None = None,
) -> Dict[str, Any]:
    """Insert a user and return its public fields.

    Uniqueness of email/phone among active users is enforced by partial unique
    indexes; `ON CONFLICT DO NOTHING` turns a collision into "no row returned" on
    both SQLite and Postgres, so there is no check-then-insert race.
    """
    e = normalize_email(email)
    if not e:
        raise invalid_input("email_required")
    r = Role.parse(role)
    if r is None:
        raise invalid_input("invalid_role")
    if not password:
        raise invalid_input("password_blank")

    now = utcnow_iso()
    row = fetch_first(
        conn.execute(
            """
            INSERT INTO users (email, phone, password_hash, role, first_name, last_name, district, taluka,
                               is_active, created_at, updated_at)
            VALUES (?,?,?,?,?,?,?,?,1,?,?)
            ON CONFLICT DO NOTHING
            RETURNING *
            """,
            (
                e,
                normalize_phone(phone),
                hash_password(password),
                r.value,
                clean_text(first_name),
                clean_text(last_name),
                clean_text(district),
                clean_text(taluka),
                now,
                now,
            ),
        )
    )
    if row is None:
        raise ServiceError(ErrorKind.DUPLICATE_IDENTIFIER, "email_or_phone_exists")
    return public_user(row)


def touch_last_login(conn: Any, user_id: int) -> None:
    now = utcnow_iso()
    conn.execute(
        "UPDATE users SET last_login_at=?, updated_at=? WHERE user_id=?",
        (now, now, int(user_id)),
    )


def bootstrap_admin_if_needed(db: Database, cfg: Any) -> Optional[Dict[str, Any]]:
    """Create the first admin user if the users table is empty.

    - AUTH_BOOTSTRAP_ADMIN_EMAIL
    - AUTH_BOOTSTRAP_ADMIN_PASSWORD

    This only runs when there are 0 rows in `users`.
    """

    with db.connect() as conn:
        n = conn.execute("SELECT COUNT(*) AS n FROM users").fetchone()["n"]
        if int(n) > 0:
            return None

        email = normalize_email(getattr(cfg, "AUTH_BOOTSTRAP_ADMIN_EMAIL", "") or "")
        password = getattr(cfg, "AUTH_BOOTSTRAP_ADMIN_PASSWORD", None) or ""

        # If env explicitly clears these, don't create anything.
        if not email or not password:
            return None

        u = create_user(conn, email=email, password=password, role=Role.ADMIN)
        _debug(f"Bootstrapped initial admin user: email={u['email']}")
        return u
