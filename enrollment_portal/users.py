from __future__ import annotations

from typing import Any, Dict, Optional

from enrollment_portal.auth.crud import PUBLIC_USER_COLUMNS, public_user
from enrollment_portal.db import fetch_first
from enrollment_portal.errors import invalid_input
from enrollment_portal.models import Page, Role, UserFilters
from enrollment_portal.querying import DEFAULT_LIMIT, MAX_LIMIT, Where, resolve_page
from enrollment_portal.util.normalization import clean_text
from enrollment_portal.util.time import utcnow_iso


_COLS = ", ".join(PUBLIC_USER_COLUMNS)
_SEARCH_COLUMNS = ("first_name", "last_name", "email", "phone")


def get_users(
    conn: Any,
    filters: UserFilters,
    *,
    default_limit: int = DEFAULT_LIMIT,
    max_limit: int = MAX_LIMIT,
) -> Page[Dict[str, Any]]:
    """One page of users plus the total matching count.

    Ordered by user_id DESC: ids are assigned once and only grow, so advancing the
    offset never skips or repeats a row.
    """
    limit, offset = resolve_page(filters.limit, filters.offset, default_limit=default_limit, max_limit=max_limit)

    role = None
    if filters.role:
        r = Role.parse(filters.role)
        if r is None:
            raise invalid_input("invalid_role")
        role = r.value

    where = (
        Where()
        .eq("role", role)
        .eq("district", clean_text(filters.district))
        .eq("taluka", clean_text(filters.taluka))
        .eq("is_active", None if filters.is_active is None else (1 if filters.is_active else 0))
        .since("created_at", filters.created_from)
        .until("created_at", filters.created_to)
        .search(_SEARCH_COLUMNS, filters.search)
    )

    total = conn.execute(f"SELECT COUNT(*) AS n FROM users {where.sql}", tuple(where.params)).fetchone()["n"]
    rows = conn.execute(
        f"""
        SELECT {_COLS}
        FROM users
        {where.sql}
        ORDER BY user_id DESC
        LIMIT ? OFFSET ?
        """,
        (*where.params, limit, offset),
    ).fetchall()

    return Page(items=[public_user(r) for r in rows], total=int(total), limit=limit, offset=offset)


def get_user(conn: Any, user_id: int) -> Optional[Dict[str, Any]]:
    row = conn.execute(f"SELECT {_COLS} FROM users WHERE user_id=?", (int(user_id),)).fetchone()
    return public_user(row) if row is not None else None


def deactivate_user(conn: Any, user_id: int) -> Optional[Dict[str, Any]]:
    """Soft delete. Returns the updated user, or None when the id does not exist."""
    row = fetch_first(
        conn.execute(
            f"UPDATE users SET is_active=0, updated_at=? WHERE user_id=? RETURNING {_COLS}",
            (utcnow_iso(), int(user_id)),
        )
    )
    return public_user(row) if row is not None else None


def get_user_stats(conn: Any, *, top_districts: int = 10) -> Dict[str, Any]:
    """Counts by role and by active flag, computed from the table as it is right now."""
    totals = conn.execute(
        """
        SELECT
            COUNT(*) AS total,
            COALESCE(SUM(CASE WHEN is_active = 1 THEN 1 ELSE 0 END), 0) AS active,
            COALESCE(SUM(CASE WHEN is_active = 1 THEN 0 ELSE 1 END), 0) AS inactive
        FROM users
        """
    ).fetchone()

    grouped = conn.execute(
        """
        SELECT role, is_active, COUNT(*) AS count
        FROM users
        GROUP BY role, is_active
        ORDER BY role, is_active
        """
    ).fetchall()

    by_role: Dict[str, int] = {r.value: 0 for r in Role}
    by_role_active: Dict[str, Dict[str, int]] = {r.value: {"active": 0, "inactive": 0} for r in Role}
    for g in grouped:
        role = str(g["role"])
        n = int(g["count"])
        by_role[role] = by_role.get(role, 0) + n
        bucket = by_role_active.setdefault(role, {"active": 0, "inactive": 0})
        bucket["active" if int(g["is_active"] or 0) == 1 else "inactive"] += n

    districts = conn.execute(
        """
        SELECT district, COUNT(*) AS count
        FROM users
        WHERE is_active = 1 AND district IS NOT NULL
        GROUP BY district
        ORDER BY count DESC, district ASC
        LIMIT ?
        """,
        (int(top_districts),),
    ).fetchall()

    return {
        "total": int(totals["total"]),
        "active": int(totals["active"]),
        "inactive": int(totals["inactive"]),
        "by_role": by_role,
        "by_role_active": by_role_active,
        "by_district": [{"district": str(d["district"]), "count": int(d["count"])} for d in districts],
    }
