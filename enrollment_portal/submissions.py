from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Mapping, Optional

from enrollment_portal.db import fetch_first, row_to_dict
from enrollment_portal.errors import ErrorKind, ServiceError, invalid_input
from enrollment_portal.models import Page, SubmissionFilters, SubmissionStatus
from enrollment_portal.querying import DEFAULT_LIMIT, MAX_LIMIT, Where, resolve_page
from enrollment_portal.util.normalization import clean_text, is_valid_email, normalize_email
from enrollment_portal.util.time import days_ago_iso, today_start_iso, utcnow_iso


def _debug(msg: str) -> None:
    print(f"[submissions] {msg}")


_SEARCH_COLUMNS = ("surname", "first_name", "mobile_number", "aadhaar_number", "email")

_REQUIRED = ("surname", "first_name", "district", "taluka")
_DIGITS = {
    "pin_code": 6,
    "mobile_number": 10,
    "aadhaar_number": 12,
}
FORM_SOURCES = ("public", "team")


def _digits(value: Any) -> str:
    return re.sub(r"\s+", "", str(value or ""))


def validate_submission(data: Mapping[str, Any]) -> List[str]:
    """Return every problem with an enrollment form; empty when it is acceptable."""
    errors: List[str] = []

    for f in _REQUIRED:
        if not clean_text(data.get(f)):
            errors.append(f"{f}_required")

    for f, n in _DIGITS.items():
        v = _digits(data.get(f))
        if not v:
            errors.append(f"{f}_required")
        elif not (v.isdigit() and len(v) == n):
            errors.append(f"{f}_must_be_{n}_digits")

    email = clean_text(data.get("email"))
    if email and not is_valid_email(email):
        errors.append("invalid_email")

    sex = clean_text(data.get("sex"))
    if sex and sex.upper() not in ("M", "F"):
        errors.append("sex_must_be_M_or_F")

    return errors


def create_submission(
    conn: Any,
    data: Mapping[str, Any],
    *,
    user_id: Optional[int] = None,
    filled_by_user_id: Optional[int] = None,
    form_source: str = "public",
    filled_for_self: bool = False,
) -> Dict[str, Any]:
    """Validate and insert an enrollment form. New submissions always start pending."""
    errors = validate_submission(data)
    if form_source not in FORM_SOURCES:
        errors.append("invalid_form_source")
    if errors:
        raise invalid_input(", ".join(errors))

    def text(f: str) -> Optional[str]:
        return clean_text(data.get(f))

    sex = clean_text(data.get("sex"))
    now = utcnow_iso()
    row = fetch_first(
        conn.execute(
            """
            INSERT INTO submissions (
                user_id, filled_by_user_id,
                surname, first_name, fathers_husband_name, sex, date_of_birth, qualification, occupation,
                district, taluka, village_name, house_no, street, pin_code,
                mobile_number, email, aadhaar_number,
                status, form_source, filled_for_self, submitted_at, updated_at
            )
            VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)
            ON CONFLICT DO NOTHING
            RETURNING *
            """,
            (
                user_id,
                filled_by_user_id,
                text("surname"),
                text("first_name"),
                text("fathers_husband_name"),
                sex.upper() if sex else None,
                text("date_of_birth"),
                text("qualification"),
                text("occupation"),
                text("district"),
                text("taluka"),
                text("village_name"),
                text("house_no"),
                text("street"),
                _digits(data.get("pin_code")),
                _digits(data.get("mobile_number")),
                normalize_email(data.get("email")),
                _digits(data.get("aadhaar_number")),
                SubmissionStatus.PENDING.value,
                form_source,
                1 if filled_for_self else 0,
                now,
                now,
            ),
        )
    )
    if row is None:
        # ux_submissions_mobile / ux_submissions_aadhaar
        raise ServiceError(ErrorKind.DUPLICATE_IDENTIFIER, "mobile_or_aadhaar_exists")
    out = _public(row)
    _debug(f"created submission_id={out['submission_id']} source={form_source}")
    return out


def get_submission_by_id(conn: Any, submission_id: int) -> Optional[Dict[str, Any]]:
    row = conn.execute("SELECT * FROM submissions WHERE submission_id=?", (int(submission_id),)).fetchone()
    return _public(row) if row is not None else None


def get_all_submissions(
    conn: Any,
    filters: SubmissionFilters,
    *,
    default_limit: int = DEFAULT_LIMIT,
    max_limit: int = MAX_LIMIT,
) -> Page[Dict[str, Any]]:
    """One page of submissions, newest first (submission_id DESC), plus the total count."""
    limit, offset = resolve_page(filters.limit, filters.offset, default_limit=default_limit, max_limit=max_limit)

    status = None
    if filters.status:
        s = SubmissionStatus.parse(filters.status)
        if s is None:
            raise invalid_input("invalid_status")
        status = s.value

    where = (
        Where()
        .eq("status", status)
        .eq("district", clean_text(filters.district))
        .eq("taluka", clean_text(filters.taluka))
        .eq("user_id", filters.user_id)
        .eq("filled_by_user_id", filters.filled_by_user_id)
        .since("submitted_at", filters.date_from)
        .until("submitted_at", filters.date_to)
        .search(_SEARCH_COLUMNS, filters.search)
    )

    total = conn.execute(f"SELECT COUNT(*) AS n FROM submissions {where.sql}", tuple(where.params)).fetchone()["n"]
    rows = conn.execute(
        f"""
        SELECT *
        FROM submissions
        {where.sql}
        ORDER BY submission_id DESC
        LIMIT ? OFFSET ?
        """,
        (*where.params, limit, offset),
    ).fetchall()

    return Page(items=[_public(r) for r in rows], total=int(total), limit=limit, offset=offset)


def update_submission_status(
    conn: Any,
    submission_id: int,
    new_status: str,
    actor_id: int,
    rejection_reason: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """Move a pending submission to approved or rejected (pending re-stamps the reviewer).

    The pending check and the write are one statement, so of two concurrent reviewers
    exactly one succeeds and the other sees InvalidTransition. Returns None when the
    submission does not exist.
    """
    status = SubmissionStatus.parse(new_status)
    if status is None:
        raise invalid_input("invalid_status")

    reason = clean_text(rejection_reason) if status is SubmissionStatus.REJECTED else None
    now = utcnow_iso()
    row = fetch_first(
        conn.execute(
            """
            UPDATE submissions
            SET status=?, rejection_reason=?, status_updated_by=?, status_updated_at=?, updated_at=?
            WHERE submission_id=? AND status='pending'
            RETURNING *
            """,
            (status.value, reason, int(actor_id), now, now, int(submission_id)),
        )
    )

    if row is None:
        current = conn.execute(
            "SELECT status FROM submissions WHERE submission_id=?",
            (int(submission_id),),
        ).fetchone()
        if current is None:
            return None
        raise ServiceError(ErrorKind.INVALID_TRANSITION, f"already_{current['status']}")

    out = _public(row)
    conn.execute(
        """
        INSERT INTO audit_logs (table_name, record_id, action, old_values_json, new_values_json, changed_by, changed_at)
        VALUES (?,?,?,?,?,?,?)
        """,
        (
            "submissions",
            str(out["submission_id"]),
            "UPDATE",
            json.dumps({"status": SubmissionStatus.PENDING.value}),
            json.dumps(out, default=str),
            int(actor_id),
            now,
        ),
    )
    _debug(f"submission_id={out['submission_id']} -> {status.value} by user_id={actor_id}")
    return out


def get_submission_stats(conn: Any, *, top: int = 10) -> Dict[str, Any]:
    """Totals by status and recency, plus the busiest districts and talukas."""
    totals = conn.execute(
        """
        SELECT
            COUNT(*) AS total,
            COALESCE(SUM(CASE WHEN status = 'pending' THEN 1 ELSE 0 END), 0) AS pending,
            COALESCE(SUM(CASE WHEN status = 'approved' THEN 1 ELSE 0 END), 0) AS approved,
            COALESCE(SUM(CASE WHEN status = 'rejected' THEN 1 ELSE 0 END), 0) AS rejected,
            COALESCE(SUM(CASE WHEN submitted_at >= ? THEN 1 ELSE 0 END), 0) AS today,
            COALESCE(SUM(CASE WHEN submitted_at >= ? THEN 1 ELSE 0 END), 0) AS this_week,
            COALESCE(SUM(CASE WHEN submitted_at >= ? THEN 1 ELSE 0 END), 0) AS this_month
        FROM submissions
        """,
        (today_start_iso(), days_ago_iso(7), days_ago_iso(30)),
    ).fetchone()

    by_district = conn.execute(
        """
        SELECT district, COUNT(*) AS count
        FROM submissions
        GROUP BY district
        ORDER BY count DESC, district ASC
        LIMIT ?
        """,
        (int(top),),
    ).fetchall()

    by_taluka = conn.execute(
        """
        SELECT district, taluka, COUNT(*) AS count
        FROM submissions
        GROUP BY district, taluka
        ORDER BY count DESC, district ASC, taluka ASC
        LIMIT ?
        """,
        (int(top),),
    ).fetchall()

    t = row_to_dict(totals)
    return {
        "total": int(t["total"]),
        "by_status": {s.value: int(t[s.value]) for s in SubmissionStatus},
        "today": int(t["today"]),
        "this_week": int(t["this_week"]),
        "this_month": int(t["this_month"]),
        "by_district": [{"district": str(r["district"]), "count": int(r["count"])} for r in by_district],
        "by_taluka": [
            {"district": str(r["district"]), "taluka": str(r["taluka"]), "count": int(r["count"])} for r in by_taluka
        ],
    }


def _public(row: Any) -> Dict[str, Any]:
    d = row_to_dict(row)
    d["filled_for_self"] = bool(int(d.get("filled_for_self") or 0))
    return d
