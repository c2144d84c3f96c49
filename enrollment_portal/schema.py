"""Schema descriptor for the enrollment portal.

The schema is static configuration: a fixed, ordered tuple of `SchemaObject`s
(tables, indexes, trigger functions, triggers) that the provisioning subsystem
creates if absent and the health probe checks for.

Timestamps are ISO-8601 TEXT (UTC, with 'Z') for portability across engines. ISO
strings sort lexicographically in time order, so range filters like
`submitted_at >= ?` behave correctly.

Table and index DDL is written once for SQLite; the Postgres DDL is generated from
it with a small set of transformations (types + autoincrement). Trigger functions
and triggers differ enough between engines to be written per dialect.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Tuple


EXPECTED_TABLES: Tuple[str, ...] = (
    "users",
    "submissions",
    "file_attachments",
    "audit_logs",
    "statistics",
)


@dataclass(frozen=True)
class SchemaObject:
    kind: str  # table | index | function | trigger
    name: str
    table: str | None
    ddl: str


_TABLES_SQLITE: Dict[str, str] = {
    "users": """
CREATE TABLE IF NOT EXISTS users (
    user_id INTEGER PRIMARY KEY AUTOINCREMENT,
    email TEXT NOT NULL,
    phone TEXT,
    password_hash TEXT NOT NULL,
    role TEXT NOT NULL DEFAULT 'volunteer' CHECK (role IN ('volunteer','supervisor','team','admin')),
    first_name TEXT,
    last_name TEXT,
    district TEXT,
    taluka TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    last_login_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
)""",
    "submissions": """
CREATE TABLE IF NOT EXISTS submissions (
    submission_id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER REFERENCES users(user_id) ON DELETE SET NULL,
    filled_by_user_id INTEGER REFERENCES users(user_id) ON DELETE SET NULL,

    -- Applicant
    surname TEXT NOT NULL,
    first_name TEXT NOT NULL,
    fathers_husband_name TEXT,
    sex TEXT CHECK (sex IN ('M','F')),
    date_of_birth TEXT,
    qualification TEXT,
    occupation TEXT,

    -- Address
    district TEXT NOT NULL,
    taluka TEXT NOT NULL,
    village_name TEXT,
    house_no TEXT,
    street TEXT,
    pin_code TEXT NOT NULL,

    -- Contact
    mobile_number TEXT NOT NULL,
    email TEXT,
    aadhaar_number TEXT NOT NULL,

    -- Review
    status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending','approved','rejected')),
    rejection_reason TEXT,
    status_updated_by INTEGER REFERENCES users(user_id),
    status_updated_at TEXT,

    -- Provenance
    form_source TEXT NOT NULL DEFAULT 'public' CHECK (form_source IN ('public','team')),
    filled_for_self INTEGER NOT NULL DEFAULT 0,
    submitted_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
)""",
    "file_attachments": """
CREATE TABLE IF NOT EXISTS file_attachments (
    attachment_id INTEGER PRIMARY KEY AUTOINCREMENT,
    submission_id INTEGER REFERENCES submissions(submission_id) ON DELETE CASCADE,
    field_name TEXT NOT NULL,
    original_name TEXT NOT NULL,
    file_path TEXT NOT NULL,
    file_size INTEGER NOT NULL,
    mime_type TEXT,
    uploaded_by INTEGER REFERENCES users(user_id),
    uploaded_at TEXT NOT NULL
)""",
    "audit_logs": """
CREATE TABLE IF NOT EXISTS audit_logs (
    audit_id INTEGER PRIMARY KEY AUTOINCREMENT,
    table_name TEXT NOT NULL,
    record_id TEXT NOT NULL,
    action TEXT NOT NULL CHECK (action IN ('INSERT','UPDATE','DELETE')),
    old_values_json TEXT,
    new_values_json TEXT,
    changed_by INTEGER REFERENCES users(user_id),
    changed_at TEXT NOT NULL
)""",
    "statistics": """
CREATE TABLE IF NOT EXISTS statistics (
    statistic_id INTEGER PRIMARY KEY AUTOINCREMENT,
    metric_name TEXT NOT NULL UNIQUE,
    metric_value_json TEXT NOT NULL,
    calculated_at TEXT NOT NULL,
    expires_at TEXT
)""",
}


# (name, table, ddl)
_INDEXES_SQLITE: List[Tuple[str, str, str]] = [
    # Email/phone are unique among *active* users only.
    ("ux_users_email_active", "users", "CREATE UNIQUE INDEX IF NOT EXISTS ux_users_email_active ON users (email) WHERE is_active = 1"),
    ("ux_users_phone_active", "users", "CREATE UNIQUE INDEX IF NOT EXISTS ux_users_phone_active ON users (phone) WHERE is_active = 1 AND phone IS NOT NULL"),
    ("idx_users_role_active", "users", "CREATE INDEX IF NOT EXISTS idx_users_role_active ON users (role, is_active)"),
    ("idx_users_district_taluka", "users", "CREATE INDEX IF NOT EXISTS idx_users_district_taluka ON users (district, taluka)"),
    ("idx_submissions_status", "submissions", "CREATE INDEX IF NOT EXISTS idx_submissions_status ON submissions (status, submission_id)"),
    ("idx_submissions_submitted_at", "submissions", "CREATE INDEX IF NOT EXISTS idx_submissions_submitted_at ON submissions (submitted_at)"),
    ("idx_submissions_district_taluka", "submissions", "CREATE INDEX IF NOT EXISTS idx_submissions_district_taluka ON submissions (district, taluka)"),
    ("idx_submissions_user_id", "submissions", "CREATE INDEX IF NOT EXISTS idx_submissions_user_id ON submissions (user_id)"),
    ("idx_submissions_filled_by", "submissions", "CREATE INDEX IF NOT EXISTS idx_submissions_filled_by ON submissions (filled_by_user_id)"),
    # One enrollment per applicant mobile / Aadhaar number.
    ("ux_submissions_mobile", "submissions", "CREATE UNIQUE INDEX IF NOT EXISTS ux_submissions_mobile ON submissions (mobile_number)"),
    ("ux_submissions_aadhaar", "submissions", "CREATE UNIQUE INDEX IF NOT EXISTS ux_submissions_aadhaar ON submissions (aadhaar_number)"),
    ("idx_file_attachments_submission", "file_attachments", "CREATE INDEX IF NOT EXISTS idx_file_attachments_submission ON file_attachments (submission_id)"),
    ("idx_audit_logs_table_record", "audit_logs", "CREATE INDEX IF NOT EXISTS idx_audit_logs_table_record ON audit_logs (table_name, record_id)"),
    ("idx_audit_logs_changed_at", "audit_logs", "CREATE INDEX IF NOT EXISTS idx_audit_logs_changed_at ON audit_logs (changed_at)"),
]


# Touch updated_at on any UPDATE that didn't set it explicitly.
_SQLITE_TRIGGER_TMPL = """
CREATE TRIGGER IF NOT EXISTS {name}
AFTER UPDATE ON {table}
FOR EACH ROW WHEN NEW.updated_at = OLD.updated_at
BEGIN
    UPDATE {table} SET updated_at = strftime('%Y-%m-%dT%H:%M:%SZ', 'now') WHERE {pk} = NEW.{pk};
END"""

_PG_FUNCTION = """
CREATE FUNCTION set_updated_at() RETURNS TRIGGER AS $$
BEGIN
    IF NEW.updated_at IS NOT DISTINCT FROM OLD.updated_at THEN
        NEW.updated_at := to_char(now() AT TIME ZONE 'UTC', 'YYYY-MM-DD"T"HH24:MI:SS"Z"');
    END IF;
    RETURN NEW;
END;
$$ LANGUAGE plpgsql"""

_PG_TRIGGER_TMPL = """
CREATE TRIGGER {name}
BEFORE UPDATE ON {table}
FOR EACH ROW EXECUTE FUNCTION set_updated_at()"""

_TRIGGERS: List[Tuple[str, str, str]] = [
    ("trg_users_updated_at", "users", "user_id"),
    ("trg_submissions_updated_at", "submissions", "submission_id"),
]


def _sqlite_to_postgres(ddl: str) -> str:
    out = re.sub(r"\bREAL\b", "DOUBLE PRECISION", ddl)
    out = re.sub(
        r"INTEGER\s+PRIMARY\s+KEY\s+AUTOINCREMENT",
        "BIGSERIAL PRIMARY KEY",
        out,
        flags=re.IGNORECASE,
    )
    out = re.sub(r"\bAUTOINCREMENT\b", "", out, flags=re.IGNORECASE)
    # Foreign keys point at BIGSERIAL keys.
    out = re.sub(r"\bINTEGER\s+REFERENCES\b", "BIGINT REFERENCES", out)
    return out


def _build(dialect: str) -> Tuple[SchemaObject, ...]:
    pg = dialect == "postgres"
    objs: List[SchemaObject] = []

    for name in EXPECTED_TABLES:
        ddl = _TABLES_SQLITE[name].strip()
        objs.append(SchemaObject("table", name, name, _sqlite_to_postgres(ddl) if pg else ddl))

    for name, table, ddl in _INDEXES_SQLITE:
        objs.append(SchemaObject("index", name, table, ddl))

    if pg:
        # Postgres has no CREATE TRIGGER/FUNCTION IF NOT EXISTS; the provisioner only
        # runs these when its catalog snapshot (taken under the lock) lacks them.
        objs.append(SchemaObject("function", "set_updated_at", None, _PG_FUNCTION.strip()))
        for name, table, _pk in _TRIGGERS:
            objs.append(SchemaObject("trigger", name, table, _PG_TRIGGER_TMPL.format(name=name, table=table).strip()))
    else:
        for name, table, pk in _TRIGGERS:
            objs.append(
                SchemaObject("trigger", name, table, _SQLITE_TRIGGER_TMPL.format(name=name, table=table, pk=pk).strip())
            )

    return tuple(objs)


SCHEMA_SQLITE: Tuple[SchemaObject, ...] = _build("sqlite")
SCHEMA_POSTGRES: Tuple[SchemaObject, ...] = _build("postgres")


def get_schema_objects(dialect: str) -> Tuple[SchemaObject, ...]:
    d = (dialect or "").lower()
    if d.startswith("post"):
        return SCHEMA_POSTGRES
    return SCHEMA_SQLITE
