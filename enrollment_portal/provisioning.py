"""Database self-provisioning and health checks.

`get_health_status()` is a read-only readiness probe:

  unhealthy  cannot connect (reason recorded)
  degraded   connected, but one or more expected tables are missing
  healthy    connected, every expected table present

`initialize_database()` creates whatever the schema descriptor lists and the store
lacks. It never drops or alters an existing object, so it is safe to call on every
startup from every instance:

- Only one process provisions at a time. Postgres uses a transaction-scoped
  advisory lock polled until DB_INIT_LOCK_TIMEOUT_SECONDS; SQLite takes the
  database write lock with BEGIN IMMEDIATE.
- Each object runs inside its own SAVEPOINT, so one failing index is rolled back and
  reported without aborting the other objects.
- "Created" counts come from diffing a catalog snapshot taken while holding the lock.

Neither operation raises; failures are reported on the returned objects.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Set

from enrollment_portal.db import Database, list_tables
from enrollment_portal.errors import ErrorKind, ServiceError
from enrollment_portal.schema import EXPECTED_TABLES, SchemaObject, get_schema_objects
from enrollment_portal.util.time import utcnow_iso


HEALTHY = "healthy"
DEGRADED = "degraded"
UNHEALTHY = "unhealthy"

# Arbitrary, but must be the same for every instance sharing a database.
PROVISIONING_LOCK_KEY = 715002101

_KIND_TO_FIELD = {
    "table": "tables_created",
    "index": "indexes_created",
    "function": "functions_created",
    "trigger": "triggers_created",
}


def _debug(msg: str) -> None:
    print(f"[provisioning] {msg}")


@dataclass
class HealthReport:
    status: str
    checked_at: str
    connection: bool = False
    reason: Optional[str] = None
    tables: List[str] = field(default_factory=list)
    missing_tables: List[str] = field(default_factory=list)
    total_submissions: int = 0
    last_submission_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "checked_at": self.checked_at,
            "reason": self.reason,
            "database": {
                "connection": self.connection,
                "tables": {
                    "existing": self.tables,
                    "missing": self.missing_tables,
                },
                "data": {
                    "total_submissions": self.total_submissions,
                    "last_submission_at": self.last_submission_at,
                },
            },
        }


@dataclass
class ProvisioningResult:
    tables_created: List[str] = field(default_factory=list)
    indexes_created: List[str] = field(default_factory=list)
    functions_created: List[str] = field(default_factory=list)
    triggers_created: List[str] = field(default_factory=list)
    # One entry per failed object: {"object": name, "kind": kind, "error": message}
    errors: List[Dict[str, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def created_count(self) -> int:
        return (
            len(self.tables_created)
            + len(self.indexes_created)
            + len(self.functions_created)
            + len(self.triggers_created)
        )

    @property
    def error_kind(self) -> Optional[ErrorKind]:
        return None if self.ok else ErrorKind.PROVISIONING_PARTIAL_FAILURE

    def record(self, obj: SchemaObject) -> None:
        getattr(self, _KIND_TO_FIELD[obj.kind]).append(obj.name)

    def fail(self, name: str, kind: str, error: str) -> None:
        self.errors.append({"object": name, "kind": kind, "error": error})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.ok,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "created": self.created_count,
            "tables_created": self.tables_created,
            "indexes_created": self.indexes_created,
            "functions_created": self.functions_created,
            "triggers_created": self.triggers_created,
            "errors": self.errors,
        }


class DatabaseProvisioner:
    def __init__(
        self,
        db: Database,
        *,
        lock_timeout_seconds: float = 30.0,
        schema: Sequence[SchemaObject] | None = None,
        expected_tables: Sequence[str] = EXPECTED_TABLES,
    ) -> None:
        self.db = db
        self.lock_timeout_seconds = max(0.0, float(lock_timeout_seconds))
        self.schema = tuple(schema) if schema is not None else get_schema_objects(db.dialect)
        self.expected_tables = tuple(expected_tables)

    # -----------------
    # Health
    # -----------------

    def get_health_status(self) -> HealthReport:
        report = HealthReport(status=UNHEALTHY, checked_at=utcnow_iso())
        try:
            with self.db.connect(read_only=True) as conn:
                conn.execute("SELECT 1").fetchall()
                report.connection = True

                report.tables = list_tables(conn)
                report.missing_tables = [t for t in self.expected_tables if t not in report.tables]

                if "submissions" in report.tables:
                    row = conn.execute(
                        "SELECT COUNT(*) AS n, MAX(submitted_at) AS last_at FROM submissions"
                    ).fetchone()
                    report.total_submissions = int(row["n"] or 0)
                    report.last_submission_at = row["last_at"]
        except ServiceError as e:
            report.reason = e.detail
            _debug(f"Health probe failed: {e.detail}")
            return report
        except self.db.driver_errors() as e:
            report.reason = f"{type(e).__name__}: {e}"
            _debug(f"Health probe failed: {report.reason}")
            return report

        if report.missing_tables:
            report.status = DEGRADED
            report.reason = "missing_tables"
        else:
            report.status = HEALTHY
        return report

    # -----------------
    # Provisioning
    # -----------------

    def initialize_database(self) -> ProvisioningResult:
        result = ProvisioningResult()
        started = time.monotonic()
        _debug(f"Provisioning {len(self.schema)} schema objects ({self.db.dialect})")
        try:
            with self.db.connect() as conn:
                with self._provisioning_lock(conn) as acquired:
                    if not acquired:
                        result.fail("provisioning_lock", "lock", "lock_timeout")
                        return result
                    present = self._snapshot(conn)
                    for i, obj in enumerate(self.schema):
                        if obj.name in present.get(obj.kind, set()):
                            continue
                        self._create(conn, i, obj, result)
        except ServiceError as e:
            result.fail("connection", "database", e.detail)
        except self.db.driver_errors() as e:
            result.fail("connection", "database", f"{type(e).__name__}: {e}")

        elapsed = time.monotonic() - started
        _debug(
            f"Provisioning done in {elapsed:.2f}s created={result.created_count} "
            f"tables={result.tables_created} errors={len(result.errors)}"
        )
        return result

    def _create(self, conn: Any, i: int, obj: SchemaObject, result: ProvisioningResult) -> None:
        sp = f"provision_{i}"
        conn.execute(f"SAVEPOINT {sp}")
        try:
            conn.execute(obj.ddl)
        except self.db.driver_errors() as e:
            conn.execute(f"ROLLBACK TO SAVEPOINT {sp}")
            conn.execute(f"RELEASE SAVEPOINT {sp}")
            msg = str(e).strip().splitlines()[0] if str(e).strip() else type(e).__name__
            _debug(f"Failed to create {obj.kind} {obj.name}: {msg}")
            result.fail(obj.name, obj.kind, msg)
            return
        conn.execute(f"RELEASE SAVEPOINT {sp}")
        result.record(obj)
        _debug(f"Created {obj.kind} {obj.name}")

    @contextmanager
    def _provisioning_lock(self, conn: Any) -> Iterator[bool]:
        if self.db.dialect == "postgres":
            # Transaction-scoped: released by the commit/rollback in Database.connect(),
            # so a failure can never leave the lock held on a pooled connection.
            deadline = time.monotonic() + self.lock_timeout_seconds
            while True:
                row = conn.execute(
                    "SELECT pg_try_advisory_xact_lock(?) AS locked", (PROVISIONING_LOCK_KEY,)
                ).fetchone()
                if row["locked"]:
                    break
                if time.monotonic() >= deadline:
                    _debug("Timed out waiting for provisioning lock")
                    yield False
                    return
                time.sleep(0.25)
            yield True
            return

        # SQLite: the database write lock is the mutex; wait for it up to the lock timeout.
        conn.execute(f"PRAGMA busy_timeout={int(self.lock_timeout_seconds * 1000)};")
        try:
            conn.execute("BEGIN IMMEDIATE")
        except self.db.driver_errors() as e:
            _debug(f"Could not take provisioning lock: {e}")
            yield False
            return
        yield True

    def _snapshot(self, conn: Any) -> Dict[str, Set[str]]:
        """Which schema objects already exist, keyed by kind."""
        if self.db.dialect == "postgres":
            indexes = conn.execute(
                "SELECT indexname AS name FROM pg_indexes WHERE schemaname = current_schema()"
            ).fetchall()
            functions = conn.execute(
                """
                SELECT p.proname AS name
                FROM pg_proc p
                JOIN pg_namespace n ON n.oid = p.pronamespace
                WHERE n.nspname = current_schema()
                """
            ).fetchall()
            triggers = conn.execute(
                """
                SELECT t.tgname AS name
                FROM pg_trigger t
                JOIN pg_class c ON c.oid = t.tgrelid
                JOIN pg_namespace n ON n.oid = c.relnamespace
                WHERE NOT t.tgisinternal AND n.nspname = current_schema()
                """
            ).fetchall()
            return {
                "table": set(list_tables(conn)),
                "index": {str(r["name"]) for r in indexes},
                "function": {str(r["name"]) for r in functions},
                "trigger": {str(r["name"]) for r in triggers},
            }

        rows = conn.execute("SELECT type, name FROM sqlite_master").fetchall()
        out: Dict[str, Set[str]] = {"table": set(), "index": set(), "trigger": set(), "function": set()}
        for r in rows:
            kind = str(r["type"])
            if kind in out:
                out[kind].add(str(r["name"]))
        return out
