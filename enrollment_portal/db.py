from __future__ import annotations

import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

from enrollment_portal.errors import ErrorKind, ServiceError


def _debug(msg: str) -> None:
    print(f"[db] {msg}")


def detect_dialect(dsn: str) -> str:
    """Return 'postgres' or 'sqlite'."""
    s = (dsn or "").strip()
    if not s:
        return "sqlite"
    try:
        scheme = urlparse(s).scheme.lower()
    except ValueError:
        scheme = ""
    if scheme in ("postgres", "postgresql"):
        return "postgres"
    # Allow sqlite:///path style, but default is file path.
    return "sqlite"


def _sqlite_path(dsn: str) -> str:
    s = (dsn or "").strip()
    if s.lower().startswith("sqlite:///"):
        s = s[len("sqlite:///") :]
    return s


def _qmark_to_pct(sql: str) -> str:
    """Convert SQLite qmark placeholders (?) to psycopg2 placeholders (%s).

    '?' inside single/double-quoted literals is left alone, and a literal '%' is
    doubled so psycopg2 does not read it as a placeholder.
    """
    out: List[str] = []
    in_single = False
    in_double = False
    i = 0
    while i < len(sql):
        ch = sql[i]

        if ch == "'" and not in_double:
            out.append(ch)
            if in_single:
                # Escaped single quote: ''
                if i + 1 < len(sql) and sql[i + 1] == "'":
                    out.append("'")
                    i += 2
                    continue
                in_single = False
            else:
                in_single = True
            i += 1
            continue

        if ch == '"' and not in_single:
            out.append(ch)
            if in_double:
                if i + 1 < len(sql) and sql[i + 1] == '"':
                    out.append('"')
                    i += 2
                    continue
                in_double = False
            else:
                in_double = True
            i += 1
            continue

        if ch == "%":
            out.append("%%")
            i += 1
            continue

        if ch == "?" and not in_single and not in_double:
            out.append("%s")
            i += 1
            continue

        out.append(ch)
        i += 1

    return "".join(out)


def row_to_dict(row: Any) -> Dict[str, Any]:
    return dict(row)


def fetch_first(cur: Any) -> Optional[Any]:
    """Return the first row of a (possibly RETURNING) statement, draining the cursor."""
    rows = cur.fetchall()
    return rows[0] if rows else None


class PGCursor:
    def __init__(self, cur: Any):
        self._cur = cur

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> "PGCursor":
        self._cur.execute(_qmark_to_pct(sql), tuple(params or ()))
        return self

    def fetchone(self) -> Any:
        return self._cur.fetchone()

    def fetchall(self) -> Any:
        return self._cur.fetchall()

    @property
    def rowcount(self) -> int:
        return int(self._cur.rowcount or 0)

    def close(self) -> None:
        self._cur.close()

    def __getattr__(self, name: str) -> Any:
        return getattr(self._cur, name)


class PGConnection:
    """A tiny adapter that makes psycopg2 connections look like sqlite3 connections."""

    dialect = "postgres"

    def __init__(self, conn: Any):
        self._conn = conn

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> PGCursor:
        wrapper = PGCursor(self._conn.cursor())
        wrapper.execute(sql, params)
        return wrapper

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    @property
    def closed(self) -> bool:
        return bool(self._conn.closed)


class SQLiteConnection:
    """sqlite3 connection carrying the same `dialect` marker as PGConnection."""

    dialect = "sqlite"

    def __init__(self, conn: sqlite3.Connection, *, statement_timeout_ms: int = 0):
        self._conn = conn
        self._timeout = statement_timeout_ms / 1000.0
        self._deadline = float("inf")
        if statement_timeout_ms:
            # Returning non-zero aborts the running statement with "interrupted".
            conn.set_progress_handler(self._expired, 10000)

    def _expired(self) -> int:
        return 1 if time.monotonic() > self._deadline else 0

    def _arm(self) -> None:
        # Each statement gets its own deadline.
        if self._timeout:
            self._deadline = time.monotonic() + self._timeout

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> sqlite3.Cursor:
        self._arm()
        return self._conn.execute(sql, tuple(params or ()))

    def commit(self) -> None:
        self._arm()
        self._conn.commit()

    def rollback(self) -> None:
        self._arm()
        self._conn.rollback()


class Database:
    """Handle to the relational store shared by every service.

    - SQLite: one connection per unit of work, WAL + busy timeout, and a progress
      handler that interrupts any single statement running past the statement
      timeout (the deadline restarts on every `execute`).
    - Postgres: a psycopg2 ThreadedConnectionPool (RealDictCursor rows), with
      connect_timeout and statement_timeout set on every pooled connection.

    `connect()` commits on success and rolls back on error. Failing to reach the
    store raises ServiceError(DATABASE_UNAVAILABLE).
    """

    def __init__(
        self,
        dsn: str,
        *,
        connect_timeout_seconds: int = 5,
        statement_timeout_ms: int = 15000,
        pool_min: int = 1,
        pool_max: int = 10,
    ) -> None:
        self.dsn = (dsn or "").strip()
        self.dialect = detect_dialect(self.dsn)
        self.connect_timeout_seconds = max(1, int(connect_timeout_seconds))
        self.statement_timeout_ms = max(0, int(statement_timeout_ms))
        self._pool_min = max(0, int(pool_min))
        self._pool_max = max(1, int(pool_max))
        self._pool: Any = None
        self._pool_lock = threading.Lock()

    @classmethod
    def from_config(cls, cfg: Any) -> "Database":
        return cls(
            cfg.DB_DSN,
            connect_timeout_seconds=cfg.DB_CONNECT_TIMEOUT_SECONDS,
            statement_timeout_ms=cfg.DB_STATEMENT_TIMEOUT_MS,
            pool_min=cfg.DB_POOL_MIN,
            pool_max=cfg.DB_POOL_MAX,
        )

    @contextmanager
    def connect(self, *, read_only: bool = False) -> Iterator[Any]:
        if self.dialect == "postgres":
            with self._connect_postgres(read_only=read_only) as conn:
                yield conn
            return
        with self._connect_sqlite(read_only=read_only) as conn:
            yield conn

    # -----------------
    # SQLite
    # -----------------

    @contextmanager
    def _connect_sqlite(self, *, read_only: bool) -> Iterator[SQLiteConnection]:
        path = _sqlite_path(self.dsn)
        try:
            if read_only:
                # mode=ro never creates the file, so probing a missing DB reports it missing.
                raw = sqlite3.connect(
                    f"{Path(path).resolve().as_uri()}?mode=ro",
                    uri=True,
                    timeout=self.connect_timeout_seconds,
                    check_same_thread=False,
                )
            else:
                Path(path).parent.mkdir(parents=True, exist_ok=True)
                raw = sqlite3.connect(path, timeout=self.connect_timeout_seconds, check_same_thread=False)
            raw.row_factory = sqlite3.Row
            raw.execute(f"PRAGMA busy_timeout={self.connect_timeout_seconds * 1000};")
            if not read_only:
                raw.execute("PRAGMA journal_mode=WAL;")
                raw.execute("PRAGMA synchronous=NORMAL;")
            raw.execute("PRAGMA foreign_keys = ON;")
        except (sqlite3.OperationalError, OSError) as e:
            raise ServiceError(ErrorKind.DATABASE_UNAVAILABLE, f"sqlite_connect_failed: {e}") from e

        conn = SQLiteConnection(raw, statement_timeout_ms=self.statement_timeout_ms)
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            raw.close()

    # -----------------
    # Postgres
    # -----------------

    def _get_pool(self) -> Any:
        if self._pool is not None:
            return self._pool
        with self._pool_lock:
            if self._pool is None:
                try:
                    import psycopg2.extras
                    import psycopg2.pool
                except ImportError as e:
                    raise RuntimeError(
                        "Postgres selected but psycopg2 is not installed. "
                        "Install psycopg2-binary and try again."
                    ) from e

                options = f"-c statement_timeout={self.statement_timeout_ms}" if self.statement_timeout_ms else None
                _debug(f"Opening Postgres pool min={self._pool_min} max={self._pool_max}")
                self._pool = psycopg2.pool.ThreadedConnectionPool(
                    self._pool_min,
                    self._pool_max,
                    self.dsn,
                    cursor_factory=psycopg2.extras.RealDictCursor,
                    connect_timeout=self.connect_timeout_seconds,
                    options=options,
                )
        return self._pool

    @contextmanager
    def _connect_postgres(self, *, read_only: bool) -> Iterator[PGConnection]:
        import psycopg2

        try:
            pool = self._get_pool()
            raw = pool.getconn()
        except psycopg2.Error as e:
            raise ServiceError(ErrorKind.DATABASE_UNAVAILABLE, f"postgres_connect_failed: {e}") from e

        conn = PGConnection(raw)
        discard = False
        try:
            if read_only:
                conn.execute("SET TRANSACTION READ ONLY")
            yield conn
            conn.commit()
        except psycopg2.OperationalError as e:
            # Includes statement timeouts (QueryCanceled) and dropped connections.
            discard = conn.closed
            if not conn.closed:
                conn.rollback()
            raise ServiceError(ErrorKind.DATABASE_UNAVAILABLE, f"postgres_error: {e}") from e
        except Exception:
            discard = conn.closed
            if not conn.closed:
                conn.rollback()
            raise
        finally:
            pool.putconn(raw, close=discard)

    def driver_errors(self) -> Tuple[type, ...]:
        """Exception base classes raised by the active driver for failed statements."""
        if self.dialect == "postgres":
            import psycopg2

            return (psycopg2.Error,)
        return (sqlite3.Error,)

    def close(self) -> None:
        with self._pool_lock:
            if self._pool is not None:
                self._pool.closeall()
                self._pool = None


def list_tables(conn: Any) -> List[str]:
    """Names of the user tables that currently exist, sorted."""
    if getattr(conn, "dialect", "sqlite") == "postgres":
        rows = conn.execute(
            """
            SELECT table_name AS name
            FROM information_schema.tables
            WHERE table_schema = current_schema() AND table_type = 'BASE TABLE'
            ORDER BY table_name
            """
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
        ).fetchall()
    return [str(r["name"]) for r in rows]
