import sqlite3
import threading

from enrollment_portal.db import Database
from enrollment_portal.errors import ErrorKind
from enrollment_portal.provisioning import DEGRADED, HEALTHY, UNHEALTHY, DatabaseProvisioner
from enrollment_portal.schema import EXPECTED_TABLES, SchemaObject, get_schema_objects


def test_initialize_is_idempotent(db):
    prov = DatabaseProvisioner(db, lock_timeout_seconds=2.0)

    first = prov.initialize_database()
    assert first.ok, first.errors
    assert set(first.tables_created) == set(EXPECTED_TABLES)
    assert first.indexes_created
    assert first.triggers_created
    assert first.created_count == len(get_schema_objects("sqlite"))

    second = prov.initialize_database()
    assert second.ok
    assert second.created_count == 0


def test_health_reports_healthy_after_init(provisioned):
    report = DatabaseProvisioner(provisioned).get_health_status()
    assert report.status == HEALTHY
    assert report.connection is True
    assert report.missing_tables == []
    assert report.total_submissions == 0
    assert report.to_dict()["database"]["tables"]["missing"] == []


def test_missing_database_is_unhealthy_and_not_created(tmp_path):
    path = tmp_path / "nowhere.sqlite"
    db = Database(str(path))
    report = DatabaseProvisioner(db).get_health_status()
    assert report.status == UNHEALTHY
    assert report.connection is False
    assert report.reason
    assert not path.exists()


def test_missing_table_degrades_and_is_recreated_alone(provisioned, cfg):
    raw = sqlite3.connect(cfg.DB_DSN)
    raw.execute("DROP TABLE statistics")
    raw.commit()
    raw.close()

    prov = DatabaseProvisioner(provisioned)
    report = prov.get_health_status()
    assert report.status == DEGRADED
    assert report.missing_tables == ["statistics"]

    result = prov.initialize_database()
    assert result.ok
    assert result.tables_created == ["statistics"]
    assert result.indexes_created == []
    assert prov.get_health_status().status == HEALTHY


def test_existing_rows_survive_reprovisioning(provisioned, make_user):
    u = make_user()
    DatabaseProvisioner(provisioned).initialize_database()
    with provisioned.connect() as conn:
        row = conn.execute("SELECT email FROM users WHERE user_id=?", (u["user_id"],)).fetchone()
    assert row["email"] == u["email"]


def test_one_bad_object_does_not_block_the_rest(db):
    schema = list(get_schema_objects("sqlite"))
    schema.insert(
        len(EXPECTED_TABLES),
        SchemaObject(kind="index", name="ix_broken", table="ghost", ddl="CREATE INDEX ix_broken ON ghost (x)"),
    )

    result = DatabaseProvisioner(db, schema=schema).initialize_database()
    assert not result.ok
    assert result.error_kind is ErrorKind.PROVISIONING_PARTIAL_FAILURE
    assert [e["object"] for e in result.errors] == ["ix_broken"]
    assert set(result.tables_created) == set(EXPECTED_TABLES)
    assert result.created_count == len(schema) - 1
    assert result.to_dict()["success"] is False


def test_lock_timeout_is_reported(provisioned, cfg):
    holder = sqlite3.connect(cfg.DB_DSN, isolation_level=None)
    holder.execute("BEGIN IMMEDIATE")
    try:
        result = DatabaseProvisioner(provisioned, lock_timeout_seconds=0.2).initialize_database()
    finally:
        holder.execute("ROLLBACK")
        holder.close()

    assert not result.ok
    assert result.errors[0]["object"] == "provisioning_lock"
    assert result.created_count == 0


def test_concurrent_initialize_creates_each_object_once(db):
    schema = get_schema_objects("sqlite")
    n = 8
    barrier = threading.Barrier(n)
    results = []
    failures = []

    def run():
        barrier.wait()
        try:
            results.append(DatabaseProvisioner(db, lock_timeout_seconds=30.0).initialize_database())
        except Exception as e:  # surfaced through the assertion below
            failures.append(e)

    threads = [threading.Thread(target=run) for _ in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert failures == []
    assert len(results) == n
    assert all(r.ok for r in results), [r.errors for r in results]
    assert sum(r.created_count for r in results) == len(schema)
    assert DatabaseProvisioner(db).get_health_status().status == HEALTHY
