import json
import threading

import pytest

from enrollment_portal.errors import ErrorKind, ServiceError
from enrollment_portal.models import Role, SubmissionFilters
from enrollment_portal.submissions import (
    create_submission,
    get_all_submissions,
    get_submission_by_id,
    get_submission_stats,
    update_submission_status,
    validate_submission,
)

from conftest import valid_submission


@pytest.fixture
def reviewer(make_user):
    return make_user(Role.SUPERVISOR)


def _create(db, **overrides):
    with db.connect() as conn:
        return create_submission(conn, valid_submission(**overrides))


def test_new_submission_is_pending(provisioned):
    sub = _create(provisioned, sex="f", pin_code="411 001")
    assert sub["status"] == "pending"
    assert sub["sex"] == "F"
    assert sub["pin_code"] == "411001"
    assert sub["filled_for_self"] is False
    assert sub["status_updated_at"] is None


def test_validation_reports_every_problem():
    errors = validate_submission({"sex": "X", "pin_code": "12345", "email": "nope"})
    assert "surname_required" in errors
    assert "taluka_required" in errors
    assert "pin_code_must_be_6_digits" in errors
    assert "mobile_number_required" in errors
    assert "aadhaar_number_required" in errors
    assert "invalid_email" in errors
    assert "sex_must_be_M_or_F" in errors
    assert validate_submission(valid_submission()) == []


def test_create_rejects_invalid_form(provisioned):
    with provisioned.connect() as conn:
        with pytest.raises(ServiceError) as e:
            create_submission(conn, valid_submission(mobile_number="12ab"))
    assert e.value.kind is ErrorKind.INVALID_INPUT
    assert "mobile_number_must_be_10_digits" in e.value.detail


def test_duplicate_mobile_or_aadhaar_rejected(provisioned):
    first = _create(provisioned, mobile_number="9000000001", aadhaar_number="900000000001")

    for dup in (
        {"mobile_number": "9000000001", "aadhaar_number": "900000000002"},
        {"mobile_number": "9000000002", "aadhaar_number": "9000 0000 0001"},
    ):
        with provisioned.connect() as conn:
            with pytest.raises(ServiceError) as e:
                create_submission(conn, valid_submission(**dup))
        assert e.value.kind is ErrorKind.DUPLICATE_IDENTIFIER
        assert e.value.detail == "mobile_or_aadhaar_exists"

    with provisioned.connect() as conn:
        assert conn.execute("SELECT COUNT(*) AS n FROM submissions").fetchone()["n"] == 1
        assert get_submission_by_id(conn, first["submission_id"])["mobile_number"] == "9000000001"


def test_approve_once_then_terminal(provisioned, reviewer):
    sub = _create(provisioned)
    with provisioned.connect() as conn:
        out = update_submission_status(conn, sub["submission_id"], "approved", reviewer["user_id"])
    assert out["status"] == "approved"
    assert out["status_updated_by"] == reviewer["user_id"]
    assert out["status_updated_at"] is not None

    with provisioned.connect() as conn:
        with pytest.raises(ServiceError) as e:
            update_submission_status(conn, sub["submission_id"], "rejected", reviewer["user_id"], "late")
    assert e.value.kind is ErrorKind.INVALID_TRANSITION

    with provisioned.connect() as conn:
        assert get_submission_by_id(conn, sub["submission_id"])["status"] == "approved"


def test_reject_records_reason_and_audit_row(provisioned, reviewer):
    sub = _create(provisioned)
    with provisioned.connect() as conn:
        out = update_submission_status(conn, sub["submission_id"], "REJECTED", reviewer["user_id"], "  blurry  photo ")
        audit = conn.execute(
            "SELECT * FROM audit_logs WHERE table_name='submissions' AND record_id=?",
            (str(sub["submission_id"]),),
        ).fetchall()

    assert out["rejection_reason"] == "blurry photo"
    assert len(audit) == 1
    assert audit[0]["action"] == "UPDATE"
    assert audit[0]["changed_by"] == reviewer["user_id"]
    assert json.loads(audit[0]["old_values_json"]) == {"status": "pending"}
    assert json.loads(audit[0]["new_values_json"])["status"] == "rejected"


def test_missing_submission_and_bad_status(provisioned, reviewer):
    sub = _create(provisioned)
    with provisioned.connect() as conn:
        assert update_submission_status(conn, 424242, "approved", reviewer["user_id"]) is None
        for bad in ("archived", "done", ""):
            with pytest.raises(ServiceError) as e:
                update_submission_status(conn, sub["submission_id"], bad, reviewer["user_id"])
            assert e.value.kind is ErrorKind.INVALID_INPUT
        assert get_submission_by_id(conn, sub["submission_id"])["status_updated_by"] is None


def test_pending_to_pending_restamps_reviewer(provisioned, reviewer):
    sub = _create(provisioned)
    with provisioned.connect() as conn:
        out = update_submission_status(conn, sub["submission_id"], "pending", reviewer["user_id"])
    assert out["status"] == "pending"
    assert out["status_updated_by"] == reviewer["user_id"]

    with provisioned.connect() as conn:
        assert update_submission_status(conn, sub["submission_id"], "approved", reviewer["user_id"])["status"] == "approved"


def test_concurrent_reviewers_exactly_one_wins(provisioned, reviewer, make_user):
    other = make_user(Role.ADMIN)
    sub = _create(provisioned)
    barrier = threading.Barrier(2)
    outcomes = []

    def review(actor_id, status):
        barrier.wait()
        try:
            with provisioned.connect() as conn:
                outcomes.append(update_submission_status(conn, sub["submission_id"], status, actor_id)["status"])
        except ServiceError as e:
            outcomes.append(e.kind)

    threads = [
        threading.Thread(target=review, args=(reviewer["user_id"], "approved")),
        threading.Thread(target=review, args=(other["user_id"], "rejected")),
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(outcomes) == 2
    assert ErrorKind.INVALID_TRANSITION in outcomes
    winners = [o for o in outcomes if o in ("approved", "rejected")]
    assert len(winners) == 1

    with provisioned.connect() as conn:
        final = get_submission_by_id(conn, sub["submission_id"])
        n_audit = conn.execute("SELECT COUNT(*) AS n FROM audit_logs").fetchone()["n"]
    assert final["status"] == winners[0]
    assert n_audit == 1


def test_listing_filters_and_order(provisioned, reviewer):
    a = _create(provisioned, district="Pune", aadhaar_number="111122223333")
    b = _create(provisioned, district="Nashik", taluka="Sinnar")
    c = _create(provisioned, district="Pune", surname="Deshmukh")

    with provisioned.connect() as conn:
        update_submission_status(conn, a["submission_id"], "approved", reviewer["user_id"])

        everything = get_all_submissions(conn, SubmissionFilters())
        assert [s["submission_id"] for s in everything.items] == [
            c["submission_id"],
            b["submission_id"],
            a["submission_id"],
        ]
        assert get_all_submissions(conn, SubmissionFilters(status="pending")).total == 2
        assert get_all_submissions(conn, SubmissionFilters(district="Pune")).total == 2
        assert get_all_submissions(conn, SubmissionFilters(search="deSHmukh")).total == 1
        assert get_all_submissions(conn, SubmissionFilters(search="11112222")).items[0]["submission_id"] == a[
            "submission_id"
        ]
        assert get_all_submissions(conn, SubmissionFilters(date_from="2999-01-01")).total == 0
        assert get_all_submissions(conn, SubmissionFilters(date_to="2999-01-01")).total == 3

        with pytest.raises(ServiceError):
            get_all_submissions(conn, SubmissionFilters(status="archived"))
        with pytest.raises(ServiceError):
            get_all_submissions(conn, SubmissionFilters(date_to="31/01/2024"))


def test_stats(provisioned, reviewer):
    subs = [_create(provisioned, district=d, taluka=t) for d, t in [("Pune", "Haveli"), ("Pune", "Haveli"), ("Satara", "Wai")]]
    with provisioned.connect() as conn:
        update_submission_status(conn, subs[0]["submission_id"], "approved", reviewer["user_id"])
        update_submission_status(conn, subs[1]["submission_id"], "rejected", reviewer["user_id"])
        stats = get_submission_stats(conn)

    assert stats["total"] == 3
    assert stats["by_status"] == {"pending": 1, "approved": 1, "rejected": 1}
    assert stats["today"] == stats["this_week"] == stats["this_month"] == 3
    assert stats["by_district"][0] == {"district": "Pune", "count": 2}
    assert stats["by_taluka"][0] == {"district": "Pune", "taluka": "Haveli", "count": 2}
