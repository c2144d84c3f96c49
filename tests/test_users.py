import pytest

from enrollment_portal.errors import ErrorKind, ServiceError
from enrollment_portal.models import Role, UserFilters
from enrollment_portal.users import deactivate_user, get_user, get_user_stats, get_users


def test_pages_partition_the_result_set(make_user, provisioned):
    created = [make_user()["user_id"] for _ in range(7)]

    seen = []
    with provisioned.connect() as conn:
        for offset in (0, 3, 6):
            page = get_users(conn, UserFilters(limit=3, offset=offset))
            assert page.total == 7
            assert page.total_pages == 3
            seen.extend(u["user_id"] for u in page.items)

    assert len(seen) == len(set(seen)) == 7
    assert seen == sorted(created, reverse=True)


def test_limit_is_clamped_and_offset_validated(make_user, provisioned):
    make_user()
    with provisioned.connect() as conn:
        assert get_users(conn, UserFilters()).limit == 50
        assert get_users(conn, UserFilters(limit=0)).limit == 1
        assert get_users(conn, UserFilters(limit=10_000)).limit == 200
        with pytest.raises(ServiceError) as e:
            get_users(conn, UserFilters(offset=-1))
    assert e.value.kind is ErrorKind.INVALID_INPUT


def test_filters_and_literal_search(make_user, provisioned):
    make_user(Role.SUPERVISOR, last_name="100%", district="Pune")
    make_user(Role.VOLUNTEER, last_name="1000", district="Pune")
    gone = make_user(Role.VOLUNTEER, last_name="a_b", district="Nashik")
    make_user(Role.VOLUNTEER, last_name="axb", district="Nashik")

    with provisioned.connect() as conn:
        deactivate_user(conn, gone["user_id"])

        assert get_users(conn, UserFilters(search="0%")).total == 1
        assert get_users(conn, UserFilters(search="A_B")).total == 1
        assert get_users(conn, UserFilters(role="supervisor")).total == 1
        assert get_users(conn, UserFilters(district="Pune", role="volunteer")).total == 1
        assert get_users(conn, UserFilters(is_active=False)).items[0]["user_id"] == gone["user_id"]
        assert get_users(conn, UserFilters(created_from="2000-01-01", created_to="2999-12-31")).total == 4

        with pytest.raises(ServiceError):
            get_users(conn, UserFilters(role="root"))
        with pytest.raises(ServiceError):
            get_users(conn, UserFilters(created_from="yesterday"))


def test_users_never_expose_password_hash(make_user, provisioned):
    u = make_user()
    with provisioned.connect() as conn:
        assert "password_hash" not in get_user(conn, u["user_id"])
        assert all("password_hash" not in x for x in get_users(conn, UserFilters()).items)


def test_deactivate_frees_the_email(make_user, provisioned):
    u = make_user(email="reuse@example.com")
    with provisioned.connect() as conn:
        out = deactivate_user(conn, u["user_id"])
        assert out["is_active"] is False
        assert deactivate_user(conn, 987654) is None
    again = make_user(email="reuse@example.com")
    assert again["user_id"] != u["user_id"]


def test_stats_are_consistent(make_user, provisioned):
    make_user(Role.ADMIN, district="Pune")
    make_user(Role.SUPERVISOR, district="Pune")
    make_user(Role.VOLUNTEER, district="Nashik")
    v = make_user(Role.VOLUNTEER, district="Nashik")

    with provisioned.connect() as conn:
        deactivate_user(conn, v["user_id"])
        stats = get_user_stats(conn)

    assert stats["total"] == 4
    assert stats["active"] + stats["inactive"] == stats["total"]
    assert stats["inactive"] == 1
    assert sum(stats["by_role"].values()) == stats["total"]
    assert stats["by_role"] == {"volunteer": 2, "supervisor": 1, "team": 0, "admin": 1}
    assert stats["by_role_active"]["volunteer"] == {"active": 1, "inactive": 1}
    assert stats["by_district"] == [
        {"district": "Pune", "count": 2},
        {"district": "Nashik", "count": 1},
    ]
