from __future__ import annotations

import itertools
from dataclasses import replace
from typing import Any, Dict

import pytest
from fastapi.testclient import TestClient

from enrollment_portal.api.server import create_app
from enrollment_portal.auth import create_user
from enrollment_portal.config import Config
from enrollment_portal.db import Database
from enrollment_portal.models import Role
from enrollment_portal.provisioning import DatabaseProvisioner


ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "admin12345"
PASSWORD = "s3cret-pass"


@pytest.fixture
def cfg(tmp_path) -> Config:
    return Config(
        DB_DSN=str(tmp_path / "portal.sqlite"),
        DB_INIT_LOCK_TIMEOUT_SECONDS=2.0,
        AUTO_INIT_DB=True,
        AUTH_JWT_SECRET="test-secret",
        AUTH_BOOTSTRAP_ADMIN_EMAIL=ADMIN_EMAIL,
        AUTH_BOOTSTRAP_ADMIN_PASSWORD=ADMIN_PASSWORD,
        AUTH_RATE_LIMIT_MAX=100,
        SUBMISSION_RATE_LIMIT_MAX=100,
        CORS_ALLOW_ORIGINS="",
    )


@pytest.fixture
def db(cfg):
    d = Database.from_config(cfg)
    yield d
    d.close()


@pytest.fixture
def provisioned(db):
    result = DatabaseProvisioner(db, lock_timeout_seconds=2.0).initialize_database()
    assert result.ok, result.errors
    return db


@pytest.fixture
def make_user(provisioned):
    counter = {"n": 0}

    def _make(role: Role = Role.VOLUNTEER, **fields: Any) -> Dict[str, Any]:
        counter["n"] += 1
        fields.setdefault("email", f"user{counter['n']}@example.com")
        fields.setdefault("password", PASSWORD)
        with provisioned.connect() as conn:
            return create_user(conn, role=role, **fields)

    return _make


_applicant_seq = itertools.count(1)


def valid_submission(**overrides: Any) -> Dict[str, Any]:
    # mobile and aadhaar are unique per applicant
    n = next(_applicant_seq)
    data = {
        "surname": "Patil",
        "first_name": "Asha",
        "sex": "F",
        "district": "Pune",
        "taluka": "Haveli",
        "pin_code": "411001",
        "mobile_number": f"98765{n:05d}",
        "aadhaar_number": f"1234{n:08d}",
        "email": "asha@example.com",
    }
    data.update(overrides)
    return data


@pytest.fixture
def make_client(cfg):
    clients = []

    def _make(**overrides: Any) -> TestClient:
        c = TestClient(create_app(replace(cfg, **overrides)))
        c.__enter__()
        clients.append(c)
        return c

    yield _make
    for c in clients:
        c.__exit__(None, None, None)


@pytest.fixture
def client(cfg):
    with TestClient(create_app(cfg)) as c:
        yield c


def login(client: TestClient, email: str, password: str) -> Dict[str, str]:
    resp = client.post("/auth/login", json={"login_field": email, "password": password, "login_type": "email"})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}
