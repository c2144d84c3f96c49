from datetime import datetime, timedelta, timezone

import jwt
import pytest

from enrollment_portal.auth.security import (
    TokenService,
    create_access_token,
    decode_access_token,
    hash_password,
    verify_password,
)


def test_hash_is_salted_and_verifies():
    a = hash_password("correct horse")
    b = hash_password("correct horse")
    assert a != b
    assert verify_password("correct horse", a)
    assert not verify_password("wrong horse", a)


def test_verify_rejects_blank_and_malformed_hashes():
    assert not verify_password("", hash_password("x"))
    assert not verify_password("x", "")
    assert not verify_password("x", "not-a-passlib-hash")


def test_token_carries_user_and_role():
    tokens = TokenService(secret="s", expires_minutes=60)
    claims = tokens.decode(tokens.mint(user_id=42, role="supervisor"))
    assert claims["sub"] == "42"
    assert claims["role"] == "supervisor"
    assert claims["exp"] - claims["iat"] == 3600


def test_expired_token_is_rejected():
    issued = datetime.now(timezone.utc) - timedelta(days=2)
    token = create_access_token(secret="s", user_id=1, role="admin", expires_minutes=5, now=issued)
    with pytest.raises(jwt.ExpiredSignatureError):
        decode_access_token(token=token, secret="s")


def test_token_signed_with_other_secret_is_rejected():
    token = create_access_token(secret="other", user_id=1, role="admin", expires_minutes=5)
    with pytest.raises(jwt.InvalidTokenError):
        decode_access_token(token=token, secret="s")
