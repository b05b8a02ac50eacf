from datetime import timedelta

import jwt
import pytest

from concierge_relay.errors import AuthenticationError
from concierge_relay.services.auth import create_token, verify_token

from conftest import TEST_JWT_SECRET


def test_verify_round_trip_claims():
    token = create_token("u1", TEST_JWT_SECRET, tenant_id="t1", role="admin")

    claims = verify_token(token, TEST_JWT_SECRET)

    assert claims.user_id == "u1"
    assert claims.tenant_id == "t1"
    assert claims.role == "admin"


def test_verify_rejects_wrong_secret():
    token = create_token("u1", "another-secret-that-is-also-long-enough")

    with pytest.raises(AuthenticationError, match="Invalid token"):
        verify_token(token, TEST_JWT_SECRET)


def test_verify_rejects_expired_token():
    token = create_token("u1", TEST_JWT_SECRET, expires_delta=timedelta(seconds=-5))

    with pytest.raises(AuthenticationError, match="expired"):
        verify_token(token, TEST_JWT_SECRET)


def test_verify_requires_user_id():
    token = jwt.encode({"tenantId": "t1"}, TEST_JWT_SECRET, algorithm="HS256")

    with pytest.raises(AuthenticationError, match="userId"):
        verify_token(token, TEST_JWT_SECRET)


@pytest.mark.parametrize("token", ["", "not.a.jwt"])
def test_verify_rejects_missing_or_garbage_token(token):
    with pytest.raises(AuthenticationError):
        verify_token(token, TEST_JWT_SECRET)
