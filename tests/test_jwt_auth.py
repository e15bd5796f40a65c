"""
Tests: access tokens and role checks.
"""

import jwt as pyjwt
import pytest

from taskhub.auth import has_role
from taskhub.services.jwt_service import ALGORITHM, decode_access_token, generate_access_token


class TestTokens:
    def test_round_trip(self):
        payload = decode_access_token(generate_access_token(42, "manager"))
        assert payload["sub"] == 42
        assert payload["role"] == "manager"
        assert payload["type"] == "access"

    def test_expired(self):
        token = generate_access_token(1, "member", expires_in=-1)
        with pytest.raises(pyjwt.ExpiredSignatureError):
            decode_access_token(token)

    def test_wrong_secret(self):
        token = pyjwt.encode({"sub": "1", "type": "access"}, "another-secret-of-at-least-32-bytes!", algorithm=ALGORITHM)
        with pytest.raises(pyjwt.InvalidTokenError):
            decode_access_token(token)

    def test_wrong_type(self, app):
        token = pyjwt.encode({"sub": "1", "type": "refresh"}, app.config["JWT_SECRET_KEY"], algorithm=ALGORITHM)
        with pytest.raises(pyjwt.InvalidTokenError):
            decode_access_token(token)

    def test_non_numeric_subject(self, app):
        token = pyjwt.encode({"sub": "alice", "type": "access"}, app.config["JWT_SECRET_KEY"], algorithm=ALGORITHM)
        with pytest.raises(pyjwt.InvalidTokenError):
            decode_access_token(token)


@pytest.mark.parametrize("role,minimum,allowed", [
    ("admin", "member", True),
    ("manager", "member", True),
    ("member", "member", True),
    ("viewer", "member", False),
    ("member", "admin", False),
    ("unknown", "viewer", False),
])
def test_role_hierarchy(role, minimum, allowed):
    assert has_role(role, minimum) is allowed
