"""
Order Ledger - Authentication Tests
"""
import asyncio
from datetime import timedelta

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from starlette.requests import Request

from orderledger.core.security import (
    PermissionChecker, create_access_token, decode_access_token, get_current_user, has_permissions,
)


def current_user(db_session, token):
    request = Request({"type": "http", "headers": []})
    credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)
    return asyncio.run(get_current_user(request, credentials, db_session))


class TestPermissions:
    @pytest.mark.parametrize("role,required,allowed", [
        ("super-admin", {"users:write"}, True),
        ("admin", {"payments:write", "banking:read"}, True),
        ("admin", {"users:read"}, False),
        ("production", {"orders:read"}, True),
        ("production", {"payments:read"}, False),
        ("unknown", {"orders:read"}, False),
    ])
    def test_role_grants(self, role, required, allowed):
        assert has_permissions(role, required) is allowed

    def test_checker_names_missing_permissions(self, production_user):
        with pytest.raises(HTTPException) as exc_info:
            PermissionChecker(["orders:read", "banking:write"])(production_user)
        assert exc_info.value.status_code == 403
        assert "banking:write" in exc_info.value.detail


class TestTokens:
    def test_round_trip_claims(self):
        claims = decode_access_token(create_access_token({"sub": "alice", "role": "admin"}))
        assert claims["sub"] == "alice"
        assert claims["role"] == "admin"

    def test_expired_token_is_rejected(self):
        token = create_access_token({"sub": "alice"}, expires_delta=timedelta(seconds=-1))
        assert decode_access_token(token) is None

    def test_resolves_signed_in_user(self, db_session, admin_user):
        token = create_access_token({"sub": admin_user.username, "role": admin_user.role})
        assert current_user(db_session, token).id == admin_user.id

    def test_token_from_before_role_change_is_refused(self, db_session, admin_user):
        token = create_access_token({"sub": admin_user.username, "role": admin_user.role})
        admin_user.role = "production"
        db_session.flush()

        with pytest.raises(HTTPException) as exc_info:
            current_user(db_session, token)
        assert exc_info.value.status_code == 401

    def test_unknown_user_is_refused(self, db_session):
        token = create_access_token({"sub": "ghost", "role": "admin"})
        with pytest.raises(HTTPException):
            current_user(db_session, token)
