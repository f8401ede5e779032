# tests/test_auth.py — Token handling tests
from datetime import timedelta

import pytest
from fastapi import HTTPException

from auth import AuthService, verify_ws_token


def test_token_round_trip():
    token = AuthService.create_access_token({"sub": "user-1", "email": "a@b.test"})
    payload = AuthService.verify_token(token)
    assert payload["sub"] == "user-1"
    assert payload["type"] == "access"


def test_expired_token_rejected():
    token = AuthService.create_access_token({"sub": "user-1"}, expires_delta=timedelta(seconds=-5))
    with pytest.raises(HTTPException) as exc:
        AuthService.verify_token(token)
    assert exc.value.status_code == 401
    assert exc.value.detail == "Token expired"


def test_token_without_subject_rejected():
    token = AuthService.create_access_token({"email": "a@b.test"})
    with pytest.raises(HTTPException):
        AuthService.verify_token(token)


def test_ws_token_verification_returns_none_on_failure():
    assert verify_ws_token("garbage") is None
    assert verify_ws_token(AuthService.create_access_token({"sub": "u"}))["sub"] == "u"
