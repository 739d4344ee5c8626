from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import jwt
import pytest
from fastapi import HTTPException

from app.modules.auth.deps import RequireAuthenticated, RequireModuleRole, UserContext

SECRET = "test-secret-key-with-enough-length"


def _Request(token: str | None):
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    return SimpleNamespace(headers=headers)


def _Token(user_id, minutes: int = 15) -> str:
    expires = datetime.now(tz=timezone.utc) + timedelta(minutes=minutes)
    return jwt.encode({"sub": str(user_id), "exp": expires}, SECRET, algorithm="HS256")


@pytest.fixture(autouse=True)
def jwt_secret(monkeypatch):
    monkeypatch.setenv("JWT_SECRET_KEY", SECRET)


def test_valid_token_builds_context(db, parent):
    user = RequireAuthenticated(_Request(_Token(parent.Id)), db=db)
    assert user.Id == parent.Id
    assert user.Roles == {"allowance": "Parent"}
    assert user.FamilyId == parent.FamilyId


def test_missing_header_is_rejected(db):
    with pytest.raises(HTTPException) as exc_info:
        RequireAuthenticated(_Request(None), db=db)
    assert exc_info.value.status_code == 401


def test_expired_token_is_rejected(db, parent):
    with pytest.raises(HTTPException) as exc_info:
        RequireAuthenticated(_Request(_Token(parent.Id, minutes=-5)), db=db)
    assert exc_info.value.detail == "Token expired"


def test_unknown_user_is_rejected(db):
    with pytest.raises(HTTPException) as exc_info:
        RequireAuthenticated(_Request(_Token(9999)), db=db)
    assert exc_info.value.detail == "User not found"


def test_read_only_role_cannot_write():
    checker = RequireModuleRole("allowance", write=True)
    with pytest.raises(HTTPException) as exc_info:
        checker(UserContext(Id=1, Username="viewer", Roles={"allowance": "ReadOnly"}))
    assert exc_info.value.status_code == 403
    viewer = UserContext(Id=1, Username="viewer", Roles={"allowance": "ReadOnly"})
    assert RequireModuleRole("allowance")(viewer) is viewer
