"""Shared fixtures: in-memory Mongo, a test client and token helpers."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable

import mongomock
import pytest
from fastapi.testclient import TestClient
from jose import jwt

import auth
import completions
import database
from main import app

# 2024-01-01 was a Monday
MONDAY = datetime(2024, 1, 1, 9, 30)
TUESDAY = datetime(2024, 1, 2, 9, 30)
WEDNESDAY = datetime(2024, 1, 3, 9, 30)


def make_token(uid: str, email: str, name: str = "") -> str:
    claims = {"sub": uid, "email": email}
    if name:
        claims["name"] = name
    return jwt.encode(claims, auth.SECRET_KEY, algorithm=auth.ALGORITHM)


def bearer(uid: str, email: str | None = None, name: str = "") -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(uid, email or f'{uid}@example.com', name)}"}


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def db(monkeypatch: pytest.MonkeyPatch):
    """Fresh mongomock database with the production indexes."""
    mock_db = mongomock.MongoClient()["family_habits_test"]
    monkeypatch.setattr(database, "db", mock_db)
    database.ensure_indexes()
    return mock_db


@pytest.fixture
def client(db) -> TestClient:
    return TestClient(app)


@pytest.fixture
def clock(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], None]:
    """Pin the server clock used for completion days."""

    def _set(now: datetime) -> None:
        monkeypatch.setattr(completions, "_now", lambda: now)

    _set(MONDAY)
    return _set


@pytest.fixture
def signup(client: TestClient) -> Callable[..., dict[str, Any]]:
    """Authenticate a subject, creating the user on first call."""

    def _signup(uid: str, name: str = "") -> dict[str, Any]:
        resp = client.post("/auth", headers=bearer(uid, name=name or uid.title()))
        assert resp.status_code == 200, resp.text
        return resp.json()["user"]

    return _signup


@pytest.fixture
def household(client: TestClient, signup) -> dict[str, Any]:
    """A family with one parent and two children."""
    signup("parent", "Pat")
    signup("kid", "Kim")
    signup("kid2", "Lee")
    resp = client.post("/family", json={"name": "Smiths"}, headers=bearer("parent"))
    assert resp.status_code == 200, resp.text
    for uid in ("kid", "kid2"):
        resp = client.post(
            "/family/members",
            json={"email": f"{uid}@example.com", "role": "child"},
            headers=bearer("parent"),
        )
        assert resp.status_code == 200, resp.text

    members = {m["uid"]: m for m in resp.json()["members"]}
    return {
        "family_id": resp.json()["family"]["id"],
        "parent": members["parent"],
        "kid": members["kid"],
        "kid2": members["kid2"],
    }


@pytest.fixture
def habit(client: TestClient, household) -> dict[str, Any]:
    """A Mon/Wed/Fri habit worth 10 points, assigned to kid."""
    resp = client.post(
        "/habits",
        json={"title": "Read", "points": 10, "schedule": ["Mon", "Wed", "Fri"]},
        headers=bearer("parent"),
    )
    assert resp.status_code == 200, resp.text
    created = resp.json()
    resp = client.post(
        f"/habits/{created['id']}/assign",
        json={"child_id": household["kid"]["id"]},
        headers=bearer("parent"),
    )
    assert resp.status_code == 200, resp.text
    return created
