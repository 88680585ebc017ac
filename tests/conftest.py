"""Shared fixtures: keep metrics and persisted sessions inside tmp_path."""

import pytest

SESSION_PAYLOAD = {
    "accessToken": "access-1",
    "accessTokenExpiresIn": 900,
    "refreshToken": "refresh-1",
    "user": {"id": "user-1", "email": "ada@example.com", "displayName": "Ada"},
}


@pytest.fixture(autouse=True)
def isolated_paths(tmp_path, monkeypatch):
    monkeypatch.setenv("BOOTSTRAP_LATENCY_LOG", str(tmp_path / "logs" / "latency.jsonl"))
    monkeypatch.setenv("AUTH_CACHE_DIR", str(tmp_path / "auth"))
    return tmp_path


@pytest.fixture
def session_payload():
    return {**SESSION_PAYLOAD, "user": dict(SESSION_PAYLOAD["user"])}
