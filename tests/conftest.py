import os

os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("SECRET_KEY", "test-secret")

import pytest
from fastapi.testclient import TestClient

from database import MarketStore, get_store
from main import app


@pytest.fixture
def store() -> MarketStore:
    """A fresh in-memory store, injected into the app for the duration of one test."""
    fresh = MarketStore()
    app.dependency_overrides[get_store] = lambda: fresh
    yield fresh
    app.dependency_overrides.pop(get_store, None)


@pytest.fixture
def client(store) -> TestClient:
    return TestClient(app)


@pytest.fixture
def signup(client):
    """Register a user and return the parsed response body."""

    def _signup(email: str = "a@b.com", password: str = "secret1", user_type: str = "farmer", name: str = "A"):
        resp = client.post(
            "/api/auth/signup",
            json={
                "name": name,
                "email": email,
                "password": password,
                "userType": user_type,
                "additionalInfo": "x",
            },
        )
        assert resp.status_code == 201, resp.text
        return resp.json()

    return _signup


@pytest.fixture
def auth_headers(signup):
    """Sign up a user and return (headers, user)."""

    def _auth(email: str = "farmer@example.com", user_type: str = "farmer"):
        body = signup(email=email, user_type=user_type)
        return {"Authorization": f"Bearer {body['token']}"}, body["user"]

    return _auth
