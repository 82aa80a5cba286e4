"""Tests for the HTTP layer."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from localbase.client import LocalClient
from localbase.server import create_app


@pytest.fixture
def local(settings):
    """Uninitialized client; the app lifespan initializes it."""
    return LocalClient(settings)


@pytest.fixture
def http(local):
    with TestClient(create_app(local)) as test_client:
        yield test_client


def _session_for(local: LocalClient, email: str) -> str:
    asyncio.run(local.auth.sign_up(email, "secret"))
    return asyncio.run(local.auth.sign_in(email, "secret")).data["session"]["id"]


class TestHealth:
    """Tests for health and metrics endpoints."""

    def test_health(self, http):
        response = http.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert "X-Request-ID" in response.headers

    def test_request_id_echoed(self, http):
        response = http.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"

    def test_metrics(self, http):
        response = http.get("/metrics")
        assert response.status_code == 200
        assert "localbase_store_queries_total" in response.text


class TestServeObjects:
    """Tests for GET /storage/{bucket}/{path}."""

    def test_public_bucket(self, http, local):
        asyncio.run(local.storage.upload("images", "cats/a.png", b"png-bytes"))
        response = http.get("/storage/images/cats/a.png")
        assert response.status_code == 200
        assert response.content == b"png-bytes"
        assert response.headers["content-type"] == "image/png"

    def test_private_bucket_requires_session(self, http, local):
        asyncio.run(local.storage.upload("documents", "secret.txt", b"classified"))
        response = http.get("/storage/documents/secret.txt")
        assert response.status_code == 401

        response = http.get(
            "/storage/documents/secret.txt",
            headers={"Authorization": "Bearer session_bogus"},
        )
        assert response.status_code == 401

    def test_private_bucket_with_session(self, http, local):
        asyncio.run(local.storage.upload("documents", "secret.txt", b"classified"))
        session_id = _session_for(local, "a@x.com")
        response = http.get(
            "/storage/documents/secret.txt",
            headers={"Authorization": f"Bearer {session_id}"},
        )
        assert response.status_code == 200
        assert response.content == b"classified"

    def test_signed_out_session_rejected(self, http, local):
        asyncio.run(local.storage.upload("documents", "secret.txt", b"classified"))
        session_id = _session_for(local, "a@x.com")
        asyncio.run(local.auth.sign_out(session_id))
        response = http.get(
            "/storage/documents/secret.txt",
            headers={"Authorization": f"Bearer {session_id}"},
        )
        assert response.status_code == 401

    def test_missing_object(self, http):
        assert http.get("/storage/images/nothing.png").status_code == 404

    def test_unknown_bucket(self, http):
        assert http.get("/storage/nope/a.png").status_code == 404
