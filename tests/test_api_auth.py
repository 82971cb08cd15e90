"""
Tests for API authentication.

Tests X-API-Key header authentication when API_AUTH_ENABLED=true.
"""

import importlib
import os
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from src.api._scheduler_state import set_job_service


# Test API key for testing
TEST_API_KEY = "test-secret-key-12345"


def build_client(env: dict) -> TestClient:
    """Reload auth and main so the app picks up the environment."""
    with patch.dict(os.environ, env, clear=False):
        import src.api.dependencies.auth as auth_module

        importlib.reload(auth_module)

        import src.api.main as main_module

        importlib.reload(main_module)

    return TestClient(main_module.app)


@pytest.fixture(autouse=True)
def installed_service(service):
    set_job_service(service)
    yield service
    set_job_service(None)

    # Leave an unauthenticated app behind for other test modules
    with patch.dict(os.environ, {"API_AUTH_ENABLED": "false"}, clear=False):
        import src.api.dependencies.auth as auth_module
        import src.api.main as main_module

        importlib.reload(auth_module)
        importlib.reload(main_module)


class TestAuthDisabled:
    """Tests when authentication is disabled (default)."""

    def test_health_no_auth_required(self):
        """Health endpoint should work without auth."""
        client = build_client({"API_AUTH_ENABLED": "false"})

        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_jobs_no_auth_required(self):
        """Job endpoints should work without auth."""
        client = build_client({"API_AUTH_ENABLED": "false"})

        assert client.get("/jobs").status_code == 200


class TestAuthEnabled:
    """Tests when authentication is enabled."""

    ENV = {"API_AUTH_ENABLED": "true", "API_KEY": TEST_API_KEY}

    def test_health_no_auth_required_even_when_enabled(self):
        """Health endpoint should work without auth even when auth is enabled."""
        client = build_client(self.ENV)

        assert client.get("/health").status_code == 200

    def test_missing_key_rejected(self):
        client = build_client(self.ENV)

        response = client.get("/jobs")

        assert response.status_code == 401
        assert "Missing API key" in response.json()["detail"]

    def test_wrong_key_rejected(self):
        client = build_client(self.ENV)

        response = client.get("/jobs", headers={"X-API-Key": "wrong-key"})

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid API key"

    def test_valid_key_accepted(self):
        client = build_client(self.ENV)

        response = client.get("/jobs", headers={"X-API-Key": TEST_API_KEY})

        assert response.status_code == 200

    def test_enabled_without_configured_key_rejects_everything(self):
        client = build_client({"API_AUTH_ENABLED": "true", "API_KEY": ""})

        response = client.get("/jobs", headers={"X-API-Key": "anything"})

        assert response.status_code == 401
