"""
Tests for refertrack/main.py - app factory, middleware, lifespan, and an
HTTP round trip through the routers on the in-memory backend.
"""
import pytest
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch
from fastapi import FastAPI
from fastapi.testclient import TestClient

from refertrack.api.dependencies import get_referral_store, get_repository
from refertrack.main import CorrelationIdMiddleware, create_app, lifespan
from refertrack.services.referral_store import ReferralStore
from refertrack.utils.timezone import utc_now


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_mock_settings(**overrides):
    """Build a mock Settings object."""
    defaults = {
        "app_env": "test",
        "app_base_url": "http://localhost:8000",
        "log_level": "WARNING",
        "jwt_secret": "test_jwt_secret",
        "tremendous_api_key": "",
        "sentry_dsn": "",
        "lifecycle_worker_enabled": False,
    }
    defaults.update(overrides)
    settings = MagicMock()
    for k, v in defaults.items():
        setattr(settings, k, v)
    return settings


def _build_app() -> FastAPI:
    with (
        patch("refertrack.main.get_settings", return_value=_make_mock_settings()),
        patch("refertrack.main.configure_structured_logging"),
    ):
        return create_app()


# ---------------------------------------------------------------------------
# create_app - application factory
# ---------------------------------------------------------------------------


class TestCreateApp:
    def test_returns_fastapi_instance(self):
        app = _build_app()
        assert isinstance(app, FastAPI)
        assert app.title == "ReferTrack"

    def test_configures_structured_logging(self):
        """create_app calls configure_structured_logging with the config log level."""
        with (
            patch("refertrack.main.get_settings", return_value=_make_mock_settings(log_level="DEBUG")),
            patch("refertrack.main.configure_structured_logging") as mock_log,
        ):
            create_app()

        mock_log.assert_called_once_with("DEBUG")

    def test_includes_routes(self):
        route_paths = set(_build_app().openapi()["paths"])
        assert {
            "/health",
            "/api/v1/auth/register",
            "/api/v1/referrals",
            "/api/v1/referrals/verify",
            "/api/v1/referrals/{referral_id}/reward",
            "/api/v1/homeowners/import",
            "/api/v1/dashboard",
        } <= route_paths


# ---------------------------------------------------------------------------
# CorrelationIdMiddleware
# ---------------------------------------------------------------------------


class TestCorrelationIdMiddleware:
    def test_generates_correlation_id_when_missing(self):
        client = TestClient(_build_app(), raise_server_exceptions=False)
        response = client.get("/health")
        assert len(response.headers["x-correlation-id"]) == 32

    def test_uses_existing_correlation_id(self):
        client = TestClient(_build_app(), raise_server_exceptions=False)
        custom_cid = "abc123def456789012345678abcdef00"
        response = client.get("/health", headers={"X-Correlation-ID": custom_cid})
        assert response.headers["x-correlation-id"] == custom_cid


# ---------------------------------------------------------------------------
# lifespan - startup and shutdown
# ---------------------------------------------------------------------------


class TestLifespan:
    async def test_worker_disabled(self):
        with patch("refertrack.main.get_settings", return_value=_make_mock_settings()):
            async with lifespan(MagicMock()):
                pass

    async def test_worker_started_and_cancelled(self):
        with (
            patch(
                "refertrack.main.get_settings",
                return_value=_make_mock_settings(lifecycle_worker_enabled=True),
            ),
            patch(
                "refertrack.workers.referral_lifecycle.run_referral_lifecycle", new_callable=AsyncMock,
            ) as mock_worker,
        ):
            async with lifespan(MagicMock()):
                pass

        mock_worker.assert_called_once()

    async def test_sentry_initialized_when_configured(self):
        with (
            patch(
                "refertrack.main.get_settings",
                return_value=_make_mock_settings(sentry_dsn="https://key@sentry.example.com/1"),
            ),
            patch("sentry_sdk.init") as mock_init,
        ):
            async with lifespan(MagicMock()):
                pass

        assert mock_init.call_args[1]["environment"] == "test"


# ---------------------------------------------------------------------------
# HTTP round trip on the in-memory backend
# ---------------------------------------------------------------------------


class TestReferralFlowOverHttp:
    @pytest.fixture
    def client(self, memory_repo, settings, mock_redis):
        app = _build_app()
        app.dependency_overrides[get_repository] = lambda: memory_repo
        app.dependency_overrides[get_referral_store] = lambda: ReferralStore(memory_repo, settings=settings)
        return TestClient(app, raise_server_exceptions=False)

    def _signup(self, client) -> dict:
        response = client.post("/api/v1/auth/register", json={
            "email": "owner@summit.example.com",
            "password": "supersecret",
            "name": "Alex Rivera",
            "company_name": "Summit Roofing",
        })
        assert response.status_code == 200
        return {"Authorization": f"Bearer {response.json()['token']}"}

    def test_import_issue_verify_metrics(self, client):
        headers = self._signup(client)

        imported = client.post(
            "/api/v1/homeowners/import",
            headers=headers,
            files={"file": ("homeowners.csv", b"name,email,address\nSarah,sarah@example.com,14 Juniper Ln\n", "text/csv")},
        )
        assert imported.status_code == 200
        homeowner_id = imported.json()["homeowners"][0]["id"]

        created = client.post("/api/v1/referrals", headers=headers, json={"referrer_id": homeowner_id})
        assert created.status_code == 201
        code = created.json()["referral_code"]

        verified = client.post("/api/v1/referrals/verify", headers=headers, json={
            "code": code,
            "referred_address": "9 Maple Ave",
            "installation_date": (utc_now() - timedelta(days=1)).isoformat(),
        })
        assert verified.status_code == 200
        assert verified.json()["status"] == "complete"

        metrics = client.get("/api/v1/referrals/metrics", headers=headers)
        assert metrics.json()["converted_referrals"] == 1

    def test_domain_errors_become_json(self, client):
        headers = self._signup(client)

        bad_referrer = client.post(
            "/api/v1/referrals", headers=headers,
            json={"referrer_id": "00000000-0000-0000-0000-000000000000"},
        )
        assert bad_referrer.status_code == 403
        assert bad_referrer.json()["error"] == "authorization"

        missing = client.patch(
            "/api/v1/referrals/00000000-0000-0000-0000-000000000000", headers=headers, json={"verified": True},
        )
        assert missing.status_code == 404
        assert missing.json() == {
            "error": "not_found",
            "detail": "Referral 00000000-0000-0000-0000-000000000000 not found",
            "retryable": False,
        }

    def test_requires_token(self, client):
        response = client.get("/api/v1/referrals")
        assert response.status_code in (401, 403)
