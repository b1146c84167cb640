"""
Tests for the liveness and readiness probes
"""
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from app.domain.services.health_service import check_readiness
from app.main import app


class TestLivenessProbe:

    @pytest.mark.unit
    async def test_liveness_returns_healthy(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestReadinessProbe:

    @pytest.mark.unit
    async def test_all_healthy(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.get("/health/ready")

        data = response.json()
        assert response.status_code == 200
        assert data["status"] == "healthy"
        assert (data["db"], data["product_lookup"], data["telegram"]) == ("ok", "ok", "ok")
        assert "circuit_breakers" in data

    @pytest.mark.unit
    async def test_lookup_down_is_degraded(self, test_client, fake_lookup) -> None:
        fake_lookup.healthy = False

        response = await test_client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["product_lookup"] == "error: product_lookup_unavailable"

    @pytest.mark.unit
    async def test_missing_token_is_degraded(self, test_client, fake_transport) -> None:
        fake_transport.is_configured = False

        response = await test_client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["telegram"] == "error: bot_token_missing"

    @pytest.mark.unit
    async def test_db_error_is_sanitised(self, test_client) -> None:
        with patch(
            "app.domain.services.health_service._check_db",
            new_callable=AsyncMock,
            return_value="error: db_unavailable",
        ):
            response = await test_client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["db"] == "error: db_unavailable"

    @pytest.mark.unit
    async def test_not_started(self, test_client) -> None:
        app.state.runtime = None

        response = await test_client.get("/health/ready")

        assert response.status_code == 503
        assert response.json() == {"status": "starting"}


class TestCheckReadiness:

    @pytest.mark.unit
    async def test_unreachable_database(self, fake_lookup, fake_transport) -> None:
        def broken_factory():
            raise ConnectionRefusedError("postgres://user:secret@db:5432")

        result = await check_readiness(fake_lookup, fake_transport, broken_factory)

        assert result["status"] == "degraded"
        assert result["db"] == "error: db_unavailable"
        assert "secret" not in str(result)

    @pytest.mark.unit
    async def test_real_session_factory(self, fake_lookup, fake_transport, session_factory) -> None:
        result = await check_readiness(fake_lookup, fake_transport, session_factory)

        assert result["db"] == "ok"
        assert result["status"] == "healthy"
