"""Tests for health endpoint."""

from unittest.mock import AsyncMock

import pytest

from src.clients.contact_store import get_contact_store
from src.main import app
from src.services.contact_store import ContactStore
from tests.conftest import ClientFactory


class TestHealthEndpoint:
    """Tests for the /health endpoint."""

    @pytest.mark.anyio
    async def test_health_returns_healthy_when_store_available(
        self,
        client_factory: ClientFactory,
    ) -> None:
        """Health check returns healthy when the contact store responds."""
        async with client_factory() as client:
            response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] is True

    @pytest.mark.anyio
    async def test_health_returns_degraded_when_store_unavailable(
        self,
        client_factory: ClientFactory,
    ) -> None:
        """Health check returns degraded when the contact store is unreachable."""
        store = AsyncMock(spec=ContactStore)
        store.health_check.return_value = False

        async with client_factory() as client:
            app.dependency_overrides[get_contact_store] = lambda: store
            response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "degraded"
        assert data["database"] is False
