"""
NeuroSynth DCS - API Integration Tests
======================================

Integration tests for FastAPI endpoints.
Uses TestClient for synchronous testing; the LLM is disabled.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from dcsynth.shared.exceptions import InputError
from tests.conftest import assert_response_ok


# =============================================================================
# Root & Health
# =============================================================================

class TestRootEndpoints:
    """Tests for root endpoint."""

    def test_root(self, test_client):
        """Root endpoint returns API info."""
        response = test_client.get("/")

        assert_response_ok(response)
        data = response.json()
        assert data["name"] == "NeuroSynth DCS API"
        assert data["docs"] == "/docs"
        assert data["health"] == "/health"


class TestHealthEndpoints:
    """Tests for health check endpoint."""

    def test_health_pattern_only(self, test_client):
        """Without an API key the LLM component reports disabled."""
        response = test_client.get("/health")

        assert_response_ok(response)
        data = response.json()
        assert data["status"] == "healthy"
        assert data["components"]["llm"]["status"] == "disabled"
        assert data["components"]["pipeline"]["details"]["learned_patterns"] == 0
        assert "timestamp" in data

    def test_health_uninitialized(self, test_client):
        from dcsynth.api.dependencies import ServiceContainer

        container = MagicMock(spec=ServiceContainer)
        container.orchestrator = None
        with patch("dcsynth.api.dependencies.ServiceContainer.get_instance", return_value=container):
            response = test_client.get("/health")

        assert_response_ok(response)
        assert response.json()["status"] == "unhealthy"


# =============================================================================
# Extraction
# =============================================================================

class TestExtractEndpoint:
    """Tests for POST /api/v1/extract."""

    def test_extract(self, test_client, evd_notes):
        response = test_client.post("/api/v1/extract", json={"notes": evd_notes})

        assert_response_ok(response)
        data = response.json()
        assert data["success"] is True
        assert data["metadata"]["extraction_method"] == "pattern-only"
        assert [p["name"] for p in data["extracted_data"]["procedures"]] == ["EVD placement"]
        assert set(data["quality_metrics"]) >= {"overall", "completeness", "consistency"}
        assert "timeline" in data["intelligence"]

    def test_extract_with_options(self, test_client):
        response = test_client.post("/api/v1/extract", json={
            "notes": [
                {"text": "Admit 2025-01-10.", "type": "admission"},
                {"text": "Discharge 2025-01-20.", "type": "discharge", "reported_date": "2025-01-20"},
            ],
            "options": {"enable_deduplication": False, "quality_threshold": 0.0},
        })

        assert_response_ok(response)
        metadata = response.json()["metadata"]
        assert metadata["note_deduplication"] is None
        assert metadata["terminal_state"] == "done"

    @pytest.mark.parametrize("body", [
        {"notes": []},
        {"notes": ["   "]},
        {"notes": [{"text": ""}]},
        {"notes": ["Admit."], "options": {"quality_threshold": 2}},
        {},
    ])
    def test_invalid_request(self, test_client, body):
        response = test_client.post("/api/v1/extract", json=body)

        assert_response_ok(response, 422)
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_input_error_maps_to_422(self, test_client):
        from dcsynth.api.dependencies import ServiceContainer

        container = ServiceContainer.get_instance()
        with patch.object(
            container.orchestrator, "extract", AsyncMock(side_effect=InputError("No clinical notes"))
        ):
            response = test_client.post("/api/v1/extract", json={"notes": ["Admit."]})

        assert_response_ok(response, 422)
        assert "No clinical notes" in response.json()["detail"]

    def test_unexpected_error_maps_to_500(self, test_client):
        from dcsynth.api.dependencies import ServiceContainer

        container = ServiceContainer.get_instance()
        with patch.object(container.orchestrator, "extract", AsyncMock(side_effect=RuntimeError("boom"))):
            response = test_client.post("/api/v1/extract", json={"notes": ["Admit."]})

        assert_response_ok(response, 500)
        assert response.json()["code"] == "INTERNAL_ERROR"

    def test_uninitialized_service(self, test_client):
        from dcsynth.api.dependencies import ServiceContainer

        container = MagicMock(spec=ServiceContainer)
        container.orchestrator = None
        with patch("dcsynth.api.dependencies.ServiceContainer.get_instance", return_value=container):
            response = test_client.post("/api/v1/extract", json={"notes": ["Admit."]})

        assert_response_ok(response, 503)
