"""Tests for the FastAPI app startup/shutdown and route wiring."""

from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient


def _settings(**overrides):
    values = dict(
        OPENAI_API_KEY="sk-test",
        OPENAI_CHAT_MODEL="gpt-4o-mini",
        OPENAI_EMBEDDING_MODEL="text-embedding-3-small",
        OPENAI_EMBEDDING_DIMENSIONS=8,
        DATABASE_URL="postgresql://u:p@localhost/profiles",
        DATABASE_REQUIRE_SSL=False,
        DATABASE_POOL_SIZE=5,
        SETUP_SCHEMA=False,
        IDEMPOTENCY_BACKEND="postgres",
        IDEMPOTENCY_LEASE_SECONDS=900,
        IDEMPOTENCY_RETENTION_SECONDS=3600,
        MATCH_SIMILARITY_THRESHOLD=0.7,
        MATCH_TOP_K=2,
        EXTRACTION_TIMEOUT_SECONDS=60.0,
        EMBEDDING_TIMEOUT_SECONDS=20.0,
        MAX_CONCURRENT_EVENTS=4,
        LOG_JSON=False,
        LOG_LEVEL="INFO",
    )
    values.update(overrides)
    return MagicMock(**values)


class TestAppRouteWiring:
    @patch("profile_matching.api.main.get_settings")
    @patch("profile_matching.api.main.PostgresClient")
    @patch("profile_matching.api.main.OpenAIClient")
    def test_health_route_registered(self, mock_openai, mock_postgres, mock_settings):
        mock_settings.return_value = _settings()
        postgres = AsyncMock()
        postgres.verify_connectivity = AsyncMock(return_value=True)
        mock_postgres.return_value = postgres
        mock_openai.return_value = AsyncMock(embedding_dimensions=8)

        from profile_matching.api.main import app

        with TestClient(app) as client:
            resp = client.get("/health")

        assert resp.status_code == 200
        postgres.connect.assert_awaited_once()
        postgres.setup_schema.assert_not_called()
        postgres.close.assert_awaited_once()

    @patch("profile_matching.api.main.get_settings")
    @patch("profile_matching.api.main.PostgresClient")
    @patch("profile_matching.api.main.OpenAIClient")
    def test_schema_setup_on_startup(self, mock_openai, mock_postgres, mock_settings):
        mock_settings.return_value = _settings(SETUP_SCHEMA=True)
        postgres = AsyncMock()
        mock_postgres.return_value = postgres
        mock_openai.return_value = AsyncMock(embedding_dimensions=8)

        from profile_matching.api.main import app

        with TestClient(app):
            pass

        postgres.setup_schema.assert_awaited_once_with(8)

    @patch("profile_matching.api.main.get_settings")
    @patch("profile_matching.api.main.PostgresClient")
    @patch("profile_matching.api.main.OpenAIClient")
    def test_webhook_route_validates_body(self, mock_openai, mock_postgres, mock_settings):
        mock_settings.return_value = _settings()
        mock_postgres.return_value = AsyncMock()
        mock_openai.return_value = AsyncMock(embedding_dimensions=8)

        from profile_matching.api.main import app

        with TestClient(app) as client:
            resp = client.post("/webhooks/call-events", json={"event": "call_started"})

        assert resp.status_code == 400
