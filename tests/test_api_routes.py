import unittest
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient

from freedom_bot.api.routes import webhook
from freedom_bot.core.config import settings
from freedom_bot.main import create_app


class HealthEndpointTests(unittest.TestCase):
    def setUp(self) -> None:
        self.client = TestClient(create_app())

    def test_liveness(self) -> None:
        response = self.client.get("/health")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})

    def test_ready_returns_200_when_database_is_available(self) -> None:
        @asynccontextmanager
        async def fake_session():
            session = MagicMock()
            session.execute = AsyncMock()
            yield session

        with patch("freedom_bot.api.routes.health.get_session", fake_session):
            response = self.client.get("/health/ready")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ready")

    def test_ready_returns_503_when_database_is_unavailable(self) -> None:
        @asynccontextmanager
        async def failing_session():
            raise ConnectionRefusedError("db down")
            yield

        with patch("freedom_bot.api.routes.health.get_session", failing_session):
            response = self.client.get("/health/ready")

        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["status"], "not_ready")
        self.assertIn("ConnectionRefusedError", response.json()["reason"])


class WebhookEndpointTests(unittest.TestCase):
    def setUp(self) -> None:
        self.client = TestClient(create_app())

    def test_wrong_secret_is_forbidden(self) -> None:
        with patch.object(settings, "webhook_secret", "s3cret"):
            response = self.client.post(
                settings.webhook_path,
                json={"update_id": 1},
                headers={webhook.SECRET_HEADER: "nope"},
            )

        self.assertEqual(response.status_code, 403)

    def test_update_is_fed_to_dispatcher(self) -> None:
        dispatcher = MagicMock()
        dispatcher.feed_update = AsyncMock()
        bot = MagicMock()

        with (
            patch.object(settings, "webhook_secret", "s3cret"),
            patch.object(webhook, "get_bot", return_value=bot),
            patch.object(webhook, "get_dispatcher", return_value=dispatcher),
        ):
            response = self.client.post(
                settings.webhook_path,
                json={"update_id": 7},
                headers={webhook.SECRET_HEADER: "s3cret"},
            )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"ok": True})
        update = dispatcher.feed_update.await_args.args[1]
        self.assertEqual(update.update_id, 7)

    def test_handler_errors_still_acknowledge_update(self) -> None:
        dispatcher = MagicMock()
        dispatcher.feed_update = AsyncMock(side_effect=RuntimeError("handler failed"))

        with (
            patch.object(settings, "webhook_secret", None),
            patch.object(webhook, "get_bot", return_value=MagicMock()),
            patch.object(webhook, "get_dispatcher", return_value=dispatcher),
        ):
            response = self.client.post(settings.webhook_path, json={"update_id": 8})

        self.assertEqual(response.status_code, 200)


if __name__ == "__main__":
    unittest.main()
