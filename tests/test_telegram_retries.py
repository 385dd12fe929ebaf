import unittest
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

from aiogram.exceptions import (
    TelegramBadRequest,
    TelegramForbiddenError,
    TelegramNetworkError,
    TelegramRetryAfter,
    TelegramServerError,
)

from freedom_bot.bot import telegram
from freedom_bot.bot.telegram import is_message_missing, is_message_not_modified, with_telegram_retries

METHOD = SimpleNamespace(chat_id=42)


def test_not_modified_detection() -> None:
    assert is_message_not_modified(TelegramBadRequest(METHOD, "Bad Request: message is not modified"))
    assert not is_message_not_modified(TelegramBadRequest(METHOD, "Bad Request: chat not found"))
    assert not is_message_not_modified(RuntimeError("message is not modified"))


def test_missing_message_detection() -> None:
    assert is_message_missing(TelegramBadRequest(METHOD, "Bad Request: message to edit not found"))
    assert is_message_missing(TelegramBadRequest(METHOD, "Bad Request: message to delete not found"))
    assert not is_message_missing(TelegramBadRequest(METHOD, "Bad Request: chat not found"))


class TelegramRetriesTests(unittest.IsolatedAsyncioTestCase):
    async def test_transient_errors_are_retried(self) -> None:
        operation = AsyncMock(
            side_effect=[
                TelegramServerError(METHOD, "Internal Server Error"),
                TelegramNetworkError(METHOD, "timeout"),
                "ok",
            ]
        )

        result = await with_telegram_retries(operation, attempts=3, base_delay=0, max_delay=0)

        self.assertEqual(result, "ok")
        self.assertEqual(operation.await_count, 3)

    async def test_retry_after_waits_requested_time(self) -> None:
        operation = AsyncMock(side_effect=[TelegramRetryAfter(METHOD, "Too Many Requests", 3), "ok"])

        with patch.object(telegram.asyncio, "sleep", AsyncMock()) as sleep:
            result = await with_telegram_retries(operation, attempts=2)

        self.assertEqual(result, "ok")
        sleep.assert_awaited_once_with(3.0)

    async def test_exhausted_attempts_reraise(self) -> None:
        operation = AsyncMock(side_effect=TelegramServerError(METHOD, "Bad Gateway"))

        with self.assertRaises(TelegramServerError):
            await with_telegram_retries(operation, attempts=2, base_delay=0, max_delay=0)
        self.assertEqual(operation.await_count, 2)

    async def test_business_errors_are_not_retried(self) -> None:
        for error in (
            TelegramBadRequest(METHOD, "Bad Request: message is not modified"),
            TelegramForbiddenError(METHOD, "Forbidden: bot was blocked by the user"),
        ):
            operation = AsyncMock(side_effect=error)
            with self.assertRaises(type(error)):
                await with_telegram_retries(operation, attempts=3, base_delay=0, max_delay=0)
            self.assertEqual(operation.await_count, 1)


if __name__ == "__main__":
    unittest.main()
