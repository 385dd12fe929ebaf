from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from aiogram.exceptions import (
    TelegramBadRequest,
    TelegramNetworkError,
    TelegramRetryAfter,
    TelegramServerError,
)

from freedom_bot.core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS = (TelegramRetryAfter, TelegramServerError, TelegramNetworkError)


def is_message_not_modified(exc: BaseException) -> bool:
    return isinstance(exc, TelegramBadRequest) and "message is not modified" in str(exc).lower()


def is_message_missing(exc: BaseException) -> bool:
    if not isinstance(exc, TelegramBadRequest):
        return False
    text = str(exc).lower()
    return "message to edit not found" in text or "message to delete not found" in text


async def with_telegram_retries(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int | None = None,
    base_delay: float | None = None,
    max_delay: float | None = None,
    operation_name: str = "telegram_call",
) -> T:
    """Повторяет вызов Bot API только при временных ошибках (429, 5xx, сеть).

    TelegramForbiddenError и TelegramBadRequest пробрасываются сразу:
    на них реагирует бизнес-логика (пометить пользователя заблокированным,
    отправить новое сообщение вместо редактирования).
    """
    max_attempts = max(1, attempts if attempts is not None else settings.telegram_retry_attempts)
    delay = base_delay if base_delay is not None else settings.telegram_retry_base_delay_seconds
    delay_cap = max_delay if max_delay is not None else settings.telegram_retry_max_delay_seconds

    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except RETRYABLE_ERRORS as exc:
            if attempt >= max_attempts:
                logger.warning(
                    "telegram_retries_exhausted",
                    extra={"operation": operation_name, "attempts": attempt, "error": str(exc)},
                )
                raise
            if isinstance(exc, TelegramRetryAfter):
                wait_seconds = float(exc.retry_after)
            else:
                wait_seconds = min(delay_cap, delay * (2 ** (attempt - 1)))
            logger.info(
                "telegram_call_retry",
                extra={
                    "operation": operation_name,
                    "attempt": attempt,
                    "wait_seconds": wait_seconds,
                    "error": str(exc),
                },
            )
            await asyncio.sleep(wait_seconds)
    raise RuntimeError("unreachable")
