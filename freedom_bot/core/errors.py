from __future__ import annotations


class SessionStoreUnavailable(RuntimeError):
    """Хранилище сессий недоступно: нет соединения или не удалось взять блокировку строки."""

    def __init__(self, scope: str, cause: BaseException) -> None:
        super().__init__(f"Session store unavailable for {scope}: {cause}")
        self.scope = scope
        self.cause = cause


class VerificationSubmissionError(RuntimeError):
    """Заявку на верификацию нельзя собрать из-за неполных данных."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class PaymentSubmissionError(RuntimeError):
    """Чек нельзя передать модераторам: канал модерации не настроен."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason
