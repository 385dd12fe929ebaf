from freedom_bot.bot.moderation.payments import PaymentApplication, publish_payment_application
from freedom_bot.bot.moderation.queue import PublishResult
from freedom_bot.bot.moderation.verification import (
    VerificationApplication,
    publish_verification_application,
)

__all__ = [
    "PaymentApplication",
    "PublishResult",
    "VerificationApplication",
    "publish_payment_application",
    "publish_verification_application",
]
