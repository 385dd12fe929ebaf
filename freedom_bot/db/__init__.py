from freedom_bot.db.base import Base
from freedom_bot.db.models import (
    ChannelSettings,
    PaymentStatus,
    RecentAction,
    SessionRecord,
    Subscription,
    SubscriptionPayment,
    SubscriptionStatus,
    User,
    UserStatus,
    Verification,
    VerificationStatus,
)

__all__ = [
    "Base",
    "ChannelSettings",
    "PaymentStatus",
    "RecentAction",
    "SessionRecord",
    "Subscription",
    "SubscriptionPayment",
    "SubscriptionStatus",
    "User",
    "UserStatus",
    "Verification",
    "VerificationStatus",
]
