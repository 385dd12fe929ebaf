from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject
from sqlalchemy import exists, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from freedom_bot.bot.roles import (
    EXECUTOR_ROLES,
    ExecutorRole,
    UserRole,
    can_change_role,
    is_executor_role,
    normalize_role,
)
from freedom_bot.bot.session.document import AuthSnapshot, ExecutorAccessSnapshot, SessionDocument, SessionUser
from freedom_bot.bot.session.middleware import STORE_ERRORS
from freedom_bot.core.timezone import utcnow
from freedom_bot.db.dialect import upsert_insert
from freedom_bot.db.models import (
    Subscription,
    SubscriptionStatus,
    User,
    UserStatus,
    Verification,
    VerificationStatus,
)

logger = logging.getLogger(__name__)

_LOCKED_STATUSES = (UserStatus.SUSPENDED, UserStatus.BANNED)


@dataclass(frozen=True)
class AuthUser:
    telegram_id: int
    username: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    role: UserRole = UserRole.CLIENT
    status: str = UserStatus.GUEST.value
    phone: str | None = None
    phone_verified: bool = False
    city_selected: str | None = None
    is_verified: bool = False
    is_blocked: bool = False


@dataclass(frozen=True)
class ExecutorAccess:
    verified_roles: dict[ExecutorRole, bool] = field(default_factory=dict)
    has_active_subscription: bool = False
    is_verified: bool = False

    def is_role_verified(self, role: ExecutorRole | None) -> bool:
        if role is None:
            return False
        return bool(self.verified_roles.get(role))


@dataclass(frozen=True)
class AuthState:
    user: AuthUser
    executor: ExecutorAccess
    is_moderator: bool = False
    stale: bool = False

    @classmethod
    def guest(cls, from_user: Any) -> "AuthState":
        return cls(
            user=AuthUser(
                telegram_id=int(getattr(from_user, "id", 0) or 0),
                username=getattr(from_user, "username", None),
                first_name=getattr(from_user, "first_name", None),
                last_name=getattr(from_user, "last_name", None),
            ),
            executor=ExecutorAccess(verified_roles={role: False for role in EXECUTOR_ROLES}),
            stale=True,
        )


def _active_verification_clause(role: ExecutorRole, now):
    return exists().where(
        Verification.user_id == User.id,
        Verification.role == role.value,
        Verification.status == VerificationStatus.ACTIVE,
        or_(Verification.expires_at.is_(None), Verification.expires_at > now),
    )


def _active_subscription_clause(now):
    window_end = func.coalesce(Subscription.grace_until, Subscription.next_billing_at)
    return exists().where(
        Subscription.user_id == User.id,
        Subscription.status == SubscriptionStatus.ACTIVE,
        or_(window_end.is_(None), window_end > now),
    )


class AuthResolver:
    """Собирает AuthState из таблиц users/verifications/subscriptions."""

    async def resolve(self, db: AsyncSession, from_user: Any) -> AuthState:
        telegram_id = int(from_user.id)
        insert_stmt = upsert_insert(db, User).values(
            telegram_id=telegram_id,
            username=from_user.username,
            first_name=from_user.first_name,
            last_name=from_user.last_name,
            role=UserRole.CLIENT.value,
            status=UserStatus.GUEST,
            phone_verified=False,
            is_verified=False,
            is_blocked=False,
            created_at=utcnow(),
            updated_at=utcnow(),
        )
        upsert_stmt = insert_stmt.on_conflict_do_update(
            index_elements=["telegram_id"],
            set_={
                "username": func.coalesce(insert_stmt.excluded.username, User.username),
                "first_name": func.coalesce(insert_stmt.excluded.first_name, User.first_name),
                "last_name": func.coalesce(insert_stmt.excluded.last_name, User.last_name),
                "updated_at": insert_stmt.excluded.updated_at,
            },
        )
        await db.execute(upsert_stmt)

        now = utcnow()
        verified_columns = [
            _active_verification_clause(role, now).label(f"verified_{role.value}")
            for role in EXECUTOR_ROLES
        ]
        stmt = select(
            User,
            *verified_columns,
            _active_subscription_clause(now).label("has_active_subscription"),
        ).where(User.telegram_id == telegram_id)
        row = (await db.execute(stmt)).one()
        return build_auth_state(row)


def build_auth_state(row: Any) -> AuthState:
    user: User = row.User
    role = normalize_role(user.role)
    verified_roles = {
        executor_role: bool(getattr(row, f"verified_{executor_role.value}"))
        for executor_role in EXECUTOR_ROLES
    }
    status = user.status.value if isinstance(user.status, UserStatus) else str(user.status or "guest")
    return AuthState(
        user=AuthUser(
            telegram_id=int(user.telegram_id),
            username=user.username,
            first_name=user.first_name,
            last_name=user.last_name,
            role=role,
            status=status,
            phone=user.phone,
            phone_verified=bool(user.phone_verified),
            city_selected=user.city_selected,
            is_verified=bool(user.is_verified),
            is_blocked=bool(user.is_blocked),
        ),
        executor=ExecutorAccess(
            verified_roles=verified_roles,
            has_active_subscription=bool(row.has_active_subscription),
            is_verified=bool(user.is_verified) or any(verified_roles.values()),
        ),
        is_moderator=role is UserRole.MODERATOR,
    )


def snapshot_from_auth(auth: AuthState) -> AuthSnapshot:
    return AuthSnapshot(
        telegram_id=auth.user.telegram_id,
        username=auth.user.username,
        first_name=auth.user.first_name,
        last_name=auth.user.last_name,
        role=auth.user.role.value,
        status=auth.user.status,
        phone=auth.user.phone,
        phone_verified=auth.user.phone_verified,
        city_selected=auth.user.city_selected,
        is_blocked=auth.user.is_blocked,
        executor=ExecutorAccessSnapshot(
            verified_roles=dict(auth.executor.verified_roles),
            has_active_subscription=auth.executor.has_active_subscription,
            is_verified=auth.executor.is_verified,
        ),
        is_moderator=auth.is_moderator,
        stale=False,
        refreshed_at=utcnow(),
    )


def auth_from_snapshot(snapshot: AuthSnapshot, from_user: Any) -> AuthState:
    telegram_id = snapshot.telegram_id
    if telegram_id is None:
        telegram_id = int(getattr(from_user, "id", 0) or 0)
    verified_roles = {
        role: bool(snapshot.executor.verified_roles.get(role)) for role in EXECUTOR_ROLES
    }
    return AuthState(
        user=AuthUser(
            telegram_id=telegram_id,
            username=snapshot.username,
            first_name=snapshot.first_name,
            last_name=snapshot.last_name,
            role=normalize_role(snapshot.role),
            status=snapshot.status,
            phone=snapshot.phone,
            phone_verified=snapshot.phone_verified,
            city_selected=snapshot.city_selected,
            is_verified=snapshot.executor.is_verified,
            is_blocked=snapshot.is_blocked,
        ),
        executor=ExecutorAccess(
            verified_roles=verified_roles,
            has_active_subscription=snapshot.executor.has_active_subscription,
            is_verified=snapshot.executor.is_verified,
        ),
        is_moderator=snapshot.is_moderator,
        stale=True,
    )


def apply_auth_to_session(session: SessionDocument, auth: AuthState) -> None:
    session.is_authenticated = True
    session.user = SessionUser(
        id=auth.user.telegram_id,
        username=auth.user.username,
        first_name=auth.user.first_name,
        last_name=auth.user.last_name,
    )
    session.auth_snapshot = snapshot_from_auth(auth)
    if auth.user.phone:
        session.phone_number = auth.user.phone
    if auth.user.city_selected:
        session.city = auth.user.city_selected
    if session.executor.role is None and is_executor_role(auth.user.role):
        session.executor.role = ExecutorRole(auth.user.role.value)


def fallback_auth(session: SessionDocument, from_user: Any) -> AuthState:
    session.is_authenticated = False
    snapshot = session.auth_snapshot
    if snapshot is None:
        return AuthState.guest(from_user)
    snapshot.stale = True
    return auth_from_snapshot(snapshot, from_user)


class AuthMiddleware(BaseMiddleware):
    def __init__(self, resolver: AuthResolver | None = None) -> None:
        self._resolver = resolver or AuthResolver()

    async def __call__(
        self,
        handler: Callable[[TelegramObject, dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: dict[str, Any],
    ) -> Any:
        from_user = data.get("event_from_user")
        session: SessionDocument | None = data.get("session")
        if from_user is None or session is None:
            data["auth"] = None
            return await handler(event, data)

        db: AsyncSession | None = data.get("db")
        auth: AuthState | None = None
        if db is not None:
            try:
                async with db.begin_nested():
                    auth = await self._resolver.resolve(db, from_user)
            except STORE_ERRORS as exc:
                logger.warning(
                    "auth_resolve_failed",
                    extra={"user_id": from_user.id, "error": str(exc)},
                )
                auth = None

        if auth is None:
            auth = fallback_auth(session, from_user)
        else:
            apply_auth_to_session(session, auth)

        data["auth"] = auth
        return await handler(event, data)


async def _get_user(db: AsyncSession, telegram_id: int) -> User | None:
    return await db.scalar(select(User).where(User.telegram_id == telegram_id))


async def update_user_role(db: AsyncSession, telegram_id: int, role: UserRole) -> bool:
    """Меняет роль пользователя. Роль модератора не перезаписывается."""
    user = await _get_user(db, telegram_id)
    if user is None or not can_change_role(user.role):
        return False
    user.role = role.value
    if user.status not in _LOCKED_STATUSES:
        user.status = (
            UserStatus.ACTIVE_EXECUTOR if is_executor_role(role) else UserStatus.ACTIVE_CLIENT
        )
    await db.flush()
    return True


async def update_user_city(db: AsyncSession, telegram_id: int, city: str) -> None:
    user = await _get_user(db, telegram_id)
    if user is None:
        return
    user.city_selected = city
    await db.flush()


async def update_user_phone(db: AsyncSession, telegram_id: int, phone: str) -> None:
    user = await _get_user(db, telegram_id)
    if user is None:
        return
    user.phone = phone
    user.phone_verified = True
    if user.status == UserStatus.GUEST:
        user.status = UserStatus.ACTIVE_CLIENT
    await db.flush()


async def mark_user_blocked(db: AsyncSession, telegram_id: int, blocked: bool = True) -> None:
    await db.execute(
        update(User)
        .where(User.telegram_id == telegram_id)
        .values(is_blocked=blocked, updated_at=utcnow())
    )
    logger.info("user_blocked_flag_updated", extra={"user_id": telegram_id, "blocked": blocked})
