from __future__ import annotations

import enum
from typing import Any


class UserRole(enum.StrEnum):
    CLIENT = "client"
    COURIER = "courier"
    DRIVER = "driver"
    MODERATOR = "moderator"


class ExecutorRole(enum.StrEnum):
    COURIER = "courier"
    DRIVER = "driver"


EXECUTOR_ROLES: tuple[ExecutorRole, ...] = (ExecutorRole.COURIER, ExecutorRole.DRIVER)

# Старые значения, которые встречаются в users.role и в сохранённых сессиях.
_LEGACY_ROLE_ALIASES = {
    "taxi_driver": UserRole.DRIVER,
    "taxi": UserRole.DRIVER,
    "delivery": UserRole.COURIER,
    "guest": UserRole.CLIENT,
    "executor": UserRole.COURIER,
    "admin": UserRole.MODERATOR,
}


def normalize_role(value: Any) -> UserRole:
    if isinstance(value, UserRole):
        return value
    if not isinstance(value, str):
        return UserRole.CLIENT
    normalized = value.strip().lower()
    try:
        return UserRole(normalized)
    except ValueError:
        return _LEGACY_ROLE_ALIASES.get(normalized, UserRole.CLIENT)


def normalize_executor_role(value: Any) -> ExecutorRole | None:
    if isinstance(value, ExecutorRole):
        return value
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    if normalized == "taxi_driver":
        return ExecutorRole.DRIVER
    try:
        return ExecutorRole(normalized)
    except ValueError:
        return None


def is_executor_role(role: UserRole | None) -> bool:
    return role in (UserRole.COURIER, UserRole.DRIVER)


def can_change_role(current: Any) -> bool:
    return normalize_role(current) is not UserRole.MODERATOR
