from __future__ import annotations

from typing import Iterable, Protocol

from passlib.context import CryptContext

from nexusmfg.core.models import User


MIN_PASSWORD_LENGTH = 6

# Who may do what. Admin implicitly passes every check.
PERMISSIONS: dict[str, tuple[str, ...]] = {
    "log_entry": ("admin", "manager", "planner", "operator"),
    "edit_entry": ("admin", "manager"),
    "delete_entry": ("admin", "manager"),
    "manage_off_days": ("admin", "manager"),
    "manage_users": ("admin",),
    "view_logs": ("admin", "manager", "planner", "operator"),
}


class PasswordHasher(Protocol):
    def hash(self, password: str) -> str: ...

    def verify(self, password: str, password_hash: str) -> bool: ...


class PasslibHasher:
    """Hash-and-compare credentials through passlib."""

    def __init__(self, schemes: list[str] | None = None):
        self._ctx = CryptContext(schemes=schemes or ["pbkdf2_sha256"], deprecated="auto")

    def hash(self, password: str) -> str:
        return self._ctx.hash(password)

    def verify(self, password: str, password_hash: str) -> bool:
        if not password_hash:
            return False
        try:
            return bool(self._ctx.verify(password, password_hash))
        except ValueError:
            # Unknown/corrupt hash format.
            return False


def has_permission(user: User | None, roles: Iterable[str]) -> bool:
    if user is None:
        return False
    if user.role == "admin":
        return True
    return user.role in set(roles)


def can(user: User | None, action: str) -> bool:
    roles = PERMISSIONS.get(action)
    if roles is None:
        raise ValueError(f"Unknown permission: {action!r}")
    return has_permission(user, roles)


def validate_new_password(*, new_password: str, confirm_password: str) -> None:
    if new_password != confirm_password:
        raise ValueError("New passwords do not match")
    if len(new_password or "") < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
