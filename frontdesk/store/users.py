from __future__ import annotations

from typing import TYPE_CHECKING

from .types import (
    USER_ROLES,
    Collection,
    DuplicateUserError,
    PermissionDenied,
    RecordKey,
    User,
    ValidationError,
)

if TYPE_CHECKING:
    from ._store import LocalStore


def find_user(store: LocalStore, name: str) -> User | None:
    wanted = name.strip().casefold()
    if not wanted:
        return None
    for user in store.list(Collection.USERS):
        if str(user.name or "").casefold() == wanted:
            return user  # type: ignore[return-value]
    return None


def create_user(store: LocalStore, name: str, pin: str, role: str = "agent") -> User:
    name = name.strip()
    pin = pin.strip()
    if not name or not pin:
        raise ValidationError("name and pin are required")
    if role not in USER_ROLES:
        raise ValidationError(f"invalid role: {role}")
    with store._mutation() as events:
        if find_user(store, name) is not None:
            raise DuplicateUserError(f"user {name!r} already exists")
        user = User(name=name, pin=pin, role=role)
        return store._insert(user, events)  # type: ignore[return-value]


def authenticate(store: LocalStore, name: str, pin: str) -> User | None:
    if not name.strip() or not pin:
        return None
    user = find_user(store, name)
    if user is None or user.pin != pin:
        return None
    return user


def delete_user(store: LocalStore, acting_user: User | None, user_id: RecordKey) -> bool:
    """Delete a user account. Their calls, tasks and tickets are kept."""

    if acting_user is None or acting_user.role != "admin":
        raise PermissionDenied("only admins can delete users")
    if acting_user.id == user_id:
        raise ValidationError("admins cannot delete their own account")
    return store.delete(Collection.USERS, user_id)


def seed_admin(store: LocalStore, name: str, pin: str) -> User | None:
    if find_user(store, name) is not None:
        return None
    return create_user(store, name, pin, role="admin")


def user_names(store: LocalStore) -> dict[RecordKey, str]:
    names: dict[RecordKey, str] = {}
    for user in store.list(Collection.USERS):
        if user.id is not None:
            names[user.id] = str(getattr(user, "name", "") or "")
    return names
