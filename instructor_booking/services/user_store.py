from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any
from uuid import uuid4

from instructor_booking.core.config import Settings

INSTRUCTOR_ROLE = "instructor"


class EmailAlreadyRegisteredError(ValueError):
    pass


class UserStore(ABC):
    @abstractmethod
    def get_user_by_id(self, user_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def get_user_by_email(self, email: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def create_user(
        self,
        *,
        email: str,
        full_name: str,
        password_hash: str,
        timezone: str = "UTC",
    ) -> dict[str, Any]:
        raise NotImplementedError


class InMemoryUserStore(UserStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._users_by_id: dict[str, dict[str, Any]] = {}
        self._user_id_by_email: dict[str, str] = {}

    def get_user_by_id(self, user_id: str) -> dict[str, Any] | None:
        with self._lock:
            user = self._users_by_id.get(user_id)
            return dict(user) if user else None

    def get_user_by_email(self, email: str) -> dict[str, Any] | None:
        with self._lock:
            user_id = self._user_id_by_email.get(_normalize_email(email))
            if not user_id:
                return None
            return dict(self._users_by_id[user_id])

    def create_user(
        self,
        *,
        email: str,
        full_name: str,
        password_hash: str,
        timezone: str = "UTC",
    ) -> dict[str, Any]:
        user = _build_user(
            email=email,
            full_name=full_name,
            password_hash=password_hash,
            timezone=timezone,
        )
        with self._lock:
            if user["email"] in self._user_id_by_email:
                raise EmailAlreadyRegisteredError(user["email"])
            self._users_by_id[user["_id"]] = user
            self._user_id_by_email[user["email"]] = user["_id"]
        return dict(user)


class MongoUserStore(UserStore):
    def __init__(
        self,
        *,
        uri: str,
        db_name: str,
        users_collection_name: str,
        connect_timeout_ms: int = 2000,
    ) -> None:
        from pymongo import MongoClient

        self._client = MongoClient(
            uri,
            serverSelectionTimeoutMS=connect_timeout_ms,
            connectTimeoutMS=connect_timeout_ms,
            tz_aware=True,
        )
        self._users = self._client[db_name][users_collection_name]
        self._users.create_index("email", unique=True)

    def get_user_by_id(self, user_id: str) -> dict[str, Any] | None:
        return self._users.find_one({"_id": user_id})

    def get_user_by_email(self, email: str) -> dict[str, Any] | None:
        return self._users.find_one({"email": _normalize_email(email)})

    def create_user(
        self,
        *,
        email: str,
        full_name: str,
        password_hash: str,
        timezone: str = "UTC",
    ) -> dict[str, Any]:
        from pymongo.errors import DuplicateKeyError

        user = _build_user(
            email=email,
            full_name=full_name,
            password_hash=password_hash,
            timezone=timezone,
        )
        try:
            self._users.insert_one(dict(user))
        except DuplicateKeyError as exc:
            raise EmailAlreadyRegisteredError(user["email"]) from exc
        return user


def _build_user(
    *,
    email: str,
    full_name: str,
    password_hash: str,
    timezone: str,
) -> dict[str, Any]:
    now = datetime.now(UTC)
    return {
        "_id": uuid4().hex,
        "email": _normalize_email(email),
        "full_name": full_name.strip(),
        "password_hash": password_hash,
        "role": INSTRUCTOR_ROLE,
        "timezone": (timezone or "UTC").strip() or "UTC",
        "created_at": now,
        "updated_at": now,
    }


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def public_user(user: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "id": str(user["_id"]),
        "email": user["email"],
        "full_name": user["full_name"],
        "role": user.get("role", INSTRUCTOR_ROLE),
        "timezone": user.get("timezone", "UTC"),
    }


def create_user_store(settings: Settings) -> UserStore:
    return _create_user_store_cached(
        user_data_store=settings.user_data_store,
        mongodb_uri=settings.mongodb_uri,
        mongodb_db_name=settings.mongodb_db_name,
        mongodb_users_collection=settings.mongodb_users_collection,
        mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
    )


@lru_cache
def _create_user_store_cached(
    *,
    user_data_store: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_users_collection: str,
    mongodb_connect_timeout_ms: int,
) -> UserStore:
    if user_data_store == "mongodb":
        return MongoUserStore(
            uri=mongodb_uri,
            db_name=mongodb_db_name,
            users_collection_name=mongodb_users_collection,
            connect_timeout_ms=mongodb_connect_timeout_ms,
        )

    return InMemoryUserStore()


def clear_user_store_cache() -> None:
    _create_user_store_cached.cache_clear()
