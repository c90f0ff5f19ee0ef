from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

_UPDATABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "duration_minutes",
        "requires_approval",
        "max_party_size",
        "is_active",
    },
)


class AppointmentTypeStore(ABC):
    @abstractmethod
    def list_for_instructor(self, instructor_id: str, *, active_only: bool = False) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def get(self, appointment_type_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def create(
        self,
        *,
        instructor_id: str,
        title: str,
        duration_minutes: int,
        description: str | None = None,
        requires_approval: bool = False,
        max_party_size: int = 1,
        is_active: bool = True,
    ) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def update(self, appointment_type_id: str, updates: Mapping[str, Any]) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def delete(self, appointment_type_id: str) -> bool:
        raise NotImplementedError


class InMemoryAppointmentTypeStore(AppointmentTypeStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, dict[str, Any]] = {}

    def list_for_instructor(self, instructor_id: str, *, active_only: bool = False) -> list[dict[str, Any]]:
        with self._lock:
            records = [
                dict(record)
                for record in self._records.values()
                if record["instructor_id"] == instructor_id and (not active_only or record["is_active"])
            ]
        return sorted(records, key=lambda record: (record["title"].lower(), record["created_at"]))

    def get(self, appointment_type_id: str) -> dict[str, Any] | None:
        with self._lock:
            record = self._records.get(appointment_type_id)
            return dict(record) if record else None

    def create(
        self,
        *,
        instructor_id: str,
        title: str,
        duration_minutes: int,
        description: str | None = None,
        requires_approval: bool = False,
        max_party_size: int = 1,
        is_active: bool = True,
    ) -> dict[str, Any]:
        record = _build_record(
            instructor_id=instructor_id,
            title=title,
            duration_minutes=duration_minutes,
            description=description,
            requires_approval=requires_approval,
            max_party_size=max_party_size,
            is_active=is_active,
        )
        with self._lock:
            self._records[record["_id"]] = record
        return dict(record)

    def update(self, appointment_type_id: str, updates: Mapping[str, Any]) -> dict[str, Any] | None:
        with self._lock:
            current = self._records.get(appointment_type_id)
            if not current:
                return None
            current.update(_filter_updates(updates))
            return dict(current)

    def delete(self, appointment_type_id: str) -> bool:
        with self._lock:
            return self._records.pop(appointment_type_id, None) is not None


class MongoAppointmentTypeStore(AppointmentTypeStore):
    def __init__(self, *, database: Any, collection_name: str) -> None:
        self._collection = database[collection_name]
        self._collection.create_index("instructor_id")

    def list_for_instructor(self, instructor_id: str, *, active_only: bool = False) -> list[dict[str, Any]]:
        query: dict[str, Any] = {"instructor_id": instructor_id}
        if active_only:
            query["is_active"] = True
        records = list(self._collection.find(query))
        return sorted(records, key=lambda record: (record["title"].lower(), record["created_at"]))

    def get(self, appointment_type_id: str) -> dict[str, Any] | None:
        return self._collection.find_one({"_id": appointment_type_id})

    def create(
        self,
        *,
        instructor_id: str,
        title: str,
        duration_minutes: int,
        description: str | None = None,
        requires_approval: bool = False,
        max_party_size: int = 1,
        is_active: bool = True,
    ) -> dict[str, Any]:
        record = _build_record(
            instructor_id=instructor_id,
            title=title,
            duration_minutes=duration_minutes,
            description=description,
            requires_approval=requires_approval,
            max_party_size=max_party_size,
            is_active=is_active,
        )
        self._collection.insert_one(dict(record))
        return record

    def update(self, appointment_type_id: str, updates: Mapping[str, Any]) -> dict[str, Any] | None:
        from pymongo import ReturnDocument

        return self._collection.find_one_and_update(
            {"_id": appointment_type_id},
            {"$set": _filter_updates(updates)},
            return_document=ReturnDocument.AFTER,
        )

    def delete(self, appointment_type_id: str) -> bool:
        result = self._collection.delete_one({"_id": appointment_type_id})
        return bool(result.deleted_count)


def _build_record(
    *,
    instructor_id: str,
    title: str,
    duration_minutes: int,
    description: str | None,
    requires_approval: bool,
    max_party_size: int,
    is_active: bool,
) -> dict[str, Any]:
    now = datetime.now(UTC)
    return {
        "_id": uuid4().hex,
        "instructor_id": instructor_id,
        "title": title.strip(),
        "description": (description or "").strip() or None,
        "duration_minutes": int(duration_minutes),
        "requires_approval": bool(requires_approval),
        "max_party_size": int(max_party_size),
        "is_active": bool(is_active),
        "created_at": now,
        "updated_at": now,
    }


def _filter_updates(updates: Mapping[str, Any]) -> dict[str, Any]:
    filtered = {
        field_name: value
        for field_name, value in updates.items()
        if field_name in _UPDATABLE_FIELDS and value is not None
    }
    if isinstance(filtered.get("title"), str):
        filtered["title"] = filtered["title"].strip()
    filtered["updated_at"] = datetime.now(UTC)
    return filtered
