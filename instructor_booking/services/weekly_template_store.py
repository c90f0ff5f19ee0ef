from __future__ import annotations

import re
import threading
from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import UTC, datetime, time
from typing import Any
from uuid import uuid4

from instructor_booking.core.errors import ValidationError

_TIME_OF_DAY_PATTERN = re.compile(r"^(\d{2}):(\d{2})(?::(\d{2}))?$")
_UPDATABLE_FIELDS = frozenset({"day_of_week", "start_time", "end_time", "is_active"})


def normalize_time_of_day(raw_value: str) -> str:
    """Return ``HH:MM:SS`` for ``HH:MM`` or ``HH:MM:SS`` input."""
    match = _TIME_OF_DAY_PATTERN.match(raw_value.strip())
    if not match:
        raise ValidationError(
            "Time must be in HH:MM or HH:MM:SS format",
            code="invalid_time_of_day",
        )
    hours, minutes, seconds = (int(part or 0) for part in match.groups())
    if hours > 23 or minutes > 59 or seconds > 59:
        raise ValidationError(
            "Time must be in HH:MM or HH:MM:SS format",
            code="invalid_time_of_day",
        )
    if seconds:
        raise ValidationError("Times must fall on a whole minute", code="unaligned_time")
    return f"{hours:02d}:{minutes:02d}:00"


def parse_time_of_day(value: str) -> time:
    return time.fromisoformat(normalize_time_of_day(value))


class WeeklyTemplateStore(ABC):
    @abstractmethod
    def list_for_instructor(
        self,
        instructor_id: str,
        *,
        active_only: bool = False,
        day_of_week: int | None = None,
    ) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def get(self, template_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def create(
        self,
        *,
        instructor_id: str,
        day_of_week: int,
        start_time: str,
        end_time: str,
        is_active: bool = True,
    ) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def update(self, template_id: str, updates: Mapping[str, Any]) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def delete(self, template_id: str) -> bool:
        raise NotImplementedError

    def _build_record(
        self,
        *,
        instructor_id: str,
        day_of_week: int,
        start_time: str,
        end_time: str,
        is_active: bool,
    ) -> dict[str, Any]:
        now = datetime.now(UTC)
        record = {
            "_id": uuid4().hex,
            "instructor_id": instructor_id,
            "day_of_week": day_of_week,
            "start_time": normalize_time_of_day(start_time),
            "end_time": normalize_time_of_day(end_time),
            "is_active": bool(is_active),
            "created_at": now,
            "updated_at": now,
        }
        _validate_template(record)
        return record

    def _apply_updates(self, current: Mapping[str, Any], updates: Mapping[str, Any]) -> dict[str, Any]:
        merged = dict(current)
        for field_name, value in updates.items():
            if field_name not in _UPDATABLE_FIELDS or value is None:
                continue
            if field_name in {"start_time", "end_time"}:
                value = normalize_time_of_day(str(value))
            merged[field_name] = value
        merged["updated_at"] = datetime.now(UTC)
        _validate_template(merged)
        return merged


class InMemoryWeeklyTemplateStore(WeeklyTemplateStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, dict[str, Any]] = {}

    def list_for_instructor(
        self,
        instructor_id: str,
        *,
        active_only: bool = False,
        day_of_week: int | None = None,
    ) -> list[dict[str, Any]]:
        with self._lock:
            records = [
                dict(record)
                for record in self._records.values()
                if record["instructor_id"] == instructor_id
                and (not active_only or record["is_active"])
                and (day_of_week is None or record["day_of_week"] == day_of_week)
            ]
        return sorted(records, key=_template_sort_key)

    def get(self, template_id: str) -> dict[str, Any] | None:
        with self._lock:
            record = self._records.get(template_id)
            return dict(record) if record else None

    def create(
        self,
        *,
        instructor_id: str,
        day_of_week: int,
        start_time: str,
        end_time: str,
        is_active: bool = True,
    ) -> dict[str, Any]:
        record = self._build_record(
            instructor_id=instructor_id,
            day_of_week=day_of_week,
            start_time=start_time,
            end_time=end_time,
            is_active=is_active,
        )
        with self._lock:
            self._records[record["_id"]] = record
        return dict(record)

    def update(self, template_id: str, updates: Mapping[str, Any]) -> dict[str, Any] | None:
        with self._lock:
            current = self._records.get(template_id)
            if not current:
                return None
            merged = self._apply_updates(current, updates)
            self._records[template_id] = merged
            return dict(merged)

    def delete(self, template_id: str) -> bool:
        with self._lock:
            return self._records.pop(template_id, None) is not None


class MongoWeeklyTemplateStore(WeeklyTemplateStore):
    def __init__(self, *, database: Any, collection_name: str) -> None:
        from pymongo import ASCENDING

        self._collection = database[collection_name]
        self._collection.create_index([("instructor_id", ASCENDING), ("day_of_week", ASCENDING)])

    def list_for_instructor(
        self,
        instructor_id: str,
        *,
        active_only: bool = False,
        day_of_week: int | None = None,
    ) -> list[dict[str, Any]]:
        query: dict[str, Any] = {"instructor_id": instructor_id}
        if active_only:
            query["is_active"] = True
        if day_of_week is not None:
            query["day_of_week"] = day_of_week
        return sorted(self._collection.find(query), key=_template_sort_key)

    def get(self, template_id: str) -> dict[str, Any] | None:
        return self._collection.find_one({"_id": template_id})

    def create(
        self,
        *,
        instructor_id: str,
        day_of_week: int,
        start_time: str,
        end_time: str,
        is_active: bool = True,
    ) -> dict[str, Any]:
        record = self._build_record(
            instructor_id=instructor_id,
            day_of_week=day_of_week,
            start_time=start_time,
            end_time=end_time,
            is_active=is_active,
        )
        self._collection.insert_one(dict(record))
        return record

    def update(self, template_id: str, updates: Mapping[str, Any]) -> dict[str, Any] | None:
        current = self.get(template_id)
        if not current:
            return None
        merged = self._apply_updates(current, updates)
        self._collection.update_one(
            {"_id": template_id},
            {
                "$set": {
                    field_name: merged[field_name]
                    for field_name in (*_UPDATABLE_FIELDS, "updated_at")
                },
            },
        )
        return merged

    def delete(self, template_id: str) -> bool:
        result = self._collection.delete_one({"_id": template_id})
        return bool(result.deleted_count)


def _validate_template(record: Mapping[str, Any]) -> None:
    day_of_week = record.get("day_of_week")
    if not isinstance(day_of_week, int) or not 0 <= day_of_week <= 6:
        raise ValidationError("dayOfWeek must be between 0 and 6", code="invalid_day_of_week")
    if str(record["start_time"]) >= str(record["end_time"]):
        raise ValidationError("Start time must be before end time", code="inverted_time_range")


def _template_sort_key(record: Mapping[str, Any]) -> tuple[int, str, str]:
    return (int(record["day_of_week"]), str(record["start_time"]), str(record["end_time"]))
