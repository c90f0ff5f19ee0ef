from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from instructor_booking.core.errors import ValidationError
from instructor_booking.services.intervals import ensure_utc

DEFAULT_BLOCK_REASON = "Manual block"


class ManualBlockStore(ABC):
    @abstractmethod
    def list_overlapping(
        self,
        instructor_id: str,
        window_start: datetime,
        window_end: datetime,
    ) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def get(self, block_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def create(
        self,
        *,
        instructor_id: str,
        start_time: datetime,
        end_time: datetime,
        reason: str | None = None,
    ) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def delete(self, block_id: str) -> bool:
        raise NotImplementedError

    def _build_record(
        self,
        *,
        instructor_id: str,
        start_time: datetime,
        end_time: datetime,
        reason: str | None,
    ) -> dict[str, Any]:
        normalized_start = ensure_utc(start_time)
        normalized_end = ensure_utc(end_time)
        if normalized_start >= normalized_end:
            raise ValidationError("Start time must be before end time", code="inverted_time_range")
        return {
            "_id": uuid4().hex,
            "instructor_id": instructor_id,
            "start_time": normalized_start,
            "end_time": normalized_end,
            "reason": (reason or "").strip() or DEFAULT_BLOCK_REASON,
            "created_at": datetime.now(UTC),
        }


class InMemoryManualBlockStore(ManualBlockStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, dict[str, Any]] = {}

    def list_overlapping(
        self,
        instructor_id: str,
        window_start: datetime,
        window_end: datetime,
    ) -> list[dict[str, Any]]:
        with self._lock:
            records = [
                dict(record)
                for record in self._records.values()
                if record["instructor_id"] == instructor_id
                and record["start_time"] < window_end
                and record["end_time"] > window_start
            ]
        return sorted(records, key=lambda record: record["start_time"])

    def get(self, block_id: str) -> dict[str, Any] | None:
        with self._lock:
            record = self._records.get(block_id)
            return dict(record) if record else None

    def create(
        self,
        *,
        instructor_id: str,
        start_time: datetime,
        end_time: datetime,
        reason: str | None = None,
    ) -> dict[str, Any]:
        record = self._build_record(
            instructor_id=instructor_id,
            start_time=start_time,
            end_time=end_time,
            reason=reason,
        )
        with self._lock:
            self._records[record["_id"]] = record
        return dict(record)

    def delete(self, block_id: str) -> bool:
        with self._lock:
            return self._records.pop(block_id, None) is not None


class MongoManualBlockStore(ManualBlockStore):
    def __init__(self, *, database: Any, collection_name: str) -> None:
        from pymongo import ASCENDING

        self._asc = ASCENDING
        self._collection = database[collection_name]
        self._collection.create_index(
            [("instructor_id", ASCENDING), ("start_time", ASCENDING), ("end_time", ASCENDING)],
        )

    def list_overlapping(
        self,
        instructor_id: str,
        window_start: datetime,
        window_end: datetime,
    ) -> list[dict[str, Any]]:
        cursor = self._collection.find(
            {
                "instructor_id": instructor_id,
                "start_time": {"$lt": window_end},
                "end_time": {"$gt": window_start},
            },
        ).sort("start_time", self._asc)
        return list(cursor)

    def get(self, block_id: str) -> dict[str, Any] | None:
        return self._collection.find_one({"_id": block_id})

    def create(
        self,
        *,
        instructor_id: str,
        start_time: datetime,
        end_time: datetime,
        reason: str | None = None,
    ) -> dict[str, Any]:
        record = self._build_record(
            instructor_id=instructor_id,
            start_time=start_time,
            end_time=end_time,
            reason=reason,
        )
        self._collection.insert_one(dict(record))
        return record

    def delete(self, block_id: str) -> bool:
        result = self._collection.delete_one({"_id": block_id})
        return bool(result.deleted_count)
