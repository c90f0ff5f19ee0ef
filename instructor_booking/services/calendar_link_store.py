from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from instructor_booking.services.intervals import Interval, ensure_utc

SYNC_STATUS_ACTIVE = "active"
SYNC_STATUS_DEGRADED = "degraded"
SYNC_STATUS_DISCONNECTED = "disconnected"


class CalendarLinkStore(ABC):
    """Persistence for ExternalCalendarLink records and their busy-interval cache.

    Links are keyed by instructor id (one link per instructor). The busy cache
    holds the last successful provider pull for a link, as a list of UTC
    intervals covering ``[window_start, window_end)``.
    """

    @abstractmethod
    def get_by_instructor(self, instructor_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def get_by_resource_id(self, resource_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def save(self, instructor_id: str, values: Mapping[str, Any]) -> dict[str, Any]:
        """Create or fully replace the link of an instructor."""
        raise NotImplementedError

    @abstractmethod
    def update(self, instructor_id: str, updates: Mapping[str, Any]) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def delete(self, instructor_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def list_expiring_before(
        self,
        cutoff: datetime,
        *,
        statuses: Iterable[str],
    ) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def get_busy_cache(self, instructor_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def replace_busy_cache(
        self,
        instructor_id: str,
        *,
        window_start: datetime,
        window_end: datetime,
        intervals: Iterable[Interval],
    ) -> None:
        raise NotImplementedError

    @abstractmethod
    def clear_busy_cache(self, instructor_id: str) -> None:
        raise NotImplementedError


class InMemoryCalendarLinkStore(CalendarLinkStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._links: dict[str, dict[str, Any]] = {}
        self._busy_cache: dict[str, dict[str, Any]] = {}

    def get_by_instructor(self, instructor_id: str) -> dict[str, Any] | None:
        with self._lock:
            link = self._links.get(instructor_id)
            return dict(link) if link else None

    def get_by_resource_id(self, resource_id: str) -> dict[str, Any] | None:
        with self._lock:
            for link in self._links.values():
                if link.get("webhook_resource_id") == resource_id:
                    return dict(link)
        return None

    def save(self, instructor_id: str, values: Mapping[str, Any]) -> dict[str, Any]:
        now = datetime.now(UTC)
        with self._lock:
            existing = self._links.get(instructor_id)
            link = dict(values)
            link["_id"] = instructor_id
            link["instructor_id"] = instructor_id
            link["created_at"] = existing["created_at"] if existing else now
            link["updated_at"] = now
            self._links[instructor_id] = link
            return dict(link)

    def update(self, instructor_id: str, updates: Mapping[str, Any]) -> dict[str, Any] | None:
        with self._lock:
            link = self._links.get(instructor_id)
            if not link:
                return None
            link.update(dict(updates))
            link["updated_at"] = datetime.now(UTC)
            return dict(link)

    def delete(self, instructor_id: str) -> bool:
        with self._lock:
            self._busy_cache.pop(instructor_id, None)
            return self._links.pop(instructor_id, None) is not None

    def list_expiring_before(
        self,
        cutoff: datetime,
        *,
        statuses: Iterable[str],
    ) -> list[dict[str, Any]]:
        allowed = set(statuses)
        with self._lock:
            return [
                dict(link)
                for link in self._links.values()
                if link.get("sync_status") in allowed
                and (link.get("channel_expiry") is None or link["channel_expiry"] <= cutoff)
            ]

    def get_busy_cache(self, instructor_id: str) -> dict[str, Any] | None:
        with self._lock:
            cache = self._busy_cache.get(instructor_id)
            if not cache:
                return None
            return {**cache, "intervals": list(cache["intervals"])}

    def replace_busy_cache(
        self,
        instructor_id: str,
        *,
        window_start: datetime,
        window_end: datetime,
        intervals: Iterable[Interval],
    ) -> None:
        cache = _build_busy_cache(instructor_id, window_start, window_end, intervals)
        with self._lock:
            self._busy_cache[instructor_id] = cache

    def clear_busy_cache(self, instructor_id: str) -> None:
        with self._lock:
            self._busy_cache.pop(instructor_id, None)


class MongoCalendarLinkStore(CalendarLinkStore):
    def __init__(
        self,
        *,
        database: Any,
        links_collection_name: str,
        busy_cache_collection_name: str,
    ) -> None:
        self._links = database[links_collection_name]
        self._busy_cache = database[busy_cache_collection_name]
        self._links.create_index("webhook_resource_id")
        self._links.create_index("channel_expiry")

    def get_by_instructor(self, instructor_id: str) -> dict[str, Any] | None:
        return self._links.find_one({"_id": instructor_id})

    def get_by_resource_id(self, resource_id: str) -> dict[str, Any] | None:
        return self._links.find_one({"webhook_resource_id": resource_id})

    def save(self, instructor_id: str, values: Mapping[str, Any]) -> dict[str, Any]:
        from pymongo import ReturnDocument

        now = datetime.now(UTC)
        existing = self._links.find_one({"_id": instructor_id}, {"created_at": 1})
        payload = dict(values)
        payload.pop("_id", None)
        payload["instructor_id"] = instructor_id
        payload["created_at"] = existing["created_at"] if existing else now
        payload["updated_at"] = now
        return self._links.find_one_and_replace(
            {"_id": instructor_id},
            {"_id": instructor_id, **payload},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )

    def update(self, instructor_id: str, updates: Mapping[str, Any]) -> dict[str, Any] | None:
        from pymongo import ReturnDocument

        changes = dict(updates)
        changes["updated_at"] = datetime.now(UTC)
        return self._links.find_one_and_update(
            {"_id": instructor_id},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )

    def delete(self, instructor_id: str) -> bool:
        self._busy_cache.delete_one({"_id": instructor_id})
        result = self._links.delete_one({"_id": instructor_id})
        return bool(result.deleted_count)

    def list_expiring_before(
        self,
        cutoff: datetime,
        *,
        statuses: Iterable[str],
    ) -> list[dict[str, Any]]:
        cursor = self._links.find(
            {
                "sync_status": {"$in": list(statuses)},
                "$or": [{"channel_expiry": None}, {"channel_expiry": {"$lte": cutoff}}],
            },
        )
        return list(cursor)

    def get_busy_cache(self, instructor_id: str) -> dict[str, Any] | None:
        cache = self._busy_cache.find_one({"_id": instructor_id})
        if not cache:
            return None
        cache["intervals"] = [
            Interval(ensure_utc(item["start"]), ensure_utc(item["end"]))
            for item in cache.get("intervals", [])
        ]
        cache["window_start"] = ensure_utc(cache["window_start"])
        cache["window_end"] = ensure_utc(cache["window_end"])
        return cache

    def replace_busy_cache(
        self,
        instructor_id: str,
        *,
        window_start: datetime,
        window_end: datetime,
        intervals: Iterable[Interval],
    ) -> None:
        cache = _build_busy_cache(instructor_id, window_start, window_end, intervals)
        cache["intervals"] = [
            {"start": interval.start, "end": interval.end} for interval in cache["intervals"]
        ]
        self._busy_cache.replace_one({"_id": instructor_id}, cache, upsert=True)

    def clear_busy_cache(self, instructor_id: str) -> None:
        self._busy_cache.delete_one({"_id": instructor_id})


def _build_busy_cache(
    instructor_id: str,
    window_start: datetime,
    window_end: datetime,
    intervals: Iterable[Interval],
) -> dict[str, Any]:
    return {
        "_id": instructor_id,
        "instructor_id": instructor_id,
        "window_start": ensure_utc(window_start),
        "window_end": ensure_utc(window_end),
        "intervals": sorted(intervals),
        "refreshed_at": datetime.now(UTC),
    }
