"""
System of record for appointments that consume instructor time.

Both implementations guard inserts with a per-minute claim table keyed on
``(instructor_id, minute)``: a booking owns every minute it touches while it is
pending or confirmed, and a second booking touching any of those minutes is
refused by the storage layer itself. Cancelling a booking releases its claims.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from instructor_booking.services.intervals import Interval, covered_minutes, ensure_utc


BOOKING_STATUS_PENDING = "pending"
BOOKING_STATUS_CONFIRMED = "confirmed"
BOOKING_STATUS_CANCELLED = "cancelled"
ACTIVE_BOOKING_STATUSES = (BOOKING_STATUS_PENDING, BOOKING_STATUS_CONFIRMED)


class BookingOverlapError(Exception):
    """Raised when an insert would overlap an active booking of the same instructor."""


class BookingLedger(ABC):
    @abstractmethod
    def insert(
        self,
        *,
        instructor_id: str,
        appointment_type_id: str,
        start_time: datetime,
        end_time: datetime,
        status: str,
        student_info: Mapping[str, Any],
        student_notes: str | None = None,
        party_size: int = 1,
    ) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def get(self, booking_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def list_for_instructor(
        self,
        instructor_id: str,
        *,
        status: str | None = None,
    ) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def list_active_overlapping(
        self,
        instructor_id: str,
        window_start: datetime,
        window_end: datetime,
    ) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def transition_status(
        self,
        booking_id: str,
        *,
        from_statuses: Iterable[str],
        to_status: str,
        updates: Mapping[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """Move a booking between states only if it is still in one of ``from_statuses``.

        Returns the updated record, or ``None`` when the booking is missing or
        its current status did not match.
        """
        raise NotImplementedError

    @abstractmethod
    def set_external_event(
        self,
        booking_id: str,
        *,
        external_event_id: str | None,
        meet_link: str | None = None,
    ) -> None:
        raise NotImplementedError

    def _build_record(
        self,
        *,
        instructor_id: str,
        appointment_type_id: str,
        start_time: datetime,
        end_time: datetime,
        status: str,
        student_info: Mapping[str, Any],
        student_notes: str | None,
        party_size: int,
    ) -> dict[str, Any]:
        now = datetime.now(UTC)
        return {
            "_id": uuid4().hex,
            "instructor_id": instructor_id,
            "appointment_type_id": appointment_type_id,
            "start_time": ensure_utc(start_time),
            "end_time": ensure_utc(end_time),
            "status": status,
            "student_info": dict(student_info),
            "student_notes": student_notes,
            "party_size": party_size,
            "external_event_id": None,
            "meet_link": None,
            "booked_at": now,
            "confirmed_at": now if status == BOOKING_STATUS_CONFIRMED else None,
            "cancelled_at": None,
            "cancellation_reason": None,
            "updated_at": now,
        }


class InMemoryBookingLedger(BookingLedger):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, dict[str, Any]] = {}
        self._claims: dict[tuple[str, datetime], str] = {}

    def insert(
        self,
        *,
        instructor_id: str,
        appointment_type_id: str,
        start_time: datetime,
        end_time: datetime,
        status: str,
        student_info: Mapping[str, Any],
        student_notes: str | None = None,
        party_size: int = 1,
    ) -> dict[str, Any]:
        record = self._build_record(
            instructor_id=instructor_id,
            appointment_type_id=appointment_type_id,
            start_time=start_time,
            end_time=end_time,
            status=status,
            student_info=student_info,
            student_notes=student_notes,
            party_size=party_size,
        )
        claim_keys = [
            (instructor_id, minute)
            for minute in covered_minutes(Interval(record["start_time"], record["end_time"]))
        ]
        with self._lock:
            if any(key in self._claims for key in claim_keys):
                raise BookingOverlapError(instructor_id)
            for key in claim_keys:
                self._claims[key] = record["_id"]
            self._records[record["_id"]] = record
        return _copy_record(record)

    def get(self, booking_id: str) -> dict[str, Any] | None:
        with self._lock:
            record = self._records.get(booking_id)
            return _copy_record(record) if record else None

    def list_for_instructor(
        self,
        instructor_id: str,
        *,
        status: str | None = None,
    ) -> list[dict[str, Any]]:
        with self._lock:
            records = [
                _copy_record(record)
                for record in self._records.values()
                if record["instructor_id"] == instructor_id and (status is None or record["status"] == status)
            ]
        return sorted(records, key=lambda record: record["start_time"])

    def list_active_overlapping(
        self,
        instructor_id: str,
        window_start: datetime,
        window_end: datetime,
    ) -> list[dict[str, Any]]:
        with self._lock:
            records = [
                _copy_record(record)
                for record in self._records.values()
                if record["instructor_id"] == instructor_id
                and record["status"] in ACTIVE_BOOKING_STATUSES
                and record["start_time"] < window_end
                and record["end_time"] > window_start
            ]
        return sorted(records, key=lambda record: record["start_time"])

    def transition_status(
        self,
        booking_id: str,
        *,
        from_statuses: Iterable[str],
        to_status: str,
        updates: Mapping[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        allowed = set(from_statuses)
        with self._lock:
            record = self._records.get(booking_id)
            if not record or record["status"] not in allowed:
                return None
            record.update(dict(updates or {}))
            record["status"] = to_status
            record["updated_at"] = datetime.now(UTC)
            if to_status == BOOKING_STATUS_CANCELLED:
                released = [key for key, owner in self._claims.items() if owner == booking_id]
                for key in released:
                    del self._claims[key]
            return _copy_record(record)

    def set_external_event(
        self,
        booking_id: str,
        *,
        external_event_id: str | None,
        meet_link: str | None = None,
    ) -> None:
        with self._lock:
            record = self._records.get(booking_id)
            if not record:
                return
            record["external_event_id"] = external_event_id
            record["meet_link"] = meet_link
            record["updated_at"] = datetime.now(UTC)


class MongoBookingLedger(BookingLedger):
    def __init__(
        self,
        *,
        database: Any,
        bookings_collection_name: str,
        claims_collection_name: str,
    ) -> None:
        from pymongo import ASCENDING

        self._asc = ASCENDING
        self._bookings = database[bookings_collection_name]
        self._claims = database[claims_collection_name]
        self._bookings.create_index(
            [("instructor_id", ASCENDING), ("start_time", ASCENDING), ("end_time", ASCENDING)],
        )
        self._bookings.create_index([("instructor_id", ASCENDING), ("status", ASCENDING)])
        self._claims.create_index(
            [("instructor_id", ASCENDING), ("minute", ASCENDING)],
            unique=True,
        )
        self._claims.create_index("booking_id")

    def insert(
        self,
        *,
        instructor_id: str,
        appointment_type_id: str,
        start_time: datetime,
        end_time: datetime,
        status: str,
        student_info: Mapping[str, Any],
        student_notes: str | None = None,
        party_size: int = 1,
    ) -> dict[str, Any]:
        from pymongo.errors import BulkWriteError, DuplicateKeyError

        record = self._build_record(
            instructor_id=instructor_id,
            appointment_type_id=appointment_type_id,
            start_time=start_time,
            end_time=end_time,
            status=status,
            student_info=student_info,
            student_notes=student_notes,
            party_size=party_size,
        )
        claims = [
            {"instructor_id": instructor_id, "minute": minute, "booking_id": record["_id"]}
            for minute in covered_minutes(Interval(record["start_time"], record["end_time"]))
        ]
        try:
            self._claims.insert_many(claims, ordered=True)
        except (BulkWriteError, DuplicateKeyError) as exc:
            self._claims.delete_many({"booking_id": record["_id"]})
            if not _is_duplicate_key_failure(exc):
                raise
            raise BookingOverlapError(instructor_id) from exc

        try:
            self._bookings.insert_one(dict(record))
        except Exception:
            self._claims.delete_many({"booking_id": record["_id"]})
            raise
        return record

    def get(self, booking_id: str) -> dict[str, Any] | None:
        return self._bookings.find_one({"_id": booking_id})

    def list_for_instructor(
        self,
        instructor_id: str,
        *,
        status: str | None = None,
    ) -> list[dict[str, Any]]:
        query: dict[str, Any] = {"instructor_id": instructor_id}
        if status:
            query["status"] = status
        return list(self._bookings.find(query).sort("start_time", self._asc))

    def list_active_overlapping(
        self,
        instructor_id: str,
        window_start: datetime,
        window_end: datetime,
    ) -> list[dict[str, Any]]:
        cursor = self._bookings.find(
            {
                "instructor_id": instructor_id,
                "status": {"$in": list(ACTIVE_BOOKING_STATUSES)},
                "start_time": {"$lt": window_end},
                "end_time": {"$gt": window_start},
            },
        ).sort("start_time", self._asc)
        return list(cursor)

    def transition_status(
        self,
        booking_id: str,
        *,
        from_statuses: Iterable[str],
        to_status: str,
        updates: Mapping[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        from pymongo import ReturnDocument

        changes = dict(updates or {})
        changes["status"] = to_status
        changes["updated_at"] = datetime.now(UTC)
        updated = self._bookings.find_one_and_update(
            {"_id": booking_id, "status": {"$in": list(from_statuses)}},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        if updated and to_status == BOOKING_STATUS_CANCELLED:
            self._claims.delete_many({"booking_id": booking_id})
        return updated

    def set_external_event(
        self,
        booking_id: str,
        *,
        external_event_id: str | None,
        meet_link: str | None = None,
    ) -> None:
        self._bookings.update_one(
            {"_id": booking_id},
            {
                "$set": {
                    "external_event_id": external_event_id,
                    "meet_link": meet_link,
                    "updated_at": datetime.now(UTC),
                },
            },
        )


def _copy_record(record: Mapping[str, Any]) -> dict[str, Any]:
    copied = dict(record)
    copied["student_info"] = dict(record.get("student_info") or {})
    return copied


def _is_duplicate_key_failure(exc: Exception) -> bool:
    details = getattr(exc, "details", None) or {}
    if getattr(exc, "code", None) == 11000:
        return True
    write_errors = details.get("writeErrors") if isinstance(details, Mapping) else None
    if not isinstance(write_errors, list):
        return False
    return any(isinstance(item, Mapping) and item.get("code") == 11000 for item in write_errors)
