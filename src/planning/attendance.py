"""Attendance tracker: per-occurrence, per-doctor PRESENT/ABSENT decisions.

Decisions are keyed by occurrence id, which is derived only from the
source id and the original date. A missing decision means undecided, which
is different from an explicit ABSENT.
"""

from typing import Iterable

from src.planning.logging import get_logger
from src.planning.mapping import attendance_map
from src.planning.models import AttendanceMap, AttendanceStatus, Occurrence
from src.planning.store.base import ScheduleStore

logger = get_logger(__name__)


def is_involved(doctor_id: str, occurrence: Occurrence) -> bool:
    """Primary, secondary or backup doctor of the occurrence."""
    return doctor_id in occurrence.involved_doctor_ids


def pending_occurrences(
    doctor_id: str, occurrences: Iterable[Occurrence], attendance: AttendanceMap
) -> list[Occurrence]:
    """Occurrences involving the doctor without a recorded decision."""
    return [
        occurrence
        for occurrence in occurrences
        if is_involved(doctor_id, occurrence)
        and doctor_id not in attendance.get(occurrence.id, {})
    ]


def pending_count(
    doctor_id: str, occurrences: Iterable[Occurrence], attendance: AttendanceMap
) -> int:
    return len(pending_occurrences(doctor_id, occurrences, attendance))


class AttendanceTracker:
    """Records decisions through the store and answers queries from a cache.

    The cache is filled by `load()` and kept current by `record_decision()`.
    The occurrence set passed to the query methods is up to the caller; the
    notification badge uses the current and next week.
    """

    def __init__(self, store: ScheduleStore, attendance: AttendanceMap | None = None) -> None:
        self.store = store
        self._attendance: AttendanceMap = attendance if attendance is not None else {}

    @property
    def attendance(self) -> AttendanceMap:
        return self._attendance

    async def load(self) -> AttendanceMap:
        """Replace the cache with the stored records."""
        records = await self.store.list_attendance()
        self._attendance = attendance_map(records)
        logger.debug("attendance_loaded", occurrences=len(self._attendance))
        return self._attendance

    async def record_decision(
        self, occurrence_id: str, doctor_id: str, status: AttendanceStatus
    ) -> None:
        """Upsert one decision. Last write wins; repeating it is harmless.

        Raises:
            StoreError: The cache is left unchanged and the same call can be
                retried.
        """
        status = AttendanceStatus(status)
        await self.store.upsert_attendance(occurrence_id, doctor_id, status)
        self._attendance.setdefault(occurrence_id, {})[doctor_id] = status
        logger.info(
            "attendance_recorded",
            occurrence_id=occurrence_id,
            doctor_id=doctor_id,
            status=status.value,
        )

    def decision(self, occurrence_id: str, doctor_id: str) -> AttendanceStatus | None:
        return self._attendance.get(occurrence_id, {}).get(doctor_id)

    def attendees(self, occurrence: Occurrence) -> dict[str, AttendanceStatus | None]:
        """Decision of every involved doctor (None when undecided)."""
        return {
            doctor_id: self.decision(occurrence.id, doctor_id)
            for doctor_id in sorted(occurrence.involved_doctor_ids)
        }

    def pending_occurrences(
        self, doctor_id: str, occurrences: Iterable[Occurrence]
    ) -> list[Occurrence]:
        return pending_occurrences(doctor_id, occurrences, self._attendance)

    def pending_count(self, doctor_id: str, occurrences: Iterable[Occurrence]) -> int:
        return pending_count(doctor_id, occurrences, self._attendance)
