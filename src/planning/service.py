"""PlanningService: the planning core wired to one store.

Holds the last loaded template, RCP definitions, exceptions and attendance,
and applies the caller-level policies: the two-week notification window,
RCP-only notification badge, and exception editing for single occurrences.
"""

import asyncio
from datetime import date
from typing import Sequence

from src.planning.attendance import AttendanceTracker
from src.planning.config import PlanningConfig, get_config
from src.planning.logging import get_logger
from src.planning.models import (
    AttendanceStatus,
    Occurrence,
    Period,
    Persisted,
    RcpDefinition,
    RcpException,
    SlotType,
    TemplateSlot,
)
from src.planning.overlay import apply_exceptions, index_exceptions
from src.planning.recurrence import resolve
from src.planning.store.base import ScheduleStore
from src.planning.sync import SyncResult, TemplateSynchronizer
from src.planning.weeks import notification_window, parse_iso_date

logger = get_logger(__name__)


class PlanningService:
    def __init__(self, store: ScheduleStore, *, config: PlanningConfig | None = None) -> None:
        self.store = store
        self.config = config or get_config()
        self.template: list[TemplateSlot] = []
        self.rcp_definitions: list[RcpDefinition] = []
        self.exceptions: list[RcpException] = []
        self.attendance = AttendanceTracker(store)
        self.synchronizer = TemplateSynchronizer(store)

    async def refresh(self) -> None:
        """Load template, definitions, exceptions and attendance."""
        template, definitions, exceptions, _ = await asyncio.gather(
            self.store.list_template_slots(),
            self.store.list_rcp_definitions(with_manual_instances=True),
            self.store.list_exceptions(),
            self.attendance.load(),
        )
        self.template = template
        self.rcp_definitions = definitions
        self.exceptions = exceptions
        logger.info(
            "planning_loaded",
            template=len(template),
            rcp_definitions=len(definitions),
            exceptions=len(exceptions),
        )

    # ------------------------------------------------------------------
    # Occurrences
    # ------------------------------------------------------------------
    def occurrences(self, start: date | str, end: date | str) -> list[Occurrence]:
        """Resolved occurrences in [start, end] with exceptions applied.

        Occurrences rescheduled into the window from outside it are included;
        ones rescheduled out of it are not.
        """
        start = parse_iso_date(start)
        end = parse_iso_date(end)
        moved_in = [
            e.original_date
            for e in self.exceptions
            if e.new_date is not None and not e.is_cancelled and start <= e.new_date <= end
        ]
        resolve_start = min([start, *moved_in])
        resolve_end = max([end, *moved_in])
        resolved = resolve(self.template, self.rcp_definitions, resolve_start, resolve_end)
        return apply_exceptions(resolved, self.exceptions, window=(start, end))

    def week(self, today: date, weeks: int | None = None) -> list[Occurrence]:
        """Occurrences of the notification window starting Monday of `today`."""
        start, end = notification_window(today, weeks or self.config.notification_weeks)
        return self.occurrences(start, end)

    def pending_rcps(self, doctor_id: str, today: date) -> list[Occurrence]:
        rcps = [o for o in self.week(today) if o.type == SlotType.RCP]
        return self.attendance.pending_occurrences(doctor_id, rcps)

    def notification_count(self, doctor_id: str, today: date) -> int:
        """Undecided RCPs involving the doctor in the current and next week."""
        return len(self.pending_rcps(doctor_id, today))

    async def record_attendance(
        self, occurrence_id: str, doctor_id: str, status: AttendanceStatus
    ) -> None:
        await self.attendance.record_decision(occurrence_id, doctor_id, status)

    # ------------------------------------------------------------------
    # Exceptions
    # ------------------------------------------------------------------
    def exception_for(self, occurrence: Occurrence) -> RcpException | None:
        lookup, _ = index_exceptions(self.exceptions)
        return lookup.get(occurrence.exception_key)

    def _draft_exception(self, occurrence: Occurrence) -> RcpException:
        current = self.exception_for(occurrence)
        if current is not None:
            return current.model_copy()
        return RcpException(template_id=occurrence.source_id, original_date=occurrence.original_date)

    async def _save_exception(self, exception: RcpException) -> RcpException:
        saved = await self.store.upsert_exception(exception)
        self.exceptions = [e for e in self.exceptions if e.key != saved.key] + [saved]
        logger.info(
            "exception_saved",
            template_id=saved.template_id,
            original_date=saved.original_date.isoformat(),
            cancelled=saved.is_cancelled,
            new_date=saved.new_date.isoformat() if saved.new_date else None,
        )
        return saved

    async def cancel_occurrence(self, occurrence: Occurrence) -> RcpException:
        exception = self._draft_exception(occurrence)
        exception.is_cancelled = True
        return await self._save_exception(exception)

    async def reschedule_occurrence(
        self,
        occurrence: Occurrence,
        new_date: date | str,
        new_period: Period | None = None,
        new_time: str | None = None,
    ) -> RcpException:
        exception = self._draft_exception(occurrence)
        exception.is_cancelled = False
        exception.new_date = parse_iso_date(new_date)
        exception.new_period = new_period
        exception.new_time = new_time
        return await self._save_exception(exception)

    async def substitute_doctors(
        self, occurrence: Occurrence, doctor_ids: Sequence[str]
    ) -> RcpException:
        exception = self._draft_exception(occurrence)
        exception.custom_doctor_ids = list(doctor_ids)
        return await self._save_exception(exception)

    async def revert_occurrence(self, occurrence: Occurrence) -> None:
        """Delete the occurrence's exception, restoring the recurring slot."""
        template_id, original_date = occurrence.exception_key
        await self.store.delete_exception(template_id, original_date)
        self.exceptions = [e for e in self.exceptions if e.key != occurrence.exception_key]
        logger.info(
            "exception_reverted",
            template_id=template_id,
            original_date=original_date.isoformat(),
        )

    # ------------------------------------------------------------------
    # Template and RCP definitions
    # ------------------------------------------------------------------
    async def save_template(self, local_template: Sequence[TemplateSlot]) -> SyncResult:
        """Sync the edited template. The loaded template changes only on success."""
        result = await self.synchronizer.save_template(local_template)
        if not result.failed:
            self.template = result.saved_template
        return result

    async def delete_template_slot(self, slot_id: str) -> None:
        await self.store.delete_template_slot(slot_id)
        self.template = [s for s in self.template if s.id != Persisted(id=slot_id)]

    async def save_rcp_definition(self, rcp: RcpDefinition, *, create: bool = False) -> RcpDefinition:
        if create:
            saved = await self.store.create_rcp_definition(rcp)
        else:
            saved = await self.store.update_rcp_definition(rcp)
        self.rcp_definitions = sorted(
            [r for r in self.rcp_definitions if r.id != saved.id] + [saved],
            key=lambda r: r.name,
        )
        logger.info(
            "rcp_definition_saved",
            rcp_id=saved.id,
            frequency=saved.frequency.value,
            manual_instances=len(saved.manual_instances),
        )
        return saved

    async def delete_rcp_definition(self, rcp_id: str) -> None:
        await self.store.delete_rcp_definition(rcp_id)
        self.rcp_definitions = [r for r in self.rcp_definitions if r.id != rcp_id]
