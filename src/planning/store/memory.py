"""In-memory ScheduleStore.

Holds rows exactly as the database would (through src.planning.mapping) and
enforces the same unique constraints, so the synchronizer and tracker can
run without a Supabase project. Failures can be injected per operation.
"""

from datetime import date, datetime, timezone
from typing import Callable, Iterable, Sequence
from uuid import uuid4

from src.planning.errors import ConstraintConflict, NotFound, PlanningError
from src.planning.logging import get_logger
from src.planning.mapping import (
    TEMPLATE_CONFLICT_KEY,
    Row,
    attendance_from_row,
    attendance_to_row,
    doctor_from_row,
    exception_from_row,
    exception_to_row,
    manual_instance_to_row,
    rcp_from_row,
    rcp_to_row,
    template_from_row,
    template_to_row,
    template_update_fields,
)
from src.planning.models import (
    AttendanceRecord,
    AttendanceStatus,
    Doctor,
    RcpDefinition,
    RcpException,
    TemplateSlot,
)
from src.planning.recurrence import check_manual_instances

log = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryStore:
    """ScheduleStore backed by dicts of rows."""

    def __init__(
        self,
        *,
        doctors: Iterable[Row] = (),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.templates: dict[str, Row] = {}
        self.exceptions: dict[tuple[str, str], Row] = {}
        self.attendance: dict[tuple[str, str], Row] = {}
        self.rcp_definitions: dict[str, Row] = {}
        self.manual_instances: dict[str, Row] = {}
        self.doctors: list[Row] = [dict(row) for row in doctors]
        self.calls: list[str] = []
        self._clock = clock
        self._failures: dict[tuple[str, str | None], PlanningError] = {}

    # ------------------------------------------------------------------
    # Failure injection
    # ------------------------------------------------------------------
    def fail(self, operation: str, error: PlanningError, row_id: str | None = None) -> None:
        """Make `operation` raise `error` (only for `row_id` when given)."""
        self._failures[(operation, row_id)] = error

    def clear_failures(self) -> None:
        self._failures.clear()

    def _enter(self, operation: str, row_id: str | None = None) -> None:
        self.calls.append(operation)
        error = self._failures.get((operation, row_id)) or self._failures.get((operation, None))
        if error is not None:
            raise error

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------
    def add_template_row(self, row: Row) -> str:
        row = dict(row)
        row.setdefault("id", uuid4().hex)
        self._check_template_unique(row, ignore_id=row["id"])
        self.templates[row["id"]] = row
        return row["id"]

    # ------------------------------------------------------------------
    # schedule_templates
    # ------------------------------------------------------------------
    def _template_key(self, row: Row, conflict_key: tuple[str, ...] = TEMPLATE_CONFLICT_KEY):
        return tuple(row[column] for column in conflict_key)

    def _find_by_key(self, key: tuple, conflict_key: tuple[str, ...]) -> Row | None:
        for row in self.templates.values():
            if self._template_key(row, conflict_key) == key:
                return row
        return None

    def _check_template_unique(self, row: Row, ignore_id: str | None) -> None:
        existing = self._find_by_key(self._template_key(row), TEMPLATE_CONFLICT_KEY)
        if existing is not None and existing["id"] != ignore_id:
            raise ConstraintConflict(
                f"duplicate key {self._template_key(row)} violates schedule_templates unique constraint"
            )

    async def list_template_slots(self) -> list[TemplateSlot]:
        self._enter("list_template_slots")
        return [template_from_row(row) for row in self.templates.values()]

    async def list_template_ids(self) -> set[str]:
        self._enter("list_template_ids")
        return set(self.templates)

    async def upsert_template_slots(
        self,
        slots: Sequence[TemplateSlot],
        conflict_key: tuple[str, ...] = TEMPLATE_CONFLICT_KEY,
    ) -> list[TemplateSlot]:
        self._enter("upsert_template_slots")
        rows = [template_to_row(slot, include_id=False) for slot in slots]

        keys = [self._template_key(row, conflict_key) for row in rows]
        if len(set(keys)) != len(keys):
            raise ConstraintConflict("ON CONFLICT DO UPDATE command cannot affect row a second time")

        # Resolve every row before writing so the batch is atomic
        staged: list[Row] = []
        for row, key in zip(rows, keys):
            existing = self._find_by_key(key, conflict_key)
            row_id = existing["id"] if existing is not None else uuid4().hex
            staged.append({"id": row_id, **row})

        for row in staged:
            self.templates[row["id"]] = row
        return [template_from_row(row) for row in staged]

    async def update_template_slot(self, slot_id: str, slot: TemplateSlot) -> None:
        self._enter("update_template_slot", slot_id)
        if slot_id not in self.templates:
            raise NotFound(f"schedule_templates row {slot_id} not found")
        row = {"id": slot_id, **template_update_fields(slot)}
        self._check_template_unique(row, ignore_id=slot_id)
        self.templates[slot_id] = row

    async def delete_template_slots(self, slot_ids: Iterable[str]) -> None:
        self._enter("delete_template_slots")
        for slot_id in slot_ids:
            self.templates.pop(slot_id, None)

    async def delete_template_slot(self, slot_id: str) -> None:
        self._enter("delete_template_slot", slot_id)
        self.templates.pop(slot_id, None)

    # ------------------------------------------------------------------
    # rcp_exceptions
    # ------------------------------------------------------------------
    async def list_exceptions(self) -> list[RcpException]:
        self._enter("list_exceptions")
        return [exception_from_row(row) for row in self.exceptions.values()]

    async def upsert_exception(self, exception: RcpException) -> RcpException:
        self._enter("upsert_exception")
        row = exception_to_row(exception)
        key = (row["rcp_template_id"], row["original_date"])
        existing = self.exceptions.get(key)
        if existing is None:
            row.update(id=uuid4().hex, created_at=self._clock().isoformat())
        else:
            row.update(id=existing["id"], created_at=existing["created_at"])
        self.exceptions[key] = row
        return exception_from_row(row)

    async def delete_exception(self, template_id: str, original_date: date) -> None:
        self._enter("delete_exception")
        self.exceptions.pop((template_id, original_date.isoformat()), None)

    # ------------------------------------------------------------------
    # rcp_attendance
    # ------------------------------------------------------------------
    async def list_attendance(self) -> list[AttendanceRecord]:
        self._enter("list_attendance")
        return [attendance_from_row(row) for row in self.attendance.values()]

    async def upsert_attendance(
        self, occurrence_id: str, doctor_id: str, status: AttendanceStatus
    ) -> None:
        self._enter("upsert_attendance", occurrence_id)
        row = attendance_to_row(occurrence_id, doctor_id, status)
        self.attendance[(occurrence_id, doctor_id)] = row

    # ------------------------------------------------------------------
    # rcp_definitions / rcp_manual_instances
    # ------------------------------------------------------------------
    def _definition_row(self, rcp_id: str, with_manual_instances: bool) -> Row:
        row = dict(self.rcp_definitions[rcp_id])
        if with_manual_instances:
            row["rcp_manual_instances"] = [
                dict(m) for m in self.manual_instances.values() if m["rcp_definition_id"] == rcp_id
            ]
        return row

    async def list_rcp_definitions(self, with_manual_instances: bool = True) -> list[RcpDefinition]:
        self._enter("list_rcp_definitions")
        ordered = sorted(self.rcp_definitions.values(), key=lambda r: r["name"])
        return [rcp_from_row(self._definition_row(r["id"], with_manual_instances)) for r in ordered]

    def _write_instances(self, rcp: RcpDefinition, rcp_id: str) -> None:
        keep = {m.id for m in rcp.manual_instances if m.id is not None}
        for instance_id, row in list(self.manual_instances.items()):
            if row["rcp_definition_id"] == rcp_id and instance_id not in keep:
                del self.manual_instances[instance_id]
        for instance in rcp.manual_instances:
            row = manual_instance_to_row(rcp_id, instance)
            row.setdefault("id", uuid4().hex)
            self.manual_instances[row["id"]] = row

    async def create_rcp_definition(self, rcp: RcpDefinition) -> RcpDefinition:
        self._enter("create_rcp_definition")
        check_manual_instances(rcp)
        rcp_id = uuid4().hex
        self.rcp_definitions[rcp_id] = {"id": rcp_id, **rcp_to_row(rcp)}
        self._write_instances(rcp, rcp_id)
        return rcp_from_row(self._definition_row(rcp_id, True))

    async def update_rcp_definition(self, rcp: RcpDefinition) -> RcpDefinition:
        self._enter("update_rcp_definition", rcp.id)
        check_manual_instances(rcp)
        if rcp.id not in self.rcp_definitions:
            raise NotFound(f"rcp_definitions row {rcp.id} not found")
        self.rcp_definitions[rcp.id] = {"id": rcp.id, **rcp_to_row(rcp)}
        self._write_instances(rcp, rcp.id)
        return rcp_from_row(self._definition_row(rcp.id, True))

    async def delete_rcp_definition(self, rcp_id: str) -> None:
        self._enter("delete_rcp_definition", rcp_id)
        self.rcp_definitions.pop(rcp_id, None)
        for instance_id, row in list(self.manual_instances.items()):
            if row["rcp_definition_id"] == rcp_id:
                del self.manual_instances[instance_id]

    # ------------------------------------------------------------------
    # doctors
    # ------------------------------------------------------------------
    async def list_doctors(self) -> list[Doctor]:
        self._enter("list_doctors")
        return [doctor_from_row(row) for row in self.doctors]

    async def close(self) -> None:
        log.debug("memory_store_closed", templates=len(self.templates))
