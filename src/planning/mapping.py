"""Explicit field mapping between store rows and planning records.

Every table has a pair of functions: `*_from_row` (store -> record) and
`*_to_row` (record -> store). Column names are listed once per table and
each mapping is total over them, so `*_to_row(*_from_row(row))` reproduces
a normalized row (store-generated columns such as ids and timestamps aside).

Rows that cannot be interpreted raise InvalidTemplateError; nothing is
silently defaulted except the column defaults the database itself applies.
"""

from typing import Any, Iterable, TypeVar

from pydantic import BaseModel, ValidationError

from src.planning.errors import InvalidTemplateError
from src.planning.models import (
    AttendanceMap,
    AttendanceRecord,
    AttendanceStatus,
    Doctor,
    Frequency,
    LocalId,
    ManualInstance,
    Persisted,
    RcpDefinition,
    RcpException,
    TemplateSlot,
    Unsaved,
)

Row = dict[str, Any]
M = TypeVar("M", bound=BaseModel)

TEMPLATE_COLUMNS: tuple[str, ...] = (
    "id",
    "day",
    "period",
    "time",
    "location",
    "type",
    "default_doctor_id",
    "secondary_doctor_ids",
    "doctor_ids",
    "backup_doctor_id",
    "sub_type",
    "is_required",
    "is_blocking",
    "frequency",
)

# Unique constraint of schedule_templates, used as upsert conflict target
TEMPLATE_CONFLICT_KEY: tuple[str, ...] = ("day", "period", "location", "type")

# Unique constraint of rcp_exceptions
EXCEPTION_MATCH_KEY: tuple[str, ...] = ("rcp_template_id", "original_date")

# Unique constraint of rcp_attendance
ATTENDANCE_CONFLICT_KEY: tuple[str, ...] = ("slot_id", "doctor_id")


def _build(model: type[M], table: str, row: Row, **fields: Any) -> M:
    try:
        return model(**fields)
    except ValidationError as e:
        raise InvalidTemplateError(
            f"Invalid {table} row {row.get('id', '?')!r}: {e.errors()[0]['msg']}"
        ) from e


def _row_id(table: str, row: Row) -> str:
    if row.get("id") is None:
        raise InvalidTemplateError(f"{table} row without id: {row!r}")
    return str(row["id"])


def _list(value: Iterable[str] | None) -> list[str]:
    return list(value or [])


# ---------------------------------------------------------------------------
# schedule_templates
# ---------------------------------------------------------------------------
def template_from_row(row: Row) -> TemplateSlot:
    return _template(row, Persisted(id=_row_id("schedule_templates", row)))


def draft_template_from_row(row: Row) -> TemplateSlot:
    """Slot from a row without a database id (e.g. an imported file).

    An "id" column, if present, becomes the draft key.
    """
    draft_key = row.get("id")
    return _template(row, Unsaved(draft_key=str(draft_key)) if draft_key else Unsaved())


def _template(row: Row, local_id: LocalId) -> TemplateSlot:
    return _build(
        TemplateSlot,
        "schedule_templates",
        row,
        id=local_id,
        day=row.get("day"),
        period=row.get("period"),
        time=row.get("time"),
        location=row.get("location"),
        type=row.get("type"),
        default_doctor_id=row.get("default_doctor_id"),
        secondary_doctor_ids=_list(row.get("secondary_doctor_ids")),
        doctor_ids=_list(row.get("doctor_ids")),
        backup_doctor_id=row.get("backup_doctor_id"),
        sub_type=row.get("sub_type"),
        is_required=True if row.get("is_required") is None else row["is_required"],
        is_blocking=True if row.get("is_blocking") is None else row["is_blocking"],
        frequency=row.get("frequency") or Frequency.WEEKLY,
    )


def template_to_row(slot: TemplateSlot, include_id: bool = True) -> Row:
    """Row for schedule_templates. Draft ids are never written."""
    row: Row = {}
    if include_id and isinstance(slot.id, Persisted):
        row["id"] = slot.id.id
    row.update(
        day=slot.day.value,
        period=slot.period.value,
        time=slot.time or None,
        location=slot.location,
        type=slot.type.value,
        default_doctor_id=slot.default_doctor_id or None,
        secondary_doctor_ids=list(slot.secondary_doctor_ids),
        doctor_ids=list(slot.doctor_ids),
        backup_doctor_id=slot.backup_doctor_id or None,
        sub_type=slot.sub_type or None,
        is_required=slot.is_required,
        is_blocking=slot.is_blocking,
        frequency=slot.frequency.value,
    )
    return row


def template_update_fields(slot: TemplateSlot) -> Row:
    """Columns written by an update keyed on id."""
    return template_to_row(slot, include_id=False)


# ---------------------------------------------------------------------------
# rcp_exceptions
# ---------------------------------------------------------------------------
def exception_from_row(row: Row) -> RcpException:
    return _build(
        RcpException,
        "rcp_exceptions",
        row,
        id=None if row.get("id") is None else _row_id("rcp_exceptions", row),
        template_id=row.get("rcp_template_id"),
        original_date=row.get("original_date"),
        new_date=row.get("new_date"),
        new_period=row.get("new_period"),
        new_time=row.get("new_time"),
        is_cancelled=bool(row.get("is_cancelled")),
        custom_doctor_ids=_list(row.get("custom_doctor_ids")),
        created_at=row.get("created_at"),
    )


def exception_to_row(exception: RcpException) -> Row:
    return {
        "rcp_template_id": exception.template_id,
        "original_date": exception.original_date.isoformat(),
        "new_date": exception.new_date.isoformat() if exception.new_date else None,
        "new_period": exception.new_period.value if exception.new_period else None,
        "is_cancelled": exception.is_cancelled,
        "new_time": exception.new_time or None,
        "custom_doctor_ids": list(exception.custom_doctor_ids),
    }


# ---------------------------------------------------------------------------
# rcp_attendance
# ---------------------------------------------------------------------------
def attendance_from_row(row: Row) -> AttendanceRecord:
    return _build(
        AttendanceRecord,
        "rcp_attendance",
        row,
        occurrence_id=row.get("slot_id"),
        doctor_id=row.get("doctor_id"),
        status=row.get("status"),
    )


def attendance_to_row(occurrence_id: str, doctor_id: str, status: AttendanceStatus) -> Row:
    return {
        "slot_id": occurrence_id,
        "doctor_id": doctor_id,
        "status": AttendanceStatus(status).value,
    }


def attendance_map(records: Iterable[AttendanceRecord]) -> AttendanceMap:
    """Group records by occurrence id then doctor id. Later records win."""
    result: AttendanceMap = {}
    for record in records:
        result.setdefault(record.occurrence_id, {})[record.doctor_id] = record.status
    return result


# ---------------------------------------------------------------------------
# rcp_definitions / rcp_manual_instances
# ---------------------------------------------------------------------------
def manual_instance_from_row(row: Row) -> ManualInstance:
    return _build(
        ManualInstance,
        "rcp_manual_instances",
        row,
        id=_row_id("rcp_manual_instances", row),
        date=row.get("date"),
        time=row.get("time"),
        doctor_ids=_list(row.get("doctor_ids")),
        backup_doctor_id=row.get("backup_doctor_id"),
    )


def manual_instance_to_row(rcp_id: str, instance: ManualInstance) -> Row:
    """Row for an instance. Unsaved instances get their id from the store."""
    row: Row = {}
    if instance.id is not None:
        row["id"] = instance.id
    row.update(
        rcp_definition_id=rcp_id,
        date=instance.date.isoformat(),
        time=instance.time or None,
        doctor_ids=list(instance.doctor_ids),
        backup_doctor_id=instance.backup_doctor_id or None,
    )
    return row


def rcp_from_row(row: Row) -> RcpDefinition:
    instances = [manual_instance_from_row(m) for m in row.get("rcp_manual_instances") or []]
    return _build(
        RcpDefinition,
        "rcp_definitions",
        row,
        id=_row_id("rcp_definitions", row),
        name=row.get("name"),
        frequency=row.get("frequency") or Frequency.WEEKLY,
        week_parity=row.get("week_parity"),
        monthly_week_number=row.get("monthly_week_number"),
        manual_instances=instances,
    )


def rcp_to_row(rcp: RcpDefinition) -> Row:
    """Definition columns only; manual instances live in their own table."""
    return {
        "name": rcp.name,
        "frequency": rcp.frequency.value,
        "week_parity": rcp.week_parity.value if rcp.week_parity else None,
        "monthly_week_number": rcp.monthly_week_number,
    }


# ---------------------------------------------------------------------------
# doctors
# ---------------------------------------------------------------------------
def doctor_from_row(row: Row) -> Doctor:
    return _build(
        Doctor,
        "doctors",
        row,
        id=_row_id("doctors", row),
        name=row.get("name"),
        color=row.get("color"),
        specialty=_list(row.get("specialty")),
        excluded_days=_list(row.get("excluded_days")),
        excluded_activities=_list(row.get("excluded_activities")),
        excluded_slot_types=_list(row.get("excluded_slot_types")),
    )
