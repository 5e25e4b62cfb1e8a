"""Pydantic models for planning data.

All data structures use Pydantic v2 for validation, serialization, and type safety.
Enum values are the plain strings stored in the database.
"""

from datetime import date, datetime
from enum import Enum
from typing import Annotated, Literal, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class DayOfWeek(str, Enum):
    MONDAY = "MONDAY"
    TUESDAY = "TUESDAY"
    WEDNESDAY = "WEDNESDAY"
    THURSDAY = "THURSDAY"
    FRIDAY = "FRIDAY"
    SATURDAY = "SATURDAY"
    SUNDAY = "SUNDAY"

    @property
    def weekday(self) -> int:
        """Python weekday number (0=Monday)."""
        return DAY_INDEX[self]

    @classmethod
    def from_date(cls, value: date) -> "DayOfWeek":
        return WEEKDAYS[value.weekday()]


# Python weekday number <-> DayOfWeek
DAY_INDEX: dict[DayOfWeek, int] = {day: i for i, day in enumerate(DayOfWeek)}
WEEKDAYS: tuple[DayOfWeek, ...] = tuple(DayOfWeek)


class Period(str, Enum):
    MORNING = "MORNING"
    AFTERNOON = "AFTERNOON"
    CUSTOM = "CUSTOM"


# Sort order within a day
PERIOD_ORDER: dict[Period, int] = {
    Period.MORNING: 0,
    Period.AFTERNOON: 1,
    Period.CUSTOM: 2,
}


class SlotType(str, Enum):
    CONSULTATION = "CONSULTATION"
    RCP = "RCP"
    ACTIVITY = "ACTIVITY"
    OTHER = "OTHER"


class Frequency(str, Enum):
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"
    MANUAL = "MANUAL"


class WeekParity(str, Enum):
    """ISO week number parity used to gate BIWEEKLY definitions."""

    ODD = "ODD"
    EVEN = "EVEN"


class AttendanceStatus(str, Enum):
    PRESENT = "PRESENT"
    ABSENT = "ABSENT"


class OccurrenceKind(str, Enum):
    TEMPLATE = "TEMPLATE"
    MANUAL_RCP = "MANUAL_RCP"


# ---------------------------------------------------------------------------
# Local identifiers
# ---------------------------------------------------------------------------
class Persisted(BaseModel):
    """Identifier of a row that exists in the store."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["persisted"] = "persisted"
    id: str

    def __str__(self) -> str:
        return self.id


class Unsaved(BaseModel):
    """Draft identifier of a row created locally and not yet saved."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["unsaved"] = "unsaved"
    draft_key: str = Field(default_factory=lambda: uuid4().hex)

    def __str__(self) -> str:
        return f"draft:{self.draft_key}"


LocalId = Annotated[Union[Persisted, Unsaved], Field(discriminator="kind")]


def persisted(row_id: str) -> Persisted:
    return Persisted(id=row_id)


def unsaved(draft_key: str | None = None) -> Unsaved:
    if draft_key is None:
        return Unsaved()
    return Unsaved(draft_key=draft_key)


# ---------------------------------------------------------------------------
# Template and RCP definitions
# ---------------------------------------------------------------------------
class TemplateSlot(BaseModel):
    """A recurring duty slot of the week-independent template.

    Identity for persistence is the natural key (day, period, location, type);
    the id may be a draft for rows not yet saved.
    """

    id: LocalId
    day: DayOfWeek
    period: Period
    time: str | None = None  # "HH:MM", meaningful for Period.CUSTOM and RCPs
    location: str
    type: SlotType
    default_doctor_id: str | None = None  # primary doctor
    secondary_doctor_ids: list[str] = Field(default_factory=list)
    doctor_ids: list[str] = Field(default_factory=list)  # primary set (multi-doctor slots)
    backup_doctor_id: str | None = None
    sub_type: str | None = None  # e.g. "Consultation", or the RCP definition name
    is_required: bool = True
    is_blocking: bool = True
    frequency: Frequency = Frequency.WEEKLY

    @property
    def is_new(self) -> bool:
        return isinstance(self.id, Unsaved)

    @property
    def natural_key(self) -> tuple[DayOfWeek, Period, str, SlotType]:
        return (self.day, self.period, self.location, self.type)

    @property
    def primary_doctor_ids(self) -> list[str]:
        """Primary doctors: doctor_ids plus default_doctor_id, deduplicated."""
        ids = list(self.doctor_ids)
        if self.default_doctor_id and self.default_doctor_id not in ids:
            ids.insert(0, self.default_doctor_id)
        return ids


class ManualInstance(BaseModel):
    """A concrete dated session of a MANUAL RCP definition.

    `id` is None until the instance is saved. Saved ids are kept across
    definition updates because attendance references them.
    """

    id: str | None = None
    date: date
    time: str | None = None
    doctor_ids: list[str] = Field(default_factory=list)
    backup_doctor_id: str | None = None


class RcpDefinition(BaseModel):
    """A multidisciplinary meeting type.

    WEEKLY/BIWEEKLY/MONTHLY definitions take their weekday from the RCP
    template slots whose sub_type equals the definition name. MANUAL
    definitions only occur on their manual instance dates.
    """

    id: str
    name: str
    frequency: Frequency = Frequency.WEEKLY
    week_parity: WeekParity | None = None
    monthly_week_number: int | None = None  # 1..5, nth weekday of the month
    manual_instances: list[ManualInstance] = Field(default_factory=list)


class RcpException(BaseModel):
    """Override of a single occurrence, keyed by (template_id, original_date)."""

    id: str | None = None
    template_id: str
    original_date: date
    new_date: date | None = None
    new_period: Period | None = None
    new_time: str | None = None
    is_cancelled: bool = False
    custom_doctor_ids: list[str] = Field(default_factory=list)
    created_at: datetime | None = None

    @property
    def key(self) -> tuple[str, date]:
        return (self.template_id, self.original_date)


# ---------------------------------------------------------------------------
# Derived occurrences
# ---------------------------------------------------------------------------
def template_occurrence_id(template_id: str, on: date) -> str:
    """Occurrence id of a template slot on a date. The format is frozen:
    attendance rows reference it."""
    return f"{template_id}-{on.isoformat()}"


def manual_occurrence_id(rcp_id: str, instance_id: str) -> str:
    """Occurrence id of a manual RCP instance. The format is frozen."""
    return f"manual-rcp-{rcp_id}-{instance_id}"


class Occurrence(BaseModel):
    """One dated instance of a template slot or manual RCP instance.

    Computed on demand, never persisted. `id` is derived from the source id
    and the original date only, so it survives reschedules.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    source_id: str  # template slot id, or RCP definition id for manual instances
    kind: OccurrenceKind
    date: date
    original_date: date
    day: DayOfWeek
    period: Period
    time: str | None = None
    location: str
    type: SlotType
    sub_type: str | None = None
    primary_doctor_ids: tuple[str, ...] = ()
    secondary_doctor_ids: tuple[str, ...] = ()
    backup_doctor_id: str | None = None
    rcp_id: str | None = None
    is_required: bool = True
    is_blocking: bool = True
    is_rescheduled: bool = False
    has_custom_doctors: bool = False

    @property
    def involved_doctor_ids(self) -> frozenset[str]:
        ids = set(self.primary_doctor_ids) | set(self.secondary_doctor_ids)
        if self.backup_doctor_id:
            ids.add(self.backup_doctor_id)
        return frozenset(ids)

    @property
    def exception_key(self) -> tuple[str, date]:
        return (self.source_id, self.original_date)


# ---------------------------------------------------------------------------
# Attendance and doctors
# ---------------------------------------------------------------------------
class AttendanceRecord(BaseModel):
    occurrence_id: str
    doctor_id: str
    status: AttendanceStatus


# occurrence id -> doctor id -> decision; a missing entry means undecided
AttendanceMap = dict[str, dict[str, AttendanceStatus]]


class Doctor(BaseModel):
    """Doctor directory entry. Ids are opaque strings to the planning core."""

    id: str
    name: str
    color: str | None = None
    specialty: list[str] = Field(default_factory=list)
    excluded_days: list[DayOfWeek] = Field(default_factory=list)
    excluded_activities: list[str] = Field(default_factory=list)
    excluded_slot_types: list[SlotType] = Field(default_factory=list)
