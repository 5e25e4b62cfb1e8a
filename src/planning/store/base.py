"""Abstract contract of the persistent schedule store.

Everything the planning core needs from storage, expressed on records.
Implementations map records to rows with src.planning.mapping and translate
their native failures into the src.planning.errors hierarchy:

    StoreUnavailable    transport / auth failure (after retries)
    ConstraintConflict  unique constraint violated
    NotFound            update target missing

Deleting rows that do not exist is not an error.
"""

from datetime import date
from typing import Iterable, Protocol, Sequence

from src.planning.mapping import TEMPLATE_CONFLICT_KEY
from src.planning.models import (
    AttendanceRecord,
    AttendanceStatus,
    Doctor,
    RcpDefinition,
    RcpException,
    TemplateSlot,
)


class ScheduleStore(Protocol):
    # schedule_templates
    async def list_template_slots(self) -> list[TemplateSlot]: ...

    async def list_template_ids(self) -> set[str]: ...

    async def upsert_template_slots(
        self,
        slots: Sequence[TemplateSlot],
        conflict_key: tuple[str, ...] = TEMPLATE_CONFLICT_KEY,
    ) -> list[TemplateSlot]:
        """Insert slots without ids, updating rows that share conflict_key.

        The batch succeeds or fails as a whole.
        """
        ...

    async def update_template_slot(self, slot_id: str, slot: TemplateSlot) -> None: ...

    async def delete_template_slots(self, slot_ids: Iterable[str]) -> None: ...

    async def delete_template_slot(self, slot_id: str) -> None: ...

    # rcp_exceptions
    async def list_exceptions(self) -> list[RcpException]: ...

    async def upsert_exception(self, exception: RcpException) -> RcpException:
        """Write the exception, replacing any row with the same
        (template_id, original_date)."""
        ...

    async def delete_exception(self, template_id: str, original_date: date) -> None: ...

    # rcp_attendance
    async def list_attendance(self) -> list[AttendanceRecord]: ...

    async def upsert_attendance(
        self, occurrence_id: str, doctor_id: str, status: AttendanceStatus
    ) -> None: ...

    # rcp_definitions / rcp_manual_instances
    async def list_rcp_definitions(
        self, with_manual_instances: bool = True
    ) -> list[RcpDefinition]: ...

    async def create_rcp_definition(self, rcp: RcpDefinition) -> RcpDefinition: ...

    async def update_rcp_definition(self, rcp: RcpDefinition) -> RcpDefinition:
        """Update the definition and replace its manual instances."""
        ...

    async def delete_rcp_definition(self, rcp_id: str) -> None: ...

    # doctors
    async def list_doctors(self) -> list[Doctor]: ...

    async def close(self) -> None: ...
