"""Supabase (PostgREST) implementation of the schedule store.

The store owns one AsyncClient created by `connect()` and released by
`close()`; callers pass the store instance explicitly, there is no module
level client. Every request goes through `_execute`, which retries
StoreUnavailable with tenacity and translates PostgREST errors.
"""

from datetime import date
from typing import Any, Callable, Iterable, Sequence

import httpx
from postgrest.exceptions import APIError
from supabase import AsyncClient, acreate_client
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from src.planning.config import PlanningConfig, get_config
from src.planning.errors import (
    ConstraintConflict,
    NotFound,
    StoreError,
    StoreUnavailable,
)
from src.planning.logging import get_logger
from src.planning.mapping import (
    ATTENDANCE_CONFLICT_KEY,
    EXCEPTION_MATCH_KEY,
    TEMPLATE_CONFLICT_KEY,
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

logger = get_logger(__name__)

# SQLSTATE / PostgREST codes
UNIQUE_VIOLATION = "23505"
CARDINALITY_VIOLATION = "21000"  # upsert batch touches the same row twice
NO_ROWS = "PGRST116"
AUTH_CODES = frozenset({"PGRST301", "PGRST302", "401", "403", "42501"})


def translate_api_error(error: APIError, operation: str) -> StoreError:
    """Map a PostgREST APIError to the planning error hierarchy."""
    code = str(error.code or "")
    message = f"{operation}: {error.message or error}"
    if code in (UNIQUE_VIOLATION, CARDINALITY_VIOLATION):
        return ConstraintConflict(message)
    if code == NO_ROWS:
        return NotFound(message)
    if code in AUTH_CODES or "JWT" in (error.message or ""):
        return StoreUnavailable(message)
    return StoreError(message)


class SupabaseStore:
    """ScheduleStore on a supabase AsyncClient."""

    def __init__(self, client: AsyncClient, config: PlanningConfig | None = None) -> None:
        self._client = client
        self.config = config or get_config()

    @classmethod
    async def connect(cls, config: PlanningConfig | None = None) -> "SupabaseStore":
        """Create the client from configuration.

        Raises:
            StoreUnavailable: If the URL or key is missing or the client
                cannot be created.
        """
        config = config or get_config()
        if not config.supabase_url or not config.supabase_key:
            raise StoreUnavailable("SUPABASE_URL and SUPABASE_KEY must be set")
        try:
            client = await acreate_client(config.supabase_url, config.supabase_key)
        except Exception as e:
            logger.error("store_connect_failed", error=str(e), type=type(e).__name__)
            raise StoreUnavailable(f"Cannot create Supabase client: {e}") from e
        logger.info("store_connected", url=config.supabase_url)
        return cls(client, config)

    async def close(self) -> None:
        await self._client.postgrest.aclose()
        logger.info("store_closed")

    async def __aenter__(self) -> "SupabaseStore":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _table(self, name: str):
        return self._client.table(name)

    async def _execute(self, operation: str, build: Callable[[], Any]) -> list[dict]:
        """Run a query built by `build`, retrying transient failures.

        Returns:
            The response rows (empty list when the request returns none).
        """
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.config.store_retry_attempts),
            wait=wait_fixed(self.config.store_retry_wait_seconds),
            retry=retry_if_exception_type(StoreUnavailable),
            reraise=True,
        ):
            with attempt:
                try:
                    response = await build().execute()
                except APIError as e:
                    error = translate_api_error(e, operation)
                    logger.warning(
                        "store_request_failed",
                        operation=operation,
                        code=e.code,
                        error_type=type(error).__name__,
                        attempt=attempt.retry_state.attempt_number,
                    )
                    raise error from e
                except httpx.HTTPError as e:
                    logger.warning(
                        "store_transport_error",
                        operation=operation,
                        error=str(e),
                        attempt=attempt.retry_state.attempt_number,
                    )
                    raise StoreUnavailable(f"{operation}: {e}") from e
                return response.data or []
        return []

    # ------------------------------------------------------------------
    # schedule_templates
    # ------------------------------------------------------------------
    async def list_template_slots(self) -> list[TemplateSlot]:
        table = self.config.template_table
        rows = await self._execute("list_template_slots", lambda: self._table(table).select("*"))
        return [template_from_row(row) for row in rows]

    async def list_template_ids(self) -> set[str]:
        table = self.config.template_table
        rows = await self._execute("list_template_ids", lambda: self._table(table).select("id"))
        return {str(row["id"]) for row in rows}

    async def upsert_template_slots(
        self,
        slots: Sequence[TemplateSlot],
        conflict_key: tuple[str, ...] = TEMPLATE_CONFLICT_KEY,
    ) -> list[TemplateSlot]:
        table = self.config.template_table
        rows = [template_to_row(slot, include_id=False) for slot in slots]
        data = await self._execute(
            "upsert_template_slots",
            lambda: self._table(table).upsert(
                rows, on_conflict=",".join(conflict_key), ignore_duplicates=False
            ),
        )
        return [template_from_row(row) for row in data]

    async def update_template_slot(self, slot_id: str, slot: TemplateSlot) -> None:
        table = self.config.template_table
        fields = template_update_fields(slot)
        data = await self._execute(
            "update_template_slot",
            lambda: self._table(table).update(fields).eq("id", slot_id),
        )
        if not data:
            raise NotFound(f"update_template_slot: {slot_id} not found")

    async def delete_template_slots(self, slot_ids: Iterable[str]) -> None:
        table = self.config.template_table
        ids = list(slot_ids)
        if not ids:
            return
        await self._execute(
            "delete_template_slots", lambda: self._table(table).delete().in_("id", ids)
        )

    async def delete_template_slot(self, slot_id: str) -> None:
        table = self.config.template_table
        await self._execute(
            "delete_template_slot", lambda: self._table(table).delete().eq("id", slot_id)
        )

    # ------------------------------------------------------------------
    # rcp_exceptions
    # ------------------------------------------------------------------
    async def list_exceptions(self) -> list[RcpException]:
        table = self.config.exception_table
        rows = await self._execute(
            "list_exceptions", lambda: self._table(table).select("*").order("created_at")
        )
        return [exception_from_row(row) for row in rows]

    async def upsert_exception(self, exception: RcpException) -> RcpException:
        table = self.config.exception_table
        row = exception_to_row(exception)
        data = await self._execute(
            "upsert_exception",
            lambda: self._table(table).upsert(
                row, on_conflict=",".join(EXCEPTION_MATCH_KEY), ignore_duplicates=False
            ),
        )
        return exception_from_row(data[0]) if data else exception

    async def delete_exception(self, template_id: str, original_date: date) -> None:
        table = self.config.exception_table
        match = dict(zip(EXCEPTION_MATCH_KEY, (template_id, original_date.isoformat())))
        await self._execute(
            "delete_exception", lambda: self._table(table).delete().match(match)
        )

    # ------------------------------------------------------------------
    # rcp_attendance
    # ------------------------------------------------------------------
    async def list_attendance(self) -> list[AttendanceRecord]:
        table = self.config.attendance_table
        rows = await self._execute("list_attendance", lambda: self._table(table).select("*"))
        return [attendance_from_row(row) for row in rows]

    async def upsert_attendance(
        self, occurrence_id: str, doctor_id: str, status: AttendanceStatus
    ) -> None:
        table = self.config.attendance_table
        row = attendance_to_row(occurrence_id, doctor_id, status)
        await self._execute(
            "upsert_attendance",
            lambda: self._table(table).upsert(
                row, on_conflict=",".join(ATTENDANCE_CONFLICT_KEY), ignore_duplicates=False
            ),
        )

    # ------------------------------------------------------------------
    # rcp_definitions / rcp_manual_instances
    # ------------------------------------------------------------------
    async def list_rcp_definitions(self, with_manual_instances: bool = True) -> list[RcpDefinition]:
        table = self.config.rcp_table
        columns = f"*, {self.config.manual_instance_table}(*)" if with_manual_instances else "*"
        rows = await self._execute(
            "list_rcp_definitions",
            lambda: self._table(table).select(columns).order("name"),
        )
        instance_key = self.config.manual_instance_table
        return [
            rcp_from_row({**row, "rcp_manual_instances": row.get(instance_key) or []})
            for row in rows
        ]

    async def _replace_instances(self, rcp: RcpDefinition, rcp_id: str) -> RcpDefinition:
        """Delete instances no longer listed, then write the listed ones.

        Saved instances keep their ids. Instance failures are logged and the
        definition is still returned, as the definition itself was saved.
        """
        table = self.config.manual_instance_table
        keep = [m.id for m in rcp.manual_instances if m.id is not None]
        try:
            def stale_query():
                query = self._table(table).delete().eq("rcp_definition_id", rcp_id)
                if keep:
                    query = query.not_.in_("id", keep)
                return query

            await self._execute("delete_manual_instances", stale_query)

            existing = [manual_instance_to_row(rcp_id, m) for m in rcp.manual_instances if m.id]
            new = [manual_instance_to_row(rcp_id, m) for m in rcp.manual_instances if not m.id]
            if existing:
                await self._execute(
                    "upsert_manual_instances", lambda: self._table(table).upsert(existing)
                )
            if new:
                await self._execute(
                    "insert_manual_instances", lambda: self._table(table).insert(new)
                )
            logger.info(
                "manual_instances_saved",
                rcp_id=rcp_id,
                kept=len(existing),
                inserted=len(new),
            )
        except StoreError as e:
            logger.error("manual_instances_save_failed", rcp_id=rcp_id, error=str(e))

        refreshed = await self._execute(
            "get_rcp_definition",
            lambda: self._table(self.config.rcp_table)
            .select(f"*, {table}(*)")
            .eq("id", rcp_id),
        )
        if not refreshed:
            raise NotFound(f"rcp_definitions row {rcp_id} not found")
        row = refreshed[0]
        return rcp_from_row({**row, "rcp_manual_instances": row.get(table) or []})

    async def create_rcp_definition(self, rcp: RcpDefinition) -> RcpDefinition:
        check_manual_instances(rcp)
        table = self.config.rcp_table
        row = rcp_to_row(rcp)
        data = await self._execute(
            "create_rcp_definition", lambda: self._table(table).insert(row)
        )
        if not data:
            raise StoreError("create_rcp_definition: insert returned no row")
        return await self._replace_instances(rcp, str(data[0]["id"]))

    async def update_rcp_definition(self, rcp: RcpDefinition) -> RcpDefinition:
        check_manual_instances(rcp)
        table = self.config.rcp_table
        row = rcp_to_row(rcp)
        data = await self._execute(
            "update_rcp_definition",
            lambda: self._table(table).update(row).eq("id", rcp.id),
        )
        if not data:
            raise NotFound(f"update_rcp_definition: {rcp.id} not found")
        return await self._replace_instances(rcp, rcp.id)

    async def delete_rcp_definition(self, rcp_id: str) -> None:
        table = self.config.rcp_table
        await self._execute(
            "delete_rcp_definition", lambda: self._table(table).delete().eq("id", rcp_id)
        )

    # ------------------------------------------------------------------
    # doctors
    # ------------------------------------------------------------------
    async def list_doctors(self) -> list[Doctor]:
        table = self.config.doctor_table
        rows = await self._execute(
            "list_doctors", lambda: self._table(table).select("*").order("name")
        )
        return [doctor_from_row(row) for row in rows]
