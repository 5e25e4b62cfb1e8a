"""Diff-based template sync.

Compares the locally edited template against the ids persisted in the
store and issues targeted operations instead of rewriting the table:

    1. classify   Unsaved ids are new, Persisted ids are existing
    2. diff       persisted ids missing from the local template are deleted
    3. delete     best effort; a failure is logged and the sync continues
    4. update     one independent update per existing slot, run concurrently;
                  failures are collected as warnings
    5. create     one batched upsert on (day, period, location, type); an
                  existing row with the same natural key is updated instead
                  of duplicated. Any failure here returns the local template
                  unchanged with failed=True, so unsaved edits are kept.

Phases run strictly in that order: deletes can free natural keys that the
create phase reuses. Every write is shielded: a caller that cancels
the sync stops waiting, but calls already dispatched still complete.
"""

import asyncio
from typing import Sequence

from pydantic import BaseModel, Field

from src.planning.errors import NotFound, StoreError
from src.planning.logging import get_logger
from src.planning.mapping import TEMPLATE_CONFLICT_KEY
from src.planning.models import Persisted, TemplateSlot
from src.planning.store.base import ScheduleStore

logger = get_logger(__name__)


class TemplateDiff(BaseModel):
    new: list[TemplateSlot] = Field(default_factory=list)
    existing: list[TemplateSlot] = Field(default_factory=list)
    deleted_ids: list[str] = Field(default_factory=list)


class SyncWarning(BaseModel):
    """A failure or collapsed duplicate reported by any phase.

    Delete and update warnings are non-fatal. A create warning with
    `failed=True` on the result means nothing new was saved.
    """

    phase: str  # "delete" | "update" | "create"
    slot_ids: list[str]
    error_type: str
    message: str


class SyncResult(BaseModel):
    saved_template: list[TemplateSlot]
    failed: bool = False
    deleted_ids: list[str] = Field(default_factory=list)
    updated_ids: list[str] = Field(default_factory=list)
    created: list[TemplateSlot] = Field(default_factory=list)
    warnings: list[SyncWarning] = Field(default_factory=list)


def compute_template_diff(
    local_template: Sequence[TemplateSlot], persisted_ids: set[str]
) -> TemplateDiff:
    """Classify local slots and find persisted rows that were removed."""
    new = [slot for slot in local_template if slot.is_new]
    existing = [slot for slot in local_template if isinstance(slot.id, Persisted)]
    existing_ids = {slot.id.id for slot in existing}
    deleted_ids = sorted(row_id for row_id in persisted_ids if row_id not in existing_ids)
    return TemplateDiff(new=new, existing=existing, deleted_ids=deleted_ids)


def collapse_natural_keys(
    slots: Sequence[TemplateSlot],
) -> tuple[list[TemplateSlot], list[TemplateSlot]]:
    """Keep the last slot per natural key.

    One upsert batch cannot write the same row twice.

    Returns:
        (kept slots in first-seen key order, dropped slots)
    """
    by_key: dict[tuple, TemplateSlot] = {}
    dropped: list[TemplateSlot] = []
    for slot in slots:
        previous = by_key.get(slot.natural_key)
        if previous is not None:
            dropped.append(previous)
        by_key[slot.natural_key] = slot
    return list(by_key.values()), dropped


def format_diff_summary(diff: TemplateDiff) -> str:
    """Format a diff for human-readable display."""
    lines = [
        f"  New: {len(diff.new)}  |  "
        f"Existing: {len(diff.existing)}  |  "
        f"Deleted: {len(diff.deleted_ids)}"
    ]
    if diff.new:
        lines.append("  New:")
        for slot in diff.new[:10]:
            lines.append(
                f"    + {slot.day.value} {slot.period.value} {slot.location} {slot.type.value}"
            )
        if len(diff.new) > 10:
            lines.append(f"    ... and {len(diff.new) - 10} more")
    if diff.deleted_ids:
        lines.append("  Deleted:")
        for row_id in diff.deleted_ids[:10]:
            lines.append(f"    - {row_id}")
        if len(diff.deleted_ids) > 10:
            lines.append(f"    ... and {len(diff.deleted_ids) - 10} more")
    return "\n".join(lines)


def _warning(phase: str, slot_ids: list[str], error: Exception) -> SyncWarning:
    return SyncWarning(
        phase=phase,
        slot_ids=slot_ids,
        error_type=type(error).__name__,
        message=str(error),
    )


class TemplateSynchronizer:
    """Saves an edited template through a ScheduleStore."""

    def __init__(self, store: ScheduleStore) -> None:
        self.store = store

    async def save_template(self, local_template: Sequence[TemplateSlot]) -> SyncResult:
        """Fetch the persisted ids, then sync.

        Raises:
            StoreError: If the persisted ids cannot be read; nothing has been
                written at that point.
        """
        persisted_ids = await self.store.list_template_ids()
        return await self.sync(local_template, persisted_ids)

    async def sync(
        self, local_template: Sequence[TemplateSlot], persisted_ids: set[str]
    ) -> SyncResult:
        local_template = list(local_template)
        diff = compute_template_diff(local_template, persisted_ids)
        logger.info(
            "template_sync_started",
            items=len(local_template),
            new=len(diff.new),
            existing=len(diff.existing),
            deleted=len(diff.deleted_ids),
        )

        warnings: list[SyncWarning] = []
        deleted_ids = await self._delete_phase(diff.deleted_ids, warnings)
        updated_ids = await self._update_phase(diff.existing, warnings)

        created: list[TemplateSlot] = []
        if diff.new:
            to_create, dropped = collapse_natural_keys(diff.new)
            if dropped:
                warnings.append(
                    SyncWarning(
                        phase="create",
                        slot_ids=[str(slot.id) for slot in dropped],
                        error_type="DuplicateNaturalKey",
                        message="new slots share (day, period, location, type); last one kept",
                    )
                )
            try:
                created = await asyncio.shield(
                    self.store.upsert_template_slots(to_create, TEMPLATE_CONFLICT_KEY)
                )
            except StoreError as e:
                logger.error(
                    "template_create_failed",
                    items=len(to_create),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                logger.warning("template_sync_rolled_back_to_local", items=len(local_template))
                return SyncResult(
                    saved_template=local_template,
                    failed=True,
                    deleted_ids=deleted_ids,
                    updated_ids=updated_ids,
                    warnings=warnings + [_warning("create", [str(s.id) for s in to_create], e)],
                )
            logger.info("template_created", requested=len(to_create), received=len(created))

        saved = _merge_saved(diff.existing, created)
        logger.info(
            "template_sync_complete",
            existing=len(diff.existing),
            created=len(created),
            deleted=len(deleted_ids),
            updated=len(updated_ids),
            warnings=len(warnings),
        )
        return SyncResult(
            saved_template=saved,
            deleted_ids=deleted_ids,
            updated_ids=updated_ids,
            created=created,
            warnings=warnings,
        )

    async def _delete_phase(self, ids: list[str], warnings: list[SyncWarning]) -> list[str]:
        if not ids:
            return []
        try:
            await asyncio.shield(self.store.delete_template_slots(ids))
        except StoreError as e:
            logger.error("template_delete_failed", ids=ids, error=str(e))
            warnings.append(_warning("delete", ids, e))
            return []
        logger.info("template_deleted", count=len(ids))
        return ids

    async def _update_phase(
        self, existing: list[TemplateSlot], warnings: list[SyncWarning]
    ) -> list[str]:
        if not existing:
            return []
        # Dispatched updates finish even if the caller is cancelled
        results = await asyncio.shield(
            asyncio.gather(
                *(self.store.update_template_slot(slot.id.id, slot) for slot in existing),
                return_exceptions=True,
            )
        )

        updated: list[str] = []
        for slot, result in zip(existing, results):
            slot_id = slot.id.id
            if isinstance(result, NotFound):
                logger.warning("template_update_target_missing", slot_id=slot_id)
                warnings.append(_warning("update", [slot_id], result))
            elif isinstance(result, StoreError):
                logger.error("template_update_failed", slot_id=slot_id, error=str(result))
                warnings.append(_warning("update", [slot_id], result))
            elif isinstance(result, BaseException):
                raise result
            else:
                updated.append(slot_id)
        logger.info("template_updated", count=len(updated), failed=len(existing) - len(updated))
        return updated


def _merge_saved(
    existing: list[TemplateSlot], created: list[TemplateSlot]
) -> list[TemplateSlot]:
    """Existing slots followed by created rows.

    A created row whose natural key matched an existing local slot carries
    that slot's id; it replaces the local copy instead of appearing twice.
    """
    created_by_id = {slot.id.id: slot for slot in created if isinstance(slot.id, Persisted)}
    saved = [created_by_id.pop(slot.id.id, slot) for slot in existing]
    saved.extend(slot for slot in created if slot.id.id in created_by_id)
    return saved
