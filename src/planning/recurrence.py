"""Recurrence resolver: template + RCP definitions -> dated occurrences.

Template slots repeat every week on their day. RCP template slots linked
to a definition (slot.sub_type == definition.name) follow the definition's
frequency instead:

    WEEKLY    every week
    BIWEEKLY  weeks whose ISO week number parity equals week_parity
    MONTHLY   the monthly_week_number-th such weekday of the month (1..5)
    MANUAL    never from the template; only on the definition's manual
              instance dates

Resolution is pure: same inputs, same occurrences, same order.
"""

from datetime import date
from typing import Iterable

from src.planning.errors import InvalidTemplateError
from src.planning.logging import get_logger
from src.planning.models import (
    DayOfWeek,
    Frequency,
    ManualInstance,
    Occurrence,
    OccurrenceKind,
    Period,
    Persisted,
    RcpDefinition,
    SlotType,
    TemplateSlot,
    manual_occurrence_id,
    template_occurrence_id,
)
from src.planning.weeks import (
    dates_for_weekday,
    iso_week_parity,
    nth_weekday_of_month,
    parse_iso_date,
)

log = get_logger(__name__)

# Manual RCP instances starting at or after this hour are afternoon sessions
AFTERNOON_FROM_HOUR = 13


def template_source_id(slot: TemplateSlot) -> str:
    """Id used for occurrence ids and exception keys of a template slot.

    Draft slots get a draft-scoped id so unsaved edits can be previewed;
    their occurrences cannot carry attendance until the slot is saved.
    """
    if isinstance(slot.id, Persisted):
        return slot.id.id
    return f"draft-{slot.id.draft_key}"


def check_definition(rcp: RcpDefinition) -> None:
    """Validate the selector a definition's frequency needs.

    Raises:
        InvalidTemplateError: If a BIWEEKLY definition has no week parity or
            a MONTHLY definition has no week number in 1..5.
    """
    if rcp.frequency == Frequency.BIWEEKLY and rcp.week_parity is None:
        raise InvalidTemplateError(f"BIWEEKLY RCP {rcp.name!r} has no week parity")
    if rcp.frequency == Frequency.MONTHLY and rcp.monthly_week_number not in range(1, 6):
        raise InvalidTemplateError(
            f"MONTHLY RCP {rcp.name!r} has invalid week number {rcp.monthly_week_number!r}"
        )


def check_manual_instances(rcp: RcpDefinition) -> None:
    """Reject two manual instances of one definition on the same date.

    Exceptions address a manual instance by (definition id, date), so a
    second instance that day could not be cancelled or moved on its own.

    Raises:
        InvalidTemplateError: If two instances share a date.
    """
    seen: set[date] = set()
    for instance in rcp.manual_instances:
        if instance.date in seen:
            raise InvalidTemplateError(
                f"RCP {rcp.name!r} has more than one manual instance on "
                f"{instance.date.isoformat()}"
            )
        seen.add(instance.date)


def definition_matches(rcp: RcpDefinition, on: date) -> bool:
    """Whether a recurring definition is held on a date of its weekday."""
    if rcp.frequency == Frequency.WEEKLY:
        return True
    if rcp.frequency == Frequency.BIWEEKLY:
        return iso_week_parity(on) == rcp.week_parity
    if rcp.frequency == Frequency.MONTHLY:
        return nth_weekday_of_month(on) == rcp.monthly_week_number
    return False


def period_for_time(time: str | None) -> Period:
    """Morning/afternoon classification of an "HH:MM" time."""
    if not time:
        return Period.MORNING
    try:
        hour = int(time.split(":")[0])
    except ValueError as e:
        raise InvalidTemplateError(f"Malformed time {time!r}") from e
    return Period.AFTERNOON if hour >= AFTERNOON_FROM_HOUR else Period.MORNING


def linked_definition(
    slot: TemplateSlot, definitions_by_name: dict[str, RcpDefinition]
) -> RcpDefinition | None:
    if slot.type != SlotType.RCP or not slot.sub_type:
        return None
    return definitions_by_name.get(slot.sub_type)


def _template_occurrence(slot: TemplateSlot, on: date, rcp: RcpDefinition | None) -> Occurrence:
    source_id = template_source_id(slot)
    return Occurrence(
        id=template_occurrence_id(source_id, on),
        source_id=source_id,
        kind=OccurrenceKind.TEMPLATE,
        date=on,
        original_date=on,
        day=slot.day,
        period=slot.period,
        time=slot.time,
        location=slot.location,
        type=slot.type,
        sub_type=slot.sub_type,
        primary_doctor_ids=tuple(slot.primary_doctor_ids),
        secondary_doctor_ids=tuple(slot.secondary_doctor_ids),
        backup_doctor_id=slot.backup_doctor_id,
        rcp_id=rcp.id if rcp else None,
        is_required=slot.is_required,
        is_blocking=slot.is_blocking,
    )


def _manual_occurrence(rcp: RcpDefinition, instance: ManualInstance, position: int) -> Occurrence:
    instance_id = instance.id if instance.id is not None else f"draft-{position}"
    return Occurrence(
        id=manual_occurrence_id(rcp.id, instance_id),
        source_id=rcp.id,
        kind=OccurrenceKind.MANUAL_RCP,
        date=instance.date,
        original_date=instance.date,
        day=DayOfWeek.from_date(instance.date),
        period=period_for_time(instance.time),
        time=instance.time,
        location=rcp.name,
        type=SlotType.RCP,
        sub_type=rcp.name,
        primary_doctor_ids=tuple(instance.doctor_ids),
        backup_doctor_id=instance.backup_doctor_id,
        rcp_id=rcp.id,
    )


def resolve(
    templates: Iterable[TemplateSlot],
    rcp_definitions: Iterable[RcpDefinition],
    start: date | str,
    end: date | str,
) -> list[Occurrence]:
    """Expand the template and RCP definitions over [start, end] inclusive.

    Args:
        templates: Template slots, in their display order.
        rcp_definitions: RCP definitions, with manual instances loaded.
        start: First date of the window.
        end: Last date of the window.

    Returns:
        Occurrences sorted by date, ties kept in input order (template slots
        first, then manual RCP instances).

    Raises:
        InvalidTemplateError: On malformed dates, start after end or a
            definition missing its selector.

    Slots with a non-WEEKLY frequency and no matching definition produce no
    occurrences and are logged as `unlinked_rcp_slot`.
    """
    start = parse_iso_date(start)
    end = parse_iso_date(end)
    if start > end:
        raise InvalidTemplateError(f"Window start {start} is after end {end}")

    definitions = list(rcp_definitions)
    for rcp in definitions:
        check_definition(rcp)
    by_name = {rcp.name: rcp for rcp in definitions}

    entries: list[tuple[date, int, Occurrence]] = []
    seq = 0

    for slot in templates:
        rcp = linked_definition(slot, by_name)
        if rcp is None and slot.frequency != Frequency.WEEKLY:
            # Definition deleted or renamed; its schedule is unknown
            log.warning(
                "unlinked_rcp_slot",
                slot_id=template_source_id(slot),
                sub_type=slot.sub_type,
                frequency=slot.frequency.value,
            )
            continue
        if rcp is not None and rcp.frequency == Frequency.MANUAL:
            continue
        for on in dates_for_weekday(start, end, slot.day):
            if rcp is None or definition_matches(rcp, on):
                entries.append((on, seq, _template_occurrence(slot, on, rcp)))
                seq += 1

    for rcp in definitions:
        if rcp.frequency != Frequency.MANUAL:
            continue
        for position, instance in enumerate(rcp.manual_instances):
            if start <= instance.date <= end:
                occurrence = _manual_occurrence(rcp, instance, position)
                entries.append((instance.date, seq, occurrence))
                seq += 1

    entries.sort(key=lambda e: (e[0], e[1]))
    log.debug(
        "occurrences_resolved",
        start=start.isoformat(),
        end=end.isoformat(),
        count=len(entries),
    )
    return [occurrence for _, _, occurrence in entries]
