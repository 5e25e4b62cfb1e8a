"""Exception overlay: cancel, reschedule or re-staff single occurrences.

Exceptions are keyed by (template_id, original_date). For template slots
template_id is the slot id; for manual RCP instances it is the RCP
definition id. Occurrence ids never change, so attendance recorded before a
reschedule still applies afterwards.
"""

from datetime import date
from typing import Iterable, Sequence

from src.planning.errors import AmbiguousExceptionWarning
from src.planning.logging import get_logger
from src.planning.models import DayOfWeek, Occurrence, RcpException

log = get_logger(__name__)

ExceptionKey = tuple[str, date]


def index_exceptions(
    exceptions: Iterable[RcpException],
) -> tuple[dict[ExceptionKey, RcpException], list[AmbiguousExceptionWarning]]:
    """Build the (template_id, original_date) lookup.

    When several rows share a key the most recently written one wins: the
    newest created_at when every row has one, otherwise the last row in
    store order. Each such key is reported as an AmbiguousExceptionWarning.
    """
    grouped: dict[ExceptionKey, list[tuple[int, RcpException]]] = {}
    for position, exception in enumerate(exceptions):
        grouped.setdefault(exception.key, []).append((position, exception))

    lookup: dict[ExceptionKey, RcpException] = {}
    ambiguities: list[AmbiguousExceptionWarning] = []
    for key, candidates in grouped.items():
        if len(candidates) == 1:
            lookup[key] = candidates[0][1]
            continue

        if all(exc.created_at is not None for _, exc in candidates):
            _, kept = max(candidates, key=lambda c: (c[1].created_at, c[0]))
        else:
            _, kept = candidates[-1]
        lookup[key] = kept
        ambiguities.append(
            AmbiguousExceptionWarning(
                template_id=key[0],
                original_date=key[1],
                kept_id=kept.id,
                discarded_ids=tuple(exc.id for _, exc in candidates if exc is not kept),
            )
        )
    return lookup, ambiguities


def apply_exception(occurrence: Occurrence, exception: RcpException) -> Occurrence | None:
    """Apply one matching exception. Returns None for a cancellation."""
    if exception.is_cancelled:
        return None

    new_date = exception.new_date or occurrence.date
    period = exception.new_period or occurrence.period
    time = exception.new_time or occurrence.time
    update = {
        "date": new_date,
        "day": DayOfWeek.from_date(new_date),
        "period": period,
        "time": time,
        "is_rescheduled": (
            new_date != occurrence.original_date
            or period != occurrence.period
            or time != occurrence.time
        ),
    }
    if exception.custom_doctor_ids:
        update.update(
            primary_doctor_ids=tuple(exception.custom_doctor_ids),
            secondary_doctor_ids=(),
            backup_doctor_id=None,
            has_custom_doctors=True,
        )
    return occurrence.model_copy(update=update)


def apply_exceptions(
    occurrences: Sequence[Occurrence],
    exceptions: Iterable[RcpException],
    window: tuple[date, date] | None = None,
) -> list[Occurrence]:
    """Overlay stored exceptions onto resolved occurrences.

    Args:
        occurrences: Resolver output.
        exceptions: Stored exception rows, in store order.
        window: Optional inclusive (start, end); occurrences rescheduled
            outside it are dropped.

    Returns:
        New list sorted by (possibly rescheduled) date; input order is kept
        for equal dates. Inputs are not modified.
    """
    lookup, ambiguities = index_exceptions(exceptions)
    for warning in ambiguities:
        log.warning(
            "ambiguous_exception",
            template_id=warning.template_id,
            original_date=warning.original_date.isoformat(),
            kept_id=warning.kept_id,
            discarded_ids=list(warning.discarded_ids),
        )

    result: list[Occurrence] = []
    cancelled = 0
    for occurrence in occurrences:
        exception = lookup.get(occurrence.exception_key)
        if exception is None:
            result.append(occurrence)
            continue
        applied = apply_exception(occurrence, exception)
        if applied is None:
            cancelled += 1
            continue
        result.append(applied)

    if window is not None:
        start, end = window
        result = [o for o in result if start <= o.date <= end]

    result.sort(key=lambda o: o.date)
    if lookup:
        log.debug(
            "exceptions_applied",
            exceptions=len(lookup),
            cancelled=cancelled,
            occurrences=len(result),
        )
    return result
