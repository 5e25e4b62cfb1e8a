"""Error hierarchy for store access and schedule resolution.

The split between transient and permanent store failures lets tenacity
retry decorators classify what is worth retrying:

    @retry(retry=retry_if_exception_type(StoreUnavailable), stop=stop_after_attempt(3))
    async def list_template_slots(self):
        ...

Everything else is surfaced to the caller unchanged.
"""

from dataclasses import dataclass
from datetime import date


class PlanningError(Exception):
    """Base exception for all planning errors."""

    pass


class StoreError(PlanningError):
    """The external store rejected or failed an operation."""

    pass


class StoreUnavailable(StoreError):
    """Transport or authentication failure talking to the store.

    Retried by the store layer; once the attempts are exhausted the
    operation is aborted and this error reaches the caller.
    """

    pass


class ConstraintConflict(StoreError):
    """A uniqueness constraint was violated.

    During the template create phase this triggers rollback-to-local.
    """

    pass


class NotFound(StoreError):
    """Update or delete target does not exist (treated as already deleted)."""

    pass


class InvalidTemplateError(PlanningError):
    """Resolver input cannot be interpreted.

    Examples: malformed ISO date, unknown frequency, BIWEEKLY definition
    without a week parity.
    """

    pass


@dataclass(frozen=True)
class AmbiguousExceptionWarning:
    """More than one exception row matches the same occurrence key.

    Not raised: the overlay keeps the most recent row and reports this as a
    data-integrity warning.
    """

    template_id: str
    original_date: date
    kept_id: str | None
    discarded_ids: tuple[str | None, ...]

    def __str__(self) -> str:
        return (
            f"{len(self.discarded_ids) + 1} exceptions for "
            f"{self.template_id} on {self.original_date.isoformat()}, kept {self.kept_id}"
        )
