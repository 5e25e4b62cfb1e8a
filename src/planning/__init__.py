"""RadioPlan planning core.

Recurrence resolution of the weekly template and RCP definitions, the
per-occurrence exception overlay, attendance tracking, and diff-based
template sync against the Supabase store.
"""

from src.planning.attendance import AttendanceTracker, pending_count
from src.planning.models import (
    AttendanceStatus,
    Occurrence,
    RcpDefinition,
    RcpException,
    TemplateSlot,
)
from src.planning.overlay import apply_exceptions
from src.planning.recurrence import resolve
from src.planning.service import PlanningService
from src.planning.sync import SyncResult, TemplateSynchronizer

__all__ = [
    "AttendanceStatus",
    "AttendanceTracker",
    "Occurrence",
    "PlanningService",
    "RcpDefinition",
    "RcpException",
    "SyncResult",
    "TemplateSlot",
    "TemplateSynchronizer",
    "apply_exceptions",
    "pending_count",
    "resolve",
]
