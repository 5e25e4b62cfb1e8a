"""Shared fixtures: a seeded in-memory store and sample template data."""

from datetime import date

import pytest

from src.planning.config import PlanningConfig
from src.planning.models import (
    DayOfWeek,
    Frequency,
    ManualInstance,
    Period,
    RcpDefinition,
    SlotType,
    TemplateSlot,
    persisted,
    unsaved,
)
from src.planning.store.memory import InMemoryStore

MONDAY_JUNE_2 = date(2025, 6, 2)
SUNDAY_JUNE_15 = date(2025, 6, 15)


def make_slot(slot_id: str | None = None, **fields) -> TemplateSlot:
    """Template slot with defaults; slot_id=None gives a draft slot."""
    values = {
        "day": DayOfWeek.MONDAY,
        "period": Period.MORNING,
        "location": "Box 1",
        "type": SlotType.CONSULTATION,
    }
    values.update(fields)
    local_id = persisted(slot_id) if slot_id is not None else unsaved()
    return TemplateSlot(id=local_id, **values)


def template_row(row_id: str, **fields) -> dict:
    row = {
        "id": row_id,
        "day": "MONDAY",
        "period": "MORNING",
        "time": None,
        "location": "Box 1",
        "type": "CONSULTATION",
        "default_doctor_id": None,
        "secondary_doctor_ids": [],
        "doctor_ids": [],
        "backup_doctor_id": None,
        "sub_type": None,
        "is_required": True,
        "is_blocking": True,
        "frequency": "WEEKLY",
    }
    row.update(fields)
    return row


@pytest.fixture
def config() -> PlanningConfig:
    return PlanningConfig(supabase_url="", supabase_key="", notification_weeks=2)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore(
        doctors=[
            {"id": "d1", "name": "Dr Martin", "color": "#1f77b4"},
            {"id": "d2", "name": "Dr Bernard"},
            {"id": "d3", "name": "Dr Petit"},
        ]
    )


@pytest.fixture
def t1() -> TemplateSlot:
    return make_slot("t1", default_doctor_id="d1")


@pytest.fixture
def rcp1() -> RcpDefinition:
    return RcpDefinition(
        id="rcp1",
        name="RCP Sein",
        frequency=Frequency.MANUAL,
        manual_instances=[
            ManualInstance(
                id="i1",
                date=date(2025, 6, 10),
                time="14:00",
                doctor_ids=["d1"],
                backup_doctor_id="d2",
            )
        ],
    )
