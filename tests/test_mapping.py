"""Row <-> record mapping."""

from datetime import date

import pytest

from conftest import make_slot, template_row
from src.planning.errors import InvalidTemplateError
from src.planning.mapping import (
    TEMPLATE_COLUMNS,
    attendance_map,
    doctor_from_row,
    draft_template_from_row,
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
    DayOfWeek,
    Frequency,
    ManualInstance,
    Period,
    Persisted,
    SlotType,
    Unsaved,
    WeekParity,
)


class TestTemplateRows:
    def test_row_round_trip(self):
        row = template_row(
            "t1",
            day="THURSDAY",
            period="CUSTOM",
            time="07:45",
            type="ACTIVITY",
            default_doctor_id="d1",
            secondary_doctor_ids=["d2"],
            backup_doctor_id="d3",
            sub_type="Scanner",
            is_blocking=False,
        )

        slot = template_from_row(row)

        assert slot.id == Persisted(id="t1")
        assert slot.day == DayOfWeek.THURSDAY
        assert slot.period == Period.CUSTOM
        assert slot.type == SlotType.ACTIVITY
        assert template_to_row(slot) == row
        assert tuple(template_to_row(slot)) == TEMPLATE_COLUMNS

    def test_database_defaults(self):
        row = {"id": 7, "day": "MONDAY", "period": "MORNING", "location": "Box 1", "type": "RCP"}
        slot = template_from_row(row)
        assert slot.id == Persisted(id="7")
        assert slot.frequency == Frequency.WEEKLY
        assert slot.is_required and slot.is_blocking
        assert slot.doctor_ids == []

    def test_update_fields_never_carry_id(self):
        assert "id" not in template_update_fields(make_slot("t1"))

    def test_draft_ids_are_never_written(self):
        assert "id" not in template_to_row(make_slot(None))

    def test_draft_from_row_keeps_file_id_as_draft_key(self):
        slot = draft_template_from_row(template_row("tmp-1"))
        assert slot.id == Unsaved(draft_key="tmp-1")
        assert slot.is_new

    def test_missing_id(self):
        row = template_row("t1")
        del row["id"]
        with pytest.raises(InvalidTemplateError):
            template_from_row(row)

    @pytest.mark.parametrize("column, value", [("day", "FUNDAY"), ("location", None), ("frequency", "YEARLY")])
    def test_invalid_values(self, column, value):
        with pytest.raises(InvalidTemplateError):
            template_from_row(template_row("t1", **{column: value}))


class TestExceptionRows:
    def test_round_trip(self):
        row = {
            "id": "e1",
            "rcp_template_id": "t1",
            "original_date": "2025-06-02",
            "new_date": "2025-06-04",
            "new_period": "AFTERNOON",
            "new_time": "14:30",
            "is_cancelled": False,
            "custom_doctor_ids": ["d3"],
            "created_at": "2025-06-01T10:00:00+00:00",
        }

        exception = exception_from_row(row)

        assert exception.key == ("t1", date(2025, 6, 2))
        assert exception.new_date == date(2025, 6, 4)
        assert exception.new_period == Period.AFTERNOON
        assert exception.created_at.year == 2025
        expected = {k: v for k, v in row.items() if k not in ("id", "created_at")}
        assert exception_to_row(exception) == expected

    def test_malformed_date(self):
        with pytest.raises(InvalidTemplateError):
            exception_from_row({"id": "e1", "rcp_template_id": "t1", "original_date": "02/06/2025"})


class TestRcpRows:
    def test_definition_with_embedded_instances(self):
        row = {
            "id": "rcp2",
            "name": "RCP Digestif",
            "frequency": "BIWEEKLY",
            "week_parity": "EVEN",
            "monthly_week_number": None,
            "rcp_manual_instances": [
                {"id": "i1", "rcp_definition_id": "rcp2", "date": "2025-06-10",
                 "time": None, "doctor_ids": None, "backup_doctor_id": None},
            ],
        }

        rcp = rcp_from_row(row)

        assert rcp.week_parity == WeekParity.EVEN
        assert rcp.manual_instances[0].id == "i1"
        assert rcp.manual_instances[0].doctor_ids == []
        assert rcp_to_row(rcp) == {
            "name": "RCP Digestif",
            "frequency": "BIWEEKLY",
            "week_parity": "EVEN",
            "monthly_week_number": None,
        }

    def test_unsaved_instance_row_has_no_id(self):
        row = manual_instance_to_row("rcp1", ManualInstance(date=date(2025, 6, 10), doctor_ids=["d1"]))
        assert "id" not in row
        assert row["rcp_definition_id"] == "rcp1"
        assert row["date"] == "2025-06-10"


class TestAttendanceAndDoctors:
    def test_attendance_map_later_records_win(self):
        records = [
            AttendanceRecord(occurrence_id="o1", doctor_id="d1", status=AttendanceStatus.ABSENT),
            AttendanceRecord(occurrence_id="o1", doctor_id="d1", status=AttendanceStatus.PRESENT),
            AttendanceRecord(occurrence_id="o2", doctor_id="d2", status=AttendanceStatus.ABSENT),
        ]
        assert attendance_map(records) == {
            "o1": {"d1": AttendanceStatus.PRESENT},
            "o2": {"d2": AttendanceStatus.ABSENT},
        }

    def test_doctor_row(self):
        doctor = doctor_from_row({"id": "d1", "name": "Dr Martin", "excluded_days": ["FRIDAY"]})
        assert doctor.excluded_days == [DayOfWeek.FRIDAY]
        assert doctor.specialty == []
