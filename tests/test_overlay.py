"""Exception overlay on resolved occurrences."""

from datetime import date, datetime, timezone

from conftest import MONDAY_JUNE_2, SUNDAY_JUNE_15
from src.planning.models import DayOfWeek, Period, RcpException
from src.planning.overlay import apply_exception, apply_exceptions, index_exceptions
from src.planning.recurrence import resolve


def exception(**fields) -> RcpException:
    values = {"template_id": "t1", "original_date": date(2025, 6, 2)}
    values.update(fields)
    return RcpException(**values)


# ---------------------------------------------------------------------------
# Single exceptions
# ---------------------------------------------------------------------------


class TestApplyException:
    def test_cancellation_removes_occurrence(self, t1):
        occurrences = resolve([t1], [], MONDAY_JUNE_2, SUNDAY_JUNE_15)
        result = apply_exceptions(occurrences, [exception(is_cancelled=True)])
        assert [o.id for o in result] == ["t1-2025-06-09"]

    def test_cancellation_wins_over_reschedule(self, t1):
        occurrence = resolve([t1], [], MONDAY_JUNE_2, MONDAY_JUNE_2)[0]
        cancelled = exception(is_cancelled=True, new_date=date(2025, 6, 4))
        assert apply_exception(occurrence, cancelled) is None

    def test_reschedule_keeps_occurrence_id(self, t1):
        occurrence = resolve([t1], [], MONDAY_JUNE_2, MONDAY_JUNE_2)[0]

        moved = apply_exception(
            occurrence, exception(new_date=date(2025, 6, 4), new_period=Period.AFTERNOON)
        )

        assert moved.id == "t1-2025-06-02"
        assert moved.date == date(2025, 6, 4)
        assert moved.original_date == date(2025, 6, 2)
        assert moved.day == DayOfWeek.WEDNESDAY
        assert moved.period == Period.AFTERNOON
        assert moved.is_rescheduled
        assert occurrence.date == date(2025, 6, 2)

    def test_time_change_counts_as_reschedule(self, t1):
        occurrence = resolve([t1], [], MONDAY_JUNE_2, MONDAY_JUNE_2)[0]
        moved = apply_exception(occurrence, exception(new_time="10:30"))
        assert moved.date == date(2025, 6, 2)
        assert moved.time == "10:30"
        assert moved.is_rescheduled

    def test_custom_doctors_replace_staffing(self, rcp1):
        occurrence = resolve([], [rcp1], MONDAY_JUNE_2, SUNDAY_JUNE_15)[0]

        substituted = apply_exception(
            occurrence,
            exception(template_id="rcp1", original_date=date(2025, 6, 10), custom_doctor_ids=["d3"]),
        )

        assert substituted.primary_doctor_ids == ("d3",)
        assert substituted.backup_doctor_id is None
        assert substituted.involved_doctor_ids == {"d3"}
        assert substituted.has_custom_doctors
        assert not substituted.is_rescheduled


# ---------------------------------------------------------------------------
# Overlay over a window
# ---------------------------------------------------------------------------


class TestApplyExceptions:
    def test_no_exceptions_is_identity(self, t1):
        occurrences = resolve([t1], [], MONDAY_JUNE_2, SUNDAY_JUNE_15)
        assert apply_exceptions(occurrences, []) == occurrences

    def test_unmatched_exception_is_ignored(self, t1):
        occurrences = resolve([t1], [], MONDAY_JUNE_2, SUNDAY_JUNE_15)
        result = apply_exceptions(occurrences, [exception(template_id="other", is_cancelled=True)])
        assert result == occurrences

    def test_result_resorted_by_new_date(self, t1):
        occurrences = resolve([t1], [], MONDAY_JUNE_2, SUNDAY_JUNE_15)
        result = apply_exceptions(occurrences, [exception(new_date=date(2025, 6, 11))])
        assert [(o.id, o.date) for o in result] == [
            ("t1-2025-06-09", date(2025, 6, 9)),
            ("t1-2025-06-02", date(2025, 6, 11)),
        ]

    def test_window_drops_occurrences_moved_out(self, t1):
        occurrences = resolve([t1], [], MONDAY_JUNE_2, SUNDAY_JUNE_15)
        result = apply_exceptions(
            occurrences,
            [exception(new_date=date(2025, 6, 20))],
            window=(MONDAY_JUNE_2, SUNDAY_JUNE_15),
        )
        assert [o.id for o in result] == ["t1-2025-06-09"]

    def test_manual_instance_exception_keyed_by_rcp_id(self, rcp1):
        occurrences = resolve([], [rcp1], MONDAY_JUNE_2, SUNDAY_JUNE_15)
        result = apply_exceptions(
            occurrences,
            [RcpException(template_id="rcp1", original_date=date(2025, 6, 10), is_cancelled=True)],
        )
        assert result == []


# ---------------------------------------------------------------------------
# Duplicate exception rows
# ---------------------------------------------------------------------------


class TestDuplicateExceptions:
    def test_newest_created_at_wins(self):
        older = exception(
            id="e1", is_cancelled=True, created_at=datetime(2025, 6, 1, tzinfo=timezone.utc)
        )
        newer = exception(
            id="e2", new_date=date(2025, 6, 3), created_at=datetime(2025, 6, 2, tzinfo=timezone.utc)
        )

        lookup, ambiguities = index_exceptions([newer, older])

        assert lookup[("t1", date(2025, 6, 2))].id == "e2"
        assert len(ambiguities) == 1
        assert ambiguities[0].kept_id == "e2"
        assert ambiguities[0].discarded_ids == ("e1",)

    def test_last_row_wins_without_timestamps(self):
        first = exception(id="e1", is_cancelled=True)
        second = exception(id="e2", new_date=date(2025, 6, 3))

        lookup, ambiguities = index_exceptions([first, second])

        assert lookup[("t1", date(2025, 6, 2))].id == "e2"
        assert ambiguities[0].discarded_ids == ("e1",)

    def test_overlay_applies_kept_row(self, t1):
        occurrences = resolve([t1], [], MONDAY_JUNE_2, MONDAY_JUNE_2)
        result = apply_exceptions(
            occurrences,
            [exception(id="e1", is_cancelled=True), exception(id="e2", new_date=date(2025, 6, 3))],
        )
        assert [o.date for o in result] == [date(2025, 6, 3)]

    def test_single_rows_are_not_ambiguous(self):
        _, ambiguities = index_exceptions(
            [exception(), exception(original_date=date(2025, 6, 9))]
        )
        assert ambiguities == []
