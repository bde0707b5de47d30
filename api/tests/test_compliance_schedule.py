"""Tests for compliance run due-date calculation."""
import pytest
from datetime import date

from app.core.errors import InvalidScheduleError, ScheduleError, ValidationError
from app.core.schedule import days_in_month, next_due_date, requires_recurring_day, validate_schedule
from app.models.compliance import RunFrequency


class TestNextDueDate:
    """Tests for next_due_date across frequencies."""

    def test_once_returns_explicit_date(self):
        assert next_due_date("once", explicit_date=date(2024, 6, 30)) == date(2024, 6, 30)

    def test_once_without_explicit_date_fails(self):
        with pytest.raises(InvalidScheduleError):
            next_due_date(RunFrequency.ONCE)

    def test_weekly_adds_seven_days(self):
        assert next_due_date("weekly", from_date=date(2024, 12, 28)) == date(2025, 1, 4)

    def test_monthly_day_31_clamps_to_leap_february(self):
        """Monthly on day 31 from 2024-02-01 lands on Feb 29."""
        assert next_due_date("monthly", 31, from_date=date(2024, 2, 1)) == date(2024, 2, 29)

    def test_monthly_day_31_clamps_to_non_leap_february(self):
        assert next_due_date("monthly", 31, from_date=date(2023, 2, 1)) == date(2023, 2, 28)

    def test_monthly_is_strictly_after_from_date(self):
        """The recurring day itself does not count; the next month's does."""
        assert next_due_date("monthly", 15, from_date=date(2024, 3, 15)) == date(2024, 4, 15)
        assert next_due_date("monthly", 15, from_date=date(2024, 3, 20)) == date(2024, 4, 15)

    def test_monthly_clamps_in_following_month(self):
        assert next_due_date("monthly", 31, from_date=date(2024, 3, 31)) == date(2024, 4, 30)

    def test_monthly_crosses_year_end(self):
        assert next_due_date("monthly", 10, from_date=date(2024, 12, 20)) == date(2025, 1, 10)

    def test_bimonthly_steps_two_months(self):
        assert next_due_date("bimonthly", 5, from_date=date(2024, 1, 10)) == date(2024, 3, 5)

    def test_quarterly_steps_three_months(self):
        assert next_due_date("quarterly", 31, from_date=date(2024, 1, 31)) == date(2024, 4, 30)
        assert next_due_date("quarterly", 1, from_date=date(2024, 11, 15)) == date(2025, 2, 1)

    def test_quarterly_skips_rest_of_current_month(self):
        """Only monthly runs look at from_date's own month."""
        assert next_due_date("quarterly", 15, from_date=date(2024, 2, 1)) == date(2024, 5, 15)
        assert next_due_date("quarterly", 31, from_date=date(2024, 10, 5)) == date(2025, 1, 31)

    def test_bimonthly_skips_rest_of_current_month(self):
        assert next_due_date("bimonthly", 31, from_date=date(2024, 1, 10)) == date(2024, 3, 31)
        assert next_due_date("bimonthly", 20, from_date=date(2024, 12, 1)) == date(2025, 2, 20)

    def test_monthly_uses_current_month_when_day_ahead(self):
        assert next_due_date("monthly", 15, from_date=date(2024, 2, 1)) == date(2024, 2, 15)

    def test_default_from_date_is_utc_today(self, monkeypatch):
        monkeypatch.setattr("app.core.schedule.utc_today", lambda: date(2024, 3, 10))
        assert next_due_date("weekly") == date(2024, 3, 17)
        assert next_due_date("quarterly", 20) == date(2024, 6, 20)

    def test_annually_same_date_next_year(self):
        assert next_due_date("annually", from_date=date(2024, 5, 17)) == date(2025, 5, 17)

    def test_annually_from_leap_day(self):
        assert next_due_date("annually", from_date=date(2024, 2, 29)) == date(2025, 2, 28)

    def test_deterministic(self):
        first = next_due_date("quarterly", 30, from_date=date(2024, 8, 31))
        second = next_due_date("quarterly", 30, from_date=date(2024, 8, 31))
        assert first == second == date(2024, 11, 30)

    def test_missing_recurring_day(self):
        with pytest.raises(InvalidScheduleError):
            next_due_date("monthly", None, from_date=date(2024, 1, 1))

    @pytest.mark.parametrize("day", [0, 32, -1])
    def test_out_of_range_recurring_day(self, day):
        with pytest.raises(InvalidScheduleError):
            next_due_date("monthly", day, from_date=date(2024, 1, 1))

    def test_unknown_frequency(self):
        with pytest.raises(InvalidScheduleError):
            next_due_date("fortnightly", from_date=date(2024, 1, 1))


class TestScheduleHelpers:
    def test_days_in_month(self):
        assert days_in_month(2024, 2) == 29
        assert days_in_month(2023, 2) == 28
        assert days_in_month(2024, 4) == 30

    def test_requires_recurring_day(self):
        assert requires_recurring_day("monthly")
        assert requires_recurring_day(RunFrequency.QUARTERLY)
        assert not requires_recurring_day("weekly")
        assert not requires_recurring_day("once")


class TestValidateSchedule:
    """Definition-time schedule validation."""

    def test_due_before_start_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_schedule("once", None, date(2024, 5, 2), date(2024, 5, 1))
        assert exc_info.value.fields == ["due_date"]

    def test_monthly_requires_recurring_day(self):
        with pytest.raises(ScheduleError) as exc_info:
            validate_schedule("monthly", None, date(2024, 1, 1), date(2024, 1, 31))
        assert exc_info.value.fields == ["recurring_day"]

    def test_recurring_day_out_of_range(self):
        with pytest.raises(ScheduleError) as exc_info:
            validate_schedule("monthly", 40, date(2024, 1, 1), date(2024, 1, 31))
        assert exc_info.value.fields == ["recurring_day"]

    def test_once_has_no_next_due_date(self):
        assert validate_schedule("once", None, date(2024, 1, 1), date(2024, 1, 31)) is None

    def test_recurring_returns_following_due_date(self):
        assert validate_schedule("monthly", 31, date(2024, 1, 1), date(2024, 1, 31)) == date(2024, 2, 29)
