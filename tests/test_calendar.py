"""Tests for the working calendar and schedules (cmms.services.calendar)."""
from datetime import date, datetime, time, timezone

import pytest

from cmms.models.models import CompanyBlackoutDay, NationalHoliday, PersonWorkSchedule
from cmms.services import calendar as cal
from cmms.services.errors import CalendarUnavailable, ValidationError


def utc(day, hour=0, minute=0, month=1):
    return datetime(2025, month, day, hour, minute, tzinfo=timezone.utc)


class TestHolidays:
    """Built-in Romanian holidays."""

    @pytest.mark.parametrize("year,expected", [(2024, date(2024, 5, 5)), (2025, date(2025, 4, 20)), (2026, date(2026, 4, 12))])
    def test_orthodox_easter(self, year, expected):
        """Should compute Orthodox Easter Sunday."""
        assert cal.orthodox_easter(year) == expected

    def test_easter_block(self):
        """Should close Good Friday, Easter Sunday and Easter Monday."""
        assert set(cal.easter_holidays(2025)) == {date(2025, 4, 18), date(2025, 4, 20), date(2025, 4, 21)}

    def test_builtin_includes_fixed_days(self):
        """Should list fixed holidays of the year."""
        holidays = cal.builtin_holidays(2025)
        assert holidays[date(2025, 12, 1)] == "Ziua Nationala"
        assert date(2025, 1, 6) in holidays


class TestDbWorkingCalendar:
    """Working days and scheduled minutes from the calendar tables."""

    def test_weekends_and_holidays_are_not_working(self, db):
        """Should skip weekends and built-in holidays."""
        calendar = cal.DbWorkingCalendar(db)
        assert calendar.is_working_day(date(2025, 1, 8))
        assert not calendar.is_working_day(date(2025, 1, 11))
        assert not calendar.is_working_day(date(2025, 1, 6))

    def test_table_rows_close_days(self, db):
        """Should honour active national holidays and blackout days only."""
        db.add(NationalHoliday(day=date(2025, 3, 10), name="Extra", is_active=True))
        db.add(CompanyBlackoutDay(day=date(2025, 3, 11), name="Inventory", is_active=True))
        db.add(CompanyBlackoutDay(day=date(2025, 3, 12), name="Cancelled", is_active=False))
        db.commit()
        calendar = cal.DbWorkingCalendar(db)
        assert not calendar.is_working_day(date(2025, 3, 10))
        assert not calendar.is_working_day(date(2025, 3, 11))
        assert calendar.is_working_day(date(2025, 3, 12))

    def test_next_working_day(self, db):
        """Should skip the holiday cluster at the start of January."""
        calendar = cal.DbWorkingCalendar(db)
        assert calendar.get_next_working_day(date(2025, 1, 1)) == date(2025, 1, 3)
        assert calendar.get_next_working_day(date(2025, 1, 6)) == date(2025, 1, 8)

    def test_unit_minutes_for_one_day(self, db):
        """Should give the default unit day of nine hours."""
        calendar = cal.DbWorkingCalendar(db)
        assert calendar.get_scheduled_minutes(utc(8), utc(9)) == 540

    def test_person_minutes_and_partial_window(self, db, person):
        """Should use the person's default shift and clip it to the window."""
        calendar = cal.DbWorkingCalendar(db)
        assert calendar.get_scheduled_minutes(utc(8), utc(9), person.id) == 510
        # Shift is 06:00-14:30 UTC in winter Bucharest time
        assert calendar.get_scheduled_minutes(utc(8, 12), utc(9), person.id) == 150

    def test_holiday_has_no_capacity(self, db, person):
        """Should schedule nothing on a holiday."""
        calendar = cal.DbWorkingCalendar(db)
        assert calendar.get_scheduled_minutes(utc(6), utc(7), person.id) == 0

    def test_empty_window(self, db):
        """Should return zero when to is not after from."""
        assert cal.DbWorkingCalendar(db).get_scheduled_minutes(utc(9), utc(8)) == 0

    def test_unknown_timezone_raises(self, db, person):
        """Should raise CalendarUnavailable for a person with an unknown timezone."""
        db.add(PersonWorkSchedule(person_id=person.id, timezone="Mars/Olympus"))
        db.commit()
        with pytest.raises(CalendarUnavailable) as exc:
            cal.DbWorkingCalendar(db).get_scheduled_minutes(utc(8), utc(9), person.id)
        assert exc.value.timezone == "Mars/Olympus"


class TestPersonSchedule:
    """Shift windows per person."""

    def test_default_shift(self, db, person):
        """Should fall back to the configured default shift."""
        window = cal.DbPersonSchedule(db).get_shift_window(person.id, date(2025, 1, 8))
        assert window == cal.ShiftWindow(time(8), time(16, 30), "Europe/Bucharest")
        assert window.bounds_utc(date(2025, 1, 8)) == (utc(8, 6), utc(8, 14, 30))

    def test_weekend_without_shift(self, db, person):
        """Should return None on days the person does not work."""
        assert cal.DbPersonSchedule(db).get_shift_window(person.id, date(2025, 1, 11)) is None

    def test_night_shift_crosses_midnight(self):
        """Should end a night shift on the next day."""
        window = cal.ShiftWindow(time(22), time(6), "UTC")
        assert window.bounds_utc(date(2025, 1, 8)) == (utc(8, 22), utc(9, 6))

    def test_saved_schedule(self, db, person):
        """Should store and use a custom schedule."""
        cal.save_person_schedule(db, person.id, {
            "mon_fri_start": time(6),
            "mon_fri_end": time(14),
            "sat_start": time(8),
            "sat_end": time(12),
            "timezone": "UTC",
        })
        schedule = cal.DbPersonSchedule(db)
        assert schedule.get_timezone(person.id) == "UTC"
        assert schedule.get_shift_window(person.id, date(2025, 1, 11)) == cal.ShiftWindow(time(8), time(12), "UTC")

    @pytest.mark.parametrize(
        "values,message",
        [
            ({"mon_fri_start": time(8)}, "Provide both"),
            ({"mon_fri_start": time(16), "mon_fri_end": time(8)}, "must be after"),
            ({"mon_fri_start": time(8), "mon_fri_end": time(16), "timezone": "Nowhere/City"}, "unknown timezone"),
        ],
    )
    def test_invalid_schedule(self, db, person, values, message):
        """Should reject incomplete pairs, inverted hours and unknown timezones."""
        with pytest.raises(ValidationError, match=message):
            cal.save_person_schedule(db, person.id, values)


class TestAdministration:
    """Closed day listing and the unit schedule."""

    def test_list_closed_days(self, db):
        """Should merge built-in days with table rows."""
        cal.upsert_closed_day(db, CompanyBlackoutDay, date(2025, 8, 14), "Bridge day")
        days = cal.list_closed_days(db, 2025)
        assert {"day": date(2025, 8, 14), "name": "Bridge day", "source": "blackout"} in days
        assert [d["day"] for d in days] == sorted(d["day"] for d in days)

    def test_deactivate_closed_day(self, db):
        """Should hide a deactivated day and reject unknown ones."""
        cal.upsert_closed_day(db, NationalHoliday, date(2025, 3, 10), "Extra")
        cal.deactivate_closed_day(db, NationalHoliday, date(2025, 3, 10))
        assert cal.DbWorkingCalendar(db).is_working_day(date(2025, 3, 10))
        with pytest.raises(ValidationError):
            cal.deactivate_closed_day(db, NationalHoliday, date(2025, 3, 17))

    def test_unit_schedule_changes_capacity(self, db):
        """Should use the saved unit hours."""
        assert cal.get_unit_schedule(db).mon_fri_end == time(17)
        cal.save_unit_schedule(db, {"mon_fri_start": time(7), "mon_fri_end": time(15)})
        assert cal.DbWorkingCalendar(db).get_scheduled_minutes(utc(8), utc(9)) == 480
