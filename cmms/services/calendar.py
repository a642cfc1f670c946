"""
Working calendar and shift schedules.

Closed days: fixed national holidays, Orthodox Easter (Good Friday, Sunday, Monday),
rows in national_holidays and company_blackout_days. Unit and person schedules give the
working hours per weekday in local time; a missing row falls back to the configured defaults.
"""
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional, Protocol, Set, Tuple, Union

import pytz
import structlog
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import CompanyBlackoutDay, NationalHoliday, PersonWorkSchedule, UnitWorkSchedule
from .errors import CalendarUnavailable, ValidationError
from .time_rules import combine_date_time, ensure_utc, get_timezone, local_days, minutes_between, parse_hhmm, utcnow

log = structlog.get_logger(__name__)

UNIT_SCOPE = "unit"
Scope = Union[str, uuid.UUID]

# (month, day)
FIXED_HOLIDAYS = {
    (1, 1): "Anul Nou",
    (1, 2): "Anul Nou",
    (1, 6): "Boboteaza",
    (1, 7): "Sf. Ion",
    (1, 24): "Unirea Principatelor",
    (5, 1): "Ziua Muncii",
    (6, 1): "Ziua Copilului",
    (8, 15): "Adormirea Maicii Domnului",
    (11, 30): "Sf. Andrei",
    (12, 1): "Ziua Nationala",
    (12, 25): "Craciun",
    (12, 26): "Craciun",
}

# weekday (0=Monday) -> (start, end) in local time, or None when not working
WeekWindows = List[Optional[Tuple[time, time]]]


@dataclass(frozen=True)
class ShiftWindow:
    start: time
    end: time
    timezone: str

    def bounds_utc(self, day: date) -> Tuple[datetime, datetime]:
        start = combine_date_time(day, self.start, self.timezone)
        end = combine_date_time(day, self.end, self.timezone)
        if end <= start:
            end = combine_date_time(day + timedelta(days=1), self.end, self.timezone)
        return start, end


class WorkingCalendar(Protocol):
    def is_working_day(self, day: date) -> bool:
        ...

    def get_scheduled_minutes(self, from_utc: datetime, to_utc: datetime, scope: Scope = UNIT_SCOPE) -> float:
        ...


class PersonSchedule(Protocol):
    def get_shift_window(self, person_id: uuid.UUID, day: date) -> Optional[ShiftWindow]:
        ...

    def get_timezone(self, person_id: uuid.UUID) -> str:
        ...


def orthodox_easter(year: int) -> date:
    """Orthodox Easter Sunday (Meeus Julian algorithm, converted to the Gregorian calendar)."""
    a = year % 4
    b = year % 7
    c = year % 19
    d = (19 * c + 15) % 30
    e = (2 * a + 4 * b - d + 34) % 7
    month = (d + e + 114) // 31
    day = ((d + e + 114) % 31) + 1
    julian_offset = year // 100 - year // 400 - 2
    return date(year, month, day) + timedelta(days=julian_offset)


def easter_holidays(year: int) -> Dict[date, str]:
    sunday = orthodox_easter(year)
    return {
        sunday - timedelta(days=2): "Vinerea Mare",
        sunday: "Pastele",
        sunday + timedelta(days=1): "A doua zi de Paste",
    }


def builtin_holidays(year: int) -> Dict[date, str]:
    holidays = {date(year, month, day): name for (month, day), name in FIXED_HOLIDAYS.items()}
    holidays.update(easter_holidays(year))
    return holidays


def _windows(mon_fri: Tuple[time, time], sat: Optional[Tuple[time, time]], sun: Optional[Tuple[time, time]]) -> WeekWindows:
    return [mon_fri] * 5 + [sat, sun]


def _pair(start: Optional[time], end: Optional[time]) -> Optional[Tuple[time, time]]:
    if start is None or end is None:
        return None
    return start, end


def _default_window(start_text: str, end_text: str) -> Tuple[time, time]:
    try:
        return parse_hhmm(start_text), parse_hhmm(end_text)
    except ValueError:
        raise CalendarUnavailable(f"invalid default schedule '{start_text}-{end_text}'")


def default_unit_windows() -> WeekWindows:
    return _windows(_default_window(settings.unit_day_start, settings.unit_day_end), None, None)


def default_person_windows() -> WeekWindows:
    return _windows(_default_window(settings.person_day_start, settings.person_day_end), None, None)


def _checked_timezone(name: Optional[str]) -> str:
    try:
        get_timezone(name)
    except pytz.UnknownTimeZoneError:
        raise CalendarUnavailable(f"unknown timezone '{name}'", timezone=name)
    return name.strip()


def unit_timezone() -> str:
    return _checked_timezone(settings.tz_default)


def unit_schedule_windows(db: Session) -> Tuple[str, WeekWindows]:
    timezone = unit_timezone()
    row = db.query(UnitWorkSchedule).first()
    if row is None:
        return timezone, default_unit_windows()
    return timezone, _windows(
        (row.mon_fri_start, row.mon_fri_end),
        _pair(row.sat_start, row.sat_end),
        _pair(row.sun_start, row.sun_end),
    )


def person_schedule_windows(db: Session, person_id: uuid.UUID) -> Tuple[str, WeekWindows]:
    """
    Timezone and weekly windows for one person.

    Raises:
        CalendarUnavailable: when the stored timezone is unknown
    """
    row = db.query(PersonWorkSchedule).filter(PersonWorkSchedule.person_id == person_id).first()
    if row is None:
        return _checked_timezone(settings.tz_default), default_person_windows()
    return _checked_timezone(row.timezone), _windows(
        (row.mon_fri_start, row.mon_fri_end),
        _pair(row.sat_start, row.sat_end),
        _pair(row.sun_start, row.sun_end),
    )


def scheduled_minutes(
    from_utc: datetime,
    to_utc: datetime,
    timezone: str,
    windows: WeekWindows,
    closed_days: Set[date],
) -> float:
    """Minutes of the weekly windows falling inside [from_utc, to_utc), skipping closed days."""
    from_utc = ensure_utc(from_utc)
    to_utc = ensure_utc(to_utc)
    total = 0.0
    for day in local_days(from_utc, to_utc, timezone):
        if day in closed_days:
            continue
        window = windows[day.weekday()]
        if window is None:
            continue
        start, end = ShiftWindow(window[0], window[1], timezone).bounds_utc(day)
        lo = max(start, from_utc)
        hi = min(end, to_utc)
        if hi > lo:
            total += minutes_between(lo, hi)
    return total


class DbWorkingCalendar:
    """Working calendar backed by the calendar tables."""

    def __init__(self, db: Session):
        self.db = db
        self._closed_cache: Dict[int, Set[date]] = {}

    def closed_days(self, first: date, last: date) -> Set[date]:
        closed: Set[date] = set()
        for year in range(first.year, last.year + 1):
            if year not in self._closed_cache:
                self._closed_cache[year] = self._load_closed_days(year)
            closed |= self._closed_cache[year]
        return {d for d in closed if first <= d <= last}

    def _load_closed_days(self, year: int) -> Set[date]:
        first, last = date(year, 1, 1), date(year, 12, 31)
        closed = set(builtin_holidays(year))
        for model in (NationalHoliday, CompanyBlackoutDay):
            rows = (
                self.db.query(model.day)
                .filter(model.is_active.is_(True), model.day >= first, model.day <= last)
                .all()
            )
            closed.update(row.day for row in rows)
        return closed

    def is_closed_day(self, day: date) -> bool:
        return day in self.closed_days(day, day)

    def is_working_day(self, day: date) -> bool:
        if day.weekday() >= 5:
            return False
        return not self.is_closed_day(day)

    def get_next_working_day(self, day: date) -> date:
        current = day
        for _ in range(366):
            if self.is_working_day(current):
                return current
            current += timedelta(days=1)
        return day

    def get_scheduled_minutes(self, from_utc: datetime, to_utc: datetime, scope: Scope = UNIT_SCOPE) -> float:
        """
        Scheduled working minutes in [from_utc, to_utc).

        Args:
            scope: "unit" for the unit schedule, or a person id for that person's schedule

        Raises:
            CalendarUnavailable: when the scope's timezone cannot be resolved
        """
        if ensure_utc(to_utc) <= ensure_utc(from_utc):
            return 0.0
        if scope == UNIT_SCOPE:
            timezone, windows = unit_schedule_windows(self.db)
        else:
            timezone, windows = person_schedule_windows(self.db, scope)
        days = local_days(from_utc, to_utc, timezone)
        closed = self.closed_days(days[0], days[-1]) if days else set()
        return scheduled_minutes(from_utc, to_utc, timezone, windows, closed)


class DbPersonSchedule:
    def __init__(self, db: Session):
        self.db = db

    def get_shift_window(self, person_id: uuid.UUID, day: date) -> Optional[ShiftWindow]:
        timezone, windows = person_schedule_windows(self.db, person_id)
        window = windows[day.weekday()]
        if window is None:
            return None
        return ShiftWindow(window[0], window[1], timezone)

    def get_timezone(self, person_id: uuid.UUID) -> str:
        timezone, _ = person_schedule_windows(self.db, person_id)
        return timezone


def default_shift_window(day: date) -> Optional[ShiftWindow]:
    """Default person shift evaluated in UTC; used when a person's schedule cannot be resolved."""
    window = default_person_windows()[day.weekday()]
    if window is None:
        return None
    return ShiftWindow(window[0], window[1], "UTC")


def fallback_scheduled_minutes(
    calendar: WorkingCalendar,
    from_utc: datetime,
    to_utc: datetime,
    scope: Scope = UNIT_SCOPE,
) -> float:
    """Scheduled minutes with the default schedule in UTC."""
    windows = default_unit_windows() if scope == UNIT_SCOPE else default_person_windows()
    days = local_days(from_utc, to_utc, "UTC")
    closed = {d for d in days if d.weekday() < 5 and not calendar.is_working_day(d)}
    return scheduled_minutes(from_utc, to_utc, "UTC", windows, closed)


# ---------------- Calendar administration ----------------

def list_closed_days(db: Session, year: int) -> List[dict]:
    """Built-in holidays plus active table rows for one year, sorted by day."""
    rows = [
        {"day": day, "name": name, "source": "builtin"}
        for day, name in builtin_holidays(year).items()
    ]
    first, last = date(year, 1, 1), date(year, 12, 31)
    for model, source in ((NationalHoliday, "national"), (CompanyBlackoutDay, "blackout")):
        for row in (
            db.query(model)
            .filter(model.is_active.is_(True), model.day >= first, model.day <= last)
            .all()
        ):
            rows.append({"day": row.day, "name": row.name, "source": source})
    rows.sort(key=lambda r: (r["day"], r["source"]))
    return rows


def upsert_closed_day(db: Session, model, day: date, name: Optional[str]):
    row = db.query(model).filter(model.day == day).first()
    if row is None:
        row = model(day=day, name=name, is_active=True)
        db.add(row)
    else:
        row.name = name
        row.is_active = True
    db.commit()
    db.refresh(row)
    log.info("calendar.closed_day_set", table=model.__tablename__, day=day.isoformat())
    return row


def deactivate_closed_day(db: Session, model, day: date) -> None:
    row = db.query(model).filter(model.day == day).first()
    if row is None:
        raise ValidationError(f"no entry for {day.isoformat()}")
    row.is_active = False
    db.commit()
    log.info("calendar.closed_day_removed", table=model.__tablename__, day=day.isoformat())


def _check_pair(label: str, start: Optional[time], end: Optional[time], required: bool) -> None:
    if (start is None) != (end is None):
        raise ValidationError(f"Provide both {label}_start and {label}_end, or neither.")
    if required and start is None:
        raise ValidationError(f"{label}_start and {label}_end are required.")
    if start is not None and end <= start:
        raise ValidationError(f"{label}_end must be after {label}_start.")


def get_unit_schedule(db: Session) -> UnitWorkSchedule:
    row = db.query(UnitWorkSchedule).first()
    if row is None:
        mon_fri = default_unit_windows()[0]
        row = UnitWorkSchedule(mon_fri_start=mon_fri[0], mon_fri_end=mon_fri[1])
    return row


def save_unit_schedule(db: Session, values: dict) -> UnitWorkSchedule:
    _check_pair("mon_fri", values.get("mon_fri_start"), values.get("mon_fri_end"), required=True)
    _check_pair("sat", values.get("sat_start"), values.get("sat_end"), required=False)
    _check_pair("sun", values.get("sun_start"), values.get("sun_end"), required=False)
    row = db.query(UnitWorkSchedule).first()
    if row is None:
        row = UnitWorkSchedule()
        db.add(row)
    for key in ("mon_fri_start", "mon_fri_end", "sat_start", "sat_end", "sun_start", "sun_end"):
        setattr(row, key, values.get(key))
    row.updated_at = utcnow()
    db.commit()
    db.refresh(row)
    return row


def get_person_schedule(db: Session, person_id: uuid.UUID) -> PersonWorkSchedule:
    row = db.query(PersonWorkSchedule).filter(PersonWorkSchedule.person_id == person_id).first()
    if row is None:
        mon_fri = default_person_windows()[0]
        row = PersonWorkSchedule(
            person_id=person_id,
            mon_fri_start=mon_fri[0],
            mon_fri_end=mon_fri[1],
            timezone=settings.tz_default,
        )
    return row


def save_person_schedule(db: Session, person_id: uuid.UUID, values: dict) -> PersonWorkSchedule:
    _check_pair("mon_fri", values.get("mon_fri_start"), values.get("mon_fri_end"), required=True)
    _check_pair("sat", values.get("sat_start"), values.get("sat_end"), required=False)
    _check_pair("sun", values.get("sun_start"), values.get("sun_end"), required=False)
    timezone = (values.get("timezone") or settings.tz_default).strip()
    try:
        get_timezone(timezone)
    except pytz.UnknownTimeZoneError:
        raise ValidationError(f"unknown timezone '{timezone}'")

    row = db.query(PersonWorkSchedule).filter(PersonWorkSchedule.person_id == person_id).first()
    if row is None:
        row = PersonWorkSchedule(person_id=person_id)
        db.add(row)
    for key in ("mon_fri_start", "mon_fri_end", "sat_start", "sat_end", "sun_start", "sun_end"):
        setattr(row, key, values.get(key))
    row.timezone = timezone
    db.commit()
    db.refresh(row)
    return row
