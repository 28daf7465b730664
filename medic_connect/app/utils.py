from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List

CENT = Decimal("0.01")

WEEKDAY_NAMES = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

DAY_MAP = {
    "M": "monday",
    "T": "tuesday",
    "W": "wednesday",
    "Th": "thursday",
    "F": "friday",
    "Sa": "saturday",
    "Su": "sunday"
}


def parse_time_string(time_str):
    """Helper function to parse time strings in either 'HH:MM' or 'h:mma' formats."""
    if isinstance(time_str, time):
        return time_str.replace(second=0, microsecond=0)
    value = str(time_str).strip()
    for fmt in ("%H:%M", "%H:%M:%S", "%I%p", "%I:%M%p"):
        try:
            return datetime.strptime(value, fmt).time()  # Handle '10:00', '8am', '4:30pm'
        except ValueError:
            continue
    raise ValueError(f"Unrecognised time of day: {time_str!r}")


def parse_weekday(day) -> str:
    """Accept a full English day name or one of the short codes from DAY_MAP."""
    value = str(getattr(day, "value", day)).strip()
    if value in DAY_MAP:
        return DAY_MAP[value]
    if value.lower() not in WEEKDAY_NAMES:
        raise ValueError(f"Unrecognised day of week: {day!r}")
    return value.lower()


def weekday_of(day: date) -> str:
    return WEEKDAY_NAMES[day.weekday()]


def expand_day_range(days) -> List[str]:
    """Expand 'M-F' style ranges into the covered weekday names."""
    days = str(getattr(days, "value", days))
    if "-" not in days:
        return [parse_weekday(days)]
    start_day, end_day = days.split("-")
    start_idx = WEEKDAY_NAMES.index(parse_weekday(start_day))
    end_idx = WEEKDAY_NAMES.index(parse_weekday(end_day)) + 1
    if start_idx >= end_idx:
        raise ValueError(f"Day range must run forward within one week: {days!r}")
    return WEEKDAY_NAMES[start_idx:end_idx]


def normalize_schedule(raw: Dict) -> Dict[str, tuple]:
    """
    Normalize a weekly schedule mapping into {weekday name: sorted tuple of times}.

    :param raw: keys are day names, short codes or ranges ('M-F'); values are iterables of time strings.
    :return: mapping with empty days dropped. Duplicate times collapse since slot identity is the (day, time) pair.
    """
    schedule = {}
    for days, times in (raw or {}).items():
        for day in expand_day_range(days):
            schedule.setdefault(day, set()).update(parse_time_string(t) for t in times)
    return {day: tuple(sorted(slots)) for day, slots in schedule.items() if slots}


def date_range(start: date, days: int) -> Iterable[date]:
    current_date = start
    for _ in range(days):
        yield current_date
        current_date += timedelta(days=1)
