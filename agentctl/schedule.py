"""Pure functions over normalized schedules."""

from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple, Union

from .models import (
    CalendarEntry,
    CalendarSchedule,
    IntervalSchedule,
    IntervalUnit,
    JobDefinition,
    ManualSchedule,
    ScheduleDraft,
    ScheduleMode,
)

Schedule = Union[ManualSchedule, IntervalSchedule, CalendarSchedule]

WEEKDAY_NAMES = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]
WEEKDAY_FULL_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]
WORKDAYS = [1, 2, 3, 4, 5]


def weekday_name(value: int) -> str:
    return WEEKDAY_NAMES[value % 7]


def _hhmm(hour: int, minute: int) -> str:
    return f"{hour:02d}:{minute:02d}"


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}" + ("" if count == 1 else "s")


def describe(schedule: Schedule) -> str:
    """Human-readable summary of a schedule."""
    if isinstance(schedule, IntervalSchedule):
        return describe_interval(schedule.seconds)
    if isinstance(schedule, CalendarSchedule):
        return describe_calendar(schedule.entries)
    return "manual"


def describe_interval(seconds: int) -> str:
    if seconds % 86400 == 0:
        return "every " + _plural(seconds // 86400, "day")
    if seconds % 3600 == 0:
        return "every " + _plural(seconds // 3600, "hour")
    if seconds % 60 == 0:
        return f"every {seconds // 60} min"
    return f"every {seconds}s"


def describe_calendar(entries: Iterable[CalendarEntry]) -> str:
    ordered = sorted(
        entries,
        key=lambda e: (-1 if e.weekday is None else e.weekday, e.hour, e.minute),
    )
    if not ordered:
        return "manual"

    compact = _compact_calendar(ordered)
    if compact:
        return compact

    parts = []
    for entry in ordered:
        time_text = _hhmm(entry.hour, entry.minute)
        if entry.weekday is None:
            parts.append(f"Daily {time_text}")
        else:
            parts.append(f"{weekday_name(entry.weekday)} {time_text}")
    return ", ".join(parts)


def _compact_calendar(entries: List[CalendarEntry]) -> Optional[str]:
    """One shared time across all entries collapses to a single phrase."""
    if len({(e.hour, e.minute) for e in entries}) != 1:
        return None

    time_text = _hhmm(entries[0].hour, entries[0].minute)
    weekdays = sorted({e.weekday for e in entries if e.weekday is not None})
    if not weekdays:
        return f"Daily {time_text}"
    if any(e.weekday is None for e in entries):
        return None
    if weekdays == WORKDAYS:
        return f"Mon-Fri {time_text}"
    return ", ".join(weekday_name(d) for d in weekdays) + " " + time_text


def next_run(schedule: Schedule, now: Optional[datetime] = None) -> Optional[datetime]:
    """Predict the next firing time.

    Interval schedules are projected from ``now`` because the job manager's
    real anchor (its last fire time) is not observable.
    """
    if now is None:
        now = datetime.now()

    if isinstance(schedule, IntervalSchedule):
        return now + timedelta(seconds=schedule.seconds)
    if isinstance(schedule, CalendarSchedule):
        candidates = [next_calendar_time(entry, now) for entry in schedule.entries]
        return min(candidates) if candidates else None
    return None


def next_calendar_time(entry: CalendarEntry, now: datetime) -> datetime:
    """First instant strictly after ``now`` that matches the entry."""
    candidate = now.replace(hour=entry.hour, minute=entry.minute, second=0, microsecond=0)

    if entry.weekday is None:
        if candidate <= now:
            candidate += timedelta(days=1)
        return candidate

    # datetime.weekday() is Monday=0; entries use Sunday=0
    today = (now.weekday() + 1) % 7
    candidate += timedelta(days=(entry.weekday - today) % 7)
    if candidate <= now:
        candidate += timedelta(days=7)
    return candidate


def build_calendar(hour: int, minute: int, weekdays: Iterable[int] = ()) -> List[CalendarEntry]:
    """Calendar entries for one time of day on a set of weekdays (empty = daily)."""
    days = sorted({day % 7 for day in weekdays})
    if not days:
        return [CalendarEntry(hour=hour, minute=minute)]
    return [CalendarEntry(weekday=day, hour=hour, minute=minute) for day in days]


def to_interval_seconds(value: int, unit: Union[IntervalUnit, str]) -> int:
    return value * IntervalUnit(unit).seconds_multiplier


def from_interval_seconds(seconds: int) -> Tuple[int, IntervalUnit]:
    """Largest unit that divides ``seconds`` evenly.

    Values that are not whole minutes are rounded to the nearest minute.
    """
    for unit in (IntervalUnit.DAYS, IntervalUnit.HOURS, IntervalUnit.MINUTES):
        if seconds > 0 and seconds % unit.seconds_multiplier == 0:
            return seconds // unit.seconds_multiplier, unit
    return max(1, round(seconds / 60)), IntervalUnit.MINUTES


def draft_to_schedule(draft: ScheduleDraft) -> Schedule:
    if draft.mode == ScheduleMode.INTERVAL:
        return IntervalSchedule(seconds=draft.interval_seconds)
    return CalendarSchedule(entries=tuple(build_calendar(draft.hour, draft.minute, draft.weekdays)))


def draft_from_definition(definition: JobDefinition) -> ScheduleDraft:
    """Prefill an edit form from an existing definition."""
    draft = ScheduleDraft(
        label=definition.label,
        command_path=definition.program or "",
        arguments=" ".join(definition.arguments),
        run_at_load=definition.run_at_load,
    )

    schedule = definition.schedule
    if isinstance(schedule, IntervalSchedule):
        draft.mode = ScheduleMode.INTERVAL
        draft.interval_seconds = schedule.seconds
    elif isinstance(schedule, CalendarSchedule):
        draft.mode = ScheduleMode.CALENDAR
        if schedule.entries:
            draft.hour = schedule.entries[0].hour
            draft.minute = schedule.entries[0].minute
        draft.weekdays = {e.weekday for e in schedule.entries if e.weekday is not None}
    else:
        draft.mode = ScheduleMode.CALENDAR
    return draft


def preview(draft: ScheduleDraft) -> str:
    """Sentence describing what a draft will do once saved."""
    if draft.mode == ScheduleMode.INTERVAL:
        value, unit = from_interval_seconds(draft.interval_seconds)
        text = f"Runs every {value} {unit.value}"
        if value == 1:
            text = text[:-1]
    else:
        days = [WEEKDAY_FULL_NAMES[d % 7] for d in sorted({d % 7 for d in draft.weekdays})]
        day_text = ", ".join(days) if days else "every day"
        text = f"Runs at {_hhmm(draft.hour, draft.minute)} on {day_text}"
    if draft.run_at_load:
        text += " (plus at login)"
    return text
