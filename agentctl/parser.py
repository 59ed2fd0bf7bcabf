"""Read launchd definition files into JobDefinition models."""

import logging
import plistlib
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set
from xml.parsers.expat import ExpatError

from .errors import JobIOError
from .models import (
    CalendarEntry,
    CalendarSchedule,
    Domain,
    IntervalSchedule,
    JobDefinition,
    ManualSchedule,
    ReconciledEntry,
    ScopeDirectory,
)

logger = logging.getLogger(__name__)

LABEL_KEY = "Label"
PROGRAM_KEY = "Program"
PROGRAM_ARGUMENTS_KEY = "ProgramArguments"
RUN_AT_LOAD_KEY = "RunAtLoad"
INTERVAL_KEY = "StartInterval"
CALENDAR_KEY = "StartCalendarInterval"

# Keys owned by agentctl; everything else passes through untouched.
CONTROLLED_KEYS = (
    LABEL_KEY,
    PROGRAM_KEY,
    PROGRAM_ARGUMENTS_KEY,
    RUN_AT_LOAD_KEY,
    INTERVAL_KEY,
    CALENDAR_KEY,
)

DEFINITION_SUFFIX = ".plist"
_INT_RE = re.compile(r"^[+-]?\d+$")


def load_plist(data: bytes, path: Optional[Path] = None) -> Dict[str, Any]:
    """Decode plist bytes (XML or binary) into a top-level dictionary."""
    where = str(path) if path else "<bytes>"
    try:
        value = plistlib.loads(data)
    except ExpatError as e:
        raise JobIOError(f"Invalid plist: {where}: {e}", path=str(path) if path else None) from e
    except Exception as e:
        # plistlib surfaces some malformed values (e.g. <date>) as AttributeError
        raise JobIOError(f"Invalid plist: {where}: {e!r}", path=str(path) if path else None) from e
    if not isinstance(value, dict):
        raise JobIOError(f"Unexpected plist format: {where}", path=str(path) if path else None)
    return value


def read_plist(path: Path) -> Dict[str, Any]:
    """Read a definition file from disk."""
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        raise JobIOError(f"Cannot read {path}: {e.strerror or e}", path=str(path)) from e
    return load_plist(data, path)


def coerce_int(value: Any) -> Optional[int]:
    """Best-effort integer from plist integers, reals and numeric strings."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        text = value.strip()
        if _INT_RE.match(text):
            return int(text)
        try:
            number = float(text)
        except ValueError:
            return None
        return int(number) if number.is_integer() else None
    return None


def parse_calendar_entry(raw: Any) -> Optional[CalendarEntry]:
    if not isinstance(raw, dict):
        return None

    hour = coerce_int(raw.get("Hour"))
    minute = coerce_int(raw.get("Minute"))
    weekday = coerce_int(raw.get("Weekday"))
    if "Weekday" in raw and weekday is None:
        return None

    hour = 0 if hour is None else hour
    minute = 0 if minute is None else minute
    if weekday == 7:
        weekday = 0

    if not 0 <= hour <= 23 or not 0 <= minute <= 59:
        return None
    if weekday is not None and not 0 <= weekday <= 6:
        return None
    return CalendarEntry(weekday=weekday, hour=hour, minute=minute)


def parse_schedule(dictionary: Dict[str, Any], label: str = ""):
    """Normalize the schedule keys of a definition.

    StartInterval wins over StartCalendarInterval when both are present.
    """
    interval = coerce_int(dictionary.get(INTERVAL_KEY))
    if interval is not None and interval > 0:
        if CALENDAR_KEY in dictionary:
            logger.warning(
                "%s defines both %s and %s; using the interval",
                label or "definition", INTERVAL_KEY, CALENDAR_KEY,
            )
        return IntervalSchedule(seconds=interval)

    raw = dictionary.get(CALENDAR_KEY)
    if isinstance(raw, dict):
        raw = [raw]
    if isinstance(raw, list):
        entries = [entry for entry in (parse_calendar_entry(item) for item in raw) if entry is not None]
        if entries:
            return CalendarSchedule(entries=tuple(entries))

    return ManualSchedule()


def parse_dictionary(
    dictionary: Dict[str, Any],
    path: Optional[Path] = None,
    domain: Domain = Domain.UNKNOWN,
) -> Optional[JobDefinition]:
    """Build a JobDefinition, or None when there is no usable label."""
    label = dictionary.get(LABEL_KEY)
    if not isinstance(label, str) or not label.strip():
        return None

    raw_args = dictionary.get(PROGRAM_ARGUMENTS_KEY)
    argv: List[str] = []
    if isinstance(raw_args, list) and all(isinstance(a, str) for a in raw_args):
        argv = list(raw_args)

    program = dictionary.get(PROGRAM_KEY)
    if not isinstance(program, str) or not program:
        program = argv[0] if argv else None

    run_at_load = dictionary.get(RUN_AT_LOAD_KEY)

    return JobDefinition(
        label=label,
        path=path,
        domain=domain,
        program=program,
        arguments=argv[1:],
        run_at_load=run_at_load if isinstance(run_at_load, bool) else False,
        schedule=parse_schedule(dictionary, label),
        extra={k: v for k, v in dictionary.items() if k not in CONTROLLED_KEYS},
        raw_keys=sorted(dictionary),
    )


def parse(data: bytes, path: Optional[Path] = None, domain: Domain = Domain.UNKNOWN) -> Optional[JobDefinition]:
    """Parse definition bytes. Raises JobIOError if the bytes are not a plist dictionary."""
    return parse_dictionary(load_plist(data, path), path=path, domain=domain)


def parse_file(path: Path, domain: Domain = Domain.UNKNOWN) -> Optional[JobDefinition]:
    path = Path(path)
    return parse_dictionary(read_plist(path), path=path, domain=domain)


def definition_files(directory: Path) -> List[Path]:
    """Visible *.plist files in a directory; empty if it does not exist."""
    directory = Path(directory)
    if not directory.is_dir():
        return []
    try:
        children = list(directory.iterdir())
    except OSError as e:
        logger.warning("Cannot list %s: %s", directory, e.strerror or e)
        return []
    return sorted(
        p for p in children
        if p.suffix == DEFINITION_SUFFIX and not p.name.startswith(".") and p.is_file()
    )


def scan_definitions(directories: Iterable[ScopeDirectory]) -> List[JobDefinition]:
    """Parse every definition in the given directories, skipping bad files."""
    definitions = []
    for scope in directories:
        for path in definition_files(scope.path):
            try:
                definition = parse_file(path, scope.domain)
            except JobIOError as e:
                logger.warning("Skipping %s: %s", path, e)
                continue
            if definition is None:
                logger.debug("Skipping %s: no label", path)
                continue
            definitions.append(definition)
    return definitions


def scan(directories: Iterable[ScopeDirectory], live_labels: Set[str]) -> List[ReconciledEntry]:
    """Parse definitions and mark which ones the job manager knows about.

    Sorted by label, then path.
    """
    entries = [
        ReconciledEntry(definition=d, is_loaded=d.label in live_labels)
        for d in scan_definitions(directories)
    ]
    entries.sort(key=lambda e: (e.definition.label, str(e.definition.path)))
    return entries
