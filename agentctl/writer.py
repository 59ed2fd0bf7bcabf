"""Create and rewrite launchd definition files."""

import logging
import os
import plistlib
import shutil
from pathlib import Path
from typing import Any, Dict, Optional

from .config import Settings
from .errors import JobIOError
from .models import Domain, JobDefinition, ScheduleDraft, ScheduleMode
from .parser import (
    CALENDAR_KEY,
    INTERVAL_KEY,
    LABEL_KEY,
    PROGRAM_ARGUMENTS_KEY,
    PROGRAM_KEY,
    RUN_AT_LOAD_KEY,
    DEFINITION_SUFFIX,
    load_plist,
    parse_dictionary,
    read_plist,
)

logger = logging.getLogger(__name__)


def calendar_value(hour: int, minute: int, weekdays) -> Any:
    """StartCalendarInterval value: one dict when daily, else one dict per weekday."""
    days = sorted({day % 7 for day in weekdays})
    if not days:
        return {"Hour": hour, "Minute": minute}
    return [{"Weekday": day, "Hour": hour, "Minute": minute} for day in days]


def apply_schedule(dictionary: Dict[str, Any], draft: ScheduleDraft) -> None:
    """Set exactly one of the interval or calendar keys."""
    if draft.mode == ScheduleMode.INTERVAL:
        dictionary.pop(CALENDAR_KEY, None)
        dictionary[INTERVAL_KEY] = draft.interval_seconds
    else:
        dictionary.pop(INTERVAL_KEY, None)
        dictionary[CALENDAR_KEY] = calendar_value(draft.hour, draft.minute, draft.weekdays)


def apply_draft(dictionary: Dict[str, Any], draft: ScheduleDraft, include_program: bool = True) -> Dict[str, Any]:
    """Overwrite the keys agentctl controls, leaving every other key as it was."""
    dictionary[LABEL_KEY] = draft.label
    if include_program:
        dictionary[PROGRAM_ARGUMENTS_KEY] = [draft.command_path] + draft.argument_list()
        if PROGRAM_KEY in dictionary:
            dictionary[PROGRAM_KEY] = draft.command_path
    dictionary[RUN_AT_LOAD_KEY] = draft.run_at_load
    apply_schedule(dictionary, draft)
    return dictionary


def new_definition(draft: ScheduleDraft, logs_dir: Path) -> Dict[str, Any]:
    """Fields for a definition created from scratch."""
    dictionary = apply_draft({}, draft)
    dictionary["ProcessType"] = "Background"
    dictionary["StandardOutPath"] = str(Path(logs_dir) / f"{draft.label}.out.log")
    dictionary["StandardErrorPath"] = str(Path(logs_dir) / f"{draft.label}.err.log")
    return dictionary


def dump_plist(dictionary: Dict[str, Any]) -> bytes:
    try:
        return plistlib.dumps(dictionary, fmt=plistlib.FMT_XML, sort_keys=False)
    except (TypeError, ValueError, OverflowError) as e:
        raise JobIOError(f"Cannot serialize definition: {e}") from e


def rewrite(existing: bytes, draft: ScheduleDraft, path: Optional[Path] = None) -> bytes:
    """Merge a draft into existing definition bytes."""
    return dump_plist(apply_draft(load_plist(existing, path), draft))


def rewrite_schedule_and_run_at_load(existing: bytes, draft: ScheduleDraft, path: Optional[Path] = None) -> bytes:
    """Like rewrite(), but the program and its arguments are left alone."""
    return dump_plist(apply_draft(load_plist(existing, path), draft, include_program=False))


def write_atomic(path: Path, data: bytes) -> None:
    """Write via a temporary file and rename so readers never see a partial file."""
    path = Path(path)
    temp_file = path.with_suffix(".tmp")
    try:
        with open(temp_file, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        if path.exists():
            shutil.copymode(path, temp_file)
        temp_file.replace(path)
    except OSError as e:
        try:
            temp_file.unlink()
        except OSError:
            pass
        raise JobIOError(f"Cannot write {path}: {e.strerror or e}", path=str(path)) from e


class DefinitionWriter:
    """Writes user-scope definitions."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()

    def _validate(self, draft: ScheduleDraft) -> ScheduleDraft:
        return draft.validated(
            label_prefix=self.settings.label_prefix,
            min_interval=self.settings.min_interval_seconds,
        )

    def ensure_directory(self) -> Path:
        directory = self.settings.user_agents_dir
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise JobIOError(f"Cannot create {directory}: {e.strerror or e}", path=str(directory)) from e
        return directory

    def path_for(self, label: str) -> Path:
        return self.settings.user_agents_dir / f"{label}{DEFINITION_SUFFIX}"

    def create_or_update(self, draft: ScheduleDraft) -> JobDefinition:
        """Validate a draft and write it to <user agents>/<label>.plist.

        An existing file with the same name is merged rather than replaced.
        """
        valid = self._validate(draft)
        self.ensure_directory()
        path = self.path_for(valid.label)

        if path.exists():
            dictionary = apply_draft(read_plist(path), valid)
            logger.info("Updating %s", path)
        else:
            dictionary = new_definition(valid, self.settings.logs_dir)
            logger.info("Creating %s", path)

        write_atomic(path, dump_plist(dictionary))
        return parse_dictionary(dictionary, path=path, domain=Domain.USER_AGENT)

    def rewrite_file(self, path: Path, draft: ScheduleDraft, schedule_only: bool = False) -> JobDefinition:
        """Validate a draft and merge it into the definition at ``path``."""
        valid = self._validate(draft)
        path = Path(path)
        try:
            existing = path.read_bytes()
        except OSError as e:
            raise JobIOError(f"Cannot read {path}: {e.strerror or e}", path=str(path)) from e

        if schedule_only:
            data = rewrite_schedule_and_run_at_load(existing, valid, path)
        else:
            data = rewrite(existing, valid, path)
        write_atomic(path, data)
        logger.info("Rewrote %s", path)
        return parse_dictionary(load_plist(data, path), path=path, domain=self.settings.domain_for_path(path))

    def remove(self, path: Path) -> bool:
        """Delete a definition file. Returns False if it was already gone."""
        path = Path(path)
        if not path.exists():
            return False
        try:
            path.unlink()
        except OSError as e:
            raise JobIOError(f"Cannot remove {path}: {e.strerror or e}", path=str(path)) from e
        logger.info("Removed %s", path)
        return True
