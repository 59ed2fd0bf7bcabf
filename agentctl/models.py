"""Data models for job definitions, schedules and live job state."""

from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional, Set, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, PositiveInt

from .errors import ValidationError

LABEL_FORBIDDEN_CHARS = ("/", "\\", ":", "\0")


class Domain(str, Enum):
    """Job manager domains a definition can live in."""
    USER_AGENT = "user_agent"
    SYSTEM_AGENT = "system_agent"
    SYSTEM_DAEMON = "system_daemon"
    UNKNOWN = "unknown"

    @property
    def title(self) -> str:
        return {
            Domain.USER_AGENT: "User",
            Domain.SYSTEM_AGENT: "System Agent",
            Domain.SYSTEM_DAEMON: "System Daemon",
            Domain.UNKNOWN: "Unknown",
        }[self]


class JobState(str, Enum):
    """Runtime state derived on every reconciliation pass."""
    RUNNING = "running"
    LOADED_IDLE = "loaded"
    CRASHED = "crashed"
    UNLOADED = "unloaded"

    @property
    def title(self) -> str:
        return {
            JobState.RUNNING: "Running",
            JobState.LOADED_IDLE: "Loaded",
            JobState.CRASHED: "Crashed",
            JobState.UNLOADED: "Unloaded",
        }[self]


class ScheduleMode(str, Enum):
    CALENDAR = "calendar"
    INTERVAL = "interval"


class IntervalUnit(str, Enum):
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"

    @property
    def seconds_multiplier(self) -> int:
        return {
            IntervalUnit.MINUTES: 60,
            IntervalUnit.HOURS: 3600,
            IntervalUnit.DAYS: 86400,
        }[self]


class ScopeDirectory(BaseModel):
    """A directory of definition files belonging to one domain."""
    model_config = ConfigDict(frozen=True)

    domain: Domain
    path: Path


class CalendarEntry(BaseModel):
    """One calendar trigger. weekday is 0-6 with 0 = Sunday; None means every day."""
    model_config = ConfigDict(frozen=True)

    weekday: Optional[int] = Field(default=None, ge=0, le=6)
    hour: int = Field(ge=0, le=23)
    minute: int = Field(ge=0, le=59)


class ManualSchedule(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["manual"] = "manual"


class IntervalSchedule(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["interval"] = "interval"
    seconds: PositiveInt


class CalendarSchedule(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["calendar"] = "calendar"
    entries: Tuple[CalendarEntry, ...] = ()


ScheduleSpec = Annotated[
    Union[ManualSchedule, IntervalSchedule, CalendarSchedule],
    Field(discriminator="kind"),
]


class JobDefinition(BaseModel):
    """A parsed definition file.

    ``extra`` holds every top-level key this tool does not control, in file
    order, so it can be written back unchanged.
    """
    label: str
    path: Optional[Path] = None
    domain: Domain = Domain.UNKNOWN
    program: Optional[str] = None
    arguments: List[str] = Field(default_factory=list)
    run_at_load: bool = False
    schedule: ScheduleSpec = Field(default_factory=ManualSchedule)
    extra: Dict[str, Any] = Field(default_factory=dict)
    raw_keys: List[str] = Field(default_factory=list)

    @property
    def environment_variables(self) -> Dict[str, str]:
        value = self.extra.get("EnvironmentVariables")
        if not isinstance(value, dict):
            return {}
        return {str(k): str(v) for k, v in value.items()}

    @property
    def mach_services(self) -> List[str]:
        value = self.extra.get("MachServices")
        if not isinstance(value, dict):
            return []
        return sorted(str(k) for k in value)

    @property
    def keep_alive_description(self) -> Optional[str]:
        if "KeepAlive" not in self.extra:
            return None
        value = self.extra["KeepAlive"]
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, dict):
            return ", ".join(sorted(str(k) for k in value))
        return str(value)

    @property
    def command(self) -> str:
        return " ".join([self.program or ""] + self.arguments).strip()


class LiveJobRecord(BaseModel):
    """One row of the job manager's live listing."""
    label: str
    pid: Optional[int] = None
    exit_code: Optional[int] = None


class ReconciledEntry(BaseModel):
    definition: JobDefinition
    is_loaded: bool = False


class JobView(BaseModel):
    """A definition joined with live state."""
    id: str
    label: str
    domain: Domain = Domain.UNKNOWN
    path: Optional[Path] = None
    definition: Optional[JobDefinition] = None
    live: Optional[LiveJobRecord] = None
    state: JobState = JobState.UNLOADED

    @property
    def pid(self) -> Optional[int]:
        return self.live.pid if self.live else None

    @property
    def exit_code(self) -> Optional[int]:
        return self.live.exit_code if self.live else None

    @property
    def program(self) -> Optional[str]:
        return self.definition.program if self.definition else None

    @property
    def arguments(self) -> List[str]:
        return list(self.definition.arguments) if self.definition else []

    @property
    def run_at_load(self) -> Optional[bool]:
        return self.definition.run_at_load if self.definition else None

    @property
    def schedule(self) -> Union[ManualSchedule, IntervalSchedule, CalendarSchedule]:
        return self.definition.schedule if self.definition else ManualSchedule()

    @property
    def has_schedule(self) -> bool:
        return not isinstance(self.schedule, ManualSchedule)

    @property
    def is_loaded(self) -> bool:
        return self.state != JobState.UNLOADED

    @property
    def pid_text(self) -> str:
        return "-" if self.pid is None else str(self.pid)

    @property
    def exit_code_text(self) -> str:
        return "-" if self.exit_code is None else str(self.exit_code)


class CommandResult(BaseModel):
    """Captured output of an external command. A non-zero status is not an error."""
    stdout: str = ""
    stderr: str = ""
    status: int = 0


class ScheduleDraft(BaseModel):
    """Mutable builder used while creating or editing a scheduled job."""
    label: str = "com.agentctl.schedule.sample"
    command_path: str = "/usr/bin/say"
    arguments: str = "Launch control ready"
    run_at_load: bool = False

    mode: ScheduleMode = ScheduleMode.CALENDAR
    hour: int = 9
    minute: int = 0
    weekdays: Set[int] = Field(default_factory=lambda: {1, 2, 3, 4, 5})

    interval_seconds: int = 900

    def argument_list(self) -> List[str]:
        return self.arguments.split()

    def validated(self, label_prefix: str = "com.", min_interval: int = 60) -> "ScheduleDraft":
        """Return a trimmed copy, or raise ValidationError describing the first problem."""
        label = self.label.strip()
        command_path = self.command_path.strip()

        if not label:
            raise ValidationError("Label is required")
        if label_prefix and not label.startswith(label_prefix):
            raise ValidationError(f"Label must start with {label_prefix}")
        # the label is also the definition's file name
        if any(c in label for c in LABEL_FORBIDDEN_CHARS) or label.startswith("."):
            raise ValidationError("Label must not contain path separators")
        if not command_path:
            raise ValidationError("Command path is required")

        weekdays = set()
        if self.mode == ScheduleMode.INTERVAL:
            if self.interval_seconds < min_interval:
                raise ValidationError(f"Interval must be >= {min_interval} seconds")
        else:
            if not 0 <= self.hour <= 23:
                raise ValidationError("Hour must be in 0...23")
            if not 0 <= self.minute <= 59:
                raise ValidationError("Minute must be in 0...59")
            for day in self.weekdays:
                if not 0 <= day <= 7:
                    raise ValidationError("Weekday must be in 0...7")
                # 7 is an alias for Sunday
                weekdays.add(day % 7)

        return self.model_copy(
            update={
                "label": label,
                "command_path": command_path,
                "arguments": self.arguments.strip(),
                "weekdays": weekdays if self.mode == ScheduleMode.CALENDAR else set(self.weekdays),
            }
        )
