"""Operations offered to front ends (CLI, UI)."""

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from . import schedule as schedule_engine
from .config import Settings
from .errors import AgentCtlError, ValidationError
from .executor import CommandExecutor
from .launchctl import Launchctl
from .models import Domain, JobDefinition, JobView, ScheduleDraft
from .parser import scan_definitions
from .reconcile import LiveRefresh, ReconciliationService
from .writer import DefinitionWriter

logger = logging.getLogger(__name__)


class AgentManager:
    """Request/response facade over the reconciliation, writer and control layers."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        executor: Optional[CommandExecutor] = None,
        uid: Optional[int] = None,
    ):
        self.settings = settings or Settings()
        self.executor = executor or CommandExecutor()
        self.launchctl = Launchctl(self.settings, self.executor, uid)
        self.reconciler = ReconciliationService(self.settings, self.launchctl)
        self.writer = DefinitionWriter(self.settings)

    # Listing

    def scan(self, scope: Domain = Domain.USER_AGENT) -> List[JobView]:
        """Managed agents in one scope."""
        return self.reconciler.list_managed_agents(scope)

    def refresh(self, limit: Optional[int] = None) -> List[JobView]:
        """Every job in every scope."""
        return self.reconciler.list_all_jobs(limit)

    def watch(self, on_update, interval: Optional[float] = None, on_error=None) -> LiveRefresh:
        """A poll loop over refresh(); the caller runs or starts it and owns stopping it."""
        return LiveRefresh(
            self.refresh,
            on_update,
            interval=self.settings.poll_interval if interval is None else interval,
            on_error=on_error,
        )

    def locate(self, label: str, domain: Domain = Domain.USER_AGENT) -> Optional[JobDefinition]:
        for definition in scan_definitions(self.settings.directories_for(domain)):
            if definition.label == label:
                return definition
        return None

    def _require(self, label: str, domain: Domain) -> JobDefinition:
        definition = self.locate(label, domain)
        if definition is None or definition.path is None:
            raise ValidationError(f"No {domain.title.lower()} definition found for {label}")
        return definition

    # Editing

    def create_or_update(self, draft: ScheduleDraft) -> JobDefinition:
        """Validate, write to the user agents directory, then reload the job."""
        definition = self.writer.create_or_update(draft)
        self.launchctl.reload(definition.label, definition.path, Domain.USER_AGENT)
        logger.info("Saved %s", definition.label)
        return definition

    def rewrite(self, path, draft: ScheduleDraft, schedule_only: bool = False, apply: bool = True) -> JobDefinition:
        """Merge a draft into an existing definition file and optionally reload it."""
        definition = self.writer.rewrite_file(path, draft, schedule_only=schedule_only)
        if apply:
            domain = definition.domain if definition.domain != Domain.UNKNOWN else Domain.USER_AGENT
            self.launchctl.reload(definition.label, definition.path, domain)
        return definition

    def draft_for(self, label: str, domain: Domain = Domain.USER_AGENT) -> ScheduleDraft:
        return schedule_engine.draft_from_definition(self._require(label, domain))

    # Control

    def load(self, label: str, domain: Domain = Domain.USER_AGENT) -> None:
        definition = self._require(label, domain)
        self.launchctl.load(definition.path, domain)

    def unload(self, label: str, domain: Domain = Domain.USER_AGENT) -> None:
        definition = self.locate(label, domain)
        self.launchctl.unload(label, domain, definition.path if definition else None)

    def kickstart(self, label: str, domain: Domain = Domain.USER_AGENT) -> None:
        self.launchctl.kickstart(label, domain)

    def reload(self, label: str, domain: Domain = Domain.USER_AGENT) -> None:
        definition = self._require(label, domain)
        self.launchctl.reload(label, definition.path, domain)

    def remove(self, label: str) -> bool:
        """Unload a user agent and delete its definition file."""
        definition = self.locate(label, Domain.USER_AGENT)
        path = definition.path if definition else self.writer.path_for(label)
        self.launchctl.unload(label, Domain.USER_AGENT, definition.path if definition else None)
        return self.writer.remove(path)

    # Schedules

    def describe(self, schedule) -> str:
        return schedule_engine.describe(schedule)

    def next_run(self, schedule, now: Optional[datetime] = None) -> Optional[datetime]:
        return schedule_engine.next_run(schedule, now)

    # Diagnostics

    def diagnostics(self, now: Optional[datetime] = None) -> str:
        """Plain-text report of the job manager's view of this session."""
        now = now or datetime.now()
        lines = ["launchctl diagnostics", f"Generated: {now.strftime('%Y-%m-%d %H:%M:%S')}"]

        commands: List[Tuple[str, List[str]]] = [
            ("/usr/bin/whoami", []),
            (self.settings.launchctl_path, ["manageruid"]),
            (self.settings.launchctl_path, ["managerpid"]),
            (self.settings.launchctl_path, ["list"]),
        ]
        for path, args in commands:
            lines.append("")
            lines.append(f"$ {' '.join([path] + args)}")
            try:
                result = self.executor.run(path, args, timeout=self.settings.command_timeout)
            except AgentCtlError as e:
                lines.append(f"failed: {e}")
                continue
            lines.append(f"status={result.status}")
            lines.append(result.stdout.strip() or "(no stdout)")
            if result.stderr.strip():
                lines.append(f"stderr: {result.stderr.strip()}")

        return "\n".join(lines)
