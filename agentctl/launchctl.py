"""Job control commands against launchctl."""

import logging
import os
import re
from pathlib import Path
from typing import List, Optional, Set

from .config import Settings
from .errors import CommandFailed
from .executor import CommandExecutor
from .models import CommandResult, Domain, LiveJobRecord

logger = logging.getLogger(__name__)

# stderr text meaning the job was not loaded in the first place
ALREADY_ABSENT_RE = re.compile(
    r"no such process|could not find specified service|not loaded",
    re.IGNORECASE,
)


def domain_target(domain: Domain, uid: Optional[int] = None) -> str:
    """launchctl domain target for a job's scope."""
    if domain in (Domain.SYSTEM_AGENT, Domain.SYSTEM_DAEMON):
        return "system"
    if uid is None:
        uid = os.getuid()
    return f"gui/{uid}"


def _optional_int(text: str) -> Optional[int]:
    if text == "-":
        return None
    try:
        return int(text)
    except ValueError:
        return None


def parse_list_output(stdout: str) -> List[LiveJobRecord]:
    """Parse `launchctl list`: a header line, then PID, status and label columns."""
    records = []
    for line in stdout.splitlines()[1:]:
        fields = line.strip().split(None, 2)
        if len(fields) < 3:
            continue
        pid, exit_code, label = fields
        records.append(
            LiveJobRecord(label=label.strip(), pid=_optional_int(pid), exit_code=_optional_int(exit_code))
        )
    return records


def is_already_absent(result: CommandResult) -> bool:
    return bool(ALREADY_ABSENT_RE.search(result.stderr) or ALREADY_ABSENT_RE.search(result.stdout))


class Launchctl:
    """Thin wrapper that sequences launchctl invocations."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        executor: Optional[CommandExecutor] = None,
        uid: Optional[int] = None,
    ):
        self.settings = settings or Settings()
        self.executor = executor or CommandExecutor()
        self.uid = uid

    def target(self, domain: Domain) -> str:
        return domain_target(domain, self.uid)

    def run(self, *args: str) -> CommandResult:
        return self.executor.run(self.settings.launchctl_path, list(args), timeout=self.settings.command_timeout)

    def _fail(self, args, result: CommandResult, fallback: str) -> CommandFailed:
        message = result.stderr.strip() or fallback
        return CommandFailed(
            message,
            command=[self.settings.launchctl_path] + list(args),
            status=result.status,
            stderr=result.stderr,
        )

    def _control(self, args: List[str], fallback: str) -> CommandResult:
        result = self.run(*args)
        if result.status != 0 or result.stderr.strip():
            raise self._fail(args, result, fallback)
        return result

    def list_live(self) -> List[LiveJobRecord]:
        """Jobs currently known to the job manager."""
        result = self.run("list")
        if result.status != 0:
            raise self._fail(["list"], result, "launchctl list failed")
        return parse_list_output(result.stdout)

    def live_labels(self) -> Set[str]:
        return {record.label for record in self.list_live()}

    def load(self, path: Path, domain: Domain = Domain.USER_AGENT) -> None:
        logger.debug("Loading %s into %s", path, self.target(domain))
        self._control(["bootstrap", self.target(domain), str(path)], "bootstrap failed")

    def unload(self, label: str, domain: Domain = Domain.USER_AGENT, path: Optional[Path] = None) -> None:
        """Unload a job. A job that is not loaded is not an error."""
        target = self.target(domain)
        if path is not None:
            args = ["bootout", target, str(path)]
        else:
            args = ["bootout", f"{target}/{label}"]

        result = self.run(*args)
        if result.status == 0 and not result.stderr.strip():
            return
        if is_already_absent(result):
            logger.debug("%s was not loaded", label)
            return
        raise self._fail(args, result, "bootout failed")

    def kickstart(self, label: str, domain: Domain = Domain.USER_AGENT) -> None:
        self._control(["kickstart", "-k", f"{self.target(domain)}/{label}"], "kickstart failed")

    def reload(self, label: str, path: Path, domain: Domain = Domain.USER_AGENT) -> None:
        """Unload then load. A real unload failure stops before loading."""
        self.unload(label, domain, path)
        self.load(path, domain)
