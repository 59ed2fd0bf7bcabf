"""Join definition files with live job manager state."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Iterable, List, Optional

from .config import Settings
from .launchctl import Launchctl
from .models import Domain, JobDefinition, JobState, JobView, LiveJobRecord
from .parser import scan_definitions

logger = logging.getLogger(__name__)


def derive_state(pid: Optional[int], exit_code: Optional[int], known: bool) -> JobState:
    """State from PID presence, job manager membership and last exit code."""
    if pid is not None and pid > 0:
        return JobState.RUNNING
    if known:
        if exit_code is not None and exit_code != 0:
            return JobState.CRASHED
        return JobState.LOADED_IDLE
    return JobState.UNLOADED


def join(definitions: Iterable[JobDefinition], live: Iterable[LiveJobRecord], include_orphans: bool = True) -> List[JobView]:
    """Pure join of two snapshots.

    Definitions are never deduplicated across scopes. Live labels with no
    definition become views with domain UNKNOWN when ``include_orphans`` is set.
    """
    live_by_label: Dict[str, LiveJobRecord] = {record.label: record for record in live}
    views = []
    attached = set()

    for definition in definitions:
        record = live_by_label.get(definition.label)
        views.append(
            JobView(
                id=f"{definition.domain.value}::{definition.label}::{definition.path}",
                label=definition.label,
                domain=definition.domain,
                path=definition.path,
                definition=definition,
                live=record,
                state=derive_state(
                    record.pid if record else None,
                    record.exit_code if record else None,
                    record is not None,
                ),
            )
        )
        attached.add(definition.label)

    if include_orphans:
        for record in live_by_label.values():
            if record.label in attached:
                continue
            views.append(
                JobView(
                    id=f"{Domain.UNKNOWN.value}::{record.label}",
                    label=record.label,
                    domain=Domain.UNKNOWN,
                    live=record,
                    state=derive_state(record.pid, record.exit_code, True),
                )
            )
    return views


class ReconciliationService:
    """Builds fresh JobView lists. Holds no state between calls."""

    def __init__(self, settings: Optional[Settings] = None, launchctl: Optional[Launchctl] = None):
        self.settings = settings or Settings()
        self.launchctl = launchctl or Launchctl(self.settings)

    def _snapshot(self, directories):
        # The live listing and the directory scan are independent reads
        with ThreadPoolExecutor(max_workers=1) as pool:
            live_future = pool.submit(self.launchctl.list_live)
            definitions = scan_definitions(directories)
            live = live_future.result()
        return definitions, live

    def list_all_jobs(self, limit: Optional[int] = None) -> List[JobView]:
        """Every definition in every scope plus every live label."""
        definitions, live = self._snapshot(self.settings.scope_directories())
        views = join(definitions, live)
        views.sort(key=lambda v: (v.label, v.domain.title))
        return views[:limit] if limit is not None else views

    def list_managed_agents(self, scope: Domain = Domain.USER_AGENT, limit: Optional[int] = None) -> List[JobView]:
        """Definitions in one scope whose label carries the managed prefix."""
        definitions, live = self._snapshot(self.settings.directories_for(scope))
        managed = [d for d in definitions if d.label.startswith(self.settings.managed_prefix)]
        views = join(managed, live, include_orphans=False)
        views.sort(key=lambda v: (v.label, str(v.path)))
        return views[:limit] if limit is not None else views

    def find(self, label: str, domain: Optional[Domain] = None) -> List[JobView]:
        return [
            view for view in self.list_all_jobs()
            if view.label == label and (domain is None or view.domain == domain)
        ]


class LiveRefresh:
    """Poll loop that re-runs a reconciliation pass every ``interval`` seconds.

    stop() takes effect between passes; a command already running is allowed
    to finish or time out.
    """

    def __init__(
        self,
        refresh: Callable[[], List[JobView]],
        on_update: Callable[[List[JobView]], None],
        interval: float = 2.0,
        on_error: Optional[Callable[[Exception], None]] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        self.refresh = refresh
        self.on_update = on_update
        self.interval = interval
        self.on_error = on_error
        self.stop_event = stop_event or threading.Event()
        self._thread: Optional[threading.Thread] = None

    def run(self, max_passes: Optional[int] = None) -> int:
        """Run passes until stopped; returns the number of passes made."""
        passes = 0
        while not self.stop_event.is_set():
            try:
                self.on_update(self.refresh())
            except Exception as e:
                logger.error("Refresh failed: %s", e)
                if self.on_error:
                    self.on_error(e)
            passes += 1
            if max_passes is not None and passes >= max_passes:
                break
            self.stop_event.wait(self.interval)
        return passes

    def start(self) -> threading.Thread:
        self._thread = threading.Thread(target=self.run, name="agentctl-refresh", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = None) -> None:
        self.stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
