"""CLI interface for agentctl."""

import logging
import re
import sys
from pathlib import Path
from typing import Optional, Tuple

import click

from . import schedule as schedule_engine
from .config import Settings
from .errors import AgentCtlError
from .manager import AgentManager
from .models import Domain, IntervalUnit, JobState, ScheduleDraft, ScheduleMode
from .parser import parse_file

LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"
HHMM_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")
DOMAIN_CHOICES = [d.value for d in Domain if d != Domain.UNKNOWN]


# Global manager instance
_manager: Optional[AgentManager] = None


def setup_logging(level: str = "WARNING", log_file: Optional[Path] = None) -> logging.Logger:
    logger = logging.getLogger("agentctl")
    if logger.handlers:
        return logger
    logger.setLevel(level.upper())
    formatter = logging.Formatter(LOG_FORMAT)
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)
    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    return logger


def get_manager() -> AgentManager:
    """Get or create the manager instance."""
    global _manager
    if _manager is None:
        _manager = AgentManager(Settings())
    return _manager


def _fail(message: str) -> None:
    click.echo(f"✗ {message}", err=True)
    sys.exit(1)


def _parse_time(ctx, param, value: Optional[str]) -> Optional[Tuple[int, int]]:
    if value is None:
        return None
    match = HHMM_RE.match(value.strip())
    if not match:
        raise click.BadParameter("expected HH:MM")
    return int(match.group(1)), int(match.group(2))


def _format_next_run(view_schedule) -> str:
    when = schedule_engine.next_run(view_schedule)
    return when.strftime("%Y-%m-%d %H:%M") if when else "-"


def _apply_options(draft: ScheduleDraft, label, command, args, run_at_load, at, weekdays, every, unit) -> ScheduleDraft:
    if label is not None:
        draft.label = label
    if command is not None:
        draft.command_path = command
    if args is not None:
        draft.arguments = args
    if run_at_load is not None:
        draft.run_at_load = run_at_load
    if every is not None:
        draft.mode = ScheduleMode.INTERVAL
        draft.interval_seconds = schedule_engine.to_interval_seconds(every, unit)
    elif at is not None or weekdays:
        draft.mode = ScheduleMode.CALENDAR
    if at is not None:
        draft.hour, draft.minute = at
    if weekdays:
        draft.weekdays = set(weekdays)
    return draft


def draft_options(func):
    """Options shared by `schedule create` and `schedule edit`."""
    options = [
        click.option("--label", help="Job label, e.g. com.agentctl.schedule.backup"),
        click.option("--command", "command", help="Executable path"),
        click.option("--args", "args", help="Arguments, split on whitespace"),
        click.option("--run-at-load/--no-run-at-load", default=None, help="Also run when loaded"),
        click.option("--at", callback=_parse_time, help="Time of day (HH:MM)"),
        click.option("--weekday", "weekdays", multiple=True, type=click.IntRange(0, 7),
                     help="Weekday 0-7 (0 and 7 are Sunday); repeatable"),
        click.option("--every", type=click.IntRange(min=1), help="Run every N units instead of at a time"),
        click.option("--unit", type=click.Choice([u.value for u in IntervalUnit]),
                     default=IntervalUnit.MINUTES.value, show_default=True),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Log debug output")
def cli(verbose: bool):
    """agentctl - manage scheduled launchd jobs"""
    settings = get_manager().settings
    setup_logging("DEBUG" if verbose else settings.log_level, settings.log_file)


@cli.command()
@click.option("--state", type=click.Choice([s.value for s in JobState]), help="Filter by state")
@click.option("--domain", type=click.Choice(DOMAIN_CHOICES + [Domain.UNKNOWN.value]), help="Filter by domain")
@click.option("--limit", default=50, help="Maximum jobs to display")
def jobs(state: Optional[str], domain: Optional[str], limit: int):
    """List every job, loaded or not.

    Example:
        agentctl jobs --state crashed
    """
    try:
        views = get_manager().refresh()
    except AgentCtlError as e:
        _fail(str(e))

    if state:
        views = [v for v in views if v.state == JobState(state)]
    if domain:
        views = [v for v in views if v.domain == Domain(domain)]
    views = views[:limit]

    if not views:
        click.echo("No jobs found")
        return

    click.echo(f"\n{'Label':<50} {'Domain':<14} {'State':<10} {'PID':<8} {'Exit':<6}")
    click.echo("-" * 92)
    for view in views:
        click.echo(
            f"{view.label:<50} {view.domain.title:<14} {view.state.title:<10} "
            f"{view.pid_text:<8} {view.exit_code_text:<6}"
        )
    click.echo()


@cli.command()
def agents():
    """List jobs created by agentctl.

    Example:
        agentctl agents
    """
    manager = get_manager()
    try:
        views = manager.scan()
    except AgentCtlError as e:
        _fail(str(e))

    if not views:
        click.echo("No managed agents")
        return

    click.echo(f"\n{'Label':<45} {'Schedule':<24} {'Next Run':<17} {'State':<10}")
    click.echo("-" * 99)
    for view in views:
        click.echo(
            f"{view.label:<45} {manager.describe(view.schedule):<24} "
            f"{_format_next_run(view.schedule):<17} {view.state.title:<10}"
        )
    click.echo()


@cli.group()
def schedule():
    """Create and edit scheduled jobs"""
    pass


@schedule.command()
@draft_options
def create(label, command, args, run_at_load, at, weekdays, every, unit):
    """Create or update a scheduled user agent and load it.

    Example:
        agentctl schedule create --label com.agentctl.schedule.say \\
            --command /usr/bin/say --args hello --at 09:00 --weekday 1 --weekday 5
    """
    manager = get_manager()
    draft = _apply_options(
        ScheduleDraft(label="", command_path="", arguments="", weekdays=set()),
        label, command, args, run_at_load, at, weekdays, every, unit,
    )
    try:
        definition = manager.create_or_update(draft)
    except AgentCtlError as e:
        _fail(str(e))
    click.echo(f"✓ Saved {definition.label} ({manager.describe(definition.schedule)})")
    click.echo(f"  {definition.path}")


@schedule.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@draft_options
@click.option("--schedule-only", is_flag=True, help="Leave the program and arguments untouched")
@click.option("--no-apply", is_flag=True, help="Write the file without reloading the job")
def edit(path, label, command, args, run_at_load, at, weekdays, every, unit, schedule_only, no_apply):
    """Edit an existing definition file, keeping keys agentctl does not manage.

    Example:
        agentctl schedule edit ~/Library/LaunchAgents/com.agentctl.schedule.say.plist --every 2 --unit hours
    """
    manager = get_manager()
    try:
        definition = parse_file(path, manager.settings.domain_for_path(path))
        if definition is None:
            _fail(f"{path} has no Label")
        draft = _apply_options(
            schedule_engine.draft_from_definition(definition),
            label, command, args, run_at_load, at, weekdays, every, unit,
        )
        click.echo(schedule_engine.preview(draft))
        definition = manager.rewrite(path, draft, schedule_only=schedule_only, apply=not no_apply)
    except AgentCtlError as e:
        _fail(str(e))
    click.echo(f"✓ Updated {definition.label} ({manager.describe(definition.schedule)})")


def _control_command(name: str, help_text: str):
    @cli.command(name=name, help=help_text)
    @click.argument("label")
    @click.option("--domain", type=click.Choice(DOMAIN_CHOICES), default=Domain.USER_AGENT.value, show_default=True)
    def command(label: str, domain: str):
        action = getattr(get_manager(), name)
        try:
            action(label, Domain(domain))
        except AgentCtlError as e:
            _fail(str(e))
        click.echo(f"✓ {name.capitalize()} {label}")

    return command


load = _control_command("load", "Load a job's definition into the job manager.")
unload = _control_command("unload", "Unload a job; succeeds if it was not loaded.")
kickstart = _control_command("kickstart", "Restart a loaded job now.")
reload = _control_command("reload", "Unload and load a job again.")


@cli.command()
@click.argument("label")
def remove(label: str):
    """Unload a user agent and delete its definition file.

    Example:
        agentctl remove com.agentctl.schedule.say
    """
    try:
        removed = get_manager().remove(label)
    except AgentCtlError as e:
        _fail(str(e))
    if removed:
        click.echo(f"✓ Removed {label}")
    else:
        click.echo(f"✓ Unloaded {label} (no definition file)")


@cli.command()
@click.option("--interval", type=float, help="Seconds between refreshes")
def watch(interval: Optional[float]):
    """Print job state counts until interrupted.

    Example:
        agentctl watch --interval 5
    """
    def show(views):
        counts = {state: 0 for state in JobState}
        for view in views:
            counts[view.state] += 1
        summary = "  ".join(f"{state.title}: {count}" for state, count in counts.items())
        click.echo(f"{len(views)} jobs  {summary}")

    poller = get_manager().watch(show, interval, on_error=lambda e: click.echo(f"✗ {e}", err=True))
    try:
        poller.run()
    except KeyboardInterrupt:
        poller.stop()
        click.echo("\nStopped")


@cli.command()
def diagnostics():
    """Show what the job manager reports for this session."""
    click.echo(get_manager().diagnostics())


@cli.group()
def config():
    """Show configuration"""
    pass


@config.command()
def show():
    """Show current configuration.

    Example:
        agentctl config show
    """
    settings = get_manager().settings

    click.echo("\nCurrent Configuration:")
    click.echo(f"  user agents:     {settings.user_agents_dir}")
    click.echo(f"  system agents:   {', '.join(str(p) for p in settings.system_agent_dirs)}")
    click.echo(f"  system daemons:  {', '.join(str(p) for p in settings.system_daemon_dirs)}")
    click.echo(f"  launchctl:       {settings.launchctl_path}")
    click.echo(f"  command timeout: {settings.command_timeout:g} seconds")
    click.echo(f"  label prefix:    {settings.label_prefix}")
    click.echo(f"  managed prefix:  {settings.managed_prefix}")
    click.echo(f"  min interval:    {settings.min_interval_seconds} seconds")
    click.echo()


if __name__ == "__main__":
    cli()
