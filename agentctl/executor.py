"""Run external commands with a hard deadline."""

import logging
import subprocess
from concurrent.futures import Future, ThreadPoolExecutor
from typing import List, Optional, Sequence

from .errors import CommandFailed, CommandTimeout
from .models import CommandResult

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class CommandExecutor:
    """Executes commands and captures their output.

    A non-zero exit status is returned to the caller as part of the result.
    Only launch failures and timeouts raise.
    """

    def __init__(self, max_workers: int = 4):
        self._pool: Optional[ThreadPoolExecutor] = None
        self._max_workers = max_workers

    def run(self, executable: str, args: Sequence[str] = (), timeout: float = DEFAULT_TIMEOUT) -> CommandResult:
        """Run a command to completion and return its output."""
        command: List[str] = [executable] + list(args)
        logger.debug("Running %s (timeout %.1fs)", " ".join(command), timeout)

        try:
            # communicate() drains stdout and stderr together while waiting,
            # and run() kills the child before re-raising TimeoutExpired
            completed = subprocess.run(
                command,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            logger.warning("Command timed out after %.1fs: %s", timeout, " ".join(command))
            raise CommandTimeout(command, timeout)
        except OSError as e:
            raise CommandFailed(f"Failed to launch {executable}: {e}", command=command) from e

        return CommandResult(
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            status=completed.returncode,
        )

    def submit(self, executable: str, args: Sequence[str] = (), timeout: float = DEFAULT_TIMEOUT) -> "Future[CommandResult]":
        """Run a command on a background thread."""
        if self._pool is None:
            self._pool = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="agentctl-cmd")
        return self._pool.submit(self.run, executable, args, timeout)

    def shutdown(self) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=True)
            self._pool = None
