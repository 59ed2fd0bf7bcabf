"""Error types raised by agentctl."""

from typing import List, Optional


class AgentCtlError(Exception):
    """Base error for agentctl."""


class ValidationError(AgentCtlError):
    """Bad user input in a schedule draft."""


class JobIOError(AgentCtlError):
    """A definition file could not be read, parsed or written."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class CommandFailed(AgentCtlError):
    """An external command failed to launch or reported an error."""

    def __init__(
        self,
        message: str,
        command: Optional[List[str]] = None,
        status: Optional[int] = None,
        stderr: str = "",
    ):
        super().__init__(message)
        self.command = command or []
        self.status = status
        self.stderr = stderr


class CommandTimeout(AgentCtlError):
    """An external command did not exit before its deadline and was killed."""

    def __init__(self, command: List[str], timeout: float):
        super().__init__(f"Command timeout after {timeout:g}s: {' '.join(command)}")
        self.command = command
        self.timeout = timeout
