"""Runtime configuration, read from AGENTCTL_* environment variables."""

from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import Domain, ScopeDirectory


class Settings(BaseSettings):
    """agentctl settings."""
    model_config = SettingsConfigDict(env_prefix="AGENTCTL_")

    home_dir: Path = Field(default_factory=Path.home)
    system_agent_dirs: List[Path] = Field(
        default_factory=lambda: [Path("/Library/LaunchAgents"), Path("/System/Library/LaunchAgents")]
    )
    system_daemon_dirs: List[Path] = Field(
        default_factory=lambda: [Path("/Library/LaunchDaemons"), Path("/System/Library/LaunchDaemons")]
    )

    launchctl_path: str = "/bin/launchctl"
    command_timeout: float = 20.0

    label_prefix: str = "com."
    managed_prefix: str = "com.agentctl.schedule."
    min_interval_seconds: int = 60

    poll_interval: float = 2.0

    log_level: str = "WARNING"
    log_file: Optional[Path] = None

    @property
    def user_agents_dir(self) -> Path:
        return self.home_dir / "Library" / "LaunchAgents"

    @property
    def logs_dir(self) -> Path:
        return self.home_dir / "Library" / "Logs"

    def scope_directories(self) -> List[ScopeDirectory]:
        """All definition directories, user scope first."""
        dirs = [ScopeDirectory(domain=Domain.USER_AGENT, path=self.user_agents_dir)]
        dirs += [ScopeDirectory(domain=Domain.SYSTEM_AGENT, path=p) for p in self.system_agent_dirs]
        dirs += [ScopeDirectory(domain=Domain.SYSTEM_DAEMON, path=p) for p in self.system_daemon_dirs]
        return dirs

    def directories_for(self, domain: Domain) -> List[ScopeDirectory]:
        return [d for d in self.scope_directories() if d.domain == domain]

    def domain_for_path(self, path: Path) -> Domain:
        parent = Path(path).parent
        for scope in self.scope_directories():
            if scope.path == parent:
                return scope.domain
        return Domain.UNKNOWN
