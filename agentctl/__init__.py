"""agentctl - manage scheduled launchd jobs."""

__version__ = "1.0.0"
