"""Exceptions raised by worktree-dev."""

from typing import List, Optional


class WorktreeDevError(Exception):
    """Base class for errors the CLI reports as a single line."""


class ConfigError(WorktreeDevError):
    """The worktree config file is missing, malformed or inconsistent."""


class UnknownWorktreeError(WorktreeDevError):
    """Raised in strict mode when a worktree has no registered profile."""

    def __init__(self, identifier: str, config_path: Optional[str] = None):
        self.identifier = identifier
        self.config_path = config_path
        where = config_path or "worktrees.yaml"
        super().__init__(
            f"No profile registered for worktree '{identifier}'. "
            f"Add it to {where} or drop --strict to use the default profile."
        )


class RuntimeUnavailableError(WorktreeDevError):
    """The container runtime (Docker) cannot be reached."""

    def __init__(self, detail: str = ""):
        message = "Container runtime not available: Docker is not running. Please start Docker."
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class ContainerCommandError(WorktreeDevError):
    """A docker command exited with a non-zero status."""

    def __init__(self, command: List[str], returncode: int, stderr: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr.strip()
        super().__init__(
            f"'{' '.join(command)}' failed with exit code {returncode}"
            + (f": {self.stderr}" if self.stderr else "")
        )


class AppSetupError(WorktreeDevError):
    """The wrapped application directory is missing something the launch needs."""
