"""Per-worktree PostgreSQL container lifecycle."""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, List, Optional, Tuple

from rich.console import Console

from .errors import ContainerCommandError, RuntimeUnavailableError
from .profiles import DatabaseSettings, WorktreeProfile
from .runtime import ContainerRuntime, ContainerState

console = Console()
logger = logging.getLogger(__name__)

READY_ATTEMPTS = 30
READY_INTERVAL = 1.0


class EnsureAction(Enum):
    ALREADY_RUNNING = "already_running"
    STARTED = "started"
    CREATED = "created"


@dataclass
class EnsureResult:
    """What ``ensure_running`` did, and whether the database answered in time."""
    profile: WorktreeProfile
    action: EnsureAction
    ready: bool = True


class DatabaseManager:
    """Start, stop, reset and report on worktree database containers."""

    def __init__(
        self,
        runtime: ContainerRuntime,
        settings: Optional[DatabaseSettings] = None,
        sleep: Callable[[float], None] = time.sleep,
        attempts: int = READY_ATTEMPTS,
        interval: float = READY_INTERVAL,
    ):
        self.runtime = runtime
        self.settings = settings or DatabaseSettings()
        self.sleep = sleep
        self.attempts = attempts
        self.interval = interval

    def require_runtime(self) -> None:
        """Fail fast when Docker is not reachable."""
        if not self.runtime.is_available():
            raise RuntimeUnavailableError()

    def ensure_running(self, profile: WorktreeProfile) -> EnsureResult:
        name = profile.container_name
        console.print(f"[blue]Starting database for worktree: {profile.display_name}[/blue]")
        console.print(f"[dim]  Container: {name}  Port: {profile.database_port}[/dim]")

        state = self.runtime.container_state(name)
        if state is ContainerState.RUNNING:
            console.print("[green]  ✅ Database already running[/green]")
            return EnsureResult(profile, EnsureAction.ALREADY_RUNNING)

        if state is ContainerState.STOPPED:
            console.print("[yellow]  Starting existing container...[/yellow]")
            self.runtime.start(name)
            console.print("[green]  ✅ Database started[/green]")
            return EnsureResult(profile, EnsureAction.STARTED)

        console.print("[yellow]  Creating new container...[/yellow]")
        self.runtime.run_database(name, profile.database_port, self.settings)
        console.print("[green]  ✅ Database created and started[/green]")
        console.print("[yellow]  Waiting for database to be ready...[/yellow]")

        ready = self.wait_until_ready(profile)
        if ready:
            console.print("[green]  ✅ Database is ready[/green]")
        else:
            console.print("[red]  ⚠️  Database may not be ready, continuing anyway[/red]")
        return EnsureResult(profile, EnsureAction.CREATED, ready=ready)

    def wait_until_ready(self, profile: WorktreeProfile) -> bool:
        for attempt in range(1, self.attempts + 1):
            if self.runtime.is_database_ready(profile.container_name, self.settings.user):
                logger.debug("%s ready after %d attempt(s)", profile.container_name, attempt)
                return True
            if attempt < self.attempts:
                self.sleep(self.interval)
        logger.warning(
            "%s not ready after %d attempts", profile.container_name, self.attempts
        )
        return False

    def stop(self, profile: WorktreeProfile) -> bool:
        """Stop the container if it is running. Returns whether it was running."""
        name = profile.container_name
        console.print(f"[blue]Stopping database: {name}[/blue]")
        if self.runtime.container_state(name) is not ContainerState.RUNNING:
            console.print("[yellow]  ℹ️  Database not running[/yellow]")
            return False
        self.runtime.stop(name)
        console.print("[green]  ✅ Database stopped[/green]")
        return True

    def reset(self, profile: WorktreeProfile) -> EnsureResult:
        """Delete the container and its data, then create it again."""
        name = profile.container_name
        console.print(f"[yellow]⚠️  Cleaning database: {name}[/yellow]")
        console.print("[yellow]  This will DELETE ALL DATA![/yellow]")

        if self.runtime.container_state(name) is ContainerState.NOT_CREATED:
            console.print("[yellow]  ℹ️  Container doesn't exist[/yellow]")
        else:
            console.print("[red]  Removing container...[/red]")
            self.runtime.remove(name)
            console.print("[green]  ✅ Container removed[/green]")

        console.print("[blue]  Recreating database...[/blue]")
        return self.ensure_running(profile)

    def status(
        self, profiles: Iterable[WorktreeProfile]
    ) -> List[Tuple[WorktreeProfile, ContainerState]]:
        return [(p, self.runtime.container_state(p.container_name)) for p in profiles]

    def stop_all(
        self, profiles: Iterable[WorktreeProfile]
    ) -> List[Tuple[WorktreeProfile, Optional[ContainerCommandError]]]:
        """Stop every running container, carrying on past individual failures."""
        console.print("[blue]Stopping all databases...[/blue]")
        results = []
        for profile in profiles:
            name = profile.container_name
            try:
                if self.runtime.container_state(name) is ContainerState.RUNNING:
                    console.print(f"[yellow]  Stopping {name}...[/yellow]")
                    self.runtime.stop(name)
                results.append((profile, None))
            except ContainerCommandError as e:
                console.print(f"[red]  ❌ Could not stop {name}: {e}[/red]")
                results.append((profile, e))

        failed = [profile for profile, error in results if error is not None]
        if failed:
            console.print(
                f"[red]⚠️  Could not stop {len(failed)} of {len(results)} databases: "
                f"{', '.join(p.container_name for p in failed)}[/red]"
            )
        else:
            console.print("[green]✅ All databases stopped[/green]")
        return results
