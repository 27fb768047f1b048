"""Launch Prisma Studio on a worktree's own studio port."""

import logging
from pathlib import Path
from typing import Iterable, List, Optional

from rich.console import Console
from rich.table import Table

from .launcher import build_environment, reconcile_ports
from .profiles import AppSettings, DatabaseSettings, WorktreeProfile
from .runtime import ProcessManager

console = Console()
logger = logging.getLogger(__name__)

GENERATED_DIR = ".wasp"


def studio_command(app: AppSettings, port: int, background: bool = False) -> List[str]:
    command = [part.replace("{port}", str(port)) for part in app.studio_command]
    if background:
        command += ["--browser", "none"]
    return command


def launch_studio(
    profile: WorktreeProfile,
    app: AppSettings,
    processes: ProcessManager,
    app_dir: Path,
    database: Optional[DatabaseSettings] = None,
    background: bool = False,
) -> Optional[int]:
    """Start Studio for ``profile``.

    Foreground mode blocks and returns the exit code; background mode
    detaches and returns None.
    """
    console.print(f"[bold blue]Prisma Studio - {profile.display_name}[/bold blue]")
    console.print(f"[blue]  Database: {profile.container_name}[/blue]")
    console.print(f"[blue]  Studio URL: {profile.studio_url}[/blue]")

    reconcile_ports([profile.studio_port], processes)

    if not (app_dir / GENERATED_DIR).is_dir():
        console.print(f"[yellow]⚠️  Warning: {GENERATED_DIR} directory not found[/yellow]")
        console.print("[yellow]   You may need to run 'wtdev start' first to generate Prisma files[/yellow]")

    env = build_environment(profile, database)
    command = studio_command(app, profile.studio_port, background=background)

    if background:
        pid = processes.spawn_background(command, app_dir, env)
        console.print(f"[green]  ✅ Studio started in background (PID: {pid})[/green]")
        return None

    console.print("[green]  🚀 Starting Prisma Studio...[/green]")
    console.print("[yellow]  Press Ctrl+C to stop[/yellow]")
    return processes.run(command, app_dir, env)


def launch_all_studios(
    profiles: Iterable[WorktreeProfile],
    app: AppSettings,
    processes: ProcessManager,
    app_dir: Path,
    database: Optional[DatabaseSettings] = None,
) -> List[WorktreeProfile]:
    """Start Studio in the background for every profile and list the URLs."""
    started = []
    for profile in profiles:
        launch_studio(profile, app, processes, app_dir, database, background=True)
        started.append(profile)

    table = Table(title="Studio URLs")
    table.add_column("Worktree", style="cyan")
    table.add_column("URL", style="green")
    for profile in started:
        table.add_row(profile.display_name, profile.studio_url)
    console.print(table)
    return started
