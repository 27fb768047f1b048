"""Free a worktree's ports and launch the application with its profile."""

import logging
import os
import shutil
import time
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Optional

from dotenv import set_key
from rich.console import Console
from rich.panel import Panel

from .containers import DatabaseManager
from .errors import AppSetupError
from .profiles import AppSettings, DatabaseSettings, WorktreeProfile
from .runtime import ProcessManager

console = Console()
logger = logging.getLogger(__name__)

SERVER_ENV = ".env.server"
SERVER_ENV_EXAMPLE = ".env.server.example"
CLIENT_ENV = ".env.client"
CLIENT_ENV_TEMPLATE = ".env.client.template"


def build_environment(
    profile: WorktreeProfile,
    database: Optional[DatabaseSettings] = None,
    base_env: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """Return ``base_env`` (default: os.environ) plus the profile's variables."""
    env = dict(os.environ if base_env is None else base_env)
    env.update({
        "WORKTREE_NAME": profile.display_name,
        "PORT": str(profile.backend_port),
        "VITE_PORT": str(profile.frontend_port),
        "FRONTEND_PORT": str(profile.frontend_port),
        "BACKEND_PORT": str(profile.backend_port),
        "CLIENT_URL": profile.client_url,
        "SERVER_URL": profile.server_url,
        "WASP_WEB_CLIENT_URL": profile.client_url,
        "WASP_SERVER_URL": profile.server_url,
        "FRONTEND_URL": profile.client_url,
        "BACKEND_URL": profile.server_url,
        "DATABASE_URL": profile.database_url(database),
    })
    return env


def reconcile_ports(ports: Iterable[int], processes: ProcessManager) -> Dict[int, List[int]]:
    """Kill whatever listens on each port. Returns the pids killed per port."""
    killed = {}
    for port in ports:
        pids = processes.pids_on_port(port)
        if not pids:
            console.print(f"  ℹ️  Port {port} is free")
            killed[port] = []
            continue
        console.print(f"[red]  💀 Killing process on port {port} (PID: {', '.join(map(str, pids))})[/red]")
        for pid in pids:
            processes.kill(pid)
        console.print(f"[green]  ✅ Port {port} freed[/green]")
        killed[port] = pids
    return killed


def write_server_env(
    profile: WorktreeProfile,
    app_dir: Path,
    database: Optional[DatabaseSettings] = None,
) -> Path:
    """Point ``.env.server`` at this worktree's database and URLs."""
    env_file = app_dir / SERVER_ENV
    if not env_file.exists():
        example = app_dir / SERVER_ENV_EXAMPLE
        if not example.exists():
            raise AppSetupError(f"{example} not found, cannot create {env_file}")
        console.print(f"[yellow]  Creating {env_file.name} from example...[/yellow]")
        shutil.copyfile(example, env_file)

    values = {
        "DATABASE_URL": profile.database_url(database),
        "CLIENT_URL": profile.client_url,
        "SERVER_URL": profile.server_url,
    }
    for key, value in values.items():
        set_key(str(env_file), key, value, quote_mode="never")
    logger.debug("Updated %s with %s", env_file, sorted(values))
    return env_file


def write_client_env(profile: WorktreeProfile, app_dir: Path) -> Path:
    """Render ``.env.client`` from its template for the frontend build."""
    template = app_dir / CLIENT_ENV_TEMPLATE
    if not template.exists():
        raise AppSetupError(f"Template {template} not found")

    content = template.read_text()
    content = content.replace("{{SERVER_URL}}", profile.server_url)
    content = content.replace("{{FRONTEND_PORT}}", str(profile.frontend_port))

    env_file = app_dir / CLIENT_ENV
    env_file.write_text(content)
    return env_file


def resolve_app_dir(root: Path, app: AppSettings) -> Path:
    app_dir = root / app.app_dir
    if not app_dir.is_dir():
        raise AppSetupError(f"App directory not found at {app_dir}")
    return app_dir


def show_profile(profile: WorktreeProfile):
    """Print the worktree's resource assignment."""
    lines = [
        f"Name:     [green]{profile.display_name}[/green] ({profile.identifier})",
        f"Frontend: [green]{profile.client_url}[/green]",
        f"Backend:  [green]{profile.server_url}[/green]",
        f"Database: [green]{profile.container_name}[/green] (port {profile.database_port})",
        f"Studio:   [green]{profile.studio_url}[/green]",
    ]
    console.print(Panel("\n".join(lines), title="📍 Worktree Configuration", border_style="blue"))


class Launcher:
    """Runs the start sequence for one worktree.

    ensure database -> free ports -> write env files -> optional clean ->
    start the app in the foreground.
    """

    def __init__(
        self,
        profile: WorktreeProfile,
        app: AppSettings,
        databases: DatabaseManager,
        processes: ProcessManager,
        app_dir: Path,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.profile = profile
        self.app = app
        self.databases = databases
        self.processes = processes
        self.app_dir = Path(app_dir)
        self.sleep = sleep

    @property
    def environment(self) -> Dict[str, str]:
        return build_environment(self.profile, self.databases.settings)

    def run(self, clean: bool = False) -> int:
        profile = self.profile
        show_profile(profile)

        self.databases.require_runtime()
        if not self.app_dir.is_dir():
            raise AppSetupError(f"App directory not found at {self.app_dir}")

        console.print("[yellow]🗄️  Checking database...[/yellow]")
        self.databases.ensure_running(profile)

        console.print("[yellow]🧹 Cleaning up existing servers...[/yellow]")
        reconcile_ports([profile.frontend_port, profile.backend_port], self.processes)

        console.print("[yellow]  Updating environment for this worktree...[/yellow]")
        write_server_env(profile, self.app_dir, self.databases.settings)
        write_client_env(profile, self.app_dir)
        console.print(f"[green]  ✅ Environment configured for {profile.display_name}[/green]")

        env = self.environment
        if clean:
            console.print("[yellow]🧼 Running clean (regenerating types)...[/yellow]")
            code = self.processes.run(self.app.clean_command, self.app_dir, env)
            if code != 0:
                raise AppSetupError(
                    f"'{' '.join(self.app.clean_command)}' exited with code {code}"
                )
            console.print("[green]✅ Clean complete[/green]")

        if self.app.settle_seconds:
            self.sleep(self.app.settle_seconds)

        console.print(f"[bold green]🚀 Starting servers for {profile.display_name}[/bold green]")
        console.print(f"[green]Frontend:[/green] {profile.client_url}")
        console.print(f"[green]Backend:[/green]  {profile.server_url}")
        console.print(f"[green]Database:[/green] {profile.container_name} (port {profile.database_port})")
        console.print(f"[green]Studio:[/green]   {profile.studio_url} [dim](run 'wtdev studio')[/dim]")
        return self.processes.run(self.app.start_command, self.app_dir, env)
