"""CLI interface for worktree-dev."""

import functools
import json
import logging
import shlex
import sys
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich import print as rprint

from ..config import load_table
from ..containers import DatabaseManager
from ..detector import detect_worktree_identifier, find_toplevel
from ..errors import RuntimeUnavailableError, UnknownWorktreeError, WorktreeDevError
from ..launcher import Launcher, build_environment, resolve_app_dir
from ..multi import default_worktrees_root, launch_many, select_profiles
from ..profiles import ProfileTable, WorktreeProfile, resolve_profile
from ..runtime import (
    ContainerRuntime,
    ContainerState,
    DockerRuntime,
    ProcessManager,
    SystemProcessManager,
)
from ..studio import launch_all_studios, launch_studio

console = Console()

STATE_STYLES = {
    ContainerState.RUNNING: "green",
    ContainerState.STOPPED: "yellow",
    ContainerState.NOT_CREATED: "red",
}

PROFILE_ENV_KEYS = (
    "WORKTREE_NAME",
    "FRONTEND_PORT",
    "BACKEND_PORT",
    "CLIENT_URL",
    "SERVER_URL",
    "DATABASE_URL",
)


def make_runtime() -> ContainerRuntime:
    return DockerRuntime()


def make_process_manager() -> ProcessManager:
    return SystemProcessManager()


def configure_logging(verbose: bool):
    logger = logging.getLogger("worktree_dev")
    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        logger.addHandler(RichHandler(console=Console(stderr=True), show_path=False))
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)


class Session:
    """Per-invocation state: the profile table and where we were run from."""

    def __init__(self, table: ProfileTable, strict: Optional[bool], cwd: Path):
        self.table = table
        self.strict = strict
        self.cwd = cwd

    @property
    def worktree_root(self) -> Path:
        return find_toplevel(self.cwd) or self.cwd

    def profile(self, worktree: Optional[str] = None) -> WorktreeProfile:
        identifier = worktree or detect_worktree_identifier(self.cwd)
        return resolve_profile(identifier, self.table, strict=self.strict)

    def databases(self) -> DatabaseManager:
        return DatabaseManager(make_runtime(), self.table.database)


pass_session = click.make_pass_decorator(Session)


def reports_errors(f):
    """Turn library errors into a red one-line message and exit code 1."""
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except WorktreeDevError as e:
            rprint(f"[red]❌ {e}[/red]")
            sys.exit(1)
    return wrapper


def runtime_available(databases: DatabaseManager) -> bool:
    """Warn instead of failing when a report-only command finds Docker down."""
    try:
        databases.require_runtime()
    except RuntimeUnavailableError as e:
        rprint(f"[yellow]⚠️  {e}[/yellow]")
        return False
    return True


@click.group()
@click.option('--config', 'config_path', type=click.Path(dir_okay=False),
              help='Worktree config file (defaults to $WTDEV_CONFIG or ./worktrees.yaml)')
@click.option('--strict', is_flag=True,
              help='Refuse to run in worktrees without a registered profile')
@click.option('--verbose', '-v', is_flag=True, help='Show debug logging')
@click.pass_context
def cli(ctx, config_path: Optional[str], strict: bool, verbose: bool):
    """Per-worktree ports, databases and dev servers for parallel development."""
    configure_logging(verbose)
    try:
        cwd = Path.cwd()
    except FileNotFoundError:
        rprint("[red]❌ The current directory no longer exists. cd into a worktree and retry.[/red]")
        sys.exit(1)
    try:
        table = load_table(config_path, cwd=cwd)
    except WorktreeDevError as e:
        rprint(f"[red]❌ {e}[/red]")
        sys.exit(1)
    ctx.obj = Session(table, True if strict else None, cwd)


@cli.command()
@click.option('--clean', is_flag=True, help='Run the clean command first (regenerates types)')
@pass_session
@reports_errors
def start(session: Session, clean: bool):
    """Start the database and dev servers for the current worktree."""
    profile = session.profile()
    table = session.table
    launcher = Launcher(
        profile,
        table.app,
        session.databases(),
        make_process_manager(),
        app_dir=session.worktree_root / table.app.app_dir,
    )
    try:
        code = launcher.run(clean=clean)
    except KeyboardInterrupt:
        rprint(f"\n[yellow]⚠️ Servers for {profile.display_name} stopped[/yellow]")
        sys.exit(130)
    sys.exit(code)


@cli.group()
def db():
    """Manage per-worktree PostgreSQL containers."""
    pass


@db.command("start")
@click.argument('worktree', required=False)
@pass_session
@reports_errors
def db_start(session: Session, worktree: Optional[str]):
    """Start the database for WORKTREE (defaults to the current one)."""
    profile = session.profile(worktree)
    databases = session.databases()
    databases.require_runtime()
    databases.ensure_running(profile)


@db.command("stop")
@click.argument('worktree', required=False)
@pass_session
@reports_errors
def db_stop(session: Session, worktree: Optional[str]):
    """Stop the database for WORKTREE."""
    profile = session.profile(worktree)
    databases = session.databases()
    databases.require_runtime()
    databases.stop(profile)


@db.command("clean")
@click.argument('worktree', required=False)
@click.option('--yes', is_flag=True, help='Do not ask for confirmation')
@pass_session
@reports_errors
def db_clean(session: Session, worktree: Optional[str], yes: bool):
    """Delete and recreate the database for WORKTREE (DELETES ALL DATA)."""
    profile = session.profile(worktree)
    databases = session.databases()
    databases.require_runtime()
    if not yes:
        click.confirm(
            f"Delete all data in {profile.container_name} ({profile.display_name})?",
            abort=True,
        )
    databases.reset(profile)


@db.command("status")
@pass_session
@reports_errors
def db_status(session: Session):
    """Show the database status of every worktree."""
    databases = session.databases()
    if not runtime_available(databases):
        return

    table = Table(title="Database Status - All Worktrees")
    table.add_column("Worktree", style="cyan", no_wrap=True)
    table.add_column("Container", style="dim")
    table.add_column("Port", justify="right")
    table.add_column("Status")

    for profile, state in databases.status(session.table.profiles):
        style = STATE_STYLES[state]
        table.add_row(
            profile.display_name,
            profile.container_name,
            str(profile.database_port),
            f"[{style}]{state.label}[/{style}]",
        )

    console.print(table)


@db.command("stopall")
@pass_session
@reports_errors
def db_stopall(session: Session):
    """Stop every worktree database."""
    databases = session.databases()
    if not runtime_available(databases):
        return
    databases.stop_all(session.table.profiles)


@cli.command()
@click.argument('worktree', required=False)
@click.option('--all', 'all_profiles', is_flag=True, help='Start Studio for every worktree in the background')
@pass_session
@reports_errors
def studio(session: Session, worktree: Optional[str], all_profiles: bool):
    """Launch Prisma Studio on the worktree's own port."""
    table = session.table
    app_dir = resolve_app_dir(session.worktree_root, table.app)
    processes = make_process_manager()

    if all_profiles:
        launch_all_studios(table.profiles, table.app, processes, app_dir, table.database)
        return

    profile = session.profile(worktree)
    try:
        code = launch_studio(profile, table.app, processes, app_dir, table.database)
    except KeyboardInterrupt:
        rprint("\n[green]✅ Studio stopped[/green]")
        return
    sys.exit(code)


@cli.command()
@click.argument('names', nargs=-1)
@click.option('--with-studio', is_flag=True, help='Also start Prisma Studio for each worktree')
@click.option('--root', type=click.Path(file_okay=False),
              help='Directory holding the worktrees (defaults to the current worktree\'s parent)')
@pass_session
@reports_errors
def multi(session: Session, names: Tuple[str, ...], with_studio: bool, root: Optional[str]):
    """Start several worktrees in parallel, each in the background."""
    table = session.table
    try:
        profiles = select_profiles(table, names)
    except UnknownWorktreeError as e:
        raise click.BadParameter(f"unknown worktree '{e.identifier}'", param_hint="NAMES")

    worktrees_root = Path(root) if root else default_worktrees_root(table, session.cwd)
    rprint(f"[bold]Starting {len(profiles)} worktree(s) from {worktrees_root}[/bold]")

    started = launch_many(
        profiles,
        worktrees_root,
        make_process_manager(),
        config_path=table.source,
        strict=bool(session.strict),
    )

    urls = Table(title="Access URLs")
    urls.add_column("Worktree", style="cyan")
    urls.add_column("Frontend", style="green")
    urls.add_column("Backend", style="green")
    for profile in profiles:
        if started.get(profile.identifier) is not None:
            urls.add_row(profile.display_name, profile.client_url, profile.server_url)
    console.print(urls)

    if with_studio:
        app_dir = resolve_app_dir(session.worktree_root, table.app)
        launch_all_studios(profiles, table.app, make_process_manager(), app_dir, table.database)

    rprint("[dim]View database status: wtdev db status[/dim]")
    rprint("[dim]Stop all databases:   wtdev db stopall[/dim]")


@cli.command()
@click.argument('worktree', required=False)
@click.option('--json', 'as_json', is_flag=True, help='Print JSON instead of shell exports')
@pass_session
@reports_errors
def env(session: Session, worktree: Optional[str], as_json: bool):
    """Print the worktree's variables, e.g. eval "$(wtdev env)"."""
    profile = session.profile(worktree)
    environment = build_environment(profile, session.table.database, base_env={})
    values = {key: environment[key] for key in PROFILE_ENV_KEYS}
    values["DB_PORT"] = str(profile.database_port)
    values["STUDIO_PORT"] = str(profile.studio_port)
    values["DB_NAME"] = profile.container_name

    if as_json:
        click.echo(json.dumps(values, indent=2))
        return
    for key, value in values.items():
        click.echo(f"export {key}={shlex.quote(value)}")


@cli.command()
@click.argument('worktree', required=False)
@pass_session
@reports_errors
def ports(session: Session, worktree: Optional[str]):
    """Show the worktree's ports and whether anything is listening on them."""
    profile = session.profile(worktree)
    processes = make_process_manager()

    table = Table(title=f"Ports - {profile.display_name} ({profile.identifier})")
    table.add_column("Service", style="cyan")
    table.add_column("Port", justify="right")
    table.add_column("Status")

    for label, port in profile.ports.items():
        pids = processes.pids_on_port(port)
        if pids:
            status = f"[green]in use (PID {', '.join(map(str, pids))})[/green]"
        else:
            status = "[yellow]free[/yellow]"
        table.add_row(label, str(port), status)

    console.print(table)


if __name__ == "__main__":
    cli()
