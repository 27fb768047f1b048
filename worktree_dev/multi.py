"""Start several worktrees at once, each in the background."""

import os
import sys
import tempfile
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from rich.console import Console

from .detector import find_toplevel
from .errors import UnknownWorktreeError
from .profiles import ProfileTable, WorktreeProfile
from .runtime import ProcessManager

console = Console()


def start_command(config_path: Optional[str] = None, strict: bool = False) -> List[str]:
    """``wtdev start`` for a child process, carrying over the parent's table and mode.

    The config path is made absolute since the child runs in another directory.
    """
    command = [sys.executable, "-m", "worktree_dev"]
    if config_path:
        command += ["--config", str(Path(config_path).resolve())]
    if strict:
        command.append("--strict")
    return command + ["start"]


def default_worktrees_root(table: ProfileTable, cwd: Optional[Path] = None) -> Path:
    """Directory holding the worktrees: config value, else the current worktree's parent."""
    if table.worktrees_root:
        return Path(table.worktrees_root).expanduser()
    cwd = Path(cwd or os.getcwd())
    toplevel = find_toplevel(cwd) or cwd
    return toplevel.resolve().parent


def select_profiles(table: ProfileTable, names: Sequence[str]) -> List[WorktreeProfile]:
    """Map CLI names (identifier, alias or display name, any case) to profiles.

    No names selects every profile. Duplicates are dropped.
    """
    if not names:
        return list(table.profiles)

    selected = []
    for name in names:
        profile = table.select(name)
        if profile is None:
            raise UnknownWorktreeError(name, table.source)
        if profile not in selected:
            selected.append(profile)
    return selected


def log_file_for(profile: WorktreeProfile, log_dir: Optional[Path] = None) -> Path:
    log_dir = Path(log_dir or tempfile.gettempdir())
    return log_dir / f"{profile.identifier}-start.log"


def launch_many(
    profiles: Iterable[WorktreeProfile],
    root: Path,
    processes: ProcessManager,
    log_dir: Optional[Path] = None,
    config_path: Optional[str] = None,
    strict: bool = False,
) -> Dict[str, Optional[int]]:
    """Spawn ``wtdev start`` inside each profile's worktree directory.

    Children load ``config_path`` (when given) so they resolve the same table
    as the caller. Returns identifier -> pid, with None for worktrees whose
    directory is missing.
    """
    command = start_command(config_path, strict)
    started: Dict[str, Optional[int]] = {}
    for profile in profiles:
        worktree_path = Path(root) / profile.identifier
        if not worktree_path.is_dir():
            console.print(f"[red]  ⚠️  Worktree not found: {worktree_path}[/red]")
            started[profile.identifier] = None
            continue

        log_file = log_file_for(profile, log_dir)
        pid = processes.spawn_background(command, worktree_path, os.environ, log_file)
        console.print(f"[green]  ✅ Started {profile.display_name}[/green] [dim](PID {pid}, log: {log_file})[/dim]")
        started[profile.identifier] = pid
    return started
