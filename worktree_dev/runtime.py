"""Narrow wrappers around Docker and OS processes.

Everything that touches the outside world goes through ``ContainerRuntime``
or ``ProcessManager`` so the rest of the package can be exercised with fakes.
"""

import logging
import os
import signal
import subprocess
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import List, Mapping, Optional, Sequence, Union

from .errors import AppSetupError, ContainerCommandError, RuntimeUnavailableError
from .profiles import DatabaseSettings

logger = logging.getLogger(__name__)

POSTGRES_CONTAINER_PORT = 5432


class ContainerState(Enum):
    """Lifecycle state of a worktree's database container."""
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"
    NOT_CREATED = "NOT_CREATED"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")


class ContainerRuntime(ABC):
    """Operations the database lifecycle manager needs from a container engine."""

    @abstractmethod
    def is_available(self) -> bool:
        ...

    @abstractmethod
    def container_state(self, name: str) -> ContainerState:
        ...

    @abstractmethod
    def start(self, name: str) -> None:
        ...

    @abstractmethod
    def stop(self, name: str) -> None:
        ...

    @abstractmethod
    def remove(self, name: str) -> None:
        """Force-remove the container and its anonymous data volume."""

    @abstractmethod
    def run_database(self, name: str, port: int, settings: DatabaseSettings) -> None:
        """Create and start a PostgreSQL container published on ``port``."""

    @abstractmethod
    def is_database_ready(self, name: str, user: str) -> bool:
        ...


class DockerRuntime(ContainerRuntime):
    """``ContainerRuntime`` backed by the ``docker`` CLI."""

    def __init__(self, executable: str = "docker"):
        self.executable = executable

    def _run(self, args: Sequence[str], check: bool = True) -> subprocess.CompletedProcess:
        command = [self.executable] + list(args)
        logger.debug("Running: %s", " ".join(command))
        try:
            result = subprocess.run(command, capture_output=True, text=True)
        except FileNotFoundError as e:
            raise RuntimeUnavailableError(f"'{self.executable}' executable not found") from e

        if check and result.returncode != 0:
            raise ContainerCommandError(command, result.returncode, result.stderr)
        return result

    def is_available(self) -> bool:
        try:
            result = self._run(["info"], check=False)
        except RuntimeUnavailableError:
            return False
        return result.returncode == 0

    def container_state(self, name: str) -> ContainerState:
        result = self._run([
            "ps", "-a",
            "--filter", f"name=^/{name}$",
            "--format", "{{.Names}}\t{{.State}}",
        ])
        for line in result.stdout.splitlines():
            container, _, state = line.partition("\t")
            if container.strip() != name:
                continue
            if state.strip().lower() in ("running", "restarting"):
                return ContainerState.RUNNING
            return ContainerState.STOPPED
        return ContainerState.NOT_CREATED

    def start(self, name: str) -> None:
        self._run(["start", name])

    def stop(self, name: str) -> None:
        self._run(["stop", name])

    def remove(self, name: str) -> None:
        self._run(["rm", "-f", "-v", name])

    def run_database(self, name: str, port: int, settings: DatabaseSettings) -> None:
        self._run([
            "run", "-d",
            "--name", name,
            "-e", f"POSTGRES_USER={settings.user}",
            "-e", f"POSTGRES_PASSWORD={settings.password}",
            "-e", f"POSTGRES_DB={settings.name}",
            "-p", f"{port}:{POSTGRES_CONTAINER_PORT}",
            settings.image,
        ])

    def is_database_ready(self, name: str, user: str) -> bool:
        result = self._run(["exec", name, "pg_isready", "-U", user], check=False)
        return result.returncode == 0


class ProcessManager(ABC):
    """Operations the port reconciler and launchers need from the OS."""

    @abstractmethod
    def pids_on_port(self, port: int) -> List[int]:
        """Pids of processes listening on ``port``."""

    @abstractmethod
    def kill(self, pid: int) -> None:
        """Kill ``pid`` immediately; a process that already exited is ignored."""

    @abstractmethod
    def run(self, command: Sequence[str], cwd: Union[str, Path], env: Mapping[str, str]) -> int:
        """Run ``command`` in the foreground and return its exit code."""

    @abstractmethod
    def spawn_background(
        self,
        command: Sequence[str],
        cwd: Union[str, Path],
        env: Mapping[str, str],
        log_file: Optional[Union[str, Path]] = None,
    ) -> int:
        """Start ``command`` detached from this process and return its pid."""


class SystemProcessManager(ProcessManager):
    """``ProcessManager`` using ``lsof``, signals and ``subprocess``."""

    def pids_on_port(self, port: int) -> List[int]:
        command = ["lsof", "-t", f"-iTCP:{port}", "-sTCP:LISTEN"]
        logger.debug("Running: %s", " ".join(command))
        try:
            result = subprocess.run(command, capture_output=True, text=True)
        except FileNotFoundError:
            logger.warning("lsof not found, cannot inspect port %s", port)
            return []

        pids = []
        for line in result.stdout.split():
            try:
                pid = int(line)
            except ValueError:
                continue
            if pid not in pids:
                pids.append(pid)
        return pids

    def kill(self, pid: int) -> None:
        try:
            os.kill(pid, signal.SIGKILL)
        except ProcessLookupError:
            logger.debug("Process %s already exited", pid)

    def run(self, command: Sequence[str], cwd: Union[str, Path], env: Mapping[str, str]) -> int:
        logger.debug("Running in %s: %s", cwd, " ".join(command))
        try:
            return subprocess.run(list(command), cwd=str(cwd), env=dict(env)).returncode
        except FileNotFoundError as e:
            raise AppSetupError(f"'{command[0]}' not found. Is it installed and on PATH?") from e

    def spawn_background(
        self,
        command: Sequence[str],
        cwd: Union[str, Path],
        env: Mapping[str, str],
        log_file: Optional[Union[str, Path]] = None,
    ) -> int:
        logger.debug("Spawning in %s: %s", cwd, " ".join(command))
        try:
            if log_file is None:
                process = subprocess.Popen(
                    list(command), cwd=str(cwd), env=dict(env),
                    stdin=subprocess.DEVNULL, stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL, start_new_session=True,
                )
            else:
                with open(log_file, "ab") as out:
                    process = subprocess.Popen(
                        list(command), cwd=str(cwd), env=dict(env),
                        stdin=subprocess.DEVNULL, stdout=out,
                        stderr=subprocess.STDOUT, start_new_session=True,
                    )
        except FileNotFoundError as e:
            raise AppSetupError(f"'{command[0]}' not found. Is it installed and on PATH?") from e
        return process.pid
