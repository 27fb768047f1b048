"""Shared pytest fixtures and fakes for worktree-dev tests."""

from pathlib import Path

import pytest
import yaml
from git import Actor, Repo

from worktree_dev.errors import ContainerCommandError
from worktree_dev.profiles import ProfileTable
from worktree_dev.runtime import ContainerRuntime, ContainerState, ProcessManager

TEST_TABLE = {
    "default": "proj-a",
    "app": {"settle_seconds": 0},
    "profiles": [
        {
            "identifier": "proj-a",
            "display_name": "A",
            "aliases": ["proj-a-old"],
            "frontend_port": 3000,
            "backend_port": 3001,
            "database_port": 5432,
            "studio_port": 5555,
            "container_name": "db-a",
        },
        {
            "identifier": "proj-b",
            "display_name": "B",
            "frontend_port": 3100,
            "backend_port": 3101,
            "database_port": 5433,
            "studio_port": 5556,
            "container_name": "db-b",
        },
    ],
}


class FakeRuntime(ContainerRuntime):
    """In-memory container engine."""

    def __init__(self, available=True, ready_after=1):
        self.available = available
        self.ready_after = ready_after
        self.containers = {}
        self.ready_checks = {}
        self.fail_stop = set()
        self.calls = []

    def is_available(self):
        return self.available

    def container_state(self, name):
        state = self.containers.get(name)
        if state is None:
            return ContainerState.NOT_CREATED
        if state == "running":
            return ContainerState.RUNNING
        return ContainerState.STOPPED

    def start(self, name):
        self.calls.append(("start", name))
        self.containers[name] = "running"

    def stop(self, name):
        self.calls.append(("stop", name))
        if name in self.fail_stop:
            raise ContainerCommandError(["docker", "stop", name], 1, "daemon hiccup")
        self.containers[name] = "exited"

    def remove(self, name):
        self.calls.append(("rm", name))
        self.containers.pop(name, None)

    def run_database(self, name, port, settings):
        self.calls.append(("run", name, port, settings.image))
        self.containers[name] = "running"

    def is_database_ready(self, name, user):
        self.ready_checks[name] = self.ready_checks.get(name, 0) + 1
        if self.ready_after is None:
            return False
        return self.ready_checks[name] >= self.ready_after


class FakeProcessManager(ProcessManager):
    """Tracks listeners per port instead of touching real processes.

    ``on_run`` can be set to simulate what the launched command does.
    """

    def __init__(self):
        self.listeners = {}
        self.killed = []
        self.runs = []
        self.spawned = []
        self.on_run = None
        self.next_pid = 1000

    def bind(self, port, pid=None):
        if pid is None:
            pid = self.next_pid
            self.next_pid += 1
        self.listeners.setdefault(port, []).append(pid)
        return pid

    def pids_on_port(self, port):
        return list(self.listeners.get(port, []))

    def kill(self, pid):
        self.killed.append(pid)
        for pids in self.listeners.values():
            if pid in pids:
                pids.remove(pid)

    def run(self, command, cwd, env):
        self.runs.append((list(command), Path(cwd), dict(env)))
        if self.on_run is not None:
            return self.on_run(list(command), cwd, env)
        return 0

    def spawn_background(self, command, cwd, env, log_file=None):
        pid = self.next_pid
        self.next_pid += 1
        self.spawned.append((list(command), Path(cwd), log_file))
        return pid


@pytest.fixture(autouse=True)
def isolated_git(tmp_path, monkeypatch):
    """Keep git from discovering repositories above the test directory."""
    monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(tmp_path))
    monkeypatch.delenv("WTDEV_CONFIG", raising=False)


@pytest.fixture
def table():
    return ProfileTable.model_validate(TEST_TABLE)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "worktrees.yaml"
    path.write_text(yaml.safe_dump(TEST_TABLE))
    return path


@pytest.fixture
def runtime():
    return FakeRuntime()


@pytest.fixture
def processes():
    return FakeProcessManager()


@pytest.fixture
def app_dir(tmp_path):
    """A minimal application directory with env templates."""
    app = tmp_path / "app"
    app.mkdir()
    (app / ".env.server.example").write_text("DATABASE_URL=postgresql://old\nSECRET=keep-me\n")
    (app / ".env.client.template").write_text(
        "REACT_APP_API_URL={{SERVER_URL}}\nPORT={{FRONTEND_PORT}}\n"
    )
    return app


def make_repo(path):
    """Create a git repository at ``path`` with one commit."""
    path.mkdir(parents=True, exist_ok=True)
    repo = Repo.init(path)
    (path / "README.md").write_text("test repo\n")
    repo.index.add(["README.md"])
    actor = Actor("Test", "test@example.com")
    repo.index.commit("initial commit", author=actor, committer=actor)
    return repo


@pytest.fixture
def main_repo(tmp_path):
    return make_repo(tmp_path / "project")
