"""Worktree profiles and the resolver that maps a worktree name to one."""

from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .errors import UnknownWorktreeError

UNKNOWN_DISPLAY_NAME = "unknown"


class DatabaseSettings(BaseModel):
    """Credentials and image shared by every worktree database container."""

    model_config = ConfigDict(frozen=True)

    user: str = Field("dev", description="POSTGRES_USER for every container")
    password: str = Field("dev", description="POSTGRES_PASSWORD for every container")
    name: str = Field("dev", description="POSTGRES_DB created in every container")
    image: str = Field("postgres:14", description="Image used when a container is created")


class AppSettings(BaseModel):
    """How to launch the wrapped application and its database UI."""

    model_config = ConfigDict(frozen=True)

    app_dir: str = Field("app", description="Application directory, relative to the worktree top level")
    start_command: Tuple[str, ...] = ("wasp", "start")
    clean_command: Tuple[str, ...] = ("wasp", "clean")
    studio_command: Tuple[str, ...] = ("npx", "prisma", "studio", "--port", "{port}")
    settle_seconds: float = Field(2.0, ge=0, description="Pause between port cleanup and launch")

    @field_validator("start_command", "clean_command", "studio_command")
    @classmethod
    def validate_command(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        if not v:
            raise ValueError("command must not be empty")
        return v


class WorktreeProfile(BaseModel):
    """Ports and database container assigned to one worktree."""

    model_config = ConfigDict(frozen=True)

    identifier: str = Field(..., min_length=1, description="Worktree directory name")
    display_name: str = Field(..., min_length=1, description="Short name shown in output")
    frontend_port: int = Field(..., ge=1, le=65535)
    backend_port: int = Field(..., ge=1, le=65535)
    database_port: int = Field(..., ge=1, le=65535)
    studio_port: int = Field(..., ge=1, le=65535)
    container_name: str = Field(..., min_length=1)
    aliases: Tuple[str, ...] = Field(
        default=(),
        description="Other directory names that share this profile",
    )

    @property
    def ports(self) -> Dict[str, int]:
        return {
            "frontend": self.frontend_port,
            "backend": self.backend_port,
            "database": self.database_port,
            "studio": self.studio_port,
        }

    @property
    def client_url(self) -> str:
        return f"http://localhost:{self.frontend_port}"

    @property
    def server_url(self) -> str:
        return f"http://localhost:{self.backend_port}"

    @property
    def studio_url(self) -> str:
        return f"http://localhost:{self.studio_port}"

    def database_url(self, database: Optional[DatabaseSettings] = None) -> str:
        database = database or DatabaseSettings()
        return (
            f"postgresql://{database.user}:{database.password}"
            f"@localhost:{self.database_port}/{database.name}"
        )

    def names(self) -> Tuple[str, ...]:
        return (self.identifier,) + tuple(self.aliases)


class ProfileTable(BaseModel):
    """The full set of known worktree profiles.

    Construction validates that no two profiles share a port, a container
    name, an identifier or an alias, and that ``default`` names a profile.
    """

    model_config = ConfigDict(frozen=True)

    profiles: List[WorktreeProfile] = Field(..., min_length=1)
    default: str = Field(..., description="Identifier of the profile used for unknown worktrees")
    fallback: Literal["default", "strict"] = "default"
    worktrees_root: Optional[str] = Field(
        None,
        description="Directory holding all worktrees (defaults to the parent of the current one)",
    )
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    app: AppSettings = Field(default_factory=AppSettings)
    source: Optional[str] = Field(None, description="Config file the table was loaded from")

    @model_validator(mode="after")
    def validate_disjoint(self) -> "ProfileTable":
        problems = []

        port_owners: Dict[int, str] = {}
        container_owners: Dict[str, str] = {}
        name_owners: Dict[str, str] = {}

        for profile in self.profiles:
            for label, port in profile.ports.items():
                owner = port_owners.get(port)
                if owner is not None:
                    problems.append(
                        f"port {port} ({profile.identifier} {label}) is already used by {owner}"
                    )
                else:
                    port_owners[port] = f"{profile.identifier} {label}"

            owner = container_owners.get(profile.container_name)
            if owner is not None:
                problems.append(
                    f"container '{profile.container_name}' is shared by {owner} and {profile.identifier}"
                )
            else:
                container_owners[profile.container_name] = profile.identifier

            for name in profile.names():
                owner = name_owners.get(name)
                if owner is not None:
                    problems.append(f"name '{name}' is claimed by {owner} and {profile.identifier}")
                else:
                    name_owners[name] = profile.identifier

        if self.default not in name_owners:
            problems.append(f"default profile '{self.default}' is not in the table")

        if problems:
            raise ValueError("; ".join(problems))
        return self

    @property
    def default_profile(self) -> WorktreeProfile:
        profile = self.find(self.default)
        assert profile is not None
        return profile

    def find(self, name: str) -> Optional[WorktreeProfile]:
        """Exact match on identifier or alias."""
        for profile in self.profiles:
            if name in profile.names():
                return profile
        return None

    def select(self, name: str) -> Optional[WorktreeProfile]:
        """Case-insensitive match on identifier, alias or display name."""
        wanted = name.lower()
        for profile in self.profiles:
            candidates = profile.names() + (profile.display_name,)
            if wanted in (c.lower() for c in candidates):
                return profile
        return None


def resolve_profile(
    identifier: str,
    table: ProfileTable,
    strict: Optional[bool] = None,
) -> WorktreeProfile:
    """Return the profile for ``identifier``.

    Unknown identifiers get the table's default profile relabelled as
    ``unknown``, unless strict mode is on (explicitly or via the table's
    ``fallback`` setting), in which case ``UnknownWorktreeError`` is raised.
    """
    profile = table.find(identifier)
    if profile is not None:
        return profile

    if strict is None:
        strict = table.fallback == "strict"
    if strict:
        raise UnknownWorktreeError(identifier, table.source)

    return table.default_profile.model_copy(
        update={
            "identifier": identifier or UNKNOWN_DISPLAY_NAME,
            "display_name": UNKNOWN_DISPLAY_NAME,
            "aliases": (),
        }
    )
