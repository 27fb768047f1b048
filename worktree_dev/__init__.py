"""worktree-dev: per-worktree ports and databases for parallel local development."""

__version__ = "0.1.0"
