"""Allow ``python -m worktree_dev``."""

from .cli import cli

if __name__ == "__main__":
    cli()
