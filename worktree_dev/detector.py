"""Work out which worktree the current directory belongs to."""

import logging
import os
from pathlib import Path
from typing import Optional, Union

from git import Git
from git.exc import GitCommandError, GitCommandNotFound

logger = logging.getLogger(__name__)

FALLBACK_IDENTIFIER = "unknown"


def current_directory() -> Optional[Path]:
    """The process cwd, or None when it has been deleted underneath us."""
    try:
        return Path(os.getcwd())
    except FileNotFoundError:
        logger.debug("Current directory no longer exists")
        return None


def find_toplevel(cwd: Optional[Union[str, Path]] = None) -> Optional[Path]:
    """Return the top-level directory of the git work tree containing ``cwd``.

    Asks git itself (``rev-parse --show-toplevel``) instead of looking for a
    ``.git`` directory: inside a linked worktree ``.git`` is a file pointing
    at ``<main repo>/.git/worktrees/<name>``.
    """
    cwd = Path(cwd) if cwd else current_directory()
    if cwd is None:
        return None
    try:
        output = Git(str(cwd)).rev_parse("--show-toplevel")
    except (GitCommandError, GitCommandNotFound) as e:
        logger.debug("Not inside a git work tree at %s: %s", cwd, e)
        return None
    except OSError as e:
        logger.debug("Could not run git in %s: %s", cwd, e)
        return None

    output = output.strip()
    if not output:
        return None
    return Path(output)


def detect_worktree_identifier(cwd: Optional[Union[str, Path]] = None) -> str:
    """Return the worktree name for ``cwd`` (default: the process cwd).

    This is the base name of the git work tree's top level, or the base name
    of ``cwd`` itself outside of git. Never raises and never returns "".
    """
    cwd = Path(cwd) if cwd else current_directory()
    if cwd is None:
        return FALLBACK_IDENTIFIER
    toplevel = find_toplevel(cwd)
    if toplevel is not None:
        name = toplevel.name
    else:
        try:
            name = cwd.resolve().name
        except OSError:
            name = cwd.name
    if not name:
        name = FALLBACK_IDENTIFIER
    logger.debug("Detected worktree '%s' from %s", name, cwd)
    return name
