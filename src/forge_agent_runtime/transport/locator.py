"""Locate the agent CLI executable."""

from __future__ import annotations

import glob
import logging
import os
import shutil
from collections.abc import Sequence

from ..errors import CliNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_EXECUTABLE = "claude"
PATH_LABEL = "PATH environment variable"


def default_search_paths(executable_name: str = DEFAULT_EXECUTABLE) -> list[str]:
    """Common install locations, most likely first."""
    home = os.path.expanduser("~")
    paths = [
        f"/usr/local/bin/{executable_name}",
        f"/usr/bin/{executable_name}",
        f"/opt/homebrew/bin/{executable_name}",
        os.path.join(home, ".npm-global", "bin", executable_name),
        os.path.join(home, ".local", "bin", executable_name),
        os.path.join(home, ".nvm", "versions", "node", "current", "bin", executable_name),
    ]
    nvm_pattern = os.path.join(home, ".nvm", "versions", "node", "*", "bin", executable_name)
    for candidate in sorted(glob.glob(nvm_pattern)):
        if candidate not in paths:
            paths.append(candidate)
    return paths


def find_cli(
    cli_path: str | None = None,
    search_paths: Sequence[str] | None = None,
    executable_name: str = DEFAULT_EXECUTABLE,
) -> str:
    """Resolve the agent executable.

    Resolution order (first match wins):
    1. ``cli_path``, as a file or a name on PATH
    2. ``search_paths`` if given, and nothing else
    3. ``executable_name`` on PATH
    4. default_search_paths()

    Raises:
        CliNotFoundError: Nothing matched; lists every location tried
    """
    searched: list[str] = []

    if cli_path:
        searched.append(cli_path)
        resolved = _resolve_candidate(cli_path)
        if resolved:
            return resolved

    if search_paths is not None:
        for candidate in search_paths:
            searched.append(candidate)
            if _is_executable(candidate):
                return candidate
        raise CliNotFoundError(searched)

    found = shutil.which(executable_name)
    if found:
        logger.debug(f"Found agent CLI on PATH: {found}")
        return found
    searched.append(PATH_LABEL)

    for candidate in default_search_paths(executable_name):
        searched.append(candidate)
        if _is_executable(candidate):
            return candidate

    raise CliNotFoundError(searched)


def _resolve_candidate(candidate: str) -> str | None:
    if os.sep in candidate or (os.altsep and os.altsep in candidate):
        return candidate if _is_executable(candidate) else None
    return shutil.which(candidate)


def _is_executable(path: str) -> bool:
    return os.path.isfile(path) and os.access(path, os.X_OK)
