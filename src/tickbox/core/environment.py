"""Environment bootstrap: variables and working directory shared by every step."""

import asyncio
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

import structlog

from .errors import ConfigError


logger = structlog.get_logger()

TEMPDIR_VAR = "TICKBOX_TEMPDIR"
CWD_VAR = "TICKBOX_CWD"
BRANCH_VAR = "TICKBOX_BRANCH"


@dataclass(frozen=True)
class Environment:
    """
    Ordered variables plus the working directory for spawned steps.

    Built once before scheduling and never modified afterwards.
    """
    cwd: Path
    variables: dict[str, str] = field(default_factory=dict)

    def for_process(self) -> dict[str, str]:
        """The full environment of a spawned step: inherited plus ours."""
        merged = dict(os.environ)
        merged.update(self.variables)
        return merged


async def current_branch(cwd: Path) -> Optional[str]:
    """
    Return the checked-out git branch of ``cwd``.

    Returns None when ``cwd`` is not the top of a git work tree.
    """
    if not (cwd / ".git").exists():
        return None

    try:
        proc = await asyncio.create_subprocess_exec(
            "git", "branch", "--show-current",
            cwd=str(cwd),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise ConfigError(f"git branch lookup failed: {e}")
    stdout, stderr = await proc.communicate()
    if proc.returncode != 0:
        raise ConfigError(
            f"git branch exec failed: {stderr.decode(errors='replace').strip()}"
        )
    return stdout.decode(errors="replace").strip()


async def build_environment(
    cwd: Union[str, Path],
    tempdir: Union[str, Path],
    extra: Optional[dict[str, str]] = None,
) -> Environment:
    """
    Resolve the working directory and assemble the step variables.

    Order: temp dir, working dir, branch (if any), then user entries.
    """
    resolved = Path(cwd).resolve()
    if not resolved.is_dir():
        raise ConfigError(f"Working directory does not exist: {resolved}")

    variables: dict[str, str] = {
        TEMPDIR_VAR: str(tempdir),
        CWD_VAR: str(resolved),
    }
    branch = await current_branch(resolved)
    if branch is not None:
        variables[BRANCH_VAR] = branch
    variables.update(extra or {})

    logger.debug(
        "environment_built",
        cwd=str(resolved),
        branch=branch,
        variables=list(variables),
    )
    return Environment(cwd=resolved, variables=variables)
