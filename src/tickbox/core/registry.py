"""Turns a directory of numbered step files into an ordered task list."""

import re
from pathlib import Path
from typing import Union

import structlog

from .errors import TaskLoadError
from .state import Task


logger = structlog.get_logger()

_ID_PREFIX = re.compile(r"^(\d+)")


def parse_task_id(name: str) -> int:
    """Parse the leading decimal digits of a step file name."""
    match = _ID_PREFIX.match(name)
    if not match:
        raise TaskLoadError(
            f"Step file name has no numeric prefix: {name}",
            path=name,
        )
    return int(match.group(1))


def _is_ignored(path: Path) -> bool:
    """Dotfiles and editor backups are never steps."""
    return path.name.startswith(".") or path.name.endswith("~")


def load_tasks(directory: Union[str, Path]) -> list[Task]:
    """
    Load all step files from ``directory``.

    Tasks are sorted by ascending id and numbered 0..len-1 in that order.

    Raises:
        TaskLoadError: the directory is unreadable, a file has no numeric
            prefix, or two files share an id.
    """
    directory = Path(directory)
    try:
        entries = sorted(directory.iterdir())
    except OSError as e:
        raise TaskLoadError(
            f"Failed to read directory {directory}: {e}",
            path=str(directory),
        )

    by_id: dict[int, Path] = {}
    for path in entries:
        if _is_ignored(path) or path.is_dir():
            continue
        task_id = parse_task_id(path.name)
        if task_id in by_id:
            raise TaskLoadError(
                f"Duplicate step id {task_id}: {by_id[task_id].name} and {path.name}",
                path=str(path),
            )
        by_id[task_id] = path

    tasks = [
        Task(n=n, id=task_id, name=by_id[task_id].name, path=by_id[task_id].resolve())
        for n, task_id in enumerate(sorted(by_id))
    ]
    logger.debug("tasks_loaded", directory=str(directory), count=len(tasks))
    return tasks
