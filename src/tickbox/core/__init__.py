"""Core tickbox components."""

from .config import ConfigLoader, WorkflowConfig, RunOptions
from .environment import Environment, build_environment
from .registry import load_tasks
from .state import Task, Pending, Running, Complete, Failed, Skipped
from .errors import (
    TickboxError,
    ConfigError,
    TaskLoadError,
    SpawnError,
    PipeReadError,
    ConsumerGone,
    InvalidTransition,
)

__all__ = [
    "ConfigLoader",
    "WorkflowConfig",
    "RunOptions",
    "Environment",
    "build_environment",
    "load_tasks",
    "Task",
    "Pending",
    "Running",
    "Complete",
    "Failed",
    "Skipped",
    "TickboxError",
    "ConfigError",
    "TaskLoadError",
    "SpawnError",
    "PipeReadError",
    "ConsumerGone",
    "InvalidTransition",
]
