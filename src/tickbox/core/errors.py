"""Tickbox error definitions."""

from typing import Optional, Any
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels for classification."""
    LOW = "low"           # Diagnostic only, the task keeps running
    MEDIUM = "medium"     # The task fails
    HIGH = "high"         # The run cannot start


class ErrorCategory(Enum):
    """Error categories for routing and handling."""
    CONFIG = "config"           # Malformed or invalid configuration
    REGISTRY = "registry"       # Step directory problems
    PROCESS = "process"         # Subprocess could not be launched
    IO = "io"                   # Pipe read failures
    CONSUMER = "consumer"       # Display went away
    STATE = "state"             # Illegal task state transition


class TickboxError(Exception):
    """Base exception for all tickbox errors."""

    def __init__(
        self,
        message: str,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.PROCESS,
        context: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.severity = severity
        self.category = category
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize error for logging."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "context": self.context,
        }


class ConfigError(TickboxError):
    """Configuration loading or validation error."""

    def __init__(self, message: str, config_path: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        kwargs.setdefault("category", ErrorCategory.CONFIG)
        super().__init__(message, **kwargs)
        self.context["config_path"] = config_path


class TaskLoadError(TickboxError):
    """The step directory could not be turned into a task list."""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        kwargs.setdefault("category", ErrorCategory.REGISTRY)
        super().__init__(message, **kwargs)
        self.context["path"] = path


class SpawnError(TickboxError):
    """A step's executable could not be launched."""

    def __init__(self, message: str, task_name: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.MEDIUM)
        kwargs.setdefault("category", ErrorCategory.PROCESS)
        super().__init__(message, **kwargs)
        self.context["task_name"] = task_name


class PipeReadError(TickboxError):
    """Reading a line from a step's stdout or stderr failed."""

    def __init__(
        self,
        message: str,
        task_name: Optional[str] = None,
        stream: Optional[str] = None,
        **kwargs
    ):
        kwargs.setdefault("severity", ErrorSeverity.LOW)
        kwargs.setdefault("category", ErrorCategory.IO)
        super().__init__(message, **kwargs)
        self.context["task_name"] = task_name
        self.context["stream"] = stream


class ConsumerGone(TickboxError):
    """The event consumer disconnected, nothing can be sent anymore."""

    def __init__(self, message: str = "event consumer disconnected", **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.LOW)
        kwargs.setdefault("category", ErrorCategory.CONSUMER)
        super().__init__(message, **kwargs)


class InvalidTransition(TickboxError):
    """A task was moved to a state its current state cannot reach."""

    def __init__(self, message: str, task_name: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        kwargs.setdefault("category", ErrorCategory.STATE)
        super().__init__(message, **kwargs)
        self.context["task_name"] = task_name
