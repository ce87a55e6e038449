"""Scheduler, process supervisor and event bus."""

from .events import EventBus, EventSender, EventReceiver, Wait, Status, AddLine
from .scheduler import WorkflowScheduler
from .supervisor import ProcessSupervisor, Success, NonZeroExit, Signaled
from .sync import Sequential, Ranges, NamePattern, resolve_policy, sync_point

__all__ = [
    "EventBus",
    "EventSender",
    "EventReceiver",
    "Wait",
    "Status",
    "AddLine",
    "WorkflowScheduler",
    "ProcessSupervisor",
    "Success",
    "NonZeroExit",
    "Signaled",
    "Sequential",
    "Ranges",
    "NamePattern",
    "resolve_policy",
    "sync_point",
]
