"""Display side of the event bus."""

from .view import WorkflowView
from .input import UserInput
from .renderers import LiveRenderer, PlainRenderer

__all__ = ["WorkflowView", "UserInput", "LiveRenderer", "PlainRenderer"]
