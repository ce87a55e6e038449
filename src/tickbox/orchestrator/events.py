"""
Event bus between the workflow producers and the display.

Many producers (the scheduler and every running process supervisor) send
onto one bounded FIFO; exactly one consumer drains it. A full queue
suspends every producer until the consumer catches up.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional, Union

from ..core.errors import ConsumerGone
from ..core.state import Task


DEFAULT_CAPACITY = 500


@dataclass(frozen=True)
class Wait:
    """Do not exit at end of stream without an explicit user action."""


@dataclass(frozen=True)
class Status:
    """Snapshot of one task; consumers upsert it keyed by ``task.n``."""
    task: Task


@dataclass(frozen=True)
class AddLine:
    """One line of output for the scrollback."""
    text: str


Event = Union[Wait, Status, AddLine]

# Marks end of stream once the last sender closed
_END = object()


class EventBus:
    """Bounded multi-producer, single-consumer channel of events."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=capacity)
        self._senders = 0
        self._ended = False
        self._receiver: Optional["EventReceiver"] = None
        self._receiver_closed = False

    def sender(self) -> "EventSender":
        """Open a new producer handle."""
        if self._ended:
            raise RuntimeError("event stream already ended")
        return EventSender(self)

    def receiver(self) -> "EventReceiver":
        """The single consumer handle."""
        if self._receiver is None:
            self._receiver = EventReceiver(self)
        return self._receiver

    @property
    def open_senders(self) -> int:
        return self._senders

    @property
    def consumer_gone(self) -> bool:
        return self._receiver_closed

    def qsize(self) -> int:
        return self._queue.qsize()

    def _sender_opened(self) -> None:
        self._senders += 1

    def _sender_closed(self) -> None:
        self._senders -= 1
        if self._senders == 0:
            self._ended = True
            # Wakes a consumer blocked on an empty queue. When the queue is
            # full the consumer is not blocked and sees the end once drained.
            try:
                self._queue.put_nowait(_END)
            except asyncio.QueueFull:
                pass

    def _close_receiver(self) -> None:
        self._receiver_closed = True
        # Free every slot so producers suspended on a full queue wake up and
        # observe the disconnect on their way out of send().
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break


class EventSender:
    """
    Producer handle.

    Handles are cloned per producer and closed when the producer is done;
    the stream ends when every handle is closed.
    """

    def __init__(self, bus: EventBus):
        self._bus = bus
        self._closed = False
        bus._sender_opened()

    async def send(self, event: Event) -> None:
        """
        Queue ``event``, suspending while the queue is full.

        Raises:
            ConsumerGone: the consumer disconnected.
        """
        if self._closed:
            raise RuntimeError("send on a closed event sender")
        if self._bus._receiver_closed:
            raise ConsumerGone()
        await self._bus._queue.put(event)
        if self._bus._receiver_closed:
            raise ConsumerGone()

    def clone(self) -> "EventSender":
        if self._closed:
            raise RuntimeError("clone of a closed event sender")
        return EventSender(self._bus)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._bus._sender_closed()

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> "EventSender":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class EventReceiver:
    """Consumer handle; iterate it or call ``recv`` until it returns None."""

    def __init__(self, bus: EventBus):
        self._bus = bus

    async def recv(self) -> Optional[Event]:
        """Next event in arrival order, or None at end of stream."""
        bus = self._bus
        if bus._receiver_closed:
            return None
        if bus._queue.empty() and bus._ended:
            return None
        item = await bus._queue.get()
        if item is _END:
            return None
        return item

    def close(self) -> None:
        """Disconnect; every later send raises ConsumerGone."""
        self._bus._close_receiver()

    def __aiter__(self) -> "EventReceiver":
        return self

    async def __anext__(self) -> Event:
        event = await self.recv()
        if event is None:
            raise StopAsyncIteration
        return event
