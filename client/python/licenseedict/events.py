"""Asynchronous lifecycle events and the best-effort event bus."""

from __future__ import annotations

import enum
import logging
import queue
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional

__all__ = [
    "EVENTS_BUFFER_SIZE",
    "EventType",
    "Event",
    "HeartbeatStatus",
    "RenewalResult",
    "EventBus",
]

logger = logging.getLogger("licenseedict.events")

EVENTS_BUFFER_SIZE = 16


class EventType(enum.Enum):
    """Kind of asynchronous event."""

    HEARTBEAT_OK = "heartbeat_ok"
    HEARTBEAT_REJECTED = "heartbeat_rejected"
    HEARTBEAT_ERROR = "heartbeat_error"
    SEAT_RELEASED = "seat_released"
    LICENSE_RENEWED = "license_renewed"
    SERVER_UNREACHABLE = "server_unreachable"


@dataclass(frozen=True)
class Event:
    """A single occurrence reported by a background operation.

    Attributes:
        type: What happened.
        message: Short human-readable description.
        data: Optional payload, e.g. a :class:`HeartbeatStatus` or
            :class:`RenewalResult`.
    """

    type: EventType
    message: str = ""
    data: Any = None


@dataclass(frozen=True)
class HeartbeatStatus:
    """Server response to a heartbeat.  Intervals are in seconds."""

    status: str = ""
    active_sessions: int = 0
    max_sessions: int = 0
    remaining_sessions: int = 0
    heartbeat_interval: int = 0
    grace_period: int = 0
    license_id: str = ""
    product_id: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "HeartbeatStatus":
        data = data or {}
        return cls(
            status=str(data.get("status") or ""),
            active_sessions=_int(data.get("active_sessions")),
            max_sessions=_int(data.get("max_sessions")),
            remaining_sessions=_int(data.get("remaining_sessions")),
            heartbeat_interval=_int(data.get("heartbeat_interval")),
            grace_period=_int(data.get("grace_period")),
            license_id=str(data.get("license_id") or ""),
            product_id=str(data.get("product_id") or ""),
        )


@dataclass(frozen=True)
class RenewalResult:
    """Server response to a renewal request.  Timestamps are RFC 3339 strings."""

    status: str = ""
    signed_token: str = ""
    issued_at: str = ""
    expires_at: str = ""
    previous_expires_at: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RenewalResult":
        data = data or {}
        return cls(
            status=str(data.get("status") or ""),
            signed_token=str(data.get("signed_token") or ""),
            issued_at=str(data.get("issued_at") or ""),
            expires_at=str(data.get("expires_at") or ""),
            previous_expires_at=str(data.get("previous_expires_at") or ""),
        )


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


# ---------------------------------------------------------------------------
# Event bus
# ---------------------------------------------------------------------------


_CLOSED = object()
_ITER_POLL_INTERVAL = 0.1


class EventBus:
    """Bounded, drop-on-full event channel.

    Producers never block: if the buffer is full, or the bus has been
    closed, :meth:`emit` discards the event.  This is a best-effort
    notification stream, not a durable log.  Consumers that cannot afford
    to miss events must drain promptly or poll client state instead.

    Iterating the bus yields events until it is closed and drained::

        for event in client.events:
            handle(event)
    """

    def __init__(self, maxsize: int = EVENTS_BUFFER_SIZE) -> None:
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def emit(self, event: Event) -> bool:
        """Offer *event* without blocking.  Returns False if it was dropped."""
        if self._closed.is_set():
            return False
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            logger.debug("event buffer full, dropping %s event", event.type.value)
            return False
        return True

    def get(self, timeout: Optional[float] = None) -> Event:
        """Wait for the next event.

        Raises:
            queue.Empty: If no event arrived within *timeout*, or the bus
                is closed and drained.
        """
        if timeout is None:
            # The close marker is not queued if the buffer was full at close.
            while True:
                try:
                    item = self._queue.get(timeout=_ITER_POLL_INTERVAL)
                    break
                except queue.Empty:
                    if self._closed.is_set() and self._queue.empty():
                        raise
        else:
            item = self._queue.get(timeout=timeout)
        if item is _CLOSED:
            # Keep the marker visible to other consumers.
            self._requeue_marker()
            raise queue.Empty
        return item

    def get_nowait(self) -> Event:
        """Return a buffered event or raise :class:`queue.Empty`."""
        item = self._queue.get_nowait()
        if item is _CLOSED:
            self._requeue_marker()
            raise queue.Empty
        return item

    def drain(self) -> List[Event]:
        """Return all currently buffered events."""
        events = []
        while True:
            try:
                events.append(self.get_nowait())
            except queue.Empty:
                return events

    def close(self) -> None:
        """Stop accepting events and wake iterating consumers.  Idempotent."""
        if self._closed.is_set():
            return
        self._closed.set()
        self._requeue_marker()

    def _requeue_marker(self) -> None:
        try:
            self._queue.put_nowait(_CLOSED)
        except queue.Full:
            # Consumers notice the closed flag once the buffer drains.
            pass

    def __iter__(self) -> Iterator[Event]:
        while True:
            try:
                event = self.get(timeout=_ITER_POLL_INTERVAL)
            except queue.Empty:
                # Emits are rejected once closed, so an empty read is final.
                if self._closed.is_set():
                    return
                continue
            yield event
