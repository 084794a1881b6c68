"""Background seat-liveness reporting.

One daemon thread per client posts a heartbeat immediately and then every
``interval`` seconds.  The server may change the interval in its response;
the new value applies from the next tick.

Stopping is a rendezvous: :meth:`HeartbeatScheduler.stop` sets the stop
event and waits for the loop's done event, so once it returns no send is in
flight and no further heartbeat events will be emitted.  An in-flight
request is not cancelled; the wait lasts as long as that request (bounded by
the transport timeout).  A stop given a shorter timeout silences the loop
instead, and no new loop starts until the old thread has exited.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from typing import Callable, Optional, Tuple

from .config import DEFAULT_HEARTBEAT_INTERVAL
from .errors import HeartbeatAlreadyRunningError, TransportError
from .events import Event, EventBus, EventType, HeartbeatStatus
from .transport import HTTPTransport

__all__ = ["HEARTBEAT_PATH", "HeartbeatOptions", "HeartbeatScheduler"]

logger = logging.getLogger("licenseedict.heartbeat")

HEARTBEAT_PATH = "/api/v1/concurrency/heartbeat"

_HTTP_OK = 200
_HTTP_TOO_MANY_REQUESTS = 429


@dataclass(frozen=True)
class HeartbeatOptions:
    """Per-session metadata reported with every heartbeat."""

    instance_id: str = ""
    hostname: str = ""
    ip: str = ""
    user_agent: str = ""
    user_hash: str = ""


class HeartbeatScheduler:
    """Owns the heartbeat thread and its control state.

    Parameters:
        transport: Transport used to reach the server.
        events: Bus receiving heartbeat events.
        token_source: Returns the currently committed signed token; read on
            every send so a renewed token is reported from the next tick.
        default_interval: Seconds between heartbeats at start.
        default_instance_id: Instance ID used when the caller gives none.
    """

    def __init__(
        self,
        transport: HTTPTransport,
        events: EventBus,
        token_source: Callable[[], str],
        default_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        default_instance_id: str = "",
    ) -> None:
        self._transport = transport
        self._events = events
        self._token_source = token_source
        self._default_interval = default_interval or DEFAULT_HEARTBEAT_INTERVAL

        # Control state (guarded by _lock)
        self._lock = threading.Lock()
        self._running = False
        self._options = HeartbeatOptions(instance_id=default_instance_id)
        self._stop_event: Optional[threading.Event] = None
        self._done_event: Optional[threading.Event] = None
        self._silenced: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None

        # Serializes emits against a timed-out stop silencing the loop
        self._emit_lock = threading.Lock()

        # Adaptive interval (guarded by _interval_lock, never held across I/O)
        self._interval_lock = threading.Lock()
        self._interval = self._default_interval

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        with self._lock:
            return self._running

    @property
    def interval(self) -> float:
        with self._interval_lock:
            return self._interval

    @property
    def options(self) -> HeartbeatOptions:
        """Options of the current or most recent heartbeat session."""
        with self._lock:
            return self._options

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def start(
        self,
        resolve_target: Callable[[], Tuple[str, str]],
        options: Optional[HeartbeatOptions] = None,
    ) -> None:
        """Launch the heartbeat loop.

        *resolve_target* is called under the control lock and must return
        ``(server_url, token)`` or raise.

        Raises:
            HeartbeatAlreadyRunningError: If a loop is already active, or a
                loop abandoned by a timed-out :meth:`stop` has not exited yet.
        """
        with self._lock:
            if self._running:
                raise HeartbeatAlreadyRunningError()
            if self._done_event is not None and not self._done_event.is_set():
                raise HeartbeatAlreadyRunningError()

            server_url, _token = resolve_target()

            opts = options or HeartbeatOptions()
            if not opts.instance_id:
                opts = replace(opts, instance_id=self._options.instance_id)

            with self._interval_lock:
                self._interval = self._default_interval

            stop_event = threading.Event()
            done_event = threading.Event()
            silenced = threading.Event()
            self._options = opts
            self._stop_event = stop_event
            self._done_event = done_event
            self._silenced = silenced
            self._running = True

            self._thread = threading.Thread(
                target=self._run,
                args=(server_url, opts, stop_event, done_event, silenced),
                name="licenseedict-heartbeat",
                daemon=True,
            )
            self._thread.start()

        logger.info(
            "heartbeat started (instance=%s, interval=%.0fs)",
            opts.instance_id,
            self._default_interval,
        )

    def stop(self, timeout: Optional[float] = None) -> bool:
        """Stop the loop and wait for it to finish.  No-op when not running.

        With ``timeout=None`` the wait is unbounded.  If a finite *timeout*
        expires first, the loop is silenced: its in-flight send completes
        without emitting, and :meth:`start` refuses to launch a new loop
        until the old one has exited.

        Returns:
            False if the loop had not exited when *timeout* expired.
        """
        with self._lock:
            if not self._running:
                return True

            assert self._stop_event is not None and self._done_event is not None
            assert self._silenced is not None
            self._stop_event.set()
            finished = self._done_event.wait(timeout)
            if not finished:
                with self._emit_lock:
                    self._silenced.set()
                logger.warning(
                    "heartbeat loop did not acknowledge stop within %.1fs", timeout
                )
            self._running = False
            self._thread = None

        logger.info("heartbeat stopped")
        return finished

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def _run(
        self,
        server_url: str,
        options: HeartbeatOptions,
        stop_event: threading.Event,
        done_event: threading.Event,
        silenced: threading.Event,
    ) -> None:
        try:
            self._send(server_url, options, silenced)
            while not stop_event.wait(timeout=self.interval):
                self._send(server_url, options, silenced)
        except Exception:
            logger.exception("unexpected error in heartbeat loop")
        finally:
            done_event.set()

    def _emit(self, silenced: threading.Event, event: Event) -> None:
        with self._emit_lock:
            if silenced.is_set():
                logger.debug("dropping %s event from stopped loop", event.type.value)
                return
            self._events.emit(event)

    def _send(
        self, server_url: str, options: HeartbeatOptions, silenced: threading.Event
    ) -> None:
        body = {
            "signed_token": self._token_source(),
            "instance_id": options.instance_id,
            "metadata": {
                "hostname": options.hostname,
                "ip": options.ip,
                "user_agent": options.user_agent,
                "user_hash": options.user_hash,
            },
        }

        try:
            status_code, payload = self._transport.post(server_url + HEARTBEAT_PATH, body)
        except TransportError as exc:
            logger.warning("heartbeat failed: %s", exc)
            self._emit(silenced, Event(EventType.HEARTBEAT_ERROR, str(exc)))
            return

        status = HeartbeatStatus.from_dict(payload)

        if status_code == _HTTP_OK:
            if status.heartbeat_interval > 0:
                with self._interval_lock:
                    self._interval = float(status.heartbeat_interval)
            self._emit(silenced, Event(EventType.HEARTBEAT_OK, "heartbeat accepted", status))
        elif status_code == _HTTP_TOO_MANY_REQUESTS:
            logger.warning(
                "heartbeat rejected: seat limit reached (%d/%d)",
                status.active_sessions,
                status.max_sessions,
            )
            self._emit(silenced, Event(EventType.HEARTBEAT_REJECTED, "seat limit reached", status))
        else:
            logger.warning("heartbeat returned status %d", status_code)
            self._emit(
                silenced,
                Event(
                    EventType.HEARTBEAT_ERROR,
                    f"heartbeat returned status {status_code}",
                    status,
                )
            )
