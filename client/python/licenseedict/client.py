"""Full-featured license client: validation, renewal, heartbeat and checkout."""

from __future__ import annotations

import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Iterator, Optional, Tuple

from .cache import CacheStore
from .config import ClientConfig
from .errors import (
    CacheError,
    ClientClosedError,
    ErrorCode,
    LicenseEdictError,
    NoPublicKeyError,
    NoServerURLError,
    NoTokenError,
    TransportError,
    ValidationError,
)
from .events import Event, EventBus, EventType, RenewalResult
from .heartbeat import HeartbeatOptions, HeartbeatScheduler
from .license import License
from .token import load_public_key, verify_token
from .transport import HTTPTransport

__all__ = ["RENEW_PATH", "CHECKOUT_PATH", "LicenseClient"]

logger = logging.getLogger("licenseedict.client")

RENEW_PATH = "/api/v1/licenses/renew"
CHECKOUT_PATH = "/api/v1/concurrency/checkout"

_HTTP_OK = 200


class _RWLock:
    """Shared reads, exclusive writes."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class LicenseClient:
    """Manages one signed license token for the lifetime of the host process.

    Parameters:
        config: A :class:`ClientConfig`.  Keyword arguments override or
            replace its fields, so ``LicenseClient(public_key=..., app_name=...)``
            works without building a config first.

    Raises:
        ValidationError: ``PUBKEY_DECODE_ERROR`` if the configured public key
            is malformed.

    Thread safety:
        All public methods may be called from any thread.  The current
        license and its token are replaced together under one write lock and
        are never observed half-updated.  Heartbeat control uses a separate
        lock so it never blocks validation.

    Events:
        :attr:`events` is a bounded, drop-on-full :class:`EventBus`.  Events
        are dropped when nobody drains it; poll :attr:`license` instead if
        every state change matters.
    """

    def __init__(self, config: Optional[ClientConfig] = None, **kwargs: Any) -> None:
        cfg = replace(config or ClientConfig(), **kwargs).with_env_defaults()
        self._config = cfg
        self._logger = cfg.logger or logger
        self._public_key = load_public_key(cfg.public_key)
        self._renew_before = cfg.renew_before

        self._cache = CacheStore.for_app(
            cfg.app_name, cfg.app_publisher, cfg.cache_dir, cfg.disable_cache
        )
        self._transport = HTTPTransport(cfg.http_client, cfg.http_timeout, cfg.user_agent)
        self._events = EventBus()

        # Shared state (guarded by _state_lock).  License and token always
        # travel together as one tuple.
        self._state_lock = _RWLock()
        self._state: Tuple[Optional[License], str] = (None, cfg.token)
        self._server_url = cfg.server_url
        self._closed = False

        self._heartbeat = HeartbeatScheduler(
            self._transport,
            self._events,
            token_source=lambda: self.signed_token,
            default_interval=cfg.heartbeat_interval,
            default_instance_id=cfg.instance_id or str(uuid.uuid4()),
        )

    # ------------------------------------------------------------------
    # State accessors
    # ------------------------------------------------------------------

    @property
    def license(self) -> Optional[License]:
        """The most recently committed license, or None."""
        with self._state_lock.read():
            return self._state[0]

    @property
    def signed_token(self) -> str:
        """The currently stored signed token (may be empty)."""
        with self._state_lock.read():
            return self._state[1]

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def cache(self) -> CacheStore:
        return self._cache

    @property
    def closed(self) -> bool:
        with self._state_lock.read():
            return self._closed

    @property
    def heartbeat_running(self) -> bool:
        return self._heartbeat.running

    @property
    def heartbeat_interval(self) -> float:
        return self._heartbeat.interval

    @property
    def server_url(self) -> str:
        """The licensing server in use, or ``""`` when none is known."""
        if self._config.offline_only:
            return ""
        with self._state_lock.read():
            if self._server_url:
                return self._server_url
            current = self._state[0]
            return current.server_url.rstrip("/") if current is not None else ""

    def _check_open(self) -> None:
        if self.closed:
            raise ClientClosedError()

    def _current_token(self) -> str:
        with self._state_lock.read():
            token = self._state[1]
        return token or self._config.token

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, signed_token: Optional[str] = None) -> License:
        """Verify a signed token, check its validity window, and commit it.

        The token is taken from *signed_token*, else the stored token, else
        the configured default token.

        Offline-first: if verification fails but a cached license exists,
        the cached license is returned unchanged and no error is raised.  A
        license outside its validity window is returned with
        ``valid=False``; callers must check :attr:`License.valid`.

        Raises:
            ClientClosedError: If the client is closed.
            NoTokenError: If no token can be resolved.
            NoPublicKeyError: If no verification key is configured.
            ValidationError: If verification fails and nothing is cached.
        """
        self._check_open()

        token = signed_token or self._current_token()
        if not token:
            raise NoTokenError()
        if self._public_key is None:
            raise NoPublicKeyError()

        try:
            payload = verify_token(self._public_key, token)
        except ValidationError as exc:
            cached = self._load_cached()
            if cached is not None:
                self._logger.warning(
                    "license verification failed (%s); using cached license", exc.code.value
                )
                return cached
            raise

        license = License.evaluate(payload, token)
        if not license.valid:
            self._logger.warning(
                "license %s is outside its validity window", license.license_id
            )

        with self._state_lock.write():
            if not self._server_url and license.server_url:
                self._server_url = license.server_url.rstrip("/")
            self._state = (license, token)

        try:
            self._cache.save(license)
        except CacheError as exc:
            self._logger.debug("license cache write failed: %s", exc)

        self._maybe_auto_renew(license)
        return license

    def validate_from_cache(self) -> License:
        """Commit the cached license without verification or time checks.

        Raises:
            ClientClosedError: If the client is closed.
            CacheMissError: If nothing is cached.
            CacheError: If the cache cannot be read.
        """
        self._check_open()

        cached = self._cache.load()
        with self._state_lock.write():
            self._state = (cached, cached.signed_token or self._state[1])
        return cached

    def _load_cached(self) -> Optional[License]:
        try:
            return self._cache.load()
        except CacheError as exc:
            self._logger.debug("no cached license available: %s", exc)
            return None

    # ------------------------------------------------------------------
    # Renewal
    # ------------------------------------------------------------------

    def renew(self) -> License:
        """Exchange the current token for a renewed one.

        On success the new token is fully validated and committed, a
        ``LICENSE_RENEWED`` event is emitted, and the new license returned.
        If the new token cannot be validated into a valid license, it is
        still stored and a license carrying only ``signed_token`` is
        returned.

        Raises:
            ClientClosedError, NoServerURLError, NoTokenError: Preconditions.
            ValidationError: ``RENEWAL_FAILED`` on transport failure or a
                non-200 response.
        """
        result = self._request_renewal()
        renewed = self._revalidate(result)
        if renewed is not None:
            return renewed

        if result.signed_token:
            with self._state_lock.write():
                self._state = (self._state[0], result.signed_token)
        return License(signed_token=result.signed_token)

    def renew_result(self) -> RenewalResult:
        """Like :meth:`renew` but return the server's renewal metadata."""
        result = self._request_renewal()
        self._revalidate(result)
        return result

    def _request_renewal(self) -> RenewalResult:
        self._check_open()

        server_url = self.server_url
        if not server_url:
            raise NoServerURLError()
        token = self._current_token()
        if not token:
            raise NoTokenError()

        try:
            status_code, payload = self._transport.post(
                server_url + RENEW_PATH, {"signed_token": token}
            )
        except TransportError as exc:
            raise ValidationError(
                ErrorCode.RENEWAL_FAILED, "renewal request failed", exc
            ) from exc

        if status_code != _HTTP_OK:
            raise ValidationError(
                ErrorCode.RENEWAL_FAILED, f"renewal returned status {status_code}"
            )
        return RenewalResult.from_dict(payload)

    def _revalidate(self, result: RenewalResult) -> Optional[License]:
        if not result.signed_token or self._public_key is None:
            return None

        try:
            renewed = self.validate(result.signed_token)
        except LicenseEdictError as exc:
            self._logger.warning("renewed token failed validation: %s", exc)
            return None

        # A cache fallback hands back the previous license, not the renewal.
        if not renewed.valid or renewed.signed_token != result.signed_token:
            return None

        self._logger.info("license %s renewed until %s", renewed.license_id, renewed.expires_at)
        self._events.emit(Event(EventType.LICENSE_RENEWED, "license renewed", result))
        return renewed

    def _maybe_auto_renew(self, license: License) -> None:
        cfg = self._config
        if not cfg.auto_renew or cfg.offline_only:
            return
        if not license.valid or license.expires_at is None:
            return

        remaining = license.expires_at - datetime.now(timezone.utc)
        if remaining > self._renew_before:
            return

        self._logger.info(
            "license %s expires in %s; renewing in background", license.license_id, remaining
        )
        threading.Thread(
            target=self._auto_renew, name="licenseedict-renew", daemon=True
        ).start()

    def _auto_renew(self) -> None:
        try:
            renewed = self.renew()
        except LicenseEdictError as exc:
            self._logger.debug("background renewal failed: %s", exc)
            return

        on_renew = self._config.on_renew
        if on_renew is not None:
            try:
                on_renew(renewed)
            except Exception:
                self._logger.exception("exception in on_renew callback")

    # ------------------------------------------------------------------
    # Heartbeat and seats
    # ------------------------------------------------------------------

    def start_heartbeat(self, options: Optional[HeartbeatOptions] = None) -> EventBus:
        """Start periodic seat heartbeats in a background thread.

        Returns:
            The client's :class:`EventBus`, which receives ``HEARTBEAT_*``
            events.  Delivery is best effort.

        Raises:
            ClientClosedError: If the client is closed.
            HeartbeatAlreadyRunningError: If a heartbeat is already running.
            NoServerURLError: If no server URL is known.
            NoTokenError: If no token is available.
        """
        self._check_open()
        self._heartbeat.start(self._heartbeat_target, options)
        return self._events

    def _heartbeat_target(self) -> Tuple[str, str]:
        # Re-checked under the heartbeat lock so close() cannot miss a loop.
        self._check_open()
        server_url = self.server_url
        if not server_url:
            raise NoServerURLError()
        token = self._current_token()
        if not token:
            raise NoTokenError()
        return server_url, token

    def stop_heartbeat(self, timeout: Optional[float] = None) -> bool:
        """Stop the heartbeat and wait for its thread.  No-op if not running.

        Returns False if *timeout* expired with a send still in flight.  That
        send emits nothing, and :meth:`start_heartbeat` raises
        :class:`HeartbeatAlreadyRunningError` until it completes.
        """
        return self._heartbeat.stop(timeout)

    def checkout(self) -> None:
        """Stop the heartbeat and release this instance's seat.

        Raises:
            ClientClosedError, NoServerURLError, NoTokenError: Preconditions.
            ValidationError: ``SERVER_UNREACHABLE`` on transport failure or a
                non-200 response.
        """
        self._check_open()
        self._heartbeat.stop()

        server_url = self.server_url
        if not server_url:
            raise NoServerURLError()
        with self._state_lock.read():
            token = self._state[1]
        if not token:
            raise NoTokenError()

        options = self._heartbeat.options
        body = {"signed_token": token, "instance_id": options.instance_id}
        if options.user_hash:
            body["user_hash"] = options.user_hash

        try:
            status_code, _payload = self._transport.delete(server_url + CHECKOUT_PATH, body)
        except TransportError as exc:
            raise ValidationError(
                ErrorCode.SERVER_UNREACHABLE, "checkout request failed", exc
            ) from exc

        if status_code != _HTTP_OK:
            raise ValidationError(
                ErrorCode.SERVER_UNREACHABLE, f"checkout returned status {status_code}"
            )

        self._logger.info("seat released (instance=%s)", options.instance_id)
        self._events.emit(Event(EventType.SEAT_RELEASED, "seat released"))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Stop the heartbeat, close the event bus and release HTTP resources.

        Does not check out; the seat expires on the server.  Safe to call
        multiple times.
        """
        with self._state_lock.write():
            if self._closed:
                return
            self._closed = True

        self._heartbeat.stop()
        self._events.close()
        self._transport.close()
        self._logger.debug("license client closed")

    def __enter__(self) -> "LicenseClient":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        current = self.license
        return (
            f"<LicenseClient license={current.license_id if current else None!r} "
            f"valid={current.valid if current else False} "
            f"heartbeat={self.heartbeat_running} closed={self.closed}>"
        )
