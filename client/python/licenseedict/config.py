"""Client configuration and defaults."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import TYPE_CHECKING, Callable, Optional, Union

from .transport import DEFAULT_TIMEOUT

if TYPE_CHECKING:
    import httpx
    from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

    from .license import License

__all__ = [
    "DEFAULT_HEARTBEAT_INTERVAL",
    "DEFAULT_RENEW_BEFORE",
    "ENV_PUBLIC_KEY",
    "ENV_TOKEN",
    "ENV_SERVER_URL",
    "ENV_CACHE_DIR",
    "ClientConfig",
]

DEFAULT_HEARTBEAT_INTERVAL = 30.0  # seconds
DEFAULT_RENEW_BEFORE = timedelta(days=7)

ENV_PUBLIC_KEY = "LICENSEEDICT_PUBLIC_KEY"
ENV_TOKEN = "LICENSEEDICT_TOKEN"
ENV_SERVER_URL = "LICENSEEDICT_SERVER_URL"
ENV_CACHE_DIR = "LICENSEEDICT_CACHE_DIR"


@dataclass
class ClientConfig:
    """Settings for :class:`~licenseedict.client.LicenseClient`.

    Attributes:
        public_key: Ed25519 verification key as base64 text, raw 32 bytes,
            or a key object.  Falls back to ``LICENSEEDICT_PUBLIC_KEY``.
        token: Default signed token used by ``validate()`` when no token is
            passed or stored.  Falls back to ``LICENSEEDICT_TOKEN``.
        server_url: Licensing server base URL.  When empty, the URL embedded
            in the first validated token is adopted.  Falls back to
            ``LICENSEEDICT_SERVER_URL``.
        app_name: Application name, used for the cache directory.
        app_publisher: Publisher name, used for the cache directory.
        http_client: Pre-configured :class:`httpx.Client` to use.
        http_timeout: Request timeout in seconds when no client is given.
        cache_dir: Explicit cache directory.  Falls back to
            ``LICENSEEDICT_CACHE_DIR``.
        disable_cache: Turn license caching off entirely.
        offline_only: Never contact the server.  Disables renewal,
            heartbeats and checkout.
        user_agent: ``User-Agent`` header for server requests.
        instance_id: Seat instance ID; a random one is generated when empty.
        heartbeat_interval: Seconds between heartbeats until the server
            asks for a different interval.
        renew_before: Remaining validity at or below which a background
            renewal is started after ``validate()``.
        auto_renew: Enable background renewal.
        on_renew: Callback invoked with the new license after a successful
            background renewal.
        logger: Logger used for client messages.
    """

    public_key: Union[str, bytes, "Ed25519PublicKey", None] = None
    token: str = ""
    server_url: str = ""
    app_name: str = ""
    app_publisher: str = ""
    http_client: Optional["httpx.Client"] = None
    http_timeout: float = DEFAULT_TIMEOUT
    cache_dir: str = ""
    disable_cache: bool = False
    offline_only: bool = False
    user_agent: str = ""
    instance_id: str = ""
    heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL
    renew_before: timedelta = DEFAULT_RENEW_BEFORE
    auto_renew: bool = True
    on_renew: Optional[Callable[["License"], None]] = None
    logger: Optional[logging.Logger] = None

    def with_env_defaults(self) -> "ClientConfig":
        """Return a copy with empty fields filled from the environment."""
        return replace(
            self,
            public_key=self.public_key or os.environ.get(ENV_PUBLIC_KEY) or None,
            token=self.token or os.environ.get(ENV_TOKEN, ""),
            server_url=(self.server_url or os.environ.get(ENV_SERVER_URL, "")).rstrip("/"),
            cache_dir=self.cache_dir or os.environ.get(ENV_CACHE_DIR, ""),
            http_timeout=self.http_timeout or DEFAULT_TIMEOUT,
            heartbeat_interval=self.heartbeat_interval or DEFAULT_HEARTBEAT_INTERVAL,
            renew_before=self.renew_before or DEFAULT_RENEW_BEFORE,
        )
