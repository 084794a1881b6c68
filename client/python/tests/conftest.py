"""Shared fixtures: signing keys, token factory, and a stub licensing server."""

from __future__ import annotations

import json
import tempfile
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Tuple, Union

import httpx
import pytest

from licenseedict.config import ENV_CACHE_DIR, ENV_PUBLIC_KEY, ENV_SERVER_URL, ENV_TOKEN
from licenseedict.keygen import generate_keypair, sign_token

SERVER_URL = "https://licensing.test"


@pytest.fixture(autouse=True)
def _isolate(monkeypatch, tmp_path):
    for name in (ENV_PUBLIC_KEY, ENV_TOKEN, ENV_SERVER_URL, ENV_CACHE_DIR):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "xdg"))
    monkeypatch.setattr(tempfile, "tempdir", str(tmp_path / "tmp"))
    (tmp_path / "tmp").mkdir()


@pytest.fixture
def keypair():
    return generate_keypair()


@pytest.fixture
def public_key(keypair) -> str:
    return keypair[1]


@pytest.fixture
def make_token(keypair) -> Callable[..., str]:
    """Sign a license payload; keyword arguments override the defaults."""
    private_key = keypair[0]

    def _make(**overrides: Any) -> str:
        now = datetime.now(timezone.utc)
        payload: Dict[str, Any] = {
            "license_id": "lic_123",
            "product_id": "prod_456",
            "license_key": "KEY-AAAA-BBBB",
            "licensee": "Acme Corp",
            "plan": "pro",
            "features": ["PRO", "EXPORT"],
            "max_seats": 5,
            "issued_at": now - timedelta(hours=1),
            "expires_at": now + timedelta(days=30),
            "server_url": SERVER_URL,
        }
        payload.update(overrides)
        return sign_token(private_key, payload)

    return _make


Reply = Union[Tuple[int, Dict[str, Any]], Exception]


class StubServer:
    """Canned responses per ``(method, path)`` served through httpx.MockTransport.

    A route may map to a ``(status, body)`` tuple, a list of them (consumed
    in order, the last one repeats), an exception to raise, or a callable
    taking the decoded request body.
    """

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], Any] = {}
        self.requests: List[Tuple[str, str, Dict[str, Any]]] = []
        self._lock = threading.Lock()

    def route(self, method: str, path: str, reply: Any) -> None:
        self.routes[(method, path)] = reply

    def calls(self, path: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [body for _m, p, body in self.requests if p == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else {}
        key = (request.method, request.url.path)
        with self._lock:
            self.requests.append((request.method, request.url.path, body))
            reply = self.routes.get(key, (404, {"error": "not found"}))
            if isinstance(reply, list):
                reply = reply.pop(0) if len(reply) > 1 else reply[0]

        if callable(reply):
            reply = reply(body)
        if isinstance(reply, Exception):
            raise reply
        status, data = reply
        return httpx.Response(status, json=data, request=request)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def server() -> StubServer:
    return StubServer()
