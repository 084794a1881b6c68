"""Tests for LicenseClient validation and renewal."""

from __future__ import annotations

import base64
import threading
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from licenseedict import (
    CacheMissError,
    ClientClosedError,
    ErrorCode,
    EventType,
    License,
    LicenseClient,
    NoPublicKeyError,
    NoServerURLError,
    NoTokenError,
    RenewalResult,
    ValidationError,
)
from licenseedict.config import ENV_PUBLIC_KEY, ENV_TOKEN

SERVER = "https://licensing.test"
RENEW = "/api/v1/licenses/renew"


def _flip_byte(token: str, index: int = 5) -> str:
    raw = bytearray(base64.b64decode(token))
    raw[index] ^= 0xFF
    return base64.b64encode(bytes(raw)).decode("ascii")


@pytest.fixture
def cache_dir(tmp_path):
    return str(tmp_path / "cache")


@pytest.fixture
def client(public_key, server, cache_dir):
    c = LicenseClient(public_key=public_key, cache_dir=cache_dir, http_client=server.client())
    yield c
    c.close()


# ---------------------------------------------------------------------------
# Validate
# ---------------------------------------------------------------------------


class TestValidate:
    def test_valid_token(self, client, make_token):
        token = make_token()
        lic = client.validate(token)

        assert lic.valid is True
        assert lic.plan == "pro"
        assert lic.signed_token == token
        assert client.license == lic
        assert client.signed_token == token

    def test_corrupted_signature_without_cache(self, client, make_token):
        with pytest.raises(ValidationError) as exc_info:
            client.validate(_flip_byte(make_token()))

        assert exc_info.value.code is ErrorCode.INVALID_SIGNATURE
        assert client.license is None

    def test_expired_is_returned_invalid_and_cached(self, client, make_token):
        token = make_token(
            issued_at=datetime.now(timezone.utc) - timedelta(days=60),
            expires_at=datetime.now(timezone.utc) - timedelta(days=1),
        )
        lic = client.validate(token)

        assert lic.valid is False
        assert lic.license_id == "lic_123"
        assert client.cache.load() == lic

    def test_not_yet_valid(self, client, make_token):
        lic = client.validate(make_token(issued_at=datetime.now(timezone.utc) + timedelta(hours=2)))
        assert lic.valid is False

    def test_idempotent(self, client, make_token):
        token = make_token()
        first = client.validate(token)
        second = client.validate(token)
        assert first == second

    def test_offline_fallback_returns_cached(self, client, make_token):
        good = client.validate(make_token())

        fallback = client.validate(_flip_byte(make_token(license_id="other")))

        assert fallback == good

    def test_fallback_does_not_commit(self, client, make_token):
        client.validate(make_token())
        before = client.signed_token
        client.validate("@@@not-a-token@@@")
        assert client.signed_token == before

    def test_no_token(self, client):
        with pytest.raises(NoTokenError):
            client.validate()

    def test_no_public_key(self, make_token, cache_dir):
        with LicenseClient(cache_dir=cache_dir) as c:
            with pytest.raises(NoPublicKeyError):
                c.validate(make_token())

    def test_bad_public_key_rejected_at_construction(self):
        with pytest.raises(ValidationError) as exc_info:
            LicenseClient(public_key="short")
        assert exc_info.value.code is ErrorCode.PUBKEY_DECODE_ERROR

    def test_token_resolution_order(self, public_key, make_token, cache_dir):
        default = make_token(license_id="default")
        with LicenseClient(public_key=public_key, token=default, cache_dir=cache_dir) as c:
            assert c.validate().license_id == "default"

            explicit = make_token(license_id="explicit")
            assert c.validate(explicit).license_id == "explicit"

            # The stored token now takes precedence over the configured one.
            assert c.validate().license_id == "explicit"

    def test_env_defaults(self, monkeypatch, public_key, make_token, cache_dir):
        monkeypatch.setenv(ENV_PUBLIC_KEY, public_key)
        monkeypatch.setenv(ENV_TOKEN, make_token(license_id="from-env"))
        with LicenseClient(cache_dir=cache_dir) as c:
            assert c.validate().license_id == "from-env"

    def test_server_url_adopted_once(self, client, make_token):
        client.validate(make_token(server_url="https://first.test"))
        client.validate(make_token(server_url="https://second.test"))
        assert client.server_url == "https://first.test"

    def test_explicit_server_url_never_replaced(self, public_key, make_token, cache_dir):
        with LicenseClient(
            public_key=public_key, server_url="https://configured.test/", cache_dir=cache_dir
        ) as c:
            c.validate(make_token())
            assert c.server_url == "https://configured.test"

    def test_cache_write_failure_is_swallowed(self, public_key, make_token, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("x")
        with LicenseClient(public_key=public_key, cache_dir=str(blocker / "sub")) as c:
            assert c.validate(make_token()).valid is True

    def test_closed_client(self, client, make_token):
        client.close()
        with pytest.raises(ClientClosedError):
            client.validate(make_token())

    def test_concurrent_validations_keep_license_and_token_paired(self, client, make_token):
        tokens = [make_token(license_id=f"lic_{i}") for i in range(8)]
        errors = []

        def worker(token):
            try:
                for _ in range(10):
                    client.validate(token)
                    current = client.license
                    assert current is not None
            except Exception as exc:  # pragma: no cover - surfaced below
                errors.append(exc)

        threads = [threading.Thread(target=worker, args=(t,)) for t in tokens]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert errors == []
        assert client.license.signed_token == client.signed_token


class TestValidateFromCache:
    def test_commits_cached_license_without_checks(self, client, make_token, public_key, cache_dir):
        expired = make_token(expires_at=datetime.now(timezone.utc) - timedelta(days=1))
        client.validate(expired)

        with LicenseClient(public_key=public_key, cache_dir=cache_dir) as other:
            lic = other.validate_from_cache()
            assert lic.valid is False
            assert other.license == lic
            assert other.signed_token == expired

    def test_miss(self, client):
        with pytest.raises(CacheMissError):
            client.validate_from_cache()

    def test_closed(self, client):
        client.close()
        with pytest.raises(ClientClosedError):
            client.validate_from_cache()


# ---------------------------------------------------------------------------
# Renewal
# ---------------------------------------------------------------------------


def _renewal(token: str) -> dict:
    return {
        "status": "renewed",
        "signed_token": token,
        "issued_at": "2026-10-17T00:00:00Z",
        "expires_at": "2026-11-16T00:00:00Z",
        "previous_expires_at": "2026-10-20T00:00:00Z",
    }


class TestRenew:
    def test_renew_commits_and_emits(self, client, server, make_token):
        client.validate(make_token())
        new_token = make_token(license_id="renewed")
        server.route("POST", RENEW, (200, _renewal(new_token)))

        lic = client.renew()

        assert lic.valid is True
        assert lic.license_id == "renewed"
        assert client.signed_token == new_token
        event = client.events.get(timeout=1)
        assert event.type is EventType.LICENSE_RENEWED
        assert isinstance(event.data, RenewalResult)
        assert event.data.previous_expires_at == "2026-10-20T00:00:00Z"

    def test_renew_sends_current_token(self, client, server, make_token):
        token = make_token()
        client.validate(token)
        server.route("POST", RENEW, (200, _renewal(make_token())))

        client.renew()

        assert server.calls(RENEW) == [{"signed_token": token}]

    def test_non_200_is_renewal_failed(self, client, server, make_token):
        client.validate(make_token())
        server.route("POST", RENEW, (403, {"error": "revoked"}))

        with pytest.raises(ValidationError) as exc_info:
            client.renew()
        assert exc_info.value.code is ErrorCode.RENEWAL_FAILED

    def test_transport_failure_is_renewal_failed(self, client, server, make_token):
        client.validate(make_token())
        server.route("POST", RENEW, httpx.ConnectError("connection refused"))

        with pytest.raises(ValidationError) as exc_info:
            client.renew()
        assert exc_info.value.code is ErrorCode.RENEWAL_FAILED
        assert exc_info.value.cause is not None

    def test_unverifiable_new_token_is_stored_minimally(self, client, server, make_token):
        client.validate(make_token())
        previous = client.license
        server.route("POST", RENEW, (200, _renewal("opaque-token")))

        lic = client.renew()

        assert lic == License(signed_token="opaque-token")
        assert client.signed_token == "opaque-token"
        assert client.license == previous

    def test_invalid_new_license_is_not_announced(self, client, server, make_token):
        client.validate(make_token())
        expired = make_token(expires_at=datetime.now(timezone.utc) - timedelta(days=1))
        server.route("POST", RENEW, (200, _renewal(expired)))

        lic = client.renew()

        assert lic.valid is False
        assert lic.signed_token == expired
        assert client.events.drain() == []

    def test_no_server_url(self, public_key, make_token, cache_dir):
        with LicenseClient(public_key=public_key, cache_dir=cache_dir, auto_renew=False) as c:
            c.validate(make_token(server_url=""))
            with pytest.raises(NoServerURLError):
                c.renew()

    def test_offline_only_has_no_server(self, public_key, make_token, cache_dir):
        with LicenseClient(public_key=public_key, cache_dir=cache_dir, offline_only=True) as c:
            c.validate(make_token())
            with pytest.raises(NoServerURLError):
                c.renew()

    def test_no_token(self, public_key, cache_dir):
        with LicenseClient(public_key=public_key, server_url=SERVER, cache_dir=cache_dir) as c:
            with pytest.raises(NoTokenError):
                c.renew()

    def test_renew_result_returns_metadata(self, client, server, make_token):
        client.validate(make_token())
        new_token = make_token(license_id="renewed")
        server.route("POST", RENEW, (200, _renewal(new_token)))

        result = client.renew_result()

        assert result.status == "renewed"
        assert result.expires_at == "2026-11-16T00:00:00Z"
        assert client.license.license_id == "renewed"
        assert client.events.get(timeout=1).type is EventType.LICENSE_RENEWED


class TestAutoRenew:
    def test_near_expiry_triggers_background_renewal(self, public_key, server, make_token, cache_dir):
        renewed_cb = threading.Event()
        received = []

        def on_renew(lic):
            received.append(lic)
            renewed_cb.set()

        new_token = make_token(license_id="renewed")
        server.route("POST", RENEW, (200, _renewal(new_token)))

        with LicenseClient(
            public_key=public_key,
            cache_dir=cache_dir,
            http_client=server.client(),
            on_renew=on_renew,
        ) as c:
            lic = c.validate(make_token(expires_at=datetime.now(timezone.utc) + timedelta(hours=1)))
            assert lic.valid is True

            event = c.events.get(timeout=5)
            assert event.type is EventType.LICENSE_RENEWED
            assert renewed_cb.wait(timeout=5)
            assert received[0].license_id == "renewed"
            assert c.signed_token == new_token

    def test_far_from_expiry_does_not_renew(self, client, server, make_token):
        client.validate(make_token())
        assert server.calls(RENEW) == []

    def test_custom_threshold(self, public_key, server, make_token, cache_dir):
        far = make_token(expires_at=datetime.now(timezone.utc) + timedelta(days=90))
        server.route("POST", RENEW, (200, _renewal(far)))
        with LicenseClient(
            public_key=public_key,
            cache_dir=cache_dir,
            http_client=server.client(),
            renew_before=timedelta(days=60),
        ) as c:
            c.validate(make_token())
            assert c.events.get(timeout=5).type is EventType.LICENSE_RENEWED

    def test_disabled(self, public_key, server, make_token, cache_dir):
        with LicenseClient(
            public_key=public_key,
            cache_dir=cache_dir,
            http_client=server.client(),
            auto_renew=False,
        ) as c:
            c.validate(make_token(expires_at=datetime.now(timezone.utc) + timedelta(hours=1)))
        assert server.calls(RENEW) == []

    def test_invalid_license_is_not_renewed(self, client, server, make_token):
        client.validate(make_token(expires_at=datetime.now(timezone.utc) - timedelta(hours=1)))
        assert server.calls(RENEW) == []

    def test_failure_is_silent(self, public_key, server, make_token, cache_dir):
        attempted = threading.Event()

        def reply(_body):
            attempted.set()
            return (500, {"error": "boom"})

        server.route("POST", RENEW, reply)
        with LicenseClient(
            public_key=public_key, cache_dir=cache_dir, http_client=server.client()
        ) as c:
            token = make_token(expires_at=datetime.now(timezone.utc) + timedelta(hours=1))
            lic = c.validate(token)
            assert attempted.wait(timeout=5)
            assert lic.valid is True
            assert c.signed_token == token


class TestLifecycle:
    def test_close_is_idempotent(self, client):
        client.close()
        client.close()
        assert client.closed
        assert client.events.closed

    def test_repr(self, client, make_token):
        client.validate(make_token())
        assert "lic_123" in repr(client)
