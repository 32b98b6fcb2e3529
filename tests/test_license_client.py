from __future__ import annotations

import hashlib
import hmac
import json
from types import SimpleNamespace

import pytest
import requests

from arcane_installer.domain.errors import ConfigurationError, RemoteError
from arcane_installer.infrastructure.license_client import (
    DEFAULT_API_BASE,
    DOWNLOAD_TIMEOUT_SECONDS,
    JSON_TIMEOUT_SECONDS,
    HttpLicenseGateway,
    ensure_https,
    verify_signature,
)


class FakeSession:
    """Stands in for ``requests.Session``: queued responses, recorded posts."""

    def __init__(self, *responses):
        self.headers: dict[str, str] = {}
        self.responses = list(responses)
        self.posts: list[dict] = []

    def post(self, url, data=None, timeout=None):
        self.posts.append({"url": url, "data": data, "timeout": timeout})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _response(body: bytes, *, status: int = 200, headers: dict[str, str] | None = None):
    return SimpleNamespace(status_code=status, content=body, headers=headers or {})


def _json(payload: dict, **kwargs):
    return _response(json.dumps(payload).encode("utf-8"), **kwargs)


def _sign(body: bytes, key: str) -> str:
    return hmac.new(key.encode("utf-8"), body, hashlib.sha256).hexdigest()


@pytest.mark.installer
def test_ensure_https_rejects_plain_http():
    assert ensure_https(DEFAULT_API_BASE) == DEFAULT_API_BASE
    with pytest.raises(ConfigurationError, match="HTTPS"):
        ensure_https("http://license.example/api/")


@pytest.mark.installer
def test_gateway_refuses_non_https_base():
    with pytest.raises(ConfigurationError):
        HttpLicenseGateway("http://license.example/api", session=FakeSession())


@pytest.mark.installer
def test_verify_signature():
    body = b'{"success":true}'
    verify_signature(body, _sign(body, "k"), "k")
    verify_signature(body, _sign(body, "k").upper(), "k")
    # no key configured or no header sent: nothing to check
    verify_signature(body, "garbage", None)
    verify_signature(body, None, "k")
    with pytest.raises(RemoteError, match="signature"):
        verify_signature(body, _sign(b"other", "k"), "k")


@pytest.mark.installer
def test_authorize_posts_init_and_parses_session():
    session = FakeSession(_json({"success": True, "sessionid": "abc"}))
    gateway = HttpLicenseGateway("https://license.example/api", session=session)

    result = gateway.authorize("OWNER", "arcane", None, None)

    assert result.success is True
    assert result.session_id == "abc"
    post = session.posts[0]
    assert post["url"] == "https://license.example/api/index.php?type=init"
    assert post["data"] == {"ownerid": "OWNER", "name": "arcane"}
    assert post["timeout"] == JSON_TIMEOUT_SECONDS
    assert session.headers["User-Agent"].startswith("arcane-installer/")


@pytest.mark.installer
def test_authorize_reports_version_mismatch_message():
    session = FakeSession(_json({"success": False, "message": "invalidver", "sessionid": "s2"}))
    result = HttpLicenseGateway(session=session).authorize("OWNER", "arcane", "1.0.0", "enc")
    assert result.success is False
    assert result.message == "invalidver"
    assert session.posts[0]["data"]["ver"] == "1.0.0"


@pytest.mark.installer
def test_signed_response_is_checked_when_key_configured():
    body = json.dumps({"success": True}).encode("utf-8")
    good = FakeSession(_response(body, headers={"signature": _sign(body, "enc")}))
    assert HttpLicenseGateway(encryption_key="enc", session=good).license("s", "KEY", None).success is True

    bad = FakeSession(_response(body, headers={"signature": _sign(body, "other")}))
    with pytest.raises(RemoteError, match="signature"):
        HttpLicenseGateway(encryption_key="enc", session=bad).license("s", "KEY", None)


@pytest.mark.installer
@pytest.mark.parametrize("body", [b"<html>502</html>", b"[1, 2]"])
def test_non_object_json_is_remote_error(body: bytes):
    gateway = HttpLicenseGateway(session=FakeSession(_response(body, status=502)))
    with pytest.raises(RemoteError, match="invalid JSON"):
        gateway.license("s", "KEY", None)


@pytest.mark.installer
def test_transport_errors_become_remote_errors():
    gateway = HttpLicenseGateway(session=FakeSession(requests.ConnectionError("refused")))
    with pytest.raises(RemoteError, match="HTTP error"):
        gateway.authorize("OWNER", "arcane", None, None)


@pytest.mark.installer
def test_fetch_package_returns_raw_bytes():
    session = FakeSession(_response(b"PK\x03\x04zip"))
    data = HttpLicenseGateway(session=session).fetch_package("KEY", "OWNER", "arcane", "sess", None, "hw")
    assert data == b"PK\x03\x04zip"
    post = session.posts[0]
    assert post["url"].endswith("/download.php")
    assert post["timeout"] == DOWNLOAD_TIMEOUT_SECONDS
    assert post["data"] == {"key": "KEY", "ownerid": "OWNER", "name": "arcane", "sessionid": "sess", "hwid": "hw"}


@pytest.mark.installer
def test_fetch_package_rejects_non_200():
    gateway = HttpLicenseGateway(session=FakeSession(_response(b"denied", status=403)))
    with pytest.raises(RemoteError, match="403"):
        gateway.fetch_package("KEY", "OWNER", "arcane", "sess", None, None)


@pytest.mark.installer
def test_non_text_message_is_reported_as_text():
    session = FakeSession(_json({"success": False, "message": 404}), _json({"success": False, "message": ["expired"]}))
    gateway = HttpLicenseGateway(session=session)
    assert gateway.authorize("OWNER", "arcane", "1.0.0", None).message == "404"
    assert gateway.license("sess", "KEY", None).message == "['expired']"
