"""HTTPS client for the license API (session init, license check, package download).

No retries: a failed call aborts the operation and retry policy belongs to the
caller (cron for ``autoupdate``).
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from typing import Any, Mapping

import requests

from arcane_installer import __version__
from arcane_installer.application.ports import AuthorizationResult, LicenseResult
from arcane_installer.domain.errors import RemoteError
from arcane_installer.domain.install_policy import DEFAULT_API_BASE, ensure_https

logger = logging.getLogger(__name__)

JSON_TIMEOUT_SECONDS = 30
DOWNLOAD_TIMEOUT_SECONDS = 120


def verify_signature(body: bytes, signature: str | None, encryption_key: str | None) -> None:
    """Check the ``signature`` header (HMAC-SHA256 of the body) when a key is configured."""

    if not encryption_key or not signature:
        return
    expected = hmac.new(encryption_key.encode("utf-8"), body, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(signature.strip().lower(), expected):
        raise RemoteError("invalid response signature")


def _message(data: Mapping[str, Any]) -> str | None:
    value = data.get("message")
    return None if value in (None, "") else str(value)


def _compact(params: Mapping[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in params.items() if v is not None}


class HttpLicenseGateway:
    def __init__(
        self,
        api_base: str = DEFAULT_API_BASE,
        *,
        encryption_key: str | None = None,
        session: requests.Session | None = None,
    ):
        self.api_base = ensure_https(api_base if api_base.endswith("/") else api_base + "/")
        self.encryption_key = encryption_key
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", f"arcane-installer/{__version__}")

    def _post(self, path: str, params: Mapping[str, Any], *, timeout: int) -> requests.Response:
        url = ensure_https(self.api_base + path)
        try:
            return self.session.post(url, data=_compact(params), timeout=timeout)
        except requests.RequestException as exc:
            raise RemoteError(f"HTTP error: {exc}") from exc

    def _post_json(self, path: str, params: Mapping[str, Any]) -> dict[str, Any]:
        response = self._post(path, params, timeout=JSON_TIMEOUT_SECONDS)
        verify_signature(response.content, response.headers.get("signature"), self.encryption_key)
        try:
            data = json.loads(response.content.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise RemoteError(f"invalid JSON response (HTTP {response.status_code})") from exc
        if not isinstance(data, dict):
            raise RemoteError("invalid JSON response: expected an object")
        return data

    def authorize(
        self,
        owner_id: str,
        app_name: str,
        current_version: str | None,
        encryption_key: str | None,
    ) -> AuthorizationResult:
        data = self._post_json(
            "index.php?type=init",
            {"ownerid": owner_id, "name": app_name, "ver": current_version, "enckey": encryption_key},
        )
        logger.debug("init response: success=%s message=%s", data.get("success"), data.get("message"))
        return AuthorizationResult(
            success=data.get("success") is True,
            message=_message(data),
            session_id=str(data["sessionid"]) if data.get("sessionid") else None,
        )

    def license(self, session_id: str, license_key: str, hwid: str | None) -> LicenseResult:
        data = self._post_json(
            "index.php?type=license",
            {"sessionid": session_id, "key": license_key, "hwid": hwid},
        )
        return LicenseResult(success=data.get("success") is True, message=_message(data))

    def fetch_package(
        self,
        license_key: str,
        owner_id: str,
        app_name: str,
        session_id: str,
        token: str | None,
        hwid: str | None,
    ) -> bytes:
        response = self._post(
            "download.php",
            {
                "key": license_key,
                "ownerid": owner_id,
                "name": app_name,
                "sessionid": session_id,
                "token": token,
                "hwid": hwid,
            },
            timeout=DOWNLOAD_TIMEOUT_SECONDS,
        )
        if response.status_code != 200:
            raise RemoteError(f"download failed, HTTP status {response.status_code}")
        logger.info("Downloaded package (%d bytes)", len(response.content))
        return response.content
