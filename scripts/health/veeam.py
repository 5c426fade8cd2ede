"""
scripts/health/veeam.py — Veeam Backup & Replication REST API client.

Only what the health check reads: the list of VMware backup proxies and
their transport mode. Uses the VBR REST API (default port 9419) with an
OAuth2 password grant; every request carries the x-api-version header.
"""

from __future__ import annotations

import json
import ssl
import urllib.error
import urllib.parse
import urllib.request
from typing import TYPE_CHECKING, Any

from scripts.health.errors import RemoteCallError

if TYPE_CHECKING:
    from config.settings import Settings

PAGE_SIZE = 200

# REST enum value -> name shown in the console
TRANSPORT_MODE_NAMES = {
    "auto": "Automatic",
    "directaccess": "DirectAccess",
    "virtualappliance": "VirtualAppliance",
    "network": "Network",
}


class VeeamClient:
    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        api_version: str = "1.1-rev2",
        verify_ssl: bool = False,
        timeout: int = 30,
    ):
        self.base_url = base_url.rstrip("/")
        self.username = username
        self._password = password
        self.api_version = api_version
        self.timeout = timeout
        self._ssl_context = ssl.create_default_context()
        if not verify_ssl:
            self._ssl_context.check_hostname = False
            self._ssl_context.verify_mode = ssl.CERT_NONE
        self._token: str | None = None

    @classmethod
    def from_settings(cls, cfg: Settings) -> VeeamClient:
        return cls(
            cfg.vbr_base_url,
            cfg.VBR_USER or "",
            cfg.VBR_PASSWORD.get_secret_value() if cfg.VBR_PASSWORD else "",
            api_version=cfg.VBR_API_VERSION,
            verify_ssl=cfg.VBR_VERIFY_SSL,
            timeout=cfg.HTTP_TIMEOUT_SECONDS,
        )

    def _request(
        self,
        method: str,
        path: str,
        form: dict[str, str] | None = None,
        auth: bool = True,
    ) -> Any:
        headers = {"x-api-version": self.api_version, "Accept": "application/json"}
        data = None
        if form is not None:
            data = urllib.parse.urlencode(form).encode("utf-8")
            headers["Content-Type"] = "application/x-www-form-urlencoded"
        if auth:
            if self._token is None:
                self.login()
            headers["Authorization"] = f"Bearer {self._token}"
        req = urllib.request.Request(
            f"{self.base_url}{path}", data=data, headers=headers, method=method
        )
        try:
            ctx = self._ssl_context
            with urllib.request.urlopen(req, timeout=self.timeout, context=ctx) as resp:
                body = resp.read()
        except urllib.error.HTTPError as e:
            raise RemoteCallError(
                f"Veeam API returned HTTP {e.code}", {"method": method, "path": path}
            ) from e
        except urllib.error.URLError as e:
            raise RemoteCallError(
                f"Veeam API not reachable at {self.base_url}: {e.reason}", {"path": path}
            ) from e
        if not body:
            return None
        try:
            return json.loads(body)
        except json.JSONDecodeError as e:
            raise RemoteCallError("Veeam API returned non-JSON body", {"path": path}) from e

    def login(self) -> None:
        payload = self._request(
            "POST",
            "/api/oauth2/token",
            form={
                "grant_type": "password",
                "username": self.username,
                "password": self._password,
            },
            auth=False,
        )
        token = (payload or {}).get("access_token")
        if not token:
            raise RemoteCallError("Veeam API login returned no access token")
        self._token = token

    def logout(self) -> None:
        if self._token is None:
            return
        try:
            self._request("POST", "/api/oauth2/logout")
        finally:
            self._token = None

    def list_proxies(self) -> list[dict[str, str]]:
        """VMware backup proxies as ``{"name", "transport_mode"}`` dicts, API order."""
        proxies: list[dict[str, str]] = []
        skip = 0
        while True:
            page = self._request(
                "GET",
                f"/api/v1/backupInfrastructure/proxies?skip={skip}&limit={PAGE_SIZE}",
            ) or {}
            items = page.get("data", [])
            for item in items:
                if item.get("type", "ViProxy") != "ViProxy":
                    continue
                proxies.append(
                    {
                        "name": item.get("name", ""),
                        "transport_mode": transport_mode_name(
                            (item.get("server") or {}).get("transportMode", "")
                        ),
                    }
                )
            total = (page.get("pagination") or {}).get("total", 0)
            skip += len(items)
            if not items or skip >= total:
                return proxies


def transport_mode_name(raw: str) -> str:
    return TRANSPORT_MODE_NAMES.get(raw.lower(), raw)
