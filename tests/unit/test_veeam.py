"""Unit tests for the Veeam B&R REST client (urlopen faked out)."""

from __future__ import annotations

import io
import json
import urllib.error
import urllib.parse

import pytest

from config.settings import Settings
from scripts.health import veeam as veeam_mod
from scripts.health.errors import RemoteCallError
from scripts.health.veeam import VeeamClient, transport_mode_name


class FakeResponse(io.BytesIO):
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeApi:
    def __init__(self, pages):
        self.pages = list(pages)
        self.requests = []

    def __call__(self, req, timeout=None, context=None):
        self.requests.append(req)
        if req.full_url.endswith("/api/oauth2/token"):
            return FakeResponse(json.dumps({"access_token": "tok"}).encode())
        if req.full_url.endswith("/api/oauth2/logout"):
            return FakeResponse(b"")
        return FakeResponse(json.dumps(self.pages.pop(0)).encode())


def _proxy(name, mode, kind="ViProxy"):
    return {"id": name, "name": name, "type": kind, "server": {"transportMode": mode}}


def _client():
    return VeeamClient("https://vbr01:9419", "svc_veeam", "pw", api_version="1.1-rev2")


def test_lists_vmware_proxies_with_display_mode(monkeypatch):
    api = FakeApi(
        [
            {
                "data": [
                    _proxy("px01", "network"),
                    _proxy("px02", "virtualAppliance"),
                    _proxy("hv01", "auto", kind="HvProxy"),
                ],
                "pagination": {"total": 3, "count": 3, "skip": 0, "limit": 200},
            }
        ]
    )
    monkeypatch.setattr(veeam_mod.urllib.request, "urlopen", api)

    proxies = _client().list_proxies()

    assert proxies == [
        {"name": "px01", "transport_mode": "Network"},
        {"name": "px02", "transport_mode": "VirtualAppliance"},
    ]
    login, listing = api.requests
    assert urllib.parse.parse_qs(login.data.decode())["grant_type"] == ["password"]
    assert login.get_header("X-api-version") == "1.1-rev2"
    assert listing.get_header("Authorization") == "Bearer tok"


def test_follows_pagination(monkeypatch):
    api = FakeApi(
        [
            {"data": [_proxy("px01", "network")], "pagination": {"total": 2}},
            {"data": [_proxy("px02", "network")], "pagination": {"total": 2}},
        ]
    )
    monkeypatch.setattr(veeam_mod.urllib.request, "urlopen", api)

    proxies = _client().list_proxies()

    assert [p["name"] for p in proxies] == ["px01", "px02"]
    assert "skip=1" in api.requests[2].full_url


def test_http_error_becomes_remote_call_error(monkeypatch):
    def failing(req, timeout=None, context=None):
        raise urllib.error.HTTPError(req.full_url, 401, "Unauthorized", {}, None)

    monkeypatch.setattr(veeam_mod.urllib.request, "urlopen", failing)
    with pytest.raises(RemoteCallError, match="HTTP 401"):
        _client().list_proxies()


def test_unreachable_server_becomes_remote_call_error(monkeypatch):
    def failing(req, timeout=None, context=None):
        raise urllib.error.URLError("Name or service not known")

    monkeypatch.setattr(veeam_mod.urllib.request, "urlopen", failing)
    with pytest.raises(RemoteCallError, match="not reachable"):
        _client().login()


def test_logout_without_login_is_a_no_op(monkeypatch):
    api = FakeApi([])
    monkeypatch.setattr(veeam_mod.urllib.request, "urlopen", api)
    _client().logout()
    assert api.requests == []


def test_from_settings_uses_vbr_fields():
    cfg = Settings(VBR_SERVER="vbr01.lab", VBR_USER="svc", VBR_PASSWORD="pw", VBR_PORT=9420)
    client = VeeamClient.from_settings(cfg)
    assert client.base_url == "https://vbr01.lab:9420"
    assert client.username == "svc"


def test_unknown_transport_mode_passes_through():
    assert transport_mode_name("Fibre") == "Fibre"
    assert transport_mode_name("NETWORK") == "Network"
