"""
tests/conftest.py — Shared fixtures and path setup for all tests.

Adds the project root to sys.path so unit tests can import:
    from config.settings import Settings
    from scripts.health import Finding, Severity
    from scripts.remote import ssh_session
"""
import pathlib
import sys
from datetime import UTC, datetime, timedelta

import pytest

# Make project root importable without installing as a package
PROJECT_ROOT = pathlib.Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from scripts.health.inventory import ClusterInventory, Host, Proxy  # noqa: E402

NOW = datetime(2026, 10, 17, 12, 0, tzinfo=UTC)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_host():
    def _make(name: str, **overrides) -> Host:
        base = dict(
            name=name,
            cluster="Prod-01",
            build="24022510",
            boot_time=NOW - timedelta(days=10),
            vm_count=20,
            advanced_settings={},
        )
        base.update(overrides)
        return Host(**base)

    return _make


@pytest.fixture
def make_proxy():
    def _make(name: str, host: str = "esx01", mode: str = "Network") -> Proxy:
        return Proxy(name=name, host=host, transport_mode=mode)

    return _make


@pytest.fixture
def make_inventory(make_host):
    def _make(hosts=None, proxies=()) -> ClusterInventory:
        if hosts is None:
            hosts = [make_host("esx01"), make_host("esx02")]
        return ClusterInventory(cluster="Prod-01", hosts=tuple(hosts), proxies=tuple(proxies))

    return _make
