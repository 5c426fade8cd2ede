"""Unit tests for scripts/nfc_health_check.py (vCenter and Veeam faked out)."""

from __future__ import annotations

import functools
import io
from datetime import datetime

from rich.console import Console

from config import settings as settings_mod
from config.settings import Settings, load_settings
from scripts import nfc_health_check as cli
from scripts.health import Severity
from scripts.health.log import FindingLogger
from scripts.remote import ssh_session


class FakeVCenter:
    def __init__(self, hosts):
        self.hosts = hosts

    def cluster_hosts(self, cluster_name):
        return self.hosts

    def vm_placements(self):
        return {"px01": "esx01"}


class FakeVeeam:
    def list_proxies(self):
        return [{"name": "px01", "transport_mode": "Network"}]


def _logger():
    buf = io.StringIO()
    console = Console(file=buf, force_terminal=False, color_system=None, width=200)
    return FindingLogger(console, clock=lambda: datetime(2026, 10, 17, 9, 0, 0)), buf


def test_unknown_cluster_logs_one_error_and_no_findings():
    logger, buf = _logger()
    findings = cli.run_health_check("Nope", FakeVCenter(None), FakeVeeam(), logger)

    assert findings is None
    lines = buf.getvalue().splitlines()
    assert lines == [
        "[2026-10-17 09:00:00] ERROR: Cannot evaluate cluster Nope: "
        "cluster 'Nope' not found in vCenter"
    ]


def test_located_cluster_is_evaluated(make_host):
    logger, buf = _logger()
    vcenter = FakeVCenter([make_host("esx01"), make_host("esx02")])
    findings = cli.run_health_check("Prod-01", vcenter, FakeVeeam(), logger)

    out = buf.getvalue().splitlines()
    assert out[0].endswith("OK: Found 2 host(s) and 1 proxy VM(s)")
    # no SSH factory: the NFC memory check is handed to the operator
    manual = [f for f in findings if f.severity is Severity.MANUAL]
    assert any("no SSH credential" in f.message for f in manual)
    # every finding was also printed, after the summary line
    assert len(out) >= len(findings) + 1


def test_session_factory_needs_esxi_password():
    assert cli.build_session_factory(Settings()) is None

    factory = cli.build_session_factory(
        Settings(ESXI_SSH_PASSWORD="pw", SSH_CONNECT_TIMEOUT_SECONDS=5)
    )
    assert isinstance(factory, functools.partial)
    assert factory.func is ssh_session
    assert factory.keywords["credential"].username == "root"
    assert factory.keywords["credential"].password == "pw"
    assert factory.keywords["connect_timeout"] == 5


def test_blank_password_in_env_file_skips_ssh(tmp_path, monkeypatch, make_host):
    monkeypatch.setattr(settings_mod.os, "environ", {})
    env = tmp_path / ".env"
    env.write_text("ESXI_SSH_USER=root\nESXI_SSH_PASSWORD=\n", encoding="utf-8")
    factory = cli.build_session_factory(load_settings(str(env)))
    assert factory is None

    logger, _ = _logger()
    vcenter = FakeVCenter([make_host("esx01"), make_host("esx02")])
    findings = cli.run_health_check("Prod-01", vcenter, FakeVeeam(), logger, factory)
    nfc = [f for f in findings if "nfcsvc" in f.message]
    assert [f.severity for f in nfc] == [Severity.MANUAL, Severity.MANUAL]


def test_exit_codes_by_worst_severity():
    assert cli.EXIT_CODES[Severity.OK] == 0
    assert cli.EXIT_CODES[Severity.MANUAL] == 0
    assert cli.EXIT_CODES[Severity.WARN] == 1
    assert cli.EXIT_CODES[Severity.ERROR] == 2


def test_main_rejects_incomplete_configuration(monkeypatch, capsys):
    monkeypatch.setattr(cli, "load_settings", lambda path: Settings(VCENTER_SERVER="vc01"))
    assert cli.main(["--cluster", "Prod-01"]) == 2
    assert "Invalid configuration" in capsys.readouterr().out


def test_main_requires_a_cluster(monkeypatch, capsys):
    cfg = Settings(
        VCENTER_SERVER="vc01",
        VCENTER_USER="u",
        VCENTER_PASSWORD="p",
        VBR_SERVER="vbr01",
        VBR_USER="u",
        VBR_PASSWORD="p",
    )
    monkeypatch.setattr(cli, "load_settings", lambda path: cfg)
    assert cli.main([]) == 2
    assert "No cluster given" in capsys.readouterr().out
