"""Unit tests for scripts/ssh_probe.py — SSH and sudo connectivity test."""

from __future__ import annotations

from contextlib import contextmanager

from config.settings import Settings
from scripts import ssh_probe
from scripts.health.errors import RemoteCallError
from scripts.host_inventory import inventory_from_payload
from scripts.remote import CommandResult


class FakeSession:
    def __init__(self, host, answers):
        self.host = host
        self.answers = answers
        self.commands = []
        self.inputs = []

    def run(self, command, timeout=None, input=None):  # noqa: A002
        self.commands.append(command)
        self.inputs.append(input)
        rc, out, err = self.answers.get(command.split()[0], (0, "", ""))
        return CommandResult(command, rc, out, err)


def _fake_sessions(monkeypatch, per_host):
    sessions = {}

    @contextmanager
    def fake_ssh_session(host, credential, **kwargs):
        answers = per_host[host]
        if isinstance(answers, Exception):
            raise answers
        session = FakeSession(host, answers)
        sessions[host] = session
        yield session

    monkeypatch.setattr(ssh_probe, "ssh_session", fake_ssh_session)
    return sessions


def test_all_checks_pass(monkeypatch):
    _fake_sessions(monkeypatch, {"app01": {"whoami": (0, "svc_patch\n", "")}})
    inv = inventory_from_payload(["app01"])
    results = ssh_probe.run_probes(inv, Settings(LINUX_SSH_USER="svc_patch"))

    assert [(r.name, r.passed) for r in results] == [
        ("SSH connect", True),
        ("Remote user", True),
        ("sudo (passwordless)", True),
    ]
    assert results[1].message == "svc_patch"


def test_connect_failure_reported_and_next_host_probed(monkeypatch):
    sessions = _fake_sessions(
        monkeypatch,
        {
            "app01": RemoteCallError("connection failed: Permission denied"),
            "app02": {},
        },
    )
    inv = inventory_from_payload(["app01", "app02"])
    results = ssh_probe.run_probes(inv, Settings(LINUX_SSH_USER="svc_patch"))

    app01 = [r for r in results if r.host == "app01"]
    assert len(app01) == 1
    assert app01[0].passed is False
    assert "Permission denied" in app01[0].detail
    assert "app02" in sessions


def test_sudo_requiring_password_fails(monkeypatch):
    _fake_sessions(
        monkeypatch, {"app01": {"sudo": (1, "", "sudo: a password is required\n")}}
    )
    inv = inventory_from_payload(["app01"])
    results = ssh_probe.run_probes(inv, Settings(LINUX_SSH_USER="svc_patch"))
    sudo = results[-1]
    assert sudo.passed is False
    assert "password is required" in sudo.detail


def test_sudo_password_sent_on_stdin(monkeypatch):
    sessions = _fake_sessions(monkeypatch, {"app01": {}})
    inv = inventory_from_payload(["app01"])
    cfg = Settings(LINUX_SSH_USER="svc_patch", LINUX_SSH_PASSWORD="pw")
    results = ssh_probe.run_probes(inv, cfg)

    session = sessions["app01"]
    assert session.commands[-1] == "sudo -S -p '' -v"
    assert session.inputs[-1] == "pw\n"
    assert "pw" not in session.commands[-1]
    assert results[-1].name == "sudo (password)"


def test_missing_user_is_reported_per_host(monkeypatch):
    _fake_sessions(monkeypatch, {})
    inv = inventory_from_payload(["app01"])
    [result] = ssh_probe.run_probes(inv, Settings())
    assert result.passed is False
    assert "LINUX_SSH_USER" in result.message


def test_main_exit_codes(monkeypatch, tmp_path):
    monkeypatch.setattr(ssh_probe, "load_settings", lambda path: Settings(LINUX_SSH_USER="ops"))
    _fake_sessions(monkeypatch, {"app01": {}, "app02": {"sudo": (1, "", "denied")}})
    hosts = tmp_path / "hosts.yml"
    hosts.write_text("- app01\n", encoding="utf-8")
    assert ssh_probe.main([str(hosts)]) == 0

    hosts.write_text("- app01\n- app02\n", encoding="utf-8")
    assert ssh_probe.main([str(hosts)]) == 1

    assert ssh_probe.main([str(tmp_path / "missing.yml")]) == 2
