#!/usr/bin/env python3
"""
scripts/ssh_probe.py — Non-destructive SSH / sudo connectivity test.

For every host in the inventory, one at a time:
  1. open an SSH session
  2. run `whoami`
  3. check sudo: `sudo -n true`, or `sudo -S -v` fed the password on stdin
     when LINUX_SSH_PASSWORD is set

Nothing on the remote host is changed.

Usage:
    python3 scripts/ssh_probe.py inventory/hosts.yml
    python3 scripts/ssh_probe.py inventory/hosts.yml --env-file env/dmz.env
"""

from __future__ import annotations

import argparse
import pathlib
import sys

_ROOT = pathlib.Path(__file__).parent.parent
sys.path.insert(0, str(_ROOT))

from pydantic import ValidationError  # noqa: E402

from config.settings import Settings, load_settings  # noqa: E402
from scripts.fleet import CheckResult, credential_for, print_results  # noqa: E402
from scripts.health.errors import RemoteCallError  # noqa: E402
from scripts.host_inventory import HostInventory, parse_inventory  # noqa: E402
from scripts.remote import Credential, SshSession, ssh_session  # noqa: E402


def probe_host(
    name: str,
    credential: Credential,
    port: int,
    cfg: Settings,
) -> list[CheckResult]:
    results: list[CheckResult] = []
    try:
        with ssh_session(
            name,
            credential,
            port=port,
            connect_timeout=cfg.SSH_CONNECT_TIMEOUT_SECONDS,
            command_timeout=cfg.SSH_COMMAND_TIMEOUT_SECONDS,
            strict_host_key_checking=cfg.SSH_STRICT_HOST_KEY_CHECKING,
        ) as session:
            results.append(
                CheckResult(name, "SSH connect", True, f"connected as {credential.username}")
            )
            results.append(_check_whoami(session))
            results.append(_check_sudo(session, credential))
    except RemoteCallError as e:
        results.append(
            CheckResult(name, "SSH connect", False, "connection failed", detail=e.message)
        )
    return results


def _check_whoami(session: SshSession) -> CheckResult:
    try:
        result = session.run("whoami")
    except RemoteCallError as e:
        return CheckResult(session.host, "Remote user", False, "whoami failed", detail=e.message)
    if not result.ok:
        return CheckResult(
            session.host,
            "Remote user",
            False,
            f"whoami exited {result.exit_status}",
            detail=result.stderr.strip() or None,
        )
    return CheckResult(session.host, "Remote user", True, result.stdout.strip())


def _check_sudo(session: SshSession, credential: Credential) -> CheckResult:
    if credential.password:
        command, stdin, label = "sudo -S -p '' -v", credential.password + "\n", "sudo (password)"
    else:
        command, stdin, label = "sudo -n true", None, "sudo (passwordless)"
    try:
        result = session.run(command, input=stdin)
    except RemoteCallError as e:
        return CheckResult(session.host, label, False, "sudo check failed", detail=e.message)
    if result.ok:
        return CheckResult(session.host, label, True, "sudo available")
    return CheckResult(
        session.host,
        label,
        False,
        "sudo not available",
        detail=result.stderr.strip()[:300] or None,
    )


def run_probes(inventory: HostInventory, cfg: Settings) -> list[CheckResult]:
    results: list[CheckResult] = []
    for host in inventory.hosts:
        try:
            credential = credential_for(cfg, inventory.user_for(host))
        except ValueError as e:
            results.append(CheckResult(host.name, "SSH connect", False, str(e)))
            continue
        results.extend(probe_host(host.name, credential, inventory.port_for(host), cfg))
    return results


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="ssh_probe", description="Non-destructive SSH and sudo connectivity test"
    )
    parser.add_argument("inventory", help="YAML host inventory")
    parser.add_argument("--env-file", default=".env")
    args = parser.parse_args(argv)

    try:
        cfg = load_settings(args.env_file)
        inventory = parse_inventory(args.inventory)
    except (ValidationError, ValueError, FileNotFoundError) as e:
        print(f"ERROR: {e}")
        return 2

    results = run_probes(inventory, cfg)
    all_passed = print_results(results, f"SSH connectivity test: {len(inventory.hosts)} host(s)")
    return 0 if all_passed else 1


if __name__ == "__main__":
    sys.exit(main())
