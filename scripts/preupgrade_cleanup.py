#!/usr/bin/env python3
"""
scripts/preupgrade_cleanup.py — Remove known upgrade blockers before an OS upgrade.

For every host in the inventory, one at a time:
  1. detect the package manager (dnf, yum or apt-get)
  2. find which of the CLEANUP_PACKAGES are installed
  3. remove them (skipped with --dry-run)
  4. clean the package cache (skipped with --dry-run)

A failure on one host is reported and the next host is processed.

Usage:
    python3 scripts/preupgrade_cleanup.py inventory/hosts.yml --dry-run
    python3 scripts/preupgrade_cleanup.py inventory/hosts.yml --packages "pam_pkcs11 kernel-devel"
"""

from __future__ import annotations

import argparse
import pathlib
import posixpath
import shlex
import sys

_ROOT = pathlib.Path(__file__).parent.parent
sys.path.insert(0, str(_ROOT))

from pydantic import ValidationError  # noqa: E402

from config.settings import Settings, load_settings  # noqa: E402
from scripts.fleet import CheckResult, credential_for, print_results  # noqa: E402
from scripts.health.errors import RemoteCallError  # noqa: E402
from scripts.host_inventory import HostInventory, parse_inventory  # noqa: E402
from scripts.remote import Credential, SshSession, ssh_session  # noqa: E402

DETECT_COMMAND = "command -v dnf || command -v yum || command -v apt-get"
RPM_MANAGERS = {"dnf", "yum"}
REMOVE_TIMEOUT_SECONDS = 600


def detect_package_manager(session: SshSession) -> str:
    result = session.run(DETECT_COMMAND)
    path = result.stdout.strip().splitlines()[0] if result.stdout.strip() else ""
    manager = posixpath.basename(path)
    if manager not in RPM_MANAGERS | {"apt-get"}:
        raise RemoteCallError(
            "no supported package manager (dnf, yum, apt-get)", {"host": session.host}
        )
    return manager


def query_command(manager: str, packages: list[str]) -> str:
    names = " ".join(shlex.quote(p) for p in packages)
    if manager in RPM_MANAGERS:
        return f"rpm -q --qf '%{{NAME}}\\n' {names}"
    return f"dpkg-query -W -f='${{Package}} ${{Status}}\\n' {names}"


def parse_installed(manager: str, output: str, packages: list[str]) -> list[str]:
    """Installed subset of ``packages``, in the order they were asked for."""
    found: set[str] = set()
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        if manager in RPM_MANAGERS:
            if "is not installed" not in line:
                found.add(line)
        else:
            name, _, status = line.partition(" ")
            if status.endswith(" installed"):
                found.add(name)
    return [p for p in packages if p in found]


def _sudo(command: str, credential: Credential) -> tuple[str, str | None]:
    if credential.password:
        return f"sudo -S -p '' {command}", credential.password + "\n"
    return f"sudo -n {command}", None


def cleanup_host(
    name: str,
    credential: Credential,
    port: int,
    packages: list[str],
    cfg: Settings,
    dry_run: bool = False,
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
            manager = detect_package_manager(session)
            results.append(CheckResult(name, "Package manager", True, manager))

            query = session.run(query_command(manager, packages))
            installed = parse_installed(manager, query.stdout, packages)
            if not installed:
                results.append(
                    CheckResult(name, "Cleanup", True, "none of the packages are installed")
                )
                return results
            if dry_run:
                results.append(
                    CheckResult(
                        name, "Cleanup", True, f"would remove: {' '.join(installed)} [dry run]"
                    )
                )
                return results

            names = " ".join(shlex.quote(p) for p in installed)
            command, stdin = _sudo(f"{manager} -y remove {names}", credential)
            removed = session.run(command, timeout=REMOVE_TIMEOUT_SECONDS, input=stdin)
            if not removed.ok:
                results.append(
                    CheckResult(
                        name,
                        "Remove packages",
                        False,
                        f"{manager} remove exited {removed.exit_status}",
                        detail=(removed.stderr.strip() or removed.stdout.strip())[-500:] or None,
                    )
                )
                return results
            results.append(
                CheckResult(name, "Remove packages", True, f"removed: {' '.join(installed)}")
            )

            clean = f"{manager} clean all" if manager in RPM_MANAGERS else "apt-get clean"
            command, stdin = _sudo(clean, credential)
            cleaned = session.run(command, timeout=REMOVE_TIMEOUT_SECONDS, input=stdin)
            results.append(
                CheckResult(
                    name,
                    "Clean cache",
                    cleaned.ok,
                    "package cache cleaned" if cleaned.ok else f"exited {cleaned.exit_status}",
                    detail=cleaned.stderr.strip()[:300] or None,
                )
            )
    except RemoteCallError as e:
        results.append(CheckResult(name, "SSH", False, "host skipped", detail=e.message))
    return results


def run_cleanup(
    inventory: HostInventory,
    cfg: Settings,
    packages: list[str],
    dry_run: bool = False,
) -> list[CheckResult]:
    results: list[CheckResult] = []
    for host in inventory.hosts:
        try:
            credential = credential_for(cfg, inventory.user_for(host))
        except ValueError as e:
            results.append(CheckResult(host.name, "SSH", False, str(e)))
            continue
        results.extend(
            cleanup_host(host.name, credential, inventory.port_for(host), packages, cfg, dry_run)
        )
    return results


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="preupgrade_cleanup",
        description="Remove upgrade-blocking packages from Linux hosts over SSH",
    )
    parser.add_argument("inventory", help="YAML host inventory")
    parser.add_argument("--env-file", default=".env")
    parser.add_argument("--packages", help="packages to remove (default: CLEANUP_PACKAGES)")
    parser.add_argument("--dry-run", action="store_true", help="report only, change nothing")
    args = parser.parse_args(argv)

    try:
        cfg = load_settings(args.env_file)
        if args.packages is not None:
            cfg = cfg.model_copy(update={"CLEANUP_PACKAGES": args.packages})
        inventory = parse_inventory(args.inventory)
    except (ValidationError, ValueError, FileNotFoundError) as e:
        print(f"ERROR: {e}")
        return 2

    packages = cfg.cleanup_packages
    if not packages:
        print("ERROR: no packages to remove (set CLEANUP_PACKAGES or pass --packages)")
        return 2

    results = run_cleanup(inventory, cfg, packages, dry_run=args.dry_run)
    mode = " [dry run]" if args.dry_run else ""
    all_passed = print_results(
        results,
        f"Pre-upgrade cleanup{mode}: {len(inventory.hosts)} host(s), {len(packages)} package(s)",
    )
    return 0 if all_passed else 1


if __name__ == "__main__":
    sys.exit(main())
