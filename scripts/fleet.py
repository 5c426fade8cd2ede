"""
scripts/fleet.py — Shared plumbing for the Linux fleet scripts.

ssh_probe.py and preupgrade_cleanup.py both walk an inventory one host at a
time and collect CheckResult objects; this module holds the result type,
credential lookup and the report printer.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape

from scripts.remote import Credential

if TYPE_CHECKING:
    from config.settings import Settings


@dataclass
class CheckResult:
    host: str
    name: str
    passed: bool
    message: str
    detail: str | None = None

    def __str__(self) -> str:
        status = "PASS" if self.passed else "FAIL"
        line = f"  [{status}] {self.name}: {self.message}"
        if self.detail and not self.passed:
            line += f"\n         {self.detail}"
        return line


def credential_for(cfg: Settings, user: str | None) -> Credential:
    password = cfg.LINUX_SSH_PASSWORD.get_secret_value() if cfg.LINUX_SSH_PASSWORD else None
    username = user or cfg.LINUX_SSH_USER
    if not username:
        raise ValueError("no SSH user: set LINUX_SSH_USER or a user in the inventory")
    return Credential(username, password or None)


def print_results(results: list[CheckResult], title: str, console: Console | None = None) -> bool:
    """Print results grouped by host. Returns True if all passed."""
    console = console or Console(highlight=False)

    console.print()
    console.print("╔══════════════════════════════════════════════════════════╗")
    console.print(f"  {escape(title)}")
    console.print("╚══════════════════════════════════════════════════════════╝")

    current_host = None
    for r in results:
        if r.host != current_host:
            current_host = r.host
            console.print(f"\n━━━ {escape(r.host)} ━━━")
        style = "green" if r.passed else "red"
        console.print(f"[{style}]{escape(str(r))}[/{style}]")

    passed = sum(1 for r in results if r.passed)
    total = len(results)
    all_passed = passed == total
    hosts_failed = sorted({r.host for r in results if not r.passed})

    console.print()
    console.print("╔══════════════════════════════════════════════════════════╗")
    console.print(f"  Complete: {passed}/{total} checks passed")
    if all_passed:
        console.print("  All checks passed ✓")
    else:
        console.print(f"  FAILED on {len(hosts_failed)} host(s): {escape(', '.join(hosts_failed))}")
    console.print("╚══════════════════════════════════════════════════════════╝")

    return all_passed
