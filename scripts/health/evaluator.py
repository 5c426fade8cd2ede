"""
scripts/health/evaluator.py — Walk every rule over one cluster inventory.

Order is fixed and shows up in the console output:
  1 VM distribution, 2 proxy distribution, 3 proxy transport mode,
  4 version skew, 5 uptime, 6 large-environment tuning, 7 NFC memory,
  8 manual follow-ups.

Each finding is handed to the sink as soon as it exists. For the NFC memory
rule a failing host yields exactly one finding and the walk moves on.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Callable

from scripts.health import Finding, Severity
from scripts.health import rules
from scripts.health.errors import ParseError, RemoteCallError

if TYPE_CHECKING:
    from scripts.health.inventory import ClusterInventory
    from scripts.health.rules import SessionFactory

Sink = Callable[[Finding], None]


def evaluate(
    inventory: ClusterInventory,
    sink: Sink,
    session_factory: SessionFactory | None = None,
    now: datetime | None = None,
) -> list[Finding]:
    now = now or datetime.now(tz=UTC)
    emitted: list[Finding] = []

    def forward(findings: list[Finding]) -> None:
        for finding in findings:
            sink(finding)
            emitted.append(finding)

    average = rules.average_vms_per_host(inventory)

    forward(rules.check_vm_distribution(inventory, average))
    forward(rules.check_proxy_distribution(inventory))
    forward(rules.check_proxy_transport(inventory))
    forward(rules.check_version_skew(inventory))
    forward(rules.check_uptime(inventory, now))
    forward(rules.check_large_environment_tuning(inventory, average))
    for host in inventory.hosts:
        forward([_nfc_memory_finding(host, session_factory)])
    forward(rules.manual_followups(inventory))

    return emitted


def _nfc_memory_finding(host, session_factory: SessionFactory | None) -> Finding:
    if session_factory is None:
        return Finding(
            Severity.MANUAL,
            host.name,
            f"{host.name}: no SSH credential supplied; check nfcsvc maxMemory in "
            f"{rules.HOSTD_CONFIG} by hand",
        )
    try:
        return rules.check_nfc_memory(host, session_factory)
    except ParseError as e:
        return Finding(Severity.WARN, host.name, f"{host.name}: {e.message}")
    except RemoteCallError as e:
        return Finding(Severity.ERROR, host.name, f"{host.name}: SSH check failed: {e.message}")


def worst_severity(findings: list[Finding]) -> Severity:
    """ERROR > WARN > MANUAL > OK."""
    order = [Severity.OK, Severity.MANUAL, Severity.WARN, Severity.ERROR]
    return max((f.severity for f in findings), key=order.index, default=Severity.OK)
