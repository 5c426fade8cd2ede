"""
scripts/health/rules.py — Individual health-check rules.

Each rule takes the cluster inventory (plus whatever fleet context it needs)
and returns Finding objects. Rules do not call each other; the one data
dependency, the average VM count per host, is computed once by the evaluator
and handed to the rules that need it.

Thresholds are module constants; there is no runtime override.
"""

from __future__ import annotations

import re
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Callable, ContextManager

from scripts.health import Finding, Severity
from scripts.health.errors import ParseError, RemoteCallError

if TYPE_CHECKING:
    from scripts.health.inventory import ClusterInventory, Host
    from scripts.remote import SshSession

    SessionFactory = Callable[[str], ContextManager[SshSession]]

MAX_AVG_VMS_PER_HOST = 175
MAX_PROXIES_PER_HOST = 2
MAX_UPTIME_DAYS = 90
EXPECTED_TRANSPORT_MODE = "Network"
BUFFER_CACHE_MAX_CAPACITY = 32768
BUFFER_CACHE_FLUSH_INTERVAL = 20000
MIN_NFC_MAX_MEMORY = 100663296

LARGE_ENV_SETTINGS = {
    "BufferCache.MaxCapacity": BUFFER_CACHE_MAX_CAPACITY,
    "BufferCache.FlushInterval": BUFFER_CACHE_FLUSH_INTERVAL,
}

HOSTD_CONFIG = "/etc/vmware/hostd/config.xml"
NFC_MEMORY_COMMAND = f"grep -A 10 '<nfcsvc>' {HOSTD_CONFIG}"
_NFC_MAX_MEMORY_RE = re.compile(r"<maxMemory>\s*(\d+)\s*</maxMemory>")


def round_half_away(value: Decimal) -> int:
    """Round to the nearest integer, ties away from zero (2.5 -> 3)."""
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def average_vms_per_host(inventory: ClusterInventory) -> int:
    return round_half_away(Decimal(inventory.total_vms) / Decimal(len(inventory.hosts)))


# ---------------------------------------------------------------------------
# 1. VM distribution
# ---------------------------------------------------------------------------


def check_vm_distribution(inventory: ClusterInventory, average: int) -> list[Finding]:
    subject = inventory.cluster
    summary = (
        f"{inventory.cluster}: {inventory.total_vms} VMs on {len(inventory.hosts)} hosts, "
        f"average {average} VMs/host"
    )
    if average > MAX_AVG_VMS_PER_HOST:
        return [
            Finding(
                Severity.WARN,
                subject,
                f"{summary} exceeds {MAX_AVG_VMS_PER_HOST}",
                "Large environment: apply the BufferCache tuning below and spread "
                "backup jobs over more proxies.",
            )
        ]
    return [Finding(Severity.OK, subject, summary)]


# ---------------------------------------------------------------------------
# 2. Proxy distribution
# ---------------------------------------------------------------------------


def check_proxy_distribution(inventory: ClusterInventory) -> list[Finding]:
    findings = []
    for host in inventory.hosts:
        count = len(inventory.proxies_on(host.name))
        message = f"{host.name}: {count} Veeam proxy VM(s)"
        if count > MAX_PROXIES_PER_HOST:
            findings.append(
                Finding(
                    Severity.WARN,
                    host.name,
                    f"{message} exceeds {MAX_PROXIES_PER_HOST}",
                    "Move proxy VMs to other hosts (DRS anti-affinity rule) so NFC "
                    "sessions are spread across the cluster.",
                )
            )
        else:
            findings.append(Finding(Severity.OK, host.name, message))
    return findings


# ---------------------------------------------------------------------------
# 3. Proxy transport mode
# ---------------------------------------------------------------------------


def check_proxy_transport(inventory: ClusterInventory) -> list[Finding]:
    if not inventory.proxies:
        return [
            Finding(
                Severity.MANUAL,
                inventory.cluster,
                f"{inventory.cluster}: no Veeam proxy VMs run on this cluster's hosts; "
                "check the transport mode of the proxies serving it by hand",
            )
        ]
    findings = []
    for proxy in inventory.proxies:
        mode = proxy.transport_mode or "<unset>"
        if proxy.transport_mode.lower() != EXPECTED_TRANSPORT_MODE.lower():
            findings.append(
                Finding(
                    Severity.WARN,
                    proxy.name,
                    f"proxy {proxy.name} (on {proxy.host}): transport mode is {mode}, "
                    f"expected {EXPECTED_TRANSPORT_MODE}",
                    f"Set the proxy transport mode to {EXPECTED_TRANSPORT_MODE} (NBD).",
                )
            )
        else:
            findings.append(
                Finding(
                    Severity.OK,
                    proxy.name,
                    f"proxy {proxy.name} (on {proxy.host}): transport mode is {mode}",
                )
            )
    return findings


# ---------------------------------------------------------------------------
# 4. Host version skew
# ---------------------------------------------------------------------------


def check_version_skew(inventory: ClusterInventory) -> list[Finding]:
    reference = inventory.hosts[0]
    findings = []
    for host in inventory.hosts:
        if host.build != reference.build:
            findings.append(
                Finding(
                    Severity.WARN,
                    host.name,
                    f"{host.name}: build {host.build or '<unknown>'} differs from "
                    f"{reference.name} build {reference.build or '<unknown>'}",
                    "Bring all hosts of the cluster to the same ESXi build.",
                )
            )
        else:
            findings.append(
                Finding(Severity.OK, host.name, f"{host.name}: build {host.build or '<unknown>'}")
            )
    return findings


# ---------------------------------------------------------------------------
# 5. Host uptime
# ---------------------------------------------------------------------------


def uptime_days(host: Host, now: datetime) -> int | None:
    if host.boot_time is None:
        return None
    return (now - host.boot_time).days


def check_uptime(inventory: ClusterInventory, now: datetime) -> list[Finding]:
    findings = []
    for host in inventory.hosts:
        days = uptime_days(host, now)
        if days is None:
            findings.append(
                Finding(Severity.WARN, host.name, f"{host.name}: boot time not reported")
            )
        elif days > MAX_UPTIME_DAYS:
            findings.append(
                Finding(
                    Severity.WARN,
                    host.name,
                    f"{host.name}: uptime {days} days exceeds {MAX_UPTIME_DAYS}",
                    "Reboot the host in the next maintenance window; long-running "
                    "hostd processes leak NFC buffers.",
                )
            )
        else:
            findings.append(Finding(Severity.OK, host.name, f"{host.name}: uptime {days} days"))
    return findings


# ---------------------------------------------------------------------------
# 6. Large-environment tuning (only when the cluster is dense)
# ---------------------------------------------------------------------------


def check_large_environment_tuning(inventory: ClusterInventory, average: int) -> list[Finding]:
    if average <= MAX_AVG_VMS_PER_HOST:
        return [
            Finding(
                Severity.OK,
                inventory.cluster,
                f"{inventory.cluster}: BufferCache tuning not required "
                f"(average {average} VMs/host)",
            )
        ]
    findings = []
    for host in inventory.hosts:
        for key, expected in LARGE_ENV_SETTINGS.items():
            actual = host.setting(key)
            if _as_int(actual) != expected:
                findings.append(
                    Finding(
                        Severity.WARN,
                        host.name,
                        f"{host.name}: {key} is {actual if actual is not None else '<unset>'}, "
                        f"expected {expected}",
                        f"esxcli system settings advanced set -o /{key.replace('.', '/')} "
                        f"-i {expected}",
                    )
                )
            else:
                findings.append(
                    Finding(Severity.OK, host.name, f"{host.name}: {key} is {expected}")
                )
    return findings


def _as_int(value: object) -> int | None:
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None


# ---------------------------------------------------------------------------
# 7. NFC service memory (remote)
# ---------------------------------------------------------------------------


def parse_nfc_max_memory(output: str) -> int:
    match = _NFC_MAX_MEMORY_RE.search(output)
    if not match:
        raise ParseError(f"could not parse nfcsvc maxMemory from {HOSTD_CONFIG}")
    return int(match.group(1))


def check_nfc_memory(host: Host, session_factory: SessionFactory) -> Finding:
    """Read the hostd NFC maxMemory over SSH.

    Raises RemoteCallError / ParseError; the evaluator turns them into findings.
    """
    with session_factory(host.name) as session:
        result = session.run(NFC_MEMORY_COMMAND)
    # grep exits 1 when nothing matched; that is a parse problem, not a transport one
    if result.exit_status not in (0, 1):
        raise RemoteCallError(
            f"command exited {result.exit_status}: {result.stderr.strip()[:200]}",
            {"host": host.name},
        )
    value = parse_nfc_max_memory(result.stdout)
    if value < MIN_NFC_MAX_MEMORY:
        return Finding(
            Severity.WARN,
            host.name,
            f"{host.name}: NFC maxMemory {value} is below {MIN_NFC_MAX_MEMORY}",
            f"Set <nfcsvc><maxMemory>{MIN_NFC_MAX_MEMORY}</maxMemory> in {HOSTD_CONFIG} "
            "and restart hostd.",
        )
    return Finding(Severity.OK, host.name, f"{host.name}: NFC maxMemory {value}")


# ---------------------------------------------------------------------------
# 8. Manual follow-ups
# ---------------------------------------------------------------------------

MANUAL_FOLLOWUPS = (
    "Compare each proxy's max concurrent tasks with its vCPU count in the Veeam console.",
    "Search hostd.log on busy hosts for 'NFC connection limit' during the backup window.",
)


def manual_followups(inventory: ClusterInventory) -> list[Finding]:
    return [Finding(Severity.MANUAL, inventory.cluster, text) for text in MANUAL_FOLLOWUPS]
