#!/usr/bin/env python3
"""
scripts/nfc_health_check.py — Veeam NFC health check for one vSphere cluster.

Looks up the cluster's hosts in vCenter and the Veeam proxies running on
them, then walks the rules in scripts/health/rules.py and prints one
timestamped line per finding.

Usage:
    python3 scripts/nfc_health_check.py --cluster Prod-Cluster-01
    python3 scripts/nfc_health_check.py --env-file env/site-b.env --no-ssh

Exit codes:
    0  all findings OK or MANUAL
    1  at least one WARN
    2  at least one ERROR, or the cluster could not be located
"""

from __future__ import annotations

import argparse
import functools
import pathlib
import sys

# Add project root to path so health modules and config are importable
_ROOT = pathlib.Path(__file__).parent.parent
sys.path.insert(0, str(_ROOT))

from pydantic import ValidationError  # noqa: E402

from config.settings import Settings, load_settings  # noqa: E402
from scripts.health import Finding, Severity  # noqa: E402
from scripts.health.errors import HealthCheckError  # noqa: E402
from scripts.health.evaluator import evaluate, worst_severity  # noqa: E402
from scripts.health.locator import HostSource, ProxySource, locate  # noqa: E402
from scripts.health.log import FindingLogger  # noqa: E402
from scripts.health.veeam import VeeamClient  # noqa: E402
from scripts.health.vsphere import vcenter_connection  # noqa: E402
from scripts.remote import Credential, ssh_session  # noqa: E402

EXIT_CODES = {
    Severity.OK: 0,
    Severity.MANUAL: 0,
    Severity.WARN: 1,
    Severity.ERROR: 2,
}


def build_session_factory(cfg: Settings):
    """ssh_session bound to the ESXi credential, or None when no password is set."""
    if cfg.ESXI_SSH_PASSWORD is None:
        return None
    credential = Credential(cfg.ESXI_SSH_USER, cfg.ESXI_SSH_PASSWORD.get_secret_value())
    return functools.partial(
        ssh_session,
        credential=credential,
        connect_timeout=cfg.SSH_CONNECT_TIMEOUT_SECONDS,
        command_timeout=cfg.SSH_COMMAND_TIMEOUT_SECONDS,
        strict_host_key_checking=cfg.SSH_STRICT_HOST_KEY_CHECKING,
    )


def run_health_check(
    cluster: str,
    vcenter: HostSource,
    veeam: ProxySource,
    logger: FindingLogger,
    session_factory=None,
) -> list[Finding] | None:
    """Locate and evaluate. Returns None when location failed (already logged)."""
    try:
        inventory = locate(cluster, vcenter, veeam)
    except HealthCheckError as e:
        logger.log(Severity.ERROR, f"Cannot evaluate cluster {cluster}: {e}")
        return None
    logger.log(
        Severity.OK,
        f"Found {len(inventory.hosts)} host(s) and {len(inventory.proxies)} proxy VM(s)",
    )
    return evaluate(inventory, logger.emit, session_factory=session_factory)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="nfc_health_check",
        description="Veeam NFC health check for a vSphere cluster",
    )
    parser.add_argument("--cluster", help="vSphere cluster name (default: HEALTH_CLUSTER)")
    parser.add_argument("--env-file", default=".env", help="env file to read (default: .env)")
    parser.add_argument(
        "--no-ssh",
        action="store_true",
        help="skip the remote NFC memory check (reported as MANUAL)",
    )
    args = parser.parse_args(argv)

    logger = FindingLogger()
    try:
        cfg = load_settings(args.env_file)
        cfg.require_health_check()
    except (ValidationError, ValueError) as e:
        logger.log(Severity.ERROR, f"Invalid configuration: {e}")
        return 2

    cluster = args.cluster or cfg.HEALTH_CLUSTER
    if not cluster:
        logger.log(Severity.ERROR, "No cluster given (use --cluster or set HEALTH_CLUSTER)")
        return 2

    session_factory = None if args.no_ssh else build_session_factory(cfg)

    veeam = VeeamClient.from_settings(cfg)
    try:
        with vcenter_connection(cfg) as vcenter:
            findings = run_health_check(cluster, vcenter, veeam, logger, session_factory)
    except HealthCheckError as e:
        logger.log(Severity.ERROR, f"Cannot evaluate cluster {cluster}: {e}")
        return 2
    finally:
        try:
            veeam.logout()
        except HealthCheckError as e:
            logger.log(Severity.WARN, f"Veeam API logout failed: {e}")

    if findings is None:
        return 2
    return EXIT_CODES[worst_severity(findings)]


if __name__ == "__main__":
    sys.exit(main())
