"""
scripts/health — Fleet health check for a Veeam-protected vSphere cluster.

The pieces, leaf-first:
  inventory.py  typed Host / Proxy records
  locator.py    cluster name -> ClusterInventory (vCenter + Veeam)
  rules.py      one function per check, each returning Finding objects
  evaluator.py  walks the rules in fixed order and forwards findings to a sink
  log.py        timestamped, colour-coded console sink

Usage:
    from scripts.health import Finding, Severity
    from scripts.health.evaluator import evaluate
"""

from dataclasses import dataclass
from enum import Enum


class Severity(str, Enum):
    OK = "OK"
    WARN = "WARN"
    ERROR = "ERROR"
    MANUAL = "MANUAL"


@dataclass(frozen=True)
class Finding:
    severity: Severity
    subject: str
    message: str
    recommendation: str | None = None

    def __str__(self) -> str:
        line = f"{self.severity.value}: {self.message}"
        if self.recommendation:
            line += f"\n    -> {self.recommendation}"
        return line
