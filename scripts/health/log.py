"""
scripts/health/log.py — Console sink for findings.

One line per finding, in emission order:
    [2026-10-17 09:14:02] WARN: esx03: uptime 112 days exceeds 90
        -> Patch and reboot the host during the next maintenance window.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable

from rich.console import Console
from rich.markup import escape

from scripts.health import Finding, Severity

SEVERITY_STYLES = {
    Severity.OK: "green",
    Severity.WARN: "yellow",
    Severity.ERROR: "bold red",
    Severity.MANUAL: "cyan",
}


class FindingLogger:
    def __init__(
        self,
        console: Console | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.console = console or Console(highlight=False)
        self.clock = clock

    def log(self, severity: Severity, message: str, recommendation: str | None = None) -> None:
        stamp = self.clock().strftime("%Y-%m-%d %H:%M:%S")
        style = SEVERITY_STYLES[severity]
        self.console.print(
            f"{escape('[' + stamp + ']')} [{style}]{severity.value}[/{style}]: {escape(message)}",
            highlight=False,
            markup=True,
            soft_wrap=True,
        )
        if recommendation:
            self.console.print(
                f"    -> {escape(recommendation)}", highlight=False, soft_wrap=True
            )

    def emit(self, finding: Finding) -> None:
        self.log(finding.severity, finding.message, finding.recommendation)
