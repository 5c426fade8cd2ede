"""
scripts/health/errors.py — Exception taxonomy for the health check.

Fatal (abort the run, raised by the locator):
    NotFoundError, EmptyResultError
Contained per host (turned into a Finding by the evaluator):
    RemoteCallError -> ERROR, ParseError -> WARN
Raised while locating the cluster (vCenter, Veeam), any of them is fatal.
"""

from __future__ import annotations

from typing import Any


class HealthCheckError(Exception):
    """Base class. ``details`` carries the resource names involved."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class NotFoundError(HealthCheckError):
    pass


class EmptyResultError(HealthCheckError):
    pass


class RemoteCallError(HealthCheckError):
    pass


class ParseError(HealthCheckError):
    pass
