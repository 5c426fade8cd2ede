"""
Typed records for the resources a health check walks.

Vendor objects (pyVmomi managed objects, Veeam REST payloads) are converted
into these right after the call returns and are read-only afterwards.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Host(BaseModel):
    """A hypervisor host as reported by vCenter."""

    model_config = ConfigDict(frozen=True)

    name: str
    cluster: str
    build: str = ""
    boot_time: datetime | None = None
    vm_count: int = Field(default=0, ge=0)
    advanced_settings: Mapping[str, Any] = Field(default_factory=dict, validate_default=True)

    @field_validator("name", "cluster")
    @classmethod
    def non_empty_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must be a non-empty string")
        return value

    @field_validator("boot_time")
    @classmethod
    def boot_time_is_aware(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            raise ValueError("boot_time must be timezone-aware")
        return value

    @field_validator("advanced_settings")
    @classmethod
    def freeze_settings(cls, value: Mapping[str, Any]) -> Mapping[str, Any]:
        return MappingProxyType(dict(value))

    def setting(self, key: str) -> Any:
        return self.advanced_settings.get(key)


class Proxy(BaseModel):
    """A Veeam VMware backup proxy; ``host`` is the hypervisor host its VM runs on."""

    model_config = ConfigDict(frozen=True)

    name: str
    host: str | None = None
    transport_mode: str = ""


class ClusterInventory(BaseModel):
    model_config = ConfigDict(frozen=True)

    cluster: str
    hosts: tuple[Host, ...]
    proxies: tuple[Proxy, ...] = ()

    @property
    def total_vms(self) -> int:
        return sum(h.vm_count for h in self.hosts)

    def proxies_on(self, host_name: str) -> list[Proxy]:
        return [p for p in self.proxies if p.host == host_name]
