"""
Typed host inventory contract for the Linux fleet scripts.

Accepted YAML shapes:

    inventory_version: 1
    defaults:
      user: svc_patch
      port: 22
    hosts:
      - name: app01.lab.local
      - name: db01.lab.local
        port: 2222

or simply a list of host names:

    - app01.lab.local
    - db01.lab.local
"""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

SUPPORTED_INVENTORY_VERSION = 1


class HostDefaults(BaseModel):
    user: str | None = None
    port: int = Field(default=22, ge=1, le=65535)


class InventoryHost(BaseModel):
    name: str
    user: str | None = None
    port: int | None = Field(default=None, ge=1, le=65535)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value: str) -> str:
        if not isinstance(value, str):
            raise ValueError("must be a string")
        value = value.strip()
        if not value:
            raise ValueError("must be a non-empty string")
        return value


class HostInventory(BaseModel):
    inventory_version: int = SUPPORTED_INVENTORY_VERSION
    defaults: HostDefaults = Field(default_factory=HostDefaults)
    hosts: list[InventoryHost]

    @field_validator("inventory_version")
    @classmethod
    def validate_inventory_version(cls, value: int) -> int:
        if value != SUPPORTED_INVENTORY_VERSION:
            raise ValueError(
                f"unsupported inventory_version={value}; expected {SUPPORTED_INVENTORY_VERSION}"
            )
        return value

    @model_validator(mode="after")
    def validate_unique_names(self) -> HostInventory:
        if not self.hosts:
            raise ValueError("inventory must list at least one host")
        names = [h.name.lower() for h in self.hosts]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"hosts contain duplicate names: {', '.join(duplicates)}")
        return self

    def user_for(self, host: InventoryHost, fallback: str | None = None) -> str | None:
        return host.user or self.defaults.user or fallback

    def port_for(self, host: InventoryHost) -> int:
        return host.port or self.defaults.port


def inventory_from_payload(payload: object) -> HostInventory:
    if isinstance(payload, list):
        payload = {"hosts": [{"name": h} if isinstance(h, str) else h for h in payload]}
    if not isinstance(payload, dict):
        raise ValueError("inventory root must be a YAML mapping or a list of host names")
    try:
        return HostInventory.model_validate(payload)
    except ValidationError as exc:
        raise ValueError(exc) from exc


def parse_inventory(path: str | Path) -> HostInventory:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Host inventory not found: {path}")
    with open(path, encoding="utf-8") as handle:
        payload = yaml.safe_load(handle)
    return inventory_from_payload(payload or {})
