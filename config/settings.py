"""
config/settings.py — Canonical configuration contract for vsphere_ops.

Uses pydantic-settings to load, validate, and type-check all environment
variables used by the operator scripts (vCenter, Veeam B&R REST API, SSH,
Active Directory, SQL Server).

Two usage modes:
  Production / scripts:
      cfg = load_settings()               # reads from .env + os.environ
      cfg = load_settings("env/prod.env") # override env file path

  Tests (isolated — no env file, no os.environ bleed):
      cfg = Settings(VCENTER_SERVER="vc01", ...)
      # All values come exclusively from kwargs → clean, reproducible.

Secrets (passwords) are typed as SecretStr so they never show up in repr()
or tracebacks.
"""
from __future__ import annotations

import os
import re
from typing import Optional

from pydantic import SecretStr, ValidationInfo, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


class Settings(BaseSettings):
    # Only init kwargs are a settings source. load_settings() is the explicit
    # production entry point that reads the env file and os.environ.
    model_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (init_settings,)

    # -------------------------------------------------------------------------
    # vCenter
    # -------------------------------------------------------------------------
    VCENTER_SERVER: Optional[str] = None
    VCENTER_PORT: int = 443
    VCENTER_USER: Optional[str] = None
    VCENTER_PASSWORD: Optional[SecretStr] = None
    VCENTER_VERIFY_SSL: bool = False

    # -------------------------------------------------------------------------
    # Veeam Backup & Replication REST API
    # -------------------------------------------------------------------------
    VBR_SERVER: Optional[str] = None
    VBR_PORT: int = 9419
    VBR_USER: Optional[str] = None
    VBR_PASSWORD: Optional[SecretStr] = None
    VBR_API_VERSION: str = "1.1-rev2"
    VBR_VERIFY_SSL: bool = False

    # -------------------------------------------------------------------------
    # NFC health check
    # -------------------------------------------------------------------------
    HEALTH_CLUSTER: Optional[str] = None
    ESXI_SSH_USER: str = "root"
    ESXI_SSH_PASSWORD: Optional[SecretStr] = None

    # -------------------------------------------------------------------------
    # Linux fleet (ssh_probe.py / preupgrade_cleanup.py)
    # -------------------------------------------------------------------------
    LINUX_SSH_USER: Optional[str] = None
    LINUX_SSH_PASSWORD: Optional[SecretStr] = None
    CLEANUP_PACKAGES: str = ""

    # -------------------------------------------------------------------------
    # SQL Server inventory (sql_inventory.py)
    # -------------------------------------------------------------------------
    LDAP_SERVER: Optional[str] = None
    LDAP_PORT: int = 636
    LDAP_USE_SSL: bool = True
    LDAP_USER: Optional[str] = None
    LDAP_PASSWORD: Optional[SecretStr] = None
    LDAP_SEARCH_BASE: Optional[str] = None
    # Computers that registered a SQL Server service principal name
    LDAP_COMPUTER_FILTER: str = (
        "(&(objectCategory=computer)(servicePrincipalName=MSSQLSvc/*)"
        "(!(userAccountControl:1.2.840.113556.1.4.803:=2)))"
    )
    SQL_USER: Optional[str] = None
    SQL_PASSWORD: Optional[SecretStr] = None
    SQL_PORT: int = 1433

    # -------------------------------------------------------------------------
    # Timeouts / transport
    # -------------------------------------------------------------------------
    SSH_CONNECT_TIMEOUT_SECONDS: int = 10
    SSH_COMMAND_TIMEOUT_SECONDS: int = 30
    SSH_STRICT_HOST_KEY_CHECKING: bool = False
    HTTP_TIMEOUT_SECONDS: int = 30
    LDAP_TIMEOUT_SECONDS: int = 15
    SQL_LOGIN_TIMEOUT_SECONDS: int = 15
    SQL_QUERY_TIMEOUT_SECONDS: int = 60

    # -------------------------------------------------------------------------
    # Convenience properties
    # -------------------------------------------------------------------------

    @property
    def vbr_base_url(self) -> str:
        return f"https://{self.VBR_SERVER}:{self.VBR_PORT}"

    @property
    def cleanup_packages(self) -> list[str]:
        """CLEANUP_PACKAGES split on commas/whitespace, order kept, duplicates dropped."""
        seen: list[str] = []
        for name in re.split(r"[,\s]+", self.CLEANUP_PACKAGES):
            if name and name not in seen:
                seen.append(name)
        return seen

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------

    @field_validator(
        "VCENTER_SERVER",
        "VCENTER_USER",
        "VBR_SERVER",
        "VBR_USER",
        "HEALTH_CLUSTER",
        "LINUX_SSH_USER",
        "LDAP_SERVER",
        "LDAP_USER",
        "LDAP_SEARCH_BASE",
        "SQL_USER",
        mode="before",
    )
    @classmethod
    def strip_optional_strings(cls, v: Optional[str]) -> Optional[str]:
        """Blank values in the env file count as unset."""
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator(
        "VCENTER_PASSWORD",
        "VBR_PASSWORD",
        "ESXI_SSH_PASSWORD",
        "LINUX_SSH_PASSWORD",
        "LDAP_PASSWORD",
        "SQL_PASSWORD",
        mode="before",
    )
    @classmethod
    def blank_secret_is_unset(cls, v):
        """``ESXI_SSH_PASSWORD=`` in the env file means no password, not an empty one."""
        if isinstance(v, SecretStr):
            v = v.get_secret_value()
        if v is None or not str(v).strip():
            return None
        return v

    @field_validator(
        "SSH_CONNECT_TIMEOUT_SECONDS",
        "SSH_COMMAND_TIMEOUT_SECONDS",
        "HTTP_TIMEOUT_SECONDS",
        "LDAP_TIMEOUT_SECONDS",
        "SQL_LOGIN_TIMEOUT_SECONDS",
        "SQL_QUERY_TIMEOUT_SECONDS",
    )
    @classmethod
    def validate_positive_timeouts(cls, v: int, info: ValidationInfo) -> int:
        if v < 1:
            raise ValueError(f"{info.field_name} must be >= 1")
        return v

    # -------------------------------------------------------------------------
    # Per-script requirements
    # -------------------------------------------------------------------------

    def require_health_check(self) -> None:
        """Raise ValueError naming every variable the NFC health check is missing."""
        _require(
            self,
            "VCENTER_SERVER",
            "VCENTER_USER",
            "VCENTER_PASSWORD",
            "VBR_SERVER",
            "VBR_USER",
            "VBR_PASSWORD",
        )

    def require_sql_inventory(self, discover: bool = True) -> None:
        """Raise ValueError naming every variable sql_inventory.py is missing.

        The directory settings are only needed when hosts are discovered
        rather than read from an inventory file.
        """
        names = ["SQL_USER", "SQL_PASSWORD"]
        if discover:
            names = ["LDAP_SERVER", "LDAP_USER", "LDAP_PASSWORD", "LDAP_SEARCH_BASE"] + names
        _require(self, *names)


def _require(cfg: Settings, *names: str) -> None:
    missing = []
    for name in names:
        value = getattr(cfg, name)
        if isinstance(value, SecretStr):
            value = value.get_secret_value()
        if not value:
            missing.append(name)
    if missing:
        raise ValueError(
            f"missing required setting(s): {', '.join(missing)}. "
            "Set them in .env or the environment (see .env.example)."
        )


def load_settings(env_file: str = ".env") -> Settings:
    """Load and validate settings from an env file + os.environ.

    Parses the env file manually and merges it with os.environ (os.environ
    wins), then passes only known Settings fields as explicit kwargs.

    Raises:
        ValidationError: if any value has the wrong type or fails a validator.
    """
    file_vals: dict[str, str] = {}
    try:
        with open(env_file, encoding="utf-8") as fh:
            for line in fh:
                line = line.strip()
                if not line or line.startswith("#"):
                    continue
                k, _, v = line.partition("=")
                k = k.strip()
                # Strip inline comments: "vc01.lab   # primary vCenter" → "vc01.lab"
                v = re.sub(r"\s+#.*$", "", v.strip())
                if k:
                    file_vals[k] = v
    except FileNotFoundError:
        pass
    merged = {**file_vals, **os.environ}  # os.environ wins
    known = {k: v for k, v in merged.items() if k in Settings.model_fields}
    return Settings(**known)
