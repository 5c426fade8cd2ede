"""
scripts/directory.py — Host discovery through Active Directory over LDAP.

    with directory_connection(cfg) as conn:
        hosts = discover_hosts(conn, cfg.LDAP_SEARCH_BASE, cfg.LDAP_COMPUTER_FILTER)

Binds with a simple bind, so LDAP_USER is a UPN (svc_inventory@lab.local)
or a distinguished name.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING, Iterator

from ldap3 import NONE, SUBTREE, Connection, Server
from ldap3.core.exceptions import LDAPException

from scripts.health.errors import RemoteCallError

if TYPE_CHECKING:
    from config.settings import Settings

PAGE_SIZE = 500
HOST_ATTRIBUTES = ["dNSHostName", "name"]


@contextmanager
def directory_connection(cfg: Settings) -> Iterator[Connection]:
    server = Server(
        cfg.LDAP_SERVER,
        port=cfg.LDAP_PORT,
        use_ssl=cfg.LDAP_USE_SSL,
        get_info=NONE,
        connect_timeout=cfg.LDAP_TIMEOUT_SECONDS,
    )
    try:
        conn = Connection(
            server,
            user=cfg.LDAP_USER,
            password=cfg.LDAP_PASSWORD.get_secret_value() if cfg.LDAP_PASSWORD else None,
            auto_bind=True,
            read_only=True,
            raise_exceptions=True,
            receive_timeout=cfg.LDAP_TIMEOUT_SECONDS,
        )
    except LDAPException as e:
        raise RemoteCallError(
            f"directory bind failed: {e}", {"server": cfg.LDAP_SERVER}
        ) from e
    try:
        yield conn
    finally:
        conn.unbind()


def discover_hosts(conn, search_base: str, search_filter: str) -> list[str]:
    """DNS names of the matching computer objects, de-duplicated and sorted.

    Objects without dNSHostName fall back to their short name.
    """
    try:
        entries = conn.extend.standard.paged_search(
            search_base,
            search_filter,
            search_scope=SUBTREE,
            attributes=HOST_ATTRIBUTES,
            paged_size=PAGE_SIZE,
            generator=False,
        )
    except LDAPException as e:
        raise RemoteCallError(
            f"directory search failed: {e}", {"base": search_base}
        ) from e

    hosts: dict[str, str] = {}
    for entry in entries:
        # referrals come back as searchResRef
        if entry.get("type") != "searchResEntry":
            continue
        attrs = entry.get("attributes", {})
        name = _first(attrs.get("dNSHostName")) or _first(attrs.get("name"))
        if not name:
            continue
        name = str(name).strip()
        hosts.setdefault(name.lower(), name)
    return sorted(hosts.values(), key=str.lower)


def _first(value):
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value
