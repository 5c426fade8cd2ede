"""
scripts/health/locator.py — Resolve a cluster name to the resources to check.

Hosts come from vCenter. Proxies come from Veeam and are kept when the VM
backing the proxy runs on one of the cluster's hosts. Any failure here is
fatal to the run: there is nothing to evaluate without resources.
"""

from __future__ import annotations

from typing import Protocol

from scripts.health.errors import EmptyResultError, NotFoundError
from scripts.health.inventory import ClusterInventory, Host, Proxy


class HostSource(Protocol):
    def cluster_hosts(self, cluster_name: str) -> list[Host] | None: ...

    def vm_placements(self) -> dict[str, str]: ...


class ProxySource(Protocol):
    def list_proxies(self) -> list[dict[str, str]]: ...


def locate(cluster_name: str, vcenter: HostSource, veeam: ProxySource) -> ClusterInventory:
    hosts = vcenter.cluster_hosts(cluster_name)
    if hosts is None:
        raise NotFoundError(f"cluster '{cluster_name}' not found in vCenter")
    if not hosts:
        raise EmptyResultError(f"cluster '{cluster_name}' has no hosts")

    host_names = {h.name for h in hosts}
    placements = vcenter.vm_placements()
    proxies = []
    for raw in veeam.list_proxies():
        host = resolve_proxy_host(raw["name"], placements)
        if host in host_names:
            proxies.append(
                Proxy(name=raw["name"], host=host, transport_mode=raw.get("transport_mode", ""))
            )

    return ClusterInventory(cluster=cluster_name, hosts=tuple(hosts), proxies=tuple(proxies))


def resolve_proxy_host(proxy_name: str, placements: dict[str, str]) -> str | None:
    """Host running the proxy VM. Matches the full name first, then the short name.

    Veeam usually registers proxies by FQDN while the VM carries the short
    name (or the other way round).
    """
    name = proxy_name.strip().lower()
    if name in placements:
        return placements[name]
    short = name.split(".", 1)[0]
    if short in placements:
        return placements[short]
    for vm_name, host in placements.items():
        if vm_name.split(".", 1)[0] == short:
            return host
    return None
