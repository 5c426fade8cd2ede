"""
scripts/health/vsphere.py — vCenter access through pyVmomi.

Converts managed objects into Host records as soon as they are read; nothing
outside this module touches pyVmomi types.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING, Iterator

from pydantic import ValidationError
from pyVim.connect import Disconnect, SmartConnect
from pyVmomi import vim, vmodl

from scripts.health.errors import ParseError, RemoteCallError
from scripts.health.inventory import Host

if TYPE_CHECKING:
    from config.settings import Settings

# Advanced settings read for every host (large-environment tuning)
ADVANCED_SETTING_KEYS = ("BufferCache.MaxCapacity", "BufferCache.FlushInterval")


class VCenterClient:
    def __init__(self, service_instance):
        self.si = service_instance
        self.content = service_instance.RetrieveContent()

    def _objects(self, vim_type) -> list:
        try:
            view = self.content.viewManager.CreateContainerView(
                self.content.rootFolder, [vim_type], True
            )
            try:
                return list(view.view)
            finally:
                view.Destroy()
        except (vmodl.MethodFault, OSError) as e:
            raise RemoteCallError(
                f"vCenter inventory query failed: {fault_message(e)}",
                {"type": getattr(vim_type, "__name__", str(vim_type))},
            ) from e

    def cluster_hosts(self, cluster_name: str) -> list[Host] | None:
        """Hosts of the named cluster in vCenter order, or None if no such cluster."""
        clusters = self._objects(vim.ClusterComputeResource)
        try:
            cluster = next((c for c in clusters if c.name == cluster_name), None)
            members = list(cluster.host) if cluster is not None else None
        except (vmodl.MethodFault, OSError) as e:
            raise RemoteCallError(
                f"could not list hosts of cluster '{cluster_name}': {fault_message(e)}",
                {"cluster": cluster_name},
            ) from e
        if members is None:
            return None
        return [host_record(h, cluster_name) for h in members]

    def vm_placements(self) -> dict[str, str]:
        """Lower-cased VM name -> name of the host it currently runs on."""
        placements: dict[str, str] = {}
        vms = self._objects(vim.VirtualMachine)
        try:
            for vm in vms:
                runtime_host = vm.runtime.host
                if runtime_host is not None:
                    placements[vm.name.lower()] = runtime_host.name
        except (vmodl.MethodFault, OSError) as e:
            raise RemoteCallError(f"could not read VM placements: {fault_message(e)}") from e
        return placements


def host_record(host, cluster_name: str) -> Host:
    """Read one HostSystem into a Host. Any vCenter fault names the host."""
    name = getattr(host, "_moId", "host")
    try:
        name = host.name
        product = host.summary.config.product if host.summary.config else None
        return Host(
            name=name,
            cluster=cluster_name,
            build=str(product.build) if product else "",
            boot_time=host.runtime.bootTime,
            vm_count=len(host.vm),
            advanced_settings=_advanced_settings(host),
        )
    except (vmodl.MethodFault, OSError) as e:
        raise RemoteCallError(
            f"could not read host {name}: {fault_message(e)}",
            {"host": name, "cluster": cluster_name},
        ) from e
    except ValidationError as e:
        raise ParseError(
            f"unexpected vCenter data for host {name}: {e.error_count()} invalid field(s)",
            {"host": name},
        ) from e


def _advanced_settings(host) -> dict[str, object]:
    option_manager = host.configManager.advancedOption
    values: dict[str, object] = {}
    for key in ADVANCED_SETTING_KEYS:
        try:
            for option in option_manager.QueryView(key):
                values[option.key] = option.value
        except vim.fault.InvalidName:
            continue  # option not present on this build
    return values


def fault_message(e: Exception) -> str:
    """``msg`` of a vmodl fault, else the fault's type name."""
    msg = getattr(e, "msg", None)
    if msg:
        return msg
    if isinstance(e, vmodl.MethodFault):
        return type(e).__name__
    return str(e) or type(e).__name__


@contextmanager
def vcenter_connection(cfg: Settings) -> Iterator[VCenterClient]:
    """Open one vCenter session for the run and always disconnect it."""
    try:
        si = SmartConnect(
            host=cfg.VCENTER_SERVER,
            user=cfg.VCENTER_USER,
            pwd=cfg.VCENTER_PASSWORD.get_secret_value() if cfg.VCENTER_PASSWORD else "",
            port=cfg.VCENTER_PORT,
            disableSslCertValidation=not cfg.VCENTER_VERIFY_SSL,
        )
    except vmodl.MethodFault as e:
        raise RemoteCallError(
            f"vCenter login failed: {fault_message(e)}", {"server": cfg.VCENTER_SERVER}
        ) from e
    except OSError as e:
        raise RemoteCallError(
            f"vCenter not reachable: {e}", {"server": cfg.VCENTER_SERVER}
        ) from e
    try:
        yield VCenterClient(si)
    finally:
        Disconnect(si)
