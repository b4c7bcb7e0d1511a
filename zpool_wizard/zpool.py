"""ZFS pool engine integration via the zpool command"""

import glob
import json
import logging
import os
import re
import subprocess
from typing import Dict, List, Optional, Set

from .devnames import base_device_name
from .errors import EngineFailure, InspectionError
from .models import (POOL_OPTIONS, POOL_PROPERTIES, AuxiliaryVdev, Mirror, Pool, PoolUsage, Stripe,
                     VdevGroup)
from .supervisor import CommandSupervisor

# Group labels reported by zpool status; never leaf devices
GROUP_PREFIXES = ("mirror", "raidz", "draid", "spare", "replacing")
JSON_SECTIONS = {"logs": "logs", "l2cache": "cache", "spares": "spares",
                 "special": "special", "dedup": "dedup"}


class ZpoolEngine:
    """Queries and mutates ZFS pools

    Queries run directly; mutations go through the CommandSupervisor with
    interrupts deferred, and any non-zero status raises EngineFailure.
    """

    def __init__(self, supervisor: Optional[CommandSupervisor] = None,
                 logger: Optional[logging.Logger] = None):
        """Initialize the engine

        Args:
            supervisor: Runner for pool-mutating commands
            logger: Logger instance
        """
        self.logger = logger or logging.getLogger(__name__)
        self.supervisor = supervisor or CommandSupervisor(logger=self.logger)

    # Queries

    def list_pools(self) -> List[str]:
        """Names of all imported pools

        Raises:
            InspectionError: If zpool cannot be queried
        """
        result = self._execute_command(["zpool", "list", "-H", "-o", "name"])
        if result.returncode != 0:
            raise InspectionError(f"Could not list pools: {result.stderr.strip()}")
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def pool_exists(self, name: str) -> bool:
        """Check whether a pool with this name is imported"""
        result = self._execute_command(["zpool", "list", "-H", "-o", "name", name])
        return result.returncode == 0

    def get_pool(self, name: str, full_paths: bool = False, resolve_links: bool = False) -> Pool:
        """Read the current topology of a pool

        Args:
            name: Pool name
            full_paths: Report leaf devices with full paths (-P)
            resolve_links: Resolve links to real device nodes (-L)

        Raises:
            InspectionError: If the pool status cannot be read
        """
        flags = ""
        if resolve_links:
            flags += "L"
        if full_paths:
            flags += "P"
        options = [f"-{flags}"] if flags else []

        members = self._get_members_json(name, options)
        if members is None:
            result = self._execute_command(["zpool", "status"] + options + [name])
            if result.returncode != 0:
                raise InspectionError(f"Could not read status of pool {name}: {result.stderr.strip()}")
            members = parse_zpool_status(result.stdout).get(name, [])

        return Pool(
            name=name,
            mount_path=self._get_mountpoint(name),
            members=members,
            auto_expand=self._get_property(name, "autoexpand") == "on",
            exists=True,
        )

    def list_pool_usage(self) -> List[PoolUsage]:
        """Capacity and health of every imported pool

        Raises:
            InspectionError: If zpool cannot be queried
        """
        result = self._execute_command(["zpool", "list", "-H", "-o", "name,size,alloc,free,health"])
        if result.returncode != 0:
            raise InspectionError(f"Could not list pools: {result.stderr.strip()}")

        usage = []
        for line in result.stdout.splitlines():
            fields = line.split("\t")
            if len(fields) != 5:
                continue
            usage.append(PoolUsage(*(value.strip() for value in fields)))
        return usage

    def member_tokens(self) -> Set[str]:
        """Names under which devices of every pool may appear

        Each leaf contributes its displayed name and, with links resolved,
        its kernel name; both are added with and without partition suffix.

        Raises:
            InspectionError: If pools cannot be queried
        """
        tokens: Set[str] = set()
        for pool_name in self.list_pools():
            for resolve in (False, True):
                pool = self.get_pool(pool_name, full_paths=True, resolve_links=resolve)
                for device in pool.devices:
                    name = os.path.basename(device)
                    tokens.add(name)
                    tokens.add(base_device_name(name))
        self.logger.debug(f"Pool member tokens: {sorted(tokens)}")
        return tokens

    def list_member_devices(self) -> List[Dict[str, str]]:
        """All devices used by pools as {"pool", "device"} records"""
        records = []
        for pool_name in self.list_pools():
            pool = self.get_pool(pool_name)
            for device in pool.devices:
                records.append({"pool": pool_name, "device": self._resolve_by_id(device)})
        return records

    # Mutations

    def create_pool(self, name: str, device: str, mount_path: str) -> None:
        """Create a pool with a single device and the standard option set"""
        try:
            os.makedirs(mount_path, exist_ok=True)
        except OSError as e:
            raise EngineFailure("create mountpoint", mount_path, output=str(e))

        cmd = ["zpool", "create", "-f", "-O", f"mountpoint={mount_path}"]
        for key, value in POOL_OPTIONS.items():
            cmd.extend(["-O", f"{key}={value}"])
        for key, value in POOL_PROPERTIES.items():
            cmd.extend(["-o", f"{key}={value}"])
        cmd.extend([name, device])

        self._mutate(cmd, f"Creating pool {name}", "zpool create", device)

    def set_autoexpand(self, name: str) -> None:
        self._mutate(["zpool", "set", "autoexpand=on", name],
                     f"Enabling autoexpand on pool {name}", "zpool set autoexpand", name)

    def add_stripe(self, name: str, device: str) -> None:
        self._mutate(["zpool", "add", name, device],
                     f"Adding {device} as stripe to {name}", "zpool add", device)

    def attach_mirror(self, name: str, target: str, device: str) -> None:
        self._mutate(["zpool", "attach", name, target, device],
                     f"Attaching {device} as mirror of {target} in {name}", "zpool attach", device)

    def expand_device(self, name: str, device: str) -> None:
        """Grow the pool to the full size of an online device"""
        self._mutate(["zpool", "online", "-e", name, device],
                     f"Expanding {device} in {name}", "zpool online -e", device)

    # Helpers

    def _mutate(self, cmd: List[str], description: str, operation: str, device: str) -> None:
        result = self.supervisor.run(cmd, description, interruptible=False)
        if not result.ok:
            raise EngineFailure(operation, device, result.returncode, result.output)

    def _get_property(self, name: str, prop: str) -> str:
        result = self._execute_command(["zpool", "get", "-H", "-o", "value", prop, name])
        if result.returncode != 0:
            self.logger.debug(f"Could not read {prop} of {name}: {result.stderr.strip()}")
            return ""
        return result.stdout.strip()

    def _get_mountpoint(self, name: str) -> str:
        """Mountpoint of the pool's root dataset, empty when not mounted by ZFS"""
        cmd = ["zfs", "get", "-H", "-o", "value", "mountpoint", name]
        result = self._execute_command(cmd)
        if result.returncode != 0:
            self.logger.debug(f"Could not read mountpoint of {name}: {result.stderr.strip()}")
            return ""
        value = result.stdout.strip()
        return "" if value in ("-", "none", "legacy") else value

    def _get_members_json(self, name: str, options: List[str]) -> Optional[List[VdevGroup]]:
        """Topology from `zpool status -j` (OpenZFS 2.3+), None when unsupported"""
        result = self._execute_command(["zpool", "status", "-j"] + options + [name])
        if result.returncode != 0:
            return None
        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError:
            return None

        pool_info = data.get("pools", {}).get(name)
        if not pool_info:
            return None
        return parse_zpool_status_json(name, pool_info, full_paths="P" in "".join(options))

    def _resolve_by_id(self, device: str) -> str:
        """Find the /dev/disk/by-id link for a device as displayed by zpool"""
        if device.startswith("/"):
            return device

        by_id = os.path.join("/dev/disk/by-id", device)
        if os.path.exists(by_id):
            return by_id

        node = os.path.join("/dev", device)
        for link in sorted(glob.glob("/dev/disk/by-id/*")):
            if "-part" in link:
                continue
            if os.path.realpath(link) == node:
                return link
        return node

    def _execute_command(self, cmd: List[str]) -> subprocess.CompletedProcess:
        """Execute a query command without raising on its exit status"""
        self.logger.debug(f"Executing command: {' '.join(cmd)}")
        try:
            return subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                                  universal_newlines=True)
        except OSError as e:
            raise InspectionError(f"Could not execute {cmd[0]}: {e}")


def _is_group_label(token: str) -> bool:
    return token.startswith(GROUP_PREFIXES) and bool(re.match(r"^[a-z]+\d*(-\d+)?$", token))


def parse_zpool_status(output: str) -> Dict[str, List[VdevGroup]]:
    """Parse `zpool status` text into vdev groups per pool

    Nesting is read from indentation below the NAME header: the pool and
    section labels (logs, cache, spares) sit at level 0, top-level vdevs at
    level 1 and members of a group at level 2 or deeper.
    """
    pools: Dict[str, List[VdevGroup]] = {}
    current_pool = None
    in_config = False
    base_indent = None
    section = "data"
    open_group: Optional[VdevGroup] = None
    sections: Dict[str, AuxiliaryVdev] = {}

    for raw_line in output.splitlines():
        line = raw_line.expandtabs(8)
        stripped = line.strip()

        if stripped.startswith("pool:"):
            current_pool = stripped.split(":", 1)[1].strip()
            pools[current_pool] = []
            in_config = False
            base_indent = None
            sections = {}
            continue
        if stripped.startswith("config:"):
            in_config = True
            continue
        if stripped.startswith("errors:"):
            in_config = False
            continue
        if not in_config or current_pool is None or not stripped:
            continue

        token = stripped.split()[0]
        indent = len(line) - len(line.lstrip())

        if base_indent is None:
            if token == "NAME":
                base_indent = indent
            continue

        level = (indent - base_indent) // 2
        members = pools[current_pool]

        if level <= 0:
            section = "data" if token == current_pool else token
            open_group = None
            continue

        if section != "data":
            aux = sections.get(section)
            if aux is None:
                aux = AuxiliaryVdev(kind=section, devices=[])
                sections[section] = aux
                members.append(aux)
            if not _is_group_label(token):
                aux.devices.append(token)
            continue

        if level == 1:
            if token.startswith("mirror"):
                open_group = Mirror(devices=[], name=token)
                members.append(open_group)
            elif token.startswith(("raidz", "draid")):
                open_group = AuxiliaryVdev(kind=re.sub(r"-\d+$", "", token), devices=[], name=token)
                members.append(open_group)
            else:
                open_group = None
                members.append(Stripe(device=token))
        elif open_group is not None and not _is_group_label(token):
            open_group.devices.append(token)

    return pools


def _collect_leaves(vdev: dict, full_paths: bool) -> List[str]:
    children = vdev.get("vdevs")
    if not children:
        if full_paths and vdev.get("path"):
            return [vdev["path"]]
        return [vdev.get("name", "")]
    leaves = []
    for child in children.values():
        leaves.extend(_collect_leaves(child, full_paths))
    return leaves


def parse_zpool_status_json(name: str, pool_info: dict, full_paths: bool = False) -> List[VdevGroup]:
    """Convert one pool entry of `zpool status -j` into vdev groups"""
    members: List[VdevGroup] = []

    root = pool_info.get("vdevs", {}).get(name, {})
    for vdev_name, vdev in root.get("vdevs", {}).items():
        vdev_type = vdev.get("vdev_type", "")
        if vdev_type == "mirror" or vdev_name.startswith("mirror"):
            members.append(Mirror(devices=_collect_leaves(vdev, full_paths), name=vdev_name))
        elif vdev.get("vdevs"):
            kind = vdev_type or re.sub(r"-\d+$", "", vdev_name)
            members.append(AuxiliaryVdev(kind=kind, devices=_collect_leaves(vdev, full_paths), name=vdev_name))
        else:
            members.append(Stripe(device=_collect_leaves(vdev, full_paths)[0]))

    for key, kind in JSON_SECTIONS.items():
        section = pool_info.get(key)
        if not section:
            continue
        devices = []
        for vdev in section.values():
            devices.extend(_collect_leaves(vdev, full_paths))
        members.append(AuxiliaryVdev(kind=kind, devices=devices))

    return members
