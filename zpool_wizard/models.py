"""Data models for devices, pools and remote volumes"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Set, Union


class Classification(Enum):
    """Terminal outcome of one device scan"""

    UNCLASSIFIED = "unclassified"
    PARTITION = "partition"
    POOL_MEMBER = "pool-member"
    HAS_PARTITIONS = "has-partitions"
    HAS_SIGNATURE = "has-signature"
    CANDIDATE = "candidate"


class SelectionMode(Enum):
    """How classify() reduces the candidate set"""

    ALL = "all"
    LARGEST = "largest"


class TopologyChoice(Enum):
    """Action requested by the caller for the target pool"""

    CREATE = "create"
    STRIPE = "stripe"
    MIRROR = "mirror"


# Dataset properties (-O) applied at pool creation
POOL_OPTIONS = {
    "compression": "lz4",
    "atime": "off",
    "sync": "standard",
    "aclinherit": "passthrough",
    "utf8only": "on",
    "normalization": "formD",
    "casesensitivity": "sensitive",
}

# Pool properties (-o) applied at pool creation
POOL_PROPERTIES = {
    "autoexpand": "on",
}


@dataclass
class DeviceFacts:
    """Facts gathered about one device during a single scan pass"""

    path: str                              # Path as supplied (often a /dev/disk/by-id link)
    canonical_path: str                    # Resolved device node (e.g., /dev/sdb)
    is_partition: bool = False
    is_pool_member: bool = False
    child_count: int = 1                   # lsblk rows for the device, itself included
    has_partition_table: bool = False
    has_filesystem_signature: bool = False
    size_bytes: int = 0
    unknown: Set[str] = field(default_factory=set)  # Facts that could not be determined


@dataclass
class Device:
    """A block device and its classification for the current scan"""

    path: str
    canonical_path: str
    size_bytes: int = 0
    classification: Classification = Classification.UNCLASSIFIED
    reason: str = ""

    @property
    def is_candidate(self) -> bool:
        return self.classification is Classification.CANDIDATE

    def to_dict(self) -> dict:
        """Convert device to dictionary representation"""
        return {
            "path": self.path,
            "canonical_path": self.canonical_path,
            "size_bytes": self.size_bytes,
            "classification": self.classification.value,
            "reason": self.reason,
        }


@dataclass
class Stripe:
    """Top-level vdev made of a single device"""

    device: str

    @property
    def devices(self) -> List[str]:
        return [self.device]


@dataclass
class Mirror:
    """Mirror vdev holding identical copies on two or more devices"""

    devices: List[str]
    name: str = ""                         # Engine label, e.g. mirror-0


@dataclass
class AuxiliaryVdev:
    """Any other group the engine reports (raidz, log, cache, spare, special)"""

    kind: str
    devices: List[str]
    name: str = ""


VdevGroup = Union[Stripe, Mirror, AuxiliaryVdev]


@dataclass
class Pool:
    """A storage pool and its current topology"""

    name: str
    mount_path: str = ""
    members: List[VdevGroup] = field(default_factory=list)
    auto_expand: bool = False
    exists: bool = True

    @property
    def data_vdevs(self) -> List[VdevGroup]:
        """Groups that hold pool data (stripes and mirrors)"""
        return [m for m in self.members if isinstance(m, (Stripe, Mirror))]

    @property
    def devices(self) -> List[str]:
        """All leaf devices across every group, in topology order"""
        return [dev for group in self.members for dev in group.devices]

    def to_dict(self) -> dict:
        groups = []
        for group in self.members:
            if isinstance(group, Stripe):
                groups.append({"type": "stripe", "devices": group.devices})
            elif isinstance(group, Mirror):
                groups.append({"type": "mirror", "devices": list(group.devices)})
            else:
                groups.append({"type": group.kind, "devices": list(group.devices)})
        return {
            "name": self.name,
            "mount_path": self.mount_path,
            "auto_expand": self.auto_expand,
            "members": groups,
        }


@dataclass
class PoolUsage:
    """One row of `zpool list`: capacity and health of a pool"""

    name: str
    size: str
    allocated: str
    free: str
    health: str

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "size": self.size,
            "alloc": self.allocated,
            "free": self.free,
            "health": self.health,
        }


@dataclass
class RemoteVolume:
    """Block-storage volume held by the cloud provider"""

    id: str
    name: str
    region_id: str
    size_gb: int
    attached_host_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "region": self.region_id,
            "size_gigabytes": self.size_gb,
            "attached_host_ids": list(self.attached_host_ids),
        }


@dataclass
class HostMetadata:
    """Identity of the host this tool runs on"""

    host_id: str
    region_id: str
    hostname: str

    def to_dict(self) -> dict:
        return {
            "droplet_id": self.host_id,
            "region": self.region_id,
            "hostname": self.hostname,
        }


@dataclass
class ActionResult:
    """Summary of the single topology action that was performed"""

    action: str                            # created, striped or mirrored
    pool: str
    device: str
    mirror_target: Optional[str] = None
    mount_path: str = ""

    def to_dict(self) -> dict:
        result = {
            "action": self.action,
            "pool": self.pool,
            "device": self.device,
            "mount_path": self.mount_path,
        }
        if self.mirror_target:
            result["mirror_target"] = self.mirror_target
        return result


@dataclass
class Proceed:
    """A local device is available for the pool"""

    device: Device


@dataclass
class ProvisionRequired:
    """No local candidate exists; a volume has to be provisioned first"""

    reason: str = "No unused whole-disk devices found"


DeviceSearch = Union[Proceed, ProvisionRequired]
