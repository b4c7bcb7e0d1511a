"""Device classification: which block devices may join a pool"""

import glob
import logging
import subprocess
from dataclasses import dataclass
from typing import Callable, List, Optional, Set

from .devnames import is_partition_alias, is_partition_node, is_virtual_device
from .errors import InspectionError
from .inspector import DeviceInspector
from .models import Classification, Device, DeviceFacts, SelectionMode


@dataclass(frozen=True)
class Exclusion:
    """A named predicate that removes a device from the candidate set"""

    reason: str
    classification: Classification
    matches: Callable[[DeviceFacts], bool]


# Evaluated in order; the first match decides the classification
EXCLUSIONS: List[Exclusion] = [
    Exclusion("is a partition", Classification.PARTITION,
              lambda facts: facts.is_partition),
    Exclusion("is a ZFS pool member", Classification.POOL_MEMBER,
              lambda facts: facts.is_pool_member),
    Exclusion("has partitions", Classification.HAS_PARTITIONS,
              lambda facts: facts.child_count > 1),
    Exclusion("has partition table or filesystem signature", Classification.HAS_SIGNATURE,
              lambda facts: facts.has_partition_table or facts.has_filesystem_signature),
]


def classify_facts(facts: DeviceFacts, exclusions: Optional[List[Exclusion]] = None) -> Device:
    """Apply the exclusion pipeline to one device's facts"""
    device = Device(path=facts.path, canonical_path=facts.canonical_path, size_bytes=facts.size_bytes)

    for exclusion in (EXCLUSIONS if exclusions is None else exclusions):
        if exclusion.matches(facts):
            device.classification = exclusion.classification
            device.reason = exclusion.reason
            return device

    device.classification = Classification.CANDIDATE
    device.reason = "unused whole disk"
    return device


def select(devices: List[Device], mode: SelectionMode) -> List[Device]:
    """Reduce scanned devices to candidates according to the selection mode

    LARGEST keeps the first candidate of maximum size.
    """
    candidates = [device for device in devices if device.is_candidate]
    if mode is SelectionMode.ALL or not candidates:
        return candidates

    largest = candidates[0]
    for device in candidates[1:]:
        if device.size_bytes > largest.size_bytes:
            largest = device
    return [largest]


class DeviceClassifier:
    """Enumerates visible block devices and classifies each one

    Never mutates device or pool state. Nothing is cached between calls,
    since pool membership can change between scans.
    """

    def __init__(self, inspector: Optional[DeviceInspector] = None,
                 namespace: str = "/dev/disk/by-id/scsi-*",
                 exclusions: Optional[List[Exclusion]] = None,
                 logger: Optional[logging.Logger] = None):
        """Initialize the classifier

        Args:
            inspector: Device inspector providing per-device facts
            namespace: Glob for provider-specific whole-disk links
            exclusions: Exclusion pipeline, defaults to EXCLUSIONS
            logger: Logger instance
        """
        self.logger = logger or logging.getLogger(__name__)
        self.inspector = inspector or DeviceInspector(logger=self.logger)
        self.namespace = namespace
        self.exclusions = list(EXCLUSIONS if exclusions is None else exclusions)

    def classify(self, mode: SelectionMode = SelectionMode.ALL) -> List[Device]:
        """Candidate devices for a pool

        Args:
            mode: ALL for every candidate in enumeration order, LARGEST for
                the single largest one

        Returns:
            List of candidate devices; empty when no local device is free

        Raises:
            InspectionError: If devices cannot be enumerated or pool membership
                cannot be determined
        """
        candidates = select(self.scan(), mode)
        if not candidates:
            self.logger.info("No unformatted drives found")
        return candidates

    def scan(self) -> List[Device]:
        """Classify every enumerated device"""
        paths = self.enumerate_devices()
        self.logger.debug(f"Total {len(paths)} drives to check...")
        if not paths:
            return []

        try:
            tokens: Set[str] = self.inspector.pool_member_tokens()
        except InspectionError as e:
            raise InspectionError(f"Cannot determine pool membership, refusing to classify devices: {e}")

        devices = []
        for path in paths:
            device = classify_facts(self.inspector.inspect(path, tokens), self.exclusions)
            if device.is_candidate:
                self.logger.info(f"Found candidate drive: {path} ({format_size(device.size_bytes)})")
            else:
                self.logger.debug(f"Skipping drive: {path} ({device.reason})")
            devices.append(device)
        return devices

    def enumerate_devices(self) -> List[str]:
        """Whole-disk paths from the provider namespace, else from lsblk

        Raises:
            InspectionError: If neither source can be read
        """
        self.logger.debug(f"Scanning for drives matching {self.namespace}...")
        paths = [path for path in sorted(glob.glob(self.namespace)) if not is_partition_alias(path)]
        if paths:
            self.logger.debug(f"Found {len(paths)} provider drives to check...")
            return paths

        self.logger.warning("No provider drives found, falling back to regular block devices")
        return self._list_block_devices()

    def _list_block_devices(self) -> List[str]:
        """Whole-disk nodes reported by lsblk

        Raises:
            InspectionError: If lsblk cannot be run
        """
        cmd = ["lsblk", "-dpno", "NAME"]
        self.logger.debug(f"Executing command: {' '.join(cmd)}")
        try:
            output = subprocess.check_output(cmd, universal_newlines=True)
        except (OSError, subprocess.SubprocessError) as e:
            raise InspectionError(f"Cannot enumerate block devices, refusing to classify devices: {e}")

        paths = []
        for line in output.splitlines():
            path = line.strip()
            if not path or is_virtual_device(path) or is_partition_node(path):
                continue
            paths.append(path)
        return paths


def format_size(size_bytes: int) -> str:
    """Human-readable size in binary units"""
    size = float(size_bytes)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if size < 1024:
            return f"{size:.2f} {unit}" if unit != "B" else f"{int(size)} B"
        size /= 1024
    return f"{size:.2f} TiB"
