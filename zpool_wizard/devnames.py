"""Block device naming rules"""

import os
import re

# Kernel names whose whole-disk form already ends in a digit; partitions use a "p<N>" suffix
_DIGIT_DISK = r"(?:nvme\d+n\d+|mmcblk\d+|loop\d+|nbd\d+|md\d+|zd\d+)"

ALIAS_PARTITION_RE = re.compile(r"-part\d+$")
DIGIT_DISK_PARTITION_RE = re.compile(rf"^{_DIGIT_DISK}p\d+$")
DIGIT_DISK_RE = re.compile(rf"^(?:{_DIGIT_DISK}|dm-\d+|sr\d+|zram\d+|ram\d+)$")
TRAILING_NUMBER_RE = re.compile(r"^[a-z]+\d+$")

# Devices never considered for a pool when falling back to lsblk
VIRTUAL_PREFIXES = ("loop", "sr", "zd", "ram", "zram", "fd")


def is_partition_alias(path: str) -> bool:
    """Whether a /dev/disk/by-* link names a partition (e.g. ...-part1)"""
    return bool(ALIAS_PARTITION_RE.search(os.path.basename(path)))


def is_partition_node(path: str) -> bool:
    """Whether a kernel device node names a partition

    sda1, vdb2, xvda1, nvme0n1p1 and mmcblk0p1 are partitions;
    sda, nvme0n1 and mmcblk0 are whole disks.
    """
    name = os.path.basename(path)
    if DIGIT_DISK_PARTITION_RE.match(name):
        return True
    if DIGIT_DISK_RE.match(name):
        return False
    return bool(TRAILING_NUMBER_RE.match(name))


def base_device_name(name: str) -> str:
    """Strip a partition suffix from a device name

    Args:
        name: Device name or path (e.g., sda1, nvme0n1p1, scsi-0DO_Volume_x-part1)

    Returns:
        Name of the whole disk without directory
    """
    name = os.path.basename(name)

    if ALIAS_PARTITION_RE.search(name):
        return ALIAS_PARTITION_RE.sub("", name)
    # Handle NVMe style partitions (nvme0n1p1 -> nvme0n1)
    if DIGIT_DISK_PARTITION_RE.match(name):
        return re.sub(r"p\d+$", "", name)
    # Handle traditional partitions (sda1 -> sda)
    if not DIGIT_DISK_RE.match(name) and TRAILING_NUMBER_RE.match(name):
        return re.sub(r"\d+$", "", name)
    return name


def is_virtual_device(path: str) -> bool:
    """Loop, optical, zvol and RAM devices"""
    return os.path.basename(path).startswith(VIRTUAL_PREFIXES)
