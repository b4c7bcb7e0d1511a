"""
ZFS Cloud Wizard

Builds and grows ZFS pools from unused whole disks, provisioning cloud
block-storage volumes when no local disk is free.
"""

from .classifier import DeviceClassifier
from .models import ActionResult, Classification, Device, Pool, SelectionMode, TopologyChoice
from .orchestrator import PoolOrchestrator
from .provisioner import VolumeProvisioner

__version__ = "1.0.0"
__all__ = [
    "ActionResult",
    "Classification",
    "Device",
    "DeviceClassifier",
    "Pool",
    "PoolOrchestrator",
    "SelectionMode",
    "TopologyChoice",
    "VolumeProvisioner",
]
