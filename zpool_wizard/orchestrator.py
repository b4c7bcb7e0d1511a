"""Pool topology decisions: create, stripe or mirror"""

import logging
import os
import re
from itertools import zip_longest
from typing import Callable, List, Optional

from .classifier import DeviceClassifier
from .devnames import base_device_name
from .errors import ConfirmationDeclined, InputError, PreconditionError
from .models import (ActionResult, Device, DeviceSearch, Mirror, Pool, Proceed, ProvisionRequired,
                     SelectionMode, Stripe, TopologyChoice)
from .preparer import DevicePreparer
from .zpool import ZpoolEngine

POOL_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_.:-]*$")
RESERVED_POOL_PREFIXES = ("mirror", "raidz", "draid", "spare")
RESERVED_POOL_NAMES = {"log", "logs", "cache", "special", "dedup"}

# Receives the device about to be erased; True approves
ConfirmCallback = Callable[[Device], bool]


def validate_pool_name(name: str) -> None:
    """Check a pool name against ZFS naming rules

    Raises:
        InputError: If the name is missing or not allowed
    """
    if not name:
        raise InputError("Pool name is required")
    if not POOL_NAME_RE.match(name):
        raise InputError(
            f"Invalid pool name '{name}': must start with a letter and contain only "
            f"letters, digits, '_', '-', '.' and ':'")
    if name.startswith(RESERVED_POOL_PREFIXES) or name in RESERVED_POOL_NAMES:
        raise InputError(f"Pool name '{name}' is reserved")


def select_mirror_target(pool: Pool) -> str:
    """First device of the pool that is not already mirrored

    Scans the top-level vdevs in the order the engine reports them.

    Raises:
        PreconditionError: If every data vdev is already redundant
    """
    for group in pool.members:
        if isinstance(group, Stripe):
            return group.device
    raise PreconditionError(
        f"Could not find a suitable device to mirror with in pool {pool.name}; "
        f"specify a mirror target")


class PoolOrchestrator:
    """Decides which pool operation a device is used for and performs it

    At most one pool-mutating call is issued per invocation. Engine failures
    are raised immediately and never retried.
    """

    def __init__(self, engine: ZpoolEngine, classifier: DeviceClassifier,
                 preparer: Optional[DevicePreparer] = None, mount_root: str = "/zfs",
                 confirm: Optional[ConfirmCallback] = None, logger: Optional[logging.Logger] = None):
        """Initialize the orchestrator

        Args:
            engine: Pool engine
            classifier: Device classifier, also the source of the inspector
            preparer: Wipes and labels the device before use
            mount_root: Pools are mounted at <mount_root>/<name>
            confirm: Approval callback; without one every device is declined
            logger: Logger instance
        """
        self.logger = logger or logging.getLogger(__name__)
        self.engine = engine
        self.classifier = classifier
        self.inspector = classifier.inspector
        self.preparer = preparer or DevicePreparer(logger=self.logger)
        self.mount_root = mount_root
        self.confirm = confirm or (lambda device: False)

    def mount_path(self, pool_name: str) -> str:
        return os.path.join(self.mount_root, pool_name)

    def find_device(self, mode: SelectionMode = SelectionMode.LARGEST) -> DeviceSearch:
        """Pick a local device, or signal that one has to be provisioned"""
        candidates = self.classifier.classify(mode)
        if not candidates:
            return ProvisionRequired()
        return Proceed(candidates[0])

    def resolve_topology_action(self, pool_name: str, device_path: str,
                                choice: Optional[TopologyChoice] = None,
                                mirror_target: Optional[str] = None) -> ActionResult:
        """Add a device to a pool, creating the pool when it does not exist

        Args:
            pool_name: Target pool
            device_path: Device to use
            choice: CREATE, STRIPE or MIRROR; None creates a missing pool and
                stripes onto an existing one
            mirror_target: Member to mirror; only valid with MIRROR

        Returns:
            ActionResult describing what was done

        Raises:
            InputError: Invalid arguments
            PreconditionError: Action does not fit the current pool state
            ConfirmationDeclined: The device was not approved for erasing
            EngineFailure: A pool or device command failed
        """
        validate_pool_name(pool_name)
        if not device_path:
            raise InputError("Device path is required")
        if mirror_target and choice is not TopologyChoice.MIRROR:
            raise InputError("A mirror target can only be given for a mirror operation")
        if not self.inspector.exists(device_path):
            raise InputError(f"Device {device_path} does not exist")

        facts = self.inspector.inspect(device_path)
        if facts.is_partition:
            raise InputError(f"Device {device_path} is a partition, a whole disk is required")
        if facts.is_pool_member:
            raise PreconditionError(f"Device {device_path} is already a member of a pool")

        exists = self.engine.pool_exists(pool_name)
        if choice is None:
            choice = TopologyChoice.STRIPE if exists else TopologyChoice.CREATE

        target = None
        if choice is TopologyChoice.CREATE:
            if exists:
                raise PreconditionError(f"Pool {pool_name} already exists")
        else:
            if not exists:
                raise PreconditionError(
                    f"Pool {pool_name} does not exist, cannot add {choice.value} device")
            if choice is TopologyChoice.MIRROR:
                pool = self.engine.get_pool(pool_name)
                target = self._resolve_mirror_target(pool, mirror_target)
                self.logger.info(f"Selected device to mirror: {target}")

        device = Device(path=device_path, canonical_path=facts.canonical_path, size_bytes=facts.size_bytes)
        if not self.confirm(device):
            raise ConfirmationDeclined(f"Operation cancelled, {device_path} was not erased")

        self.preparer.prepare(facts.canonical_path)

        if choice is TopologyChoice.CREATE:
            return self._create(pool_name, device_path)
        if choice is TopologyChoice.STRIPE:
            return self._stripe(pool_name, device_path)
        return self._mirror(pool_name, device_path, target)

    def _create(self, pool_name: str, device_path: str) -> ActionResult:
        mount_path = self.mount_path(pool_name)
        self.logger.info(f"Creating new ZFS pool '{pool_name}' at {mount_path}")
        self.engine.create_pool(pool_name, device_path, mount_path)
        self.logger.info(f"Pool {pool_name} created successfully")
        return ActionResult("created", pool_name, device_path, mount_path=mount_path)

    def _stripe(self, pool_name: str, device_path: str) -> ActionResult:
        self.logger.info(f"Adding {device_path} as new stripe to pool '{pool_name}'")
        self.engine.set_autoexpand(pool_name)
        self.engine.add_stripe(pool_name, device_path)
        self.engine.expand_device(pool_name, device_path)
        return ActionResult("striped", pool_name, device_path, mount_path=self.mount_path(pool_name))

    def _mirror(self, pool_name: str, device_path: str, target: str) -> ActionResult:
        self.logger.info(f"Adding {device_path} as mirror of {target} in pool '{pool_name}'")
        self.engine.set_autoexpand(pool_name)
        self.engine.attach_mirror(pool_name, target, device_path)
        self.engine.expand_device(pool_name, device_path)
        return ActionResult("mirrored", pool_name, device_path, mirror_target=target,
                            mount_path=self.mount_path(pool_name))

    def _resolve_mirror_target(self, pool: Pool, mirror_target: Optional[str]) -> str:
        """Name of the pool member to attach to, as zpool status shows it

        An explicit target may be given under any of its names (by-id alias,
        kernel node or bare name); it is matched against the members' resolved
        device nodes as well as the names the pool displays.
        """
        if not mirror_target:
            return select_mirror_target(pool)

        wanted = {os.path.basename(mirror_target),
                  base_device_name(self.inspector.canonical_path(mirror_target))}
        resolved = self.engine.get_pool(pool.name, full_paths=True, resolve_links=True)
        for shown, node in zip_longest(self._data_leaves(pool), self._data_leaves(resolved), fillvalue=""):
            if not shown:
                break
            if mirror_target == shown or os.path.basename(shown) in wanted:
                return shown
            if node and base_device_name(node) in wanted:
                return shown

        raise PreconditionError(f"Mirror target {mirror_target} is not in pool {pool.name}")

    @staticmethod
    def _data_leaves(pool: Pool) -> List[str]:
        return [leaf for group in pool.members if isinstance(group, (Stripe, Mirror))
                for leaf in group.devices]
