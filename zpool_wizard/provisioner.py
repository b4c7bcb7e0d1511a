"""Provisioning of remote volumes when no local device is free"""

import logging
import os
import re
import time
from typing import Callable, Optional

from .errors import AttachmentTimeout, InputError, NamingCollisionExhausted
from .models import RemoteVolume
from .services.base import BaseMetadataSource, BaseVolumeService

VOLUME_NAME_RE = re.compile(r"^[a-z][a-z0-9-]*$")
MAX_VOLUME_NAME = 64

# Receives the colliding name, returns an alternative or None/"" for a generated one
NamePrompt = Callable[[str], Optional[str]]


def validate_volume_name(name: str) -> None:
    """Check a volume name against the provider's naming rules

    Raises:
        InputError: If the name is empty or invalid
    """
    if not name:
        raise InputError("Volume name is required")
    if len(name) > MAX_VOLUME_NAME or not VOLUME_NAME_RE.match(name):
        raise InputError(
            f"Invalid volume name '{name}': use lowercase letters, digits and hyphens, "
            f"starting with a letter, at most {MAX_VOLUME_NAME} characters")


class VolumeProvisioner:
    """Creates and attaches a uniquely named volume

    A create call is only issued for a name that had no match when queried.
    A conflict reported by the create call itself is raised, not retried.
    """

    def __init__(self, service: BaseVolumeService, metadata: Optional[BaseMetadataSource] = None,
                 max_name_attempts: int = 5, attach_timeout: float = 300.0, poll_interval: float = 5.0,
                 clock: Callable[[], float] = time.time, sleep: Callable[[float], None] = time.sleep,
                 path_exists: Callable[[str], bool] = os.path.exists,
                 logger: Optional[logging.Logger] = None):
        """Initialize the provisioner

        Args:
            service: Remote volume service
            metadata: Host metadata source used when region or host id is not given
            max_name_attempts: Alternative names tried before giving up
            attach_timeout: Seconds to wait for the attachment and device node
            poll_interval: Seconds between attachment polls
            clock: Time source, also used for generated name suffixes
            sleep: Sleep function used between polls
            path_exists: Check for the attached device node
            logger: Logger instance
        """
        self.service = service
        self.metadata = metadata
        self.max_name_attempts = max_name_attempts
        self.attach_timeout = attach_timeout
        self.poll_interval = poll_interval
        self.clock = clock
        self.sleep = sleep
        self.path_exists = path_exists
        self.logger = logger or logging.getLogger(__name__)

    def provision(self, desired_name: str, region_id: Optional[str], host_id: Optional[str],
                  size_gb: int, prompt: Optional[NamePrompt] = None) -> str:
        """Create a volume, attach it to the host and return its device path

        Args:
            desired_name: Preferred volume name
            region_id: Region slug, read from host metadata when None
            host_id: Host to attach to, read from host metadata when None
            size_gb: Volume size in GB
            prompt: Asked for an alternative name on collision

        Returns:
            Device path of the attached volume

        Raises:
            InputError: Invalid name or size
            NamingCollisionExhausted: No unique name found
            RemoteServiceError: Authentication, network, conflict or timeout
        """
        validate_volume_name(desired_name)
        if size_gb <= 0:
            raise InputError(f"Volume size must be positive, got {size_gb}")

        if not region_id or not host_id:
            region_id, host_id = self._resolve_host(region_id, host_id)

        name = self.negotiate_name(desired_name, region_id, prompt)
        self.logger.info(f"Volume name '{name}' is available for creation")

        volume = self.service.create_volume(name, region_id, size_gb)
        self.service.attach_volume(volume, host_id)
        self.wait_for_attachment(volume, host_id)

        device = self.service.device_path(volume.name or name)
        self.wait_for_device(device)
        self.logger.info(f"Volume '{name}' attached at {device}")
        return device

    def negotiate_name(self, desired_name: str, region_id: str, prompt: Optional[NamePrompt] = None) -> str:
        """Find a volume name with no existing match in the region

        Raises:
            NamingCollisionExhausted: After max_name_attempts alternatives collide
        """
        name = desired_name
        attempts = 0

        while self.service.find_volumes(name, region_id):
            self.logger.warning(f"A volume with the name '{name}' already exists in region '{region_id}'")

            if attempts >= self.max_name_attempts:
                raise NamingCollisionExhausted(
                    f"No unique volume name found for '{desired_name}' in region '{region_id}' "
                    f"after {attempts} alternatives")
            attempts += 1

            name = self._alternative_name(desired_name, name, prompt)

        return name

    def wait_for_attachment(self, volume: RemoteVolume, host_id: str) -> RemoteVolume:
        """Poll the volume until the host appears among its attachments

        Raises:
            AttachmentTimeout: If attach_timeout elapses first
        """
        deadline = self.clock() + self.attach_timeout
        while True:
            current = self.service.get_volume(volume.id)
            if str(host_id) in current.attached_host_ids:
                return current
            if self.clock() >= deadline:
                raise AttachmentTimeout(
                    f"Volume '{volume.name}' not attached to {host_id} after {self.attach_timeout:g}s")
            self.logger.debug(f"Waiting for volume '{volume.name}' to attach...")
            self.sleep(self.poll_interval)

    def wait_for_device(self, device: str) -> None:
        """Wait for the device node of an attached volume

        Raises:
            AttachmentTimeout: If the node does not appear within attach_timeout
        """
        deadline = self.clock() + self.attach_timeout
        while not self.path_exists(device):
            if self.clock() >= deadline:
                raise AttachmentTimeout(f"Device {device} did not appear after {self.attach_timeout:g}s")
            self.logger.debug(f"Waiting for {device} to appear...")
            self.sleep(min(self.poll_interval, 1.0))

    def _alternative_name(self, desired_name: str, colliding: str, prompt: Optional[NamePrompt]) -> str:
        if prompt:
            answer = (prompt(colliding) or "").strip()
            if answer:
                try:
                    validate_volume_name(answer)
                    return answer
                except InputError as e:
                    self.logger.warning(f"{e}; using a generated name instead")

        suffix = f"-{int(self.clock())}"
        generated = f"{desired_name[:MAX_VOLUME_NAME - len(suffix)]}{suffix}"
        self.logger.info(f"Using auto-generated name: {generated}")
        return generated

    def _resolve_host(self, region_id: Optional[str], host_id: Optional[str]):
        if self.metadata is None:
            raise InputError("Region and host id are required when no metadata source is available")
        host = self.metadata.get_host_metadata()
        return region_id or host.region_id, host_id or host.host_id
