"""DigitalOcean block storage and droplet metadata"""

import logging
import os
import socket
from typing import Any, Dict, List, Optional

import requests

from ..devnames import base_device_name
from ..errors import (InputError, RemoteAuthenticationError, RemoteServiceError,
                      VolumeNameConflict)
from ..models import HostMetadata, RemoteVolume
from .base import BaseMetadataSource, BaseVolumeService

DEVICE_PREFIX = "/dev/disk/by-id/scsi-0DO_Volume_"


def volume_name_for_device(device: str) -> Optional[str]:
    """Volume name behind a /dev/disk/by-id/scsi-0DO_Volume_<name> device, None for other devices"""
    name = base_device_name(device)
    prefix = os.path.basename(DEVICE_PREFIX)
    if name.startswith(prefix) and len(name) > len(prefix):
        return name[len(prefix):]
    return None


class DigitalOceanVolumeService(BaseVolumeService):
    """Client for the DigitalOcean volumes API"""

    def __init__(self, token: str, base_url: str = "https://api.digitalocean.com/v2",
                 timeout: float = 30.0, session: Optional[requests.Session] = None,
                 logger: Optional[logging.Logger] = None):
        """Initialize the client

        Args:
            token: API token with read and write scope
            base_url: API root
            timeout: Per-request timeout in seconds
            session: HTTP session, created when not supplied
            logger: Logger instance

        Raises:
            InputError: If no token is given
        """
        if not token:
            raise InputError("DigitalOcean API token not set (export DO_API_TOKEN=...)")

        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        })

    def find_volumes(self, name: str, region_id: str) -> List[RemoteVolume]:
        self.logger.debug(f"Checking if volume '{name}' exists in region '{region_id}'")
        data = self._request("GET", "/volumes", params={"name": name, "region": region_id})
        return [self._to_volume(v) for v in data.get("volumes", [])]

    def list_volumes(self, region_id: str) -> List[RemoteVolume]:
        volumes = []
        params: Optional[Dict[str, Any]] = {"region": region_id, "per_page": 200}
        url = "/volumes"

        while url:
            data = self._request("GET", url, params=params)
            volumes.extend(self._to_volume(v) for v in data.get("volumes", []))
            url = data.get("links", {}).get("pages", {}).get("next")
            # The next link already carries the query string
            params = None

        return volumes

    def create_volume(self, name: str, region_id: str, size_gb: int) -> RemoteVolume:
        self.logger.info(f"Creating volume '{name}' ({size_gb}GB) in region '{region_id}'")
        payload = {
            "name": name,
            "region": region_id,
            "size_gigabytes": size_gb,
            "description": "Block storage volume for additional storage",
        }
        data = self._request("POST", "/volumes", json=payload, creating=name)
        return self._to_volume(data.get("volume", {}))

    def attach_volume(self, volume: RemoteVolume, host_id: str) -> None:
        self.logger.info(f"Attaching volume '{volume.name}' to droplet {host_id}")
        payload = {
            "type": "attach",
            "droplet_id": int(host_id),
            "region": volume.region_id,
        }
        self._request("POST", f"/volumes/{volume.id}/actions", json=payload)

    def get_volume(self, volume_id: str) -> RemoteVolume:
        data = self._request("GET", f"/volumes/{volume_id}")
        return self._to_volume(data.get("volume", {}))

    def device_path(self, name: str) -> str:
        return f"{DEVICE_PREFIX}{name}"

    def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                 json: Optional[Dict[str, Any]] = None, creating: Optional[str] = None) -> Dict[str, Any]:
        """Send a request and decode its JSON body

        Args:
            creating: Volume name when this request creates a volume; name
                conflicts are then raised as VolumeNameConflict
        """
        url = path if path.startswith("http") else f"{self.base_url}{path}"
        self.logger.debug(f"{method} {url}")

        try:
            response = self.session.request(method, url, params=params, json=json, timeout=self.timeout)
        except requests.RequestException as e:
            raise RemoteServiceError(f"Request to {url} failed: {e}")

        if response.status_code in (401, 403):
            raise RemoteAuthenticationError(
                f"API Error: {self._error_message(response)}", response.status_code)

        if response.status_code >= 400:
            message = self._error_message(response)
            if creating and response.status_code in (409, 422) and "already" in message.lower():
                raise VolumeNameConflict(
                    f"Volume name '{creating}' was taken during creation: {message}", response.status_code)
            raise RemoteServiceError(f"API Error: {message}", response.status_code)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise RemoteServiceError(f"Invalid JSON from {url}: {e}", response.status_code)

    def _error_message(self, response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text.strip() or f"HTTP {response.status_code}"
        return body.get("message") or f"HTTP {response.status_code}"

    def _to_volume(self, data: Dict[str, Any]) -> RemoteVolume:
        region = data.get("region") or {}
        region_id = region.get("slug", "") if isinstance(region, dict) else str(region)
        return RemoteVolume(
            id=str(data.get("id", "")),
            name=data.get("name", ""),
            region_id=region_id,
            size_gb=int(data.get("size_gigabytes") or 0),
            attached_host_ids=[str(d) for d in data.get("droplet_ids") or []],
        )


class DropletMetadata(BaseMetadataSource):
    """Reads the current droplet's identity from the metadata service"""

    def __init__(self, base_url: str = "http://169.254.169.254/metadata/v1", timeout: float = 5.0,
                 session: Optional[requests.Session] = None, logger: Optional[logging.Logger] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.logger = logger or logging.getLogger(__name__)

    def is_available(self) -> bool:
        """Check for the droplet agent installed on every droplet"""
        return os.path.exists("/etc/droplet-agent") or os.path.isdir("/opt/digitalocean")

    def get_host_metadata(self) -> HostMetadata:
        self.logger.info("Getting current droplet information...")

        droplet_id = self._get("id")
        if not droplet_id:
            raise RemoteServiceError("Failed to get droplet ID from metadata service")

        region = self._get("region")
        if not region:
            raise RemoteServiceError("Failed to get region from metadata service")

        try:
            hostname = self._get("hostname")
        except RemoteServiceError as e:
            self.logger.debug(f"Hostname not available from metadata service: {e}")
            hostname = ""
        if not hostname:
            hostname = socket.gethostname().split(".")[0]

        return HostMetadata(host_id=droplet_id, region_id=region, hostname=hostname)

    def _get(self, key: str) -> str:
        url = f"{self.base_url}/{key}"
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise RemoteServiceError(f"Metadata service unreachable ({url}): {e}")
        if response.status_code != 200:
            raise RemoteServiceError(f"Metadata service returned {response.status_code} for {key}",
                                     response.status_code)
        return response.text.strip()
