"""Remote volume service abstraction"""

from abc import ABC, abstractmethod
from typing import List

from ..models import HostMetadata, RemoteVolume


class BaseVolumeService(ABC):
    """Abstract base class for cloud block-storage providers"""

    @abstractmethod
    def find_volumes(self, name: str, region_id: str) -> List[RemoteVolume]:
        """Volumes with exactly this name in the region

        Raises:
            RemoteServiceError: If the service cannot be queried
        """
        pass

    @abstractmethod
    def list_volumes(self, region_id: str) -> List[RemoteVolume]:
        """All volumes in the region"""
        pass

    @abstractmethod
    def create_volume(self, name: str, region_id: str, size_gb: int) -> RemoteVolume:
        """Create an unattached, unformatted volume

        Raises:
            VolumeNameConflict: If the service reports the name as taken
            RemoteServiceError: On any other failure
        """
        pass

    @abstractmethod
    def attach_volume(self, volume: RemoteVolume, host_id: str) -> None:
        """Request attachment of a volume to a host"""
        pass

    @abstractmethod
    def get_volume(self, volume_id: str) -> RemoteVolume:
        """Current state of a volume"""
        pass

    @abstractmethod
    def device_path(self, name: str) -> str:
        """Device path under which an attached volume appears on the host"""
        pass


class BaseMetadataSource(ABC):
    """Abstract source of the current host's identity"""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether this host runs on the provider"""
        pass

    @abstractmethod
    def get_host_metadata(self) -> HostMetadata:
        """Host id, region and hostname

        Raises:
            RemoteServiceError: If the metadata cannot be read
        """
        pass
