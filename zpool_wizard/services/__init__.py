"""Remote volume service implementations"""

from .base import BaseMetadataSource, BaseVolumeService
from .digitalocean import DigitalOceanVolumeService, DropletMetadata, volume_name_for_device

__all__ = ["BaseMetadataSource", "BaseVolumeService", "DigitalOceanVolumeService", "DropletMetadata",
           "volume_name_for_device"]
