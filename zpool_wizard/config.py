"""Configuration management for the pool wizard"""

import os
import socket
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional
import yaml

DEFAULT_CONFIG_FILE = "./zpool_wizard.conf"


def default_volume_name() -> str:
    """Default volume name: zfs-<short hostname>"""
    return f"zfs-{socket.gethostname().split('.')[0].lower()}"


@dataclass
class PoolSettings:
    """Target pool defaults"""

    name: str = "tank"
    mount_root: str = "/zfs"

    @classmethod
    def from_dict(cls, data: dict) -> "PoolSettings":
        return cls(
            name=str(data.get("name", "tank")),
            mount_root=str(data.get("mount_root", "/zfs")),
        )


@dataclass
class VolumeSettings:
    """Remote volume provisioning defaults"""

    name: str = field(default_factory=default_volume_name)
    size_gb: int = 100
    max_name_attempts: int = 5
    attach_timeout: float = 300.0
    poll_interval: float = 5.0

    @classmethod
    def from_dict(cls, data: dict) -> "VolumeSettings":
        return cls(
            name=str(data.get("name") or default_volume_name()),
            size_gb=int(data.get("size_gb", 100)),
            max_name_attempts=int(data.get("max_name_attempts", 5)),
            attach_timeout=float(data.get("attach_timeout", 300)),
            poll_interval=float(data.get("poll_interval", 5)),
        )


@dataclass
class ApiSettings:
    """Remote service endpoints and credentials"""

    token_env: str = "DO_API_TOKEN"
    token: str = ""
    base_url: str = "https://api.digitalocean.com/v2"
    metadata_url: str = "http://169.254.169.254/metadata/v1"
    timeout: float = 30.0

    @classmethod
    def from_dict(cls, data: dict) -> "ApiSettings":
        return cls(
            token_env=str(data.get("token_env", "DO_API_TOKEN")),
            token=str(data.get("token") or ""),
            base_url=str(data.get("base_url", "https://api.digitalocean.com/v2")).rstrip("/"),
            metadata_url=str(data.get("metadata_url", "http://169.254.169.254/metadata/v1")).rstrip("/"),
            timeout=float(data.get("timeout", 30)),
        )

    def resolve_token(self, environ: Optional[Dict[str, str]] = None) -> str:
        """Return the API token, preferring the environment over the file"""
        environ = os.environ if environ is None else environ
        return environ.get(self.token_env) or self.token


class ConfigManager:
    """Manages loading and accessing configuration from YAML file"""

    def __init__(self, config_file: str = DEFAULT_CONFIG_FILE, logger: Optional[logging.Logger] = None):
        """Initialize configuration manager

        Args:
            config_file: Path to configuration file
            logger: Logger instance
        """
        self.config_file = os.path.expanduser(config_file)
        self.logger = logger or logging.getLogger(__name__)

        self.pool = PoolSettings()
        self.volumes = VolumeSettings()
        self.api = ApiSettings()
        self.device_namespace = "/dev/disk/by-id/scsi-*"
        self.progress_interval = 0.1

        self.load()

    def load(self) -> None:
        """Load configuration from YAML file

        Configuration file structure:
        ```yaml
        pool:
          name: tank                          # Pool to create or grow
          mount_root: /zfs                    # Pool is mounted at <mount_root>/<name>

        devices:
          namespace: /dev/disk/by-id/scsi-*   # Provider-specific device links

        volumes:
          name: zfs-myhost                    # Desired remote volume name
          size_gb: 100
          max_name_attempts: 5
          attach_timeout: 300                 # Seconds
          poll_interval: 5                    # Seconds

        api:
          token_env: DO_API_TOKEN             # Environment variable holding the token
          base_url: https://api.digitalocean.com/v2

        progress_interval: 0.1
        ```
        """
        if not os.path.exists(self.config_file):
            self.logger.debug(f"Configuration file {self.config_file} not found. Using default settings.")
            return

        try:
            self.logger.info(f"Loading user configuration from {self.config_file}")

            with open(self.config_file, 'r') as f:
                config = yaml.safe_load(f)

            if not config or not isinstance(config, dict):
                self.logger.warning(f"Configuration file {self.config_file} is empty or invalid")
                return

            self._apply(config)

        except yaml.YAMLError as e:
            self.logger.error(f"Error parsing YAML in configuration file: {e}")
        except IOError as e:
            self.logger.error(f"Error reading configuration file: {e}")
        except (TypeError, ValueError) as e:
            self.logger.error(f"Invalid value in configuration file: {e}")

    def _apply(self, config: dict) -> None:
        """Apply the sections present in a parsed configuration"""
        if isinstance(config.get('pool'), dict):
            self.pool = PoolSettings.from_dict(config['pool'])
            self.logger.debug(f"Loaded pool settings: {self.pool}")

        if isinstance(config.get('volumes'), dict):
            self.volumes = VolumeSettings.from_dict(config['volumes'])
            self.logger.debug(f"Loaded volume settings: {self.volumes}")

        if isinstance(config.get('api'), dict):
            self.api = ApiSettings.from_dict(config['api'])

        devices = config.get('devices')
        if isinstance(devices, dict) and devices.get('namespace'):
            self.device_namespace = str(devices['namespace'])

        if 'progress_interval' in config:
            self.progress_interval = float(config['progress_interval'])
