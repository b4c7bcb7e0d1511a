"""Command line interface for the pool wizard"""

import argparse
import getpass
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from .classifier import DeviceClassifier, format_size
from .config import DEFAULT_CONFIG_FILE, ConfigManager
from .errors import InputError, RemoteServiceError, WizardError
from .inspector import DeviceInspector
from .models import Device, Proceed, SelectionMode, TopologyChoice
from .orchestrator import PoolOrchestrator
from .preparer import DevicePreparer
from .provisioner import VolumeProvisioner
from .services import DigitalOceanVolumeService, DropletMetadata, volume_name_for_device
from .supervisor import CommandSupervisor, LoggingReporter
from .zpool import ZpoolEngine

AUTO_TARGET = "auto"


class ZpoolWizard:
    """Main class for the pool wizard

    Wires the components together and exposes them as subcommands:
    - scan: classify local block devices
    - grow: create or extend a pool with the best device, provisioning one if needed
    - provision: create and attach a remote volume
    - pools, volumes, metadata: read-only listings
    """

    def __init__(self):
        """Initialize the ZpoolWizard instance"""
        self.args: Optional[argparse.Namespace] = None
        self.json_output = False
        self.logger = self._setup_logger()

        # Components (initialized later)
        self.config: Optional[ConfigManager] = None
        self.supervisor: Optional[CommandSupervisor] = None
        self.engine: Optional[ZpoolEngine] = None
        self.classifier: Optional[DeviceClassifier] = None
        self.orchestrator: Optional[PoolOrchestrator] = None
        self.metadata: Optional[DropletMetadata] = None

    def _setup_logger(self) -> logging.Logger:
        """Set up the logger for the application"""
        logger = logging.getLogger("zpool-wizard")
        logger.setLevel(logging.INFO)

        if not logger.handlers:
            ch = logging.StreamHandler()
            ch.setLevel(logging.INFO)

            formatter = logging.Formatter('[%(levelname)s] %(message)s')
            ch.setFormatter(formatter)

            logger.addHandler(ch)

        return logger

    def parse_arguments(self, argv: Optional[List[str]] = None) -> argparse.Namespace:
        """Parse command line arguments"""
        parser = argparse.ArgumentParser(
            prog="zpool-wizard",
            description="Creates and grows ZFS pools from unused disks and cloud block-storage volumes."
        )

        parser.add_argument("-c", "--config", default=DEFAULT_CONFIG_FILE, metavar="FILE",
                            help="YAML configuration file")
        parser.add_argument("-j", "--json", action="store_true", help="Output results in JSON format")
        parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output")
        parser.add_argument("-q", "--quiet", action="store_true", help="Suppress INFO messages")

        subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
        subparsers.required = True

        scan = subparsers.add_parser("scan", help="List unused whole-disk devices")
        scan.add_argument("--largest", action="store_true", help="Return only the largest device")
        scan.add_argument("-l", "--long", action="store_true",
                          help="Show every scanned device with its classification")

        grow = subparsers.add_parser("grow", help="Create a pool or add a device to it")
        grow.add_argument("--pool", metavar="POOL_NAME", help="Pool to create or grow")
        mode = grow.add_mutually_exclusive_group()
        mode.add_argument("--create", action="store_true", help="Create a new pool")
        mode.add_argument("--stripe", action="store_true", help="Add the device as a new stripe")
        mode.add_argument("--mirror", nargs='?', const=AUTO_TARGET, metavar="TARGET",
                          help="Attach the device as mirror of TARGET (first unmirrored device if omitted)")
        grow.add_argument("--device", metavar="PATH", help="Use this device instead of scanning")
        grow.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")
        grow.add_argument("--no-provision", action="store_true",
                          help="Fail instead of provisioning a volume when no device is free")
        self._add_volume_arguments(grow)

        provision = subparsers.add_parser("provision", help="Create and attach a block-storage volume")
        self._add_volume_arguments(provision)

        subparsers.add_parser("pools", help="List devices used by ZFS pools")

        volumes = subparsers.add_parser("volumes", help="List block-storage volumes in the region")
        volumes.add_argument("-r", "--region", help="Region (default: auto-detected from droplet)")

        subparsers.add_parser("metadata", help="Show the current droplet's metadata")

        summary = subparsers.add_parser("summary", help="Summarize pools, volumes and pool devices")
        summary.add_argument("-r", "--region", help="Region (default: auto-detected from droplet)")

        args = parser.parse_args(argv)

        self.args = args
        self.json_output = args.json

        # Configure logger
        if args.verbose:
            self._set_log_level(logging.DEBUG)
        elif args.quiet:
            self._set_log_level(logging.WARNING)

        return args

    def _add_volume_arguments(self, parser: argparse.ArgumentParser) -> None:
        parser.add_argument("-n", "--name", help="Volume name (default: zfs-<hostname>)")
        parser.add_argument("-s", "--size", type=int, metavar="GB", help="Volume size in GB")
        parser.add_argument("-r", "--region", help="Region (default: auto-detected from droplet)")

    def _set_log_level(self, level: int) -> None:
        self.logger.setLevel(level)
        for handler in self.logger.handlers:
            handler.setLevel(level)

    def run(self, argv: Optional[List[str]] = None) -> int:
        """Main entry point for the application

        Returns:
            Process exit status
        """
        args = self.parse_arguments(argv)
        handlers = {
            "scan": self._handle_scan,
            "grow": self._handle_grow,
            "provision": self._handle_provision,
            "pools": self._handle_pools,
            "volumes": self._handle_volumes,
            "metadata": self._handle_metadata,
            "summary": self._handle_summary,
        }

        try:
            self._build_components()
            return handlers[args.command]()
        except WizardError as e:
            self._report_error(e)
            return 1
        except KeyboardInterrupt:
            self.logger.error("Operation interrupted by user")
            return 130

    def _build_components(self) -> None:
        """Create the components from the configuration"""
        self.config = ConfigManager(self.args.config, logger=self.logger)

        reporter = LoggingReporter(self.logger)
        self.supervisor = CommandSupervisor(reporter, poll_interval=self.config.progress_interval,
                                            logger=self.logger)
        self.engine = ZpoolEngine(self.supervisor, logger=self.logger)
        inspector = DeviceInspector(self.engine, logger=self.logger)
        self.classifier = DeviceClassifier(inspector, namespace=self.config.device_namespace,
                                           logger=self.logger)
        self.orchestrator = PoolOrchestrator(
            self.engine,
            self.classifier,
            DevicePreparer(self.supervisor, logger=self.logger),
            mount_root=self.config.pool.mount_root,
            confirm=self._confirm_device,
            logger=self.logger,
        )
        self.metadata = DropletMetadata(self.config.api.metadata_url, logger=self.logger)

    # Commands

    def _handle_scan(self) -> int:
        """Print candidate devices"""
        mode = SelectionMode.LARGEST if self.args.largest else SelectionMode.ALL

        if self.args.long:
            devices = self.classifier.scan()
            if self.json_output:
                self._print_json([d.to_dict() for d in devices])
            else:
                rows = [[d.path, d.canonical_path, format_size(d.size_bytes), d.classification.value, d.reason]
                        for d in devices]
                self._print_table(["Device", "Node", "Size", "Class", "Reason"], rows)
            return 0

        candidates = self.classifier.classify(mode)
        if self.json_output:
            self._print_json([d.to_dict() for d in candidates])
        else:
            for device in candidates:
                print(device.path)
        return 0

    def _handle_grow(self) -> int:
        """Find or provision a device and add it to the pool"""
        pool_name = self.args.pool or self.config.pool.name
        choice, target = self._topology_choice()

        device_path = self.args.device
        if not device_path:
            search = self.orchestrator.find_device(SelectionMode.LARGEST)
            if isinstance(search, Proceed):
                device_path = search.device.path
            elif self.args.no_provision:
                self.logger.error(f"{search.reason}; attach a volume and run again")
                return 1
            else:
                self.logger.warning(f"{search.reason}, a new volume will be provisioned")
                if not self.args.yes and not self._ask(
                        f"Create a {self._volume_size()}GB volume and attach it to this host?", default=True):
                    self.logger.error("Operation cancelled by user")
                    return 1
                device_path = self._provision()

        self.logger.info(f"Using drive: {device_path}")
        result = self.orchestrator.resolve_topology_action(pool_name, device_path, choice, target)

        if self.json_output:
            self._print_json(result.to_dict())
        else:
            print(f"\nPool:        {result.pool}")
            print(f"Mountpoint:  {result.mount_path}")
            print(f"Action:      {result.action}")
            print(f"New Drive:   {result.device}")
            if result.mirror_target:
                print(f"Mirror of:   {result.mirror_target}")
                print(f"Resilver may be in progress. Check with 'zpool status {result.pool}'")
        return 0

    def _handle_provision(self) -> int:
        """Create and attach a volume"""
        device_path = self._provision()
        if self.json_output:
            self._print_json({"device": device_path})
        else:
            print(device_path)
        return 0

    def _handle_pools(self) -> int:
        """List devices used by pools"""
        records = self.engine.list_member_devices()
        if self.json_output:
            self._print_json(records)
        elif not records:
            print("No ZFS pools found")
        else:
            self._print_table(["Pool", "Device"], [[r["pool"], r["device"]] for r in records])
        return 0

    def _handle_volumes(self) -> int:
        """List remote volumes in the region"""
        region = self.args.region or self.metadata.get_host_metadata().region_id
        self.logger.info(f"Listing volumes in region: {region}")
        volumes = self._volume_service().list_volumes(region)

        if self.json_output:
            self._print_json([v.to_dict() for v in volumes])
        else:
            rows = [[v.id, v.name, v.region_id, f"{v.size_gb} GB", ",".join(v.attached_host_ids)]
                    for v in volumes]
            self._print_table(["ID", "Name", "Region", "Size", "Droplets"], rows)
        return 0

    def _handle_metadata(self) -> int:
        """Show droplet metadata"""
        if not self.metadata.is_available():
            raise InputError("This command must be run on a DigitalOcean droplet")
        self._print_json(self.metadata.get_host_metadata().to_dict())
        return 0

    def _handle_summary(self) -> int:
        """Pools, remote volumes and the volume behind each pool device"""
        usage = self.engine.list_pool_usage()
        mapping = [
            {"pool": r["pool"], "device": r["device"], "volume": volume_name_for_device(r["device"])}
            for r in self.engine.list_member_devices()
        ]
        volumes = self._summary_volumes()

        if self.json_output:
            self._print_json({
                "pools": [u.to_dict() for u in usage],
                "volumes": volumes,
                "mapping": mapping,
            })
            return 0

        print("=== ZFS Pools ===")
        if usage:
            self._print_table(["Name", "Size", "Alloc", "Free", "Health"],
                              [[u.name, u.size, u.allocated, u.free, u.health] for u in usage])
        else:
            print("No ZFS pools found")

        print("\n=== DigitalOcean Volumes ===")
        if volumes:
            self._print_table(["Name", "Size", "Attachment"],
                              [[v["name"], f"{v['size_gigabytes']} GB", v["attachment"]] for v in volumes])
        else:
            print("No volumes listed")

        print("\n=== Pool Devices ===")
        if mapping:
            self._print_table(["Pool", "Device", "Volume"],
                              [[m["pool"], m["device"], m["volume"] or "Unknown"] for m in mapping])
        else:
            print("No pool devices found")
        return 0

    # Helpers

    def _topology_choice(self):
        if self.args.create:
            return TopologyChoice.CREATE, None
        if self.args.stripe:
            return TopologyChoice.STRIPE, None
        if self.args.mirror:
            target = None if self.args.mirror == AUTO_TARGET else self.args.mirror
            return TopologyChoice.MIRROR, target
        return None, None

    def _volume_size(self) -> int:
        return self.args.size or self.config.volumes.size_gb

    def _provision(self) -> str:
        settings = self.config.volumes
        provisioner = VolumeProvisioner(
            self._volume_service(),
            self.metadata,
            max_name_attempts=settings.max_name_attempts,
            attach_timeout=settings.attach_timeout,
            poll_interval=settings.poll_interval,
            logger=self.logger,
        )
        prompt = None if getattr(self.args, "yes", False) else self._prompt_volume_name
        return provisioner.provision(
            self.args.name or settings.name,
            self.args.region,
            None,
            self._volume_size(),
            prompt=prompt,
        )

    def _summary_volumes(self) -> List[Dict[str, Any]]:
        """Volumes in the region with their attachment state; empty when the API cannot be used"""
        if not self.config.api.resolve_token():
            self.logger.warning("No DigitalOcean API token configured, skipping volume listing")
            return []

        service = self._volume_service()
        try:
            host = self.metadata.get_host_metadata() if self.metadata.is_available() else None
            region = self.args.region or (host.region_id if host else None)
            if not region:
                self.logger.warning("Region unknown outside a droplet, use --region to list volumes")
                return []
            volumes = service.list_volumes(region)
        except RemoteServiceError as e:
            self.logger.warning(f"Could not list volumes: {e}")
            return []

        records = []
        for volume in volumes:
            if host and host.host_id in volume.attached_host_ids:
                attachment = service.device_path(volume.name)
            elif volume.attached_host_ids:
                attachment = f"Attached to droplet {','.join(volume.attached_host_ids)}"
            else:
                attachment = "Not attached"
            record = volume.to_dict()
            record["attachment"] = attachment
            records.append(record)
        return records

    def _volume_service(self) -> DigitalOceanVolumeService:
        api = self.config.api
        token = api.resolve_token()
        if not token and sys.stdin.isatty():
            print("You can generate an API token at: https://cloud.digitalocean.com/account/api/tokens")
            token = getpass.getpass("Please enter your DigitalOcean API Token: ").strip()
        return DigitalOceanVolumeService(token, api.base_url, timeout=api.timeout, logger=self.logger)

    def _confirm_device(self, device: Device) -> bool:
        if getattr(self.args, "yes", False):
            return True
        print(f"\nFound drive: {device.path} ({format_size(device.size_bytes)})")
        print(f"Physical path: {device.canonical_path}")
        return self._ask(f"Are you sure you want to ERASE {device.path}?", default=False)

    def _prompt_volume_name(self, colliding: str) -> Optional[str]:
        print(f"A volume named '{colliding}' already exists.")
        return input("Please enter a different volume name (or press Enter for auto-generated name): ")

    def _ask(self, prompt: str, default: bool) -> bool:
        options = "[Y/n]" if default else "[y/N]"
        response = input(f"{prompt} {options} ").strip()
        if not response:
            return default
        return response.lower() in ("y", "yes")

    def _report_error(self, error: WizardError) -> None:
        if self.json_output:
            self._print_json({"error": error.to_dict()})
        self.logger.error(str(error))

    def _print_json(self, data: Any) -> None:
        print(json.dumps(data, indent=2))

    def _print_table(self, headers: List[str], data: List[List[str]]) -> None:
        """Print a formatted table"""
        widths = [len(h) for h in headers]
        for row in data:
            for i, val in enumerate(row):
                if i < len(widths):
                    widths[i] = max(widths[i], len(str(val)))

        header_line = "  ".join(h.ljust(widths[i]) for i, h in enumerate(headers))
        print("-" * len(header_line))
        print(header_line)
        print("-" * len(header_line))

        for row in data:
            print("  ".join(str(val).ljust(widths[i]) for i, val in enumerate(row)))

        print("-" * len(header_line))


def main() -> None:
    sys.exit(ZpoolWizard().run())
