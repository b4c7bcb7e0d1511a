"""Device inspection: facts needed to classify a block device"""

import logging
import os
import subprocess
from typing import List, Optional, Set

from .devnames import base_device_name, is_partition_alias, is_partition_node
from .models import DeviceFacts
from .zpool import ZpoolEngine


class DeviceInspector:
    """Answers classification facts about a device path

    Every check that fails to execute leaves its fact unknown and sets it to
    the value that excludes the device, so an unreadable disk is never
    treated as free.
    """

    def __init__(self, engine: Optional[ZpoolEngine] = None, logger: Optional[logging.Logger] = None):
        """Initialize the inspector

        Args:
            engine: Pool engine used to gather pool membership
            logger: Logger instance
        """
        self.logger = logger or logging.getLogger(__name__)
        self.engine = engine or ZpoolEngine(logger=self.logger)

    def pool_member_tokens(self) -> Set[str]:
        """Device names claimed by any pool

        Raises:
            InspectionError: If pool membership cannot be determined at all
        """
        return self.engine.member_tokens()

    def canonical_path(self, path: str) -> str:
        return os.path.realpath(path)

    def exists(self, path: str) -> bool:
        return os.path.exists(path)

    def inspect(self, path: str, pool_tokens: Optional[Set[str]] = None) -> DeviceFacts:
        """Gather facts for one device

        Args:
            path: Device path, either a link or a device node
            pool_tokens: Names claimed by pools, from pool_member_tokens();
                queried when not supplied

        Returns:
            DeviceFacts for this scan pass
        """
        canonical = self.canonical_path(path)
        facts = DeviceFacts(path=path, canonical_path=canonical)

        if pool_tokens is None:
            pool_tokens = self.pool_member_tokens()

        facts.is_partition = self._check_partition(path, canonical, facts)
        facts.is_pool_member = self.is_pool_member(path, canonical, pool_tokens)
        facts.child_count = self._count_children(canonical, facts)
        facts.has_partition_table = self._has_partition_table(canonical, facts)
        facts.has_filesystem_signature = self._has_signature(canonical, facts)
        facts.size_bytes = self.get_size(canonical)

        if facts.unknown:
            self.logger.debug(f"Unknown facts for {path}: {sorted(facts.unknown)}")
        return facts

    def is_pool_member(self, path: str, canonical: str, pool_tokens: Set[str]) -> bool:
        """Whether the alias or the real device name is claimed by any pool"""
        names = {
            os.path.basename(path),
            os.path.basename(canonical),
            base_device_name(path),
            base_device_name(canonical),
        }
        return bool(names & pool_tokens)

    def get_size(self, canonical: str) -> int:
        """Size in bytes, 0 when it cannot be determined"""
        try:
            output = self._execute_command(["lsblk", "-bdno", "SIZE", canonical])
        except (OSError, subprocess.CalledProcessError) as e:
            self.logger.debug(f"Could not read size of {canonical}: {e}")
            return 0

        lines = output.split()
        try:
            return int(lines[0]) if lines else 0
        except ValueError:
            return 0

    # Checks

    def _check_partition(self, path: str, canonical: str, facts: DeviceFacts) -> bool:
        if is_partition_alias(path) or is_partition_node(path) or is_partition_node(canonical):
            return True

        try:
            output = self._execute_command(["lsblk", "-dno", "TYPE", canonical])
        except (OSError, subprocess.CalledProcessError) as e:
            self.logger.debug(f"Could not read device type of {canonical}: {e}")
            facts.unknown.add("device_type")
            return True
        return "part" in output.split()

    def _count_children(self, canonical: str, facts: DeviceFacts) -> int:
        try:
            output = self._execute_command(["lsblk", "-no", "NAME", canonical])
        except (OSError, subprocess.CalledProcessError) as e:
            self.logger.debug(f"Could not list children of {canonical}: {e}")
            facts.unknown.add("children")
            return 2
        return len([line for line in output.splitlines() if line.strip()])

    def _has_partition_table(self, canonical: str, facts: DeviceFacts) -> bool:
        # sfdisk exits non-zero when there is no partition table; only a missing binary is a failure
        try:
            result = self._run_check(["sfdisk", "-d", canonical])
        except OSError as e:
            self.logger.debug(f"Could not dump partition table of {canonical}: {e}")
            facts.unknown.add("partition_table")
            return True
        return any(line.startswith("/") for line in result.stdout.splitlines())

    def _has_signature(self, canonical: str, facts: DeviceFacts) -> bool:
        try:
            result = self._run_check(["wipefs", "-n", "--noheadings", canonical])
        except OSError as e:
            self.logger.debug(f"Could not read signatures of {canonical}: {e}")
            facts.unknown.add("signature")
            return True
        if result.returncode != 0:
            self.logger.debug(f"wipefs failed on {canonical}: {result.stderr.strip()}")
            facts.unknown.add("signature")
            return True
        return bool(result.stdout.strip())

    def _execute_command(self, cmd: List[str]) -> str:
        """Execute a command and return its output

        Raises:
            OSError: If the command cannot be started
            subprocess.CalledProcessError: If the command fails
        """
        self.logger.debug(f"Executing command: {' '.join(cmd)}")
        return subprocess.check_output(cmd, stderr=subprocess.PIPE, universal_newlines=True)

    def _run_check(self, cmd: List[str]) -> subprocess.CompletedProcess:
        """Execute a check whose exit status carries meaning"""
        self.logger.debug(f"Executing command: {' '.join(cmd)}")
        return subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                              universal_newlines=True)

