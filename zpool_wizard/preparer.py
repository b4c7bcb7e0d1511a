"""Destructive device preparation before a pool operation"""

import logging
from typing import Optional

from .errors import EngineFailure
from .supervisor import CommandSupervisor


class DevicePreparer:
    """Wipes existing signatures and writes a fresh GPT label"""

    def __init__(self, supervisor: Optional[CommandSupervisor] = None,
                 logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self.supervisor = supervisor or CommandSupervisor(logger=self.logger)

    def prepare(self, device: str) -> None:
        """Erase a device and label it as GPT

        Raises:
            EngineFailure: If either step fails
        """
        self.logger.info(f"Formatting drive {device} as GPT")

        result = self.supervisor.run(["wipefs", "-a", device],
                                     f"Wiping existing signatures on {device}", interruptible=False)
        if not result.ok:
            raise EngineFailure("wipefs -a", device, result.returncode, result.output)

        result = self.supervisor.run(["parted", device, "-s", "mklabel", "gpt"],
                                     f"Creating GPT label on {device}", interruptible=False)
        if not result.ok:
            raise EngineFailure("parted mklabel gpt", device, result.returncode, result.output)
