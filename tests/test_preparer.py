"""Unit tests for DevicePreparer."""

import unittest
from unittest.mock import Mock

from zpool_wizard.errors import EngineFailure
from zpool_wizard.preparer import DevicePreparer
from zpool_wizard.supervisor import CommandResult


class TestDevicePreparer(unittest.TestCase):

    def setUp(self):
        self.supervisor = Mock()
        self.supervisor.run.return_value = CommandResult([], 0)
        self.preparer = DevicePreparer(self.supervisor)

    def test_wipe_then_label(self):
        self.preparer.prepare("/dev/sdc")

        commands = [c[0][0] for c in self.supervisor.run.call_args_list]
        self.assertEqual(commands, [
            ["wipefs", "-a", "/dev/sdc"],
            ["parted", "/dev/sdc", "-s", "mklabel", "gpt"],
        ])
        for call in self.supervisor.run.call_args_list:
            self.assertFalse(call[1]["interruptible"])

    def test_wipe_failure_stops_before_label(self):
        self.supervisor.run.return_value = CommandResult([], 1, "", "wipefs: error: /dev/sdc: probing initialization failed: Device or resource busy")

        with self.assertRaises(EngineFailure) as ctx:
            self.preparer.prepare("/dev/sdc")

        self.assertEqual(ctx.exception.operation, "wipefs -a")
        self.assertIn("Device or resource busy", str(ctx.exception))
        self.supervisor.run.assert_called_once()

    def test_label_failure(self):
        self.supervisor.run.side_effect = [CommandResult([], 0), CommandResult([], 1, "", "Error: Partition(s) on /dev/sdc are being used.")]

        with self.assertRaises(EngineFailure) as ctx:
            self.preparer.prepare("/dev/sdc")

        self.assertEqual(ctx.exception.operation, "parted mklabel gpt")


if __name__ == '__main__':
    unittest.main()
