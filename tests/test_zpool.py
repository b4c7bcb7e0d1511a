"""Unit tests for ZpoolEngine and zpool status parsing."""

import json
import subprocess
import unittest
from unittest.mock import Mock, patch

from zpool_wizard.errors import EngineFailure, InspectionError
from zpool_wizard.models import AuxiliaryVdev, Mirror, Pool, PoolUsage, Stripe
from zpool_wizard.supervisor import CommandResult
from zpool_wizard.zpool import ZpoolEngine, parse_zpool_status, parse_zpool_status_json

STATUS_OUTPUT = """  pool: tank
 state: ONLINE
config:

\tNAME                         STATE     READ WRITE CKSUM
\ttank                         ONLINE       0     0     0
\t  mirror-0                   ONLINE       0     0     0
\t    scsi-0DO_Volume_a        ONLINE       0     0     0
\t    scsi-0DO_Volume_b        ONLINE       0     0     0
\t  scsi-0DO_Volume_c          ONLINE       0     0     0
\tlogs
\t  sdd                        ONLINE       0     0     0
\tcache
\t  sde                        ONLINE       0     0     0
\tspares
\t  sdf                        AVAIL

errors: No known data errors

  pool: backup
 state: ONLINE
config:

\tNAME        STATE     READ WRITE CKSUM
\tbackup      ONLINE       0     0     0
\t  raidz1-0  ONLINE       0     0     0
\t    sdg     ONLINE       0     0     0
\t    sdh     ONLINE       0     0     0
\t    sdi     ONLINE       0     0     0

errors: No known data errors
"""

STATUS_JSON = {
    "pools": {
        "tank": {
            "name": "tank",
            "vdevs": {
                "tank": {
                    "name": "tank",
                    "vdev_type": "root",
                    "vdevs": {
                        "mirror-0": {
                            "name": "mirror-0",
                            "vdev_type": "mirror",
                            "vdevs": {
                                "scsi-0DO_Volume_a": {"name": "scsi-0DO_Volume_a", "vdev_type": "disk",
                                                      "path": "/dev/disk/by-id/scsi-0DO_Volume_a-part1"},
                                "scsi-0DO_Volume_b": {"name": "scsi-0DO_Volume_b", "vdev_type": "disk",
                                                      "path": "/dev/disk/by-id/scsi-0DO_Volume_b-part1"},
                            },
                        },
                        "scsi-0DO_Volume_c": {"name": "scsi-0DO_Volume_c", "vdev_type": "disk",
                                              "path": "/dev/disk/by-id/scsi-0DO_Volume_c-part1"},
                    },
                },
            },
            "logs": {
                "sdd": {"name": "sdd", "vdev_type": "disk", "path": "/dev/sdd1"},
            },
        },
    },
}


def completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess([], returncode, stdout, stderr)


class TestParseZpoolStatus(unittest.TestCase):
    """Test cases for zpool status text parsing."""

    def setUp(self):
        self.pools = parse_zpool_status(STATUS_OUTPUT)

    def test_pools_found(self):
        self.assertEqual(set(self.pools), {"tank", "backup"})

    def test_mirror_and_stripe(self):
        members = self.pools["tank"]
        self.assertEqual(members[0], Mirror(devices=["scsi-0DO_Volume_a", "scsi-0DO_Volume_b"], name="mirror-0"))
        self.assertEqual(members[1], Stripe(device="scsi-0DO_Volume_c"))

    def test_auxiliary_sections(self):
        aux = [m for m in self.pools["tank"] if isinstance(m, AuxiliaryVdev)]
        self.assertEqual([(a.kind, a.devices) for a in aux],
                         [("logs", ["sdd"]), ("cache", ["sde"]), ("spares", ["sdf"])])

    def test_raidz_group(self):
        members = self.pools["backup"]
        self.assertEqual(len(members), 1)
        self.assertEqual(members[0].kind, "raidz1")
        self.assertEqual(members[0].devices, ["sdg", "sdh", "sdi"])

    def test_pool_devices_cover_every_group(self):
        pool = Pool(name="tank", members=self.pools["tank"])
        self.assertEqual(pool.devices, ["scsi-0DO_Volume_a", "scsi-0DO_Volume_b", "scsi-0DO_Volume_c",
                                        "sdd", "sde", "sdf"])
        self.assertEqual(len(pool.data_vdevs), 2)

    def test_empty_output(self):
        self.assertEqual(parse_zpool_status(""), {})


class TestParseZpoolStatusJson(unittest.TestCase):
    """Test cases for zpool status -j parsing."""

    def test_names(self):
        members = parse_zpool_status_json("tank", STATUS_JSON["pools"]["tank"])
        self.assertEqual(members[0], Mirror(devices=["scsi-0DO_Volume_a", "scsi-0DO_Volume_b"], name="mirror-0"))
        self.assertEqual(members[1], Stripe(device="scsi-0DO_Volume_c"))
        self.assertEqual(members[2], AuxiliaryVdev(kind="logs", devices=["sdd"]))

    def test_full_paths(self):
        members = parse_zpool_status_json("tank", STATUS_JSON["pools"]["tank"], full_paths=True)
        self.assertEqual(members[1], Stripe(device="/dev/disk/by-id/scsi-0DO_Volume_c-part1"))


class TestZpoolEngine(unittest.TestCase):
    """Test cases for ZpoolEngine class."""

    def setUp(self):
        self.supervisor = Mock()
        self.supervisor.run.return_value = CommandResult([], 0)
        self.engine = ZpoolEngine(self.supervisor)

    @patch.object(ZpoolEngine, '_execute_command')
    def test_list_pools(self, mock_execute):
        mock_execute.return_value = completed(stdout="tank\nbackup\n")
        self.assertEqual(self.engine.list_pools(), ["tank", "backup"])

    @patch.object(ZpoolEngine, '_execute_command')
    def test_list_pools_failure(self, mock_execute):
        mock_execute.return_value = completed(1, stderr="The ZFS modules are not loaded.")
        with self.assertRaises(InspectionError):
            self.engine.list_pools()

    @patch('zpool_wizard.zpool.subprocess.run', side_effect=FileNotFoundError("zpool"))
    def test_missing_zpool_binary(self, mock_run):
        with self.assertRaises(InspectionError):
            self.engine.list_pools()

    @patch.object(ZpoolEngine, '_execute_command')
    def test_pool_exists(self, mock_execute):
        mock_execute.return_value = completed(1, stderr="cannot open 'tank': no such pool")
        self.assertFalse(self.engine.pool_exists("tank"))
        mock_execute.return_value = completed(stdout="tank\n")
        self.assertTrue(self.engine.pool_exists("tank"))

    @patch.object(ZpoolEngine, '_execute_command')
    def test_get_pool_falls_back_to_text(self, mock_execute):
        def execute(cmd):
            if "-j" in cmd:
                return completed(2, stderr="invalid option 'j'")
            if cmd[:2] == ["zfs", "get"]:
                return completed(stdout="/zfs/tank\n")
            if cmd[1] == "get":
                return completed(stdout="on\n")
            return completed(stdout=STATUS_OUTPUT)
        mock_execute.side_effect = execute

        pool = self.engine.get_pool("tank")

        self.assertTrue(pool.exists)
        self.assertTrue(pool.auto_expand)
        self.assertEqual(pool.mount_path, "/zfs/tank")
        self.assertEqual(pool.devices[:3], ["scsi-0DO_Volume_a", "scsi-0DO_Volume_b", "scsi-0DO_Volume_c"])

    @patch.object(ZpoolEngine, '_execute_command')
    def test_get_pool_prefers_json(self, mock_execute):
        def execute(cmd):
            if "-j" in cmd:
                return completed(stdout=json.dumps(STATUS_JSON))
            if cmd[:2] == ["zfs", "get"]:
                return completed(1, stderr="cannot open 'tank': dataset does not exist")
            if cmd[1] == "get":
                return completed(stdout="off\n")
            raise AssertionError("text status should not be read")
        mock_execute.side_effect = execute

        pool = self.engine.get_pool("tank")

        self.assertFalse(pool.auto_expand)
        self.assertEqual(pool.mount_path, "")
        self.assertEqual(pool.members[1], Stripe(device="scsi-0DO_Volume_c"))

    @patch.object(ZpoolEngine, '_execute_command')
    def test_legacy_mountpoint_is_not_a_mount_path(self, mock_execute):
        mock_execute.return_value = completed(stdout="legacy\n")
        self.assertEqual(self.engine._get_mountpoint("tank"), "")
        mock_execute.assert_called_once_with(["zfs", "get", "-H", "-o", "value", "mountpoint", "tank"])

    @patch.object(ZpoolEngine, '_execute_command')
    def test_list_pool_usage(self, mock_execute):
        mock_execute.return_value = completed(stdout="tank\t99.5G\t1.20G\t98.3G\tONLINE\n"
                                                     "backup\t9.50G\t120K\t9.50G\tDEGRADED\n")

        usage = self.engine.list_pool_usage()

        mock_execute.assert_called_once_with(["zpool", "list", "-H", "-o", "name,size,alloc,free,health"])
        self.assertEqual(usage[0], PoolUsage("tank", "99.5G", "1.20G", "98.3G", "ONLINE"))
        self.assertEqual(usage[1].to_dict(), {
            "name": "backup", "size": "9.50G", "alloc": "120K", "free": "9.50G", "health": "DEGRADED"})

    @patch.object(ZpoolEngine, '_execute_command')
    def test_list_pool_usage_failure(self, mock_execute):
        mock_execute.return_value = completed(1, stderr="The ZFS modules are not loaded.")
        with self.assertRaises(InspectionError):
            self.engine.list_pool_usage()

    @patch.object(ZpoolEngine, 'get_pool')
    @patch.object(ZpoolEngine, 'list_pools', return_value=["tank"])
    def test_member_tokens(self, mock_list, mock_get):
        def get_pool(name, full_paths=False, resolve_links=False):
            device = "/dev/sdb1" if resolve_links else "/dev/disk/by-id/scsi-0DO_Volume_a-part1"
            return Pool(name=name, members=[Stripe(device=device)])
        mock_get.side_effect = get_pool

        tokens = self.engine.member_tokens()

        self.assertEqual(tokens, {"scsi-0DO_Volume_a-part1", "scsi-0DO_Volume_a", "sdb1", "sdb"})

    @patch('zpool_wizard.zpool.os.makedirs')
    def test_create_pool_command(self, mock_makedirs):
        self.engine.create_pool("tank", "/dev/sdc", "/zfs/tank")

        mock_makedirs.assert_called_once_with("/zfs/tank", exist_ok=True)
        cmd = self.supervisor.run.call_args[0][0]
        self.assertEqual(cmd[:5], ["zpool", "create", "-f", "-O", "mountpoint=/zfs/tank"])
        self.assertEqual(cmd[-2:], ["tank", "/dev/sdc"])
        for option in ("compression=lz4", "atime=off", "sync=standard", "aclinherit=passthrough",
                       "utf8only=on", "normalization=formD", "casesensitivity=sensitive"):
            self.assertIn(option, cmd)
            self.assertEqual(cmd[cmd.index(option) - 1], "-O")
        self.assertEqual(cmd[cmd.index("autoexpand=on") - 1], "-o")
        self.assertFalse(self.supervisor.run.call_args[1]["interruptible"])

    def test_mutation_commands(self):
        self.engine.add_stripe("tank", "/dev/sdc")
        self.engine.attach_mirror("tank", "sdb", "/dev/sdc")
        self.engine.expand_device("tank", "/dev/sdc")
        self.engine.set_autoexpand("tank")

        commands = [c[0][0] for c in self.supervisor.run.call_args_list]
        self.assertEqual(commands, [
            ["zpool", "add", "tank", "/dev/sdc"],
            ["zpool", "attach", "tank", "sdb", "/dev/sdc"],
            ["zpool", "online", "-e", "tank", "/dev/sdc"],
            ["zpool", "set", "autoexpand=on", "tank"],
        ])

    def test_failed_mutation_raises(self):
        self.supervisor.run.return_value = CommandResult(
            ["zpool", "add"], 1, "", "one or more devices is currently unavailable\nuse '-f' to override")

        with self.assertRaises(EngineFailure) as ctx:
            self.engine.add_stripe("tank", "/dev/sdc")

        self.assertEqual(ctx.exception.operation, "zpool add")
        self.assertEqual(ctx.exception.device, "/dev/sdc")
        self.assertEqual(ctx.exception.returncode, 1)
        self.assertIn("one or more devices is currently unavailable", str(ctx.exception))
        self.supervisor.run.assert_called_once()


if __name__ == '__main__':
    unittest.main()
