"""Unit tests for the DigitalOcean volume service and droplet metadata."""

import json
import unittest
from unittest.mock import MagicMock, Mock, patch

import requests

from zpool_wizard.errors import (InputError, RemoteAuthenticationError, RemoteServiceError,
                                 VolumeNameConflict)
from zpool_wizard.models import RemoteVolume
from zpool_wizard.services.digitalocean import DigitalOceanVolumeService, DropletMetadata, volume_name_for_device

VOLUME = {
    "id": "506f78a4-e098-11e5-ad9f-000f53306ae1",
    "name": "zfs-web-01",
    "region": {"slug": "nyc1", "name": "New York 1"},
    "size_gigabytes": 100,
    "droplet_ids": [3164494],
}


def make_response(status_code=200, body=None, text=""):
    """Build a mocked requests.Response"""
    response = Mock()
    response.status_code = status_code
    if body is None:
        response.content = text.encode()
        response.text = text
        response.json.side_effect = ValueError("No JSON object could be decoded")
    else:
        response.text = json.dumps(body)
        response.content = response.text.encode()
        response.json.return_value = body
    return response


class TestDigitalOceanVolumeService(unittest.TestCase):
    """Test cases for DigitalOceanVolumeService class."""

    def setUp(self):
        self.session = MagicMock()
        self.session.headers = {}
        self.service = DigitalOceanVolumeService("secret-token", session=self.session)

    def test_requires_token(self):
        with self.assertRaises(InputError):
            DigitalOceanVolumeService("", session=self.session)

    def test_auth_header(self):
        self.assertEqual(self.session.headers["Authorization"], "Bearer secret-token")

    def test_find_volumes(self):
        self.session.request.return_value = make_response(200, {"volumes": [VOLUME]})

        volumes = self.service.find_volumes("zfs-web-01", "nyc1")

        self.assertEqual(volumes, [RemoteVolume(
            "506f78a4-e098-11e5-ad9f-000f53306ae1", "zfs-web-01", "nyc1", 100, ["3164494"])])
        args, kwargs = self.session.request.call_args
        self.assertEqual(args, ("GET", "https://api.digitalocean.com/v2/volumes"))
        self.assertEqual(kwargs["params"], {"name": "zfs-web-01", "region": "nyc1"})
        self.assertEqual(kwargs["timeout"], 30.0)

    def test_find_volumes_no_match(self):
        self.session.request.return_value = make_response(200, {"volumes": []})
        self.assertEqual(self.service.find_volumes("zfs-web-01", "nyc1"), [])

    def test_list_volumes_follows_pages(self):
        next_url = "https://api.digitalocean.com/v2/volumes?page=2&per_page=200&region=nyc1"
        self.session.request.side_effect = [
            make_response(200, {"volumes": [VOLUME], "links": {"pages": {"next": next_url}}}),
            make_response(200, {"volumes": [dict(VOLUME, id="2", name="zfs-web-02")], "links": {}}),
        ]

        volumes = self.service.list_volumes("nyc1")

        self.assertEqual([v.name for v in volumes], ["zfs-web-01", "zfs-web-02"])
        second = self.session.request.call_args_list[1]
        self.assertEqual(second[0][1], next_url)
        self.assertIsNone(second[1]["params"])

    def test_create_volume_payload(self):
        self.session.request.return_value = make_response(201, {"volume": dict(VOLUME, droplet_ids=[])})

        volume = self.service.create_volume("zfs-web-01", "nyc1", 100)

        self.assertEqual(volume.attached_host_ids, [])
        payload = self.session.request.call_args[1]["json"]
        self.assertEqual(payload["name"], "zfs-web-01")
        self.assertEqual(payload["region"], "nyc1")
        self.assertEqual(payload["size_gigabytes"], 100)

    def test_create_conflict(self):
        self.session.request.return_value = make_response(
            409, {"id": "conflict", "message": "a volume with that name already exists"})

        with self.assertRaises(VolumeNameConflict) as ctx:
            self.service.create_volume("zfs-web-01", "nyc1", 100)
        self.assertEqual(ctx.exception.status_code, 409)

    def test_attach_payload(self):
        self.session.request.return_value = make_response(202, {"action": {"status": "in-progress"}})
        volume = RemoteVolume("abc", "zfs-web-01", "nyc1", 100)

        self.service.attach_volume(volume, "3164494")

        args, kwargs = self.session.request.call_args
        self.assertEqual(args, ("POST", "https://api.digitalocean.com/v2/volumes/abc/actions"))
        self.assertEqual(kwargs["json"], {"type": "attach", "droplet_id": 3164494, "region": "nyc1"})

    def test_authentication_error(self):
        self.session.request.return_value = make_response(
            401, {"id": "unauthorized", "message": "Unable to authenticate you."})

        with self.assertRaises(RemoteAuthenticationError) as ctx:
            self.service.find_volumes("zfs-web-01", "nyc1")
        self.assertIn("Unable to authenticate you.", str(ctx.exception))

    def test_server_error(self):
        self.session.request.return_value = make_response(500, text="Internal Server Error")

        with self.assertRaises(RemoteServiceError) as ctx:
            self.service.get_volume("abc")
        self.assertEqual(ctx.exception.status_code, 500)
        self.assertNotIsInstance(ctx.exception, VolumeNameConflict)

    def test_conflict_outside_create_is_generic(self):
        self.session.request.return_value = make_response(409, {"message": "volume already attached"})

        with self.assertRaises(RemoteServiceError) as ctx:
            self.service.attach_volume(RemoteVolume("abc", "zfs-web-01", "nyc1", 100), "1")
        self.assertNotIsInstance(ctx.exception, VolumeNameConflict)

    def test_network_error(self):
        self.session.request.side_effect = requests.ConnectionError("Connection refused")

        with self.assertRaises(RemoteServiceError):
            self.service.find_volumes("zfs-web-01", "nyc1")

    def test_invalid_json(self):
        self.session.request.return_value = make_response(200, text="<html>")

        with self.assertRaises(RemoteServiceError):
            self.service.find_volumes("zfs-web-01", "nyc1")

    def test_device_path(self):
        self.assertEqual(self.service.device_path("zfs-web-01"), "/dev/disk/by-id/scsi-0DO_Volume_zfs-web-01")


class TestVolumeNameForDevice(unittest.TestCase):

    def test_volume_devices(self):
        self.assertEqual(volume_name_for_device("/dev/disk/by-id/scsi-0DO_Volume_zfs-web-01"), "zfs-web-01")
        self.assertEqual(volume_name_for_device("scsi-0DO_Volume_data-part1"), "data")

    def test_other_devices(self):
        for device in ("/dev/sdb", "/dev/disk/by-id/ata-Samsung_SSD_860", "scsi-0DO_Volume_"):
            with self.subTest(device=device):
                self.assertIsNone(volume_name_for_device(device))


class TestDropletMetadata(unittest.TestCase):
    """Test cases for DropletMetadata class."""

    def setUp(self):
        self.session = Mock()
        self.metadata = DropletMetadata(session=self.session)

    def _serve(self, values):
        def get(url, timeout=None):
            key = url.rsplit("/", 1)[1]
            if key in values:
                return make_response(200, text=values[key] + "\n")
            return make_response(404, text="not found")
        self.session.get.side_effect = get

    def test_host_metadata(self):
        self._serve({"id": "3164494", "region": "nyc1", "hostname": "web-01"})

        host = self.metadata.get_host_metadata()

        self.assertEqual((host.host_id, host.region_id, host.hostname), ("3164494", "nyc1", "web-01"))
        self.assertEqual(host.to_dict(), {"droplet_id": "3164494", "region": "nyc1", "hostname": "web-01"})

    @patch('zpool_wizard.services.digitalocean.socket.gethostname', return_value="web-01.example.com")
    def test_hostname_falls_back_to_local(self, mock_hostname):
        self._serve({"id": "3164494", "region": "nyc1"})
        self.assertEqual(self.metadata.get_host_metadata().hostname, "web-01")

    def test_missing_id(self):
        self._serve({"region": "nyc1"})
        with self.assertRaises(RemoteServiceError):
            self.metadata.get_host_metadata()

    def test_unreachable(self):
        self.session.get.side_effect = requests.Timeout("timed out")
        with self.assertRaises(RemoteServiceError):
            self.metadata.get_host_metadata()


if __name__ == '__main__':
    unittest.main()
