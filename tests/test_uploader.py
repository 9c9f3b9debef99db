"""Tests for camera roll scanning and upload"""

import pytest

from mediasync.api.models import LocalFileInfo
from mediasync.core.config import DeviceConfig
from mediasync.device import Device
from mediasync.sync.uploader import ContentUploader


@pytest.fixture
def camera_roll(temp_dir):
    root = temp_dir / "camera"
    (root / "Holiday").mkdir(parents=True)
    (root / "Holiday" / "beach.jpg").write_bytes(b"jpeg")
    (root / "clip.mp4").write_bytes(b"mp4")
    (root / "notes.txt").write_text("not media")
    return root


@pytest.fixture
def device(camera_roll):
    return Device(DeviceConfig(device_id="device-1", name="Test", camera_roll_directories=(camera_roll,)))


class TestDevice:
    """Camera roll scanning"""

    def test_photos_and_videos_split_by_extension(self, device):
        """Only media extensions are picked up"""
        photos = device.get_local_photos()
        videos = device.get_local_videos()

        assert [p.name for p in photos] == ["beach.jpg"]
        assert [v.name for v in videos] == ["clip.mp4"]

    def test_file_info_fields(self, device):
        """Album is the parent folder, mime type guessed from the name"""
        photo = device.get_local_photos()[0]

        assert photo.album == "Holiday"
        assert photo.mime_type == "image/jpeg"
        assert photo.full_path.endswith("beach.jpg")
        assert len(photo.id) == 32

    def test_missing_directory_ignored(self, temp_dir):
        """A configured folder that does not exist yields nothing"""
        device = Device(DeviceConfig(device_id="d", name="n", camera_roll_directories=(temp_dir / "nope",)))

        assert device.get_local_photos() == []


class TestContentUploader:
    """Upload of files missing from the server history"""

    def test_noop_when_device_not_enabled(self, device, fake_server):
        """Nothing is uploaded unless the server enabled this device"""
        reported = []

        uploaded = ContentUploader(fake_server, device).upload_images(reported.append)

        assert uploaded == 0
        assert fake_server.uploaded == []
        assert reported == [100.0]

    def test_uploads_files_not_in_history(self, device, fake_server):
        """Files already uploaded (case-insensitive path) are skipped"""
        fake_server.enabled_upload_devices = ["device-1"]
        photo = device.get_local_photos()[0]
        fake_server.upload_history = [
            LocalFileInfo(id="x", name="beach.jpg", full_path=photo.full_path.upper())
        ]

        uploaded = ContentUploader(fake_server, device).upload_images()

        assert uploaded == 1
        assert [f.name for f in fake_server.uploaded] == ["clip.mp4"]

    def test_failed_upload_skipped(self, device, fake_server):
        """One failing file does not stop the others, progress still completes"""
        fake_server.enabled_upload_devices = ["device-1"]
        fake_server.failing_uploads.add("beach.jpg")
        reported = []

        uploaded = ContentUploader(fake_server, device).upload_images(reported.append)

        assert uploaded == 1
        assert [f.name for f in fake_server.uploaded] == ["clip.mp4"]
        assert reported == [50.0, 100.0, 100.0]
