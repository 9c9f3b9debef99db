"""Tests for configuration loading"""

from pathlib import Path

import pytest

from mediasync.core.config import load_config
from mediasync.core.exceptions import ConfigError


@pytest.fixture(autouse=True)
def isolated_env(temp_dir, monkeypatch):
    """Run from an empty directory with no MEDIASYNC_* overrides"""
    monkeypatch.chdir(temp_dir)
    for name in ("MEDIASYNC_DATA_DIR", "MEDIASYNC_DEVICE_ID", "MEDIASYNC_DEVICE_NAME", "MEDIASYNC_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


def write_config(temp_dir: Path, content: str) -> Path:
    path = temp_dir / "config.yaml"
    path.write_text(content, encoding="utf-8")
    return path


class TestLoadConfig:
    """YAML loading, defaults and environment overrides"""

    def test_defaults_without_file(self):
        """A missing config.yaml in the working directory means defaults"""
        config = load_config()

        assert config.discovery.port == 7359
        assert config.discovery.timeout == 2.0
        assert config.network.probe_timeout == 2.0
        assert config.sync.camera_upload_weight == 0.25
        assert config.logging.level == "INFO"
        assert config.device.device_id

    def test_device_id_stable(self):
        """The derived device id does not change between loads"""
        assert load_config().device.device_id == load_config().device.device_id

    def test_values_from_file(self, temp_dir):
        """Sections in the file override defaults"""
        path = write_config(temp_dir, """
device:
  id: my-device
  name: Laptop
storage:
  data_directory: ./data
discovery:
  timeout: 5
sync:
  camera_upload: false
logging:
  level: debug
""")
        config = load_config(path)

        assert config.device.device_id == "my-device"
        assert config.device.name == "Laptop"
        assert config.storage.data_directory == (temp_dir / "data").resolve()
        assert config.storage.database_path.name == "mediasync.db"
        assert config.discovery.timeout == 5.0
        assert config.sync.camera_upload is False
        assert config.logging.level == "DEBUG"

    def test_environment_overrides_file(self, temp_dir, monkeypatch):
        """MEDIASYNC_* variables win over the file"""
        path = write_config(temp_dir, "device:\n  id: from-file\n")
        monkeypatch.setenv("MEDIASYNC_DEVICE_ID", "from-env")
        monkeypatch.setenv("MEDIASYNC_DATA_DIR", str(temp_dir / "env-data"))

        config = load_config(path)

        assert config.device.device_id == "from-env"
        assert config.storage.data_directory == (temp_dir / "env-data").resolve()

    def test_explicit_missing_file(self, temp_dir):
        """An explicit path that does not exist is an error"""
        with pytest.raises(ConfigError):
            load_config(temp_dir / "missing.yaml")

    def test_invalid_yaml(self, temp_dir):
        """Broken YAML raises ConfigError with the file path in details"""
        path = write_config(temp_dir, "device: [unclosed\n")

        with pytest.raises(ConfigError) as exc_info:
            load_config(path)

        assert exc_info.value.details["file_path"] == str(path)

    @pytest.mark.parametrize("content", [
        "discovery:\n  port: 70000\n",
        "network:\n  probe_timeout: 0\n",
        "sync:\n  camera_upload_weight: 1.5\n",
        "logging:\n  level: LOUD\n",
        "device: not-a-mapping\n",
    ])
    def test_invalid_values(self, temp_dir, content):
        """Out of range values are rejected"""
        path = write_config(temp_dir, content)

        with pytest.raises(ConfigError):
            load_config(path)
