"""Unit tests for config parsing, settings and platform detection."""

import pytest

from simdeploy.core.config_manager import ConfigManager
from simdeploy.core.platform_info import detect_platform
from simdeploy.core.settings import SimulatorSettings, load_settings, settings_from_config


class TestConfigManager:
    """Test ConfigManager parsing and typed getters."""

    def test_parse_lines(self):
        manager = ConfigManager()

        config = manager._parse_config_lines([
            "# comment",
            "",
            "log_level = debug",
            "work_root = '/tmp/x'  # trailing",
            'build_configuration = "Release"',
            "not a pair",
        ])

        assert config == {
            "log_level": "debug",
            "work_root": "/tmp/x",
            "build_configuration": "Release",
        }

    def test_typed_getters_fall_back(self):
        manager = ConfigManager()
        config = {"depth": "abc", "ttl": "1.5", "flag": "yes"}

        assert manager.get_int(config, "depth", 3) == 3
        assert manager.get_float(config, "ttl", 0.0) == 1.5
        assert manager.get_bool(config, "flag") is True
        assert manager.get_str(config, "missing", "x") == "x"

    def test_read_missing_file(self, tmp_path):
        assert ConfigManager().read_config(tmp_path / "nope.txt") == {}

    @pytest.mark.asyncio
    async def test_read_config_async(self, tmp_path):
        path = tmp_path / "config.txt"
        path.write_text("failure_retention = 5\n", encoding="utf-8")

        config = await ConfigManager().read_config_async(path)

        assert config == {"failure_retention": "5"}


class TestSettings:
    """Test SimulatorSettings loading."""

    def test_defaults(self):
        settings = SimulatorSettings()

        assert settings.device_cache_ttl == 0.8
        assert settings.container_cache_ttl == 600.0
        assert settings.container_max_depth == 3
        assert settings.failure_retention == 3
        assert settings.output_limit == 1024 * 1024

    def test_from_config(self, tmp_path):
        settings = settings_from_config({
            "container_max_depth": "5",
            "boot_wait_timeout": "20",
            "failure_retention": "-2",
            "work_root": str(tmp_path),
        })

        assert settings.container_max_depth == 5
        assert settings.boot_wait_timeout == 20.0
        assert settings.failure_retention == 0
        assert settings.work_root == tmp_path

    @pytest.mark.asyncio
    async def test_load_settings(self, tmp_path):
        path = tmp_path / "config.txt"
        path.write_text("scheme_list_timeout = 4\nbuild_configuration = Release\n", encoding="utf-8")

        settings = await load_settings(path)

        assert settings.scheme_list_timeout == 4.0
        assert settings.build_configuration == "Release"

    def test_with_overrides(self):
        settings = SimulatorSettings().with_overrides(poll_interval=1.0)

        assert settings.poll_interval == 1.0


class TestPlatformInfo:
    """Test platform gating."""

    def test_darwin_is_supported(self):
        assert detect_platform("darwin").is_supported

    @pytest.mark.parametrize("name", ["linux", "win32"])
    def test_other_platforms_are_not(self, name):
        assert not detect_platform(name).is_supported
