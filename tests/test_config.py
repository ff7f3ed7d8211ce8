"""Tests for configuration module."""

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from heyos_builder.config import (
    DEFAULT_HOST_PACKAGES,
    BuildOptions,
    Settings,
    get_settings,
    print_settings_json,
)
from heyos_builder.types import BuildSelection, StalenessPolicy


class TestSettings:
    """Test Settings class."""

    def test_default_settings(self) -> None:
        """Settings should have sensible defaults."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

        assert settings.native_build_dir == Path("/var/lib/heyos-build")
        assert settings.build_cache_dir == Path("/var/lib/heyos-cargo-build")
        assert settings.origin_workspace is None
        assert settings.relocate is True
        assert settings.slow_mount_prefixes == ["/mnt/"]
        assert settings.staleness_policy is StalenessPolicy.CHECKSUM
        assert settings.offline_required_packages == ["btrfs-progs"]
        assert settings.require_root is True
        assert settings.log_level == "INFO"
        assert settings.jobs >= 1

    def test_host_packages_default_includes_tools(self) -> None:
        """The default host package list should cover archiso and rsync."""
        settings = Settings(_env_file=None)
        assert "archiso" in settings.host_packages
        assert "rsync" in settings.host_packages
        assert settings.host_packages == DEFAULT_HOST_PACKAGES
        assert settings.host_packages is not DEFAULT_HOST_PACKAGES

    def test_settings_from_env(self) -> None:
        """Settings should be loadable from environment variables."""
        with patch.dict(
            os.environ,
            {
                "HEYOS_BUILD_STALENESS_POLICY": "mtime",
                "HEYOS_BUILD_LOG_LEVEL": "DEBUG",
                "HEYOS_BUILD_JOBS": "3",
                "HEYOS_BUILD_REQUIRE_ROOT": "false",
            },
        ):
            settings = Settings(_env_file=None)
            assert settings.staleness_policy is StalenessPolicy.MTIME
            assert settings.log_level == "DEBUG"
            assert settings.jobs == 3
            assert settings.require_root is False

    def test_origin_workspace_from_env(self) -> None:
        """The relocation marker should be read from the environment."""
        with patch.dict(os.environ, {"HEYOS_BUILD_ORIGIN_WORKSPACE": "/mnt/c/heyos"}):
            settings = Settings(_env_file=None)
            assert settings.origin_workspace == Path("/mnt/c/heyos")

    def test_invalid_jobs_rejected(self) -> None:
        """jobs must be at least 1."""
        with pytest.raises(ValidationError):
            Settings(_env_file=None, jobs=0)


class TestBuildOptions:
    """Test BuildOptions model."""

    def test_defaults_select_all(self) -> None:
        """No flags should build every component."""
        options = BuildOptions()
        assert options.selection is BuildSelection.ALL
        assert options.to_args() == []

    def test_greeter_only(self) -> None:
        """--greeter-only should select the greeter."""
        options = BuildOptions(greeter_only=True)
        assert options.selection is BuildSelection.GREETER_ONLY
        assert options.to_args() == ["--greeter-only"]

    def test_heydm_only_with_clean(self) -> None:
        """Flags should round-trip into CLI arguments."""
        options = BuildOptions(force_clean=True, heydm_only=True)
        assert options.selection is BuildSelection.HEYDM_ONLY
        assert options.to_args() == ["--clean", "--heydm-only"]

    def test_exclusive_flags_rejected(self) -> None:
        """--greeter-only and --heydm-only cannot be combined."""
        with pytest.raises(ValidationError, match="mutually exclusive"):
            BuildOptions(greeter_only=True, heydm_only=True)

    def test_unknown_option_rejected(self) -> None:
        """Unknown options should be rejected."""
        with pytest.raises(ValidationError):
            BuildOptions(turbo=True)

    def test_frozen(self) -> None:
        """Options are immutable once validated."""
        options = BuildOptions()
        with pytest.raises(ValidationError):
            options.force_clean = True


class TestGetSettings:
    """Test get_settings function."""

    def test_get_settings_returns_settings(self) -> None:
        """get_settings should return a Settings instance."""
        settings = get_settings()
        assert isinstance(settings, Settings)


class TestPrintSettingsJson:
    """Test print_settings_json function."""

    def test_print_settings_json(self) -> None:
        """print_settings_json should return valid JSON."""
        settings = Settings(_env_file=None)
        json_str = print_settings_json(settings)

        parsed = json.loads(json_str)

        assert "native_build_dir" in parsed
        assert "build_cache_dir" in parsed
        assert parsed["staleness_policy"] == "checksum"
        assert "host_packages" in parsed

    def test_print_settings_json_default(self) -> None:
        """print_settings_json without args should use default settings."""
        json_str = print_settings_json()
        parsed = json.loads(json_str)
        assert "build_cache_dir" in parsed
