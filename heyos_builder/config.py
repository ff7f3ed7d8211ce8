"""Configuration settings for heyos_builder.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
Per-run options (what to build, whether to wipe caches) live in
BuildOptions, validated once when the CLI starts.
"""

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from heyos_builder.types import BuildSelection, StalenessPolicy

ENV_PREFIX = "HEYOS_BUILD_"

# Host packages needed to compile the components and run mkarchiso
DEFAULT_HOST_PACKAGES = [
    "archlinux-keyring",
    "archiso",
    "rustup",
    "git",
    "base-devel",
    "wayland",
    "wayland-protocols",
    "libxkbcommon",
    "libinput",
    "seatd",
    "mesa",
    "pam",
    "pkg-config",
    "syslinux",
    "lz4",
    "fontconfig",
    "pixman",
    "libdrm",
    "noto-fonts",
    "rsync",
]


def _default_jobs() -> int:
    """Return the default parallelism budget."""
    return os.cpu_count() or 4


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the HEYOS_BUILD_
    prefix. CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    native_build_dir: Path = Field(
        default=Path("/var/lib/heyos-build"),
        description="Fast local workspace used when relocating off slow storage",
    )
    build_cache_dir: Path = Field(
        default=Path("/var/lib/heyos-cargo-build"),
        description="Root of per-component build caches",
    )
    origin_workspace: Path | None = Field(
        default=None,
        description="Workspace the operator started from (set on relocation)",
    )
    installer_script: Path = Field(
        default=Path("airootfs/usr/local/bin/hey-install"),
        description="Installer script declaring the offline package list",
    )
    offline_package_dir: Path = Field(
        default=Path("airootfs/opt/heyos-packages"),
        description="Overlay directory receiving cached offline packages",
    )
    log_file_name: str = Field(
        default="build_log.txt",
        description="Build log file name, created in the origin workspace",
    )

    # Relocation
    relocate: bool = Field(
        default=True,
        description="Relocate to native_build_dir when running from slow storage",
    )
    slow_mount_prefixes: list[str] = Field(
        default_factory=lambda: ["/mnt/"],
        description="Path prefixes considered slow storage",
    )
    sync_checksum: bool = Field(
        default=True,
        description="Use checksum sync when relocating (untrusted timestamps)",
    )

    # Builds
    staleness_policy: StalenessPolicy = Field(
        default=StalenessPolicy.CHECKSUM,
        description="How cached component binaries are judged fresh",
    )
    jobs: int = Field(
        default_factory=_default_jobs,
        ge=1,
        description="Total parallelism budget for component builds",
    )
    iso_name: str | None = Field(
        default=None,
        description="ISO name prefix (read from profiledef.sh if not set)",
    )

    # Packages
    host_packages: list[str] = Field(
        default_factory=lambda: list(DEFAULT_HOST_PACKAGES),
        description="Host packages required to run the build",
    )
    offline_required_packages: list[str] = Field(
        default_factory=lambda: ["btrfs-progs"],
        description="Packages always added to the offline installer cache",
    )

    # Operational
    require_root: bool = Field(
        default=True,
        description="Refuse to run without root privileges",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Console logging level",
    )


class BuildOptions(BaseModel):
    """Per-run options selected on the command line."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    force_clean: bool = False
    greeter_only: bool = False
    heydm_only: bool = False

    @model_validator(mode="after")
    def check_exclusive(self) -> "BuildOptions":
        """Reject --greeter-only together with --heydm-only."""
        if self.greeter_only and self.heydm_only:
            raise ValueError("greeter_only and heydm_only are mutually exclusive")
        return self

    @property
    def selection(self) -> BuildSelection:
        """Component selection implied by the flags."""
        if self.greeter_only:
            return BuildSelection.GREETER_ONLY
        if self.heydm_only:
            return BuildSelection.HEYDM_ONLY
        return BuildSelection.ALL

    def to_args(self) -> list[str]:
        """Render the options back into CLI flags."""
        args: list[str] = []
        if self.force_clean:
            args.append("--clean")
        if self.greeter_only:
            args.append("--greeter-only")
        if self.heydm_only:
            args.append("--heydm-only")
        return args


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = [
    "DEFAULT_HOST_PACKAGES",
    "ENV_PREFIX",
    "BuildOptions",
    "Settings",
    "get_settings",
    "print_settings_json",
]
