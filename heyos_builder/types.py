"""Shared type definitions for heyos_builder.

This module contains enums and dataclasses shared across subpackages to
avoid circular imports.
"""

from dataclasses import dataclass, field
from enum import Enum


class BuildSelection(str, Enum):
    """Which components a run builds and boots into."""

    ALL = "all"
    GREETER_ONLY = "greeter-only"
    HEYDM_ONLY = "heydm-only"


class ComponentRole(str, Enum):
    """Role of a component inside the image."""

    COMPOSITOR = "compositor"
    GREETER = "greeter"


class StalenessPolicy(str, Enum):
    """How a component's cached binary is judged fresh."""

    CHECKSUM = "checksum"
    MTIME = "mtime"


class InstallOutcome(str, Enum):
    """Outcome of the host dependency check."""

    ALREADY_SATISFIED = "already-satisfied"
    INSTALLED = "installed"


class CacheOutcome(str, Enum):
    """Outcome of an offline package cache refresh."""

    REUSED = "reused"
    DOWNLOADED = "downloaded"
    PARTIAL = "partial"


class WorkDirState(str, Enum):
    """State of the mkarchiso work directory before assembly."""

    FRESH = "fresh"
    STALE_LIST = "stale-list"
    REUSABLE_LIST = "reusable-list"


@dataclass
class ArtifactInfo:
    """Information about a produced image artifact."""

    filename: str
    path: str
    size_bytes: int
    sha256: str
    labels: list[str] = field(default_factory=list)


__all__ = [
    "ArtifactInfo",
    "BuildSelection",
    "CacheOutcome",
    "ComponentRole",
    "InstallOutcome",
    "StalenessPolicy",
    "WorkDirState",
]
