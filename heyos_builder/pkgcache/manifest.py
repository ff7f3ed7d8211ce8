"""Offline package list resolution and stamping.

This module handles:
- Extracting the ``local PACKAGES=( ... )`` array from the installer script
- Merging it with packages that are always required offline
- Computing a deterministic stamp over the resulting list

The stamp is the only thing the package cache is keyed on: identical lists
produce identical stamps regardless of order, duplicates or line endings.
"""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass, field
from pathlib import Path

from heyos_builder.errors import BuildError

# Bump when the stamp format changes
STAMP_SCHEMA_VERSION = "1"

PACKAGES_ARRAY = re.compile(r"local\s+PACKAGES=\((.*?)\)", re.DOTALL)


class PackageCacheError(BuildError):
    """Raised when the offline package cache cannot be prepared."""

    def __init__(self, message: str, code: str = "package_cache_error") -> None:
        super().__init__(message, code=code)


@dataclass
class PackageList:
    """Resolved offline package list.

    Attributes:
        packages: Sorted, de-duplicated package names.
        stamp: Stamp of ``packages`` (``sha256:<hex>``).
    """

    packages: list[str] = field(default_factory=list)
    stamp: str = ""


def extract_installer_packages(text: str) -> list[str]:
    """Parse the package names declared by the installer script.

    Args:
        text: Installer script contents.

    Returns:
        Package names in declaration order (may contain duplicates).

    Raises:
        PackageCacheError: If no ``local PACKAGES=(...)`` array is found.
    """
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    match = PACKAGES_ARRAY.search(text)
    if match is None:
        raise PackageCacheError(
            "No 'local PACKAGES=(...)' array found in installer script",
            code="package_array_missing",
        )

    packages: list[str] = []
    for line in match.group(1).splitlines():
        line = line.split("#", 1)[0].replace("\\", " ")
        for token in line.split():
            token = token.strip("'\"")
            if token:
                packages.append(token)
    return packages


def compute_package_stamp(packages: list[str]) -> str:
    """Compute the stamp of a package list.

    The stamp is a SHA-256 hash of the canonical JSON representation
    of the sorted, de-duplicated list.

    Args:
        packages: Package names.

    Returns:
        Stamp as ``sha256:<hex>``.
    """
    canonical_json = json.dumps(
        {"schema_version": STAMP_SCHEMA_VERSION, "packages": sorted(set(packages))},
        sort_keys=True,
        separators=(",", ":"),
    )
    digest = hashlib.sha256(canonical_json.encode("utf-8")).hexdigest()
    return f"sha256:{digest}"


def resolve_package_list(
    script_path: Path,
    always_required: list[str] | None = None,
) -> PackageList:
    """Resolve the offline package list from the installer script.

    Args:
        script_path: Installer script declaring the package array.
        always_required: Packages added regardless of the script.

    Returns:
        PackageList with its stamp.

    Raises:
        PackageCacheError: If the script is missing or declares no array.
    """
    try:
        text = script_path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        raise PackageCacheError(
            f"Cannot read installer script {script_path}: {e}",
            code="installer_script_missing",
        ) from e

    packages = sorted(set(extract_installer_packages(text)) | set(always_required or []))
    return PackageList(packages=packages, stamp=compute_package_stamp(packages))


__all__ = [
    "PACKAGES_ARRAY",
    "STAMP_SCHEMA_VERSION",
    "PackageCacheError",
    "PackageList",
    "compute_package_stamp",
    "extract_installer_packages",
    "resolve_package_list",
]
