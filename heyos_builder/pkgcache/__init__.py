"""Offline package cache module.

This module handles:
- Resolving the installer's package list and its stamp
- Downloading packages with their full dependency closure
- Mirroring the cache into the ISO overlay
"""

from heyos_builder.pkgcache.manifest import (
    PackageCacheError,
    PackageList,
    compute_package_stamp,
    extract_installer_packages,
    resolve_package_list,
)

__all__ = [
    "PackageCacheError",
    "PackageList",
    "compute_package_stamp",
    "extract_installer_packages",
    "resolve_package_list",
]
