"""Offline package cache service.

Downloads every package the installer needs (with its full dependency
closure) into ``pkg-cache/`` and mirrors the archives into the overlay so
the ISO can install without network access. The cache is keyed on the
package list stamp: while ``pkg-cache/.pkglist_stamp`` matches the current
list, nothing is downloaded.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from heyos_builder.buildlog import log_ok
from heyos_builder.host.pacman import Pacman
from heyos_builder.pkgcache.manifest import PackageCacheError, resolve_package_list
from heyos_builder.process import CommandError
from heyos_builder.types import CacheOutcome

if TYPE_CHECKING:
    from heyos_builder.context import PipelineContext

logger = logging.getLogger(__name__)

STAMP_FILE = ".pkglist_stamp"
PACKAGE_GLOB = "*.pkg.tar.*"
EMPTY_DB_DIR = "empty_pacman_db"


@dataclass
class CacheReport:
    """Result of a cache refresh.

    Attributes:
        outcome: REUSED, DOWNLOADED or PARTIAL.
        stamp: Stamp of the current package list.
        downloaded: Packages fetched in this run.
        failed: Packages that could not be fetched.
        copied: Archives copied into the overlay.
    """

    outcome: CacheOutcome
    stamp: str
    downloaded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    copied: list[Path] = field(default_factory=list)


def read_stamp(cache_dir: Path) -> str | None:
    """Return the stored stamp, or None if there is none."""
    path = cache_dir / STAMP_FILE
    if not path.is_file():
        return None
    return path.read_text(encoding="utf-8").strip() or None


def write_stamp(cache_dir: Path, stamp: str) -> Path:
    """Persist ``stamp`` for the cache in ``cache_dir``."""
    path = cache_dir / STAMP_FILE
    path.write_text(stamp + "\n", encoding="utf-8")
    return path


def empty_db_path(build_cache_dir: Path) -> Path:
    """Create and return an empty pacman database directory.

    pacman requires the ``local`` subdirectory to exist.
    """
    db_path = build_cache_dir / EMPTY_DB_DIR
    (db_path / "local").mkdir(parents=True, exist_ok=True)
    return db_path


def download_packages(
    pacman: Pacman,
    packages: list[str],
    cache_dir: Path,
    db_path: Path,
) -> tuple[list[str], list[str]]:
    """Download packages, falling back to one package at a time.

    The fallback reuses the sync databases refreshed by the batch attempt.

    Returns:
        Tuple of (downloaded, failed) package names.

    Raises:
        CommandError: If pacman cannot be executed at all.
    """
    result = pacman.download(packages, cache_dir, db_path)
    if result.success:
        return list(packages), []

    logger.warning(
        "Batch download failed (exit code %d); retrying package by package",
        result.exit_code,
    )
    downloaded: list[str] = []
    failed: list[str] = []
    for package in packages:
        if pacman.download([package], cache_dir, db_path, refresh=False).success:
            downloaded.append(package)
        else:
            failed.append(package)
            logger.warning("Failed to download %s", package)
    return downloaded, failed


def copy_to_overlay(cache_dir: Path, dest_dir: Path) -> list[Path]:
    """Copy cached package archives into the overlay.

    Files already present with the same size and mtime are skipped.

    Returns:
        Destination paths that were written.
    """
    dest_dir.mkdir(parents=True, exist_ok=True)
    copied: list[Path] = []
    for source in sorted(cache_dir.glob(PACKAGE_GLOB)):
        if not source.is_file():
            continue
        dest = dest_dir / source.name
        if dest.is_file():
            src_stat = source.stat()
            dest_stat = dest.stat()
            if (
                src_stat.st_size == dest_stat.st_size
                and int(src_stat.st_mtime) == int(dest_stat.st_mtime)
            ):
                continue
        shutil.copy2(source, dest)
        copied.append(dest)
    return copied


def refresh_package_cache(
    ctx: PipelineContext,
    pacman: Pacman | None = None,
    force: bool = False,
) -> CacheReport:
    """Bring the offline package cache up to date and mirror it into the overlay.

    Args:
        ctx: Pipeline context.
        pacman: pacman adapter (defaults to one logging to the build log).
        force: Download even if the stamp matches.

    Returns:
        CacheReport.

    Raises:
        PackageCacheError: If the package list cannot be resolved or the
            cache directories cannot be written.
    """
    if pacman is None:
        pacman = Pacman(log_path=ctx.log_path)

    logger.info("Reading package list from %s", ctx.settings.installer_script)
    package_list = resolve_package_list(
        ctx.installer_script,
        ctx.settings.offline_required_packages,
    )
    cache_dir = ctx.pkg_cache_dir
    report = CacheReport(outcome=CacheOutcome.REUSED, stamp=package_list.stamp)

    try:
        cache_dir.mkdir(parents=True, exist_ok=True)
        stored = read_stamp(cache_dir)

        if not force and stored == package_list.stamp:
            logger.info(
                "Package list unchanged (%d packages) - cache reused",
                len(package_list.packages),
            )
        else:
            if force:
                logger.info("Refreshing package cache (forced)")
            elif stored is None:
                logger.info("No package cache yet - downloading")
            else:
                logger.info("Package list changed - downloading")
            (cache_dir / STAMP_FILE).unlink(missing_ok=True)

            db_path = empty_db_path(ctx.build_cache_dir)
            try:
                downloaded, failed = download_packages(
                    pacman, package_list.packages, cache_dir, db_path
                )
            except CommandError as e:
                logger.warning("Cannot run package download: %s", e)
                report.outcome = CacheOutcome.PARTIAL
                report.failed = list(package_list.packages)
            else:
                report.downloaded = downloaded
                report.failed = failed
                report.outcome = CacheOutcome.PARTIAL if failed else CacheOutcome.DOWNLOADED
                if failed:
                    logger.warning(
                        "%d package(s) could not be downloaded and are missing "
                        "from the offline cache: %s",
                        len(failed),
                        ", ".join(failed),
                    )
                write_stamp(cache_dir, package_list.stamp)

        logger.info("Copying packages to offline storage %s", ctx.offline_package_dir)
        report.copied = copy_to_overlay(cache_dir, ctx.offline_package_dir)
    except OSError as e:
        raise PackageCacheError(f"Cannot update package cache: {e}") from e

    log_ok(
        logger,
        "Offline packages cached on ISO (%d copied, %s)",
        len(report.copied),
        report.outcome.value,
    )
    return report


__all__ = [
    "EMPTY_DB_DIR",
    "PACKAGE_GLOB",
    "STAMP_FILE",
    "CacheReport",
    "PackageCacheError",
    "copy_to_overlay",
    "download_packages",
    "empty_db_path",
    "read_stamp",
    "refresh_package_cache",
    "write_stamp",
]
