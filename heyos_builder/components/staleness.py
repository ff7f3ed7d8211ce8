"""Staleness detection for component builds.

Two policies decide whether a cached binary still reflects its sources:

- checksum: the itemized output of a checksum rsync of the sources into the
  build directory, keeping only content modifications, additions and
  deletions (attribute-only changes are ignored).
- mtime: any source file newer than the binary.

A run uses exactly one policy for every unit; mixing them on one cache can
report "fresh" after clock skew.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from heyos_builder.types import StalenessPolicy

logger = logging.getLogger(__name__)

DELETING = "*deleting"

# Directories inside a crate that are build output, not input
DEFAULT_EXCLUDED_DIRS = frozenset({"target", ".git"})

# Number of changed paths echoed to the log
MAX_LOGGED_CHANGES = 5


@dataclass
class ItemizedChange:
    """One line of ``rsync --itemize-changes`` output."""

    flags: str
    path: str

    @property
    def is_significant(self) -> bool:
        """True for content changes, new files, and deletions."""
        if self.flags == DELETING:
            return True
        if not self.flags.startswith(">f"):
            return False
        # YXcstpoguax: 'c' in column 3 means checksum differs, '+' means new file
        return self.flags[2:3] in ("c", "+")


@dataclass
class StalenessRecord:
    """Staleness determination for one component.

    Attributes:
        unit: Component name.
        policy: Policy used.
        stale: True if the component must be rebuilt.
        reason: Short explanation for the log.
        changes: Relative paths that made the unit stale.
    """

    unit: str
    policy: StalenessPolicy
    stale: bool
    reason: str
    changes: list[str] = field(default_factory=list)


def parse_itemized(output: str) -> list[ItemizedChange]:
    """Parse ``rsync -i`` output into ItemizedChange entries.

    Args:
        output: Raw itemized output.

    Returns:
        Parsed changes, in output order.
    """
    changes: list[ItemizedChange] = []
    for raw in output.splitlines():
        line = raw.rstrip("\r")
        if not line.strip():
            continue
        if line.startswith(DELETING):
            changes.append(ItemizedChange(DELETING, line[len(DELETING) :].strip()))
            continue
        flags, _, path = line.partition(" ")
        changes.append(ItemizedChange(flags, path.strip()))
    return changes


def significant_changes(output: str) -> list[str]:
    """Return the paths of significant changes in itemized output."""
    return [c.path for c in parse_itemized(output) if c.is_significant]


def check_by_checksum(unit: str, binary: Path, itemized_output: str) -> StalenessRecord:
    """Judge staleness from a checksum sync's itemized output.

    Args:
        unit: Component name.
        binary: Expected binary path.
        itemized_output: Output of ``rsync -aic`` into the build directory.

    Returns:
        StalenessRecord.
    """
    policy = StalenessPolicy.CHECKSUM
    changes = significant_changes(itemized_output)
    if not binary.is_file():
        return StalenessRecord(unit, policy, True, "binary missing", changes)
    if changes:
        return StalenessRecord(unit, policy, True, "source content changed", changes)
    return StalenessRecord(unit, policy, False, "no content changes")


def iter_source_files(
    source_dir: Path,
    excluded_dirs: frozenset[str] = DEFAULT_EXCLUDED_DIRS,
) -> list[Path]:
    """List regular files under ``source_dir``, skipping build output.

    Only top-level excluded directories are pruned, matching the sync
    excludes.
    """
    files: list[Path] = []
    for path in sorted(source_dir.rglob("*")):
        rel = path.relative_to(source_dir)
        if rel.parts and rel.parts[0] in excluded_dirs:
            continue
        if path.is_file():
            files.append(path)
    return files


def check_by_mtime(
    unit: str,
    binary: Path,
    source_dir: Path,
    excluded_dirs: frozenset[str] = DEFAULT_EXCLUDED_DIRS,
) -> StalenessRecord:
    """Judge staleness by comparing source mtimes against the binary.

    Deleted source files are not detected by this policy.

    Args:
        unit: Component name.
        binary: Expected binary path.
        source_dir: Component source directory.
        excluded_dirs: Top-level directories to skip.

    Returns:
        StalenessRecord.
    """
    policy = StalenessPolicy.MTIME
    if not binary.is_file():
        return StalenessRecord(unit, policy, True, "binary missing")

    binary_mtime = binary.stat().st_mtime_ns
    newer = [
        path.relative_to(source_dir).as_posix()
        for path in iter_source_files(source_dir, excluded_dirs)
        if path.stat().st_mtime_ns > binary_mtime
    ]
    if newer:
        return StalenessRecord(unit, policy, True, "sources newer than binary", newer)
    return StalenessRecord(unit, policy, False, "binary newer than all sources")


def log_changes(record: StalenessRecord) -> None:
    """Echo the first few changed paths of a stale record to the log."""
    if not record.changes:
        return
    logger.info("Changes detected in %s source files:", record.unit)
    for path in record.changes[:MAX_LOGGED_CHANGES]:
        logger.info("  %s", path)
    if len(record.changes) > MAX_LOGGED_CHANGES:
        logger.info("  ...and %d more.", len(record.changes) - MAX_LOGGED_CHANGES)


__all__ = [
    "ItemizedChange",
    "StalenessRecord",
    "check_by_checksum",
    "check_by_mtime",
    "iter_source_files",
    "log_changes",
    "parse_itemized",
    "significant_changes",
]
