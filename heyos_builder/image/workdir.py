"""State machine over the mkarchiso work directory.

mkarchiso records each completed stage as a marker file in its work
directory (``base._make_packages``, ``iso._build_iso_image``, ...) and skips
stages whose marker exists. The work directory also holds the installed
package payload, which is by far the most expensive thing to recreate, so
it is never deleted; only markers are removed:

- FRESH: no work directory yet. Create it; mkarchiso does everything.
- STALE_LIST: packages.x86_64 differs from the stamp. Remove every marker
  so packages are reinstalled over the existing payload.
- REUSABLE_LIST: the list is unchanged. Keep the package-installation
  markers and remove the rest, so the overlay, squashfs and ISO are always
  regenerated with the freshly deployed binaries.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from heyos_builder.errors import BuildError
from heyos_builder.types import WorkDirState

logger = logging.getLogger(__name__)

STAMP_NAME = ".packages_stamp"
MARKER_PREFIXES = ("base.", "iso.", "build.", "bootstrap.", "netboot.")
PACKAGE_MARKERS = frozenset({"base._make_pacman_conf", "base._make_packages"})


class WorkDirError(BuildError):
    """Raised when the work directory cannot be prepared."""

    def __init__(self, message: str, code: str = "work_dir_error") -> None:
        super().__init__(message, code=code)


@dataclass
class WorkDirTransition:
    """Transition applied to the work directory.

    Attributes:
        state: State found before the transition.
        cleared: Marker names removed.
        kept: Marker names left in place.
    """

    state: WorkDirState
    cleared: list[str] = field(default_factory=list)
    kept: list[str] = field(default_factory=list)


def _normalized(data: bytes) -> bytes:
    return data.replace(b"\r\n", b"\n")


def is_stage_marker(path: Path) -> bool:
    """True for a regular file that mkarchiso uses as a stage marker."""
    return path.is_file() and path.name.startswith(MARKER_PREFIXES)


def list_markers(work_dir: Path) -> list[Path]:
    """List stage markers directly inside the work directory."""
    if not work_dir.is_dir():
        return []
    return sorted(p for p in work_dir.iterdir() if is_stage_marker(p))


def classify_work_dir(work_dir: Path, packages_file: Path) -> WorkDirState:
    """Determine the work directory's state against the current package list.

    Args:
        work_dir: mkarchiso work directory.
        packages_file: Current packages.x86_64.

    Returns:
        WorkDirState.
    """
    if not work_dir.is_dir():
        return WorkDirState.FRESH
    stamp = work_dir / STAMP_NAME
    if not stamp.is_file():
        return WorkDirState.STALE_LIST
    if _normalized(stamp.read_bytes()) != _normalized(packages_file.read_bytes()):
        return WorkDirState.STALE_LIST
    return WorkDirState.REUSABLE_LIST


def clear_markers(work_dir: Path, keep: frozenset[str] = frozenset()) -> WorkDirTransition:
    """Remove stage markers except those named in ``keep``.

    The returned transition's state is a placeholder filled in by the caller.
    """
    transition = WorkDirTransition(state=WorkDirState.STALE_LIST)
    for marker in list_markers(work_dir):
        if marker.name in keep:
            transition.kept.append(marker.name)
            continue
        marker.unlink()
        transition.cleared.append(marker.name)
    return transition


def prepare_work_dir(work_dir: Path, packages_file: Path) -> WorkDirTransition:
    """Apply the state transition and stamp the current package list.

    Args:
        work_dir: mkarchiso work directory.
        packages_file: Current packages.x86_64.

    Returns:
        WorkDirTransition describing what was done.

    Raises:
        WorkDirError: If the package list is missing or the directory
            cannot be updated.
    """
    if not packages_file.is_file():
        raise WorkDirError(
            f"Package list not found: {packages_file}",
            code="packages_file_missing",
        )

    try:
        state = classify_work_dir(work_dir, packages_file)
        if state is WorkDirState.FRESH:
            work_dir.mkdir(parents=True, exist_ok=True)
            transition = WorkDirTransition(state=state)
            logger.info("No work directory yet - full install and build")
        elif state is WorkDirState.STALE_LIST:
            transition = clear_markers(work_dir)
            transition.state = state
            logger.info(
                "Package list changed - clearing %d stage marker(s) for a full reinstall",
                len(transition.cleared),
            )
        else:
            transition = clear_markers(work_dir, keep=PACKAGE_MARKERS)
            transition.state = state
            logger.info(
                "Package list unchanged - reusing installed packages, "
                "regenerating image (%d marker(s) cleared)",
                len(transition.cleared),
            )
        shutil.copy2(packages_file, work_dir / STAMP_NAME)
    except OSError as e:
        raise WorkDirError(f"Cannot prepare work directory {work_dir}: {e}") from e

    return transition


__all__ = [
    "MARKER_PREFIXES",
    "PACKAGE_MARKERS",
    "STAMP_NAME",
    "WorkDirError",
    "WorkDirTransition",
    "classify_work_dir",
    "clear_markers",
    "is_stage_marker",
    "list_markers",
    "prepare_work_dir",
]
