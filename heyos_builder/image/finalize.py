"""Moving the finished ISO back to the origin workspace.

When the build was relocated, the ISO is moved (not copied) into the
origin's ``out/`` directory so the native output directory does not
collect duplicates. Across filesystems the move is copy-then-rename-then-
unlink: until the final rename succeeds, the source ISO is untouched and
any partial copy is removed.
"""

from __future__ import annotations

import errno
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from heyos_builder.buildlog import log_ok
from heyos_builder.errors import BuildError
from heyos_builder.image.artifacts import manifest_path

if TYPE_CHECKING:
    from heyos_builder.context import PipelineContext

logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = ".partial"


class FinalizeError(BuildError):
    """Raised when the ISO could not be moved to the origin workspace."""

    def __init__(
        self,
        message: str,
        artifact_path: Path,
        code: str = "finalize_error",
    ) -> None:
        super().__init__(message, code=code)
        self.artifact_path = artifact_path


@dataclass
class FinalizeResult:
    """Outcome of finalization.

    Attributes:
        moved: True if the ISO now lives in the origin workspace.
        artifact_path: Where the ISO is now.
        error: Error message when the move failed.
    """

    moved: bool
    artifact_path: Path
    error: str | None = None


def move_artifact(source: Path, dest_dir: Path) -> Path:
    """Move a file into ``dest_dir`` without ever losing it.

    Args:
        source: File to move.
        dest_dir: Destination directory (created if needed).

    Returns:
        New path of the file.

    Raises:
        OSError: If the move fails; ``source`` is then still in place.
    """
    dest_dir.mkdir(parents=True, exist_ok=True)
    dest = dest_dir / source.name

    try:
        os.rename(source, dest)
        return dest
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise

    partial = dest_dir / f".{source.name}{PARTIAL_SUFFIX}"
    try:
        shutil.copy2(source, partial)
        os.replace(partial, dest)
    except OSError:
        partial.unlink(missing_ok=True)
        raise

    source.unlink()
    return dest


def finalize_artifact(ctx: PipelineContext, artifact_path: Path) -> FinalizeResult:
    """Move the ISO to the origin workspace if the build was relocated.

    Args:
        ctx: Pipeline context.
        artifact_path: ISO in the build-side output directory.

    Returns:
        FinalizeResult. A failed move is reported, not raised; the ISO
        stays at ``artifact_path``.
    """
    if not ctx.relocated:
        logger.info("Build ran in the origin workspace; ISO stays at %s", artifact_path)
        return FinalizeResult(moved=False, artifact_path=artifact_path)

    dest_dir = ctx.origin_output_dir
    logger.info("Moving ISO to origin workspace: %s", dest_dir)
    try:
        new_path = move_artifact(artifact_path, dest_dir)
    except OSError as e:
        logger.error(
            "Failed to move ISO to %s: %s. The ISO remains at %s",
            dest_dir,
            e,
            artifact_path,
        )
        return FinalizeResult(moved=False, artifact_path=artifact_path, error=str(e))

    sidecar = manifest_path(artifact_path)
    if sidecar.is_file():
        try:
            move_artifact(sidecar, dest_dir)
        except OSError as e:
            logger.warning("Could not move manifest %s: %s", sidecar, e)

    log_ok(logger, "ISO moved to: %s", new_path)
    return FinalizeResult(moved=True, artifact_path=new_path)


__all__ = [
    "FinalizeError",
    "FinalizeResult",
    "PARTIAL_SUFFIX",
    "finalize_artifact",
    "move_artifact",
]
