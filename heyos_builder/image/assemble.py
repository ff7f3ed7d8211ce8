"""Image assembly with mkarchiso.

This module handles:
- Resolving the ISO name from profiledef.sh
- Normalizing CRLF line endings in profile files
- Preparing the incremental work directory
- Running mkarchiso and validating the produced ISO
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from heyos_builder.buildlog import log_ok
from heyos_builder.errors import BuildError
from heyos_builder.image.artifacts import (
    describe_artifact,
    find_artifact,
    format_size,
    generate_manifest,
    manifest_path,
    purge_old_artifacts,
    write_manifest,
)
from heyos_builder.image.workdir import WorkDirTransition, prepare_work_dir
from heyos_builder.process import CommandError, run_command
from heyos_builder.types import ArtifactInfo

if TYPE_CHECKING:
    from heyos_builder.context import PipelineContext

logger = logging.getLogger(__name__)

ISO_NAME_PATTERN = re.compile(r"""^\s*iso_name=["']?([^"'\s]+)["']?\s*$""", re.MULTILINE)

# Overlay files mkarchiso copies as-is that must use LF line endings
OVERLAY_TEXT_SUFFIXES = frozenset({".conf", ".sh", ".service", ".gen"})
OVERLAY_TEXT_NAMES = frozenset(
    {"shadow", "gshadow", "hostname", "hey-install", "os-release", "issue"}
)
BOOTLOADER_DIRS = ("syslinux", "efiboot")


class ImageAssemblyError(BuildError):
    """Raised when mkarchiso fails or produces no ISO."""

    def __init__(self, message: str, code: str = "image_assembly_error") -> None:
        super().__init__(message, code=code)


@dataclass
class AssemblyResult:
    """Result of an image assembly.

    Attributes:
        artifact: The produced ISO.
        artifact_path: Path of the ISO in the build-side output directory.
        manifest_path: Path of the JSON sidecar manifest.
        transition: Work directory transition that was applied.
    """

    artifact: ArtifactInfo
    artifact_path: Path
    manifest_path: Path
    transition: WorkDirTransition


def read_iso_name(profiledef: Path) -> str | None:
    """Read ``iso_name`` from an archiso profiledef.sh."""
    if not profiledef.is_file():
        return None
    match = ISO_NAME_PATTERN.search(profiledef.read_text(encoding="utf-8", errors="replace"))
    return match.group(1) if match else None


def resolve_iso_name(ctx: PipelineContext) -> str:
    """Return the ISO name prefix from settings or profiledef.sh.

    Raises:
        ImageAssemblyError: If neither provides one.
    """
    if ctx.settings.iso_name:
        return ctx.settings.iso_name
    name = read_iso_name(ctx.profiledef)
    if name is None:
        raise ImageAssemblyError(
            f"Cannot determine iso_name from {ctx.profiledef}",
            code="iso_name_missing",
        )
    return name


def profile_text_files(workspace: Path) -> list[Path]:
    """List profile files whose line endings must be LF for mkarchiso."""
    files: list[Path] = []
    for pattern in ("*.sh", "*.cfg", "packages.*"):
        files.extend(p for p in workspace.glob(pattern) if p.is_file())
    for name in BOOTLOADER_DIRS:
        directory = workspace / name
        if directory.is_dir():
            files.extend(p for p in directory.rglob("*") if p.is_file())
    airootfs = workspace / "airootfs"
    if airootfs.is_dir():
        files.extend(
            p
            for p in airootfs.rglob("*")
            if p.is_file()
            and (p.suffix in OVERLAY_TEXT_SUFFIXES or p.name in OVERLAY_TEXT_NAMES)
        )
    return sorted(set(files))


def normalize_line_endings(paths: list[Path]) -> list[Path]:
    """Convert CRLF to LF in place.

    Returns:
        Paths that were rewritten.
    """
    changed: list[Path] = []
    for path in paths:
        data = path.read_bytes()
        if b"\r\n" not in data:
            continue
        path.write_bytes(data.replace(b"\r\n", b"\n"))
        changed.append(path)
    return changed


def compose_mkarchiso_command(work_dir: Path, out_dir: Path, profile_dir: Path) -> list[str]:
    """Compose the mkarchiso invocation."""
    return ["mkarchiso", "-v", "-w", str(work_dir), "-o", str(out_dir), str(profile_dir)]


def assemble_image(
    ctx: PipelineContext,
    package_stamp: str | None = None,
    components: dict[str, Any] | None = None,
) -> AssemblyResult:
    """Assemble the ISO from the workspace profile.

    Args:
        ctx: Pipeline context.
        package_stamp: Offline package list stamp, recorded in the manifest.
        components: Per-component details, recorded in the manifest.

    Returns:
        AssemblyResult.

    Raises:
        ImageAssemblyError: If mkarchiso fails or no ISO is produced.
        WorkDirError: If the work directory cannot be prepared.
    """
    iso_name = resolve_iso_name(ctx)

    logger.info("Ensuring Unix line endings for profile files...")
    try:
        converted = normalize_line_endings(profile_text_files(ctx.workspace))
    except OSError as e:
        raise ImageAssemblyError(f"Line ending normalization failed: {e}") from e
    if converted:
        logger.info("Converted %d file(s) from CRLF to LF", len(converted))

    transition = prepare_work_dir(ctx.work_dir, ctx.packages_file)

    try:
        ctx.output_dir.mkdir(parents=True, exist_ok=True)
        removed = purge_old_artifacts(ctx.output_dir, iso_name)
    except OSError as e:
        raise ImageAssemblyError(f"Cannot prepare output directory: {e}") from e
    if removed:
        logger.info("Removed %d old ISO(s) from %s", len(removed), ctx.output_dir)

    logger.info("Running mkarchiso...")
    cmd = compose_mkarchiso_command(ctx.work_dir, ctx.output_dir, ctx.workspace)
    try:
        result = run_command(cmd, cwd=ctx.workspace, log_path=ctx.log_path)
    except CommandError as e:
        raise ImageAssemblyError(str(e), code="mkarchiso_failed") from e
    if not result.success:
        raise ImageAssemblyError(
            f"mkarchiso failed with exit code {result.exit_code}",
            code="mkarchiso_failed",
        )

    iso_path = find_artifact(ctx.output_dir, iso_name)
    if iso_path is None:
        raise ImageAssemblyError(
            f"ISO build failed - no {iso_name}-*.iso found in {ctx.output_dir}",
            code="artifact_missing",
        )

    artifact = describe_artifact(iso_path)
    manifest = generate_manifest(
        artifact,
        package_stamp=package_stamp,
        components=components,
        extra_metadata={
            "work_dir_state": transition.state.value,
            "mkarchiso_seconds": round(result.duration, 1),
        },
    )
    sidecar = write_manifest(manifest, manifest_path(iso_path))

    log_ok(logger, "ISO built: %s (%s)", iso_path, format_size(artifact.size_bytes))
    return AssemblyResult(
        artifact=artifact,
        artifact_path=iso_path,
        manifest_path=sidecar,
        transition=transition,
    )


__all__ = [
    "AssemblyResult",
    "ImageAssemblyError",
    "assemble_image",
    "compose_mkarchiso_command",
    "normalize_line_endings",
    "profile_text_files",
    "read_iso_name",
    "resolve_iso_name",
]
