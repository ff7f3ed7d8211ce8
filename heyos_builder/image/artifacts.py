"""Artifact discovery and manifest generation.

This module handles:
- Finding the ISO produced by mkarchiso in the output directory
- Purging older ISOs so exactly one candidate exists after a build
- Computing checksums
- Writing a JSON sidecar manifest next to the ISO
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from heyos_builder.types import ArtifactInfo

logger = logging.getLogger(__name__)

ISO_SUFFIX = ".iso"
MANIFEST_SUFFIX = ".manifest.json"

# Default chunk size for hashing
HASH_CHUNK_SIZE = 1024 * 1024  # 1MB


def format_size(size_bytes: int) -> str:
    """Format a byte count the way ``du -h`` does (e.g. 4.2M)."""
    size = float(size_bytes)
    for unit in ("B", "K", "M", "G"):
        if size < 1024:
            return f"{size:.0f}{unit}" if unit == "B" else f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}T"


def artifact_pattern(iso_name: str) -> str:
    """Glob pattern matching ISOs for an image name."""
    return f"{iso_name}-*{ISO_SUFFIX}"


def compute_file_hash(
    file_path: Path,
    chunk_size: int = HASH_CHUNK_SIZE,
) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks for streaming hash.

    Returns:
        SHA-256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def find_artifacts(out_dir: Path, iso_name: str) -> list[Path]:
    """List ISO files for ``iso_name`` in ``out_dir``, newest first."""
    if not out_dir.is_dir():
        return []
    candidates = [p for p in out_dir.glob(artifact_pattern(iso_name)) if p.is_file()]
    return sorted(candidates, key=lambda p: p.stat().st_mtime, reverse=True)


def find_artifact(out_dir: Path, iso_name: str) -> Path | None:
    """Return the produced ISO, or None if there is none.

    More than one match means a purge was skipped; the newest one wins.
    """
    artifacts = find_artifacts(out_dir, iso_name)
    if not artifacts:
        return None
    if len(artifacts) > 1:
        logger.warning(
            "Found %d ISOs in %s, using newest: %s",
            len(artifacts),
            out_dir,
            artifacts[0].name,
        )
    return artifacts[0]


def purge_old_artifacts(out_dir: Path, iso_name: str) -> list[Path]:
    """Remove previous ISOs (and their manifests) from ``out_dir``.

    Returns:
        Removed ISO paths.
    """
    removed: list[Path] = []
    for path in find_artifacts(out_dir, iso_name):
        path.unlink()
        manifest_path(path).unlink(missing_ok=True)
        removed.append(path)
        logger.debug("Removed old artifact: %s", path)
    return removed


def describe_artifact(path: Path) -> ArtifactInfo:
    """Build ArtifactInfo for a produced ISO (size and sha256)."""
    size_bytes = path.stat().st_size
    return ArtifactInfo(
        filename=path.name,
        path=str(path),
        size_bytes=size_bytes,
        sha256=compute_file_hash(path),
        labels=["bootable-iso"],
    )


def manifest_path(artifact_path: Path) -> Path:
    """Sidecar manifest path for an artifact."""
    return artifact_path.with_name(artifact_path.name + MANIFEST_SUFFIX)


def generate_manifest(
    artifact: ArtifactInfo,
    package_stamp: str | None = None,
    components: dict[str, Any] | None = None,
    extra_metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Generate a build manifest for an artifact.

    Args:
        artifact: The produced artifact.
        package_stamp: Stamp of the image package list.
        components: Per-component build details.
        extra_metadata: Optional additional metadata.

    Returns:
        Manifest dictionary suitable for JSON serialization.
    """
    manifest: dict[str, Any] = {
        "version": "1.0",
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "artifact": asdict(artifact),
    }
    if package_stamp:
        manifest["package_stamp"] = package_stamp
    if components:
        manifest["components"] = components
    if extra_metadata:
        manifest["metadata"] = extra_metadata
    return manifest


def write_manifest(manifest: dict[str, Any], output_path: Path) -> Path:
    """Write manifest to a JSON file.

    Returns:
        Path to written manifest file.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2, sort_keys=True)
    logger.debug("Wrote manifest to %s", output_path)
    return output_path


__all__ = [
    "HASH_CHUNK_SIZE",
    "ISO_SUFFIX",
    "MANIFEST_SUFFIX",
    "artifact_pattern",
    "compute_file_hash",
    "describe_artifact",
    "find_artifact",
    "find_artifacts",
    "format_size",
    "generate_manifest",
    "manifest_path",
    "purge_old_artifacts",
    "write_manifest",
]
