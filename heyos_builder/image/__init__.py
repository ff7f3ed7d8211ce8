"""Image assembly module.

This module handles:
- The incremental mkarchiso work directory (stage markers, package stamp)
- Running mkarchiso
- Artifact discovery and manifest generation
- Moving the finished ISO back to the origin workspace
"""

from heyos_builder.types import ArtifactInfo, WorkDirState

__all__ = ["ArtifactInfo", "WorkDirState"]

# Submodules are imported directly:
# heyos_builder.image.workdir, .assemble, .artifacts, .finalize
