"""Build pipeline orchestration.

Runs the stages strictly in order against one PipelineContext:

0. environment check
1. relocation (may replace this process)
2. clean (only with --clean)
3. host dependencies and Rust toolchain
4. component builds
5. binary deployment and overlay permissions
6. offline package cache
7. image assembly
8. finalization

Each stage runs inside ``stage()``, which logs a header, converts any
BuildError or OSError into StageFailedError naming the stage, and stops
the run.
"""

from __future__ import annotations

import logging
import os
import shutil
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from heyos_builder.buildlog import log_ok
from heyos_builder.components.deploy import deploy_binaries, set_overlay_permissions
from heyos_builder.components.scheduler import (
    UnitBuildResult,
    build_components,
    select_components,
)
from heyos_builder.errors import BuildError, EnvironmentCheckError, StageFailedError
from heyos_builder.host.deps import ensure_host_dependencies, ensure_rust_toolchain
from heyos_builder.host.pacman import PACMAN, Pacman
from heyos_builder.image.artifacts import format_size
from heyos_builder.image.assemble import AssemblyResult, assemble_image
from heyos_builder.image.finalize import FinalizeError, FinalizeResult, finalize_artifact
from heyos_builder.pkgcache.service import CacheReport, refresh_package_cache
from heyos_builder.relocate import ExecFn, RelocationDecision, relocate_if_needed

if TYPE_CHECKING:
    from heyos_builder.context import PipelineContext

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Outcome of a pipeline run.

    When ``relocation.relocated`` is True, the run was handed over to a
    relaunched process and no other field is populated.
    """

    relocation: RelocationDecision
    components: list[UnitBuildResult] = field(default_factory=list)
    cache: CacheReport | None = None
    assembly: AssemblyResult | None = None
    finalize: FinalizeResult | None = None
    elapsed: float = 0.0

    @property
    def relocated(self) -> bool:
        return self.relocation.relocated

    @property
    def artifact_path(self) -> Path | None:
        """Final location of the ISO."""
        if self.finalize is not None:
            return self.finalize.artifact_path
        if self.assembly is not None:
            return self.assembly.artifact_path
        return None


def check_environment(ctx: PipelineContext) -> None:
    """Verify the host can run the pipeline at all.

    Raises:
        EnvironmentCheckError: If not root (when required), pacman is not
            available, or the workspace is not an archiso profile.
    """
    if ctx.settings.require_root and os.geteuid() != 0:
        raise EnvironmentCheckError(
            "This build must run as root (try: sudo heyos-build build)",
            code="not_root",
        )
    if shutil.which(PACMAN) is None:
        raise EnvironmentCheckError(
            "pacman not found - the build requires an Arch Linux host",
            code="pacman_missing",
        )
    if not ctx.profiledef.is_file():
        raise EnvironmentCheckError(
            f"Not an archiso profile (no profiledef.sh): {ctx.workspace}",
            code="not_a_profile",
        )


@contextmanager
def stage(name: str, title: str) -> Iterator[None]:
    """Run a block as a named pipeline stage.

    Args:
        name: Short stage identifier reported on failure.
        title: Header written to the log.

    Raises:
        StageFailedError: Wrapping any BuildError or OSError raised by the
            block.
    """
    logger.info("====== %s ======", title)
    started = time.monotonic()
    try:
        yield
    except BuildError as e:
        logger.error("%s", e)
        raise StageFailedError(name, e) from e
    except OSError as e:
        logger.error("%s", e)
        raise StageFailedError(name, BuildError(str(e), code="io_error")) from e
    log_ok(logger, "%s done (%.1fs)", title, time.monotonic() - started)


def clean_caches(ctx: PipelineContext) -> list[Path]:
    """Wipe build caches, the work dir, the package cache and offline packages.

    Returns:
        Directories that were removed.

    Raises:
        BuildError: If a directory cannot be removed.
    """
    targets = [
        ctx.build_cache_dir,
        ctx.work_dir,
        ctx.pkg_cache_dir,
        ctx.offline_package_dir,
    ]
    removed: list[Path] = []
    for target in targets:
        if not target.exists():
            continue
        try:
            shutil.rmtree(target)
        except OSError as e:
            raise BuildError(f"Cannot remove {target}: {e}", code="clean_failed") from e
        removed.append(target)
        logger.info("Removed %s", target)
    return removed


def _component_summary(results: list[UnitBuildResult]) -> dict[str, Any]:
    return {
        r.unit: {
            "rebuilt": r.rebuilt,
            "reason": r.staleness.reason,
            "size_bytes": r.size_bytes,
        }
        for r in results
    }


def run_pipeline(
    ctx: PipelineContext,
    pacman: Pacman | None = None,
    exec_fn: ExecFn | None = None,
) -> PipelineResult:
    """Run the whole build.

    Args:
        ctx: Pipeline context.
        pacman: pacman adapter shared by the dependency and cache stages.
        exec_fn: Process replacement function used by relocation.

    Returns:
        PipelineResult.

    Raises:
        EnvironmentCheckError: If the host cannot run the build.
        StageFailedError: If any stage fails.
    """
    started = time.monotonic()
    check_environment(ctx)
    if pacman is None:
        pacman = Pacman(log_path=ctx.log_path)

    with stage("relocate", "Checking workspace location"):
        decision = relocate_if_needed(ctx, exec_fn=exec_fn)
    if decision.relocated:
        return PipelineResult(relocation=decision)
    logger.info("Workspace: %s (%s)", ctx.workspace, decision.reason)

    if ctx.options.force_clean:
        with stage("clean", "Clean build requested - wiping caches"):
            clean_caches(ctx)

    with stage("dependencies", "Step 1: Installing build dependencies"):
        ensure_host_dependencies(ctx, pacman)
        ensure_rust_toolchain(ctx)

    specs = select_components(ctx.components, ctx.options.selection)
    with stage("build", "Step 2: Compiling components"):
        results = build_components(ctx, specs)

    with stage("deploy", "Step 3: Deploying binaries"):
        deploy_binaries(ctx, results)
        set_overlay_permissions(ctx)

    with stage("packages", "Step 4: Caching offline installer packages"):
        cache = refresh_package_cache(ctx, pacman)

    with stage("assemble", "Step 5: Building ISO with mkarchiso"):
        assembly = assemble_image(
            ctx,
            package_stamp=cache.stamp,
            components=_component_summary(results),
        )

    with stage("finalize", "Step 6: Finalizing artifact"):
        final = finalize_artifact(ctx, assembly.artifact_path)
        if final.error is not None:
            raise FinalizeError(
                f"ISO could not be moved to {ctx.origin_output_dir}: {final.error}. "
                f"It remains at {final.artifact_path}",
                artifact_path=final.artifact_path,
            )

    elapsed = time.monotonic() - started
    minutes, seconds = divmod(int(elapsed), 60)
    log_ok(logger, "Build completed (%dm %ds)", minutes, seconds)
    logger.info(
        "ISO: %s (%s)",
        final.artifact_path,
        format_size(assembly.artifact.size_bytes),
    )
    logger.info("SHA-256: %s", assembly.artifact.sha256)

    return PipelineResult(
        relocation=decision,
        components=results,
        cache=cache,
        assembly=assembly,
        finalize=final,
        elapsed=elapsed,
    )


__all__ = [
    "PipelineResult",
    "check_environment",
    "clean_caches",
    "run_pipeline",
    "stage",
]
