"""Component build scheduling.

This module handles:
- Selecting which components a run builds
- Mirroring each component's sources into its build cache directory
- Deciding staleness and running ``cargo build --release`` when needed
- Running several components concurrently with a split job budget

Each component builds in its own directory with its own TMPDIR and log
file, so concurrent builds share no mutable state.
"""

from __future__ import annotations

import concurrent.futures
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from heyos_builder.buildlog import log_ok
from heyos_builder.components.schema import ComponentSpec
from heyos_builder.components.staleness import (
    StalenessRecord,
    check_by_checksum,
    check_by_mtime,
    log_changes,
)
from heyos_builder.errors import BuildError
from heyos_builder.image.artifacts import format_size
from heyos_builder.process import CommandError, run_command
from heyos_builder.types import BuildSelection, ComponentRole, StalenessPolicy

if TYPE_CHECKING:
    from heyos_builder.context import PipelineContext

logger = logging.getLogger(__name__)

# Paths inside the build directory that the source sync must leave alone
BUILD_DIR_EXCLUDES = ["target/", "Cargo.lock"]


class ComponentBuildError(BuildError):
    """Raised when one or more components fail to build."""

    def __init__(
        self,
        units: list[str],
        message: str,
        code: str = "component_build_error",
    ) -> None:
        super().__init__(message, code=code)
        self.units = units


@dataclass
class UnitBuildResult:
    """Result of building (or reusing) one component.

    Attributes:
        unit: Component name.
        binary: Path of the binary.
        rebuilt: True if cargo ran.
        staleness: Staleness determination.
        size_bytes: Binary size.
        log_path: Per-component build log.
        duration: Seconds spent on the unit.
    """

    unit: str
    binary: Path
    rebuilt: bool
    staleness: StalenessRecord
    size_bytes: int
    log_path: Path
    duration: float = 0.0


def select_components(
    specs: list[ComponentSpec],
    selection: BuildSelection,
) -> list[ComponentSpec]:
    """Return the components a selection builds, in declaration order."""
    if selection is BuildSelection.GREETER_ONLY:
        return [s for s in specs if s.role is ComponentRole.GREETER]
    if selection is BuildSelection.HEYDM_ONLY:
        return [s for s in specs if s.role is ComponentRole.COMPOSITOR]
    return list(specs)


def jobs_per_unit(total_jobs: int, unit_count: int) -> int:
    """Split the parallelism budget between concurrent builds.

    A single build gets the whole budget. Concurrent builds each get half,
    leaving headroom so the host stays responsive.
    """
    if unit_count <= 1:
        return max(1, total_jobs)
    return max(1, total_jobs // 2)


def compose_source_sync(
    source_dir: Path,
    build_dir: Path,
    policy: StalenessPolicy,
) -> list[str]:
    """Compose the rsync command mirroring sources into the build directory.

    The checksum policy itemizes changes so the output can be inspected.
    """
    flags = "-aic" if policy is StalenessPolicy.CHECKSUM else "-a"
    cmd = ["rsync", flags, "--delete"]
    cmd.extend(f"--exclude={pattern}" for pattern in BUILD_DIR_EXCLUDES)
    cmd.append(f"{source_dir}/")
    cmd.append(f"{build_dir}/")
    return cmd


def unit_log_path(ctx: PipelineContext, spec: ComponentSpec) -> Path:
    return ctx.build_cache_dir / "logs" / f"{spec.name}.log"


def unit_scratch_dir(ctx: PipelineContext, spec: ComponentSpec) -> Path:
    return ctx.build_cache_dir / "tmp" / spec.name


def sync_sources(ctx: PipelineContext, spec: ComponentSpec, log_path: Path) -> str:
    """Mirror a component's sources into its build directory.

    Returns:
        Itemized rsync output (empty for the mtime policy).

    Raises:
        ComponentBuildError: If the sync fails.
    """
    source_dir = ctx.workspace / spec.source_dir
    cmd = compose_source_sync(
        source_dir,
        spec.build_dir(ctx.build_cache_dir),
        ctx.settings.staleness_policy,
    )
    try:
        result = run_command(cmd, log_path=log_path, capture=True)
    except CommandError as e:
        raise ComponentBuildError([spec.name], str(e), code="source_sync_failed") from e
    if not result.success:
        raise ComponentBuildError(
            [spec.name],
            f"Syncing {spec.display_name} sources failed with exit code {result.exit_code}",
            code="source_sync_failed",
        )
    return result.stdout or ""


def assess_staleness(
    ctx: PipelineContext,
    spec: ComponentSpec,
    itemized_output: str,
) -> StalenessRecord:
    """Apply the configured staleness policy to one component."""
    binary = spec.binary_path(ctx.build_cache_dir)
    if ctx.settings.staleness_policy is StalenessPolicy.CHECKSUM:
        record = check_by_checksum(spec.name, binary, itemized_output)
    else:
        record = check_by_mtime(spec.name, binary, ctx.workspace / spec.source_dir)
    if ctx.options.force_clean and not record.stale:
        record = StalenessRecord(
            spec.name, record.policy, True, "clean build requested", record.changes
        )
    return record


def build_unit(ctx: PipelineContext, spec: ComponentSpec, jobs: int) -> UnitBuildResult:
    """Build one component if its cached binary is stale.

    Args:
        ctx: Pipeline context.
        spec: Component to build.
        jobs: Parallel jobs cargo may use.

    Returns:
        UnitBuildResult.

    Raises:
        ComponentBuildError: If syncing or compiling fails, or if cargo
            reports success without producing the binary.
    """
    started = time.monotonic()
    source_dir = ctx.workspace / spec.source_dir
    build_dir = spec.build_dir(ctx.build_cache_dir)
    binary = spec.binary_path(ctx.build_cache_dir)
    log_path = unit_log_path(ctx, spec)
    scratch = unit_scratch_dir(ctx, spec)

    if not source_dir.is_dir():
        raise ComponentBuildError(
            [spec.name],
            f"Source directory not found for {spec.display_name}: {source_dir}",
            code="source_not_found",
        )

    try:
        build_dir.mkdir(parents=True, exist_ok=True)
        scratch.mkdir(parents=True, exist_ok=True)
        log_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ComponentBuildError(
            [spec.name], f"Cannot prepare build directory {build_dir}: {e}"
        ) from e

    logger.info("Syncing %s source...", spec.display_name)
    itemized = sync_sources(ctx, spec, log_path)
    record = assess_staleness(ctx, spec, itemized)

    if not record.stale:
        size = binary.stat().st_size
        logger.info(
            "%s unchanged - reusing cached binary (%s)",
            spec.display_name,
            format_size(size),
        )
        return UnitBuildResult(
            unit=spec.name,
            binary=binary,
            rebuilt=False,
            staleness=record,
            size_bytes=size,
            log_path=log_path,
            duration=time.monotonic() - started,
        )

    log_changes(record)
    # An old binary must not satisfy the post-build check
    binary.unlink(missing_ok=True)

    logger.info(
        "Running cargo build --release for %s (%d jobs, reason: %s)...",
        spec.display_name,
        jobs,
        record.reason,
    )
    cmd = ["cargo", "build", "--release", "--jobs", str(jobs)]
    try:
        result = run_command(
            cmd,
            cwd=build_dir,
            log_path=log_path,
            env_override={"TMPDIR": str(scratch)},
        )
    except CommandError as e:
        raise ComponentBuildError([spec.name], str(e), code="cargo_failed") from e

    if not result.success:
        raise ComponentBuildError(
            [spec.name],
            f"{spec.display_name} build failed with exit code {result.exit_code} "
            f"(see {log_path})",
            code="cargo_failed",
        )
    if not binary.is_file():
        raise ComponentBuildError(
            [spec.name],
            f"{spec.display_name} build failed - binary not found at {binary}",
            code="binary_missing",
        )

    size = binary.stat().st_size
    log_ok(logger, "%s compiled successfully (%s)", spec.display_name, format_size(size))
    return UnitBuildResult(
        unit=spec.name,
        binary=binary,
        rebuilt=True,
        staleness=record,
        size_bytes=size,
        log_path=log_path,
        duration=time.monotonic() - started,
    )


def build_components(
    ctx: PipelineContext,
    specs: list[ComponentSpec],
) -> list[UnitBuildResult]:
    """Build components, concurrently when more than one is requested.

    Every launched build runs to completion before this returns or raises,
    so no binary is deployed from a partially failed run.

    Args:
        ctx: Pipeline context.
        specs: Components to build.

    Returns:
        Results in the order of ``specs``.

    Raises:
        ComponentBuildError: Naming every component that failed.
    """
    if not specs:
        return []

    jobs = jobs_per_unit(ctx.settings.jobs, len(specs))
    if len(specs) == 1:
        return [build_unit(ctx, specs[0], jobs)]

    logger.info(
        "Building %d components in parallel (%d jobs each)",
        len(specs),
        jobs,
    )
    results: dict[str, UnitBuildResult] = {}
    failures: dict[str, BuildError | OSError] = {}

    with concurrent.futures.ThreadPoolExecutor(max_workers=len(specs)) as executor:
        futures = {executor.submit(build_unit, ctx, spec, jobs): spec for spec in specs}
        for future in concurrent.futures.as_completed(futures):
            spec = futures[future]
            try:
                results[spec.name] = future.result()
            except (BuildError, OSError) as e:
                logger.error("%s: %s", spec.display_name, e)
                failures[spec.name] = e

    if failures:
        failed = [s.name for s in specs if s.name in failures]
        details = "; ".join(str(failures[name]) for name in failed)
        raise ComponentBuildError(
            failed,
            f"Failed to build {', '.join(failed)}: {details}",
        )

    return [results[s.name] for s in specs]


__all__ = [
    "BUILD_DIR_EXCLUDES",
    "ComponentBuildError",
    "UnitBuildResult",
    "assess_staleness",
    "build_components",
    "build_unit",
    "compose_source_sync",
    "jobs_per_unit",
    "select_components",
    "sync_sources",
]
