"""Relocation of the workspace off slow storage.

Building from a foreign-OS mount (e.g. a Windows drive under /mnt in WSL)
is very slow for cargo and mkarchiso. When the workspace lives on such a
mount, it is mirrored to a native directory and the whole pipeline is
re-executed from there. The relaunched process carries the original
location in HEYOS_BUILD_ORIGIN_WORKSPACE so the finalizer can move the
ISO back, and so it never relocates a second time.
"""

from __future__ import annotations

import logging
import os
import shutil
import sys
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from heyos_builder.buildlog import log_ok
from heyos_builder.config import ENV_PREFIX
from heyos_builder.errors import BuildError
from heyos_builder.host.pacman import Pacman
from heyos_builder.process import CommandError, run_command

if TYPE_CHECKING:
    from heyos_builder.context import PipelineContext

logger = logging.getLogger(__name__)

ORIGIN_ENV_VAR = f"{ENV_PREFIX}ORIGIN_WORKSPACE"

# Transient state that is never mirrored
BASE_EXCLUDES = ["work/", "out/", "pkg-cache/", ".git/"]

ExecFn = Callable[[str, list[str], dict[str, str]], None]


class RelocationError(BuildError):
    """Raised when the workspace cannot be mirrored to native storage."""

    def __init__(self, message: str, code: str = "relocation_error") -> None:
        super().__init__(message, code=code)


@dataclass
class RelocationDecision:
    """Outcome of the relocation check.

    Attributes:
        relocated: True if the pipeline was handed to a relaunched process.
        reason: Why relocation did or did not happen.
        target: Native workspace used, when relocated.
        argv: Arguments of the relaunched process, when relocated.
    """

    relocated: bool
    reason: str
    target: Path | None = None
    argv: list[str] | None = None


def is_slow_storage(path: Path, prefixes: list[str]) -> bool:
    """Return True if ``path`` lies under one of the slow mount prefixes.

    Args:
        path: Path to check.
        prefixes: Prefixes such as ``/mnt/``.

    Returns:
        True for slow storage.
    """
    resolved = path.resolve().as_posix().rstrip("/") + "/"
    return any(resolved.startswith(prefix) for prefix in prefixes)


def sync_excludes(ctx: PipelineContext) -> list[str]:
    """Return rsync exclude patterns for a workspace mirror."""
    excludes = list(BASE_EXCLUDES)
    for spec in ctx.components:
        pattern = f"{spec.source_dir}/target/"
        if pattern not in excludes:
            excludes.append(pattern)
    return excludes


def compose_sync_command(
    source: Path,
    dest: Path,
    checksum: bool,
    excludes: list[str],
) -> list[str]:
    """Compose the rsync command mirroring ``source`` into ``dest``.

    Unchanged files are left untouched in ``dest``. Checksum mode compares
    content instead of size and mtime, for sources whose timestamps cannot
    be trusted.

    Args:
        source: Source directory.
        dest: Destination directory.
        checksum: Compare by checksum rather than mtime.
        excludes: Patterns to skip (and to protect from deletion).

    Returns:
        Command as a list of strings.
    """
    flags = "-ac" if checksum else "-a"
    cmd = ["rsync", flags, "--delete"]
    cmd.extend(f"--exclude={pattern}" for pattern in excludes)
    # Trailing slashes copy the contents rather than the directory itself
    cmd.append(f"{source}/")
    cmd.append(f"{dest}/")
    return cmd


def relaunch_args(ctx: PipelineContext, target: Path) -> list[str]:
    """Arguments for re-running the pipeline from ``target``."""
    return [
        sys.executable,
        "-m",
        "heyos_builder",
        "build",
        "--workspace",
        str(target),
        *ctx.options.to_args(),
    ]


def _ensure_rsync(ctx: PipelineContext) -> None:
    if shutil.which("rsync"):
        return
    logger.info("rsync not found, installing it for relocation...")
    try:
        result = Pacman(log_path=ctx.log_path).install(["rsync"], refresh=False)
    except CommandError as e:
        logger.warning("Could not install rsync: %s", e)
        return
    if not result.success:
        logger.warning("pacman exited with %d installing rsync", result.exit_code)


def relocate_if_needed(
    ctx: PipelineContext,
    exec_fn: ExecFn | None = None,
) -> RelocationDecision:
    """Mirror the workspace to native storage and relaunch, if needed.

    On a real host ``exec_fn`` replaces the current process and this
    function does not return when relocation happens.

    Args:
        ctx: Pipeline context.
        exec_fn: Process replacement function (``os.execve`` signature).
            Without one, the process changes into the native copy and
            replaces itself with ``os.execve``.

    Returns:
        RelocationDecision describing what happened.

    Raises:
        RelocationError: If mirroring fails; nothing is built from a
            partial copy.
    """
    if ctx.relocated:
        return RelocationDecision(
            relocated=False,
            reason=f"already relocated from {ctx.origin_workspace}",
        )
    if not ctx.settings.relocate:
        return RelocationDecision(relocated=False, reason="relocation disabled")
    if not is_slow_storage(ctx.workspace, ctx.settings.slow_mount_prefixes):
        return RelocationDecision(relocated=False, reason="workspace on native storage")

    target = ctx.settings.native_build_dir
    logger.info(
        "Detected slow mount (%s), copying to native filesystem %s...",
        ctx.workspace,
        target,
    )
    _ensure_rsync(ctx)

    try:
        target.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise RelocationError(
            f"Cannot create native build directory {target}: {e}",
            code="native_dir_error",
        ) from e

    cmd = compose_sync_command(
        ctx.workspace,
        target,
        checksum=ctx.settings.sync_checksum,
        excludes=sync_excludes(ctx),
    )
    try:
        result = run_command(cmd, log_path=ctx.log_path)
    except CommandError as e:
        raise RelocationError(str(e), code="sync_error") from e
    if not result.success:
        raise RelocationError(
            f"Workspace sync to {target} failed with exit code {result.exit_code}",
            code="sync_error",
        )
    log_ok(logger, "Project synced to %s", target)

    argv = relaunch_args(ctx, target)
    env = dict(os.environ)
    env[ORIGIN_ENV_VAR] = str(ctx.workspace)

    logger.info("Re-launching build from native filesystem...")
    for handler in logging.getLogger("heyos_builder").handlers:
        handler.flush()
    if exec_fn is None:
        os.chdir(target)
        exec_fn = os.execve
    exec_fn(argv[0], argv, env)

    return RelocationDecision(
        relocated=True,
        reason=f"workspace on slow storage ({ctx.workspace})",
        target=target,
        argv=argv,
    )


__all__ = [
    "BASE_EXCLUDES",
    "ORIGIN_ENV_VAR",
    "RelocationDecision",
    "RelocationError",
    "compose_sync_command",
    "is_slow_storage",
    "relaunch_args",
    "relocate_if_needed",
    "sync_excludes",
]
