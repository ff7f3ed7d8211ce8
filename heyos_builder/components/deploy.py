"""Deployment of built binaries into the airootfs overlay.

This module handles:
- Copying component binaries into ``airootfs/usr/bin``
- Writing the greetd configuration for the selected boot target
- Fixing permissions on overlay scripts mkarchiso copies verbatim
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import TYPE_CHECKING

from heyos_builder.buildlog import log_ok
from heyos_builder.components.schema import ComponentSpec
from heyos_builder.errors import BuildError
from heyos_builder.types import BuildSelection, ComponentRole

if TYPE_CHECKING:
    from heyos_builder.components.scheduler import UnitBuildResult
    from heyos_builder.context import PipelineContext

logger = logging.getLogger(__name__)

BINARY_MODE = 0o755
CAGE_PREFIX = "env WLR_RENDERER=pixman WLR_NO_HARDWARE_CURSORS=1 cage -s --"

# (relative path, mode, required)
OVERLAY_PERMISSIONS: tuple[tuple[str, int, bool], ...] = (
    ("usr/local/bin/hey-install", 0o755, True),
    ("root/customize_airootfs.sh", 0o755, True),
    ("etc/sudoers.d/00-heyos", 0o440, False),
)


class DeployError(BuildError):
    """Raised when binaries cannot be placed into the overlay."""

    def __init__(self, message: str, code: str = "deploy_error") -> None:
        super().__init__(message, code=code)


def stage_file(source: Path, dest: Path, mode: int | None = None) -> None:
    """Copy a single file into the overlay.

    Args:
        source: Path to source file.
        dest: Destination path in the overlay.
        mode: Optional file mode.

    Raises:
        DeployError: If copying fails.
    """
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, dest)
        if mode is not None:
            dest.chmod(mode)
    except OSError as e:
        raise DeployError(
            f"Failed to deploy {source} -> {dest}: {e}",
            code="file_stage_error",
        ) from e


def _binary_for(specs: list[ComponentSpec], role: ComponentRole, default: str) -> str:
    for spec in specs:
        if spec.role is role:
            return spec.binary
    return default


def render_greetd_config(
    selection: BuildSelection,
    specs: list[ComponentSpec],
    user: str = "hey",
) -> str:
    """Render greetd's config.toml for the boot target of a selection.

    Full and greeter-only images start the greeter; heydm-only images start
    the compositor directly.
    """
    greeter = _binary_for(specs, ComponentRole.GREETER, "hey-greeter")
    compositor = _binary_for(specs, ComponentRole.COMPOSITOR, "heydm")

    if selection is BuildSelection.HEYDM_ONLY:
        command = f"{CAGE_PREFIX} env WLR_RENDERER=pixman /usr/bin/{compositor}"
    else:
        command = f"{CAGE_PREFIX} /usr/bin/{greeter}"

    return (
        "[terminal]\n"
        "vt = 1\n"
        "[default_session]\n"
        f'command = "{command}"\n'
        f'user = "{user}"\n'
    )


def deploy_binaries(
    ctx: PipelineContext,
    results: list[UnitBuildResult],
) -> list[Path]:
    """Copy built binaries into the overlay and configure the boot target.

    Args:
        ctx: Pipeline context.
        results: Successful build results for every selected component.

    Returns:
        Deployed binary paths.

    Raises:
        DeployError: If a binary cannot be deployed.
    """
    bin_dir = ctx.airootfs / "usr" / "bin"
    greetd_dir = ctx.airootfs / "etc" / "greetd"
    try:
        for sub in (bin_dir, ctx.airootfs / "usr" / "local" / "bin", greetd_dir):
            sub.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise DeployError(f"Cannot prepare overlay directories: {e}") from e

    deployed: list[Path] = []
    for result in results:
        dest = bin_dir / result.binary.name
        stage_file(result.binary, dest, BINARY_MODE)
        deployed.append(dest)
        logger.info("Deployed %s -> %s", result.unit, dest)

    selection = ctx.options.selection
    logger.info("Configuring boot target: %s", selection.value)
    config_path = greetd_dir / "config.toml"
    try:
        config_path.write_text(render_greetd_config(selection, ctx.components))
    except OSError as e:
        raise DeployError(f"Cannot write {config_path}: {e}", code="greetd_config") from e

    log_ok(logger, "Binaries deployed and boot configured")
    return deployed


def set_overlay_permissions(ctx: PipelineContext) -> None:
    """Apply the file modes mkarchiso needs on overlay scripts.

    Raises:
        DeployError: If a required file is missing or cannot be changed.
    """
    for rel_path, mode, required in OVERLAY_PERMISSIONS:
        path = ctx.airootfs / rel_path
        try:
            path.chmod(mode)
        except OSError as e:
            if required:
                raise DeployError(
                    f"Cannot set mode {mode:o} on {path}: {e}",
                    code="permission_error",
                ) from e
            logger.warning("Skipping permissions for %s: %s", rel_path, e)
    log_ok(logger, "Permissions set")


__all__ = [
    "BINARY_MODE",
    "DeployError",
    "OVERLAY_PERMISSIONS",
    "deploy_binaries",
    "render_greetd_config",
    "set_overlay_permissions",
    "stage_file",
]
