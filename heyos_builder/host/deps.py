"""Host build dependency installation.

Queries pacman for each required host package and installs only the
missing subset in a single batch, then makes sure the stable Rust
toolchain is the rustup default.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from heyos_builder.buildlog import log_ok
from heyos_builder.errors import BuildError
from heyos_builder.host.pacman import Pacman
from heyos_builder.process import CommandError, run_command
from heyos_builder.types import InstallOutcome

if TYPE_CHECKING:
    from heyos_builder.context import PipelineContext

logger = logging.getLogger(__name__)


class DependencyInstallError(BuildError):
    """Raised when host dependencies cannot be installed."""

    def __init__(self, message: str, code: str = "dependency_install_error") -> None:
        super().__init__(message, code=code)


@dataclass
class DependencyReport:
    """Result of the host dependency check.

    Attributes:
        outcome: Whether anything had to be installed.
        missing: Packages found missing before installation.
        still_missing: Packages still reported absent afterwards.
    """

    outcome: InstallOutcome
    missing: list[str] = field(default_factory=list)
    still_missing: list[str] = field(default_factory=list)


def ensure_host_dependencies(
    ctx: PipelineContext,
    pacman: Pacman | None = None,
) -> DependencyReport:
    """Install whichever required host packages are missing.

    Args:
        ctx: Pipeline context.
        pacman: Package manager adapter (defaults to one logging to the
            build log).

    Returns:
        DependencyReport.

    Raises:
        DependencyInstallError: If the batch install fails.
    """
    if pacman is None:
        pacman = Pacman(log_path=ctx.log_path)

    required = ctx.settings.host_packages
    try:
        missing = pacman.missing(required)
    except CommandError as e:
        raise DependencyInstallError(str(e), code="query_failed") from e

    if not missing:
        log_ok(logger, "All %d build dependencies already installed", len(required))
        return DependencyReport(outcome=InstallOutcome.ALREADY_SATISFIED)

    logger.info("Installing %d missing package(s): %s", len(missing), " ".join(missing))
    try:
        result = pacman.install(missing)
    except CommandError as e:
        raise DependencyInstallError(str(e), code="install_failed") from e
    if not result.success:
        raise DependencyInstallError(
            f"pacman failed with exit code {result.exit_code} installing: "
            f"{' '.join(missing)}",
            code="install_failed",
        )

    # pacman can succeed while a name resolves to something else (groups, provides)
    still_missing = pacman.missing(missing)
    for pkg in still_missing:
        logger.warning("Package %s still not reported as installed", pkg)

    log_ok(logger, "Build dependencies installed")
    return DependencyReport(
        outcome=InstallOutcome.INSTALLED,
        missing=missing,
        still_missing=still_missing,
    )


def ensure_rust_toolchain(ctx: PipelineContext) -> str:
    """Make the stable toolchain the rustup default and report rustc's version.

    Returns:
        The ``rustc --version`` line, or ``"unknown"``.

    Raises:
        DependencyInstallError: If rustup cannot configure the toolchain.
    """
    logger.info("Ensuring Rust stable toolchain is configured...")
    try:
        result = run_command(["rustup", "default", "stable"], log_path=ctx.log_path)
    except CommandError as e:
        raise DependencyInstallError(str(e), code="rustup_failed") from e
    if not result.success:
        raise DependencyInstallError(
            f"rustup default stable failed with exit code {result.exit_code}",
            code="rustup_failed",
        )

    version = "unknown"
    try:
        version_result = run_command(["rustc", "--version"], capture=True)
        if version_result.success and version_result.stdout:
            version = version_result.stdout.strip()
    except CommandError:
        logger.debug("rustc not runnable for version check")
    log_ok(logger, "Rust: %s", version)
    return version


__all__ = [
    "DependencyInstallError",
    "DependencyReport",
    "ensure_host_dependencies",
    "ensure_rust_toolchain",
]
