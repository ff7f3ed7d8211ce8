"""Pipeline context passed to every stage.

The context carries everything a stage needs (workspace paths, settings,
per-run options, declared components, build log location) so stages can
be tested in isolation with an injected context.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml
from pydantic import ValidationError

from heyos_builder.components.io import COMPONENTS_FILE, load_components
from heyos_builder.components.schema import ComponentSpec
from heyos_builder.config import BuildOptions, Settings
from heyos_builder.errors import EnvironmentCheckError


@dataclass
class PipelineContext:
    """State shared by the stages of one pipeline run.

    Attributes:
        workspace: Authoritative workspace for this process.
        origin_workspace: Where the operator started the build. Equal to
            workspace unless the run was relocated.
        settings: Effective settings.
        options: Per-run CLI options.
        components: Declared component build units.
        log_path: Shared build log file.
    """

    workspace: Path
    origin_workspace: Path
    settings: Settings
    options: BuildOptions = field(default_factory=BuildOptions)
    components: list[ComponentSpec] = field(default_factory=list)
    log_path: Path = field(init=False)

    def __post_init__(self) -> None:
        self.log_path = self.origin_workspace / self.settings.log_file_name

    @property
    def relocated(self) -> bool:
        """True when building away from the origin workspace."""
        return self.origin_workspace.resolve() != self.workspace.resolve()

    @property
    def airootfs(self) -> Path:
        return self.workspace / "airootfs"

    @property
    def work_dir(self) -> Path:
        return self.workspace / "work"

    @property
    def output_dir(self) -> Path:
        return self.workspace / "out"

    @property
    def origin_output_dir(self) -> Path:
        return self.origin_workspace / "out"

    @property
    def pkg_cache_dir(self) -> Path:
        return self.workspace / "pkg-cache"

    @property
    def packages_file(self) -> Path:
        return self.workspace / "packages.x86_64"

    @property
    def profiledef(self) -> Path:
        return self.workspace / "profiledef.sh"

    @property
    def installer_script(self) -> Path:
        return self.workspace / self.settings.installer_script

    @property
    def offline_package_dir(self) -> Path:
        return self.workspace / self.settings.offline_package_dir

    @property
    def build_cache_dir(self) -> Path:
        return self.settings.build_cache_dir


def create_context(
    workspace: Path,
    settings: Settings,
    options: BuildOptions | None = None,
) -> PipelineContext:
    """Create the context for a run rooted at ``workspace``.

    Args:
        workspace: Workspace root.
        settings: Effective settings; ``origin_workspace`` marks a relaunch.
        options: Per-run options.

    Returns:
        PipelineContext with components loaded from the workspace.

    Raises:
        EnvironmentCheckError: If components.yaml cannot be read or is invalid.
    """
    workspace = workspace.resolve()
    origin = settings.origin_workspace.resolve() if settings.origin_workspace else workspace
    try:
        components = load_components(workspace)
    except ValidationError as e:
        raise EnvironmentCheckError(
            f"Invalid {COMPONENTS_FILE}: {e.error_count()} validation error(s)\n{e}",
            code="invalid_components",
        ) from e
    except yaml.YAMLError as e:
        raise EnvironmentCheckError(
            f"Cannot parse {COMPONENTS_FILE}: {e}", code="invalid_components"
        ) from e
    except (OSError, ValueError) as e:
        raise EnvironmentCheckError(
            f"Cannot load {COMPONENTS_FILE}: {e}", code="invalid_components"
        ) from e
    return PipelineContext(
        workspace=workspace,
        origin_workspace=origin,
        settings=settings,
        options=options or BuildOptions(),
        components=components,
    )


__all__ = ["PipelineContext", "create_context"]
