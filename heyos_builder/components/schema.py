"""Pydantic models for component declarations.

A component is one independently compiled Rust crate that produces a single
binary deployed into the image overlay.
"""

import re
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from heyos_builder.types import ComponentRole

NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_.\-]+$")


class ComponentSpec(BaseModel):
    """Schema for one component build unit.

    Attributes:
        name: Unique identifier, also used for scratch and log paths.
        display_name: Human-readable name for log lines.
        source_dir: Crate directory relative to the workspace.
        binary: Name of the binary cargo produces.
        role: What the binary does inside the image.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(description="Unique component identifier")
    display_name: str = Field(description="Human-readable name")
    source_dir: str = Field(description="Source directory relative to workspace")
    binary: str = Field(description="Binary produced in target/release")
    role: ComponentRole = Field(description="Role inside the image")

    @field_validator("name", "source_dir", "binary")
    @classmethod
    def validate_identifier(cls, v: str) -> str:
        """Reject empty values and anything that is not a plain path segment."""
        if not NAME_PATTERN.match(v):
            raise ValueError(f"must match {NAME_PATTERN.pattern}, got '{v}'")
        return v

    def build_dir(self, cache_root: Path) -> Path:
        """Directory the source is mirrored into and compiled in."""
        return cache_root / self.source_dir

    def binary_path(self, cache_root: Path) -> Path:
        """Expected path of the release binary after a build."""
        return self.build_dir(cache_root) / "target" / "release" / self.binary


class ComponentsFileSchema(BaseModel):
    """Schema for a components.yaml file."""

    model_config = ConfigDict(extra="forbid")

    components: list[ComponentSpec] = Field(min_length=1)

    @field_validator("components")
    @classmethod
    def validate_unique(cls, v: list[ComponentSpec]) -> list[ComponentSpec]:
        """Ensure names and source directories are unique."""
        names = [c.name for c in v]
        if len(names) != len(set(names)):
            raise ValueError("component names must be unique")
        dirs = [c.source_dir for c in v]
        if len(dirs) != len(set(dirs)):
            raise ValueError("component source directories must be unique")
        return v


DEFAULT_COMPONENTS: tuple[ComponentSpec, ...] = (
    ComponentSpec(
        name="heydm",
        display_name="heyDM (Wayland compositor)",
        source_dir="heydm",
        binary="heydm",
        role=ComponentRole.COMPOSITOR,
    ),
    ComponentSpec(
        name="hey-greeter",
        display_name="hey-greeter (Login Manager)",
        source_dir="heygreeter",
        binary="hey-greeter",
        role=ComponentRole.GREETER,
    ),
)

__all__ = ["DEFAULT_COMPONENTS", "ComponentSpec", "ComponentsFileSchema"]
