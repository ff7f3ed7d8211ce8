"""Loading component declarations.

The workspace may carry a ``components.yaml`` overriding the built-in
component list; without one, DEFAULT_COMPONENTS is used.
"""

from pathlib import Path
from typing import Any

import yaml

from heyos_builder.components.schema import (
    DEFAULT_COMPONENTS,
    ComponentsFileSchema,
    ComponentSpec,
)

COMPONENTS_FILE = "components.yaml"


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the content is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


def load_components(workspace: Path) -> list[ComponentSpec]:
    """Return the component declarations for a workspace.

    Args:
        workspace: Workspace root.

    Returns:
        Declared components, in build order.

    Raises:
        pydantic.ValidationError: If components.yaml does not match the schema.
    """
    path = workspace / COMPONENTS_FILE
    if not path.is_file():
        return list(DEFAULT_COMPONENTS)
    return list(ComponentsFileSchema.model_validate(load_yaml(path)).components)


__all__ = ["COMPONENTS_FILE", "load_components", "load_yaml"]
