"""Tests for component declarations (schema and components.yaml loading)."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from heyos_builder.components.io import COMPONENTS_FILE, load_components, load_yaml
from heyos_builder.components.schema import (
    DEFAULT_COMPONENTS,
    ComponentsFileSchema,
    ComponentSpec,
)
from heyos_builder.context import create_context
from heyos_builder.errors import EnvironmentCheckError
from heyos_builder.types import ComponentRole


class TestComponentSpec:
    """Tests for ComponentSpec."""

    def test_paths(self):
        """Build dir and binary path derive from the cache root."""
        spec = DEFAULT_COMPONENTS[1]
        cache = Path("/var/lib/heyos-cargo-build")
        assert spec.build_dir(cache) == cache / "heygreeter"
        assert spec.binary_path(cache) == cache / "heygreeter" / "target" / "release" / "hey-greeter"

    def test_defaults(self):
        """Both heyOS components are declared by default."""
        assert [c.name for c in DEFAULT_COMPONENTS] == ["heydm", "hey-greeter"]
        assert DEFAULT_COMPONENTS[0].role is ComponentRole.COMPOSITOR
        assert DEFAULT_COMPONENTS[1].role is ComponentRole.GREETER

    @pytest.mark.parametrize("bad", ["", "../etc", "a/b", "with space"])
    def test_rejects_path_like_values(self, bad):
        """Names and directories must be single path segments."""
        with pytest.raises(ValidationError):
            ComponentSpec(
                name="x",
                display_name="X",
                source_dir=bad,
                binary="x",
                role="greeter",
            )


class TestComponentsFileSchema:
    """Tests for ComponentsFileSchema."""

    def test_duplicate_names_rejected(self):
        """Component names must be unique."""
        entry = {
            "name": "heydm",
            "display_name": "heyDM",
            "source_dir": "heydm",
            "binary": "heydm",
            "role": "compositor",
        }
        other = dict(entry, source_dir="heydm2")
        with pytest.raises(ValidationError, match="names must be unique"):
            ComponentsFileSchema.model_validate({"components": [entry, other]})

    def test_empty_rejected(self):
        """At least one component is required."""
        with pytest.raises(ValidationError):
            ComponentsFileSchema.model_validate({"components": []})


class TestLoadComponents:
    """Tests for load_components."""

    def test_defaults_without_file(self, tmp_path):
        """Without components.yaml the defaults are used."""
        assert load_components(tmp_path) == list(DEFAULT_COMPONENTS)

    def test_file_overrides_defaults(self, tmp_path):
        """components.yaml replaces the default declarations."""
        (tmp_path / COMPONENTS_FILE).write_text(
            "components:\n"
            "  - name: heydm\n"
            "    display_name: heyDM\n"
            "    source_dir: compositor\n"
            "    binary: heydm\n"
            "    role: compositor\n"
        )
        components = load_components(tmp_path)
        assert len(components) == 1
        assert components[0].source_dir == "compositor"

    def test_invalid_file_raises(self, tmp_path):
        """A malformed declaration is a validation error."""
        (tmp_path / COMPONENTS_FILE).write_text("components:\n  - name: heydm\n")
        with pytest.raises(ValidationError):
            load_components(tmp_path)

    def test_load_yaml_rejects_lists(self, tmp_path):
        """The top level must be a mapping."""
        path = tmp_path / "x.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="mapping"):
            load_yaml(path)


class TestCreateContextComponents:
    """Tests for component loading errors surfaced by create_context."""

    def test_invalid_declaration_is_environment_error(self, workspace, settings):
        """A schema violation is reported without a traceback."""
        (workspace / COMPONENTS_FILE).write_text("components:\n  - name: heydm\n")
        with pytest.raises(EnvironmentCheckError) as exc_info:
            create_context(workspace, settings)
        assert exc_info.value.code == "invalid_components"
        assert COMPONENTS_FILE in str(exc_info.value)

    def test_unparseable_yaml_is_environment_error(self, workspace, settings):
        (workspace / COMPONENTS_FILE).write_text("components: [heydm\n")
        with pytest.raises(EnvironmentCheckError) as exc_info:
            create_context(workspace, settings)
        assert exc_info.value.code == "invalid_components"

    def test_log_path_at_origin(self, workspace, settings):
        """The build log always lives in the origin workspace."""
        settings.origin_workspace = workspace.parent / "origin"
        ctx = create_context(workspace, settings)
        assert ctx.log_path == (workspace.parent / "origin").resolve() / settings.log_file_name
