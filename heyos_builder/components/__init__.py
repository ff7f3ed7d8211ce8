"""Component build units.

This module handles:
- Component declarations (built-in or components.yaml)
- Staleness detection (checksum or mtime policy)
- Scheduling of concurrent cargo builds
- Deployment of binaries into the overlay
"""

from heyos_builder.components.schema import DEFAULT_COMPONENTS, ComponentSpec

__all__ = ["DEFAULT_COMPONENTS", "ComponentSpec"]

# Submodules importing the pipeline context are loaded on demand:
# heyos_builder.components.scheduler, heyos_builder.components.deploy
