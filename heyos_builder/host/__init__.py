"""Host environment preparation.

This module handles:
- Querying and installing host packages through pacman
- Configuring the Rust toolchain
"""

from heyos_builder.host.deps import (
    DependencyInstallError,
    DependencyReport,
    ensure_host_dependencies,
    ensure_rust_toolchain,
)
from heyos_builder.host.pacman import Pacman

__all__ = [
    "DependencyInstallError",
    "DependencyReport",
    "Pacman",
    "ensure_host_dependencies",
    "ensure_rust_toolchain",
]
