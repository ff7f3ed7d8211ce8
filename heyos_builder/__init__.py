"""heyOS Builder - incremental build orchestration for the heyOS live ISO.

This package compiles the heyOS Rust components, caches the offline
installer's packages, and drives mkarchiso to assemble the final image
while skipping work that has not changed since the previous run.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
