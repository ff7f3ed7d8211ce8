"""Base exception types shared by all pipeline stages.

Each stage module defines its own subclass of BuildError with a specific
``code``; the pipeline wraps any of them into StageFailedError so the CLI
can report which stage stopped the run.
"""

from __future__ import annotations


class BuildError(Exception):
    """Base error for build pipeline operations."""

    def __init__(self, message: str, code: str = "build_error") -> None:
        super().__init__(message)
        self.code = code


class EnvironmentCheckError(BuildError):
    """Raised when the host cannot run the pipeline at all.

    Raised before any stage runs (missing privileges, missing tools).
    """

    def __init__(self, message: str, code: str = "environment_error") -> None:
        super().__init__(message, code=code)


class StageFailedError(BuildError):
    """Raised when a pipeline stage fails fatally."""

    def __init__(self, stage: str, cause: BuildError) -> None:
        super().__init__(f"Stage '{stage}' failed: {cause}", code=cause.code)
        self.stage = stage
        self.cause = cause


__all__ = ["BuildError", "EnvironmentCheckError", "StageFailedError"]
