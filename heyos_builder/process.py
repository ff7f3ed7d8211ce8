"""Subprocess execution for external collaborators.

This module handles:
- Running pacman, rsync, cargo and mkarchiso commands
- Appending their output to a log file instead of the console
- Returning explicit CommandResult values (exit status, timings)

Callers decide success from the exit status and from file existence
checks, never from the human-readable output of the tools.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from heyos_builder.errors import BuildError

logger = logging.getLogger(__name__)


class CommandError(BuildError):
    """Raised when a command cannot be started at all."""

    def __init__(self, message: str, code: str = "command_error") -> None:
        super().__init__(message, code=code)


@dataclass
class CommandResult:
    """Result of a command execution.

    Attributes:
        command: The command that was executed (shell-quoted).
        exit_code: Process exit code.
        started_at: Start time.
        finished_at: Finish time.
        log_path: Log file the output was appended to, if any.
        stdout: Captured standard output when capture was requested.
    """

    command: str
    exit_code: int
    started_at: datetime
    finished_at: datetime
    log_path: Path | None = None
    stdout: str | None = None

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def duration(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


def run_command(
    cmd: list[str],
    cwd: Path | None = None,
    log_path: Path | None = None,
    env_override: dict[str, str] | None = None,
    capture: bool = False,
) -> CommandResult:
    """Run a command to completion.

    Output is appended to ``log_path`` when given and discarded otherwise.
    With ``capture`` set, stdout is returned in the result instead (stderr
    still goes to the log). There is no timeout: a stuck tool blocks until
    it exits or the operator interrupts the build.

    Args:
        cmd: Command as a list of strings.
        cwd: Working directory.
        log_path: Log file to append output to.
        env_override: Environment variables layered over os.environ.
        capture: Capture stdout as text.

    Returns:
        CommandResult for the finished process.

    Raises:
        CommandError: If the command cannot be executed.
    """
    cmd_str = shlex.join(cmd)
    logger.debug("Executing: %s", cmd_str)

    env: dict[str, str] | None = None
    if env_override:
        env = dict(os.environ)
        env.update(env_override)

    started_at = datetime.now(timezone.utc)
    try:
        if log_path is not None:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            with log_path.open("a") as log_file:
                log_file.write(f"# Command: {cmd_str}\n")
                log_file.flush()
                result = subprocess.run(
                    cmd,
                    cwd=cwd,
                    stdout=subprocess.PIPE if capture else log_file,
                    stderr=log_file if capture else subprocess.STDOUT,
                    text=capture,
                    env=env,
                    check=False,
                )
        else:
            result = subprocess.run(
                cmd,
                cwd=cwd,
                stdout=subprocess.PIPE if capture else subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                text=capture,
                env=env,
                check=False,
            )
    except OSError as e:
        raise CommandError(
            f"Failed to execute {cmd[0]}: {e}",
            code="execution_error",
        ) from e

    finished_at = datetime.now(timezone.utc)
    if result.returncode != 0:
        logger.debug("Command exited with %d: %s", result.returncode, cmd_str)

    return CommandResult(
        command=cmd_str,
        exit_code=result.returncode,
        started_at=started_at,
        finished_at=finished_at,
        log_path=log_path,
        stdout=result.stdout if capture else None,
    )


__all__ = ["CommandError", "CommandResult", "run_command"]
