"""Thin adapter over the pacman package manager.

Only three questions are ever asked of pacman: is a package installed,
install this set, and download this set into a cache directory. Answers
come from exit status; pacman's output only goes to the build log.
"""

from __future__ import annotations

import logging
from pathlib import Path

from heyos_builder.process import CommandResult, run_command

logger = logging.getLogger(__name__)

PACMAN = "pacman"


class Pacman:
    """pacman invocations with output appended to a log file."""

    def __init__(self, log_path: Path | None = None, executable: str = PACMAN) -> None:
        self.log_path = log_path
        self.executable = executable

    def is_installed(self, package: str) -> bool:
        """Return True if ``package`` is installed (``pacman -Q``)."""
        return run_command([self.executable, "-Q", package]).success

    def missing(self, packages: list[str]) -> list[str]:
        """Return the subset of ``packages`` that is not installed, in order."""
        return [p for p in packages if not self.is_installed(p)]

    def install(self, packages: list[str], refresh: bool = True) -> CommandResult:
        """Install ``packages`` in one batch, skipping up-to-date ones.

        Raises:
            CommandError: If pacman cannot be executed.
        """
        sync_flag = "-Sy" if refresh else "-S"
        cmd = [self.executable, sync_flag, "--needed", "--noconfirm", *packages]
        return run_command(cmd, log_path=self.log_path)

    def download(
        self,
        packages: list[str],
        cache_dir: Path,
        db_path: Path,
        refresh: bool = True,
    ) -> CommandResult:
        """Download ``packages`` and all their dependencies without installing.

        ``db_path`` should point at an empty database so pacman resolves the
        full dependency closure rather than only what the host lacks. With
        ``refresh=False`` the sync databases fetched by an earlier call are
        reused.

        Raises:
            CommandError: If pacman cannot be executed.
        """
        cmd = [
            self.executable,
            "-Syw" if refresh else "-Sw",
            "--cachedir",
            str(cache_dir),
            "--dbpath",
            str(db_path),
            "--noconfirm",
            *packages,
        ]
        return run_command(cmd, log_path=self.log_path)


__all__ = ["PACMAN", "Pacman"]
