"""Shared fixtures for heyos_builder tests.

FakeHost stands in for pacman, rustup, rsync, cargo and mkarchiso at the
``subprocess.run`` boundary, acting on the real temporary filesystem so
stages can be exercised end to end.
"""

import filecmp
import re
import shutil
import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from heyos_builder.config import BuildOptions, Settings
from heyos_builder.context import PipelineContext, create_context

HEY_INSTALL = """#!/bin/bash
set -e

install_system() {
    local PACKAGES=(
        base linux linux-firmware \\
        networkmanager   # network
        "greetd"
    )
    pacstrap /mnt "${PACKAGES[@]}"
}
"""

ISO_FILENAME = "heyOS-2026.10.19-x86_64.iso"
MKARCHISO_MARKERS = (
    "base._make_pacman_conf",
    "base._make_packages",
    "base._make_custom_airootfs",
    "iso._build_iso_image",
)
CARGO_NAME = re.compile(r'^name\s*=\s*"([^"]+)"', re.MULTILINE)


def write_crate(root: Path, name: str) -> None:
    """Create a minimal crate layout."""
    (root / "src").mkdir(parents=True, exist_ok=True)
    (root / "Cargo.toml").write_text(f'[package]\nname = "{name}"\nversion = "0.1.0"\n')
    (root / "src" / "main.rs").write_text('fn main() { println!("hey"); }\n')


def make_workspace(root: Path) -> Path:
    """Create an archiso profile workspace with both component crates."""
    root.mkdir(parents=True, exist_ok=True)
    (root / "profiledef.sh").write_text('#!/usr/bin/env bash\niso_name="heyOS"\n')
    (root / "packages.x86_64").write_text("base\nlinux\ngreetd\n")
    airootfs = root / "airootfs"
    installer = airootfs / "usr" / "local" / "bin" / "hey-install"
    installer.parent.mkdir(parents=True)
    installer.write_text(HEY_INSTALL)
    (airootfs / "root").mkdir(parents=True)
    (airootfs / "root" / "customize_airootfs.sh").write_text("#!/bin/bash\n")
    (airootfs / "etc" / "sudoers.d").mkdir(parents=True)
    (airootfs / "etc" / "sudoers.d" / "00-heyos").write_text("hey ALL=(ALL) ALL\n")
    write_crate(root / "heydm", "heydm")
    write_crate(root / "heygreeter", "hey-greeter")
    return root


class FakeHost:
    """Simulated external tools.

    Attributes:
        calls: Every command run, in order.
        installed: Packages pacman reports as installed (None means all).
        unavailable: Packages pacman cannot download.
        failing_crates: Build directory names whose cargo build fails.
        mkarchiso_exit: Exit code mkarchiso returns.
        stages_run: mkarchiso stages executed per invocation.
        cargo_runs: Build directory names cargo ran in.
    """

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.installed: set[str] | None = None
        self.unavailable: set[str] = set()
        self.failing_crates: set[str] = set()
        self.mkarchiso_exit = 0
        self.stages_run: list[list[str]] = []
        self.cargo_runs: list[str] = []

    def commands(self, tool: str) -> list[list[str]]:
        return [c for c in self.calls if c[0] == tool]

    def __call__(self, cmd, cwd=None, stdout=None, **kwargs):
        cmd = [str(c) for c in cmd]
        self.calls.append(cmd)
        capture = stdout is subprocess.PIPE
        tool = Path(cmd[0]).name
        handler = getattr(self, f"_{tool}", None)
        if handler is None:
            return subprocess.CompletedProcess(cmd, 0, stdout="" if capture else None)
        code, out = handler(cmd, Path(cwd) if cwd else None)
        return subprocess.CompletedProcess(cmd, code, stdout=out if capture else None)

    def _pacman(self, cmd, cwd):
        op = cmd[1]
        if op == "-Q":
            ok = self.installed is None or cmd[2] in self.installed
            return (0 if ok else 1), ""
        if op in ("-Syw", "-Sw"):
            cache_dir = Path(cmd[cmd.index("--cachedir") + 1])
            cache_dir.mkdir(parents=True, exist_ok=True)
            packages = cmd[cmd.index("--noconfirm") + 1 :]
            if any(p in self.unavailable for p in packages):
                return 1, ""
            for pkg in packages:
                (cache_dir / f"{pkg}-1.0-1-x86_64.pkg.tar.zst").write_bytes(pkg.encode())
            return 0, ""
        if op in ("-Sy", "-S"):
            if self.installed is not None:
                self.installed.update(cmd[cmd.index("--noconfirm") + 1 :])
            return 0, ""
        return 1, ""

    def _rustc(self, cmd, cwd):
        return 0, "rustc 1.80.0 (051478957 2024-07-21)\n"

    def _rsync(self, cmd, cwd):
        flags = cmd[1]
        excludes = [a.split("=", 1)[1].rstrip("/") for a in cmd if a.startswith("--exclude=")]
        src, dst = Path(cmd[-2]), Path(cmd[-1])
        checksum = "c" in flags
        lines: list[str] = []

        def excluded(rel: str) -> bool:
            return any(rel == p or rel.startswith(p + "/") for p in excludes)

        dst.mkdir(parents=True, exist_ok=True)
        for path in sorted(src.rglob("*")):
            rel = path.relative_to(src).as_posix()
            if excluded(rel):
                continue
            target = dst / rel
            if path.is_dir():
                target.mkdir(parents=True, exist_ok=True)
                continue
            if not target.exists():
                shutil.copy2(path, target)
                lines.append(f">f+++++++++ {rel}")
            elif not filecmp.cmp(path, target, shallow=not checksum):
                shutil.copy2(path, target)
                lines.append(f">fc.t...... {rel}")
        for path in sorted(dst.rglob("*"), reverse=True):
            rel = path.relative_to(dst).as_posix()
            if excluded(rel) or (src / rel).exists():
                continue
            if path.is_dir():
                shutil.rmtree(path)
            else:
                path.unlink()
            lines.append(f"*deleting   {rel}")
        return 0, "\n".join(lines) + ("\n" if lines else "")

    def _cargo(self, cmd, cwd):
        self.cargo_runs.append(cwd.name)
        if cwd.name in self.failing_crates:
            return 101, ""
        name = CARGO_NAME.search((cwd / "Cargo.toml").read_text()).group(1)
        binary = cwd / "target" / "release" / name
        binary.parent.mkdir(parents=True, exist_ok=True)
        binary.write_bytes(b"\x7fELF" + name.encode() + (cwd / "src" / "main.rs").read_bytes())
        return 0, ""

    def _mkarchiso(self, cmd, cwd):
        work = Path(cmd[cmd.index("-w") + 1])
        out = Path(cmd[cmd.index("-o") + 1])
        if self.mkarchiso_exit:
            return self.mkarchiso_exit, ""
        ran = []
        for marker in MKARCHISO_MARKERS:
            if not (work / marker).exists():
                ran.append(marker)
                (work / marker).touch()
        payload = work / "x86_64" / "airootfs"
        payload.mkdir(parents=True, exist_ok=True)
        (payload / "installed").write_text("packages")
        self.stages_run.append(ran)
        out.mkdir(parents=True, exist_ok=True)
        (out / ISO_FILENAME).write_bytes(b"ISO" * 1000)
        return 0, ""


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """Create an archiso profile workspace."""
    return make_workspace(tmp_path / "ws")


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Create settings pointing every cache into tmp_path."""
    return Settings(
        _env_file=None,
        build_cache_dir=tmp_path / "cargo-cache",
        native_build_dir=tmp_path / "native",
        slow_mount_prefixes=[f"{tmp_path / 'slow'}/"],
        require_root=False,
        jobs=8,
    )


@pytest.fixture
def ctx(workspace: Path, settings: Settings) -> PipelineContext:
    """Create a pipeline context for the workspace."""
    return create_context(workspace, settings, BuildOptions())


@pytest.fixture
def fake_host():
    """Patch subprocess.run with a FakeHost."""
    host = FakeHost()
    with patch("heyos_builder.process.subprocess.run", side_effect=host):
        yield host


@pytest.fixture
def workspace_factory():
    """Return a function creating workspaces at arbitrary paths."""
    return make_workspace
