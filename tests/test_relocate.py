"""Tests for relocate module.

The exec function is injected so relaunching never replaces the test
process; rsync is simulated by FakeHost.
"""

import os
import sys
from unittest.mock import MagicMock, patch

import pytest

from heyos_builder.config import BuildOptions
from heyos_builder.context import create_context
from heyos_builder.relocate import (
    BASE_EXCLUDES,
    ORIGIN_ENV_VAR,
    RelocationError,
    compose_sync_command,
    is_slow_storage,
    relaunch_args,
    relocate_if_needed,
    sync_excludes,
)


@pytest.fixture
def slow_ctx(tmp_path, settings, workspace_factory):
    """Context for a workspace under the configured slow prefix."""
    ws = workspace_factory(tmp_path / "slow" / "heyos")
    return create_context(ws, settings, BuildOptions(force_clean=True, heydm_only=True))


class TestIsSlowStorage:
    """Tests for is_slow_storage."""

    def test_under_prefix(self, tmp_path):
        """A path under a slow prefix should be slow."""
        slow = tmp_path / "mnt" / "c" / "heyos"
        slow.mkdir(parents=True)
        assert is_slow_storage(slow, [f"{tmp_path / 'mnt'}/"]) is True

    def test_prefix_itself(self, tmp_path):
        """The mount point itself counts as slow."""
        mnt = tmp_path / "mnt"
        mnt.mkdir()
        assert is_slow_storage(mnt, [f"{mnt}/"]) is True

    def test_similar_name_not_slow(self, tmp_path):
        """/mntx must not match /mnt/."""
        other = tmp_path / "mntx"
        other.mkdir()
        assert is_slow_storage(other, [f"{tmp_path / 'mnt'}/"]) is False


class TestSyncCommand:
    """Tests for sync command composition."""

    def test_checksum_sync(self, tmp_path):
        """Checksum mode should add -c and keep trailing slashes."""
        cmd = compose_sync_command(tmp_path / "a", tmp_path / "b", True, ["work/"])
        assert cmd[:3] == ["rsync", "-ac", "--delete"]
        assert "--exclude=work/" in cmd
        assert cmd[-2] == f"{tmp_path / 'a'}/"
        assert cmd[-1] == f"{tmp_path / 'b'}/"

    def test_plain_sync(self, tmp_path):
        """Without checksum only archive mode is used."""
        cmd = compose_sync_command(tmp_path / "a", tmp_path / "b", False, [])
        assert cmd[1] == "-a"

    def test_excludes_cover_component_targets(self, ctx):
        """Transient dirs and every component's target/ are excluded."""
        excludes = sync_excludes(ctx)
        for pattern in BASE_EXCLUDES:
            assert pattern in excludes
        assert "heydm/target/" in excludes
        assert "heygreeter/target/" in excludes

    def test_relaunch_args_forward_options(self, slow_ctx, tmp_path):
        """The relaunched process receives the original flags."""
        argv = relaunch_args(slow_ctx, tmp_path / "native")
        assert argv[:4] == [sys.executable, "-m", "heyos_builder", "build"]
        assert argv[argv.index("--workspace") + 1] == str(tmp_path / "native")
        assert "--clean" in argv
        assert "--heydm-only" in argv


class TestRelocateIfNeeded:
    """Tests for relocate_if_needed."""

    def test_native_storage_not_relocated(self, ctx, fake_host):
        """A workspace on native storage builds in place."""
        exec_fn = MagicMock()
        decision = relocate_if_needed(ctx, exec_fn=exec_fn)

        assert decision.relocated is False
        exec_fn.assert_not_called()
        assert fake_host.commands("rsync") == []

    def test_disabled(self, slow_ctx, fake_host):
        """Relocation can be switched off."""
        slow_ctx.settings.relocate = False
        exec_fn = MagicMock()
        decision = relocate_if_needed(slow_ctx, exec_fn=exec_fn)

        assert decision.relocated is False
        assert decision.reason == "relocation disabled"
        exec_fn.assert_not_called()

    def test_slow_storage_syncs_and_relaunches(self, slow_ctx, fake_host, monkeypatch, tmp_path):
        """A slow workspace is mirrored and the build re-executed natively."""
        monkeypatch.chdir(tmp_path)
        (slow_ctx.workspace / "work").mkdir()
        (slow_ctx.workspace / "work" / "base._make_packages").touch()
        (slow_ctx.workspace / "heydm" / "target").mkdir()
        exec_fn = MagicMock()

        with patch("heyos_builder.relocate.shutil.which", return_value="/usr/bin/rsync"):
            decision = relocate_if_needed(slow_ctx, exec_fn=exec_fn)

        native = slow_ctx.settings.native_build_dir
        assert decision.relocated is True
        assert decision.target == native
        assert (native / "profiledef.sh").is_file()
        assert (native / "heydm" / "src" / "main.rs").is_file()
        assert not (native / "work").exists()
        assert not (native / "heydm" / "target").exists()
        assert os.getcwd() == os.path.realpath(tmp_path)

        exec_fn.assert_called_once()
        path, argv, env = exec_fn.call_args[0]
        assert path == sys.executable
        assert argv == decision.argv
        assert env[ORIGIN_ENV_VAR] == str(slow_ctx.workspace)

    def test_default_relaunch_changes_into_native_copy(
        self, slow_ctx, fake_host, monkeypatch, tmp_path
    ):
        """Without an injected exec function the process moves to the copy first."""
        monkeypatch.chdir(tmp_path)

        with patch("heyos_builder.relocate.shutil.which", return_value="/usr/bin/rsync"), patch(
            "heyos_builder.relocate.os.execve"
        ) as execve:
            decision = relocate_if_needed(slow_ctx)

        assert os.getcwd() == os.path.realpath(slow_ctx.settings.native_build_dir)
        execve.assert_called_once()
        assert execve.call_args[0][1] == decision.argv

    def test_already_relocated_never_relocates_again(
        self, tmp_path, settings, fake_host, workspace_factory
    ):
        """A relaunched process must not loop back into relocation."""
        ws = workspace_factory(tmp_path / "slow" / "heyos")
        native = workspace_factory(settings.native_build_dir)
        settings.origin_workspace = ws
        ctx = create_context(native, settings)
        exec_fn = MagicMock()

        decision = relocate_if_needed(ctx, exec_fn=exec_fn)

        assert ctx.relocated is True
        assert decision.relocated is False
        exec_fn.assert_not_called()

    def test_sync_failure_is_fatal(self, slow_ctx, monkeypatch, tmp_path):
        """Nothing is relaunched from a partial mirror."""
        monkeypatch.chdir(tmp_path)
        exec_fn = MagicMock()
        failed = MagicMock(success=False, exit_code=23)

        with (
            patch("heyos_builder.relocate.shutil.which", return_value="/usr/bin/rsync"),
            patch("heyos_builder.relocate.run_command", return_value=failed),
        ):
            with pytest.raises(RelocationError) as exc_info:
                relocate_if_needed(slow_ctx, exec_fn=exec_fn)

        assert exc_info.value.code == "sync_error"
        exec_fn.assert_not_called()

    def test_missing_rsync_is_installed(self, slow_ctx, fake_host, monkeypatch, tmp_path):
        """rsync is installed on demand before mirroring."""
        monkeypatch.chdir(tmp_path)

        with patch("heyos_builder.relocate.shutil.which", return_value=None):
            relocate_if_needed(slow_ctx, exec_fn=MagicMock())

        installs = [c for c in fake_host.commands("pacman") if c[1] == "-S"]
        assert installs == [["pacman", "-S", "--needed", "--noconfirm", "rsync"]]
