"""Tests for the cleanup manager - before/after work hooks."""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from process_cleanup_mcp.cleanup.config import CleanupConfig
from process_cleanup_mcp.cleanup.manager import CleanupManager
from process_cleanup_mcp.cleanup.runner import ProcessOutput
from process_cleanup_mcp.cleanup.state import (
    CleanupPhase,
    CleanupState,
    ToolInstallError,
    ToolLaunchError,
)


@pytest.fixture
def provisioner(tmp_path):
    """Provisioner stub that never touches the file system."""
    stub = MagicMock()
    stub.ensure_installed = MagicMock(return_value=tmp_path / "handle.exe")
    return stub


@pytest.fixture
def no_sleep():
    with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        yield mock_sleep


def make_manager(runner, provisioner, tmp_path, self_pid="200", **config):
    config.setdefault("tool_root", str(tmp_path))
    return CleanupManager(
        CleanupConfig(**config),
        runner=runner,
        provisioner=provisioner,
        process_id=lambda: self_pid,
    )


class TestPlatformGuard:
    """Tests for no-op paths."""

    @pytest.mark.asyncio
    async def test_unix_is_noop(self, tmp_path, make_runner, provisioner):
        """Test no subprocess and no install happens on Unix."""
        runner = make_runner()
        manager = make_manager(runner, provisioner, tmp_path)

        before = await manager.before_work(str(tmp_path), platform_is_unix=True)
        after = await manager.after_work(str(tmp_path), platform_is_unix=True)

        assert runner.calls == []
        provisioner.ensure_installed.assert_not_called()
        assert before.state == CleanupState.SKIPPED
        assert after.skip_reason == "unix"

    @pytest.mark.asyncio
    async def test_platform_detected_when_not_given(self, tmp_path, make_runner, provisioner):
        """Test the platform is detected from os.name."""
        runner = make_runner()
        manager = make_manager(runner, provisioner, tmp_path)

        with patch("process_cleanup_mcp.cleanup.manager.os.name", "posix"):
            result = await manager.before_work(str(tmp_path))

        assert result.skip_reason == "unix"
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_disabled_is_noop(self, tmp_path, make_runner, provisioner):
        """Test the disabled flag bypasses all cleanup."""
        runner = make_runner()
        manager = make_manager(runner, provisioner, tmp_path, disabled=True)

        result = await manager.before_work(str(tmp_path), platform_is_unix=False)

        assert result.skip_reason == "disabled"
        assert runner.calls == []
        provisioner.ensure_installed.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_workspace(self, tmp_path, make_runner, provisioner):
        """Test an empty workspace path is skipped."""
        runner = make_runner()
        manager = make_manager(runner, provisioner, tmp_path)

        result = await manager.after_work("", platform_is_unix=False)

        assert result.skip_reason == "no-workspace"
        assert runner.calls == []


class TestCleanupRun:
    """Tests for the full cleanup procedure."""

    @pytest.mark.asyncio
    async def test_kills_discovered_except_self(
        self, tmp_path, make_runner, provisioner, no_sleep
    ):
        """Test own pid is excluded and the rest is killed in one batch."""
        handle = ProcessOutput(
            0,
            [
                "app.exe pid: 100 type: File 1C4: C:\\ws\\a",
                "python.exe pid: 200 type: File 1C8: C:\\ws\\b",
                "other.exe pid: 300 type: File 2A0: C:\\ws\\c",
            ],
        )
        runner = make_runner({"handle.exe": handle})
        manager = make_manager(runner, provisioner, tmp_path, self_pid="200")

        result = await manager.before_work("C:\\ws", platform_is_unix=False)

        assert result.state == CleanupState.DONE
        assert result.phase == CleanupPhase.BEFORE
        assert result.discovered == {"100", "200", "300"}
        assert result.killed == ("100", "300")
        assert result.self_pid == "200"
        assert runner.tools == ["handle.exe", "taskkill.exe"]
        assert runner.calls[-1] == ["taskkill.exe", "/F", "/T", "/PID", "100", "/PID", "300"]
        no_sleep.assert_awaited_once_with(5.0)

    @pytest.mark.asyncio
    async def test_installs_tool_into_tool_root(
        self, tmp_path, make_runner, provisioner, no_sleep
    ):
        """Test handle.exe is provisioned into the given tool root first."""
        runner = make_runner()
        manager = make_manager(runner, provisioner, tmp_path)

        await manager.after_work("C:\\ws", platform_is_unix=False, tool_root=tmp_path / "agent")

        provisioner.ensure_installed.assert_called_once_with(tmp_path / "agent")
        assert runner.calls[0][0] == str(tmp_path / "agent" / "handle.exe")

    @pytest.mark.asyncio
    async def test_nothing_found(self, tmp_path, make_runner, provisioner, no_sleep):
        """Test no kill and no wait when nothing locks the workspace."""
        runner = make_runner()
        manager = make_manager(runner, provisioner, tmp_path)

        result = await manager.before_work("C:\\ws", platform_is_unix=False)

        assert result.state == CleanupState.DONE
        assert result.killed == ()
        assert runner.tools == ["handle.exe"]
        no_sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_only_self_found(self, tmp_path, make_runner, provisioner, no_sleep):
        """Test the cleanup never kills its own process."""
        runner = make_runner({"handle.exe": ProcessOutput(0, ["python.exe pid: 200 type: File"])})
        manager = make_manager(runner, provisioner, tmp_path, self_pid="200")

        result = await manager.before_work("C:\\ws", platform_is_unix=False)

        assert result.killed == ()
        assert "taskkill.exe" not in runner.tools

    @pytest.mark.asyncio
    async def test_full_sequence_order(
        self, tmp_path, make_runner, provisioner, no_sleep, handle_output, tasklist_output, services_output
    ):
        """Test service stop, lock scan, name scan, kill run in order."""
        runner = make_runner(
            {
                "sc queryex": services_output,
                "handle.exe": handle_output,
                "tasklist": tasklist_output,
            }
        )
        manager = make_manager(
            runner,
            provisioner,
            tmp_path,
            additional_processes="notepad",
            windows_services="wuauserv",
        )

        result = await manager.after_work("C:\\ws", platform_is_unix=False)

        assert runner.tools == ["sc", "sc", "net", "handle.exe", "tasklist", "taskkill.exe"]
        assert result.stopped_services == ["wuauserv"]
        assert result.killed == ("1234", "4321", "5678")

    @pytest.mark.asyncio
    async def test_diagnostics_enabled(
        self, tmp_path, make_runner, provisioner, no_sleep, handle_output
    ):
        """Test the wmic report runs when diagnostics are enabled."""
        runner = make_runner({"handle.exe": handle_output})
        manager = make_manager(runner, provisioner, tmp_path, diagnostics=True, grace_period=0.5)

        await manager.before_work("C:\\ws", platform_is_unix=False)

        assert runner.tools == ["handle.exe", "wmic", "wmic", "taskkill.exe"]
        no_sleep.assert_awaited_once_with(0.5)

    @pytest.mark.asyncio
    async def test_lock_scan_failure_still_uses_names(
        self, tmp_path, make_runner, provisioner, no_sleep, tasklist_output
    ):
        """Test a failed lock scan doesn't stop the name scan."""
        runner = make_runner(
            {"handle.exe": ToolLaunchError("boom"), "tasklist": tasklist_output}
        )
        manager = make_manager(runner, provisioner, tmp_path, additional_processes="notepad")

        result = await manager.before_work("C:\\ws", platform_is_unix=False)

        assert result.state == CleanupState.DONE
        assert result.killed == ("4321",)


class TestErrorPolicy:
    """Tests for the best-effort error policy."""

    @pytest.mark.asyncio
    async def test_install_failure_skips_round(self, tmp_path, make_runner, provisioner):
        """Test an install failure abandons this round without raising."""
        provisioner.ensure_installed.side_effect = ToolInstallError("no handle.exe")
        runner = make_runner()
        manager = make_manager(runner, provisioner, tmp_path)

        result = await manager.before_work("C:\\ws", platform_is_unix=False)

        assert result.state == CleanupState.SKIPPED
        assert result.skip_reason == "tool-install-failed"
        assert result.errors == ["no handle.exe"]
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_access_denied_tool_root_skips_round(self, tmp_path, make_runner, provisioner):
        """Test an OS error while installing handle.exe is not raised."""
        provisioner.ensure_installed.side_effect = PermissionError(13, "Access is denied")
        runner = make_runner()
        manager = make_manager(runner, provisioner, tmp_path)

        result = await manager.before_work("C:\\ws", platform_is_unix=False)

        assert result.state == CleanupState.SKIPPED
        assert result.skip_reason == "tool-install-failed"
        assert "Access is denied" in result.errors[0]
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_unreadable_tool_root_with_real_provisioner(self, tmp_path, make_runner):
        """Test a tool root that can't be inspected doesn't escape the hook."""
        runner = make_runner()
        manager = CleanupManager(
            CleanupConfig(tool_root=str(tmp_path)),
            runner=runner,
            process_id=lambda: "200",
        )

        with patch.object(Path, "exists", side_effect=PermissionError(13, "Access is denied")):
            result = await manager.before_work("C:\\ws", platform_is_unix=False)

        assert result.state == CleanupState.SKIPPED
        assert result.skip_reason == "tool-install-failed"
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_unexpected_install_failure_is_caught(self, tmp_path, make_runner, provisioner):
        """Test non-OS errors during provisioning end in FAILED."""
        provisioner.ensure_installed.side_effect = RuntimeError("no home directory")
        manager = make_manager(make_runner(), provisioner, tmp_path)

        result = await manager.after_work("C:\\ws", platform_is_unix=False)

        assert result.state == CleanupState.FAILED
        assert result.errors == ["RuntimeError: no home directory"]

    @pytest.mark.asyncio
    async def test_unexpected_failure_is_caught(self, tmp_path, make_runner, provisioner):
        """Test unexpected errors end in FAILED instead of raising."""
        manager = CleanupManager(
            CleanupConfig(tool_root=str(tmp_path)),
            runner=make_runner(),
            provisioner=provisioner,
            process_id=MagicMock(side_effect=RuntimeError("no pid")),
        )

        result = await manager.before_work("C:\\ws", platform_is_unix=False)

        assert result.state == CleanupState.FAILED
        assert result.errors == ["RuntimeError: no pid"]

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, tmp_path, make_runner, provisioner, handle_output):
        """Test cancellation during the grace wait is re-raised."""
        runner = make_runner({"handle.exe": handle_output})
        manager = make_manager(runner, provisioner, tmp_path)

        with patch("asyncio.sleep", new_callable=AsyncMock, side_effect=asyncio.CancelledError()):
            with pytest.raises(asyncio.CancelledError):
                await manager.before_work("C:\\ws", platform_is_unix=False)

        assert "taskkill.exe" not in runner.tools
        assert manager.state == CleanupState.IDLE


class TestManagerState:
    """Tests for state tracking and results."""

    @pytest.mark.asyncio
    async def test_state_sequence(self, tmp_path, make_runner, provisioner, no_sleep, handle_output):
        """Test listeners see the documented state sequence."""
        runner = make_runner({"handle.exe": handle_output})
        manager = make_manager(runner, provisioner, tmp_path)
        listener = MagicMock()
        manager.on_state_change(listener)

        await manager.before_work("C:\\ws", platform_is_unix=False)

        assert [c.args[0] for c in listener.call_args_list] == [
            CleanupState.DISCOVERING,
            CleanupState.FILTERING,
            CleanupState.WAITING,
            CleanupState.KILLING,
            CleanupState.DONE,
        ]

    @pytest.mark.asyncio
    async def test_empty_state_sequence(self, tmp_path, make_runner, provisioner):
        """Test an empty candidate set goes straight to DONE."""
        manager = make_manager(make_runner(), provisioner, tmp_path)
        listener = MagicMock()
        manager.on_state_change(listener)

        await manager.before_work("C:\\ws", platform_is_unix=False)

        assert [c.args[0] for c in listener.call_args_list] == [
            CleanupState.DISCOVERING,
            CleanupState.FILTERING,
            CleanupState.DONE,
        ]

    @pytest.mark.asyncio
    async def test_listener_exception_doesnt_crash(self, tmp_path, make_runner, provisioner):
        """Test listener errors don't break cleanup."""
        manager = make_manager(make_runner(), provisioner, tmp_path)
        manager.on_state_change(MagicMock(side_effect=Exception("listener error")))

        result = await manager.before_work("C:\\ws", platform_is_unix=False)

        assert result.state == CleanupState.DONE

    @pytest.mark.asyncio
    async def test_last_result_per_workspace(self, tmp_path, make_runner, provisioner):
        """Test the last result is kept per workspace."""
        manager = make_manager(make_runner(), provisioner, tmp_path)

        first = await manager.before_work(str(tmp_path), platform_is_unix=True)
        second = await manager.after_work(str(tmp_path), platform_is_unix=True)

        assert manager.last_result(str(tmp_path)) is second
        assert manager.last_result(str(tmp_path)) is not first
        assert manager.last_result(str(tmp_path / "other")) is None
        assert len(manager.all_results()) == 1


class TestFindLockHolders:
    """Tests for the dry-run report."""

    @pytest.mark.asyncio
    async def test_reports_without_killing(
        self, tmp_path, make_runner, provisioner, handle_output, tasklist_output
    ):
        """Test no services are stopped and nothing is killed."""
        runner = make_runner({"handle.exe": handle_output, "tasklist": tasklist_output})
        manager = make_manager(
            runner,
            provisioner,
            tmp_path,
            self_pid="1234",
            additional_processes="notepad",
            windows_services=".*",
        )

        report = await manager.find_lock_holders("C:\\ws", platform_is_unix=False)

        assert runner.tools == ["handle.exe", "tasklist"]
        assert report["lockHolders"] == ["1234", "5678"]
        assert report["namedProcesses"] == ["4321"]
        assert report["candidates"] == ["4321", "5678"]
        assert report["selfPid"] == "1234"

    @pytest.mark.asyncio
    async def test_unix_dry_run_is_empty(self, tmp_path, make_runner, provisioner):
        """Test the dry run neither installs nor launches tools on Unix."""
        runner = make_runner()
        manager = make_manager(runner, provisioner, tmp_path, additional_processes="notepad")

        report = await manager.find_lock_holders("C:\\ws", platform_is_unix=True)

        assert runner.calls == []
        provisioner.ensure_installed.assert_not_called()
        assert report["skipReason"] == "unix"
        assert report["candidates"] == []

    @pytest.mark.asyncio
    async def test_disabled_dry_run_is_empty(self, tmp_path, make_runner, provisioner):
        """Test the dry run honours the disabled flag."""
        runner = make_runner()
        manager = make_manager(runner, provisioner, tmp_path, disabled=True)

        report = await manager.find_lock_holders("C:\\ws", platform_is_unix=False)

        assert runner.calls == []
        assert report["skipReason"] == "disabled"
        assert report["lockHolders"] == []

    @pytest.mark.asyncio
    async def test_dry_run_sorts_numerically(self, tmp_path, make_runner, provisioner):
        """Test report pids are in numeric order."""
        runner = make_runner(
            {
                "handle.exe": ProcessOutput(
                    0, ["a.exe pid: 1000 type: File", "b.exe pid: 200 type: File"]
                )
            }
        )
        manager = make_manager(runner, provisioner, tmp_path)

        report = await manager.find_lock_holders("C:\\ws", platform_is_unix=False)

        assert report["lockHolders"] == ["200", "1000"]
