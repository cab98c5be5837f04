"""Cleanup manager - the before/after work hooks.

Provides:
- Platform guard and explicit disable flag
- handle.exe provisioning
- Discovery → self exclusion → termination
- Best-effort error policy: hooks never fail the surrounding work
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from .config import CleanupConfig
from .discovery import DiscoveryOrchestrator
from .identity import current_process_id, exclude_self, sort_pids
from .provision import ToolProvisioner
from .runner import ProcessRunner, SubprocessRunner
from .state import CleanupPhase, CleanupResult, CleanupState, ToolInstallError
from .termination import TerminationEngine

logger = logging.getLogger(__name__)


class CleanupManager:
    """Runs process cleanup for a working directory.

    Only one cleanup runs at a time per manager; each invocation creates its
    own parsers and candidate set.

    Usage:
        manager = CleanupManager(CleanupConfig(additional_processes="msbuild"))
        result = await manager.before_work("C:/ws/project")
    """

    def __init__(
        self,
        config: CleanupConfig | None = None,
        runner: ProcessRunner | None = None,
        provisioner: ToolProvisioner | None = None,
        process_id: Callable[[], str] = current_process_id,
    ):
        self._config = config or CleanupConfig()
        self._runner = runner or SubprocessRunner(self._config.resolved_encoding)
        self._provisioner = provisioner or ToolProvisioner(self._config.handle_source)
        self._process_id = process_id
        self._lock = asyncio.Lock()
        self._state = CleanupState.IDLE
        self._state_listeners: list[Callable[[CleanupState], None]] = []
        self._results: dict[str, CleanupResult] = {}

    @property
    def config(self) -> CleanupConfig:
        """Active configuration."""
        return self._config

    @property
    def state(self) -> CleanupState:
        """State of the current or last invocation."""
        return self._state

    def on_state_change(self, listener: Callable[[CleanupState], None]) -> None:
        """Register state change listener."""
        self._state_listeners.append(listener)

    def _set_state(self, new_state: CleanupState) -> None:
        """Update state and notify listeners."""
        old_state = self._state
        self._state = new_state
        if old_state != new_state:
            logger.debug(f"Cleanup state: {old_state.value} -> {new_state.value}")
            for listener in self._state_listeners:
                try:
                    listener(new_state)
                except Exception:
                    logger.exception("State listener error")

    def _normalize_path(self, path: str) -> str:
        """Normalize path for consistent key lookup."""
        return os.path.normcase(os.path.normpath(os.path.abspath(path)))

    def last_result(self, work_directory: str) -> CleanupResult | None:
        """Last cleanup result for a working directory."""
        return self._results.get(self._normalize_path(work_directory))

    def all_results(self) -> dict[str, CleanupResult]:
        """Last cleanup result of every working directory."""
        return dict(self._results)

    async def before_work(
        self,
        work_directory: str,
        *,
        platform_is_unix: bool | None = None,
        tool_root: str | Path | None = None,
    ) -> CleanupResult:
        """Clean up lock holders before the working directory is used."""
        return await self.run(CleanupPhase.BEFORE, work_directory, platform_is_unix, tool_root)

    async def after_work(
        self,
        work_directory: str,
        *,
        platform_is_unix: bool | None = None,
        tool_root: str | Path | None = None,
    ) -> CleanupResult:
        """Clean up lock holders after work in the directory completes."""
        return await self.run(CleanupPhase.AFTER, work_directory, platform_is_unix, tool_root)

    async def run(
        self,
        phase: CleanupPhase,
        work_directory: str,
        platform_is_unix: bool | None = None,
        tool_root: str | Path | None = None,
    ) -> CleanupResult:
        """Run one cleanup invocation.

        Never raises except on cancellation; failures end up in the result
        and the log.

        Args:
            phase: Lifecycle point being served
            work_directory: Directory tree that must be free of locks
            platform_is_unix: Skip cleanup on Unix (detected when None)
            tool_root: Where handle.exe lives (config default when None)

        Returns:
            Cleanup result
        """
        async with self._lock:
            self._state = CleanupState.IDLE
            start_time = time.perf_counter()
            result = CleanupResult(phase=phase, workspace=work_directory)

            reason = self._skip_reason(work_directory, platform_is_unix)
            if reason:
                return self._skip(result, reason, start_time)

            try:
                root = Path(tool_root) if tool_root else self._config.resolved_tool_root
                try:
                    self._provisioner.ensure_installed(root)
                except (ToolInstallError, OSError) as e:
                    logger.exception("Could not install handle.exe")
                    result.errors.append(str(e))
                    return self._skip(result, "tool-install-failed", start_time)

                await self._clean(result, work_directory, root)
                state = CleanupState.DONE
            except (asyncio.CancelledError, KeyboardInterrupt):
                self._set_state(CleanupState.IDLE)
                raise
            except Exception as e:
                logger.exception("cleanup failed")
                result.errors.append(f"{type(e).__name__}: {e}")
                state = CleanupState.FAILED

            return self._finish(result, state, start_time)

    def _skip_reason(self, work_directory: str, platform_is_unix: bool | None) -> str | None:
        """Why cleanup is a no-op here, or None when it should run."""
        if platform_is_unix is None:
            platform_is_unix = os.name != "nt"
        if self._config.disabled:
            return "disabled"
        if platform_is_unix:
            return "unix"
        if not work_directory:
            return "no-workspace"
        return None

    async def _clean(self, result: CleanupResult, work_directory: str, root: Path) -> None:
        """Discover, filter and terminate."""
        self._set_state(CleanupState.DISCOVERING)
        orchestrator = DiscoveryOrchestrator(self._runner, root)
        try:
            result.discovered = await orchestrator.discover(
                work_directory,
                self._config.process_patterns,
                self._config.service_patterns,
            )
        finally:
            result.stopped_services = list(orchestrator.stopped_services)

        self._set_state(CleanupState.FILTERING)
        self_id = self._process_id()
        result.self_pid = self_id
        candidates = exclude_self(result.discovered, self_id)

        engine = TerminationEngine(
            self._runner,
            grace_period=self._config.grace_period,
            diagnostics=self._config.diagnostics,
            on_state=self._set_state,
        )
        result.killed = await engine.terminate(candidates, self_id)

    async def find_lock_holders(
        self,
        work_directory: str,
        tool_root: str | Path | None = None,
        platform_is_unix: bool | None = None,
    ) -> dict[str, Any]:
        """Report processes that cleanup would kill, without killing them.

        Services are not stopped. Requires handle.exe to be installable.
        Where cleanup would be a no-op the report is empty and carries
        ``skipReason``.
        """
        self_id = self._process_id()
        report: dict[str, Any] = {
            "workspace": work_directory,
            "lockHolders": [],
            "namedProcesses": [],
            "candidates": [],
            "selfPid": self_id,
        }
        reason = self._skip_reason(work_directory, platform_is_unix)
        if reason:
            report["skipReason"] = reason
            return report

        root = Path(tool_root) if tool_root else self._config.resolved_tool_root
        async with self._lock:
            self._provisioner.ensure_installed(root)
            orchestrator = DiscoveryOrchestrator(self._runner, root)
            lock_holders = await orchestrator.find_lock_holders(work_directory)
            named: set[str] = set()
            if self._config.process_patterns:
                named = await orchestrator.find_named_processes(self._config.process_patterns)

        report["lockHolders"] = sort_pids(lock_holders)
        report["namedProcesses"] = sort_pids(named)
        report["candidates"] = sort_pids(exclude_self(lock_holders | named, self_id))
        return report

    def _skip(self, result: CleanupResult, reason: str, start_time: float) -> CleanupResult:
        logger.info(f"[process-cleanup] skipping {result.phase.value} cleanup: {reason}")
        result.skip_reason = reason
        return self._finish(result, CleanupState.SKIPPED, start_time)

    def _finish(
        self, result: CleanupResult, state: CleanupState, start_time: float
    ) -> CleanupResult:
        result.state = state
        result.duration_ms = (time.perf_counter() - start_time) * 1000
        self._set_state(state)
        if result.workspace:
            self._results[self._normalize_path(result.workspace)] = result
        return result
