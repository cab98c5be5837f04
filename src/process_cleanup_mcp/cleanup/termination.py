"""Forceful termination of the discovered lock holders."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable

from .config import DEFAULT_GRACE_PERIOD
from .identity import sort_pids
from .runner import ProcessRunner
from .state import CleanupState

logger = logging.getLogger(__name__)


def build_taskkill_args(pids: Iterable[str]) -> list[str]:
    """Arguments for one tree-inclusive force kill of all ``pids``."""
    args = ["/F", "/T"]
    for pid in pids:
        args.extend(["/PID", pid])
    return args


class TerminationEngine:
    """Kills candidate processes in a single taskkill batch.

    Sequence for a non-empty candidate set:
    REPORTING (optional wmic report) → WAITING (grace period) → KILLING
    """

    def __init__(
        self,
        runner: ProcessRunner,
        grace_period: float = DEFAULT_GRACE_PERIOD,
        diagnostics: bool = False,
        on_state: Callable[[CleanupState], None] | None = None,
    ):
        self._runner = runner
        self._grace_period = grace_period
        self._diagnostics = diagnostics
        self._on_state = on_state

    def _set_state(self, state: CleanupState) -> None:
        if self._on_state is not None:
            self._on_state(state)

    async def terminate(self, candidates: Iterable[str], self_id: str | None = None) -> tuple[str, ...]:
        """Terminate all candidate processes.

        Kill failures are logged, never raised.

        Args:
            candidates: Process ids to kill (own process already excluded)
            self_id: Own process id, for the log line only

        Returns:
            Process ids included in the termination command
        """
        pids = tuple(sort_pids(set(candidates)))
        if not pids:
            logger.info("[process-cleanup] found no processes to kill")
            return ()

        logger.info(f"[process-cleanup] pids to kill: {list(pids)} (I'm {self_id})")

        if self._diagnostics:
            self._set_state(CleanupState.REPORTING)
            await self.report(pids)

        self._set_state(CleanupState.WAITING)
        logger.info(f"[process-cleanup] waiting {self._grace_period:g}s")
        await asyncio.sleep(self._grace_period)

        self._set_state(CleanupState.KILLING)
        try:
            result = await self._runner.run("taskkill.exe", build_taskkill_args(pids))
        except Exception:
            logger.exception("Could not clean up processes")
            return pids

        for line in result.lines:
            if line:
                logger.info(line)
        if not result.success:
            logger.warning(f"taskkill exited with {result.exit_code}")
        return pids

    async def report(self, pids: Iterable[str]) -> None:
        """Log parent PID and command line of each candidate."""
        for pid in pids:
            try:
                result = await self._runner.run(
                    "wmic",
                    [
                        "process",
                        "where",
                        f"processid={pid}",
                        "get",
                        "ProcessID,ParentProcessId,CommandLine",
                    ],
                )
            except Exception as e:
                logger.warning(f"Failed to query process {pid}: {e}")
                continue
            for line in result.lines:
                if line:
                    logger.info(line)
