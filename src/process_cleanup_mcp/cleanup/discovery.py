"""Discovery of processes that lock a working directory.

Sources, run strictly one after another:
1. Optional service stop (sc queryex, sc failure, net stop)
2. Lock holders reported by handle.exe
3. Processes with configured names reported by tasklist
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from pathlib import Path

from .parsers import HandleOutputParser, ServiceListParser, TaskListParser
from .runner import ProcessRunner

logger = logging.getLogger(__name__)

HANDLE_EXE = "handle.exe"


class DiscoveryOrchestrator:
    """Builds the candidate set of processes to terminate.

    Usage:
        orchestrator = DiscoveryOrchestrator(runner, tool_root)
        pids = await orchestrator.discover(workspace, names, services)
    """

    def __init__(
        self,
        runner: ProcessRunner,
        tool_root: str | Path,
        echo: Callable[[str], None] | None = None,
    ):
        self._runner = runner
        self._handle_exe = str(Path(tool_root) / HANDLE_EXE)
        self._echo = echo
        self.stopped_services: list[str] = []

    def _echo_kwargs(self) -> dict:
        if self._echo is None:
            return {}
        return {"echo": self._echo}

    async def discover(
        self,
        work_directory: str,
        extra_names: Sequence[re.Pattern[str]] = (),
        service_patterns: Sequence[re.Pattern[str]] = (),
    ) -> set[str]:
        """Discover processes holding locks in ``work_directory``.

        Args:
            work_directory: Directory tree to scan for lock holders
            extra_names: Process name patterns to kill regardless of locks
            service_patterns: Service name patterns to stop first

        Returns:
            Union of process ids from all sources
        """
        if service_patterns:
            await self.stop_services(service_patterns)

        pids: set[str] = set()
        pids |= await self.find_lock_holders(work_directory)
        if extra_names:
            pids |= await self.find_named_processes(extra_names)
        return pids

    async def stop_services(self, patterns: Sequence[re.Pattern[str]]) -> list[str]:
        """Stop running services whose names match any pattern.

        Failure actions are reset first so the service manager doesn't
        restart a service after it is stopped. Stop failures are logged only
        and the service is not recorded in ``stopped_services``.

        Returns:
            Names of the services a stop was requested for
        """
        parser = ServiceListParser(patterns)
        try:
            output = await self._runner.run("sc", ["queryex"])
        except Exception:
            logger.exception("Could not query services")
            return []
        services = sorted(parser.parse(output.lines))

        for service in services:
            logger.info(f"[process-cleanup] stopping service {service}")
            try:
                await self._runner.run(
                    "sc", ["failure", service, "actions=", "", "reset=", "0"]
                )
                result = await self._runner.run("net", ["stop", service])
            except Exception as e:
                logger.warning(f"Failed to stop service {service}: {e}")
                continue
            for line in result.lines:
                if line:
                    logger.info(line)
            if not result.success:
                logger.warning(f"net stop {service} exited with {result.exit_code}")
                continue
            self.stopped_services.append(service)

        return services

    async def find_lock_holders(self, work_directory: str) -> set[str]:
        """Run handle.exe against the directory and collect lock holder PIDs."""
        parser = HandleOutputParser(**self._echo_kwargs())
        try:
            output = await self._runner.run(
                self._handle_exe, ["-accepteula", work_directory]
            )
        except Exception:
            logger.exception(f"Could not enumerate handles in {work_directory}")
            return set()
        return parser.parse(output.lines)

    async def find_named_processes(self, names: Sequence[re.Pattern[str]]) -> set[str]:
        """Run tasklist and collect PIDs of processes with configured names."""
        parser = TaskListParser(names, **self._echo_kwargs())
        try:
            output = await self._runner.run("tasklist")
        except Exception:
            logger.exception("Could not list processes")
            return set()
        return parser.parse(output.lines)
