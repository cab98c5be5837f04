"""External process invocation.

Discovery and termination only talk to the outside world through a
``ProcessRunner``, so tests can substitute scripted output for real tools.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

from .state import ToolLaunchError

logger = logging.getLogger(__name__)


@dataclass
class ProcessOutput:
    """Exit code and decoded, trimmed stdout lines of a finished process."""

    exit_code: int
    lines: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.exit_code == 0


class ProcessRunner(Protocol):
    """Capability to run an external command to completion."""

    async def run(self, command: str, args: Sequence[str] = ()) -> ProcessOutput:
        """Run ``command`` with ``args`` and wait for it to exit."""
        ...


class SubprocessRunner:
    """Runs commands with asyncio subprocesses.

    stderr is merged into stdout. Output is drained completely before the
    call returns; no timeout is applied.
    """

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding

    async def run(self, command: str, args: Sequence[str] = ()) -> ProcessOutput:
        """Run a command and capture its output.

        Args:
            command: Executable name or path
            args: Command-line arguments

        Returns:
            Process exit code and output lines

        Raises:
            ToolLaunchError: If the process cannot be started or read
        """
        cmd = [command, *args]
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            # Never use shell=True
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
            stdout, _ = await process.communicate()
        except OSError as e:
            raise ToolLaunchError(f"Failed to run {command}: {e}", cmd) from e

        text = stdout.decode(self.encoding, errors="replace") if stdout else ""
        lines = [line.strip() for line in text.splitlines()]
        return ProcessOutput(exit_code=process.returncode or 0, lines=lines)
