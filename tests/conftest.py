"""Pytest fixtures for process-cleanup-mcp tests."""

import ntpath
import os
import sys

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from process_cleanup_mcp.cleanup.runner import ProcessOutput  # noqa: E402


class FakeRunner:
    """Scripted ProcessRunner that records every invocation.

    Responses are looked up by "<tool> <first arg>" first, then by "<tool>".
    A response may be a ProcessOutput or an exception to raise.
    """

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []

    async def run(self, command, args=()):
        args = list(args)
        self.calls.append([command, *args])
        tool = ntpath.basename(command)
        key = f"{tool} {args[0]}" if args else tool
        response = self.responses.get(key, self.responses.get(tool, ProcessOutput(0, [])))
        if isinstance(response, BaseException):
            raise response
        return response

    @property
    def tools(self):
        """Base names of the invoked commands, in order."""
        return [ntpath.basename(call[0]) for call in self.calls]

    def calls_to(self, tool):
        return [call for call in self.calls if ntpath.basename(call[0]) == tool]


@pytest.fixture
def make_runner():
    """Factory for scripted runners."""
    return FakeRunner


@pytest.fixture
def handle_output():
    """Sample handle.exe output for a locked workspace."""
    return ProcessOutput(
        0,
        [
            "",
            "Nthandle v5.0 - Handle viewer",
            "Copyright (C) 1997-2022 Mark Russinovich",
            "Sysinternals - www.sysinternals.com",
            "",
            "app.exe            pid: 1234   type: File           1C4: C:\\ws\\bin\\app.dll",
            "other.exe pid: 5678 type: File  2A0: C:\\ws\\obj\\cache",
        ],
    )


@pytest.fixture
def tasklist_output():
    """Sample tasklist output."""
    return ProcessOutput(
        0,
        [
            "",
            "Image Name                     PID Session Name        Session#    Mem Usage",
            "========================= ======== ================ =========== ============",
            "System Idle Process              0 Services                   0          8 K",
            "notepad.exe                   4321 Console                    1     12,345 K",
            "MSBuild.exe                   2468 Console                    1     98,765 K",
            "explorer.exe                  1357 Console                    1     45,678 K",
        ],
    )


@pytest.fixture
def services_output():
    """Sample sc queryex output."""
    return ProcessOutput(
        0,
        [
            "SERVICE_NAME: BuildAgentCache",
            "DISPLAY_NAME: Build Agent Cache",
            "        TYPE               : 10  WIN32_OWN_PROCESS",
            "        STATE              : 4  RUNNING",
            "        PID                : 2200",
            "",
            "SERVICE_NAME: wuauserv",
            "DISPLAY_NAME: Windows Update",
            "        PID                : 1100",
        ],
    )
