"""Process cleanup for Windows working directories.

Kills processes holding file locks inside a directory tree so it can be
deleted or renamed:
- handle.exe lock scan, tasklist name scan, optional service stop
- Own process excluded from the kill list
- Grace period, then one tree-inclusive taskkill batch
- No-op on Unix, never fails the surrounding work
"""

from .config import CleanupConfig
from .discovery import DiscoveryOrchestrator
from .identity import current_process_id, exclude_self, sort_pids
from .manager import CleanupManager
from .parsers import HandleOutputParser, LineParser, ServiceListParser, TaskListParser
from .provision import ToolProvisioner
from .runner import ProcessOutput, ProcessRunner, SubprocessRunner
from .state import (
    CleanupError,
    CleanupPhase,
    CleanupResult,
    CleanupState,
    ConfigurationError,
    ToolInstallError,
    ToolLaunchError,
)
from .termination import TerminationEngine

__all__ = [
    "CleanupConfig",
    "CleanupManager",
    "CleanupPhase",
    "CleanupResult",
    "CleanupState",
    "CleanupError",
    "ConfigurationError",
    "ToolInstallError",
    "ToolLaunchError",
    "DiscoveryOrchestrator",
    "TerminationEngine",
    "ToolProvisioner",
    "LineParser",
    "HandleOutputParser",
    "TaskListParser",
    "ServiceListParser",
    "ProcessOutput",
    "ProcessRunner",
    "SubprocessRunner",
    "current_process_id",
    "exclude_self",
    "sort_pids",
]
