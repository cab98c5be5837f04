"""Cleanup state machine, result and error types.

State machine for one cleanup invocation:
IDLE → DISCOVERING → FILTERING → DONE
                               ↘ REPORTING → WAITING → KILLING → DONE
IDLE → SKIPPED (disabled, unix platform, tool install failure)
any → FAILED (unexpected runtime failure)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .identity import sort_pids


class CleanupState(str, Enum):
    """Cleanup invocation state machine states."""

    IDLE = "idle"
    DISCOVERING = "discovering"
    FILTERING = "filtering"
    REPORTING = "reporting"
    WAITING = "waiting"
    KILLING = "killing"
    DONE = "done"
    SKIPPED = "skipped"
    FAILED = "failed"


class CleanupPhase(str, Enum):
    """Lifecycle point at which cleanup runs."""

    BEFORE = "before"
    AFTER = "after"


class CleanupError(Exception):
    """Base class for process cleanup errors."""


class ConfigurationError(CleanupError, ValueError):
    """Invalid cleanup configuration (e.g. a malformed service pattern)."""


class ToolLaunchError(CleanupError):
    """External utility could not be started or its output could not be read."""

    def __init__(self, message: str, command: list[str] | None = None):
        super().__init__(message)
        self.command = command or []


class ToolInstallError(CleanupError):
    """The bundled handle.exe could not be installed on this machine."""


@dataclass
class CleanupResult:
    """Outcome of one before/after cleanup invocation."""

    phase: CleanupPhase
    workspace: str
    state: CleanupState = CleanupState.IDLE
    self_pid: str | None = None
    discovered: set[str] = field(default_factory=set)
    killed: tuple[str, ...] = ()
    stopped_services: list[str] = field(default_factory=list)
    skip_reason: str | None = None
    errors: list[str] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def skipped(self) -> bool:
        """Whether the invocation was a no-op."""
        return self.state == CleanupState.SKIPPED

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {
            "phase": self.phase.value,
            "workspace": self.workspace,
            "state": self.state.value,
            "discovered": sort_pids(self.discovered),
            "killed": list(self.killed),
            "durationMs": round(self.duration_ms, 2),
        }
        if self.self_pid is not None:
            result["selfPid"] = self.self_pid
        if self.stopped_services:
            result["stoppedServices"] = list(self.stopped_services)
        if self.skip_reason:
            result["skipReason"] = self.skip_reason
        if self.errors:
            result["errors"] = list(self.errors)
        return result

    def to_summary(self) -> str:
        """Generate human-readable summary."""
        if self.state == CleanupState.SKIPPED:
            status = f"[SKIPPED] Cleanup skipped ({self.skip_reason})"
        elif self.state == CleanupState.FAILED:
            status = "[FAILED] Cleanup failed"
        elif self.killed:
            status = f"[OK] Killed {len(self.killed)} process(es)"
        else:
            status = "[OK] No processes to kill"

        parts = [
            status,
            f"  Phase: {self.phase.value}",
            f"  Workspace: {self.workspace}",
            f"  Duration: {self.duration_ms:.0f}ms",
        ]
        if self.stopped_services:
            parts.append(f"  Stopped services: {', '.join(self.stopped_services)}")
        if self.killed:
            parts.append(f"  PIDs: {' '.join(self.killed)}")
        for error in self.errors[:5]:
            parts.append(f"    {error}")
        return "\n".join(parts)
