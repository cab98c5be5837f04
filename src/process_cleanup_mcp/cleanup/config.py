"""Cleanup configuration.

Both name lists are comma separated strings, trimmed, with empty values
treated as absent:
- additional_processes: literal process names or regular expressions
- windows_services: regular expressions for service names
"""

from __future__ import annotations

import locale
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

from .state import ConfigurationError

ENV_PREFIX: Final[str] = "PROCESS_CLEANUP_"

DEFAULT_GRACE_PERIOD: Final[float] = 5.0

_TRUE_VALUES: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})


def fix_empty_and_trim(value: str | None) -> str | None:
    """Trim a string, mapping empty results to None."""
    if value is None:
        return None
    value = value.strip()
    return value or None


def split_list(value: str | None) -> list[str]:
    """Split a comma separated list, dropping blank items."""
    if value is None:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def compile_name_pattern(pattern: str) -> re.Pattern[str]:
    """Compile a case-insensitive name pattern.

    Values that are not valid regular expressions are matched literally.
    """
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error:
        return re.compile(re.escape(pattern), re.IGNORECASE)


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in _TRUE_VALUES


@dataclass
class CleanupConfig:
    """Configuration consumed by the cleanup hooks."""

    additional_processes: str | None = None
    windows_services: str | None = None
    disabled: bool = False
    diagnostics: bool = False
    grace_period: float = DEFAULT_GRACE_PERIOD
    tool_root: str | None = None
    handle_source: str | None = None
    encoding: str | None = None

    def __post_init__(self) -> None:
        """Normalize values and validate service patterns."""
        self.additional_processes = fix_empty_and_trim(self.additional_processes)
        self.windows_services = fix_empty_and_trim(self.windows_services)
        self.tool_root = fix_empty_and_trim(self.tool_root)
        self.handle_source = fix_empty_and_trim(self.handle_source)
        self.encoding = fix_empty_and_trim(self.encoding)

        if self.grace_period < 0:
            raise ConfigurationError(f"Grace period must not be negative: {self.grace_period}")

        self._service_patterns: list[re.Pattern[str]] = []
        for item in split_list(self.windows_services):
            try:
                self._service_patterns.append(re.compile(item, re.IGNORECASE))
            except re.error as e:
                raise ConfigurationError(f"Invalid service pattern '{item}': {e}") from e

        self._process_patterns = [
            compile_name_pattern(item) for item in split_list(self.additional_processes)
        ]

    @property
    def process_patterns(self) -> list[re.Pattern[str]]:
        """Compiled additional process name patterns."""
        return list(self._process_patterns)

    @property
    def service_patterns(self) -> list[re.Pattern[str]]:
        """Compiled service name patterns."""
        return list(self._service_patterns)

    @property
    def resolved_tool_root(self) -> Path:
        """Directory where handle.exe is installed."""
        if self.tool_root:
            return Path(self.tool_root)
        return Path.home() / ".process-cleanup"

    @property
    def resolved_encoding(self) -> str:
        """Encoding used to decode console output of the external tools."""
        return self.encoding or locale.getpreferredencoding(False)

    @classmethod
    def from_env(cls, **overrides: Any) -> CleanupConfig:
        """Build configuration from PROCESS_CLEANUP_* environment variables.

        Keyword overrides that are not None take precedence over the environment.
        """
        grace = os.environ.get(f"{ENV_PREFIX}GRACE_PERIOD")
        try:
            grace_period = float(grace) if grace else DEFAULT_GRACE_PERIOD
        except ValueError as e:
            raise ConfigurationError(f"Invalid {ENV_PREFIX}GRACE_PERIOD: {grace}") from e

        values: dict[str, Any] = {
            "additional_processes": os.environ.get(f"{ENV_PREFIX}ADDITIONAL_PROCESSES"),
            "windows_services": os.environ.get(f"{ENV_PREFIX}WINDOWS_SERVICES"),
            "disabled": _env_flag(f"{ENV_PREFIX}DISABLED"),
            "diagnostics": _env_flag(f"{ENV_PREFIX}DIAGNOSTICS"),
            "grace_period": grace_period,
            "tool_root": os.environ.get(f"{ENV_PREFIX}TOOL_ROOT"),
            "handle_source": os.environ.get(f"{ENV_PREFIX}HANDLE_SOURCE"),
            "encoding": os.environ.get(f"{ENV_PREFIX}ENCODING"),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "additionalProcesses": split_list(self.additional_processes),
            "windowsServices": split_list(self.windows_services),
            "disabled": self.disabled,
            "diagnostics": self.diagnostics,
            "gracePeriod": self.grace_period,
            "toolRoot": str(self.resolved_tool_root),
            "handleSource": self.handle_source,
            "encoding": self.resolved_encoding,
        }
