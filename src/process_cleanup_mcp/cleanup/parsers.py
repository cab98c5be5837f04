"""Line parsers for the output of the external enumeration tools.

Each parser full-matches one trimmed line at a time against a fixed pattern
and extracts a single field. Lines that don't match (headers, banners, blank
lines) are ignored.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from pathlib import PurePath
from typing import ClassVar

logger = logging.getLogger(__name__)

# handle.exe: "devenv.exe         pid: 1234   type: File    1C4: C:\work\foo.txt"
HANDLE_PID_PATTERN = re.compile(r"(?P<image>\S+)\W+pid: (?P<pid>\d+).*")

# tasklist: "notepad.exe                   1234 Console      1     12,345 K"
TASKLIST_PID_PATTERN = re.compile(r"(?P<image>\S+)\s+(?P<pid>\d+)(?:\s.*)?")

# sc queryex: "SERVICE_NAME: wuauserv"
SERVICE_NAME_PATTERN = re.compile(r"SERVICE_NAME:\s+(?P<name>\S+)")


def _log_line(line: str) -> None:
    logger.info(line)


class LineParser(ABC):
    """Base class for line-oriented tool output parsers.

    Subclasses set ``pattern`` and implement ``extract``. Extracted values
    accumulate in ``values``; accepted lines are echoed to ``echo`` when set.
    """

    pattern: ClassVar[re.Pattern[str]]

    def __init__(self, echo: Callable[[str], None] | None = None):
        self.echo = echo
        self.values: set[str] = set()

    @abstractmethod
    def extract(self, match: re.Match[str]) -> str | None:
        """Return the value carried by a matching line, or None to reject it."""

    def feed(self, line: str) -> str | None:
        """Classify one decoded line.

        Args:
            line: Line of tool output (trimmed before matching)

        Returns:
            Extracted value, or None if the line is not of interest
        """
        line = line.strip()
        match = self.pattern.fullmatch(line)
        if match is None:
            return None
        value = self.extract(match)
        if value is None:
            return None
        self.values.add(value)
        if self.echo is not None:
            self.echo(line)
        return value

    def parse(self, lines: Iterable[str]) -> set[str]:
        """Feed every line and return the accumulated values."""
        for line in lines:
            self.feed(line)
        return set(self.values)


class HandleOutputParser(LineParser):
    """Extracts PIDs of lock holders from ``handle.exe`` output."""

    pattern = HANDLE_PID_PATTERN

    def __init__(self, echo: Callable[[str], None] | None = _log_line):
        super().__init__(echo)

    def extract(self, match: re.Match[str]) -> str | None:
        return match.group("pid")


def name_matches(name: str, patterns: Iterable[re.Pattern[str]]) -> bool:
    """Check a process image name against name patterns.

    A pattern matches if it full-matches the lower-cased image name or the
    image name without its extension (``notepad`` matches ``notepad.exe``).
    """
    name = name.lower()
    stem = PurePath(name).stem
    return any(p.fullmatch(name) or p.fullmatch(stem) for p in patterns)


class TaskListParser(LineParser):
    """Extracts PIDs of processes with configured names from ``tasklist`` output."""

    pattern = TASKLIST_PID_PATTERN

    def __init__(
        self,
        names: Iterable[re.Pattern[str]],
        echo: Callable[[str], None] | None = _log_line,
    ):
        super().__init__(echo)
        self.names = list(names)

    def extract(self, match: re.Match[str]) -> str | None:
        if not self.names:
            return None
        if name_matches(match.group("image"), self.names):
            return match.group("pid")
        return None


class ServiceListParser(LineParser):
    """Extracts service names matching configured patterns from ``sc queryex`` output."""

    pattern = SERVICE_NAME_PATTERN

    def __init__(
        self,
        patterns: Iterable[re.Pattern[str]],
        echo: Callable[[str], None] | None = None,
    ):
        super().__init__(echo)
        self.patterns = list(patterns)

    def extract(self, match: re.Match[str]) -> str | None:
        name = match.group("name")
        if any(p.fullmatch(name) for p in self.patterns):
            return name
        return None
