"""Installation of handle.exe on the machine running the cleanup."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from .discovery import HANDLE_EXE
from .state import ToolInstallError

logger = logging.getLogger(__name__)


def bundled_handle_path() -> Path:
    """Default location of the bundled handle.exe inside the package."""
    return Path(__file__).resolve().parent.parent / "bin" / HANDLE_EXE


class ToolProvisioner:
    """Copies handle.exe into a tool root once.

    Concurrent callers are not synchronized; the worst case is a redundant copy.
    """

    def __init__(self, source: str | Path | None = None):
        self._source = Path(source) if source else None

    @property
    def source(self) -> Path:
        """Bundled binary copied on first use."""
        return self._source or bundled_handle_path()

    def ensure_installed(self, tool_root: str | Path) -> Path:
        """Ensure handle.exe exists under ``tool_root``.

        Args:
            tool_root: Directory that holds the installed tool

        Returns:
            Path of the installed binary

        Raises:
            ToolInstallError: If the binary is absent and cannot be copied
        """
        target = Path(tool_root) / HANDLE_EXE
        if target.exists():
            return target

        source = self.source
        if not source.is_file():
            raise ToolInstallError(f"Bundled {HANDLE_EXE} not found at {source}")

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, target)
        except OSError as e:
            raise ToolInstallError(f"Could not install {HANDLE_EXE} to {target}: {e}") from e

        logger.info(f"Installed {HANDLE_EXE} to {target}")
        return target
