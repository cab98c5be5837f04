"""Workspace root detection utilities.

Determines the working directory to clean from multiple sources:
1. MCP Roots from client (via Context.list_roots())
2. Environment variables (PROCESS_CLEANUP_WORKSPACE, MCP_PROJECT_ROOT)
3. Explicit --workspace path
4. Startup CWD
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import unquote, urlparse

if TYPE_CHECKING:
    from mcp.server.fastmcp import Context

logger = logging.getLogger(__name__)


@dataclass
class WorkspaceRootConfig:
    """Configuration for workspace root detection."""

    startup_cwd: Path | None = None
    """CWD captured at server startup."""

    explicit_workspace: Path | None = None
    """Explicit workspace path from --workspace flag."""

    env_var_names: tuple[str, ...] = field(
        default_factory=lambda: ("PROCESS_CLEANUP_WORKSPACE", "MCP_PROJECT_ROOT")
    )
    """Environment variable names to check for the workspace root."""


# Global configuration (set at startup)
_config: WorkspaceRootConfig = WorkspaceRootConfig()


def configure_workspace_root(
    *,
    explicit_workspace: str | Path | None = None,
    startup_cwd: str | Path | None = None,
) -> None:
    """Configure workspace root detection.

    Should be called once at server startup.
    """
    global _config
    _config = WorkspaceRootConfig(
        explicit_workspace=Path(explicit_workspace) if explicit_workspace else None,
        startup_cwd=Path(startup_cwd) if startup_cwd else None,
    )
    logger.debug(
        f"Workspace root configured: explicit={explicit_workspace}, startup_cwd={startup_cwd}"
    )


def get_config() -> WorkspaceRootConfig:
    """Get current workspace root configuration."""
    return _config


def parse_file_uri(uri: str) -> Path | None:
    """Parse a file:// URI to a Path.

    Handles platform-specific path formats:
    - Unix: file:///home/user/project → /home/user/project
    - Windows: file:///C:/Users/project → C:\\Users\\project
    - Windows UNC: file://server/share → \\\\server\\share

    Returns:
        Path object if parsing succeeds, None otherwise
    """
    try:
        parsed = urlparse(str(uri))

        if parsed.scheme != "file":
            logger.warning(f"Not a file URI: {uri}")
            return None

        path_str = unquote(parsed.path)

        if sys.platform == "win32":
            # file:///C:/path → parsed.path = "/C:/path"
            if path_str.startswith("/") and len(path_str) > 2 and path_str[2] == ":":
                path_str = path_str[1:]
            if parsed.netloc:
                path_str = f"\\\\{parsed.netloc}{path_str}"

        path = Path(path_str)
        if not path.is_absolute():
            logger.warning(f"Parsed path is not absolute: {path}")
            return None

        return path

    except Exception as e:
        logger.warning(f"Failed to parse file URI '{uri}': {e}")
        return None


def find_workspace_root(start_dir: Path | None = None) -> Path:
    """Find the enclosing repository root by walking up to a .git marker.

    Falls back to start_dir if no marker is found.
    """
    current = (start_dir or Path.cwd()).resolve()

    def ancestors() -> Iterator[Path]:
        yield current
        yield from current.parents

    for directory in ancestors():
        if (directory / ".git").exists():  # .git can be file (worktree) or dir
            return directory

    return current


def _valid_dir(path: Path | None) -> bool:
    return path is not None and path.exists() and path.is_dir()


async def get_workspace_root(ctx: Context | None = None) -> Path | None:
    """Determine the workspace root directory from available sources.

    Priority order:
    1. MCP Roots from client (via ctx.list_roots()) - if client supports it
    2. Environment variable (PROCESS_CLEANUP_WORKSPACE or MCP_PROJECT_ROOT)
    3. Explicit --workspace path (if configured)
    4. Startup CWD

    Args:
        ctx: MCP Context for accessing client-provided roots.
             Can be None if called outside of tool context.

    Returns:
        Path to workspace root, or None if not determinable
    """
    if ctx is not None:
        try:
            roots = await ctx.list_roots()
            if roots:
                uri = str(roots[0].uri)
                path = parse_file_uri(uri)
                if _valid_dir(path):
                    logger.info(f"Using workspace root from MCP client: {path}")
                    return path
                logger.warning(f"MCP root path invalid or not accessible: {path}")
            else:
                logger.info("MCP client did not provide any roots")
        except Exception as e:
            # Client may not support roots
            logger.info(f"Could not get roots from client: {e}")

    return get_workspace_root_sync()


def get_workspace_root_sync() -> Path | None:
    """Synchronous version of get_workspace_root (without MCP roots)."""
    config = get_config()

    for env_var in config.env_var_names:
        env_value = os.environ.get(env_var)
        if env_value:
            path = Path(env_value)
            if _valid_dir(path):
                return path
            logger.warning(f"{env_var}={env_value} - path does not exist or is not a directory")

    if config.explicit_workspace:
        if _valid_dir(config.explicit_workspace):
            return config.explicit_workspace
        logger.warning(f"Explicit workspace not valid: {config.explicit_workspace}")

    if config.startup_cwd:
        return config.startup_cwd

    logger.warning("Could not determine workspace root from any source")
    return None
