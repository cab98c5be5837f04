"""Utility modules for process-cleanup-mcp."""

from .project import (
    WorkspaceRootConfig,
    configure_workspace_root,
    find_workspace_root,
    get_workspace_root,
    get_workspace_root_sync,
    parse_file_uri,
)

__all__ = [
    "WorkspaceRootConfig",
    "configure_workspace_root",
    "find_workspace_root",
    "get_workspace_root",
    "get_workspace_root_sync",
    "parse_file_uri",
]
