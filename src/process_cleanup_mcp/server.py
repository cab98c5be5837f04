"""MCP Server for process cleanup."""

from __future__ import annotations

import json
import logging

from mcp.server.fastmcp import Context, FastMCP
from pydantic import AnyUrl

from .cleanup import CleanupConfig, CleanupManager, CleanupPhase
from .utils.project import get_workspace_root

logger = logging.getLogger(__name__)

LAST_RESULT_URI = "cleanup://last-result"

# Global cleanup manager (single client mode)
_manager: CleanupManager | None = None


def get_manager(config: CleanupConfig | None = None) -> CleanupManager:
    """Get or create the cleanup manager.

    The configuration is only used when the manager is first created.
    """
    global _manager
    if _manager is None:
        _manager = CleanupManager(config or CleanupConfig.from_env())
    return _manager


def reset_manager() -> None:
    """Drop the global manager (used by tests and on reconfiguration)."""
    global _manager
    _manager = None


async def resolve_workspace(ctx: Context | None, workspace: str | None) -> str:
    """Explicit workspace argument, else the detected workspace root.

    Raises:
        ValueError: If no workspace can be determined
    """
    if workspace:
        return workspace
    root = await get_workspace_root(ctx)
    if root is None:
        raise ValueError("Cannot determine workspace; pass the workspace argument")
    return str(root)


def create_server(config: CleanupConfig | None = None) -> FastMCP:
    """Create and configure the MCP server.

    Args:
        config: Cleanup configuration (read from the environment if omitted)
    """
    mcp = FastMCP("process-cleanup-mcp")
    manager = get_manager(config)

    async def notify_result_changed(ctx: Context) -> None:
        """Notify client that cleanup://last-result has changed."""
        try:
            if ctx.session:
                await ctx.session.send_resource_updated(AnyUrl(LAST_RESULT_URI))
        except Exception:
            pass  # Notification failure shouldn't break the tool

    async def run_phase(ctx: Context, phase: CleanupPhase, workspace: str | None) -> dict:
        try:
            path = await resolve_workspace(ctx, workspace)
            result = await manager.run(phase, path)
            await notify_result_changed(ctx)
            return {"success": True, "data": result.to_dict(), "summary": result.to_summary()}
        except Exception as e:
            return {"success": False, "error": str(e)}

    # ============== Cleanup Tools ==============

    @mcp.tool()
    async def cleanup_before_work(ctx: Context, workspace: str | None = None) -> dict:
        """
        Kill processes locking the workspace BEFORE it is used (e.g. before checkout/build).

        Stops configured services, finds lock holders with handle.exe and configured
        extra processes with tasklist, waits a grace period, then force-kills them
        (including child processes). Never kills this server itself.
        No-op on non-Windows machines.

        Args:
            workspace: Directory to free (defaults to the client's project root)
        """
        return await run_phase(ctx, CleanupPhase.BEFORE, workspace)

    @mcp.tool()
    async def cleanup_after_work(ctx: Context, workspace: str | None = None) -> dict:
        """
        Kill processes still locking the workspace AFTER work has completed.

        Same procedure as cleanup_before_work.

        Args:
            workspace: Directory to free (defaults to the client's project root)
        """
        return await run_phase(ctx, CleanupPhase.AFTER, workspace)

    @mcp.tool()
    async def find_lock_holders(ctx: Context, workspace: str | None = None) -> dict:
        """
        List processes that cleanup WOULD kill, without killing anything.

        Services are not stopped. Use this to check before a destructive cleanup.
        Returns an empty report with skipReason where cleanup would be a no-op.

        Args:
            workspace: Directory to scan (defaults to the client's project root)
        """
        try:
            path = await resolve_workspace(ctx, workspace)
            return {"success": True, "data": await manager.find_lock_holders(path)}
        except Exception as e:
            return {"success": False, "error": str(e)}

    @mcp.tool()
    async def get_cleanup_config() -> dict:
        """Get the active cleanup configuration (extra processes, services, grace period)."""
        return {"success": True, "data": manager.config.to_dict()}

    @mcp.tool()
    async def get_last_cleanup(ctx: Context, workspace: str | None = None) -> dict:
        """
        Get the result of the last cleanup for a workspace.

        Args:
            workspace: Directory (defaults to the client's project root)
        """
        try:
            path = await resolve_workspace(ctx, workspace)
            result = manager.last_result(path)
            return {"success": True, "data": result.to_dict() if result else None}
        except Exception as e:
            return {"success": False, "error": str(e)}

    # ============== Prompts ==============

    @mcp.prompt(
        name="cleanup",
        description="Workflow for freeing a locked Windows working directory",
    )
    def cleanup_prompt() -> list[dict]:
        """Start here when a build fails because files are in use."""
        return [
            {
                "role": "user",
                "content": """# Workspace Process Cleanup

Use this when a build, checkout or delete fails with "being used by another process".

1. `find_lock_holders()` to see which processes lock the workspace
2. `cleanup_before_work()` to stop them before the next build
3. `cleanup_after_work()` once the build is done, to release leftover locks
4. `get_last_cleanup()` to review what was killed

Cleanup waits a grace period before killing, and never fails: check
`state` and `errors` in the result.
""",
            },
        ]

    # ============== Resources ==============

    @mcp.resource(LAST_RESULT_URI, mime_type="application/json")
    async def last_result_resource() -> str:
        """Last cleanup result of every workspace (JSON)."""
        results = manager.all_results()
        return json.dumps({path: r.to_dict() for path, r in results.items()}, indent=2)

    logger.info("Process cleanup MCP server initialized")
    return mcp
