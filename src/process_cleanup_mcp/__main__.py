"""Entry point for process-cleanup-mcp."""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from .cleanup import CleanupConfig, CleanupManager, CleanupPhase, ConfigurationError
from .server import create_server
from .utils.project import configure_workspace_root, find_workspace_root


def configure_logging() -> None:
    """Configure logging based on environment."""
    level = os.environ.get("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Process Cleanup MCP Server - kill processes locking a Windows workspace"
    )
    parser.add_argument(
        "--workspace",
        type=str,
        default=None,
        help="Working directory to free from file locks.",
    )
    parser.add_argument(
        "--workspace-from-cwd",
        action="store_true",
        default=False,
        help="Use the repository root (.git marker) above the current directory as workspace. "
        "Cannot be used with --workspace.",
    )
    parser.add_argument(
        "--additional-processes",
        type=str,
        default=None,
        help="Comma separated process names or regular expressions to kill as well.",
    )
    parser.add_argument(
        "--windows-services",
        type=str,
        default=None,
        help="Comma separated regular expressions of services to stop first.",
    )
    parser.add_argument("--tool-root", type=str, default=None, help="Where handle.exe is installed.")
    parser.add_argument(
        "--handle-source", type=str, default=None, help="Bundled handle.exe to install from."
    )
    parser.add_argument(
        "--grace-period",
        type=float,
        default=None,
        help="Seconds to wait between discovery and termination (default 5).",
    )
    parser.add_argument(
        "--diagnostics",
        action="store_true",
        default=False,
        help="Log parent PID and command line of each process before killing it.",
    )
    parser.add_argument(
        "--disabled",
        action="store_true",
        default=False,
        help="Turn all cleanup into a no-op.",
    )
    parser.add_argument(
        "--run",
        choices=[phase.value for phase in CleanupPhase],
        default=None,
        help="Run one cleanup phase and exit instead of serving MCP over stdio.",
    )
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> CleanupConfig:
    """Merge command line flags over PROCESS_CLEANUP_* environment settings."""
    return CleanupConfig.from_env(
        additional_processes=args.additional_processes,
        windows_services=args.windows_services,
        tool_root=args.tool_root,
        handle_source=args.handle_source,
        grace_period=args.grace_period,
        diagnostics=True if args.diagnostics else None,
        disabled=True if args.disabled else None,
    )


async def run_once(config: CleanupConfig, phase: CleanupPhase, workspace: str) -> int:
    """Run one cleanup phase and print its summary."""
    manager = CleanupManager(config)
    result = await manager.run(phase, workspace)
    print(result.to_summary())
    return 0


async def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    configure_logging()
    logger = logging.getLogger(__name__)

    args = parse_args(argv)

    if args.workspace_from_cwd:
        if args.workspace is not None:
            logger.error("--workspace-from-cwd cannot be used with --workspace")
            return 1
        workspace = str(find_workspace_root())
        logger.info(f"Auto-detected workspace: {workspace}")
    else:
        workspace = args.workspace or os.getcwd()

    try:
        config = build_config(args)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    if args.run:
        return await run_once(config, CleanupPhase(args.run), workspace)

    configure_workspace_root(
        explicit_workspace=Path(workspace) if args.workspace or args.workspace_from_cwd else None,
        startup_cwd=os.getcwd(),
    )
    logger.info(f"Starting Process Cleanup MCP Server (workspace: {workspace})...")

    mcp = create_server(config)

    try:
        await mcp.run_stdio_async()
    except Exception:
        logger.exception("Server error")
        raise
    finally:
        logger.info("Server stopped")
    return 0


def run() -> None:
    """Run the server."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
