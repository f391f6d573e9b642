"""
PRD tasks MCP server entry point.

Startup sequence:
1. Read WORKSPACE_ROOT, EXCLUDE_DIRS and engine settings from environment
2. Initialize TaskCache (discover and parse every PRD document)
3. Start cache background worker thread
4. Start DocumentWatcher daemon thread
5. Register all MCP tools
6. Start REST API server in background thread (if API_ENABLED)
7. Run MCP server (stdio transport)
"""

import logging
import os
import sys
import threading
from pathlib import Path

from mcp.server.fastmcp import FastMCP

from .cache.task_cache import TaskCache
from .config import EngineConfig
from .tools import register_task_tools
from .watcher.document_watcher import DocumentWatcher

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    stream=sys.stderr,
)
log = logging.getLogger(__name__)

DEFAULT_EXCLUDE_DIRS = ".git,node_modules,.venv,dist,build"


def _parse_exclude_dirs(raw: str) -> set[str]:
    """Parse a comma-separated list of directory names to exclude."""
    return {part.strip() for part in raw.split(",") if part.strip()}


def _start_api_server(cache, host: str, port: int) -> None:
    """Run the FastAPI/uvicorn server in a daemon thread."""
    import uvicorn

    from .api.app import create_app

    app = create_app(cache)
    log.info("Starting REST API on %s:%d", host, port)
    uvicorn.run(app, host=host, port=port, log_level="warning")


def build_server(cache: TaskCache) -> FastMCP:
    mcp = FastMCP("prd-tasks")
    register_task_tools(mcp, cache)
    return mcp


def main() -> None:
    root = Path(os.environ.get("WORKSPACE_ROOT") or os.getcwd())
    if not root.is_dir():
        log.error("WORKSPACE_ROOT does not exist or is not a directory: %s", root)
        sys.exit(1)

    exclude_dirs = _parse_exclude_dirs(os.environ.get("EXCLUDE_DIRS", DEFAULT_EXCLUDE_DIRS))
    try:
        config = EngineConfig.from_env()
    except ValueError as e:
        log.error("Invalid engine setting: %s", e)
        sys.exit(1)

    log.info("Workspace root: %s", root)
    log.info("Excluded dirs: %s", exclude_dirs)

    # Initialize cache and parse every tracked document
    cache = TaskCache(config)
    cache.initialize(root, exclude_dirs)

    # Start background worker that drains the update queue
    cache.start_worker()

    # Start document watcher
    watcher = DocumentWatcher(cache, root, exclude_dirs, file_patterns=config.file_patterns)
    watcher.start()

    # Start REST API in a daemon thread
    api_enabled = os.environ.get("API_ENABLED", "false").lower() in ("true", "1", "yes")
    if api_enabled:
        api_host = os.environ.get("API_HOST", "127.0.0.1")
        api_port = int(os.environ.get("API_PORT", "9400"))
        api_thread = threading.Thread(
            target=_start_api_server, args=(cache, api_host, api_port), daemon=True
        )
        api_thread.start()

    mcp = build_server(cache)

    log.info("Starting prd-tasks MCP server")
    try:
        mcp.run(transport="stdio")
    finally:
        watcher.stop()
        cache.stop_worker()


if __name__ == "__main__":
    main()
