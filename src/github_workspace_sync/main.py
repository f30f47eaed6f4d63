import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from logging import Logger
from pathlib import Path
from typing import Any, Literal

import click
from fastmcp import FastMCP
from fastmcp.server.middleware.logging import LoggingMiddleware
from fastmcp.utilities.logging import get_logger

from github_workspace_sync.notifications import LoggingNotificationSink
from github_workspace_sync.servers.workspace import WorkspaceServer
from github_workspace_sync.session import WorkspaceSession
from github_workspace_sync.settings import SyncSettings
from github_workspace_sync.workspace.backends import InMemoryFileRowStore, InMemoryTokenStore, JsonFileSelectionStore
from github_workspace_sync.workspace.tree import FileTree

logger: Logger = get_logger(name=__name__)

DEFAULT_USER_ID = "local"
DEFAULT_SELECTION_FILE = ".github-workspace-sync/selection.json"

settings: SyncSettings = SyncSettings.from_env()

user_id: str = os.getenv("WORKSPACE_USER_ID") or DEFAULT_USER_ID

session: WorkspaceSession = WorkspaceSession(
    user_id=user_id,
    tree=FileTree(user_id=user_id, row_store=InMemoryFileRowStore(), skipped_file_names=settings.skipped_file_names),
    token_store=InMemoryTokenStore(),
    selection_store=JsonFileSelectionStore(path=Path(os.getenv("WORKSPACE_SELECTION_FILE") or DEFAULT_SELECTION_FILE)),
    notifier=LoggingNotificationSink(logger=logger),
    settings=settings,
)


@asynccontextmanager
async def lifespan(_: FastMCP[Any]) -> AsyncIterator[None]:
    if not await session.open(token=os.getenv("GITHUB_TOKEN") or os.getenv("GITHUB_PERSONAL_ACCESS_TOKEN")):
        logger.warning("Starting without a GitHub connection, only local workspace tools will work")

    try:
        yield
    finally:
        await session.close()


mcp: FastMCP[None] = FastMCP[None](name="GitHub Workspace Sync", lifespan=lifespan)

mcp.add_middleware(middleware=LoggingMiddleware(include_payloads=True, logger=logger))

workspace_server: WorkspaceServer = WorkspaceServer(session=session, logger=logger)
_ = workspace_server.register_tools(fastmcp=mcp)


@click.command()
@click.option(
    "--mcp-transport",
    type=click.Choice(["stdio", "streamable-http"]),
    default="stdio",
    help="The transport to run the MCP server on",
)
def run_mcp(mcp_transport: Literal["stdio", "streamable-http"]):
    mcp.run(transport=mcp_transport)


if __name__ == "__main__":
    run_mcp()
