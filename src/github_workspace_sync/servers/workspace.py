from datetime import datetime
from logging import Logger
from typing import Annotated, Any, Self

from fastmcp.server import FastMCP
from fastmcp.tools import Tool
from fastmcp.utilities.logging import get_logger
from pydantic import BaseModel, Field

from github_workspace_sync.paths import leaf_name, normalize_path, parent_path
from github_workspace_sync.session import WorkspaceSession
from github_workspace_sync.sync.models import CommitResult, SyncResult
from github_workspace_sync.workspace.errors import EntryNotFoundError, EntryTypeError
from github_workspace_sync.workspace.models import EditOrigin, EntryType, FileEntry

OWNER = Annotated[str | None, Field(description="The owner of the repository. Defaults to the selected repository.")]
REPO = Annotated[str | None, Field(description="The name of the repository. Defaults to the selected repository.")]
BRANCH = Annotated[str | None, Field(description="The branch to sync. Defaults to the selected branch.")]
PATH = Annotated[str, Field(description="The workspace path, for example `/docs/readme.md`.")]
CONTENT = Annotated[str, Field(description="The full new content of the file.")]
COMMIT_MESSAGE = Annotated[str, Field(description="The commit message shared by every committed file.")]


class WorkspaceItem(BaseModel):
    """A workspace entry without its content."""

    path: str = Field(description="The workspace path of the entry.")
    type: EntryType = Field(description="The type of the entry.")
    is_modified: bool = Field(description="Whether the file has changes that are not committed yet.")
    last_modified: datetime = Field(description="When the content was last written.")

    @classmethod
    def from_entry(cls, entry: FileEntry) -> Self:
        return cls(path=entry.path, type=entry.type, is_modified=entry.is_modified, last_modified=entry.last_modified)


class WorkspaceServer:
    session: WorkspaceSession
    logger: Logger

    def __init__(self, session: WorkspaceSession, logger: Logger | None = None):
        self.session = session
        self.logger = logger or get_logger(name=__name__)

    def register_tools(self, fastmcp: FastMCP[Any]) -> FastMCP[Any]:
        _ = fastmcp.add_tool(tool=Tool.from_function(fn=self.sync_repository))
        _ = fastmcp.add_tool(tool=Tool.from_function(fn=self.commit_changes))
        _ = fastmcp.add_tool(tool=Tool.from_function(fn=self.list_files))
        _ = fastmcp.add_tool(tool=Tool.from_function(fn=self.list_modified_files))
        _ = fastmcp.add_tool(tool=Tool.from_function(fn=self.read_file))
        _ = fastmcp.add_tool(tool=Tool.from_function(fn=self.write_file))
        _ = fastmcp.add_tool(tool=Tool.from_function(fn=self.create_folder))
        _ = fastmcp.add_tool(tool=Tool.from_function(fn=self.delete_path))

        return fastmcp

    async def sync_repository(self, owner: OWNER = None, repo: REPO = None, branch: BRANCH = None) -> SyncResult:
        """Pull a GitHub repository branch into the workspace. Files with uncommitted changes are left untouched."""

        if owner is None or repo is None or branch is None:
            selected_owner, selected_repo, selected_branch = self.session.selected_owner_repo()
            owner = owner or selected_owner
            repo = repo or selected_repo
            branch = branch or selected_branch

        return await self.session.sync(owner, repo, branch)

    async def commit_changes(self, message: COMMIT_MESSAGE) -> CommitResult:
        """Commit every modified file in the workspace to the selected branch, one commit per file."""

        return await self.session.commit(message)

    async def list_files(self) -> list[WorkspaceItem]:
        """List every file and folder in the workspace."""

        return [WorkspaceItem.from_entry(entry) for entry in self.session.tree.walk()]

    async def list_modified_files(self) -> list[WorkspaceItem]:
        """List the files with changes that are not committed yet."""

        return [WorkspaceItem.from_entry(entry) for entry in self.session.modified_files()]

    async def read_file(self, path: PATH) -> str:
        """Read the content of a file in the workspace."""

        entry = self.session.tree.get_by_path(path)

        if entry is None:
            raise EntryNotFoundError(path=normalize_path(path), expected="file")

        if not entry.is_file:
            raise EntryTypeError(path=entry.path, expected="file", actual=entry.type)

        return entry.content or ""

    async def write_file(self, path: PATH, content: CONTENT) -> WorkspaceItem:
        """Write a file in the workspace, creating it if it does not exist. The parent folder must exist."""

        entry = self.session.tree.get_by_path(path)

        if entry is None:
            entry = await self.session.tree.create_file(parent_path(path), leaf_name(path), content, origin=EditOrigin.USER)
        else:
            entry = await self.session.tree.update_content(entry.id, content, origin=EditOrigin.USER)

        return WorkspaceItem.from_entry(entry)

    async def create_folder(self, path: PATH) -> WorkspaceItem:
        """Create a folder in the workspace. The parent folder must exist."""

        entry = await self.session.tree.create_folder(parent_path(path), leaf_name(path), origin=EditOrigin.USER)

        return WorkspaceItem.from_entry(entry)

    async def delete_path(self, path: PATH) -> list[str]:
        """Delete a file or a folder and everything in it from the workspace. Returns the deleted paths."""

        entry = self.session.tree.get_by_path(path)

        if entry is None:
            raise EntryNotFoundError(path=normalize_path(path))

        deleted = await self.session.tree.delete_entry(entry.id)

        return [item.path for item in deleted]
