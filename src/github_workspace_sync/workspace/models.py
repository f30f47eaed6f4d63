from datetime import UTC, datetime
from enum import StrEnum
from typing import Literal, Self
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from github_workspace_sync.paths import WorkspacePath, leaf_name

EntryType = Literal["file", "folder"]


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def new_entry_id() -> str:
    return str(uuid4())


class EditOrigin(StrEnum):
    """Where a write to the workspace comes from."""

    USER = "user"
    """The editor or the assistant. User writes mark files as modified."""

    REMOTE = "remote"
    """A pull from GitHub. Remote writes never set or clear the modified flag of an existing file."""


class FileRow(BaseModel):
    """The flat, durable form of a workspace entry."""

    id: str = Field(description="The id of the entry.")
    name: str = Field(description="The leaf name of the entry.")
    path: str = Field(description="The workspace path of the entry.")
    type: EntryType = Field(description="The type of the entry.")
    content: str | None = Field(default=None, description="The content of the file.")
    last_modified: datetime = Field(description="When the content was last written.")
    is_modified: bool = Field(default=False, description="Whether the file has changed since it was last committed.")


class GitHubTokenRow(BaseModel):
    """The GitHub credential stored for a user."""

    token: str = Field(description="The GitHub token.")
    username: str = Field(description="The login the token belongs to.")


class RepoSelection(BaseModel):
    """The repository and branch the workspace is synchronized with."""

    model_config = ConfigDict(frozen=True)

    repo_full_name: str = Field(description="The owner/name of the repository.")
    branch: str = Field(description="The name of the branch.")


class FileEntry(BaseModel):
    """A file or folder in a user's workspace."""

    id: str = Field(default_factory=new_entry_id, description="The id of the entry. Stable across renames.")
    name: str = Field(description="The leaf name of the entry.")
    path: WorkspacePath = Field(description="The workspace path of the entry.")
    type: EntryType = Field(description="The type of the entry.")
    content: str | None = Field(default=None, description="The content of the file. Always None for folders.")
    children: list["FileEntry"] | None = Field(default=None, description="The children of the folder. Always None for files.")
    last_modified: datetime = Field(default_factory=utc_now, description="When the content was last written.")
    is_modified: bool = Field(default=False, description="Whether the file has changed since it was last committed.")

    @model_validator(mode="after")
    def check_capabilities(self) -> Self:
        if self.type == "file" and self.children is not None:
            msg = f"Files cannot have children: {self.path}"
            raise ValueError(msg)

        if self.type == "folder":
            if self.content is not None:
                msg = f"Folders cannot have content: {self.path}"
                raise ValueError(msg)

            if self.children is None:
                self.children = []

        if self.name != leaf_name(self.path):
            msg = f"The name {self.name!r} does not match the path {self.path!r}"
            raise ValueError(msg)

        return self

    @property
    def is_file(self) -> bool:
        return self.type == "file"

    @property
    def is_folder(self) -> bool:
        return self.type == "folder"

    @classmethod
    def from_row(cls, row: FileRow) -> Self:
        return cls(
            id=row.id,
            name=row.name,
            path=row.path,
            type=row.type,
            content=row.content if row.type == "file" else None,
            last_modified=row.last_modified,
            is_modified=row.is_modified,
        )

    def to_row(self) -> FileRow:
        return FileRow(
            id=self.id,
            name=self.name,
            path=self.path,
            type=self.type,
            content=self.content,
            last_modified=self.last_modified,
            is_modified=self.is_modified,
        )
