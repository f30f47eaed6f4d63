from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field

from github_workspace_sync.paths import WorkspacePath, leaf_name
from github_workspace_sync.workspace.models import EntryType, utc_now


class RemoteEntry(BaseModel):
    """A file or folder found in a repository during a single sync pass."""

    path: WorkspacePath = Field(description="The workspace path of the entry.")
    type: EntryType = Field(description="The type of the entry.")
    content: str | None = Field(default=None, description="The content of the file, None if it has not been fetched.")
    download_url: str | None = Field(default=None, description="The direct download URL of the file, if GitHub provides one.")
    error: str | None = Field(default=None, description="Why fetching the entry failed, None if it did not fail.")
    rate_limited: bool = Field(default=False, description="Whether fetching the entry failed because of a GitHub rate limit.")

    @property
    def name(self) -> str:
        return leaf_name(self.path)

    @property
    def failed(self) -> bool:
        return self.error is not None


class PathFailure(BaseModel):
    """A single path that could not be synced or committed."""

    path: str = Field(description="The workspace path that failed.")
    reason: str = Field(description="Why it failed.")


class SyncStatus(StrEnum):
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"
    EMPTY_REPOSITORY = "empty_repository"
    FETCH_FAILED = "fetch_failed"
    IN_PROGRESS = "in_progress"
    TOO_SOON = "too_soon"


class SyncResult(BaseModel):
    """The outcome of a single sync attempt, including attempts rejected before any request was made."""

    status: SyncStatus = Field(description="The outcome of the attempt.")
    folders_created: int = Field(default=0, description="The number of folders created in the workspace.")
    folders_existing: int = Field(default=0, description="The number of folders that already existed in the workspace.")
    files_created: int = Field(default=0, description="The number of files created in the workspace.")
    files_updated: int = Field(default=0, description="The number of unmodified files overwritten with the remote content.")
    failures: list[PathFailure] = Field(default_factory=list, description="The paths that could not be synced.")
    preserved_paths: list[str] = Field(default_factory=list, description="Modified files that were left untouched.")
    rate_limited: bool = Field(default=False, description="Whether GitHub throttled any request of the pass.")
    message: str | None = Field(default=None, description="Why the attempt was rejected or failed as a whole.")
    timestamp: datetime = Field(default_factory=utc_now, description="When the attempt finished.")

    @property
    def failed_paths(self) -> list[str]:
        return [failure.path for failure in self.failures]

    @property
    def succeeded(self) -> bool:
        return self.status in (SyncStatus.COMPLETED, SyncStatus.PARTIAL)


class CommitStatus(StrEnum):
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"
    REJECTED = "rejected"
    NOTHING_TO_COMMIT = "nothing_to_commit"
    IN_PROGRESS = "in_progress"
    TOO_SOON = "too_soon"


class CommitResult(BaseModel):
    """The outcome of a single commit attempt."""

    status: CommitStatus = Field(description="The outcome of the attempt.")
    committed_paths: list[str] = Field(default_factory=list, description="The paths that were committed.")
    failures: list[PathFailure] = Field(default_factory=list, description="The paths that could not be committed.")
    rate_limited: bool = Field(default=False, description="Whether GitHub throttled any request of the pass.")
    message: str | None = Field(default=None, description="Why the attempt was rejected.")
    timestamp: datetime = Field(default_factory=utc_now, description="When the attempt finished.")

    @property
    def success_count(self) -> int:
        return len(self.committed_paths)

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    @property
    def clear_message(self) -> bool:
        """Whether the draft commit message should be cleared."""
        return self.success_count > 0

    @property
    def succeeded(self) -> bool:
        return self.status in (CommitStatus.COMPLETED, CommitStatus.PARTIAL)
