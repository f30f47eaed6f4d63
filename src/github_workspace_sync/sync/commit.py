import time
from logging import Logger

from fastmcp.utilities.logging import get_logger

from github_workspace_sync.clients.errors.github import ClientError, RateLimitError
from github_workspace_sync.clients.github import GitHubRepositoryClient
from github_workspace_sync.paths import to_remote_path
from github_workspace_sync.settings import SyncSettings
from github_workspace_sync.sync.engine import Clock
from github_workspace_sync.sync.models import CommitResult, CommitStatus, PathFailure
from github_workspace_sync.workspace.errors import WorkspaceError
from github_workspace_sync.workspace.models import FileEntry
from github_workspace_sync.workspace.tree import FileTree


class CommitEngine:
    """Pushes modified workspace files to a branch, one commit per file.

    Commit passes and single file saves are throttled separately. A file is only marked as committed once GitHub
    accepted it and only if its content did not change while the commit was in flight.
    """

    client: GitHubRepositoryClient
    tree: FileTree
    settings: SyncSettings
    logger: Logger

    _clock: Clock
    _in_flight: bool
    _last_commit_at: float | None
    _last_save_at: float | None

    def __init__(
        self,
        client: GitHubRepositoryClient,
        tree: FileTree,
        settings: SyncSettings | None = None,
        clock: Clock = time.monotonic,
        logger: Logger | None = None,
    ) -> None:
        self.client = client
        self.tree = tree
        self.settings = settings or SyncSettings()
        self.logger = logger or get_logger(name=__name__)

        self._clock = clock
        self._in_flight = False
        self._last_commit_at = None
        self._last_save_at = None

    @property
    def is_committing(self) -> bool:
        return self._in_flight

    async def commit(self, repo_full_name: str, branch: str, message: str) -> CommitResult:
        """Commit every modified file of the workspace to `branch` with the same message.

        Attempts without a message, without modified files, while another pass is in flight or inside the cooldown
        are rejected before any request is made.
        """

        if not message.strip():
            return CommitResult(status=CommitStatus.REJECTED, message="A commit message is required.")

        modified = self.tree.list_modified()

        if not modified:
            return CommitResult(status=CommitStatus.NOTHING_TO_COMMIT, message="There are no modified files to commit.")

        if self._in_flight:
            self.logger.warning(f"Rejecting commit to {repo_full_name}, a commit is already in progress")
            return CommitResult(status=CommitStatus.IN_PROGRESS, message="A commit is already in progress.")

        now = self._clock()

        if self._last_commit_at is not None and now - self._last_commit_at < self.settings.commit_cooldown_seconds:
            remaining = self.settings.commit_cooldown_seconds - (now - self._last_commit_at)
            self.logger.warning(f"Rejecting commit to {repo_full_name}, the cooldown has {remaining:.1f}s left")
            return CommitResult(status=CommitStatus.TOO_SOON, message=f"Please wait {remaining:.0f} seconds before committing again.")

        self._in_flight = True
        self._last_commit_at = now

        self.logger.info(f"Committing {len(modified)} files to {repo_full_name} on {branch}")

        committed_paths: list[str] = []
        failures: list[PathFailure] = []
        rate_limited = False

        try:
            for entry in modified:
                try:
                    await self._commit_entry(repo_full_name, branch, entry, message)
                except (ClientError, WorkspaceError) as e:
                    self.logger.warning(f"Failed to commit {entry.path}: {e}")
                    rate_limited = rate_limited or isinstance(e, RateLimitError)
                    failures.append(PathFailure(path=entry.path, reason=str(e)))
                    continue

                committed_paths.append(entry.path)
        finally:
            self._in_flight = False

        if not failures:
            status = CommitStatus.COMPLETED
        elif committed_paths:
            status = CommitStatus.PARTIAL
        else:
            status = CommitStatus.FAILED

        self.logger.info(f"Committed to {repo_full_name} on {branch}: {len(committed_paths)} succeeded, {len(failures)} failed")

        return CommitResult(status=status, committed_paths=committed_paths, failures=failures, rate_limited=rate_limited)

    async def save_file(self, repo_full_name: str, branch: str, path: str, content: str, message: str) -> bool:
        """Commit a single file, returning whether GitHub accepted it."""

        if not message.strip():
            self.logger.warning(f"Rejecting save of {path}, a commit message is required")
            return False

        now = self._clock()

        if self._last_save_at is not None and now - self._last_save_at < self.settings.save_cooldown_seconds:
            self.logger.warning(f"Rejecting save of {path}, the last save was less than {self.settings.save_cooldown_seconds}s ago")
            return False

        self._last_save_at = now

        remote_path = to_remote_path(path)

        try:
            prior_sha = await self.client.get_file_sha(repo_full_name, path=remote_path, ref=branch)
            _ = await self.client.create_or_update_file(
                repo_full_name, path=remote_path, content=content, commit_message=message, branch=branch, prior_sha=prior_sha
            )
        except ClientError as e:
            self.logger.warning(f"Failed to save {path} to {repo_full_name}: {e}")
            return False

        entry = self.tree.get_by_path(path)

        if entry is not None and entry.is_file and entry.content == content:
            _ = await self.tree.mark_committed(entry.id, content=content)

        self.logger.info(f"Saved {path} to {repo_full_name} on {branch}")

        return True

    async def _commit_entry(self, repo_full_name: str, branch: str, entry: FileEntry, message: str) -> None:
        content = entry.content

        if content is None:
            raise WorkspaceError(message="The file has no content to commit.", extra_info={"path": entry.path})

        remote_path = to_remote_path(entry.path)

        prior_sha = await self.client.get_file_sha(repo_full_name, path=remote_path, ref=branch)

        _ = await self.client.create_or_update_file(
            repo_full_name, path=remote_path, content=content, commit_message=message, branch=branch, prior_sha=prior_sha
        )

        if self.tree.get_by_id(entry.id) is None:
            self.logger.info(f"{entry.path} was deleted while it was being committed")
            return

        committed = await self.tree.mark_committed(entry.id, content=content)

        if committed.is_modified:
            self.logger.info(f"{entry.path} changed while it was being committed, keeping it modified")
