import asyncio
import time
from collections import defaultdict
from collections.abc import Callable
from enum import StrEnum
from logging import Logger

from fastmcp.utilities.logging import get_logger

from github_workspace_sync.clients.errors.github import ClientError, RateLimitError
from github_workspace_sync.paths import ROOT_PATH, ancestor_paths, leaf_name, parent_path, path_depth
from github_workspace_sync.settings import SyncSettings
from github_workspace_sync.sync.errors import EmptyResultError
from github_workspace_sync.sync.fetcher import DirectoryTreeFetcher
from github_workspace_sync.sync.models import PathFailure, RemoteEntry, SyncResult, SyncStatus
from github_workspace_sync.workspace.errors import WorkspaceError
from github_workspace_sync.workspace.models import EditOrigin
from github_workspace_sync.workspace.tree import FileTree

Clock = Callable[[], float]


class SyncState(StrEnum):
    IDLE = "idle"
    SYNCING = "syncing"


class _SyncPass:
    """The bookkeeping of one sync pass."""

    def __init__(self) -> None:
        self.created: set[str] = {ROOT_PATH}
        self.locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self.failures: list[PathFailure] = []
        self.preserved_paths: list[str] = []
        self.folders_created: int = 0
        self.folders_existing: int = 0
        self.files_created: int = 0
        self.files_updated: int = 0
        self.rate_limited: bool = False

    def fail(self, path: str, error: Exception | str, rate_limited: bool = False) -> None:
        if rate_limited or isinstance(error, RateLimitError):
            self.rate_limited = True

        self.failures.append(PathFailure(path=path, reason=str(error)))

    @property
    def synced(self) -> int:
        return self.folders_created + self.folders_existing + self.files_created + self.files_updated + len(self.preserved_paths)

    def to_result(self) -> SyncResult:
        if self.synced == 0:
            status = SyncStatus.FAILED
        elif self.failures:
            status = SyncStatus.PARTIAL
        else:
            status = SyncStatus.COMPLETED

        return SyncResult(
            status=status,
            folders_created=self.folders_created,
            folders_existing=self.folders_existing,
            files_created=self.files_created,
            files_updated=self.files_updated,
            failures=self.failures,
            preserved_paths=sorted(self.preserved_paths),
            rate_limited=self.rate_limited,
            message="Nothing could be written to the workspace." if status is SyncStatus.FAILED else None,
        )


class SyncEngine:
    """Pulls a repository branch into a `FileTree`.

    Only one pass runs at a time and passes are throttled by a cooldown measured from the start of the previous
    attempt. Both guards are checked before any request is made. Files that are modified in the workspace are never
    overwritten by a pull.
    """

    fetcher: DirectoryTreeFetcher
    tree: FileTree
    settings: SyncSettings
    logger: Logger

    _clock: Clock
    _state: SyncState
    _release_at: float | None
    _last_started_at: float | None
    _last_result: SyncResult | None

    def __init__(
        self,
        fetcher: DirectoryTreeFetcher,
        tree: FileTree,
        settings: SyncSettings | None = None,
        clock: Clock = time.monotonic,
        logger: Logger | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.tree = tree
        self.settings = settings or SyncSettings()
        self.logger = logger or get_logger(name=__name__)

        self._clock = clock
        self._state = SyncState.IDLE
        self._release_at = None
        self._last_started_at = None
        self._last_result = None

    @property
    def state(self) -> SyncState:
        if self._release_at is not None and self._clock() >= self._release_at:
            self._release()

        return self._state

    @property
    def is_syncing(self) -> bool:
        return self.state is SyncState.SYNCING

    @property
    def last_result(self) -> SyncResult | None:
        """The result of the most recent pass that got past the guards."""
        return self._last_result

    async def sync(self, owner: str, repo: str, branch: str) -> SyncResult:
        """Pull `owner/repo` at `branch` into the workspace.

        Rejected attempts return a result with the `IN_PROGRESS` or `TOO_SOON` status. Failures of single files and
        folders are collected in the result. Unexpected exceptions propagate after the lock release is scheduled.
        """

        repo_full_name = f"{owner}/{repo}"

        if self.is_syncing:
            self.logger.warning(f"Rejecting sync of {repo_full_name}, a sync is already in progress")
            return SyncResult(status=SyncStatus.IN_PROGRESS, message="A sync is already in progress.")

        now = self._clock()

        if self._last_started_at is not None and now - self._last_started_at < self.settings.sync_cooldown_seconds:
            remaining = self.settings.sync_cooldown_seconds - (now - self._last_started_at)
            self.logger.warning(f"Rejecting sync of {repo_full_name}, the cooldown has {remaining:.1f}s left")
            return SyncResult(status=SyncStatus.TOO_SOON, message=f"Please wait {remaining:.0f} seconds before syncing again.")

        self._state = SyncState.SYNCING
        self._last_started_at = now

        self.logger.info(f"Syncing {repo_full_name} on {branch}")

        try:
            result = await self._run(owner, repo, branch)
        finally:
            self._schedule_release()

        self.logger.info(
            f"Synced {repo_full_name} on {branch}: {result.status}, {result.folders_created} folders and {result.files_created} files "
            + f"created, {result.files_updated} files updated, {len(result.failures)} failures"
        )

        self._last_result = result

        return result

    async def _run(self, owner: str, repo: str, branch: str) -> SyncResult:
        repo_full_name = f"{owner}/{repo}"

        try:
            entries = await self.fetcher.fetch_tree(owner, repo, ref=branch, error_on_empty=True)
        except EmptyResultError as e:
            self.logger.warning(str(e))
            return SyncResult(status=SyncStatus.EMPTY_REPOSITORY, message=str(e))
        except ClientError as e:
            self.logger.warning(f"Failed to fetch {repo_full_name} on {branch}: {e}")
            return SyncResult(status=SyncStatus.FETCH_FAILED, rate_limited=isinstance(e, RateLimitError), message=str(e))

        skipped_file_names = set(self.settings.skipped_file_names)

        folders: list[RemoteEntry] = []
        files: list[RemoteEntry] = []

        for entry in entries:
            if entry.name in skipped_file_names:
                self.logger.debug(f"Skipping {entry.path}")
                continue

            if entry.type == "folder":
                folders.append(entry)
            else:
                files.append(entry)

        folders.sort(key=lambda entry: path_depth(entry.path))

        sync_pass = _SyncPass()

        for folder in folders:
            await self._ensure_folder(sync_pass, folder.path)

            if folder.failed:
                sync_pass.fail(folder.path, folder.error or "The folder could not be listed.", rate_limited=folder.rate_limited)

        batch_size = self.settings.sync_batch_size

        for start in range(0, len(files), batch_size):
            if start:
                await asyncio.sleep(self.settings.sync_batch_delay_seconds)

            batch = files[start : start + batch_size]

            _ = await asyncio.gather(*[self._sync_file(sync_pass, repo_full_name, branch, entry) for entry in batch])

        return sync_pass.to_result()

    async def _ensure_folder(self, sync_pass: _SyncPass, path: str) -> None:
        """Create a folder and any missing ancestors, shallowest first."""

        for folder_path in [*ancestor_paths(path), path]:
            if folder_path in sync_pass.created:
                continue

            async with sync_pass.locks[folder_path]:
                if folder_path in sync_pass.created:
                    continue

                await self._create_folder(sync_pass, folder_path)

                # Failed folders still count as created so their descendants are attempted
                sync_pass.created.add(folder_path)

    async def _create_folder(self, sync_pass: _SyncPass, path: str) -> None:
        existing = self.tree.get_by_path(path)

        if existing is not None:
            if existing.is_folder:
                sync_pass.folders_existing += 1
            else:
                sync_pass.fail(path, "A file exists where the folder should be.")
            return

        try:
            _ = await self.tree.create_folder(parent_path(path), leaf_name(path), origin=EditOrigin.REMOTE)
        except (WorkspaceError, ValueError) as e:
            self.logger.warning(f"Failed to create folder {path}: {e}")
            sync_pass.fail(path, e)
            return

        sync_pass.folders_created += 1

    async def _sync_file(self, sync_pass: _SyncPass, repo_full_name: str, ref: str, entry: RemoteEntry) -> None:
        try:
            await self._ensure_folder(sync_pass, parent_path(entry.path))

            if entry.failed:
                sync_pass.fail(entry.path, entry.error or "The file could not be fetched.", rate_limited=entry.rate_limited)
                return

            existing = self.tree.get_by_path(entry.path)

            if existing is not None and existing.is_modified:
                self.logger.debug(f"Keeping local changes to {entry.path}")
                sync_pass.preserved_paths.append(entry.path)
                return

            content = entry.content

            if content is None:
                content = await self.fetcher.fetch_content(repo_full_name, entry.path, ref=ref, download_url=entry.download_url)

                # The file may have been edited while its content was fetched
                existing = self.tree.get_by_path(entry.path)

                if existing is not None and existing.is_modified:
                    sync_pass.preserved_paths.append(entry.path)
                    return

            if existing is None:
                _ = await self.tree.create_file(parent_path(entry.path), entry.name, content, origin=EditOrigin.REMOTE)
                sync_pass.files_created += 1
            elif existing.is_file:
                updated = await self.tree.update_content(existing.id, content, origin=EditOrigin.REMOTE, skip_modified=True)

                if updated.is_modified:
                    sync_pass.preserved_paths.append(entry.path)
                    return

                sync_pass.files_updated += 1
            else:
                sync_pass.fail(entry.path, "A folder exists where the file should be.")
        except (ClientError, WorkspaceError, ValueError) as e:
            self.logger.warning(f"Failed to sync {entry.path}: {e}")
            sync_pass.fail(entry.path, e)

    def _schedule_release(self) -> None:
        """Hold the lock until `sync_release_delay_seconds` have passed on the clock."""

        delay = self.settings.sync_release_delay_seconds

        if delay <= 0:
            self._release()
            return

        self._release_at = self._clock() + delay

    def _release(self) -> None:
        self._state = SyncState.IDLE
        self._release_at = None
