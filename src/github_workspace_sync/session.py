from collections.abc import Callable
from logging import Logger

from fastmcp.utilities.logging import get_logger

from github_workspace_sync.clients.errors.github import AuthError, ClientError, NotFoundError
from github_workspace_sync.clients.github import GitHubRepositoryClient, get_githubkit_client, split_full_name
from github_workspace_sync.clients.models.github import Branch, Repository
from github_workspace_sync.notifications import (
    LoggingNotificationSink,
    Notification,
    NotificationSink,
    NotificationVariant,
    describe_commit_result,
    describe_sync_result,
)
from github_workspace_sync.paths import to_remote_path
from github_workspace_sync.settings import SyncSettings
from github_workspace_sync.sync.commit import CommitEngine
from github_workspace_sync.sync.engine import SyncEngine
from github_workspace_sync.sync.fetcher import DirectoryTreeFetcher
from github_workspace_sync.sync.models import CommitResult, SyncResult
from github_workspace_sync.workspace.backends import SelectionStore, TokenStore
from github_workspace_sync.workspace.errors import NotConnectedError
from github_workspace_sync.workspace.models import FileEntry, GitHubTokenRow, RepoSelection
from github_workspace_sync.workspace.tree import FileTree

ClientFactory = Callable[[str], GitHubRepositoryClient]


def default_client_factory(settings: SyncSettings) -> ClientFactory:
    def build_client(token: str) -> GitHubRepositoryClient:
        githubkit_client = get_githubkit_client(
            token=token, timeout=settings.request_timeout_seconds, retry_server_errors=settings.retry_server_errors
        )
        return GitHubRepositoryClient(githubkit_client=githubkit_client, timeout=settings.request_timeout_seconds)

    return build_client


class WorkspaceSession:
    """Connects one user's workspace to GitHub.

    The session owns the verified client, the selected repository and branch, and the sync and commit engines. Every
    sync and commit attempt produces exactly one notification.
    """

    user_id: str
    tree: FileTree
    token_store: TokenStore
    selection_store: SelectionStore
    notifier: NotificationSink
    settings: SyncSettings
    client_factory: ClientFactory
    logger: Logger

    client: GitHubRepositoryClient | None
    username: str | None
    selection: RepoSelection | None
    commit_message: str

    _sync_engine: SyncEngine | None
    _commit_engine: CommitEngine | None

    def __init__(
        self,
        user_id: str,
        tree: FileTree,
        token_store: TokenStore,
        selection_store: SelectionStore,
        notifier: NotificationSink | None = None,
        settings: SyncSettings | None = None,
        client_factory: ClientFactory | None = None,
        logger: Logger | None = None,
    ) -> None:
        self.user_id = user_id
        self.tree = tree
        self.token_store = token_store
        self.selection_store = selection_store
        self.notifier = notifier or LoggingNotificationSink()
        self.settings = settings or SyncSettings()
        self.client_factory = client_factory or default_client_factory(self.settings)
        self.logger = logger or get_logger(name=__name__)

        self.client = None
        self.username = None
        self.selection = None
        self.commit_message = ""

        self._sync_engine = None
        self._commit_engine = None

    @property
    def is_connected(self) -> bool:
        return self.client is not None

    @property
    def is_syncing(self) -> bool:
        return self._sync_engine is not None and self._sync_engine.is_syncing

    @property
    def last_sync_result(self) -> SyncResult | None:
        return self._sync_engine.last_result if self._sync_engine else None

    def modified_files(self) -> list[FileEntry]:
        return self.tree.list_modified()

    async def open(self, token: str | None = None) -> bool:
        """Load the workspace, connect to GitHub and restore the last selection."""

        _ = await self.tree.load()

        if not await self.connect(token=token):
            return False

        try:
            _ = await self.restore_selection()
        except ClientError as e:
            self.logger.warning(f"Could not restore the repository selection: {e}")

        return True

    async def close(self) -> None:
        if self.client is not None:
            await self.client.aclose()

    async def connect(self, token: str | None = None) -> bool:
        """Verify a token, or the stored one, and remember it for the user."""

        if token is None:
            stored = await self.token_store.load_token(self.user_id)
            token = stored.token if stored else None

        if not token:
            self.notifier.notify(
                Notification(title="Not connected", description="Connect a GitHub account first.", variant=NotificationVariant.WARNING)
            )
            return False

        client = self.client_factory(token)

        try:
            user = await client.get_user()
        except AuthError:
            self.logger.warning(f"GitHub rejected the credential of user {self.user_id}")
            await client.aclose()
            self.notifier.notify(
                Notification(
                    title="GitHub authentication failed",
                    description="The GitHub token is invalid or expired. Please connect your account again.",
                    variant=NotificationVariant.ERROR,
                )
            )
            return False
        except ClientError as e:
            await client.aclose()
            self.notifier.notify(Notification(title="Could not reach GitHub", description=str(e), variant=NotificationVariant.ERROR))
            return False

        await self.token_store.save_token(self.user_id, GitHubTokenRow(token=token, username=user.login))

        if self.client is not None:
            await self.client.aclose()

        self.client = client
        self.username = user.login

        fetcher = DirectoryTreeFetcher(client=client, fan_out=self.settings.fetch_fan_out, max_depth=self.settings.fetch_max_depth)
        self._sync_engine = SyncEngine(fetcher=fetcher, tree=self.tree, settings=self.settings)
        self._commit_engine = CommitEngine(client=client, tree=self.tree, settings=self.settings)

        self.logger.info(f"Connected user {self.user_id} to GitHub as {user.login}")

        return True

    async def disconnect(self) -> None:
        await self.token_store.delete_token(self.user_id)
        self.selection_store.clear()

        await self.close()

        self.client = None
        self.username = None
        self.selection = None
        self._sync_engine = None
        self._commit_engine = None

    def _require_client(self) -> GitHubRepositoryClient:
        if self.client is None:
            raise NotConnectedError

        return self.client

    def _require_selection(self) -> RepoSelection:
        if self.selection is None:
            raise NotConnectedError(message="No repository is selected.")

        return self.selection

    async def list_repositories(self) -> list[Repository]:
        return await self._require_client().get_repositories()

    async def list_branches(self, repo_full_name: str | None = None) -> list[Branch]:
        repo_full_name = repo_full_name or self._require_selection().repo_full_name

        return await self._require_client().get_branches(repo_full_name)

    async def select_repository(self, repo_full_name: str, branch: str | None = None) -> RepoSelection:
        """Select a repository visible to the credential, on its default branch unless `branch` is given."""

        repositories = await self.list_repositories()

        repository = next((repository for repository in repositories if repository.full_name == repo_full_name), None)

        if repository is None:
            raise NotFoundError(action="Select repository", resource=repo_full_name)

        selection = RepoSelection(repo_full_name=repository.full_name, branch=branch or repository.default_branch)

        if branch is not None:
            await self._require_branch(selection)

        return self._save_selection(selection)

    async def select_branch(self, branch: str) -> RepoSelection:
        selection = RepoSelection(repo_full_name=self._require_selection().repo_full_name, branch=branch)

        await self._require_branch(selection)

        return self._save_selection(selection)

    async def restore_selection(self) -> RepoSelection | None:
        """Restore the persisted selection if the repository and branch still exist.

        A missing branch falls back to the default branch of the repository. A missing repository clears the
        selection.
        """

        persisted = self.selection_store.load()

        if persisted is None:
            return None

        repositories = await self.list_repositories()

        repository = next((repository for repository in repositories if repository.full_name == persisted.repo_full_name), None)

        if repository is None:
            self.logger.info(f"Forgetting selection of {persisted.repo_full_name}, it is no longer visible")
            self.selection_store.clear()
            self.selection = None
            return None

        branches = await self.list_branches(repository.full_name)

        branch = persisted.branch if any(branch.name == persisted.branch for branch in branches) else repository.default_branch

        return self._save_selection(RepoSelection(repo_full_name=repository.full_name, branch=branch))

    async def _require_branch(self, selection: RepoSelection) -> None:
        branches = await self.list_branches(selection.repo_full_name)

        if not any(branch.name == selection.branch for branch in branches):
            raise NotFoundError(action="Select branch", resource=f"{selection.repo_full_name}@{selection.branch}")

    def _save_selection(self, selection: RepoSelection) -> RepoSelection:
        self.selection_store.save(selection)
        self.selection = selection
        return selection

    async def sync(self, owner: str, repo: str, branch: str) -> SyncResult:
        """Pull a repository branch into the workspace and notify the outcome."""

        if self._sync_engine is None:
            raise NotConnectedError

        result = await self._sync_engine.sync(owner, repo, branch)

        self.notifier.notify(describe_sync_result(result, repo_full_name=f"{owner}/{repo}"))

        return result

    async def sync_repo_to_file_system(self, owner: str, repo: str, branch: str) -> bool:
        """Pull a repository branch into the workspace, returning whether anything was synced.

        Unexpected errors are reported as a single failure notification.
        """

        try:
            result = await self.sync(owner, repo, branch)
        except Exception as e:
            self.logger.exception(f"Unexpected error syncing {owner}/{repo} on {branch}")
            self.notifier.notify(Notification(title="Sync failed", description=str(e), variant=NotificationVariant.ERROR))
            return False

        return result.succeeded

    async def commit(self, message: str | None = None) -> CommitResult:
        """Commit every modified file to the selected branch using `message` or the draft commit message."""

        if self._commit_engine is None:
            raise NotConnectedError

        selection = self._require_selection()

        message = self.commit_message if message is None else message

        result = await self._commit_engine.commit(selection.repo_full_name, selection.branch, message)

        if result.clear_message:
            self.commit_message = ""

        self.notifier.notify(describe_commit_result(result, repo_full_name=selection.repo_full_name, branch=selection.branch))

        return result

    async def commit_changes(self, message: str | None = None) -> bool:
        try:
            result = await self.commit(message)
        except Exception as e:
            self.logger.exception("Unexpected error committing changes")
            self.notifier.notify(Notification(title="Commit failed", description=str(e), variant=NotificationVariant.ERROR))
            return False

        return result.succeeded

    async def save_file_to_repo(self, path: str, content: str, message: str) -> bool:
        """Commit a single file to the selected branch."""

        if self._commit_engine is None or self.selection is None:
            self.notifier.notify(
                Notification(title="Not connected", description="Select a repository first.", variant=NotificationVariant.WARNING)
            )
            return False

        saved = await self._commit_engine.save_file(self.selection.repo_full_name, self.selection.branch, path, content, message)

        if saved:
            self.notifier.notify(
                Notification(
                    title="File saved", description=f"Saved {path} to {self.selection.branch}.", variant=NotificationVariant.SUCCESS
                )
            )
        else:
            self.notifier.notify(
                Notification(title="Save failed", description=f"Could not save {path} to GitHub.", variant=NotificationVariant.ERROR)
            )

        return saved

    async def fetch_file_content(self, path: str) -> str | None:
        """Read the current content of a file on the selected branch, None if it is missing or not a file."""

        client = self._require_client()
        selection = self._require_selection()

        try:
            return await client.get_file_content(selection.repo_full_name, path=to_remote_path(path), ref=selection.branch)
        except NotFoundError:
            return None
        except ClientError as e:
            self.logger.warning(f"Failed to fetch {path} from {selection.repo_full_name}: {e}")
            return None

    def selected_owner_repo(self) -> tuple[str, str, str]:
        """The owner, repository and branch of the current selection."""

        selection = self._require_selection()
        owner, repo = split_full_name(selection.repo_full_name)

        return owner, repo, selection.branch
