import pytest
from inline_snapshot import snapshot

from github_workspace_sync.clients.errors.github import ConflictError, NotFoundError, RequestError
from github_workspace_sync.settings import SyncSettings
from github_workspace_sync.session import WorkspaceSession
from github_workspace_sync.sync.models import CommitStatus, SyncStatus
from github_workspace_sync.workspace.backends import InMemorySelectionStore, InMemoryTokenStore
from github_workspace_sync.workspace.errors import NotConnectedError
from github_workspace_sync.workspace.models import EditOrigin, GitHubTokenRow, RepoSelection
from github_workspace_sync.workspace.tree import FileTree
from tests.conftest import BRANCH, REPO_FULL_NAME, USER_ID, FakeRepositoryClient, RecordingNotificationSink, dump_list_for_snapshot


@pytest.fixture
def session_settings() -> SyncSettings:
    return SyncSettings(
        sync_release_delay_seconds=0,
        sync_batch_delay_seconds=0,
        sync_cooldown_seconds=0,
        commit_cooldown_seconds=0,
        save_cooldown_seconds=0,
    )


@pytest.fixture
def token_store() -> InMemoryTokenStore:
    return InMemoryTokenStore()


@pytest.fixture
def selection_store() -> InMemorySelectionStore:
    return InMemorySelectionStore()


@pytest.fixture
def tokens() -> list[str]:
    return []


@pytest.fixture
def session(
    tree: FileTree,
    token_store: InMemoryTokenStore,
    selection_store: InMemorySelectionStore,
    notifier: RecordingNotificationSink,
    session_settings: SyncSettings,
    fake_client: FakeRepositoryClient,
    tokens: list[str],
) -> WorkspaceSession:
    def client_factory(token: str) -> FakeRepositoryClient:
        tokens.append(token)
        return fake_client

    return WorkspaceSession(
        user_id=USER_ID,
        tree=tree,
        token_store=token_store,
        selection_store=selection_store,
        notifier=notifier,
        settings=session_settings,
        client_factory=client_factory,  # pyright: ignore[reportArgumentType]
    )


@pytest.fixture
async def connected_session(session: WorkspaceSession, notifier: RecordingNotificationSink) -> WorkspaceSession:
    assert await session.connect(token="token-123")
    _ = await session.select_repository(REPO_FULL_NAME)
    notifier.notifications.clear()
    return session


class TestConnect:
    async def test_connect(self, session: WorkspaceSession, token_store: InMemoryTokenStore, notifier: RecordingNotificationSink):
        assert await session.connect(token="token-123")

        assert session.is_connected
        assert session.username == "octocat"
        assert await token_store.load_token(USER_ID) == GitHubTokenRow(token="token-123", username="octocat")
        assert notifier.notifications == []

    async def test_connect_with_stored_token(self, session: WorkspaceSession, token_store: InMemoryTokenStore, tokens: list[str]):
        await token_store.save_token(USER_ID, GitHubTokenRow(token="stored-token", username="octocat"))

        assert await session.connect()

        assert tokens == ["stored-token"]

    async def test_connect_without_token(self, session: WorkspaceSession, notifier: RecordingNotificationSink, tokens: list[str]):
        assert not await session.connect()

        assert tokens == []
        assert [notification.title for notification in notifier.notifications] == ["Not connected"]

    async def test_rejected_token(
        self,
        session: WorkspaceSession,
        fake_client: FakeRepositoryClient,
        token_store: InMemoryTokenStore,
        notifier: RecordingNotificationSink,
    ):
        fake_client.reject_token = True

        assert not await session.connect(token="expired")

        assert not session.is_connected
        assert fake_client.closed
        assert await token_store.load_token(USER_ID) is None
        assert dump_list_for_snapshot(notifier.notifications) == snapshot(
            [
                {
                    "title": "GitHub authentication failed",
                    "description": "The GitHub token is invalid or expired. Please connect your account again.",
                    "variant": "error",
                }
            ]
        )

    async def test_unreachable(
        self,
        session: WorkspaceSession,
        fake_client: FakeRepositoryClient,
        notifier: RecordingNotificationSink,
        monkeypatch: pytest.MonkeyPatch,
    ):
        async def get_user():
            raise RequestError(action="Get authenticated user", message="The request timed out.")

        monkeypatch.setattr(fake_client, "get_user", get_user)

        assert not await session.connect(token="token-123")

        assert [notification.title for notification in notifier.notifications] == ["Could not reach GitHub"]

    async def test_disconnect(
        self,
        connected_session: WorkspaceSession,
        token_store: InMemoryTokenStore,
        selection_store: InMemorySelectionStore,
        fake_client: FakeRepositoryClient,
    ):
        await connected_session.disconnect()

        assert not connected_session.is_connected
        assert connected_session.selection is None
        assert fake_client.closed
        assert await token_store.load_token(USER_ID) is None
        assert selection_store.load() is None

    async def test_requires_connection(self, session: WorkspaceSession):
        with pytest.raises(NotConnectedError):
            _ = await session.list_repositories()

        with pytest.raises(NotConnectedError):
            _ = await session.sync("octo", "notes", BRANCH)


class TestSelection:
    async def test_select_repository_uses_default_branch(self, session: WorkspaceSession, selection_store: InMemorySelectionStore):
        _ = await session.connect(token="token-123")

        selection = await session.select_repository(REPO_FULL_NAME)

        assert selection == RepoSelection(repo_full_name=REPO_FULL_NAME, branch=BRANCH)
        assert selection_store.load() == selection
        assert session.selected_owner_repo() == ("octo", "notes", "main")

    async def test_select_unknown_repository(self, session: WorkspaceSession):
        _ = await session.connect(token="token-123")

        with pytest.raises(NotFoundError):
            _ = await session.select_repository("octo/missing")

    async def test_select_branch(self, connected_session: WorkspaceSession):
        assert await connected_session.select_branch("drafts") == RepoSelection(repo_full_name=REPO_FULL_NAME, branch="drafts")

        with pytest.raises(NotFoundError):
            _ = await connected_session.select_branch("missing")

        assert connected_session.selection == RepoSelection(repo_full_name=REPO_FULL_NAME, branch="drafts")

    async def test_restore_selection(self, session: WorkspaceSession, selection_store: InMemorySelectionStore):
        selection_store.save(RepoSelection(repo_full_name=REPO_FULL_NAME, branch="drafts"))

        assert await session.open(token="token-123")

        assert session.selection == RepoSelection(repo_full_name=REPO_FULL_NAME, branch="drafts")

    async def test_restore_missing_branch_falls_back(self, session: WorkspaceSession, selection_store: InMemorySelectionStore):
        selection_store.save(RepoSelection(repo_full_name=REPO_FULL_NAME, branch="deleted"))

        assert await session.open(token="token-123")

        assert session.selection == RepoSelection(repo_full_name=REPO_FULL_NAME, branch=BRANCH)

    async def test_restore_missing_repository_clears(self, session: WorkspaceSession, selection_store: InMemorySelectionStore):
        selection_store.save(RepoSelection(repo_full_name="octo/gone", branch=BRANCH))

        assert await session.open(token="token-123")

        assert session.selection is None
        assert selection_store.load() is None


class TestSync:
    async def test_sync_repo_to_file_system(self, connected_session: WorkspaceSession, notifier: RecordingNotificationSink):
        assert await connected_session.sync_repo_to_file_system("octo", "notes", BRANCH)

        assert connected_session.tree.get_content_by_path("/docs/api/reference.md") == "Reference."
        assert connected_session.last_sync_result is not None
        assert connected_session.last_sync_result.status is SyncStatus.COMPLETED
        assert dump_list_for_snapshot(notifier.notifications) == snapshot(
            [
                {
                    "title": "Sync completed",
                    "description": "Synced octo/notes: 4 folders and 4 files created, 0 files updated.",
                    "variant": "success",
                }
            ]
        )

    async def test_empty_repository(
        self, connected_session: WorkspaceSession, fake_client: FakeRepositoryClient, notifier: RecordingNotificationSink
    ):
        fake_client.files.clear()
        fake_client.shas.clear()

        assert not await connected_session.sync_repo_to_file_system("octo", "notes", BRANCH)

        assert [notification.title for notification in notifier.notifications] == ["Repository is empty"]

    async def test_unexpected_error_is_one_notification(
        self, connected_session: WorkspaceSession, notifier: RecordingNotificationSink, monkeypatch: pytest.MonkeyPatch
    ):
        async def explode(owner: str, repo: str, branch: str):
            msg = "unexpected"
            raise RuntimeError(msg)

        monkeypatch.setattr(connected_session, "sync", explode)

        assert not await connected_session.sync_repo_to_file_system("octo", "notes", BRANCH)

        assert dump_list_for_snapshot(notifier.notifications) == snapshot(
            [{"title": "Sync failed", "description": "unexpected", "variant": "error"}]
        )


class TestCommit:
    async def test_commit_uses_draft_message(
        self, connected_session: WorkspaceSession, fake_client: FakeRepositoryClient, notifier: RecordingNotificationSink
    ):
        _ = await connected_session.tree.create_file("/", "todo.md", "- write tests")
        connected_session.commit_message = "Add todo"

        result = await connected_session.commit()

        assert result.status is CommitStatus.COMPLETED
        assert connected_session.commit_message == ""
        assert fake_client.commits[-1]["message"] == "Add todo"
        assert connected_session.modified_files() == []
        assert dump_list_for_snapshot(notifier.notifications) == snapshot(
            [{"title": "Changes committed", "description": "Committed 1 file to octo/notes on main.", "variant": "success"}]
        )

    async def test_failed_commit_keeps_draft(
        self, connected_session: WorkspaceSession, fake_client: FakeRepositoryClient, notifier: RecordingNotificationSink
    ):
        _ = await connected_session.tree.create_file("/", "todo.md", "- write tests")
        fake_client.write_errors["todo.md"] = ConflictError(action="Create or update file", resource="todo.md")
        connected_session.commit_message = "Add todo"

        assert not await connected_session.commit_changes()

        assert connected_session.commit_message == "Add todo"
        assert [notification.title for notification in notifier.notifications] == ["Commit failed"]

    async def test_blank_message(self, connected_session: WorkspaceSession, notifier: RecordingNotificationSink):
        _ = await connected_session.tree.create_file("/", "todo.md", "- write tests")

        assert not await connected_session.commit_changes()

        assert [notification.title for notification in notifier.notifications] == ["Commit message required"]

    async def test_commit_requires_selection(self, session: WorkspaceSession, notifier: RecordingNotificationSink):
        _ = await session.connect(token="token-123")

        assert not await session.commit_changes("Message")

        assert [notification.title for notification in notifier.notifications] == ["Commit failed"]


class TestSaveFile:
    async def test_save_file_to_repo(
        self, connected_session: WorkspaceSession, fake_client: FakeRepositoryClient, notifier: RecordingNotificationSink
    ):
        entry = await connected_session.tree.create_file("/", "README.md", "# Notes", origin=EditOrigin.REMOTE)
        _ = await connected_session.tree.update_content(entry.id, "# Saved")

        assert await connected_session.save_file_to_repo("/README.md", "# Saved", "Save readme")

        assert fake_client.files["README.md"] == "# Saved"
        assert not entry.is_modified
        assert [notification.title for notification in notifier.notifications] == ["File saved"]

    async def test_save_without_selection(self, session: WorkspaceSession, notifier: RecordingNotificationSink):
        assert not await session.save_file_to_repo("/README.md", "# Saved", "Save readme")

        assert [notification.title for notification in notifier.notifications] == ["Not connected"]


class TestFetchFileContent:
    async def test_fetch_file_content(self, connected_session: WorkspaceSession):
        assert await connected_session.fetch_file_content("/docs/guide.md") == "How to write notes."

    async def test_missing_file(self, connected_session: WorkspaceSession):
        assert await connected_session.fetch_file_content("/missing.md") is None

    async def test_request_failure(self, connected_session: WorkspaceSession, fake_client: FakeRepositoryClient):
        fake_client.content_errors["README.md"] = RequestError(action="Get file", message="boom")

        assert await connected_session.fetch_file_content("/README.md") is None
