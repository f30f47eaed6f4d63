from collections import Counter
from collections.abc import Iterable, Sequence
from typing import Any, overload

import pytest
from fastmcp import FastMCP
from fastmcp.client.client import CallToolResult
from fastmcp.server.middleware.logging import StructuredLoggingMiddleware
from pydantic import BaseModel

from github_workspace_sync.clients.errors.github import AuthError, ClientError, ConflictError, NotFoundError
from github_workspace_sync.clients.models.github import Branch, CommitReceipt, DirectoryItem, GitHubUser, Repository
from github_workspace_sync.notifications import Notification
from github_workspace_sync.settings import SyncSettings
from github_workspace_sync.workspace.backends import InMemoryFileRowStore
from github_workspace_sync.workspace.tree import FileTree

USER_ID = "user-1"
REPO_FULL_NAME = "octo/notes"
BRANCH = "main"

SAMPLE_FILES: dict[str, str] = {
    "README.md": "# Notes",
    "docs/guide.md": "How to write notes.",
    "docs/api/reference.md": "Reference.",
    "journal/2024/january.md": "Cold.",
}


def _remote_parent(path: str) -> str:
    return path.rpartition("/")[0]


class FakeRepositoryClient:
    """An in-memory stand in for `GitHubRepositoryClient` that counts every call."""

    def __init__(self, files: dict[str, str] | None = None, folders: Iterable[str] = ()) -> None:
        self.files: dict[str, str] = dict(files or {})
        self.extra_folders: set[str] = set(folders)
        self.shas: dict[str, str] = {path: f"sha-{path}-0" for path in self.files}
        self.calls: Counter[str] = Counter()
        self.commits: list[dict[str, Any]] = []

        self.user: GitHubUser = GitHubUser(login="octocat", id=1, name="The Octocat")
        self.reject_token: bool = False
        self.repositories: list[Repository] = [
            Repository(
                id=1,
                name="notes",
                full_name=REPO_FULL_NAME,
                private=True,
                html_url=f"https://github.com/{REPO_FULL_NAME}",
                default_branch=BRANCH,
            )
        ]
        self.branches: list[Branch] = [Branch(name=BRANCH, sha="head-main"), Branch(name="drafts", sha="head-drafts")]

        self.content_errors: dict[str, ClientError] = {}
        self.listing_errors: dict[str, ClientError] = {}
        self.write_errors: dict[str, ClientError] = {}

        self.closed: bool = False

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    @property
    def folders(self) -> set[str]:
        folders = set(self.extra_folders)

        for path in self.files:
            parent = _remote_parent(path)
            while parent:
                folders.add(parent)
                parent = _remote_parent(parent)

        return folders

    async def aclose(self) -> None:
        self.closed = True

    async def get_user(self) -> GitHubUser:
        self.calls["get_user"] += 1

        if self.reject_token:
            raise AuthError(action="Get authenticated user")

        return self.user

    async def get_repositories(self) -> list[Repository]:
        self.calls["get_repositories"] += 1
        return list(self.repositories)

    async def get_branches(self, repo_full_name: str) -> list[Branch]:
        self.calls["get_branches"] += 1
        return list(self.branches)

    async def get_directory_listing(self, repo_full_name: str, path: str, ref: str) -> list[DirectoryItem]:
        self.calls["get_directory_listing"] += 1

        if path in self.listing_errors:
            raise self.listing_errors[path]

        if not self.files and not self.extra_folders:
            raise NotFoundError(action="List directory", resource=f"{repo_full_name}/{path}@{ref}")

        items = [
            DirectoryItem(name=folder.rpartition("/")[2], path=folder, type="dir", sha=f"tree-{folder}")
            for folder in sorted(self.folders)
            if _remote_parent(folder) == path
        ]

        items.extend(
            DirectoryItem(name=file_path.rpartition("/")[2], path=file_path, type="file", sha=self.shas[file_path], size=len(content))
            for file_path, content in sorted(self.files.items())
            if _remote_parent(file_path) == path
        )

        return items

    async def get_file_content(self, repo_full_name: str, path: str, ref: str) -> str | None:
        self.calls["get_file_content"] += 1

        if path in self.content_errors:
            raise self.content_errors[path]

        if path not in self.files:
            raise NotFoundError(action="Get file", resource=path)

        return self.files[path]

    async def get_file_sha(self, repo_full_name: str, path: str, ref: str) -> str | None:
        self.calls["get_file_sha"] += 1
        return self.shas.get(path)

    async def download_file(self, download_url: str) -> str:
        self.calls["download_file"] += 1
        return self.files[download_url.rpartition("/raw/")[2]]

    async def create_or_update_file(
        self, repo_full_name: str, path: str, content: str, commit_message: str, branch: str, prior_sha: str | None = None
    ) -> CommitReceipt:
        self.calls["create_or_update_file"] += 1

        if path in self.write_errors:
            raise self.write_errors[path]

        if prior_sha != self.shas.get(path):
            raise ConflictError(action="Create or update file", resource=path)

        self.files[path] = content
        self.shas[path] = f"sha-{path}-{len(self.commits) + 1}"
        self.commits.append({"path": path, "content": content, "message": commit_message, "branch": branch, "prior_sha": prior_sha})

        return CommitReceipt(path=path, sha=self.shas[path], commit_sha=f"commit-{len(self.commits)}")


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now: float = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingNotificationSink:
    def __init__(self) -> None:
        self.notifications: list[Notification] = []

    def notify(self, notification: Notification) -> None:
        self.notifications.append(notification)


@pytest.fixture
def settings() -> SyncSettings:
    return SyncSettings(sync_release_delay_seconds=0, sync_batch_delay_seconds=0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_client() -> FakeRepositoryClient:
    return FakeRepositoryClient(files=SAMPLE_FILES)


@pytest.fixture
def row_store() -> InMemoryFileRowStore:
    return InMemoryFileRowStore()


@pytest.fixture
def tree(row_store: InMemoryFileRowStore, settings: SyncSettings) -> FileTree:
    return FileTree(user_id=USER_ID, row_store=row_store, skipped_file_names=settings.skipped_file_names)


@pytest.fixture
def notifier() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def logging_middleware() -> StructuredLoggingMiddleware:
    return StructuredLoggingMiddleware(include_payloads=True)


@pytest.fixture
def fastmcp(logging_middleware: StructuredLoggingMiddleware):
    return FastMCP(name="GitHub Workspace Sync", middleware=[logging_middleware])


def handle_exclude_keys(dictionary: dict[str, Any], exclude_keys: list[str] | None = None) -> dict[str, Any]:
    if exclude_keys is None:
        return dictionary
    return {key: value for key, value in dictionary.items() if key not in exclude_keys}


@overload
def dump_for_snapshot(
    basemodel: None,
    /,
    exclude_keys: list[str] | None = None,
    exclude_none: bool = True,
    **dump_kwargs: Any,
) -> None: ...


@overload
def dump_for_snapshot(
    basemodel: BaseModel,
    /,
    exclude_keys: list[str] | None = None,
    exclude_none: bool = True,
    **dump_kwargs: Any,
) -> dict[str, Any]: ...


def dump_for_snapshot(
    basemodel: None | BaseModel,
    /,
    exclude_keys: list[str] | None = None,
    exclude_none: bool = True,
    **dump_kwargs: Any,
) -> dict[str, Any] | None:
    if basemodel is None:
        return None

    return handle_exclude_keys(basemodel.model_dump(exclude_none=exclude_none, **dump_kwargs), exclude_keys)


def dump_list_for_snapshot(
    basemodel: None | Sequence[BaseModel],
    /,
    exclude_keys: list[str] | None = None,
    exclude_none: bool = True,
    **dump_kwargs: Any,
) -> list[dict[str, Any]] | None:
    if basemodel is None:
        return []

    return [dump_for_snapshot(item, exclude_keys, exclude_none, **dump_kwargs) for item in basemodel]


def dump_call_tool_result_for_snapshot(
    call_tool_result: CallToolResult,
    /,
) -> dict[str, Any]:
    return {
        "content": [item.model_dump() for item in call_tool_result.content],
        "structured_content": call_tool_result.structured_content,
    }
