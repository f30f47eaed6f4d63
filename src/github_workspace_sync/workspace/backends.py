from collections.abc import Sequence
from logging import Logger
from pathlib import Path
from typing import Protocol

from fastmcp.utilities.logging import get_logger
from pydantic import ValidationError

from github_workspace_sync.workspace.models import FileRow, GitHubTokenRow, RepoSelection

logger: Logger = get_logger(name=__name__)


class FileRowStore(Protocol):
    """Durable storage for the rows of the `files` table, keyed by user and id."""

    async def list_rows(self, user_id: str) -> list[FileRow]: ...

    async def upsert_row(self, user_id: str, row: FileRow) -> None: ...

    async def delete_rows(self, user_id: str, ids: Sequence[str]) -> None: ...


class TokenStore(Protocol):
    """Durable storage for the `github_tokens` table, one row per user."""

    async def save_token(self, user_id: str, row: GitHubTokenRow) -> None: ...

    async def load_token(self, user_id: str) -> GitHubTokenRow | None: ...

    async def delete_token(self, user_id: str) -> None: ...


class SelectionStore(Protocol):
    """Client side storage for the last selected repository and branch."""

    def save(self, selection: RepoSelection) -> None: ...

    def load(self) -> RepoSelection | None: ...

    def clear(self) -> None: ...


class InMemoryFileRowStore:
    rows: dict[str, dict[str, FileRow]]

    def __init__(self) -> None:
        self.rows = {}

    async def list_rows(self, user_id: str) -> list[FileRow]:
        return [row.model_copy() for row in self.rows.get(user_id, {}).values()]

    async def upsert_row(self, user_id: str, row: FileRow) -> None:
        self.rows.setdefault(user_id, {})[row.id] = row.model_copy()

    async def delete_rows(self, user_id: str, ids: Sequence[str]) -> None:
        user_rows = self.rows.get(user_id, {})

        for row_id in ids:
            _ = user_rows.pop(row_id, None)


class InMemoryTokenStore:
    tokens: dict[str, GitHubTokenRow]

    def __init__(self) -> None:
        self.tokens = {}

    async def save_token(self, user_id: str, row: GitHubTokenRow) -> None:
        self.tokens[user_id] = row

    async def load_token(self, user_id: str) -> GitHubTokenRow | None:
        return self.tokens.get(user_id)

    async def delete_token(self, user_id: str) -> None:
        _ = self.tokens.pop(user_id, None)


class InMemorySelectionStore:
    selection: RepoSelection | None

    def __init__(self, selection: RepoSelection | None = None) -> None:
        self.selection = selection

    def save(self, selection: RepoSelection) -> None:
        self.selection = selection

    def load(self) -> RepoSelection | None:
        return self.selection

    def clear(self) -> None:
        self.selection = None


class JsonFileSelectionStore:
    """Persists the selection as a small JSON document. An unreadable document is treated as no selection."""

    path: Path

    def __init__(self, path: Path) -> None:
        self.path = path

    def save(self, selection: RepoSelection) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        _ = self.path.write_text(selection.model_dump_json())

    def load(self) -> RepoSelection | None:
        if not self.path.exists():
            return None

        try:
            return RepoSelection.model_validate_json(self.path.read_text())
        except ValidationError:
            logger.warning(f"Ignoring unreadable repository selection in {self.path}")
            return None

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
