import asyncio
from collections import defaultdict
from collections.abc import Iterator, Sequence
from logging import Logger

from fastmcp.utilities.logging import get_logger
from pydantic import ValidationError

from github_workspace_sync.paths import ROOT_PATH, ancestor_paths, join_path, leaf_name, normalize_path, parent_path, path_depth
from github_workspace_sync.workspace.backends import FileRowStore
from github_workspace_sync.workspace.errors import EntryConflictError, EntryNotFoundError, EntryTypeError
from github_workspace_sync.workspace.models import EditOrigin, FileEntry, utc_now


class FileTree:
    """The in-session file tree of a single user, written through to a durable row store.

    Every mutation is persisted before the in-memory tree changes, so a failed write leaves the tree untouched. Writes
    to the same file are serialised. Paths are unique within the tree and every entry's path is its parent's path
    joined with its name.
    """

    user_id: str
    row_store: FileRowStore
    skipped_file_names: frozenset[str]
    logger: Logger

    _root: FileEntry
    _by_path: dict[str, FileEntry]
    _by_id: dict[str, FileEntry]
    _pending_paths: set[str]
    _write_locks: defaultdict[str, asyncio.Lock]

    def __init__(
        self, user_id: str, row_store: FileRowStore, skipped_file_names: Sequence[str] = (), logger: Logger | None = None
    ) -> None:
        self.user_id = user_id
        self.row_store = row_store
        self.skipped_file_names = frozenset(skipped_file_names)
        self.logger = logger or get_logger(name=__name__)

        self._reset()

    def _reset(self) -> None:
        self._root = FileEntry(name="", path=ROOT_PATH, type="folder")
        self._by_path = {}
        self._by_id = {}
        self._pending_paths = set()
        self._write_locks = defaultdict(asyncio.Lock)

    @property
    def roots(self) -> list[FileEntry]:
        return list(self._root.children or [])

    async def load(self) -> list[FileEntry]:
        """Rebuild the tree from the row store, deleting rows with a skipped file name.

        Missing ancestor folders of an entry are recreated and persisted. Entries beneath a file are ignored.
        """

        rows = await self.row_store.list_rows(self.user_id)

        skipped_ids = [row.id for row in rows if row.name in self.skipped_file_names]

        if skipped_ids:
            self.logger.info(f"Deleting {len(skipped_ids)} skipped entries for user {self.user_id}")
            await self.row_store.delete_rows(self.user_id, skipped_ids)

        self._reset()

        entries: list[FileEntry] = []

        for row in rows:
            if row.id in skipped_ids:
                continue

            try:
                entries.append(FileEntry.from_row(row))
            except ValidationError:
                self.logger.warning(f"Ignoring invalid row {row.id} at {row.path!r}")

        for entry in sorted(entries, key=lambda entry: path_depth(entry.path)):
            if entry.path in self._by_path:
                self.logger.warning(f"Ignoring duplicate entry {entry.id} at {entry.path}")
                continue

            parent = await self._restore_ancestors(entry.path)

            if parent is None:
                self.logger.warning(f"Ignoring entry {entry.id} at {entry.path}, one of its ancestors is a file")
                continue

            self._attach(parent, entry)

        return self.roots

    def get_by_path(self, path: str) -> FileEntry | None:
        return self._by_path.get(normalize_path(path))

    def get_by_id(self, entry_id: str) -> FileEntry | None:
        return self._by_id.get(entry_id)

    def get_content_by_path(self, path: str) -> str | None:
        entry = self.get_by_path(path)

        if entry is None or not entry.is_file:
            return None

        return entry.content

    def walk(self) -> Iterator[FileEntry]:
        """Yield every entry of the tree, depth first."""

        stack: list[FileEntry] = list(reversed(self.roots))

        while stack:
            entry = stack.pop()
            yield entry
            stack.extend(reversed(entry.children or []))

    def list_modified(self) -> list[FileEntry]:
        return [entry for entry in self.walk() if entry.is_file and entry.is_modified]

    async def create_file(self, parent_path: str, name: str, content: str | None = None, origin: EditOrigin = EditOrigin.USER) -> FileEntry:
        """Create a file under an existing folder.

        Raises:
            EntryNotFoundError: If the parent does not resolve to a folder.
            EntryConflictError: If an entry with the same name exists in the parent.
        """

        parent = self._resolve_folder(parent_path)

        entry = FileEntry(
            name=name,
            path=join_path(parent.path, name),
            type="file",
            content=content,
            is_modified=origin is EditOrigin.USER,
        )

        return await self._create(parent, entry)

    async def create_folder(self, parent_path: str, name: str, origin: EditOrigin = EditOrigin.USER) -> FileEntry:
        """Create a folder under an existing folder.

        Raises:
            EntryNotFoundError: If the parent does not resolve to a folder.
            EntryConflictError: If an entry with the same name exists in the parent.
        """

        parent = self._resolve_folder(parent_path)

        entry = FileEntry(name=name, path=join_path(parent.path, name), type="folder", is_modified=origin is EditOrigin.USER)

        return await self._create(parent, entry)

    async def update_content(
        self, entry_id: str, content: str | None, origin: EditOrigin = EditOrigin.USER, skip_modified: bool = False
    ) -> FileEntry:
        """Write the content of a file.

        User writes refresh the timestamp and mark the file as modified. Remote writes keep the modified flag as it
        was, and leave the timestamp of a modified file untouched.

        Args:
            entry_id: The id of the file.
            content: The new content.
            origin: Who made the change.
            skip_modified: Leave a modified file untouched and return it as it is.

        Raises:
            EntryNotFoundError: If the id does not resolve to a file.
        """

        entry = self._resolve_file(entry_id)

        async with self._write_locks[entry.id]:
            # The file may have been written or deleted while the lock was awaited
            entry = self._resolve_file(entry_id)

            if skip_modified and entry.is_modified:
                return entry

            if origin is EditOrigin.USER:
                updated = entry.model_copy(update={"content": content, "last_modified": utc_now(), "is_modified": True})
            elif entry.is_modified:
                updated = entry.model_copy(update={"content": content})
            else:
                updated = entry.model_copy(update={"content": content, "last_modified": utc_now()})

            await self.row_store.upsert_row(self.user_id, updated.to_row())

            entry.content = updated.content
            entry.last_modified = updated.last_modified
            entry.is_modified = updated.is_modified

            return entry

    async def update_content_by_path(self, path: str, content: str | None, origin: EditOrigin = EditOrigin.USER) -> FileEntry:
        entry = self.get_by_path(path)

        if entry is None:
            raise EntryNotFoundError(path=normalize_path(path), expected="file")

        return await self.update_content(entry.id, content, origin=origin)

    async def mark_committed(self, entry_id: str, content: str | None = None) -> FileEntry:
        """Clear the modified flag of a file after its content reached GitHub.

        When `content` is given the flag is only cleared if the file still holds that content.
        """

        entry = self._resolve_file(entry_id)

        async with self._write_locks[entry.id]:
            entry = self._resolve_file(entry_id)

            if not entry.is_modified or (content is not None and entry.content != content):
                return entry

            await self.row_store.upsert_row(self.user_id, entry.model_copy(update={"is_modified": False}).to_row())

            entry.is_modified = False

            return entry

    async def delete_entry(self, entry_id: str) -> list[FileEntry]:
        """Delete an entry and, for folders, everything beneath it. Returns the deleted entries."""

        entry = self._by_id.get(entry_id)

        if entry is None:
            raise EntryNotFoundError(entry_id=entry_id)

        deleted = [entry, *self._descendants(entry)]

        await self.row_store.delete_rows(self.user_id, [item.id for item in deleted])

        self._detach(entry)

        for item in deleted:
            _ = self._by_id.pop(item.id, None)
            _ = self._by_path.pop(item.path, None)
            _ = self._write_locks.pop(item.id, None)

        return deleted

    async def delete_all(self) -> None:
        await self.row_store.delete_rows(self.user_id, list(self._by_id))

        self._reset()

    def _resolve_folder(self, path: str) -> FileEntry:
        path = normalize_path(path)

        if path == ROOT_PATH:
            return self._root

        entry = self._by_path.get(path)

        if entry is None:
            raise EntryNotFoundError(path=path, expected="folder")

        if not entry.is_folder:
            raise EntryTypeError(path=path, expected="folder", actual=entry.type)

        return entry

    def _resolve_file(self, entry_id: str) -> FileEntry:
        entry = self._by_id.get(entry_id)

        if entry is None:
            raise EntryNotFoundError(entry_id=entry_id, expected="file")

        if not entry.is_file:
            raise EntryTypeError(path=entry.path, expected="file", actual=entry.type)

        return entry

    async def _create(self, parent: FileEntry, entry: FileEntry) -> FileEntry:
        if entry.path in self._by_path or entry.path in self._pending_paths:
            raise EntryConflictError(path=entry.path)

        self._pending_paths.add(entry.path)

        try:
            await self.row_store.upsert_row(self.user_id, entry.to_row())
        finally:
            self._pending_paths.discard(entry.path)

        self._attach(parent, entry)

        return entry

    async def _restore_ancestors(self, path: str) -> FileEntry | None:
        """Return the parent folder of `path`, creating the missing folders on the way. None if an ancestor is a file."""

        parent = self._root

        for folder_path in ancestor_paths(path):
            folder = self._by_path.get(folder_path)

            if folder is None:
                self.logger.info(f"Restoring missing folder {folder_path} for user {self.user_id}")
                folder = FileEntry(name=leaf_name(folder_path), path=folder_path, type="folder")
                await self.row_store.upsert_row(self.user_id, folder.to_row())
                self._attach(parent, folder)
            elif not folder.is_folder:
                return None

            parent = folder

        return parent

    def _attach(self, parent: FileEntry, entry: FileEntry) -> None:
        if parent.children is None:
            parent.children = []

        parent.children.append(entry)

        self._by_path[entry.path] = entry
        self._by_id[entry.id] = entry

    def _detach(self, entry: FileEntry) -> None:
        for parent in (self._by_path.get(parent_path(entry.path)), self._root):
            if parent is None or parent.children is None:
                continue

            if any(child is entry for child in parent.children):
                parent.children = [child for child in parent.children if child is not entry]
                return

    def _descendants(self, entry: FileEntry) -> list[FileEntry]:
        descendants: list[FileEntry] = []

        for child in entry.children or []:
            descendants.append(child)
            descendants.extend(self._descendants(child))

        return descendants
