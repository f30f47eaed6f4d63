import asyncio
from logging import Logger

from fastmcp.utilities.logging import get_logger

from github_workspace_sync.clients.errors.github import ClientError, NotFoundError, RateLimitError
from github_workspace_sync.clients.github import GitHubRepositoryClient
from github_workspace_sync.clients.models.github import DirectoryItem
from github_workspace_sync.paths import from_remote_path, path_depth, to_remote_path
from github_workspace_sync.sync.errors import EmptyResultError
from github_workspace_sync.sync.models import RemoteEntry

DEFAULT_FAN_OUT = 8
DEFAULT_MAX_DEPTH = 32


class DirectoryTreeFetcher:
    """Flattens a repository subtree into a list of `RemoteEntry`.

    Folders are walked depth first. File content is fetched concurrently within a folder, bounded by `fan_out`. A
    failure to fetch one file or to list one subfolder is recorded on its entry and never stops the walk.
    """

    client: GitHubRepositoryClient
    fan_out: int
    max_depth: int
    eager_content: bool
    logger: Logger

    def __init__(
        self,
        client: GitHubRepositoryClient,
        fan_out: int = DEFAULT_FAN_OUT,
        max_depth: int = DEFAULT_MAX_DEPTH,
        eager_content: bool = True,
        logger: Logger | None = None,
    ) -> None:
        self.client = client
        self.fan_out = fan_out
        self.max_depth = max_depth
        self.eager_content = eager_content
        self.logger = logger or get_logger(name=__name__)

    async def fetch_tree(self, owner: str, repo: str, ref: str, path: str = "", error_on_empty: bool = False) -> list[RemoteEntry]:
        """Fetch every file and folder beneath `path`.

        Args:
            owner: The owner of the repository.
            repo: The name of the repository.
            ref: The branch, tag or sha to read from.
            path: The folder to start from, the root of the repository by default.
            error_on_empty: Whether to raise `EmptyResultError` instead of returning an empty list.

        Raises:
            EmptyResultError: If nothing was found and `error_on_empty` is set. An empty repository and a missing
                starting folder both count as nothing found.
            ClientError: If the starting folder could not be listed for any other reason.
        """

        repo_full_name = f"{owner}/{repo}"
        semaphore = asyncio.Semaphore(self.fan_out)
        entries: list[RemoteEntry] = []

        try:
            items = await self.client.get_directory_listing(repo_full_name, path=to_remote_path(path), ref=ref)
        except NotFoundError:
            # GitHub answers 404 for the root of an empty repository
            self.logger.info(f"Nothing to list at {path or '/'} in {repo_full_name} on {ref}")
            items = []

        await self._walk(repo_full_name, ref, items, entries, semaphore)

        if error_on_empty and not entries:
            raise EmptyResultError(repo_full_name=repo_full_name, ref=ref)

        self.logger.debug(f"Fetched {len(entries)} entries from {repo_full_name} on {ref}")

        return entries

    async def fetch_content(self, repo_full_name: str, path: str, ref: str, download_url: str | None = None) -> str:
        """Fetch the text of a file, trying the direct download URL before the contents endpoint."""

        if download_url:
            try:
                return await self.client.download_file(download_url)
            except ClientError as e:
                self.logger.debug(f"Download of {path} failed, falling back to the contents endpoint: {e}")

        content = await self.client.get_file_content(repo_full_name, path=to_remote_path(path), ref=ref)

        return content or ""

    async def _walk(
        self,
        repo_full_name: str,
        ref: str,
        items: list[DirectoryItem],
        entries: list[RemoteEntry],
        semaphore: asyncio.Semaphore,
    ) -> None:
        files: list[DirectoryItem] = []
        folders: list[DirectoryItem] = []

        for item in items:
            if item.is_file:
                files.append(item)
            elif item.is_directory:
                folders.append(item)
            else:
                self.logger.debug(f"Skipping {item.type} {item.path} in {repo_full_name}")

        entries.extend(await asyncio.gather(*[self._fetch_file(repo_full_name, ref, item, semaphore) for item in files]))

        for folder in folders:
            folder_path = from_remote_path(folder.path)

            if path_depth(folder_path) >= self.max_depth:
                self.logger.debug(f"Not descending into {folder_path}, it is at the maximum depth of {self.max_depth}")
                entries.append(RemoteEntry(path=folder_path, type="folder"))
                continue

            try:
                children = await self.client.get_directory_listing(repo_full_name, path=folder.path, ref=ref)
            except ClientError as e:
                self.logger.warning(f"Failed to list {folder_path} in {repo_full_name}: {e}")
                entries.append(RemoteEntry(path=folder_path, type="folder", error=str(e), rate_limited=isinstance(e, RateLimitError)))
                continue

            entries.append(RemoteEntry(path=folder_path, type="folder"))

            await self._walk(repo_full_name, ref, children, entries, semaphore)

    async def _fetch_file(self, repo_full_name: str, ref: str, item: DirectoryItem, semaphore: asyncio.Semaphore) -> RemoteEntry:
        path = from_remote_path(item.path)

        if not self.eager_content:
            return RemoteEntry(path=path, type="file", download_url=item.download_url)

        async with semaphore:
            try:
                content = await self.fetch_content(repo_full_name, path=item.path, ref=ref, download_url=item.download_url)
            except ClientError as e:
                self.logger.warning(f"Failed to fetch {path} from {repo_full_name}: {e}")
                return RemoteEntry(
                    path=path, type="file", download_url=item.download_url, error=str(e), rate_limited=isinstance(e, RateLimitError)
                )

        return RemoteEntry(path=path, type="file", content=content, download_url=item.download_url)
