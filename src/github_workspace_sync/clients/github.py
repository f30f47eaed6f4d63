import os
from collections.abc import Awaitable, Callable, Sequence
from logging import Logger, getLogger
from typing import Any, Literal, overload

import httpx
from githubkit import GitHub as GitHubKit
from githubkit.auth.token import TokenAuthStrategy
from githubkit.exception import GitHubException as GitHubKitGitHubException
from githubkit.exception import RateLimitExceeded as GitHubKitRateLimitExceeded
from githubkit.exception import RequestFailed as GitHubKitRequestFailed
from githubkit.exception import RequestTimeout as GitHubKitRequestTimeout
from githubkit.response import Response as GitHubKitResponse
from githubkit.retry import RetryServerError
from pydantic import BaseModel

from github_workspace_sync.clients.errors.github import (
    AuthError,
    ConflictError,
    ContentDecodeError,
    NotFoundError,
    RateLimitError,
    RequestError,
)
from github_workspace_sync.clients.models.github import (
    Branch,
    CommitReceipt,
    DirectoryItem,
    GitHubUser,
    RemoteFile,
    Repository,
)
from github_workspace_sync.utilities.content import decode_content, encode_content

UNAUTHORIZED_ERROR = 401
FORBIDDEN_ERROR = 403
NOT_FOUND_ERROR = 404
CONFLICT_ERROR = 409
UNPROCESSABLE_ERROR = 422

DEFAULT_PER_PAGE = 100
DEFAULT_REQUEST_TIMEOUT = 30.0

REDACTED_REQUEST_ARGS = {"content"}

GITHUBKIT_RESPONSE_TYPE = BaseModel | Sequence[BaseModel]


def get_github_token() -> str:
    env_vars: set[str] = {"GITHUB_TOKEN", "GITHUB_PERSONAL_ACCESS_TOKEN"}
    for env_var in env_vars:
        if env_var in os.environ:
            return os.environ[env_var]
    msg = "GITHUB_TOKEN or GITHUB_PERSONAL_ACCESS_TOKEN must be set"
    raise ValueError(msg)


def get_githubkit_client(
    token: str | None = None, timeout: float = DEFAULT_REQUEST_TIMEOUT, retry_server_errors: bool = True
) -> GitHubKit[Any]:
    # Server errors may be retried by githubkit, rate limits are always surfaced to the caller
    auto_retry = RetryServerError() if retry_server_errors else False

    return GitHubKit[TokenAuthStrategy](
        auth=TokenAuthStrategy(token=token or get_github_token()),
        auto_retry=auto_retry,
        timeout=timeout,
    )


def split_full_name(repo_full_name: str) -> tuple[str, str]:
    """Split an `owner/repo` name into its owner and repository name."""

    owner, _, repo = repo_full_name.strip().partition("/")

    if not owner or not repo or "/" in repo:
        msg = f"Expected a repository name of the form owner/repo, got {repo_full_name!r}"
        raise ValueError(msg)

    return owner, repo


def error_for_status(action: str, status_code: int, resource: str | None = None, message: str | None = None) -> RequestError:
    """Translate an HTTP status from GitHub into the client's error taxonomy."""

    if status_code in (UNAUTHORIZED_ERROR, FORBIDDEN_ERROR):
        return AuthError(action=action, extra_info={"resource": resource, "message": message})

    if status_code == NOT_FOUND_ERROR:
        return NotFoundError(action=action, resource=resource)

    if status_code in (CONFLICT_ERROR, UNPROCESSABLE_ERROR):
        return ConflictError(action=action, resource=resource, extra_info={"message": message})

    return RequestError(action=action, message=message, extra_info={"resource": resource, "status_code": str(status_code)})


def redact_request_args(request_args: dict[str, Any]) -> dict[str, Any]:
    return {key: "<redacted>" if key in REDACTED_REQUEST_ARGS else value for key, value in request_args.items()}


def extract_response[T: GITHUBKIT_RESPONSE_TYPE](response: GitHubKitResponse[T], /) -> T:
    """Extract the response from a response."""

    return response.parsed_data


class GitHubRepositoryClient:
    """Authenticated access to the parts of the GitHub REST API used to mirror a repository into a workspace.

    The client never retries rate limited requests. Every failure is raised as a subclass of `RequestError`.
    """

    githubkit_client: GitHubKit[Any]
    download_client: httpx.AsyncClient
    logger: Logger

    log_requests: bool
    log_responses: bool
    log_on_error: bool

    def __init__(
        self,
        githubkit_client: GitHubKit[Any] | None = None,
        download_client: httpx.AsyncClient | None = None,
        logger: Logger | None = None,
        log_requests: bool = True,
        log_responses: bool = False,
        log_on_error: bool = True,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ):
        self.githubkit_client = githubkit_client or get_githubkit_client(timeout=timeout)
        self.download_client = download_client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)
        self.logger = logger or getLogger(__name__)
        self.log_requests = log_requests
        self.log_responses = log_responses
        self.log_on_error = log_on_error

    async def aclose(self) -> None:
        await self.download_client.aclose()

    def _get_loggers(
        self, log_request: bool | None = None, log_response: bool | None = None, log_on_error: bool | None = None
    ) -> tuple[Callable[[str], Any], Callable[[str], Any], Callable[[BaseException | str], Any]]:
        request_logger = self.logger.info if log_request or self.log_requests else self.logger.debug
        response_logger = self.logger.info if log_response or self.log_responses else self.logger.debug
        error_logger = self.logger.exception if log_on_error or self.log_on_error else self.logger.debug
        return request_logger, response_logger, error_logger

    @overload
    async def _perform_rest_request[T: GITHUBKIT_RESPONSE_TYPE](
        self,
        action: str,
        resource: str | None = None,
        log_request: bool | None = None,
        log_response: bool | None = None,
        log_on_error: bool | None = None,
        error_on_not_found: Literal[False] = False,
        *,
        method: Callable[..., Awaitable[GitHubKitResponse[T]]],
        **request_args: Any,  # pyright: ignore[reportAny]
    ) -> T | None: ...

    @overload
    async def _perform_rest_request[T: GITHUBKIT_RESPONSE_TYPE](
        self,
        action: str,
        resource: str | None = None,
        log_request: bool | None = None,
        log_response: bool | None = None,
        log_on_error: bool | None = None,
        error_on_not_found: Literal[True] = True,
        *,
        method: Callable[..., Awaitable[GitHubKitResponse[T]]],
        **request_args: Any,  # pyright: ignore[reportAny]
    ) -> T: ...

    async def _perform_rest_request[T: GITHUBKIT_RESPONSE_TYPE](
        self,
        action: str,
        resource: str | None = None,
        log_request: bool | None = None,
        log_response: bool | None = None,
        log_on_error: bool | None = None,
        error_on_not_found: bool | None = None,
        *,
        method: Callable[..., Awaitable[GitHubKitResponse[T]]],
        **request_args: Any,  # pyright: ignore[reportAny]
    ) -> T | None:
        """Perform a request and extract the response.

        Args:
            action: The action being performed.
            resource: The resource the action is performed on, used in error messages.
            log_request: Whether to log the request.
            log_response: Whether to log the response.
            log_on_error: Whether to log on error.
            error_on_not_found: Whether to raise an error if the resource is not found.

        Raises:
            RateLimitError: If GitHub is throttling the credential.
            AuthError: If the credential was rejected.
            NotFoundError: If the resource is not found and error_on_not_found is True.
            ConflictError: If a write collides with the current state of the resource.
            RequestError: If the request fails for any other reason, including timeouts.
        """

        request_logger, response_logger, error_logger = self._get_loggers(
            log_request=log_request, log_response=log_response, log_on_error=log_on_error
        )

        logged_args = redact_request_args(request_args)

        request_logger(f"Performing {action} using {method.__name__} with kwargs {logged_args}")

        try:
            response: GitHubKitResponse[T] = await method(**request_args)
        except GitHubKitRateLimitExceeded as e:
            error_logger(f"Rate limited performing {action} using {method.__name__} with kwargs {logged_args}")

            raise RateLimitError(action=action, retry_after=e.retry_after.total_seconds()) from e
        except GitHubKitRequestFailed as e:
            status_code: int = e.response.status_code

            if status_code == NOT_FOUND_ERROR and not error_on_not_found:
                return None

            error_logger(f"RequestFailed error performing {action} using {method.__name__} with kwargs {logged_args}: {e}")

            raise error_for_status(action=action, status_code=status_code, resource=resource, message=str(e)) from e
        except GitHubKitRequestTimeout as e:
            error_logger(f"Timed out performing {action} using {method.__name__} with kwargs {logged_args}")

            raise RequestError(action=action, message="The request timed out.", extra_info={"resource": resource}) from e
        except GitHubKitGitHubException as e:
            error_logger(f"Error performing {action} using {method.__name__} with kwargs {logged_args}: {e}")

            raise RequestError(action=action, message=str(e), extra_info={"resource": resource}) from e

        extracted_response = extract_response(response)

        response_logger(f"Extracted response for {action} using {method.__name__} with kwargs {logged_args}: {extracted_response}")

        return extracted_response

    async def _paginate[T: BaseModel](
        self,
        action: str,
        resource: str | None = None,
        per_page: int = DEFAULT_PER_PAGE,
        *,
        method: Callable[..., Awaitable[GitHubKitResponse[list[T]]]],
        **request_args: Any,  # pyright: ignore[reportAny]
    ) -> list[T]:
        """Request every page of a list endpoint, stopping at the first short page."""

        results: list[T] = []
        page = 1

        while True:
            items: list[T] = await self._perform_rest_request(
                action=action,
                resource=resource,
                error_on_not_found=True,
                method=method,
                per_page=per_page,
                page=page,
                **request_args,
            )

            results.extend(items)

            if len(items) < per_page:
                return results

            page += 1

    async def get_user(self) -> GitHubUser:
        """Get the user the credential belongs to."""

        user = await self._perform_rest_request(
            action="Get authenticated user",
            resource="/user",
            error_on_not_found=True,
            method=self.githubkit_client.rest.users.async_get_authenticated,
        )

        return GitHubUser.from_user(user=user)

    async def get_repositories(self) -> list[Repository]:
        """Get every repository visible to the credential. An empty list is a valid result."""

        repositories = await self._paginate(
            action="List repositories",
            resource="/user/repos",
            method=self.githubkit_client.rest.repos.async_list_for_authenticated_user,
        )

        return [Repository.from_repository(repository=repository) for repository in repositories]

    async def get_branches(self, repo_full_name: str) -> list[Branch]:
        """Get the branches of a repository with the sha of their head commits."""

        owner, repo = split_full_name(repo_full_name)

        short_branches = await self._paginate(
            action="List branches",
            resource=repo_full_name,
            method=self.githubkit_client.rest.repos.async_list_branches,
            owner=owner,
            repo=repo,
        )

        return [Branch.from_short_branch(short_branch=short_branch) for short_branch in short_branches]

    async def _get_content(
        self, action: str, repo_full_name: str, path: str, ref: str, error_on_not_found: bool = True
    ) -> Any | None:  # pyright: ignore[reportAny]
        owner, repo = split_full_name(repo_full_name)

        return await self._perform_rest_request(
            action=action,
            resource=f"{repo_full_name}/{path}@{ref}",
            error_on_not_found=error_on_not_found,
            method=self.githubkit_client.rest.repos.async_get_content,
            owner=owner,
            repo=repo,
            path=path,
            ref=ref,
        )

    async def get_directory_listing(self, repo_full_name: str, path: str, ref: str) -> list[DirectoryItem]:
        """Get the immediate children of a directory at a revision. Does not recurse.

        Args:
            repo_full_name: The owner/name of the repository.
            path: The repository path of the directory, "" for the root.
            ref: The branch, tag or sha to read from.
        """

        content = await self._get_content(action="List directory", repo_full_name=repo_full_name, path=path, ref=ref)

        if isinstance(content, list):
            return [DirectoryItem.from_content_item(content_item=item) for item in content]  # pyright: ignore[reportUnknownVariableType]

        # Listing a file path yields the file itself
        return [DirectoryItem.from_content_item(content_item=content)]

    @overload
    async def get_file(self, repo_full_name: str, path: str, ref: str, error_on_not_found: Literal[True] = True) -> RemoteFile: ...

    @overload
    async def get_file(self, repo_full_name: str, path: str, ref: str, error_on_not_found: Literal[False] = False) -> RemoteFile | None: ...

    async def get_file(self, repo_full_name: str, path: str, ref: str, error_on_not_found: bool = True) -> RemoteFile | None:
        """Get a file and its decoded content from a repository.

        The content is None if the path is a directory, a symlink or a submodule.

        Args:
            repo_full_name: The owner/name of the repository.
            path: The repository path of the file.
            ref: The branch, tag or sha to read from.
            error_on_not_found: Whether to raise an error if the path does not exist at the revision.
        """

        content = await self._get_content(
            action="Get file", repo_full_name=repo_full_name, path=path, ref=ref, error_on_not_found=error_on_not_found
        )

        if content is None:
            return None

        if isinstance(content, list) or content.type != "file":
            return RemoteFile(path=path, sha=None, content=None)

        if content.encoding == "base64" and content.content:
            try:
                text = decode_content(content.content)
            except (UnicodeDecodeError, ValueError) as e:
                raise ContentDecodeError(action="Get file", resource=path) from e

            return RemoteFile(path=content.path, sha=content.sha, content=text)

        # Files over 1MB are returned without inline content
        if isinstance(content.download_url, str):
            return RemoteFile(path=content.path, sha=content.sha, content=await self.download_file(download_url=content.download_url))

        return RemoteFile(path=content.path, sha=content.sha, content="")

    async def get_file_content(self, repo_full_name: str, path: str, ref: str) -> str | None:
        """Get the decoded text of a single file, None if the path is not a regular file."""

        remote_file: RemoteFile = await self.get_file(repo_full_name=repo_full_name, path=path, ref=ref, error_on_not_found=True)

        return remote_file.content

    async def get_file_sha(self, repo_full_name: str, path: str, ref: str) -> str | None:
        """Get the current revision marker of a file, None if the file does not exist."""

        content = await self._get_content(
            action="Get file revision", repo_full_name=repo_full_name, path=path, ref=ref, error_on_not_found=False
        )

        if content is None or isinstance(content, list):
            return None

        return content.sha

    async def download_file(self, download_url: str) -> str:
        """Fetch the raw text of a file from its direct download URL."""

        self.logger.debug(f"Downloading {download_url}")

        try:
            response = await self.download_client.get(download_url)
            _ = response.raise_for_status()
        except httpx.TimeoutException as e:
            raise RequestError(action="Download file", message="The request timed out.", extra_info={"resource": download_url}) from e
        except httpx.HTTPStatusError as e:
            raise error_for_status(action="Download file", status_code=e.response.status_code, resource=download_url) from e
        except httpx.HTTPError as e:
            raise RequestError(action="Download file", message=str(e), extra_info={"resource": download_url}) from e

        try:
            return response.content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ContentDecodeError(action="Download file", resource=download_url) from e

    async def create_or_update_file(
        self,
        repo_full_name: str,
        path: str,
        content: str,
        commit_message: str,
        branch: str,
        prior_sha: str | None = None,
    ) -> CommitReceipt:
        """Commit a single file to a branch.

        With a `prior_sha` the write only succeeds if the file on GitHub is still at that revision. Without one the write
        is a creation and fails if the file already exists.

        Args:
            repo_full_name: The owner/name of the repository.
            path: The repository path of the file, without a leading separator.
            content: The new text of the file.
            commit_message: The commit message.
            branch: The branch to commit to.
            prior_sha: The revision marker the content is based on.

        Raises:
            ConflictError: If the file moved past `prior_sha`, or already exists when no `prior_sha` was given.
        """

        owner, repo = split_full_name(repo_full_name)

        request_args: dict[str, str] = {
            "message": commit_message,
            "content": encode_content(content),
            "branch": branch,
        }

        if prior_sha:
            request_args["sha"] = prior_sha

        file_commit = await self._perform_rest_request(
            action="Create or update file",
            resource=f"{repo_full_name}/{path}@{branch}",
            error_on_not_found=True,
            method=self.githubkit_client.rest.repos.async_create_or_update_file_contents,
            owner=owner,
            repo=repo,
            path=path,
            **request_args,
        )

        return CommitReceipt.from_file_commit(path=path, file_commit=file_commit)
