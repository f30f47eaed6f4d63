from typing import TYPE_CHECKING, Any, Literal, Self

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from githubkit.versions.v2022_11_28.models import ContentDirectoryItems as GitHubKitContentDirectoryItems
    from githubkit.versions.v2022_11_28.models import ContentFile as GitHubKitContentFile
    from githubkit.versions.v2022_11_28.models import FileCommit as GitHubKitFileCommit
    from githubkit.versions.v2022_11_28.models import PrivateUser as GitHubKitPrivateUser
    from githubkit.versions.v2022_11_28.models import PublicUser as GitHubKitPublicUser
    from githubkit.versions.v2022_11_28.models import Repository as GitHubKitRepository
    from githubkit.versions.v2022_11_28.models import ShortBranch as GitHubKitShortBranch

DirectoryItemType = Literal["file", "dir", "symlink", "submodule"]


def _str_or_none(value: Any) -> str | None:  # pyright: ignore[reportAny]
    """githubkit reports absent optional fields with an `UNSET` sentinel rather than None."""
    return value if isinstance(value, str) else None


class GitHubUser(BaseModel):
    """The identity behind a GitHub credential."""

    login: str = Field(description="The login of the user.")
    id: int = Field(description="The id of the user.")
    name: str | None = Field(default=None, description="The display name of the user.")

    @classmethod
    def from_user(cls, user: "GitHubKitPrivateUser | GitHubKitPublicUser") -> Self:
        return cls(login=user.login, id=user.id, name=_str_or_none(user.name))


class Repository(BaseModel):
    """A repository visible to the credential."""

    model_config = ConfigDict(frozen=True)

    id: int = Field(description="The id of the repository.")
    name: str = Field(description="The name of the repository.")
    full_name: str = Field(description="The owner/name of the repository.")
    private: bool = Field(description="Whether the repository is private.")
    html_url: str = Field(description="The URL of the repository.")
    description: str | None = Field(default=None, description="The description of the repository.")
    default_branch: str = Field(description="The default branch of the repository.")

    @classmethod
    def from_repository(cls, repository: "GitHubKitRepository") -> Self:
        return cls(
            id=repository.id,
            name=repository.name,
            full_name=repository.full_name,
            private=repository.private,
            html_url=repository.html_url,
            description=_str_or_none(repository.description),
            default_branch=repository.default_branch,
        )


class Branch(BaseModel):
    """A branch and the sha of its head commit."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(description="The name of the branch.")
    sha: str = Field(description="The sha of the head commit of the branch.")

    @classmethod
    def from_short_branch(cls, short_branch: "GitHubKitShortBranch") -> Self:
        return cls(name=short_branch.name, sha=short_branch.commit.sha)


class DirectoryItem(BaseModel):
    """An immediate child of a directory in a repository."""

    name: str = Field(description="The name of the item.")
    path: str = Field(description="The repository path of the item, without a leading separator.")
    type: DirectoryItemType = Field(description="The type of the item.")
    sha: str = Field(description="The revision marker of the item.")
    size: int = Field(default=0, description="The size of the item in bytes.")
    download_url: str | None = Field(default=None, description="The direct download URL, if GitHub provides one.")

    @classmethod
    def from_content_item(cls, content_item: "GitHubKitContentDirectoryItems | GitHubKitContentFile") -> Self:
        return cls(
            name=content_item.name,
            path=content_item.path,
            type=content_item.type,  # pyright: ignore[reportArgumentType]
            sha=content_item.sha,
            size=content_item.size,
            download_url=_str_or_none(content_item.download_url),
        )

    @property
    def is_file(self) -> bool:
        return self.type == "file"

    @property
    def is_directory(self) -> bool:
        return self.type == "dir"


class RemoteFile(BaseModel):
    """A file read from a repository at a specific revision."""

    path: str = Field(description="The repository path of the file.")
    sha: str | None = Field(default=None, description="The revision marker of the file. None if the path is not a regular file.")
    content: str | None = Field(default=None, description="The decoded text of the file. None if the path is not a regular file.")


class CommitReceipt(BaseModel):
    """The outcome of a successful single file commit."""

    path: str = Field(description="The repository path that was written.")
    sha: str | None = Field(default=None, description="The new revision marker of the file.")
    commit_sha: str | None = Field(default=None, description="The sha of the commit that was created.")

    @classmethod
    def from_file_commit(cls, path: str, file_commit: "GitHubKitFileCommit") -> Self:
        sha = _str_or_none(file_commit.content.sha) if file_commit.content else None

        return cls(path=path, sha=sha, commit_sha=_str_or_none(file_commit.commit.sha))
