from enum import StrEnum
from logging import Logger
from typing import Protocol

from fastmcp.utilities.logging import get_logger
from pydantic import BaseModel, Field

from github_workspace_sync.sync.models import CommitResult, CommitStatus, SyncResult, SyncStatus


class NotificationVariant(StrEnum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Notification(BaseModel):
    """A single summary message for the user."""

    title: str = Field(description="The title of the notification.")
    description: str = Field(description="The body of the notification.")
    variant: NotificationVariant = Field(default=NotificationVariant.INFO, description="How the notification should be presented.")


class NotificationSink(Protocol):
    def notify(self, notification: Notification) -> None: ...


class LoggingNotificationSink:
    logger: Logger

    def __init__(self, logger: Logger | None = None) -> None:
        self.logger = logger or get_logger(name=__name__)

    def notify(self, notification: Notification) -> None:
        message = f"{notification.title}: {notification.description}"

        match notification.variant:
            case NotificationVariant.ERROR:
                self.logger.error(message)
            case NotificationVariant.WARNING:
                self.logger.warning(message)
            case _:
                self.logger.info(message)


def _count(number: int, noun: str) -> str:
    return f"{number} {noun}" if number == 1 else f"{number} {noun}s"


def describe_sync_result(result: SyncResult, repo_full_name: str) -> Notification:
    """Summarize a sync attempt as exactly one notification. Per path failures are counted, not listed."""

    match result.status:
        case SyncStatus.IN_PROGRESS:
            return Notification(title="Sync in progress", description=result.message or "", variant=NotificationVariant.INFO)
        case SyncStatus.TOO_SOON:
            return Notification(title="Please wait", description=result.message or "", variant=NotificationVariant.WARNING)
        case SyncStatus.EMPTY_REPOSITORY:
            return Notification(
                title="Repository is empty",
                description=f"No files were found in {repo_full_name}. It may be empty or you may not have access to it.",
                variant=NotificationVariant.ERROR,
            )
        case SyncStatus.FETCH_FAILED:
            return Notification(
                title="Sync failed",
                description=f"Could not read {repo_full_name}: {result.message}",
                variant=NotificationVariant.ERROR,
            )
        case SyncStatus.FAILED:
            return Notification(
                title="Sync failed",
                description=f"Nothing from {repo_full_name} could be written, {_count(len(result.failures), 'path')} failed.",
                variant=NotificationVariant.ERROR,
            )
        case _:
            pass

    description = (
        f"Synced {repo_full_name}: {_count(result.folders_created, 'folder')} and {_count(result.files_created, 'file')} created, "
        + f"{_count(result.files_updated, 'file')} updated."
    )

    if result.preserved_paths:
        description += f" Kept local changes to {_count(len(result.preserved_paths), 'file')}."

    if result.status is SyncStatus.PARTIAL:
        description += f" {_count(len(result.failures), 'path')} failed."

        if result.rate_limited:
            description += " GitHub is rate limiting requests, try again later."

        return Notification(title="Sync partially completed", description=description, variant=NotificationVariant.WARNING)

    return Notification(title="Sync completed", description=description, variant=NotificationVariant.SUCCESS)


def describe_commit_result(result: CommitResult, repo_full_name: str, branch: str) -> Notification:
    """Summarize a commit attempt as exactly one notification."""

    match result.status:
        case CommitStatus.REJECTED:
            return Notification(title="Commit message required", description=result.message or "", variant=NotificationVariant.WARNING)
        case CommitStatus.NOTHING_TO_COMMIT:
            return Notification(title="Nothing to commit", description=result.message or "", variant=NotificationVariant.INFO)
        case CommitStatus.IN_PROGRESS:
            return Notification(title="Commit in progress", description=result.message or "", variant=NotificationVariant.INFO)
        case CommitStatus.TOO_SOON:
            return Notification(title="Please wait", description=result.message or "", variant=NotificationVariant.WARNING)
        case CommitStatus.COMPLETED:
            return Notification(
                title="Changes committed",
                description=f"Committed {_count(result.success_count, 'file')} to {repo_full_name} on {branch}.",
                variant=NotificationVariant.SUCCESS,
            )
        case _:
            pass

    description = f"{_count(result.success_count, 'file')} committed, {_count(result.failure_count, 'file')} failed on {branch}."

    if result.rate_limited:
        description += " GitHub is rate limiting requests, try again later."

    if result.status is CommitStatus.PARTIAL:
        return Notification(title="Commit partially completed", description=description, variant=NotificationVariant.WARNING)

    return Notification(title="Commit failed", description=description, variant=NotificationVariant.ERROR)
