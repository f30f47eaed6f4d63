import os
from typing import Self

from pydantic import BaseModel, ConfigDict, Field

ENV_PREFIX = "WORKSPACE_SYNC_"

DEFAULT_SKIPPED_FILE_NAMES: tuple[str, ...] = ("index.file",)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(ENV_PREFIX + name)
    return float(value) if value else default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(ENV_PREFIX + name)
    return int(value) if value else default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(ENV_PREFIX + name)
    if not value:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_names(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    value = os.getenv(ENV_PREFIX + name)
    if value is None:
        return default
    return tuple(item.strip() for item in value.split(",") if item.strip())


class SyncSettings(BaseModel):
    """Timing and concurrency knobs shared by the sync and commit engines."""

    model_config = ConfigDict(frozen=True)

    sync_cooldown_seconds: float = Field(default=10.0, ge=0, description="Minimum time between the start of two sync attempts.")
    sync_release_delay_seconds: float = Field(default=2.0, ge=0, description="How long the sync lock is held after a pass finishes.")
    sync_batch_size: int = Field(default=10, ge=1, description="The number of files written concurrently during a sync.")
    sync_batch_delay_seconds: float = Field(default=0.5, ge=0, description="The pause between two file batches.")

    commit_cooldown_seconds: float = Field(default=10.0, ge=0, description="Minimum time between two commit attempts.")
    save_cooldown_seconds: float = Field(default=2.0, ge=0, description="Minimum time between two single file saves.")

    fetch_fan_out: int = Field(default=8, ge=1, description="The maximum number of concurrent content fetches.")
    fetch_max_depth: int = Field(default=32, ge=0, description="The deepest folder level the tree fetcher descends into.")

    request_timeout_seconds: float = Field(default=30.0, gt=0, description="The timeout applied to every GitHub request.")
    retry_server_errors: bool = Field(default=True, description="Whether GitHub 5xx responses are retried.")

    skipped_file_names: tuple[str, ...] = Field(
        default=DEFAULT_SKIPPED_FILE_NAMES, description="File names that are never synced into or kept in the workspace."
    )

    @classmethod
    def from_env(cls) -> Self:
        return cls(
            sync_cooldown_seconds=_env_float("SYNC_COOLDOWN_SECONDS", 10.0),
            sync_release_delay_seconds=_env_float("SYNC_RELEASE_DELAY_SECONDS", 2.0),
            sync_batch_size=_env_int("SYNC_BATCH_SIZE", 10),
            sync_batch_delay_seconds=_env_float("SYNC_BATCH_DELAY_SECONDS", 0.5),
            commit_cooldown_seconds=_env_float("COMMIT_COOLDOWN_SECONDS", 10.0),
            save_cooldown_seconds=_env_float("SAVE_COOLDOWN_SECONDS", 2.0),
            fetch_fan_out=_env_int("FETCH_FAN_OUT", 8),
            fetch_max_depth=_env_int("FETCH_MAX_DEPTH", 32),
            request_timeout_seconds=_env_float("REQUEST_TIMEOUT_SECONDS", 30.0),
            retry_server_errors=_env_bool("RETRY_SERVER_ERRORS", True),
            skipped_file_names=_env_names("SKIPPED_FILE_NAMES", DEFAULT_SKIPPED_FILE_NAMES),
        )
