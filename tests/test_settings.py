import pytest
from pydantic import ValidationError

from github_workspace_sync.settings import SyncSettings


def test_defaults(monkeypatch: pytest.MonkeyPatch):
    for name in ("SYNC_COOLDOWN_SECONDS", "SYNC_BATCH_SIZE", "RETRY_SERVER_ERRORS", "SKIPPED_FILE_NAMES"):
        monkeypatch.delenv(f"WORKSPACE_SYNC_{name}", raising=False)

    assert SyncSettings.from_env() == SyncSettings()
    assert SyncSettings().skipped_file_names == ("index.file",)


def test_from_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("WORKSPACE_SYNC_SYNC_COOLDOWN_SECONDS", "30")
    monkeypatch.setenv("WORKSPACE_SYNC_SYNC_BATCH_SIZE", "4")
    monkeypatch.setenv("WORKSPACE_SYNC_RETRY_SERVER_ERRORS", "false")
    monkeypatch.setenv("WORKSPACE_SYNC_SKIPPED_FILE_NAMES", "index.file, .DS_Store,")

    settings = SyncSettings.from_env()

    assert settings.sync_cooldown_seconds == 30
    assert settings.sync_batch_size == 4
    assert not settings.retry_server_errors
    assert settings.skipped_file_names == ("index.file", ".DS_Store")


def test_empty_skip_list(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("WORKSPACE_SYNC_SKIPPED_FILE_NAMES", "")

    assert SyncSettings.from_env().skipped_file_names == ()


def test_invalid_values_are_rejected():
    with pytest.raises(ValidationError):
        _ = SyncSettings(sync_batch_size=0)

    with pytest.raises(ValidationError):
        _ = SyncSettings(sync_cooldown_seconds=-1)
