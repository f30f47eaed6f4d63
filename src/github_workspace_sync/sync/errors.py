class SyncError(Exception):
    """An error from the sync engine."""


class EmptyResultError(SyncError):
    """The repository fetch returned nothing, the repository is empty or not accessible."""

    def __init__(self, repo_full_name: str, ref: str):
        super().__init__(f"No files were found in {repo_full_name} on {ref}. The repository may be empty or inaccessible.")
        self.repo_full_name: str = repo_full_name
        self.ref: str = ref
