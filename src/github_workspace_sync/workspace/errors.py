ExtraInfoType = dict[str, str | None]


class WorkspaceError(Exception):
    """An error from the local workspace file tree."""

    def __init__(self, message: str, extra_info: ExtraInfoType | None = None):
        msg = message
        if extra_info:
            msg += " (" + ", ".join([f"{key}: {value}" for key, value in extra_info.items() if value is not None]) + ")"
        super().__init__(msg)


class EntryNotFoundError(WorkspaceError):
    """The path or id does not resolve to an entry of the expected type."""

    def __init__(self, path: str | None = None, entry_id: str | None = None, expected: str | None = None):
        super().__init__(message="The entry could not be found.", extra_info={"path": path, "id": entry_id, "expected": expected})


class EntryConflictError(WorkspaceError):
    """An entry with the same name already exists in the parent folder."""

    def __init__(self, path: str):
        super().__init__(message="An entry already exists at this path.", extra_info={"path": path})


class EntryTypeError(EntryNotFoundError):
    """The path or id resolves to an entry, but not to one of the expected type."""

    def __init__(self, path: str, expected: str, actual: str):
        WorkspaceError.__init__(
            self, message="The entry has the wrong type.", extra_info={"path": path, "expected": expected, "actual": actual}
        )


class NotConnectedError(WorkspaceError):
    """The session has no verified GitHub credential or no selected repository."""

    def __init__(self, message: str = "The workspace is not connected to GitHub."):
        super().__init__(message=message)
