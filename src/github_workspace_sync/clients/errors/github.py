ExtraInfoType = dict[str, str | None]


class ClientError(Exception):
    """A request error from the GitHub repository client."""

    def __init__(self, message: str, extra_info: ExtraInfoType | None = None):
        msg = message
        if extra_info:
            msg += " (" + ", ".join([f"{key}: {value}" for key, value in extra_info.items() if value is not None]) + ")"
        super().__init__(msg)


class RequestError(ClientError):
    """A request to GitHub failed, including network failures and timeouts."""

    def __init__(self, action: str, message: str | None = None, extra_info: ExtraInfoType | None = None):
        if not extra_info:
            extra_info = {}
        super().__init__(message="A request error occured.", extra_info={"action": action, "message": message, **extra_info})


class AuthError(RequestError):
    """The credential is missing, invalid or expired."""

    def __init__(self, action: str, extra_info: ExtraInfoType | None = None):
        super().__init__(action=action, message="The GitHub credential was rejected.", extra_info=extra_info)


class NotFoundError(RequestError):
    """The repository, branch or path does not exist."""

    def __init__(self, action: str, resource: str | None = None, extra_info: ExtraInfoType | None = None):
        if not extra_info:
            extra_info = {}
        super().__init__(
            action=action,
            message="The resource could not be found.",
            extra_info={"resource": resource, **extra_info},
        )


class ConflictError(RequestError):
    """The write collided with the current state of the file on GitHub."""

    def __init__(self, action: str, resource: str | None = None, extra_info: ExtraInfoType | None = None):
        if not extra_info:
            extra_info = {}
        super().__init__(
            action=action,
            message="The resource has changed or already exists.",
            extra_info={"resource": resource, **extra_info},
        )


class RateLimitError(RequestError):
    """GitHub is throttling the credential. The client does not retry, callers must back off."""

    def __init__(self, action: str, retry_after: float | None = None):
        super().__init__(
            action=action,
            message="The GitHub rate limit has been exceeded.",
            extra_info={"retry_after": str(retry_after) if retry_after is not None else None},
        )
        self.retry_after: float | None = retry_after


class ContentDecodeError(RequestError):
    """The file content is not valid UTF-8 text."""

    def __init__(self, action: str, resource: str):
        super().__init__(action=action, message="The file content could not be decoded as text.", extra_info={"resource": resource})
