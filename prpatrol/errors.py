from __future__ import annotations


class QueryError(RuntimeError):
    """A remote search failed; the message is what a group records as its error."""


class AuthError(QueryError):
    def __init__(self, message: str = "Authentication failed. Check your PAT.") -> None:
        super().__init__(message)


class RateLimited(QueryError):
    def __init__(self, resume_at: float) -> None:
        super().__init__("Rate limited. Will retry after backoff.")
        # Epoch seconds after which requests may resume.
        self.resume_at = resume_at


class RemoteError(QueryError):
    def __init__(self, status: int, detail: str | None = None) -> None:
        message = f"GitHub API error: {status}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
        self.status = status


class ValidationError(ValueError):
    pass


class GroupNotFound(LookupError):
    pass


class HostOperationError(RuntimeError):
    """A tab, window or tab-group operation failed on the host."""
