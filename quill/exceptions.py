"""Custom exception hierarchy for quill."""


class QuillError(Exception):
    """Base exception for quill."""
    pass


class ServiceUnavailableError(QuillError):
    """Raised when an upstream service (Anthropic, Resend, Composio) is down."""
    pass


class StorageError(QuillError):
    """Raised when there's an issue with the SQLite store."""
    pass


class NotFoundError(QuillError):
    """Raised when a record is missing or owned by another user."""
    pass


class ValidationError(QuillError):
    """Raised when request input is missing or malformed."""
    pass


class AuthenticationError(QuillError):
    """Raised when a request carries no valid session or signature."""
    pass


class ForbiddenError(QuillError):
    """Raised when an authenticated caller is not allowed to perform the request."""
    pass


class ProcessingError(QuillError):
    """Raised when an invocation fails after input was accepted."""
    pass


class RateLimitExceededError(QuillError):
    """Raised when a caller has used up its request window."""

    def __init__(self, message: str, result, limit: int):
        super().__init__(message)
        self.result = result
        self.limit = limit
