"""
Exception types for source provider operations.

Every error raised by this package derives from ``SourceException`` and
carries keyword context (owner, repo, status code, ...) that is rendered
into the message, so callers can log it without provider-specific decoding.
"""

from typing import Any, Dict, List, Optional


class SourceException(Exception):
    """Base exception for all source provider errors."""

    code: Optional[str] = None
    default_message = "source provider error"

    def __init__(self, message: Optional[str] = None, **context: Any):
        self.message = message or self.default_message
        self.context: Dict[str, Any] = context
        super().__init__(self.message)

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = " ".join(f"{key}={value}" for key, value in self.context.items())
        return f"{self.message} [{details}]"


class InvalidArgumentException(SourceException, ValueError):
    """Raised for malformed caller input. Never retried."""

    code = "E10001"
    default_message = "invalid argument"


class ProviderVerificationException(SourceException):
    """Raised when the provider rejects the credential used for verification."""

    code = "E10030"
    default_message = "verification failed"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
        **context: Any,
    ):
        self.status_code = status_code
        self.body = body
        if status_code is not None:
            context["status_code"] = status_code
        super().__init__(message, **context)


class MissingScopesException(ProviderVerificationException):
    """Raised when the credential is valid but lacks required scopes."""

    def __init__(
        self,
        message: Optional[str] = None,
        provided_scopes: Optional[List[str]] = None,
        required_scopes: Optional[List[str]] = None,
        **context: Any,
    ):
        self.provided_scopes = list(provided_scopes or [])
        self.required_scopes = list(required_scopes or [])
        super().__init__(
            message,
            provided_scopes=",".join(self.provided_scopes),
            required_scopes=",".join(self.required_scopes),
            **context,
        )


class RepoAlreadyConnectedException(SourceException):
    """Raised when a repository already holds the secret and override was not requested."""

    code = "E10022"
    default_message = "repo has already been connected to a policy"


class SecretException(SourceException):
    """Raised when a repository secret could not be written."""

    code = "E10023"
    default_message = "failed to setup repo secret"


class RetryTimeoutException(SourceException):
    """Raised when a retry budget (time or attempts) is exhausted."""

    code = "E10034"
    default_message = "timeout after multiple retries"

    def __init__(
        self,
        message: Optional[str] = None,
        cause: Optional[BaseException] = None,
        **context: Any,
    ):
        self.cause = cause
        super().__init__(message, **context)

    def __str__(self) -> str:
        text = super().__str__()
        if self.cause is not None:
            return f"{text}: {self.cause}"
        return text


class RepoEmptyException(SourceException):
    """Raised when a branch has no commits to build on."""

    code = "E10035"
    default_message = "repository is not initialized"


class CommitNotFoundException(SourceException):
    """Raised when a commit never became visible through the read path."""

    code = "E10036"
    default_message = "commit not found"


class APIException(SourceException):
    """Raised when the provider API returns an error."""

    default_message = "provider API error"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        **context: Any,
    ):
        self.status_code = status_code
        if status_code is not None:
            context["status_code"] = status_code
        super().__init__(message, **context)


class NotFoundException(APIException):
    """Raised when a resource is not found."""

    default_message = "resource not found"


class AuthenticationException(APIException):
    """Raised when authentication fails."""

    default_message = "authentication failed"


class RateLimitException(APIException):
    """Raised when the primary API rate limit is exceeded."""

    default_message = "API rate limit exceeded"


class SecondaryRateLimitException(RateLimitException):
    """Raised when the provider asks the client to back off for ``retry_after`` seconds."""

    default_message = "secondary rate limit exceeded"

    def __init__(
        self,
        message: Optional[str] = None,
        retry_after: float = 60.0,
        **context: Any,
    ):
        self.retry_after = retry_after
        super().__init__(message, **context)


class PaginationException(SourceException):
    """Raised when pagination fails."""

    default_message = "pagination failed"
