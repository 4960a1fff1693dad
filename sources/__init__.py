"""
GitHub and GitLab sources for onboarding repositories.

This package provides a provider-neutral interface for verifying
credentials, listing organizations and repositories, creating repositories,
storing CI secrets, committing files and tagging the first release, with
bounded retries and rate limit handling.
"""

from .base import Source
from .config import SourceConfig
from .exceptions import (APIException, AuthenticationException,
                         CommitNotFoundException, InvalidArgumentException,
                         MissingScopesException, NotFoundException,
                         PaginationException, ProviderVerificationException,
                         RateLimitException, RepoAlreadyConnectedException,
                         RepoEmptyException, RetryTimeoutException,
                         SecondaryRateLimitException, SecretException,
                         SourceException)
from .factory import create_source, new_github, new_gitlab
from .github import GitHubSource
from .gitlab import GitLabSource
from .models import (DEFAULT_TAG, AccessToken, Commit, Org, PageRequest,
                     PageResponse, Repo)

__all__ = [
    # Sources
    "Source",
    "GitHubSource",
    "GitLabSource",
    "create_source",
    "new_github",
    "new_gitlab",
    "SourceConfig",
    # Models
    "AccessToken",
    "Commit",
    "Org",
    "PageRequest",
    "PageResponse",
    "Repo",
    "DEFAULT_TAG",
    # Exceptions
    "SourceException",
    "InvalidArgumentException",
    "ProviderVerificationException",
    "MissingScopesException",
    "RepoAlreadyConnectedException",
    "SecretException",
    "RetryTimeoutException",
    "RepoEmptyException",
    "CommitNotFoundException",
    "APIException",
    "NotFoundException",
    "AuthenticationException",
    "RateLimitException",
    "SecondaryRateLimitException",
    "PaginationException",
]
