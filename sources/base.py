"""
Base interface for source control providers.

Defines the operations an onboarding service uses to provision a
repository, independent of the hosting provider. Each operation is a
separate call; callers own the sequencing and recover from partial
completion by re-invoking the (idempotent) operations.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional, Sequence, Tuple

from sources.config import SourceConfig
from sources.exceptions import (CommitNotFoundException,
                                InvalidArgumentException, RepoEmptyException,
                                RetryTimeoutException, SourceException)
from sources.models import AccessToken, Commit, Org, PageRequest, PageResponse, Repo

logger = logging.getLogger(__name__)

# Errors that are retried while waiting for the provider to catch up and
# are reported as themselves once the budget runs out.
EVENTUAL_CONSISTENCY_ERRORS = (RepoEmptyException, CommitNotFoundException)


@contextmanager
def operation_context(operation: str, **context: Any) -> Iterator[None]:
    """Attach the operation name and arguments to any SourceException raised inside."""
    try:
        yield
    except SourceException as e:
        e.context.setdefault("operation", operation)
        for key, value in context.items():
            e.context.setdefault(key, value)
        raise


@contextmanager
def unwrap_retry_timeout() -> Iterator[None]:
    """
    Re-raise a retry timeout caused by RepoEmpty or CommitNotFound as that error.

    Other retry timeouts propagate unchanged.
    """
    try:
        yield
    except RetryTimeoutException as e:
        cause = e.cause
        if not isinstance(cause, EVENTUAL_CONSISTENCY_ERRORS):
            raise
        raise type(cause)(cause.message, **cause.context) from e


def split_full_name(full_name: str, provider: str) -> Tuple[str, str]:
    """
    Split ``owner/repo`` into its parts.

    :raises InvalidArgumentException: If the name is not of that form.
    """
    parts = full_name.split("/")
    if len(parts) != 2 or not all(parts):
        raise InvalidArgumentException(
            f"invalid full {provider} repo name '{full_name}', should be in the form owner/repo"
        )
    return parts[0], parts[1]


def validate_commit(commit: Commit) -> None:
    if commit is None:
        raise InvalidArgumentException("commit must not be empty")
    for field_name in ("owner", "repo", "branch"):
        if not getattr(commit, field_name):
            raise InvalidArgumentException(f"commit {field_name} must not be empty")


class Source(ABC):
    """
    Abstract base class for source control providers.

    Implementations hold no per-user state: the credential is passed to every
    operation and provider clients are built per call.
    """

    provider: str = ""

    def __init__(self, config: Optional[SourceConfig] = None):
        """
        Initialize the source.

        :param config: Timeouts and endpoints. Defaults to ``SourceConfig()``.
        """
        self.config = config or SourceConfig()

    @abstractmethod
    def validate_connection(
        self, access_token: AccessToken, required_scopes: Optional[Sequence[str]] = None
    ) -> None:
        """
        Verify the credential and, optionally, the scopes it grants.

        :param access_token: Credential to verify.
        :param required_scopes: Regular expressions that must each match a granted scope.
        :raises ProviderVerificationException: If the identity call is not OK.
        :raises MissingScopesException: If a required scope is not granted.
        """

    @abstractmethod
    def profile(self, access_token: AccessToken) -> Tuple[str, List[Repo]]:
        """
        Return the authenticated username and every repository it owns.
        """

    @abstractmethod
    def list_orgs(
        self, access_token: AccessToken, page: PageRequest
    ) -> Tuple[List[Org], PageResponse]:
        """
        List organizations (or groups) the user belongs to.

        :param page: Page request; ``size == -1`` returns every organization.
        """

    @abstractmethod
    def list_repos(
        self, access_token: AccessToken, owner: str, page: PageRequest
    ) -> Tuple[List[Repo], PageResponse]:
        """
        List repositories belonging to ``owner``.

        :param page: Page request; ``size == -1`` returns every repository.
        """

    @abstractmethod
    def create_repo(
        self,
        access_token: AccessToken,
        owner: str,
        name: str,
        commit: Optional[Commit] = None,
    ) -> None:
        """
        Create a repository, optionally committing initial content.

        Later steps failing leave the repository in place; there is no rollback.
        """

    @abstractmethod
    def get_repo(self, access_token: AccessToken, owner: str, repo: str) -> Repo:
        pass

    @abstractmethod
    def has_secret(
        self, access_token: AccessToken, owner: str, repo: str, secret_name: str
    ) -> bool:
        pass

    @abstractmethod
    def add_secret_to_repo(
        self,
        access_token: AccessToken,
        owner: str,
        repo: str,
        secret_name: str,
        value: str,
        override_secret: bool = False,
    ) -> None:
        """
        Store a secret in the repository's CI settings.

        :raises RepoAlreadyConnectedException: If the secret exists and
                                               ``override_secret`` is False.
        """

    @abstractmethod
    def initial_tag(
        self,
        access_token: AccessToken,
        full_name: str,
        workflow_file_name: str = "",
        commit_sha: str = "",
    ) -> None:
        """
        Tag the repository with the initial release, unless it already has tags.

        :param full_name: Repository as ``owner/repo``.
        :param workflow_file_name: CI definition that must end up with a run.
        :param commit_sha: Commit to tag. Defaults to the default branch tip.
        """

    @abstractmethod
    def create_commit_on_branch(self, access_token: AccessToken, commit: Commit) -> str:
        """
        Commit ``commit.content`` to ``commit.branch`` unless it is already there.

        :return: SHA of the new commit, or of the unchanged branch tip.
        :raises RepoEmptyException: If the branch has no commit to build on.
        :raises CommitNotFoundException: If the new commit never becomes visible.
        """

    @abstractmethod
    def wait_for_commit(
        self, access_token: AccessToken, owner: str, repo: str, sha: str
    ) -> str:
        """Poll until ``sha`` can be read back from the provider."""

    @abstractmethod
    def get_default_branch(self, access_token: AccessToken, owner: str, repo: str) -> str:
        pass
