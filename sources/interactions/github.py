"""
GitHub REST adapter built on PyGithub.

``GitHubAPI`` is the narrow set of REST calls the GitHub source needs.
``GitHubInteraction`` implements it by forwarding to PyGithub; every call
goes through the secondary-rate-limit wrapper and PyGithub errors are
translated into this package's exceptions by ``classify_github_error``.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional, Tuple, TypeVar

import requests
from github import (Auth, BadCredentialsException, Github, GithubException,
                   RateLimitExceededException, UnknownObjectException)

from sources.config import SourceConfig
from sources.exceptions import (APIException, AuthenticationException,
                                NotFoundException, RateLimitException,
                                SecondaryRateLimitException, SourceException)
from sources.models import AccessToken, Identity
from sources.utils.retry import with_secondary_rate_limit_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")

# GitHub asks clients without a Retry-After hint to wait at least a minute.
DEFAULT_SECONDARY_RATE_LIMIT_WAIT = 60.0


@dataclass(frozen=True)
class GitHubRepository:
    """The repository fields the GitHub source reads."""

    name: str
    owner: str
    html_url: str
    default_branch: str
    node_id: str = ""


def _lower_keys(headers: Optional[Mapping[str, Any]]) -> dict:
    return {str(k).lower(): v for k, v in (headers or {}).items()}


def secondary_rate_limit_wait(
    status: Optional[int],
    headers: Optional[Mapping[str, Any]],
    message: Optional[str],
) -> Optional[float]:
    """
    Return the cooldown in seconds if a response is a secondary rate limit.

    :param status: HTTP status code.
    :param headers: Response headers.
    :param message: Error message from the response body.
    :return: Seconds to wait, or None when this is not a secondary rate limit.
    """
    if status not in (403, 429):
        return None

    retry_after = _lower_keys(headers).get("retry-after")
    text = (message or "").lower()
    if retry_after is None and "secondary rate limit" not in text and "abuse" not in text:
        return None

    if retry_after is not None:
        try:
            return max(float(retry_after), 0.0)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring unparsable Retry-After header: {retry_after!r}")
    return DEFAULT_SECONDARY_RATE_LIMIT_WAIT


def _github_message(e: GithubException) -> str:
    data = e.data
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    if data:
        return str(data)
    return str(e)


def classify_github_error(e: GithubException) -> SourceException:
    """
    Map a PyGithub exception onto this package's exception types.

    :param e: Exception raised by PyGithub.
    :return: The matching SourceException (not raised).
    """
    status = e.status
    message = _github_message(e)

    retry_after = secondary_rate_limit_wait(status, e.headers, message)
    if retry_after is not None:
        return SecondaryRateLimitException(
            f"GitHub secondary rate limit: {message}",
            retry_after=retry_after,
            status_code=status,
        )
    if isinstance(e, RateLimitExceededException):
        return RateLimitException(f"GitHub rate limit exceeded: {message}", status_code=status)
    if isinstance(e, BadCredentialsException) or status == 401:
        return AuthenticationException(
            f"GitHub authentication failed: {message}", status_code=status
        )
    if isinstance(e, UnknownObjectException) or status == 404:
        return NotFoundException(f"GitHub resource not found: {message}", status_code=status)
    return APIException(f"GitHub API error: {message}", status_code=status)


class GitHubAPI(ABC):
    """REST calls used by the GitHub source."""

    @abstractmethod
    def get_identity(self) -> Identity:
        """Call ``GET /user`` and report status, login and granted OAuth scopes."""

    @abstractmethod
    def get_authenticated_login(self) -> str:
        pass

    @abstractmethod
    def get_repo(self, owner: str, repo: str) -> GitHubRepository:
        pass

    @abstractmethod
    def create_repo(self, owner: str, name: str) -> None:
        """Create an auto-initialized repo. An empty owner means the user's own namespace."""

    @abstractmethod
    def list_tag_names(self, owner: str, repo: str) -> List[str]:
        """Return tag names from the first page of tags."""

    @abstractmethod
    def get_branch_head(self, owner: str, repo: str, branch: str) -> str:
        pass

    @abstractmethod
    def create_ref(self, owner: str, repo: str, ref: str, sha: str) -> None:
        pass

    @abstractmethod
    def count_workflow_runs(self, owner: str, repo: str) -> int:
        pass

    @abstractmethod
    def dispatch_workflow(self, owner: str, repo: str, workflow_file: str, ref: str) -> None:
        pass

    @abstractmethod
    def get_commit_sha(self, owner: str, repo: str, sha: str) -> str:
        pass

    @abstractmethod
    def get_public_key(self, owner: str, repo: str) -> Tuple[str, str]:
        """Return ``(key_id, base64 key)`` used to seal Actions secrets."""

    @abstractmethod
    def list_secret_names(self, owner: str, repo: str) -> List[str]:
        pass

    @abstractmethod
    def put_secret(
        self, owner: str, repo: str, name: str, encrypted_value: str, key_id: str
    ) -> None:
        pass


class GitHubInteraction(GitHubAPI):
    """
    PyGithub backed implementation of :class:`GitHubAPI`.

    PyGithub's own retry handling is disabled so that secondary rate limits
    are handled in one place.
    """

    def __init__(self, access_token: AccessToken, config: SourceConfig):
        """
        Initialize the GitHub REST adapter.

        :param access_token: Credential for this call.
        :param config: Source configuration (API URL, timeouts, retry budget).
        """
        self.config = config
        self.github = Github(
            base_url=config.github_api_url,
            auth=Auth.Token(access_token.token),
            timeout=config.request_timeout_seconds,
            per_page=100,
            retry=None,
        )

    def _call(self, fn: Callable[[], T]) -> T:
        def attempt() -> T:
            try:
                return fn()
            except GithubException as e:
                raise classify_github_error(e) from e
            except requests.exceptions.RequestException as e:
                raise APIException(f"GitHub request failed: {e}") from e

        return with_secondary_rate_limit_retry(
            self.config.rate_limit_timeout_seconds,
            self.config.rate_limit_retry_count,
            attempt,
        )

    def _repo(self, owner: str, repo: str):
        return self.github.get_repo(f"{owner}/{repo}", lazy=True)

    def get_identity(self) -> Identity:
        def fetch() -> Identity:
            status, headers, body = self.github.requester.requestJson("GET", "/user")
            headers = _lower_keys(headers)
            retry_after = secondary_rate_limit_wait(status, headers, body)
            if retry_after is not None:
                raise SecondaryRateLimitException(
                    "GitHub secondary rate limit", retry_after=retry_after, status_code=status
                )

            login = ""
            if status == 200 and body:
                try:
                    login = json.loads(body).get("login", "")
                except ValueError:
                    logger.warning("GitHub returned a non-JSON body for /user")

            raw_scopes = headers.get("x-oauth-scopes") or ""
            scopes = [s.strip() for s in raw_scopes.split(",") if s.strip()]
            return Identity(status_code=status, login=login, scopes=scopes, body=body or "")

        return self._call(fetch)

    def get_authenticated_login(self) -> str:
        return self._call(lambda: self.github.get_user().login)

    def get_repo(self, owner: str, repo: str) -> GitHubRepository:
        def fetch() -> GitHubRepository:
            gh_repo = self.github.get_repo(f"{owner}/{repo}")
            return GitHubRepository(
                name=gh_repo.name,
                owner=gh_repo.owner.login,
                html_url=gh_repo.html_url,
                default_branch=gh_repo.default_branch,
                node_id=gh_repo.node_id,
            )

        return self._call(fetch)

    def create_repo(self, owner: str, name: str) -> None:
        def create() -> None:
            if owner:
                self.github.get_organization(owner).create_repo(name, auto_init=True)
            else:
                self.github.get_user().create_repo(name, auto_init=True)

        self._call(create)

    def list_tag_names(self, owner: str, repo: str) -> List[str]:
        return self._call(
            lambda: [tag.name for tag in self._repo(owner, repo).get_tags().get_page(0)]
        )

    def get_branch_head(self, owner: str, repo: str, branch: str) -> str:
        return self._call(
            lambda: self._repo(owner, repo).get_git_ref(f"heads/{branch}").object.sha
        )

    def create_ref(self, owner: str, repo: str, ref: str, sha: str) -> None:
        self._call(lambda: self._repo(owner, repo).create_git_ref(ref=ref, sha=sha))

    def count_workflow_runs(self, owner: str, repo: str) -> int:
        return self._call(lambda: self._repo(owner, repo).get_workflow_runs().totalCount)

    def dispatch_workflow(self, owner: str, repo: str, workflow_file: str, ref: str) -> None:
        def dispatch() -> None:
            workflow = self._repo(owner, repo).get_workflow(workflow_file)
            if not workflow.create_dispatch(ref):
                raise APIException(
                    "GitHub refused the workflow dispatch",
                    owner=owner,
                    repo=repo,
                    workflow=workflow_file,
                )

        self._call(dispatch)

    def get_commit_sha(self, owner: str, repo: str, sha: str) -> str:
        return self._call(lambda: self._repo(owner, repo).get_git_commit(sha).sha)

    def get_public_key(self, owner: str, repo: str) -> Tuple[str, str]:
        def fetch() -> Tuple[str, str]:
            key = self._repo(owner, repo).get_public_key()
            return key.key_id, key.key

        return self._call(fetch)

    def list_secret_names(self, owner: str, repo: str) -> List[str]:
        return self._call(lambda: [s.name for s in self._repo(owner, repo).get_secrets()])

    def put_secret(
        self, owner: str, repo: str, name: str, encrypted_value: str, key_id: str
    ) -> None:
        self._call(
            lambda: self.github.requester.requestJsonAndCheck(
                "PUT",
                f"/repos/{owner}/{repo}/actions/secrets/{name}",
                input={"encrypted_value": encrypted_value, "key_id": key_id},
            )
        )
