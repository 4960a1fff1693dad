"""
GitLab REST adapter built on python-gitlab.

``GitLabAPI`` is the set of calls the GitLab source needs;
``GitLabInteraction`` forwards them to python-gitlab. HTTP 429 responses
are retried with backoff and every python-gitlab error is translated by
``classify_gitlab_error``.
"""

import functools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, TypeVar
from urllib.parse import quote

import gitlab
import requests
from gitlab.exceptions import GitlabAuthenticationError, GitlabError

from sources.config import SourceConfig
from sources.exceptions import (APIException, AuthenticationException,
                                NotFoundException, RateLimitException,
                                SourceException)
from sources.models import AccessToken, Identity
from sources.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

T = TypeVar("T")

# https://docs.gitlab.com/ee/api/members.html#valid-access-levels
DEVELOPER_ACCESS = 30
MAINTAINER_ACCESS = 40


@dataclass
class ListResult:
    """A single page returned by a GitLab list endpoint."""

    items: List[Dict[str, Any]] = field(default_factory=list)
    next_page: Optional[int] = None
    total: int = 0


def classify_gitlab_error(e: GitlabError) -> SourceException:
    """
    Map a python-gitlab exception onto this package's exception types.

    :param e: Exception raised by python-gitlab.
    :return: The matching SourceException (not raised).
    """
    status = getattr(e, "response_code", None)
    message = getattr(e, "error_message", None) or str(e)

    if isinstance(e, GitlabAuthenticationError) or status == 401:
        return AuthenticationException(
            f"GitLab authentication failed: {message}", status_code=status
        )
    if status == 404:
        return NotFoundException(f"GitLab resource not found: {message}", status_code=status)
    if status == 429:
        return RateLimitException(f"GitLab rate limit exceeded: {message}", status_code=status)
    return APIException(f"GitLab API error: {message}", status_code=status)


def gitlab_call(func: Callable[..., T]) -> Callable[..., T]:
    """Translate python-gitlab errors and retry rate limited calls."""

    @functools.wraps(func)
    def translated(*args, **kwargs) -> T:
        try:
            return func(*args, **kwargs)
        except GitlabError as e:
            raise classify_gitlab_error(e) from e
        except requests.exceptions.RequestException as e:
            raise APIException(f"GitLab request failed: {e}") from e

    return retry_with_backoff(
        max_retries=3,
        initial_delay=1.0,
        max_delay=60.0,
        exceptions=(RateLimitException,),
    )(translated)


def _int_header(headers, name: str) -> Optional[int]:
    value = headers.get(name)
    if value in (None, ""):
        return None
    try:
        return int(value)
    except ValueError:
        return None


class GitLabAPI(ABC):
    """REST calls used by the GitLab source."""

    @abstractmethod
    def get_identity(self) -> Identity:
        """Call ``GET /user`` and report status, login and token scopes."""

    @abstractmethod
    def current_username(self) -> str:
        pass

    @abstractmethod
    def list_groups(self, page: int, per_page: int) -> ListResult:
        """Groups (top-level and nested) where the user has developer access."""

    @abstractmethod
    def list_user_projects(self, username: str, page: int, per_page: int) -> ListResult:
        pass

    @abstractmethod
    def list_group_projects(self, group: str, page: int, per_page: int) -> ListResult:
        pass

    @abstractmethod
    def list_member_projects(self, page: int, per_page: int) -> ListResult:
        """Projects the user is a member of with at least developer access."""

    @abstractmethod
    def get_namespace_id(self, path: str) -> int:
        pass

    @abstractmethod
    def get_project(self, path: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    def create_project(self, name: str, namespace_id: int) -> Dict[str, Any]:
        pass

    @abstractmethod
    def protect_tags(self, project: str, pattern: str, create_access_level: int) -> None:
        pass

    @abstractmethod
    def list_tag_names(self, project: str) -> List[str]:
        """Return tag names from the first page of tags."""

    @abstractmethod
    def create_tag(self, project: str, tag: str, ref: str, message: str) -> None:
        pass

    @abstractmethod
    def get_variable(self, project: str, key: str) -> Dict[str, Any]:
        """Return a CI/CD variable. Raises NotFoundException if absent."""

    @abstractmethod
    def create_variable(self, project: str, key: str, value: str) -> None:
        pass

    @abstractmethod
    def update_variable(self, project: str, key: str, value: str) -> None:
        pass

    @abstractmethod
    def get_branch_head(self, project: str, branch: str) -> str:
        pass

    @abstractmethod
    def get_file_content(self, project: str, path: str, ref: str) -> str:
        """Return decoded file content. Raises NotFoundException if absent."""

    @abstractmethod
    def create_commit(
        self, project: str, branch: str, message: str, actions: List[Dict[str, str]]
    ) -> str:
        pass

    @abstractmethod
    def get_commit_sha(self, project: str, sha: str) -> str:
        pass

    @abstractmethod
    def count_pipelines(self, project: str, ref: str) -> int:
        pass

    @abstractmethod
    def create_pipeline(self, project: str, ref: str) -> None:
        pass


class GitLabInteraction(GitLabAPI):
    """python-gitlab backed implementation of :class:`GitLabAPI`."""

    def __init__(self, access_token: AccessToken, config: SourceConfig):
        """
        Initialize the GitLab REST adapter.

        Bearer tokens (OAuth or personal access tokens) are sent in the
        Authorization header, any other token type as ``PRIVATE-TOKEN``.

        :param access_token: Credential for this call.
        :param config: Source configuration (GitLab URL, timeouts).
        """
        if (access_token.type or "").lower() == "bearer":
            credentials = {"oauth_token": access_token.token}
        else:
            credentials = {"private_token": access_token.token}

        self.gitlab = gitlab.Gitlab(
            url=config.gitlab_url,
            timeout=config.request_timeout_seconds,
            retry_transient_errors=False,
            **credentials,
        )

    def _project(self, path: str):
        return self.gitlab.projects.get(path, lazy=True)

    def _list_page(self, path: str, page: int, per_page: int, **params) -> ListResult:
        query = {"page": page, "per_page": per_page, **params}
        logger.debug(f"GET {path} page={page} per_page={per_page}")
        response = self.gitlab.http_get(path, query_data=query, raw=True)
        items = response.json()
        if not isinstance(items, list):
            logger.warning(f"Expected list response from {path}, got {type(items)}")
            items = []
        return ListResult(
            items=items,
            next_page=_int_header(response.headers, "X-Next-Page"),
            total=_int_header(response.headers, "X-Total") or 0,
        )

    def get_identity(self) -> Identity:
        try:
            user = self._get_user()
        except AuthenticationException as e:
            return Identity(status_code=e.status_code or 401, body=e.message)
        except APIException as e:
            if e.status_code is None or e.status_code == 429:
                raise
            return Identity(status_code=e.status_code, body=e.message)

        return Identity(
            status_code=200,
            login=user.get("username", ""),
            scopes=self._token_scopes(),
        )

    @gitlab_call
    def _get_user(self) -> Dict[str, Any]:
        return self.gitlab.http_get("/user")

    def _token_scopes(self) -> List[str]:
        try:
            token = self.gitlab.http_get("/personal_access_tokens/self")
            return list(token.get("scopes", []))
        except GitlabError as e:
            logger.debug(f"Not a personal access token ({e}); reading OAuth token info")
        except requests.exceptions.RequestException as e:
            raise APIException(f"GitLab request failed: {e}") from e

        try:
            info = self.gitlab.http_get(f"{self.gitlab.url}/oauth/token/info")
        except GitlabError as e:
            logger.warning(f"Unable to read GitLab token scopes: {e}")
            return []
        except requests.exceptions.RequestException as e:
            raise APIException(f"GitLab request failed: {e}") from e
        return list(info.get("scope") or info.get("scopes") or [])

    @gitlab_call
    def current_username(self) -> str:
        return self.gitlab.http_get("/user")["username"]

    @gitlab_call
    def list_groups(self, page: int, per_page: int) -> ListResult:
        return self._list_page(
            "/groups",
            page,
            per_page,
            top_level_only="false",
            min_access_level=DEVELOPER_ACCESS,
        )

    @gitlab_call
    def list_user_projects(self, username: str, page: int, per_page: int) -> ListResult:
        return self._list_page(f"/users/{quote(username, safe='')}/projects", page, per_page)

    @gitlab_call
    def list_group_projects(self, group: str, page: int, per_page: int) -> ListResult:
        return self._list_page(f"/groups/{quote(group, safe='')}/projects", page, per_page)

    @gitlab_call
    def list_member_projects(self, page: int, per_page: int) -> ListResult:
        return self._list_page(
            "/projects",
            page,
            per_page,
            membership="true",
            min_access_level=DEVELOPER_ACCESS,
        )

    @gitlab_call
    def get_namespace_id(self, path: str) -> int:
        return self.gitlab.namespaces.get(path).id

    @gitlab_call
    def get_project(self, path: str) -> Dict[str, Any]:
        return self.gitlab.projects.get(path).asdict()

    @gitlab_call
    def create_project(self, name: str, namespace_id: int) -> Dict[str, Any]:
        project = self.gitlab.projects.create(
            {
                "name": name,
                "namespace_id": namespace_id,
                "visibility": "public",
                "initialize_with_readme": True,
            }
        )
        return project.asdict()

    @gitlab_call
    def protect_tags(self, project: str, pattern: str, create_access_level: int) -> None:
        self._project(project).protectedtags.create(
            {"name": pattern, "create_access_level": create_access_level}
        )

    @gitlab_call
    def list_tag_names(self, project: str) -> List[str]:
        tags = self._project(project).tags.list(page=1, per_page=20, get_all=False)
        return [tag.name for tag in tags]

    @gitlab_call
    def create_tag(self, project: str, tag: str, ref: str, message: str) -> None:
        self._project(project).tags.create({"tag_name": tag, "ref": ref, "message": message})

    @gitlab_call
    def get_variable(self, project: str, key: str) -> Dict[str, Any]:
        return self._project(project).variables.get(key).asdict()

    @gitlab_call
    def create_variable(self, project: str, key: str, value: str) -> None:
        self._project(project).variables.create(
            {"key": key, "value": value, "masked": True, "protected": True}
        )

    @gitlab_call
    def update_variable(self, project: str, key: str, value: str) -> None:
        self._project(project).variables.update(
            key, {"value": value, "masked": True, "protected": True}
        )

    @gitlab_call
    def get_branch_head(self, project: str, branch: str) -> str:
        return self._project(project).branches.get(branch).commit["id"]

    @gitlab_call
    def get_file_content(self, project: str, path: str, ref: str) -> str:
        return self._project(project).files.get(file_path=path, ref=ref).decode().decode("utf-8")

    @gitlab_call
    def create_commit(
        self, project: str, branch: str, message: str, actions: List[Dict[str, str]]
    ) -> str:
        commit = self._project(project).commits.create(
            {"branch": branch, "commit_message": message, "actions": actions}
        )
        return commit.id

    @gitlab_call
    def get_commit_sha(self, project: str, sha: str) -> str:
        return self._project(project).commits.get(sha).id

    @gitlab_call
    def count_pipelines(self, project: str, ref: str) -> int:
        pipelines = self._project(project).pipelines.list(
            ref=ref, page=1, per_page=1, get_all=False
        )
        return len(pipelines)

    @gitlab_call
    def create_pipeline(self, project: str, ref: str) -> None:
        self._project(project).pipelines.create({"ref": ref})
