"""
GitLab source implementation.

GitLab paginates with integer page numbers, which are passed through as the
page token. "Secrets" are masked, protected project CI/CD variables.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sources.base import (Source, operation_context, split_full_name,
                          unwrap_retry_timeout, validate_commit)
from sources.config import SourceConfig
from sources.exceptions import (CommitNotFoundException,
                                InvalidArgumentException, NotFoundException,
                                RepoAlreadyConnectedException,
                                RepoEmptyException, RetryTimeoutException)
from sources.interactions.gitlab import MAINTAINER_ACCESS, GitLabAPI, ListResult
from sources.models import (DEFAULT_TAG, AccessToken, Commit, Org, PageRequest,
                            PageResponse, Repo)
from sources.utils.pagination import (Page, format_page_number, list_all,
                                      parse_page_number, validate_page_request)
from sources.utils.retry import retry
from sources.validation import verify_identity

logger = logging.getLogger(__name__)

GitLabAPIFactory = Callable[[AccessToken], GitLabAPI]

CI_PATH = "/-/pipelines"
PROTECTED_TAG_PATTERN = "v*"


def _to_page(result: ListResult, items: List[Any]) -> Page:
    return Page(
        items=items,
        next_token=format_page_number(result.next_page),
        total_count=result.total,
    )


def _repo_from_project(project: Dict[str, Any]) -> Repo:
    web_url = project.get("web_url", "")
    namespace = project.get("namespace") or {}
    return Repo(
        name=project.get("path") or project["name"],
        org=namespace.get("full_path") or namespace.get("path", ""),
        url=web_url,
        ci_url=web_url + CI_PATH,
    )


def _project_owner(project: Dict[str, Any]) -> str:
    owner = project.get("owner") or {}
    namespace = project.get("namespace") or {}
    return owner.get("username") or namespace.get("full_path") or namespace.get("path", "")


class GitLabSource(Source):
    """Source implementation for GitLab."""

    provider = "GitLab"

    def __init__(self, config: Optional[SourceConfig], api_factory: GitLabAPIFactory):
        """
        Initialize the GitLab source.

        :param config: Timeouts and endpoints.
        :param api_factory: Builds a GitLab adapter for a credential.
        """
        super().__init__(config)
        self.api_factory = api_factory

    def validate_connection(
        self, access_token: AccessToken, required_scopes: Optional[Sequence[str]] = None
    ) -> None:
        identity = self.api_factory(access_token).get_identity()
        verify_identity(identity, required_scopes, self.provider)
        logger.info(f"Verified GitLab connection for {identity.login}")

    def profile(self, access_token: AccessToken) -> Tuple[str, List[Repo]]:
        api = self.api_factory(access_token)

        def fetch(token: str, size: int) -> Page:
            result = api.list_member_projects(parse_page_number(token), size)
            return _to_page(result, [_repo_from_project(p) for p in result.items])

        with operation_context("profile"):
            username = api.current_username()
            repos, _ = list_all(fetch, PageRequest())
        return username, repos

    def list_orgs(
        self, access_token: AccessToken, page: PageRequest
    ) -> Tuple[List[Org], PageResponse]:
        parse_page_number(validate_page_request(page).token)
        api = self.api_factory(access_token)

        def fetch(token: str, size: int) -> Page:
            result = api.list_groups(parse_page_number(token), size)
            groups = [Org(name=g["name"], id=g["full_path"]) for g in result.items]
            return _to_page(result, groups)

        with operation_context("list_orgs"):
            return list_all(fetch, page)

    def list_repos(
        self, access_token: AccessToken, owner: str, page: PageRequest
    ) -> Tuple[List[Repo], PageResponse]:
        if not owner:
            raise InvalidArgumentException("owner must not be empty")
        parse_page_number(validate_page_request(page).token)
        api = self.api_factory(access_token)

        with operation_context("list_repos", owner=owner):
            username = api.current_username()

            if owner == username:

                def fetch(token: str, size: int) -> Page:
                    result = api.list_user_projects(username, parse_page_number(token), size)
                    # Projects the user contributes to elsewhere are listed too.
                    owned = [p for p in result.items if _project_owner(p) == owner]
                    return _to_page(result, [_repo_from_project(p) for p in owned])

            else:

                def fetch(token: str, size: int) -> Page:
                    result = api.list_group_projects(owner, parse_page_number(token), size)
                    return _to_page(result, [_repo_from_project(p) for p in result.items])

            return list_all(fetch, page)

    def create_repo(
        self,
        access_token: AccessToken,
        owner: str,
        name: str,
        commit: Optional[Commit] = None,
    ) -> None:
        if not owner:
            raise InvalidArgumentException("no org name was provided")
        if not name:
            raise InvalidArgumentException("repo name must not be empty")
        api = self.api_factory(access_token)

        with operation_context("create_repo", owner=owner, repo=name):
            namespace_id = api.get_namespace_id(owner)
            project = api.create_project(name, namespace_id)
            path = project.get("path_with_namespace") or f"{owner}/{name}"
            logger.info(f"Created GitLab project {path}")
            api.protect_tags(path, PROTECTED_TAG_PATTERN, MAINTAINER_ACCESS)

        if commit is not None:
            self.create_commit_on_branch(access_token, commit)

    def get_repo(self, access_token: AccessToken, owner: str, repo: str) -> Repo:
        with operation_context("get_repo", owner=owner, repo=repo):
            project = self.api_factory(access_token).get_project(f"{owner}/{repo}")
        return _repo_from_project(project)

    def get_default_branch(self, access_token: AccessToken, owner: str, repo: str) -> str:
        with operation_context("get_default_branch", owner=owner, repo=repo):
            project = self.api_factory(access_token).get_project(f"{owner}/{repo}")
        return project.get("default_branch") or ""

    def has_secret(
        self, access_token: AccessToken, owner: str, repo: str, secret_name: str
    ) -> bool:
        with operation_context("has_secret", owner=owner, repo=repo):
            api = self.api_factory(access_token)
            return self._has_variable(api, f"{owner}/{repo}", secret_name)

    def _has_variable(self, api: GitLabAPI, project: str, key: str) -> bool:
        try:
            api.get_variable(project, key)
        except NotFoundException:
            return False
        return True

    def add_secret_to_repo(
        self,
        access_token: AccessToken,
        owner: str,
        repo: str,
        secret_name: str,
        value: str,
        override_secret: bool = False,
    ) -> None:
        if not owner:
            raise InvalidArgumentException("no org name was provided")
        if not repo:
            raise InvalidArgumentException("no repo name was provided")
        api = self.api_factory(access_token)
        project = f"{owner}/{repo}"

        with operation_context("add_secret_to_repo", owner=owner, repo=repo):
            exists = self._has_variable(api, project, secret_name)
            if exists and not override_secret:
                raise RepoAlreadyConnectedException(
                    "you're trying to link to an existing repository that already has a "
                    "secret; consider overwriting the push secret",
                    secret_name=secret_name,
                )

            if exists:
                api.update_variable(project, secret_name, value)
            else:
                api.create_variable(project, secret_name, value)
        logger.info(f"Stored variable {secret_name} in {project}")

    def initial_tag(
        self,
        access_token: AccessToken,
        full_name: str,
        workflow_file_name: str = "",
        commit_sha: str = "",
    ) -> None:
        owner, name = split_full_name(full_name, "gitlab")
        api = self.api_factory(access_token)
        project = f"{owner}/{name}"

        with operation_context("initial_tag", owner=owner, repo=name):
            if api.list_tag_names(project):
                logger.info(f"{full_name} already has tags; skipping initial tag")
                return

            ref = commit_sha
            if not ref:
                branch = api.get_project(project).get("default_branch")
                if not branch:
                    raise RepoEmptyException()
                ref = self._branch_head(api, project, branch)

            api.create_tag(project, DEFAULT_TAG, ref, DEFAULT_TAG)
            logger.info(f"Tagged {full_name}@{ref} as {DEFAULT_TAG}")

            if workflow_file_name:
                self._ensure_pipeline(api, project, workflow_file_name)

    def _branch_head(self, api: GitLabAPI, project: str, branch: str) -> str:
        try:
            return api.get_branch_head(project, branch)
        except NotFoundException as e:
            raise RepoEmptyException(branch=branch) from e

    def _ensure_pipeline(self, api: GitLabAPI, project: str, workflow_file_name: str) -> None:
        def has_pipeline(_: int) -> None:
            if api.count_pipelines(project, DEFAULT_TAG) == 0:
                raise NotFoundException("no pipelines were triggered")

        try:
            retry(self.config.wait_tag_timeout_seconds, has_pipeline)
        except RetryTimeoutException as e:
            logger.warning(
                f"No pipeline started for {project} from {workflow_file_name} ({e.cause}); "
                f"creating one on {DEFAULT_TAG}"
            )
            api.create_pipeline(project, DEFAULT_TAG)

    def create_commit_on_branch(self, access_token: AccessToken, commit: Commit) -> str:
        validate_commit(commit)
        api = self.api_factory(access_token)
        project = commit.full_name

        def attempt(_: int) -> Tuple[str, bool]:
            head = self._branch_head(api, project, commit.branch)

            actions = []
            for path in sorted(commit.content):
                content = commit.content[path]
                try:
                    current = api.get_file_content(project, path, commit.branch)
                except NotFoundException:
                    actions.append({"action": "create", "file_path": path, "content": content})
                    continue
                if current != content:
                    actions.append({"action": "update", "file_path": path, "content": content})

            if not actions:
                return head, False
            return api.create_commit(project, commit.branch, commit.message, actions), True

        with operation_context("create_commit_on_branch", owner=commit.owner, repo=commit.repo):
            with unwrap_retry_timeout():
                sha, written = retry(self.config.create_repo_timeout_seconds, attempt)

        if not written:
            logger.info(f"{project}@{commit.branch} already up to date")
            return sha
        logger.info(f"Committed to {project}@{commit.branch}: {sha}")
        return self.wait_for_commit(access_token, commit.owner, commit.repo, sha)

    def wait_for_commit(
        self, access_token: AccessToken, owner: str, repo: str, sha: str
    ) -> str:
        api = self.api_factory(access_token)
        project = f"{owner}/{repo}"

        def attempt(_: int) -> None:
            try:
                found = api.get_commit_sha(project, sha)
            except NotFoundException as e:
                raise CommitNotFoundException(sha=sha) from e
            if found != sha:
                raise CommitNotFoundException(f"last commit is not {sha}", sha=found)

        with operation_context("wait_for_commit", owner=owner, repo=repo):
            with unwrap_retry_timeout():
                retry(self.config.wait_tag_timeout_seconds, attempt)
        return sha
