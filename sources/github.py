"""
GitHub source implementation.

Listing and commits go through the GraphQL API (cursor pagination, atomic
multi-file commits); everything else goes through the REST adapter.
"""

import base64
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sources.base import (Source, operation_context, split_full_name,
                          unwrap_retry_timeout, validate_commit)
from sources.config import SourceConfig
from sources.exceptions import (APIException, CommitNotFoundException,
                                InvalidArgumentException, NotFoundException,
                                RepoAlreadyConnectedException,
                                RepoEmptyException, RetryTimeoutException,
                                SecretException)
from sources.interactions.github import GitHubAPI
from sources.interactions.graphql import GraphQLAPI
from sources.models import (DEFAULT_TAG, AccessToken, Commit, Org, PageRequest,
                            PageResponse, Repo)
from sources.utils.pagination import Page, list_all
from sources.utils.retry import retry
from sources.utils.sealing import seal
from sources.validation import verify_identity

logger = logging.getLogger(__name__)

GitHubAPIFactory = Callable[[AccessToken], GitHubAPI]
GraphQLFactory = Callable[[AccessToken], GraphQLAPI]

CI_PATH = "/actions"

REPOSITORY_FIELDS = """
    name
    url
    owner { login }
"""

PROFILE_QUERY = (
    """
query($first: Int!, $after: String) {
  viewer {
    login
    repositories(first: $first, after: $after, ownerAffiliations: [OWNER]) {
      totalCount
      pageInfo { hasNextPage endCursor }
      nodes {"""
    + REPOSITORY_FIELDS
    + """}
    }
  }
}
"""
)

ORGS_QUERY = """
query($first: Int!, $after: String) {
  viewer {
    organizations(first: $first, after: $after) {
      totalCount
      pageInfo { hasNextPage endCursor }
      nodes { login name }
    }
  }
}
"""

REPOS_QUERY = (
    """
query($query: String!, $first: Int!, $after: String) {
  search(query: $query, type: REPOSITORY, first: $first, after: $after) {
    repositoryCount
    pageInfo { hasNextPage endCursor }
    nodes {
      ... on Repository {"""
    + REPOSITORY_FIELDS
    + """}
    }
  }
}
"""
)

CREATE_COMMIT_MUTATION = """
mutation($input: CreateCommitOnBranchInput!) {
  createCommitOnBranch(input: $input) {
    commit { oid }
  }
}
"""


def build_branch_state_query(file_count: int) -> str:
    """
    Build a query returning a branch tip and the text of ``file_count`` files.

    File ``i`` is read through the ``$e{i}`` expression (``branch:path``) and
    aliased as ``f{i}``.
    """
    variables = "".join(f", $e{i}: String!" for i in range(file_count))
    files = "".join(
        f"\n    f{i}: object(expression: $e{i}) {{ ... on Blob {{ text }} }}"
        for i in range(file_count)
    )
    return (
        f"query($owner: String!, $repo: String!, $branch: String!{variables}) {{\n"
        f"  repository(owner: $owner, name: $repo) {{\n"
        f"    ref(qualifiedName: $branch) {{ target {{ oid }} }}"
        f"{files}\n"
        f"  }}\n"
        f"}}\n"
    )


def _cursor_page(connection: Dict[str, Any], items: List[Any], total_key: str) -> Page:
    page_info = connection.get("pageInfo") or {}
    next_token = ""
    if page_info.get("hasNextPage"):
        next_token = page_info.get("endCursor") or ""
    return Page(items=items, next_token=next_token, total_count=connection.get(total_key, 0))


def _repo_from_node(node: Dict[str, Any]) -> Repo:
    url = node["url"]
    return Repo(
        name=node["name"],
        org=node["owner"]["login"],
        url=url,
        ci_url=url + CI_PATH,
    )


class GitHubSource(Source):
    """
    Source implementation for GitHub.

    Provider clients are built per call from the caller's credential by the
    injected factories.
    """

    provider = "GitHub"

    def __init__(
        self,
        config: Optional[SourceConfig],
        rest_factory: GitHubAPIFactory,
        graphql_factory: GraphQLFactory,
    ):
        """
        Initialize the GitHub source.

        :param config: Timeouts and endpoints.
        :param rest_factory: Builds a REST adapter for a credential.
        :param graphql_factory: Builds a GraphQL client for a credential.
        """
        super().__init__(config)
        self.rest_factory = rest_factory
        self.graphql_factory = graphql_factory

    def validate_connection(
        self, access_token: AccessToken, required_scopes: Optional[Sequence[str]] = None
    ) -> None:
        identity = self.rest_factory(access_token).get_identity()
        verify_identity(identity, required_scopes, self.provider)
        logger.info(f"Verified GitHub connection for {identity.login}")

    def profile(self, access_token: AccessToken) -> Tuple[str, List[Repo]]:
        client = self.graphql_factory(access_token)
        viewer: Dict[str, Any] = {}

        def fetch(token: str, size: int) -> Page:
            data = client.query(PROFILE_QUERY, {"first": size, "after": token or None})
            viewer.update(data["viewer"])
            connection = data["viewer"]["repositories"]
            repos = [_repo_from_node(node) for node in connection.get("nodes") or []]
            return _cursor_page(connection, repos, "totalCount")

        with operation_context("profile"):
            repos, _ = list_all(fetch, PageRequest())
        return viewer.get("login", ""), repos

    def list_orgs(
        self, access_token: AccessToken, page: PageRequest
    ) -> Tuple[List[Org], PageResponse]:
        client = self.graphql_factory(access_token)

        def fetch(token: str, size: int) -> Page:
            data = client.query(ORGS_QUERY, {"first": size, "after": token or None})
            connection = data["viewer"]["organizations"]
            orgs = [
                Org(name=node.get("name") or node["login"], id=node["login"])
                for node in connection.get("nodes") or []
            ]
            return _cursor_page(connection, orgs, "totalCount")

        with operation_context("list_orgs"):
            return list_all(fetch, page)

    def list_repos(
        self, access_token: AccessToken, owner: str, page: PageRequest
    ) -> Tuple[List[Repo], PageResponse]:
        if not owner:
            raise InvalidArgumentException("owner must not be empty")
        client = self.graphql_factory(access_token)
        search = f"user:{owner} fork:true"

        def fetch(token: str, size: int) -> Page:
            data = client.query(
                REPOS_QUERY, {"query": search, "first": size, "after": token or None}
            )
            connection = data["search"]
            # Search results may include non-repository nodes as empty objects.
            repos = [
                _repo_from_node(node)
                for node in connection.get("nodes") or []
                if node and node.get("owner", {}).get("login", "").lower() == owner.lower()
            ]
            return _cursor_page(connection, repos, "repositoryCount")

        with operation_context("list_repos", owner=owner):
            return list_all(fetch, page)

    def create_repo(
        self,
        access_token: AccessToken,
        owner: str,
        name: str,
        commit: Optional[Commit] = None,
    ) -> None:
        if not name:
            raise InvalidArgumentException("repo name must not be empty")
        rest = self.rest_factory(access_token)

        with operation_context("create_repo", owner=owner, repo=name):
            login = rest.get_authenticated_login()
            # An empty owner tells the adapter to create under the user itself.
            target = "" if not owner or owner.lower() == login.lower() else owner
            rest.create_repo(target, name)
        logger.info(f"Created GitHub repo {owner or login}/{name}")

        if commit is not None:
            self.create_commit_on_branch(access_token, commit)

    def get_repo(self, access_token: AccessToken, owner: str, repo: str) -> Repo:
        with operation_context("get_repo", owner=owner, repo=repo):
            info = self.rest_factory(access_token).get_repo(owner, repo)
        return Repo(
            name=info.name, org=info.owner, url=info.html_url, ci_url=info.html_url + CI_PATH
        )

    def get_default_branch(self, access_token: AccessToken, owner: str, repo: str) -> str:
        with operation_context("get_default_branch", owner=owner, repo=repo):
            return self.rest_factory(access_token).get_repo(owner, repo).default_branch

    def has_secret(
        self, access_token: AccessToken, owner: str, repo: str, secret_name: str
    ) -> bool:
        with operation_context("has_secret", owner=owner, repo=repo):
            return self._has_secret(self.rest_factory(access_token), owner, repo, secret_name)

    def _has_secret(self, rest: GitHubAPI, owner: str, repo: str, secret_name: str) -> bool:
        names = retry(
            self.config.create_repo_timeout_seconds,
            lambda _: rest.list_secret_names(owner, repo),
        )
        return secret_name in names

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
        rest = self.rest_factory(access_token)
        timeout = self.config.create_repo_timeout_seconds

        with operation_context("add_secret_to_repo", owner=owner, repo=repo):
            if not override_secret and self._has_secret(rest, owner, repo, secret_name):
                raise RepoAlreadyConnectedException(
                    "you're trying to link to an existing repository that already has a "
                    "secret; consider overwriting the push secret",
                    secret_name=secret_name,
                )

            key_id, public_key = retry(timeout, lambda _: rest.get_public_key(owner, repo))
            encrypted_value = seal(public_key, value)

            try:
                retry(
                    timeout,
                    lambda _: rest.put_secret(owner, repo, secret_name, encrypted_value, key_id),
                )
            except RetryTimeoutException as e:
                raise SecretException(
                    f"failed to add Github secret: {e.cause}", secret_name=secret_name
                ) from e
        logger.info(f"Stored secret {secret_name} in {owner}/{repo}")

    def initial_tag(
        self,
        access_token: AccessToken,
        full_name: str,
        workflow_file_name: str = "",
        commit_sha: str = "",
    ) -> None:
        owner, name = split_full_name(full_name, "github")
        rest = self.rest_factory(access_token)

        with operation_context("initial_tag", owner=owner, repo=name):
            tags = rest.list_tag_names(owner, name)
            if tags:
                logger.info(f"{full_name} already has tags; skipping initial tag")
                return

            if not commit_sha:
                branch = rest.get_repo(owner, name).default_branch
                commit_sha = self._branch_head(rest, owner, name, branch)

            rest.create_ref(owner, name, f"refs/tags/{DEFAULT_TAG}", commit_sha)
            logger.info(f"Tagged {full_name}@{commit_sha} as {DEFAULT_TAG}")

            if workflow_file_name:
                self._ensure_workflow_run(rest, owner, name, workflow_file_name)

    def _branch_head(self, rest: GitHubAPI, owner: str, repo: str, branch: str) -> str:
        try:
            return rest.get_branch_head(owner, repo, branch)
        except APIException as e:
            # 409 is GitHub's "Git Repository is empty".
            if isinstance(e, NotFoundException) or e.status_code == 409:
                raise RepoEmptyException(branch=branch) from e
            raise

    def _ensure_workflow_run(
        self, rest: GitHubAPI, owner: str, repo: str, workflow_file_name: str
    ) -> None:
        def has_run(_: int) -> None:
            if rest.count_workflow_runs(owner, repo) == 0:
                raise NotFoundException("no workflow runs were triggered")

        try:
            retry(self.config.wait_tag_timeout_seconds, has_run)
        except RetryTimeoutException as e:
            logger.warning(
                f"No workflow run started for {owner}/{repo} ({e.cause}); "
                f"dispatching {workflow_file_name} on {DEFAULT_TAG}"
            )
            rest.dispatch_workflow(owner, repo, workflow_file_name, DEFAULT_TAG)

    def create_commit_on_branch(self, access_token: AccessToken, commit: Commit) -> str:
        validate_commit(commit)
        client = self.graphql_factory(access_token)
        paths = sorted(commit.content)
        query = build_branch_state_query(len(paths))
        variables = {"owner": commit.owner, "repo": commit.repo, "branch": commit.branch}
        for i, path in enumerate(paths):
            variables[f"e{i}"] = f"{commit.branch}:{path}"

        def attempt(_: int) -> Tuple[str, bool]:
            repository = client.query(query, variables).get("repository") or {}
            head = ((repository.get("ref") or {}).get("target") or {}).get("oid")
            if not head:
                raise RepoEmptyException(branch=commit.branch)

            current = {
                path: (repository.get(f"f{i}") or {}).get("text")
                for i, path in enumerate(paths)
            }
            if all(current[path] == commit.content[path] for path in paths):
                return head, False

            result = client.mutate(
                CREATE_COMMIT_MUTATION,
                {
                    "branch": {
                        "repositoryNameWithOwner": commit.full_name,
                        "branchName": commit.branch,
                    },
                    "expectedHeadOid": head,
                    "message": {"headline": commit.message},
                    "fileChanges": {
                        "additions": [
                            {
                                "path": path,
                                "contents": base64.b64encode(
                                    commit.content[path].encode("utf-8")
                                ).decode("ascii"),
                            }
                            for path in paths
                        ]
                    },
                },
            )
            return result["createCommitOnBranch"]["commit"]["oid"], True

        with operation_context("create_commit_on_branch", owner=commit.owner, repo=commit.repo):
            with unwrap_retry_timeout():
                sha, written = retry(self.config.create_repo_timeout_seconds, attempt)

        if not written:
            logger.info(f"{commit.full_name}@{commit.branch} already up to date")
            return sha
        logger.info(f"Committed to {commit.full_name}@{commit.branch}: {sha}")
        return self.wait_for_commit(access_token, commit.owner, commit.repo, sha)

    def wait_for_commit(
        self, access_token: AccessToken, owner: str, repo: str, sha: str
    ) -> str:
        rest = self.rest_factory(access_token)

        def attempt(_: int) -> None:
            try:
                found = rest.get_commit_sha(owner, repo, sha)
            except NotFoundException as e:
                raise CommitNotFoundException(sha=sha) from e
            if found != sha:
                raise CommitNotFoundException(f"last commit is not {sha}", sha=found)

        with operation_context("wait_for_commit", owner=owner, repo=repo):
            with unwrap_retry_timeout():
                retry(self.config.wait_tag_timeout_seconds, attempt)
        return sha
