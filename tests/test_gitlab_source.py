"""
Tests for the GitLab source.
"""

import pytest

from sources.exceptions import (APIException, CommitNotFoundException,
                                InvalidArgumentException,
                                MissingScopesException, NotFoundException,
                                ProviderVerificationException,
                                RepoAlreadyConnectedException,
                                RepoEmptyException)
from sources.interactions.gitlab import ListResult
from sources.models import Commit, Identity, Org, PageRequest, PageResponse, Repo


def project(path, namespace="acme", owner=None):
    record = {
        "name": path.title(),
        "path": path,
        "path_with_namespace": f"{namespace}/{path}",
        "web_url": f"https://gitlab.com/{namespace}/{path}",
        "namespace": {"path": namespace, "full_path": namespace},
        "default_branch": "main",
    }
    if owner:
        record["owner"] = {"username": owner}
    return record


@pytest.fixture
def commit():
    return Commit(
        branch="main",
        message="Add CI",
        owner="acme",
        repo="widgets",
        content={".gitlab-ci.yml": "stages: [test]\n", "README.md": "# widgets\n"},
    )


class TestValidateConnection:
    """Tests for GitLab credential verification."""

    def test_valid(self, gitlab_source, gitlab_api, access_token):
        gitlab_api.get_identity.return_value = Identity(
            status_code=200, login="octo", scopes=["api", "read_user"]
        )

        gitlab_source.validate_connection(access_token, ["api"])

    def test_unauthorized(self, gitlab_source, gitlab_api, access_token):
        gitlab_api.get_identity.return_value = Identity(status_code=401, body="401 Unauthorized")

        with pytest.raises(ProviderVerificationException) as exc_info:
            gitlab_source.validate_connection(access_token, ["api"])

        assert exc_info.value.status_code == 401

    def test_missing_scope(self, gitlab_source, gitlab_api, access_token):
        gitlab_api.get_identity.return_value = Identity(
            status_code=200, login="octo", scopes=["read_user"]
        )

        with pytest.raises(MissingScopesException):
            gitlab_source.validate_connection(access_token, ["api"])


class TestListing:
    """Tests for profile, list_orgs and list_repos."""

    def test_profile(self, gitlab_source, gitlab_api, access_token):
        """Test the profile walks every page of member projects."""
        gitlab_api.current_username.return_value = "octo"
        gitlab_api.list_member_projects.side_effect = [
            ListResult(items=[project("a", "octo")], next_page=2, total=2),
            ListResult(items=[project("b", "acme")], next_page=None, total=2),
        ]

        username, repos = gitlab_source.profile(access_token)

        assert username == "octo"
        assert repos == [
            Repo(
                name="a",
                org="octo",
                url="https://gitlab.com/octo/a",
                ci_url="https://gitlab.com/octo/a/-/pipelines",
            ),
            Repo(
                name="b",
                org="acme",
                url="https://gitlab.com/acme/b",
                ci_url="https://gitlab.com/acme/b/-/pipelines",
            ),
        ]
        assert [c.args for c in gitlab_api.list_member_projects.call_args_list] == [
            (1, 100),
            (2, 100),
        ]

    def test_list_orgs_page(self, gitlab_source, gitlab_api, access_token):
        """Test a finite page maps integer page numbers to tokens."""
        gitlab_api.list_groups.return_value = ListResult(
            items=[{"name": "Acme", "full_path": "acme"}, {"name": "Web", "full_path": "acme/web"}],
            next_page=3,
            total=25,
        )

        orgs, response = gitlab_source.list_orgs(access_token, PageRequest(size=2, token="2"))

        gitlab_api.list_groups.assert_called_once_with(2, 2)
        assert orgs == [Org(name="Acme", id="acme"), Org(name="Web", id="acme/web")]
        assert response == PageResponse(next_token="3", result_size=2, total_size=25)

    def test_list_orgs_last_page(self, gitlab_source, gitlab_api, access_token):
        gitlab_api.list_groups.return_value = ListResult(items=[], next_page=None, total=25)

        _, response = gitlab_source.list_orgs(access_token, PageRequest(size=10, token="3"))

        assert response.next_token == ""

    def test_list_orgs_invalid_token(self, gitlab_source, gitlab_api, access_token):
        """Test a non-numeric token is rejected before any call."""
        with pytest.raises(InvalidArgumentException, match="page token must be int"):
            gitlab_source.list_orgs(access_token, PageRequest(size=10, token="abc"))

        gitlab_api.list_groups.assert_not_called()

    def test_list_repos_for_current_user(self, gitlab_source, gitlab_api, access_token):
        """Test only projects owned by the user are returned."""
        gitlab_api.current_username.return_value = "octo"
        gitlab_api.list_user_projects.return_value = ListResult(
            items=[
                project("mine", "octo", owner="octo"),
                project("shared", "acme"),
            ],
            total=2,
        )

        repos, response = gitlab_source.list_repos(access_token, "octo", PageRequest(size=10))

        gitlab_api.list_user_projects.assert_called_once_with("octo", 1, 10)
        gitlab_api.list_group_projects.assert_not_called()
        assert [r.name for r in repos] == ["mine"]
        assert response.result_size == 1

    def test_list_repos_for_group(self, gitlab_source, gitlab_api, access_token):
        """Test listing a group's projects across pages."""
        gitlab_api.current_username.return_value = "octo"
        gitlab_api.list_group_projects.side_effect = [
            ListResult(items=[project("a"), project("b")], next_page=2, total=3),
            ListResult(items=[project("c")], next_page=None, total=3),
        ]

        repos, response = gitlab_source.list_repos(access_token, "acme", PageRequest())

        assert [r.full_name for r in repos] == ["acme/a", "acme/b", "acme/c"]
        assert response == PageResponse(next_token="", result_size=3, total_size=3)
        gitlab_api.list_user_projects.assert_not_called()


class TestRepos:
    """Tests for project creation and lookup."""

    def test_create_repo(self, gitlab_source, gitlab_api, access_token):
        """Test the project is created and release tags protected."""
        gitlab_api.get_namespace_id.return_value = 42
        gitlab_api.create_project.return_value = project("widgets")

        gitlab_source.create_repo(access_token, "acme", "widgets")

        gitlab_api.get_namespace_id.assert_called_once_with("acme")
        gitlab_api.create_project.assert_called_once_with("widgets", 42)
        gitlab_api.protect_tags.assert_called_once_with("acme/widgets", "v*", 40)

    def test_protect_failure_keeps_project(self, gitlab_source, gitlab_api, access_token):
        """Test a failed protection step is reported without rolling back."""
        gitlab_api.get_namespace_id.return_value = 42
        gitlab_api.create_project.return_value = project("widgets")
        gitlab_api.protect_tags.side_effect = APIException("forbidden", status_code=403)

        with pytest.raises(APIException) as exc_info:
            gitlab_source.create_repo(access_token, "acme", "widgets")

        assert exc_info.value.context["operation"] == "create_repo"
        gitlab_api.create_project.assert_called_once()

    def test_create_repo_with_commit(self, gitlab_source, gitlab_api, access_token, commit):
        gitlab_api.get_namespace_id.return_value = 42
        gitlab_api.create_project.return_value = project("widgets")
        gitlab_api.get_branch_head.return_value = "head-sha"
        gitlab_api.get_file_content.side_effect = lambda proj, path, ref: commit.content[path]

        gitlab_source.create_repo(access_token, "acme", "widgets", commit=commit)

        gitlab_api.get_branch_head.assert_called_once_with("acme/widgets", "main")

    def test_create_repo_requires_owner(self, gitlab_source, gitlab_api, access_token):
        with pytest.raises(InvalidArgumentException):
            gitlab_source.create_repo(access_token, "", "widgets")

        gitlab_api.create_project.assert_not_called()

    def test_get_repo(self, gitlab_source, gitlab_api, access_token):
        gitlab_api.get_project.return_value = project("widgets")

        repo = gitlab_source.get_repo(access_token, "acme", "widgets")

        gitlab_api.get_project.assert_called_once_with("acme/widgets")
        assert repo.ci_url == "https://gitlab.com/acme/widgets/-/pipelines"

    def test_get_default_branch(self, gitlab_source, gitlab_api, access_token):
        gitlab_api.get_project.return_value = dict(project("widgets"), default_branch="trunk")

        assert gitlab_source.get_default_branch(access_token, "acme", "widgets") == "trunk"


class TestSecrets:
    """Tests for CI/CD variables."""

    def test_has_secret(self, gitlab_source, gitlab_api, access_token):
        gitlab_api.get_variable.return_value = {"key": "PUSH_TOKEN"}
        assert gitlab_source.has_secret(access_token, "acme", "widgets", "PUSH_TOKEN") is True

        gitlab_api.get_variable.side_effect = NotFoundException(status_code=404)
        assert gitlab_source.has_secret(access_token, "acme", "widgets", "PUSH_TOKEN") is False

    def test_creates_missing_variable(self, gitlab_source, gitlab_api, access_token):
        gitlab_api.get_variable.side_effect = NotFoundException(status_code=404)

        gitlab_source.add_secret_to_repo(access_token, "acme", "widgets", "PUSH_TOKEN", "s3cret")

        gitlab_api.create_variable.assert_called_once_with("acme/widgets", "PUSH_TOKEN", "s3cret")
        gitlab_api.update_variable.assert_not_called()

    def test_existing_without_override(self, gitlab_source, gitlab_api, access_token):
        gitlab_api.get_variable.return_value = {"key": "PUSH_TOKEN"}

        with pytest.raises(RepoAlreadyConnectedException):
            gitlab_source.add_secret_to_repo(
                access_token, "acme", "widgets", "PUSH_TOKEN", "s3cret", override_secret=False
            )

        gitlab_api.create_variable.assert_not_called()
        gitlab_api.update_variable.assert_not_called()

    def test_existing_with_override(self, gitlab_source, gitlab_api, access_token):
        """Test override updates the variable exactly once."""
        gitlab_api.get_variable.return_value = {"key": "PUSH_TOKEN"}

        gitlab_source.add_secret_to_repo(
            access_token, "acme", "widgets", "PUSH_TOKEN", "s3cret", override_secret=True
        )

        gitlab_api.update_variable.assert_called_once_with("acme/widgets", "PUSH_TOKEN", "s3cret")
        gitlab_api.create_variable.assert_not_called()

    def test_lookup_error_propagates(self, gitlab_source, gitlab_api, access_token):
        gitlab_api.get_variable.side_effect = APIException("boom", status_code=500)

        with pytest.raises(APIException):
            gitlab_source.add_secret_to_repo(access_token, "acme", "widgets", "PUSH_TOKEN", "x")


class TestInitialTag:
    """Tests for the initial release tag."""

    def test_already_tagged(self, gitlab_source, gitlab_api, access_token):
        gitlab_api.list_tag_names.return_value = ["v0.1.0"]

        gitlab_source.initial_tag(access_token, "acme/widgets", ".gitlab-ci.yml")

        gitlab_api.create_tag.assert_not_called()
        gitlab_api.create_pipeline.assert_not_called()

    def test_tags_default_branch_head(self, gitlab_source, gitlab_api, access_token):
        gitlab_api.list_tag_names.return_value = []
        gitlab_api.get_project.return_value = project("widgets")
        gitlab_api.get_branch_head.return_value = "abc123"

        gitlab_source.initial_tag(access_token, "acme/widgets")

        gitlab_api.create_tag.assert_called_once_with("acme/widgets", "v0.0.0", "abc123", "v0.0.0")

    def test_project_without_default_branch(self, gitlab_source, gitlab_api, access_token):
        gitlab_api.list_tag_names.return_value = []
        gitlab_api.get_project.return_value = dict(project("widgets"), default_branch=None)

        with pytest.raises(RepoEmptyException):
            gitlab_source.initial_tag(access_token, "acme/widgets")

        gitlab_api.create_tag.assert_not_called()

    def test_creates_pipeline_when_none_started(self, gitlab_source, gitlab_api, access_token):
        gitlab_api.list_tag_names.return_value = []
        gitlab_api.count_pipelines.return_value = 0

        gitlab_source.initial_tag(
            access_token, "acme/widgets", ".gitlab-ci.yml", commit_sha="abc123"
        )

        gitlab_api.create_tag.assert_called_once_with("acme/widgets", "v0.0.0", "abc123", "v0.0.0")
        gitlab_api.create_pipeline.assert_called_once_with("acme/widgets", "v0.0.0")

    def test_pipeline_already_running(self, gitlab_source, gitlab_api, access_token):
        gitlab_api.list_tag_names.return_value = []
        gitlab_api.count_pipelines.return_value = 1

        gitlab_source.initial_tag(
            access_token, "acme/widgets", ".gitlab-ci.yml", commit_sha="abc123"
        )

        gitlab_api.create_pipeline.assert_not_called()


class TestCreateCommitOnBranch:
    """Tests for committing files."""

    def test_mixed_actions(self, gitlab_source, gitlab_api, access_token, commit):
        """Test missing files are created, changed files updated and equal files skipped."""
        commit.content["LICENSE"] = "MIT\n"
        existing = {"README.md": "# old\n", "LICENSE": "MIT\n"}

        def file_content(proj, path, ref):
            if path not in existing:
                raise NotFoundException(status_code=404)
            return existing[path]

        gitlab_api.get_branch_head.return_value = "head-sha"
        gitlab_api.get_file_content.side_effect = file_content
        gitlab_api.create_commit.return_value = "new-sha"
        gitlab_api.get_commit_sha.return_value = "new-sha"

        assert gitlab_source.create_commit_on_branch(access_token, commit) == "new-sha"

        gitlab_api.create_commit.assert_called_once_with(
            "acme/widgets",
            "main",
            "Add CI",
            [
                {"action": "create", "file_path": ".gitlab-ci.yml", "content": "stages: [test]\n"},
                {"action": "update", "file_path": "README.md", "content": "# widgets\n"},
            ],
        )
        gitlab_api.get_commit_sha.assert_called_once_with("acme/widgets", "new-sha")

    def test_unchanged_content_is_a_no_op(self, gitlab_source, gitlab_api, access_token, commit):
        gitlab_api.get_branch_head.return_value = "head-sha"
        gitlab_api.get_file_content.side_effect = lambda proj, path, ref: commit.content[path]

        assert gitlab_source.create_commit_on_branch(access_token, commit) == "head-sha"

        gitlab_api.create_commit.assert_not_called()

    def test_empty_branch(self, gitlab_source, gitlab_api, access_token, commit):
        gitlab_api.get_branch_head.side_effect = NotFoundException(status_code=404)

        with pytest.raises(RepoEmptyException):
            gitlab_source.create_commit_on_branch(access_token, commit)

        gitlab_api.create_commit.assert_not_called()

    def test_commit_never_visible(self, gitlab_source, gitlab_api, access_token, commit):
        gitlab_api.get_branch_head.return_value = "head-sha"
        gitlab_api.get_file_content.side_effect = NotFoundException(status_code=404)
        gitlab_api.create_commit.return_value = "new-sha"
        gitlab_api.get_commit_sha.side_effect = NotFoundException(status_code=404)

        with pytest.raises(CommitNotFoundException):
            gitlab_source.create_commit_on_branch(access_token, commit)



class TestPageEquivalence:
    """Tests that walking GitLab pages by hand matches fetching everything."""

    @staticmethod
    def paged_groups(groups):
        def list_groups(page, per_page):
            start = (page - 1) * per_page
            end = start + per_page
            return ListResult(
                items=groups[start:end],
                next_page=page + 1 if end < len(groups) else None,
                total=len(groups),
            )

        return list_groups

    @pytest.mark.parametrize("size", [1, 3, 4, 11, 100])
    def test_list_orgs(self, gitlab_source, gitlab_api, access_token, size):
        """Test integer page tokens walk the same groups as a fetch-all."""
        groups = [{"name": f"Group {i}", "full_path": f"group-{i}"} for i in range(11)]
        gitlab_api.list_groups.side_effect = self.paged_groups(groups)

        walked = []
        token = ""
        while True:
            orgs, response = gitlab_source.list_orgs(
                access_token, PageRequest(size=size, token=token)
            )
            walked.extend(orgs)
            if not response.next_token:
                break
            token = response.next_token

        everything, response = gitlab_source.list_orgs(access_token, PageRequest(size=-1))

        assert walked == everything
        assert [org.id for org in everything] == [f"group-{i}" for i in range(11)]
        assert response == PageResponse(next_token="", result_size=11, total_size=11)


class FakeProject:
    """A project branch whose files change when a commit is written."""

    def __init__(self, head, files):
        self.head = head
        self.files = dict(files)
        self.commits = 0

    def get_file_content(self, project, path, ref):
        if path not in self.files:
            raise NotFoundException(status_code=404)
        return self.files[path]

    def create_commit(self, project, branch, message, actions):
        for action in actions:
            self.files[action["file_path"]] = action["content"]
        self.commits += 1
        self.head = f"commit-{self.commits}"
        return self.head


class TestRepeatedCommit:
    """Tests for committing the same content twice."""

    def test_second_commit_writes_nothing(self, gitlab_source, gitlab_api, access_token, commit):
        """Test the first call writes once and the repeat returns the new tip."""
        fake = FakeProject("initial", {"README.md": "# old\n"})
        gitlab_api.get_branch_head.side_effect = lambda project, branch: fake.head
        gitlab_api.get_file_content.side_effect = fake.get_file_content
        gitlab_api.create_commit.side_effect = fake.create_commit
        gitlab_api.get_commit_sha.side_effect = lambda project, sha: sha

        first = gitlab_source.create_commit_on_branch(access_token, commit)
        second = gitlab_source.create_commit_on_branch(access_token, commit)

        assert gitlab_api.create_commit.call_count == 1
        assert first == second == "commit-1"
        assert fake.files == commit.content
