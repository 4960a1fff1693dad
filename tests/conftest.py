"""Shared test fixtures for the test suite."""
from unittest.mock import Mock

import pytest

from sources.config import SourceConfig
from sources.github import GitHubSource
from sources.gitlab import GitLabSource
from sources.interactions.github import GitHubAPI
from sources.interactions.gitlab import GitLabAPI
from sources.interactions.graphql import GraphQLAPI
from sources.models import AccessToken


@pytest.fixture
def access_token():
    """Return a dummy credential."""
    return AccessToken(token="test-token")


@pytest.fixture
def config():
    """Return a configuration where every retried call is attempted once."""
    return SourceConfig(
        create_repo_timeout_seconds=0,
        wait_tag_timeout_seconds=0,
        rate_limit_timeout_seconds=1,
        rate_limit_retry_count=3,
    )


@pytest.fixture
def github_api():
    """Return a mock GitHub REST adapter."""
    return Mock(spec=GitHubAPI)


@pytest.fixture
def graphql_api():
    """Return a mock GitHub GraphQL client."""
    return Mock(spec=GraphQLAPI)


@pytest.fixture
def github_source(config, github_api, graphql_api):
    """Return a GitHub source wired to the mock clients."""
    return GitHubSource(
        config,
        rest_factory=lambda token: github_api,
        graphql_factory=lambda token: graphql_api,
    )


@pytest.fixture
def gitlab_api():
    """Return a mock GitLab adapter."""
    return Mock(spec=GitLabAPI)


@pytest.fixture
def gitlab_source(config, gitlab_api):
    """Return a GitLab source wired to the mock adapter."""
    return GitLabSource(config, api_factory=lambda token: gitlab_api)
