"""
Constructors wiring each source to its provider clients.
"""

from typing import Optional

from sources.base import Source
from sources.config import SourceConfig
from sources.exceptions import InvalidArgumentException
from sources.github import GitHubSource
from sources.gitlab import GitLabSource
from sources.interactions.github import GitHubInteraction
from sources.interactions.gitlab import GitLabInteraction
from sources.interactions.graphql import GitHubGraphQLClient

GITHUB = "github"
GITLAB = "gitlab"


def new_github(config: Optional[SourceConfig] = None) -> GitHubSource:
    config = config or SourceConfig()
    return GitHubSource(
        config,
        rest_factory=lambda token: GitHubInteraction(token, config),
        graphql_factory=lambda token: GitHubGraphQLClient(token, config),
    )


def new_gitlab(config: Optional[SourceConfig] = None) -> GitLabSource:
    config = config or SourceConfig()
    return GitLabSource(config, api_factory=lambda token: GitLabInteraction(token, config))


def create_source(provider: str, config: Optional[SourceConfig] = None) -> Source:
    """
    Build the source for a provider name.

    :param provider: ``github`` or ``gitlab`` (case-insensitive).
    :param config: Configuration. Defaults to ``SourceConfig.from_env()``.
    :raises InvalidArgumentException: For an unknown provider.
    """
    config = config or SourceConfig.from_env()
    name = (provider or "").strip().lower()
    if name == GITHUB:
        return new_github(config)
    if name == GITLAB:
        return new_gitlab(config)
    raise InvalidArgumentException(f"unsupported provider '{provider}'")
