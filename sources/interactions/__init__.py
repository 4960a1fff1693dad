"""
Provider clients used by the sources.
"""

from .github import (GitHubAPI, GitHubInteraction, GitHubRepository,
                     classify_github_error, secondary_rate_limit_wait)
from .gitlab import GitLabAPI, GitLabInteraction, ListResult, classify_gitlab_error
from .graphql import GitHubGraphQLClient, GraphQLAPI

__all__ = [
    # GitHub
    "GitHubAPI",
    "GitHubInteraction",
    "GitHubRepository",
    "GitHubGraphQLClient",
    "GraphQLAPI",
    "classify_github_error",
    "secondary_rate_limit_wait",
    # GitLab
    "GitLabAPI",
    "GitLabInteraction",
    "ListResult",
    "classify_gitlab_error",
]
