"""
GitHub GraphQL client.

Provides cursor-paginated queries and mutations that are not available (or
cost more round trips) through the REST API.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import requests

from sources.config import SourceConfig
from sources.exceptions import (APIException, AuthenticationException,
                                NotFoundException, RateLimitException,
                                SecondaryRateLimitException)
from sources.interactions.github import secondary_rate_limit_wait
from sources.models import AccessToken
from sources.utils.retry import with_secondary_rate_limit_retry

logger = logging.getLogger(__name__)


class GraphQLAPI(ABC):
    """Minimal GraphQL transport used by the GitHub source."""

    @abstractmethod
    def query(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Execute a query or mutation document.

        :param query: GraphQL document.
        :param variables: Variables referenced by the document.
        :return: The ``data`` member of the response.
        """

    def mutate(self, mutation: str, input: Dict[str, Any]) -> Dict[str, Any]:
        """Execute a mutation taking a single ``$input`` variable."""
        return self.query(mutation, {"input": input})


class GitHubGraphQLClient(GraphQLAPI):
    """
    GraphQL client for the GitHub API with secondary rate limit handling.
    """

    def __init__(self, access_token: AccessToken, config: SourceConfig):
        """
        Initialize the GraphQL client.

        :param access_token: Credential for this call.
        :param config: Source configuration (endpoint, timeouts, retry budget).
        """
        self.url = config.github_graphql_url
        self.timeout = config.request_timeout_seconds
        self.rate_limit_timeout = config.rate_limit_timeout_seconds
        self.rate_limit_retry_count = config.rate_limit_retry_count
        token_type = access_token.type or "Bearer"
        self.headers = {
            "Authorization": f"{token_type} {access_token.token}",
            "Content-Type": "application/json",
            "Accept": "application/vnd.github+json",
        }

    def query(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        payload = {"query": query, "variables": variables or {}}
        return with_secondary_rate_limit_retry(
            self.rate_limit_timeout,
            self.rate_limit_retry_count,
            lambda: self._post(payload),
        )

    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = requests.post(
                self.url,
                json=payload,
                headers=self.headers,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            raise APIException("GraphQL request timeout") from e
        except requests.exceptions.RequestException as e:
            raise APIException(f"GraphQL request failed: {e}") from e

        retry_after = secondary_rate_limit_wait(
            response.status_code, response.headers, response.text
        )
        if retry_after is not None:
            raise SecondaryRateLimitException(
                "GitHub GraphQL secondary rate limit",
                retry_after=retry_after,
                status_code=response.status_code,
            )

        if response.status_code == 401:
            raise AuthenticationException("GitHub GraphQL authentication failed", status_code=401)
        elif response.status_code in (403, 429) and response.headers.get(
            "X-RateLimit-Remaining"
        ) == "0":
            raise RateLimitException(
                "GitHub GraphQL rate limit exceeded", status_code=response.status_code
            )
        elif response.status_code != 200:
            raise APIException(
                f"GraphQL error: {response.status_code} - {response.text}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise APIException("GraphQL response is not valid JSON") from e

        errors = body.get("errors")
        if errors:
            messages = "; ".join(err.get("message", str(err)) for err in errors)
            types = {err.get("type") for err in errors}
            if "RATE_LIMITED" in types:
                raise RateLimitException(f"GitHub GraphQL rate limit: {messages}")
            if "NOT_FOUND" in types:
                raise NotFoundException(f"GitHub GraphQL: {messages}")
            raise APIException(f"GraphQL query failed: {messages}")

        return body.get("data") or {}
