"""
Configuration for source providers.

Values can be passed explicitly or read from ``SCC_*`` environment
variables via :meth:`SourceConfig.from_env`.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from sources.exceptions import InvalidArgumentException

ENV_PREFIX = "SCC_"


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(f"{ENV_PREFIX}{name}")
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise InvalidArgumentException(
            f"{ENV_PREFIX}{name} must be an integer", value=raw
        )
    if value < 0:
        raise InvalidArgumentException(
            f"{ENV_PREFIX}{name} must not be negative", value=raw
        )
    return value


@dataclass(frozen=True)
class SourceConfig:
    """Timeouts, retry budgets and endpoints used by the providers."""

    # Budget for calls that may race a freshly created repository.
    create_repo_timeout_seconds: int = 30
    # Budget for read-after-write polls (tags, workflow runs, commits).
    wait_tag_timeout_seconds: int = 10
    rate_limit_timeout_seconds: int = 60
    rate_limit_retry_count: int = 3
    request_timeout_seconds: int = 30
    github_api_url: str = "https://api.github.com"
    github_graphql_url: str = "https://api.github.com/graphql"
    gitlab_url: str = "https://gitlab.com"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "SourceConfig":
        """
        Build a configuration from environment variables.

        :param env: Mapping to read from. Defaults to ``os.environ``.
        :return: SourceConfig instance.
        :raises InvalidArgumentException: If a numeric value is malformed.
        """
        env = os.environ if env is None else env
        defaults = cls()
        return cls(
            create_repo_timeout_seconds=_env_int(
                env, "CREATE_REPO_TIMEOUT_SECONDS", defaults.create_repo_timeout_seconds
            ),
            wait_tag_timeout_seconds=_env_int(
                env, "WAIT_TAG_TIMEOUT_SECONDS", defaults.wait_tag_timeout_seconds
            ),
            rate_limit_timeout_seconds=_env_int(
                env, "RATE_LIMIT_TIMEOUT_SECONDS", defaults.rate_limit_timeout_seconds
            ),
            rate_limit_retry_count=_env_int(
                env, "RATE_LIMIT_RETRY_COUNT", defaults.rate_limit_retry_count
            ),
            request_timeout_seconds=_env_int(
                env, "REQUEST_TIMEOUT_SECONDS", defaults.request_timeout_seconds
            ),
            github_api_url=env.get(f"{ENV_PREFIX}GITHUB_API_URL")
            or defaults.github_api_url,
            github_graphql_url=env.get(f"{ENV_PREFIX}GITHUB_GRAPHQL_URL")
            or defaults.github_graphql_url,
            gitlab_url=env.get(f"{ENV_PREFIX}GITLAB_URL") or defaults.gitlab_url,
        )
