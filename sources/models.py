"""
Provider-agnostic data models shared by every source implementation.
"""

from dataclasses import dataclass, field
from typing import Dict, List

DEFAULT_TAG = "v0.0.0"

# Page size sentinel meaning "return everything".
FETCH_ALL = -1
MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class AccessToken:
    """Bearer credential supplied with every call. Never persisted."""

    token: str
    type: str = "Bearer"

    def __repr__(self) -> str:
        return f"AccessToken(type={self.type!r}, token='***')"


@dataclass(frozen=True)
class PageRequest:
    """A page request. ``size == -1`` asks for every item."""

    size: int = FETCH_ALL
    token: str = ""


@dataclass(frozen=True)
class PageResponse:
    """Pagination details returned alongside a page of results."""

    next_token: str = ""
    result_size: int = 0
    total_size: int = 0


@dataclass(frozen=True)
class Repo:
    """A repository as seen by the onboarding service."""

    name: str
    org: str
    url: str
    ci_url: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.org}/{self.name}"


@dataclass(frozen=True)
class Org:
    """An organization (GitHub) or group (GitLab).

    ``id`` is the stable path or slug, ``name`` the display name.
    """

    name: str
    id: str


@dataclass
class Commit:
    """An atomic multi-file change set for a single commit."""

    branch: str
    message: str
    owner: str
    repo: str
    content: Dict[str, str] = field(default_factory=dict)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


@dataclass(frozen=True)
class Identity:
    """Result of calling a provider's identity endpoint."""

    status_code: int
    login: str = ""
    scopes: List[str] = field(default_factory=list)
    body: str = ""
