"""
Credential verification shared by both providers.

A failed identity call and a token that is missing scopes are reported as
different exceptions, because only the latter means "authenticated".
"""

import logging
import re
from typing import List, Optional, Sequence

from sources.exceptions import (MissingScopesException,
                                ProviderVerificationException)
from sources.models import Identity

logger = logging.getLogger(__name__)


def missing_scopes(granted: Sequence[str], required: Sequence[str]) -> List[str]:
    """
    Return the required scope patterns that no granted scope satisfies.

    Each required scope is a regular expression searched for in the granted
    scopes, so ``org`` is satisfied by ``admin:org``. Anchor a pattern
    (``^(admin|read):org$``) to require a whole scope.

    :raises ProviderVerificationException: If a pattern does not compile.
    """
    granted = [scope.strip() for scope in granted if scope and scope.strip()]
    missing = []
    for pattern in required:
        try:
            regex = re.compile(pattern)
        except re.error as e:
            raise ProviderVerificationException(
                f"failed to compile scope pattern: {e}", scope=pattern
            ) from e
        if not any(regex.search(scope) for scope in granted):
            missing.append(pattern)
    return missing


def verify_identity(
    identity: Identity,
    required_scopes: Optional[Sequence[str]],
    provider: str,
) -> None:
    """
    Check an identity response and the scopes it grants.

    :param identity: Result of the provider's identity call.
    :param required_scopes: Scope patterns that must all be granted.
    :param provider: Provider name used in messages.
    :raises ProviderVerificationException: If the status is not 200.
    :raises MissingScopesException: If a required scope is not granted.
    """
    if identity.status_code != 200:
        raise ProviderVerificationException(
            f"unexpected reply from {provider}",
            status_code=identity.status_code,
            body=identity.body,
        )

    if not required_scopes:
        return

    missing = missing_scopes(identity.scopes, required_scopes)
    if missing:
        logger.info(f"{provider} token for {identity.login} is missing scopes: {missing}")
        raise MissingScopesException(
            f"{provider} access token is missing scopes",
            provided_scopes=identity.scopes,
            required_scopes=list(required_scopes),
        )
