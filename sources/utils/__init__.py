"""
Utility modules for source providers.
"""

from .pagination import Page, list_all, parse_page_number, validate_page_request
from .retry import (Backoff, retry, retry_with_backoff,
                    with_secondary_rate_limit_retry)
from .sealing import seal

__all__ = [
    "Backoff",
    "retry",
    "retry_with_backoff",
    "with_secondary_rate_limit_retry",
    "Page",
    "list_all",
    "parse_page_number",
    "validate_page_request",
    "seal",
]
