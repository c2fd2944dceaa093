"""
Transport - network capability shared by the offline components.
"""

from .http_client import (
    Request,
    Response,
    Fetcher,
    AiohttpFetcher,
    normalize_url,
    encode_body,
)

__all__ = [
    'Request',
    'Response',
    'Fetcher',
    'AiohttpFetcher',
    'normalize_url',
    'encode_body',
]
