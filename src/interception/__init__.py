"""
Interception - request classification and caching policies.
"""

from .classifier import RequestClassifier
from .gateway import InterceptionGateway, offline_marker_response, OFFLINE_MARKER

__all__ = [
    'RequestClassifier',
    'InterceptionGateway',
    'offline_marker_response',
    'OFFLINE_MARKER',
]
