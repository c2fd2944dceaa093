"""
Interception - Request classification

Sorts outbound GET requests into static assets, API payloads and navigable
documents by path prefix and file extension.
"""
from typing import Iterable, List, Optional

from ..shared.schemas import RequestClass
from ..transport.http_client import Request

DEFAULT_STATIC_EXTENSIONS = (
    ".js", ".css", ".png", ".jpg", ".jpeg", ".gif", ".svg", ".woff", ".woff2", ".ico", ".webp",
)


class RequestClassifier:
    """Path and content-type heuristics for request classes."""

    def __init__(self, api_prefix: str = "/api/",
                 static_extensions: Optional[Iterable[str]] = None,
                 critical_paths: Optional[Iterable[str]] = None):
        self.api_prefix = api_prefix
        self.static_extensions: List[str] = [
            ext.lower() for ext in (static_extensions or DEFAULT_STATIC_EXTENSIONS)
        ]
        self.critical_paths = set(critical_paths or ())

    def classify(self, request: Request) -> RequestClass:
        path = request.path
        if path.startswith(self.api_prefix):
            return RequestClass.API
        if path.lower().endswith(tuple(self.static_extensions)) and not self.is_document(request):
            return RequestClass.STATIC
        return RequestClass.NAVIGATION

    def is_critical(self, request: Request) -> bool:
        """Critical API resources get an offline marker instead of an error."""
        return request.path in self.critical_paths

    def is_document(self, request: Request) -> bool:
        """Requests that explicitly accept HTML are documents whatever their path."""
        accept = request.header("accept", "") or ""
        return "text/html" in accept
