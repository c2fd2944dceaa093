"""
Transport - HTTP client for the offline layer

This module implements the network capability used by the gateway, the replay
coordinator, the refresher and the lifecycle controller. Every component
receives a Fetcher so tests can substitute an in-memory network.
"""
import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, Union
from urllib.parse import urljoin, urlsplit, urlunsplit

import aiohttp
import structlog

from ..shared.exceptions import NetworkUnavailable

logger = structlog.get_logger(__name__)

DEFAULT_PORTS = {"http": 80, "https": 443}


def normalize_url(url: str, origin: Optional[str] = None) -> str:
    """
    Normalize a URL for cache addressing.

    Relative URLs are resolved against the origin; scheme and host are
    lower-cased, default ports and fragments dropped, the query kept verbatim.
    """
    if origin:
        url = urljoin(origin.rstrip("/") + "/", url)

    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    netloc = parts.netloc.lower()
    if parts.port and DEFAULT_PORTS.get(scheme) == parts.port:
        netloc = netloc.rsplit(":", 1)[0]
    path = parts.path or "/"
    return urlunsplit((scheme, netloc, path, parts.query, ""))


def encode_body(body: Union[None, bytes, str, Dict[str, Any], list]) -> Optional[bytes]:
    """Encode a request body for the wire and for the mutation queue."""
    if body is None:
        return None
    if isinstance(body, bytes):
        return body
    if isinstance(body, str):
        return body.encode("utf-8")
    return json.dumps(body, default=str).encode("utf-8")


@dataclass(frozen=True)
class Request:
    """An outbound request as issued by the host application."""
    url: str
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None

    @property
    def path(self) -> str:
        return urlsplit(self.url).path or "/"

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Case-insensitive header lookup."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return default


@dataclass(frozen=True)
class Response:
    """A response from the network or from a cache generation."""
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    url: Optional[str] = None
    from_cache: bool = False

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        return json.loads(self.body.decode("utf-8"))

    def text(self) -> str:
        return self.body.decode("utf-8")


class Fetcher(ABC):
    """Network capability: issue a request, raise NetworkUnavailable on transport failure."""

    @abstractmethod
    async def fetch(self, request: Request) -> Response:
        """Issue a request and return the response, whatever its status."""

    async def close(self) -> None:
        """Release network resources."""
        return None


class AiohttpFetcher(Fetcher):
    """
    Fetcher backed by an aiohttp client session.

    Relative request URLs are resolved against the configured origin. No total
    timeout is imposed unless one is configured.
    """

    def __init__(self, origin: str, timeout: Optional[float] = None,
                 session: Optional[aiohttp.ClientSession] = None):
        self.origin = origin
        self.timeout = timeout
        self.session = session
        self._owns_session = session is None

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def connect(self) -> None:
        """Initialize the HTTP session."""
        if self.session is None:
            self.session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
            self._owns_session = True
            logger.info("HTTP fetcher connected", origin=self.origin, timeout=self.timeout)

    async def close(self) -> None:
        """Close the HTTP session."""
        if self.session and self._owns_session:
            await self.session.close()
            logger.info("HTTP fetcher disconnected")
        self.session = None

    async def fetch(self, request: Request) -> Response:
        if not self.session:
            await self.connect()

        url = normalize_url(request.url, self.origin)

        try:
            async with self.session.request(
                method=request.method,
                url=url,
                headers=request.headers or None,
                data=request.body,
            ) as response:
                body = await response.read()
                return Response(
                    status=response.status,
                    headers={key: value for key, value in response.headers.items()},
                    body=body,
                    url=url,
                )
        except asyncio.TimeoutError as e:
            logger.warning("Network request timed out", method=request.method, url=url)
            raise NetworkUnavailable(url, "timeout") from e
        except (aiohttp.ClientError, OSError) as e:
            logger.warning("Network request failed", method=request.method, url=url, error=str(e))
            raise NetworkUnavailable(url, str(e)) from e
