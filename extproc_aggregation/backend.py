from __future__ import annotations

from enum import Enum
from logging import getLogger
from typing import Dict, List, Optional, Type, Union
from urllib.parse import quote

from ddtrace import tracer
from grpc import StatusCode
import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError

from .models import Album, Post
from .settings import BACKEND_BASE_URL, BACKEND_TIMEOUT

logger = getLogger(__name__)


Record = Union[Album, Post]


class ResourceKind(str, Enum):
    albums = "albums"
    posts = "posts"


RECORD_TYPES: Dict[ResourceKind, Type[BaseModel]] = {
    ResourceKind.albums: Album,
    ResourceKind.posts: Post,
}


class FetchError(Exception):
    """A backend call failed. Always scoped to the request
    that made the call; `status_code` is the gRPC status the
    stream should end with if the failure is not tolerated."""

    status_code = StatusCode.UNAVAILABLE

    def __init__(self, kind: ResourceKind, url: str, reason: str) -> None:
        super().__init__(f"{kind.value} fetch from {url} failed: {reason}")
        self.kind = kind
        self.url = url
        self.reason = reason


class BackendTransportError(FetchError):
    """connection failure, timeout or non-2xx status"""

    status_code = StatusCode.UNAVAILABLE


class BackendDecodeError(FetchError):
    """body was not a JSON array of the expected records"""

    status_code = StatusCode.INTERNAL


class InvalidIdentifierError(FetchError):
    """identifier cannot name a single path segment ("." or "..")"""

    status_code = StatusCode.INVALID_ARGUMENT


class BackendClient:
    """
    Reads per-user resources from a JSON backend laid out as

        <base_url>/users/<identifier>/<albums|posts>

    Each call is a single GET with no retries. The underlying
    httpx.AsyncClient is shared across streams (it is safe for
    concurrent use) and is closed with `aclose`.
    """

    def __init__(
        self,
        base_url: str = BACKEND_BASE_URL,
        timeout: float = BACKEND_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))
        self._adapters = {kind: TypeAdapter(List[cls]) for kind, cls in RECORD_TYPES.items()}

    def resource_url(self, kind: ResourceKind, identifier: str) -> str:
        return f"{self.base_url}/users/{quote(identifier, safe='')}/{kind.value}"

    async def fetch(self, kind: ResourceKind, identifier: str) -> List[Record]:
        url = self.resource_url(kind, identifier)
        if identifier in (".", ".."):
            # httpx would resolve these as dot segments and leave /users/<identifier>
            logger.error(
                f"refusing to fetch {kind.value}",
                extra={"user": identifier, "url": url, "error": "invalid identifier"},
            )
            raise InvalidIdentifierError(kind, url, f"invalid identifier {identifier!r}")

        logger.info(f"fetching {kind.value} for user", extra={"user": identifier, "url": url})

        with tracer.trace("backend.fetch", resource=kind.value, span_type="http") as span:
            span.set_tag("http.url", url)
            try:
                response = await self.client.get(url)
                response.raise_for_status()
            except httpx.HTTPError as err:
                logger.error(
                    f"error loading {kind.value}",
                    extra={"user": identifier, "url": url, "error": str(err)},
                )
                raise BackendTransportError(kind, url, str(err) or type(err).__name__) from err

            try:
                return self._adapters[kind].validate_python(response.json())
            except (ValueError, ValidationError) as err:
                logger.error(
                    f"error decoding {kind.value} response",
                    extra={"user": identifier, "url": url, "error": str(err)},
                )
                raise BackendDecodeError(kind, url, str(err)) from err

    async def aclose(self) -> None:
        await self.client.aclose()
