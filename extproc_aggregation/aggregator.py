from asyncio import gather
from logging import getLogger

from ddtrace import tracer

from .backend import BackendClient, FetchError, ResourceKind
from .extproc import StreamProcessingError
from .models import AggregatedPayload
from .util.timer import Timer

logger = getLogger(__name__)


class AggregationError(StreamProcessingError):
    """At least one backend fetch failed, so there is no payload.
    Carries the failing fetch's gRPC status."""

    def __init__(self, identifier: str, cause: FetchError) -> None:
        super().__init__(
            f"aggregation failed for user {identifier}: {cause}",
            status_code=cause.status_code,
        )
        self.identifier = identifier
        self.cause = cause


class Aggregator:
    """Fans out to the albums and posts resources for one user
    and joins the results into a single JSON document."""

    def __init__(self, client: BackendClient) -> None:
        self.client = client

    async def aggregate(self, identifier: str) -> str:
        with tracer.trace("aggregate", resource="/users/aggregate") as span, Timer() as T:
            # both fetches always run to completion before we look at either
            albums, posts = await gather(
                self.client.fetch(ResourceKind.albums, identifier),
                self.client.fetch(ResourceKind.posts, identifier),
                return_exceptions=True,
            )
            duration = T.duration_ns()
            span.set_metric("aggregation.duration_ns", duration)

        logger.info("fetching took", extra={"user": identifier, "duration_ns": duration})

        for result in (albums, posts):
            if isinstance(result, FetchError):
                raise AggregationError(identifier, result) from result
            if isinstance(result, BaseException):
                raise result

        return AggregatedPayload(albums=albums, posts=posts).to_json()
