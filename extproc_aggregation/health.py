from logging import getLogger
from typing import List, Optional

from ddtrace import Span
from ddtrace.filters import TraceFilter
from grpc import ServicerContext, StatusCode
from grpc_health.v1.health_pb2 import (
    HealthCheckRequest,
    HealthCheckResponse,
)
from grpc_health.v1.health_pb2_grpc import (  # noqa: F401
    add_HealthServicer_to_server,
)
from grpc_health.v1.health_pb2_grpc import HealthServicer

logger = getLogger(__name__)

grpc_health_path_base = "grpc.health"


class FilterOutHealthChecks(TraceFilter):
    def exclude(self, span: Span):
        """
        return True if span_type == grpc and resource starts with /{grpc_health_path_base}
        """
        return (span.span_type == "grpc") and span.resource.startswith(f"/{grpc_health_path_base}")

    def process_trace(self, trace: List[Span]) -> Optional[List[Span]]:
        for span in trace:
            if self.exclude(span):
                return None
        return trace


class HealthService(HealthServicer):
    """Always serving; envoy only needs to know the process is up"""

    async def Check(
        self, request: HealthCheckRequest, context: ServicerContext
    ) -> HealthCheckResponse:
        logger.debug("received health check request", extra={"service": request.service})
        return HealthCheckResponse(status=HealthCheckResponse.ServingStatus.SERVING)

    async def Watch(self, request: HealthCheckRequest, context: ServicerContext) -> None:
        await context.abort(StatusCode.UNIMPLEMENTED, "watch is not implemented")
