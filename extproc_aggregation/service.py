# AggregationExtProcService
#
# When a request carries a `userid` header, fetch that user's albums
# and posts concurrently and have envoy replace the request body with
#
#   {"albums": [...], "posts": [...]}
#
# before forwarding it upstream. Requests without the header pass
# through untouched. What happens when the backend fails is set by
# FailureMode.

from enum import Enum
from logging import getLogger
from typing import Dict, Optional, Union

from grpc import ServicerContext

from .aggregator import AggregationError, Aggregator
from .backend import BackendClient
from .extproc import BaseExtProcService, StopRequestProcessing
from .settings import AGGREGATION_FAILURE_MODE, USER_ID_HEADER
from .util.envoy import EnvoyHttpStatusCode, ext_api

logger = getLogger(__name__)


class FailureMode(str, Enum):
    abort = "abort"  # end the stream with an error status
    passthrough = "passthrough"  # forward the original request
    reject = "reject"  # answer downstream with 502


class AggregationExtProcService(BaseExtProcService):
    def __init__(
        self,
        name: Optional[str] = None,
        aggregator: Optional[Aggregator] = None,
        failure_mode: Union[FailureMode, str] = AGGREGATION_FAILURE_MODE,
        identifier_header: str = USER_ID_HEADER,
    ) -> None:
        super().__init__(name=name)
        self.aggregator = aggregator or Aggregator(BackendClient())
        self.failure_mode = FailureMode(failure_mode)
        self.identifier_header = identifier_header

    async def close(self) -> None:
        await self.aggregator.client.aclose()

    def extract_identifier(self, headers: ext_api.HttpHeaders) -> Optional[str]:
        return self.get_header(headers, self.identifier_header)

    async def process_request_headers(
        self,
        headers: ext_api.HttpHeaders,
        context: ServicerContext,
        request: Dict,
        response: ext_api.CommonResponse,
    ) -> ext_api.CommonResponse:

        # no user, nothing to aggregate: leave the request alone
        user_id = self.extract_identifier(headers)
        if not user_id:
            return response
        request["user"] = user_id

        try:
            body = await self.aggregator.aggregate(user_id)
        except AggregationError as err:
            return self.on_aggregation_error(err, request, response)

        self.replace_body(response, body.encode())
        self.add_header(response, "content-type", "application/json")
        self.remove_header(response, "content-length")
        return response

    def on_aggregation_error(
        self,
        err: AggregationError,
        request: Dict,
        response: ext_api.CommonResponse,
    ) -> ext_api.CommonResponse:

        if self.failure_mode == FailureMode.passthrough:
            logger.warning(
                "aggregation failed; passing request through",
                extra={**self.log_context(request), "user": err.identifier, "reason": err.details},
            )
            return response

        if self.failure_mode == FailureMode.reject:
            immediate = self.form_immediate_response(
                EnvoyHttpStatusCode.BadGateway, {"content-type": "text/plain"}, err.details
            )
            raise StopRequestProcessing(response=immediate, reason=err.details)

        raise err
