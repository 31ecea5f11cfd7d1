from __future__ import annotations

from asyncio import CancelledError, iscoroutinefunction
from enum import Enum
from logging import getLogger
from typing import AsyncIterator, Callable, Dict, List, Optional, Union

from ddtrace import tracer
from grpc import ServicerContext, StatusCode

from .settings import ENVOY_SERVICE_NAME
from .util.envoy import (
    EnvoyExtProcServicer,
    EnvoyHeaderValue,
    EnvoyHeaderValueOption,
    EnvoyHttpStatus,
    EnvoyHttpStatusCode,
    ext_api,
)
from .util.timer import Timer

logger = getLogger(__name__)


class ExtProcPhase(str, Enum):
    request_headers = "request_headers"
    request_body = "request_body"
    request_trailers = "request_trailers"
    response_headers = "response_headers"
    response_body = "response_body"
    response_trailers = "response_trailers"


PHASES = frozenset(p.value for p in ExtProcPhase)


class StopRequestProcessing(Exception):
    """Raise this exception to stop processing the request
    altogether, concluding processing with the `response`
    passed in construction of this exception. Envoy sends
    the immediate response downstream instead of forwarding
    the request; this is how a request gets rejected."""

    def __init__(self, response: ext_api.ImmediateResponse, reason: Optional[str] = None) -> None:
        super().__init__(reason)
        self.response = response
        self.reason = reason


class StreamProcessingError(Exception):
    """Raise this exception to terminate the whole stream with
    a gRPC error status. Envoy then applies its own failure
    policy (failure_mode_allow) to the request."""

    status_code = StatusCode.INTERNAL

    def __init__(self, details: str, status_code: Optional[StatusCode] = None) -> None:
        super().__init__(details)
        self.details = details
        if status_code is not None:
            self.status_code = status_code


class BaseExtProcService(EnvoyExtProcServicer):
    """
    Base ExternalProcessor for envoy. Answers every processing
    request with an unmodified "continue" response. Subclass this
    and supply phase-specific `process_...` methods to change that.
    """

    STANDARD_REQUEST_HEADERS = {
        ":method": "method",
        ":path": "path",
        "content-type": "content_type",
        "content-length": "content_length",
        "x-request-id": "__id",
    }

    STANDARD_RESPONSE_HEADERS = {
        "content-type": "content_type",
        "content-length": "content_length",
    }

    def __init__(self, name: Optional[str] = None) -> None:
        self.name = name or self.__class__.__name__

    def __repr__(self) -> str:
        """Get this object's \"name\", either class name or overriden"""
        return self.name

    async def close(self) -> None:
        """Release anything held across streams; called on shutdown"""

    async def Process(
        self,
        request_iterator: AsyncIterator[ext_api.ProcessingRequest],
        context: ServicerContext,
    ) -> AsyncIterator[ext_api.ProcessingResponse]:
        """
        Stream handler. Envoy opens one stream per HTTP request and
        expects exactly one ProcessingResponse for every
        ProcessingRequest, in order, before it sends the next one.
        So each received message is answered before we read again.

        The local/call context ("request") holds whatever a later
        phase needs from an earlier one, since envoy only sends each
        phase the data relevant to it. It lives for the stream only.

        The stream ends when
          * envoy closes it (iterator exhausted): nothing more is sent
          * the RPC is cancelled: nothing more is sent, cancellation
            propagates
          * a phase raises StreamProcessingError: aborted with its status
        """

        with tracer.trace(
            "process",
            resource=f"/{ENVOY_SERVICE_NAME}/Process",
            span_type="grpc",
        ):

            # for each stream invocation, define a new "call" context/"request"
            request = {"__overhead_ns": 0, "__phase": "unknown", "__id": "unknown"}

            async for req in self.safe_iterator(request_iterator, context, request):

                phase = req.WhichOneof("request")
                if phase not in PHASES:
                    # keep the stream balanced for kinds we don't know yet
                    logger.warning(
                        f"{self.name} got unknown request type {phase}",
                        extra=self.log_context(request),
                    )
                    yield ext_api.ProcessingResponse()
                    continue

                request["__phase"] = phase

                # get the request-phase's data
                data = getattr(req, phase)

                if phase == ExtProcPhase.request_headers:
                    request.update(self.get_standard_request_headers(data))
                elif phase == ExtProcPhase.response_headers:
                    request.update(self.get_standard_response_headers(data))

                action = getattr(self, f"process_{phase}")

                # get a response object to pass (convenience)
                response = (
                    ext_api.HeaderMutation()
                    if phase.endswith("trailers")
                    else ext_api.CommonResponse()
                )

                try:
                    response = await self.process_phase(
                        phase, data, context, request, response, action
                    )

                except StopRequestProcessing as err:
                    logger.debug(
                        "Caught StopRequestProcessing; sending ImmediateResponse",
                        extra={
                            **self.log_context(request),
                            "status": err.response.status.code,
                            "reason": err.reason or "none supplied",
                        },
                    )
                    if self.is_cancelled(context):
                        return
                    yield ext_api.ProcessingResponse(immediate_response=err.response)
                    continue

                except StreamProcessingError as err:
                    logger.error(
                        f"{self.name} failed {phase}; aborting stream",
                        extra={
                            **self.log_context(request),
                            "status": err.status_code.name,
                            "reason": err.details,
                        },
                    )
                    await context.abort(err.status_code, err.details)
                    return

                # cancelled while the phase ran: the decision has no reader
                if self.is_cancelled(context):
                    logger.debug("RPC cancelled; dropping response", extra=self.log_context(request))
                    return

                yield self.phase_response(phase, response)

    async def safe_iterator(
        self,
        request_iterator: AsyncIterator[ext_api.ProcessingRequest],
        context: ServicerContext,
        request: Dict,
    ) -> AsyncIterator[ext_api.ProcessingRequest]:
        try:
            async for req in request_iterator:
                if self.is_cancelled(context):
                    logger.debug("RPC cancelled; dropping request", extra=self.log_context(request))
                    return
                yield req
        except CancelledError:
            logger.debug("RPC cancelled by client", extra=self.log_context(request))
            raise
        except Exception as err:
            logger.error(
                "cannot receive stream request",
                extra={**self.log_context(request), "error": str(err)},
            )
            await context.abort(StatusCode.UNKNOWN, f"cannot receive stream request: {err}")

    @staticmethod
    def is_cancelled(context: Optional[ServicerContext]) -> bool:
        return context is not None and context.cancelled()

    def log_context(self, request: Dict) -> Dict[str, str]:
        return {
            "processor": self.name,
            "phase": request.get("__phase") or "unknown",
            "request": request.get("__id") or "unknown",
        }

    async def process_phase(
        self,
        phase: str,
        data: Union[ext_api.HttpHeaders, ext_api.HttpBody, ext_api.HttpTrailers],
        context: ServicerContext,
        request: Dict,
        response: Union[ext_api.CommonResponse, ext_api.HeaderMutation],
        action: Callable,
    ) -> Union[ext_api.CommonResponse, ext_api.HeaderMutation]:

        logger.debug(f"{self.name} started {phase}", extra=self.log_context(request))

        camel_case_phase = "".join([w.title() for w in phase.split("_")])
        resource_name = f"/{ENVOY_SERVICE_NAME}/Process/{camel_case_phase}"
        with Timer() as T:
            with tracer.trace(f"process.{phase}", resource=resource_name, span_type="grpc"):
                if iscoroutinefunction(action):
                    response = await action(data, context, request, response)
                else:
                    response = action(data, context, request, response)

        duration = T.duration_ns()
        request["__overhead_ns"] += duration

        logger.debug(
            f"{self.name} finished {phase}",
            extra={**self.log_context(request), "duration_ns": duration},
        )

        return response

    @staticmethod
    def phase_response(
        phase: str,
        response: Union[ext_api.CommonResponse, ext_api.HeaderMutation],
    ) -> ext_api.ProcessingResponse:
        """wrap a phase result in the ProcessingResponse envoy expects for that phase"""
        if phase.endswith("headers"):
            return ext_api.ProcessingResponse(**{phase: ext_api.HeadersResponse(response=response)})
        if phase.endswith("body"):
            return ext_api.ProcessingResponse(**{phase: ext_api.BodyResponse(response=response)})
        return ext_api.ProcessingResponse(
            **{phase: ext_api.TrailersResponse(header_mutation=response)}
        )

    # Phase-specific methods are below. Subclasses define these to
    # specialize filter behavior. Note these aren't "NotImplemented",
    # but rather no-ops: the passed response is the empty decision.

    async def process_request_headers(
        self,
        headers: ext_api.HttpHeaders,
        context: ServicerContext,
        request: Dict,
        response: ext_api.CommonResponse,
    ) -> ext_api.CommonResponse:
        return response

    async def process_request_body(
        self,
        body: ext_api.HttpBody,
        context: ServicerContext,
        request: Dict,
        response: ext_api.CommonResponse,
    ) -> ext_api.CommonResponse:
        return response

    async def process_request_trailers(
        self,
        trailers: ext_api.HttpTrailers,
        context: ServicerContext,
        request: Dict,
        response: ext_api.HeaderMutation,
    ) -> ext_api.HeaderMutation:
        return response

    async def process_response_headers(
        self,
        headers: ext_api.HttpHeaders,
        context: ServicerContext,
        request: Dict,
        response: ext_api.CommonResponse,
    ) -> ext_api.CommonResponse:
        return response

    async def process_response_body(
        self,
        body: ext_api.HttpBody,
        context: ServicerContext,
        request: Dict,
        response: ext_api.CommonResponse,
    ) -> ext_api.CommonResponse:
        return response

    async def process_response_trailers(
        self,
        trailers: ext_api.HttpTrailers,
        context: ServicerContext,
        request: Dict,
        response: ext_api.HeaderMutation,
    ) -> ext_api.HeaderMutation:
        return response

    # response helpers - static so they can be used without an instance

    @staticmethod
    def form_immediate_response(
        status: EnvoyHttpStatusCode,
        headers: Dict[str, str],
        details: str = "",
    ) -> ext_api.ImmediateResponse:
        response = ext_api.ImmediateResponse(status=EnvoyHttpStatus(code=status), details=details)
        response.headers.set_headers.extend(
            [
                EnvoyHeaderValueOption(header=EnvoyHeaderValue(key=key, value=value))
                for key, value in headers.items()
            ]
        )
        return response

    @staticmethod
    def replace_body(response: ext_api.CommonResponse, body: bytes) -> ext_api.CommonResponse:
        """replace the whole body from a headers phase (envoy needs CONTINUE_AND_REPLACE)"""
        response.status = ext_api.CommonResponse.ResponseStatus.CONTINUE_AND_REPLACE
        response.body_mutation.body = body
        return response

    # header helpers

    @staticmethod
    def header_value(header: EnvoyHeaderValue) -> str:
        """envoy sends either value or (newer) raw_value; prefer raw_value"""
        if header.raw_value:
            return header.raw_value.decode("utf-8", errors="replace")
        return header.value

    @staticmethod
    def get_header(headers: ext_api.HttpHeaders, name: str) -> Optional[str]:
        """get the first header value whose key matches name, ignoring case"""
        _name = name.lower()
        for header in headers.headers.headers:
            if header.key.lower() == _name:
                return BaseExtProcService.header_value(header)
        return None

    @staticmethod
    def get_headers(
        headers: ext_api.HttpHeaders,
        names: Union[Dict[str, str], List[str]],
    ) -> Dict[str, Optional[str]]:
        """get several header values at once, optionally storing them under
        mapped names; the first occurrence of a header wins"""

        if isinstance(names, list):
            names = {name: name for name in names}
        keys = {k.lower(): v for k, v in names.items()}

        results = {name: None for name in keys.values()}
        for header in headers.headers.headers:
            name = keys.get(header.key.lower())
            if name is not None and results[name] is None:
                results[name] = BaseExtProcService.header_value(header)
        return results

    @staticmethod
    def add_header(
        response: ext_api.CommonResponse, key: str, value: str
    ) -> ext_api.CommonResponse:
        """add a header to a CommonResponse"""
        header = EnvoyHeaderValue(key=key, value=value)
        response.header_mutation.set_headers.append(EnvoyHeaderValueOption(header=header))
        return response

    @staticmethod
    def remove_header(response: ext_api.CommonResponse, name: str) -> ext_api.CommonResponse:
        """remove a header from a CommonResponse"""
        response.header_mutation.remove_headers.append(name)
        return response

    @staticmethod
    def get_standard_request_headers(headers: ext_api.HttpHeaders) -> Dict[str, Optional[str]]:
        """pull a chosen set of "standard" HTTP headers from envoy headers"""
        return BaseExtProcService.get_headers(
            headers, names=BaseExtProcService.STANDARD_REQUEST_HEADERS
        )

    @staticmethod
    def get_standard_response_headers(headers: ext_api.HttpHeaders) -> Dict[str, Optional[str]]:
        """pull a chosen set of "standard" HTTP headers from envoy headers"""
        return BaseExtProcService.get_headers(
            headers, names=BaseExtProcService.STANDARD_RESPONSE_HEADERS
        )
