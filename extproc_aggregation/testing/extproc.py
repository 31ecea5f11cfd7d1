from typing import AsyncGenerator, Iterable, List, Optional

from ..util.envoy import ext_api


def envoy_cycle_messages(
    request_headers: ext_api.HttpHeaders = ext_api.HttpHeaders(),
    request_body: ext_api.HttpBody = ext_api.HttpBody(),
    request_trailers: ext_api.HttpTrailers = ext_api.HttpTrailers(),
    response_headers: ext_api.HttpHeaders = ext_api.HttpHeaders(),
    response_body: ext_api.HttpBody = ext_api.HttpBody(),
    response_trailers: ext_api.HttpTrailers = ext_api.HttpTrailers(),
) -> List[ext_api.ProcessingRequest]:
    """One ProcessingRequest per phase, in the order envoy sends them"""
    return [
        ext_api.ProcessingRequest(request_headers=request_headers),
        ext_api.ProcessingRequest(request_body=request_body),
        ext_api.ProcessingRequest(request_trailers=request_trailers),
        ext_api.ProcessingRequest(response_headers=response_headers),
        ext_api.ProcessingRequest(response_body=response_body),
        ext_api.ProcessingRequest(response_trailers=response_trailers),
    ]


async def envoy_extproc_cycle(**phases) -> AsyncGenerator[ext_api.ProcessingRequest, None]:
    """Create a generator that can be used to test request cycles"""
    for msg in envoy_cycle_messages(**phases):
        yield msg


class AsEnvoyExtProc:
    """Stands in for envoy's side of a Process stream. Sends a full
    request cycle by default, or exactly the `messages` given."""

    def __init__(
        self,
        messages: Optional[Iterable[ext_api.ProcessingRequest]] = None,
        **phases,
    ) -> None:
        self.messages = list(messages) if messages is not None else envoy_cycle_messages(**phases)
        self.sent = 0

    async def __aiter__(self) -> AsyncGenerator[ext_api.ProcessingRequest, None]:
        for msg in self.messages:
            self.sent += 1
            yield msg


class Aborted(Exception):
    """What FakeServicerContext.abort raises (grpc raises AbortError)"""

    def __init__(self, code, details) -> None:
        super().__init__(details)
        self.code = code
        self.details = details


class FakeServicerContext:
    """Just enough of grpc.aio.ServicerContext to drive Process"""

    def __init__(self) -> None:
        self._cancelled = False
        self.code = None
        self.details = None

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled

    async def abort(self, code, details) -> None:
        self.code, self.details = code, details
        raise Aborted(code, details)
