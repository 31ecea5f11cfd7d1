from asyncio import Event, get_running_loop, run
from logging import getLogger
import signal

from grpc.aio import Server
from grpc.aio import server as grpc_aio_server

from .extproc import BaseExtProcService
from .health import add_HealthServicer_to_server, HealthService
from .settings import GRPC_PORT, MAX_CONCURRENT_STREAMS, SHUTDOWN_GRACE_PERIOD
from .util.envoy import add_ExternalProcessorServicer_to_server

logger = getLogger(__name__)


def create_server(
    service: BaseExtProcService,
    port: int = GRPC_PORT,
    max_concurrent_streams: int = MAX_CONCURRENT_STREAMS,
) -> Server:
    server = grpc_aio_server(options=[("grpc.max_concurrent_streams", max_concurrent_streams)])
    add_ExternalProcessorServicer_to_server(service, server)
    add_HealthServicer_to_server(HealthService(), server)
    server.add_insecure_port(f"[::]:{port}")
    return server


async def _serve(
    service: BaseExtProcService,
    port: int = GRPC_PORT,
    grace_period: int = SHUTDOWN_GRACE_PERIOD,
) -> None:
    server = create_server(service=service, port=port)
    logger.info(f'Starting Envoy ExternalProcessor "{service}" at {port}')
    await server.start()

    stopping = Event()
    loop = get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stopping.set)

    try:
        await stopping.wait()
    finally:
        logger.info("Starting graceful shutdown...")
        # During the grace period, the server won't accept new streams
        # and lets existing ones finish; after it, they are cancelled.
        await server.stop(grace_period)
        await service.close()
        logger.info("Server stopped")


def serve(
    service: BaseExtProcService,
    port: int = GRPC_PORT,
    grace_period: int = SHUTDOWN_GRACE_PERIOD,
) -> None:
    run(_serve(service=service, port=port, grace_period=grace_period))
