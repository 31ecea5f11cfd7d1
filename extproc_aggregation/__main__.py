import argparse
import logging
from typing import List, Optional

from ddtrace import tracer

from .health import FilterOutHealthChecks
from .server import serve
from .service import AggregationExtProcService, FailureMode
from .settings import (
    AGGREGATION_FAILURE_MODE,
    GRPC_PORT,
    LOG_LEVEL,
    SHUTDOWN_GRACE_PERIOD,
)

logger = logging.getLogger(__name__)


def parse_cli_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    parse arguments. Defaults come from the environment (see settings),
    so in a container this usually runs as just

        python -m extproc_aggregation --logging
    """

    parser: argparse.ArgumentParser = argparse.ArgumentParser(prog="extproc-aggregation")

    parser.add_argument(
        "-p",
        "--port",
        dest="port",
        required=False,
        type=int,
        default=GRPC_PORT,
        help="Port to run service on",
    )
    parser.add_argument(
        "-g",
        "--grace-period",
        dest="grace_period",
        required=False,
        type=int,
        default=SHUTDOWN_GRACE_PERIOD,
        help="Grace period to finish requests on shutdown",
    )
    parser.add_argument(
        "-f",
        "--failure-mode",
        dest="failure_mode",
        required=False,
        type=FailureMode,
        choices=list(FailureMode),
        default=AGGREGATION_FAILURE_MODE,
        help="What to do with a request when aggregation fails",
    )
    parser.add_argument(
        "-l",
        "--logging",
        dest="logging",
        default=False,
        action="store_true",
        help="Include logging setup",
    )
    parser.add_argument(
        "--log-level",
        dest="log_level",
        type=str.upper,
        default=LOG_LEVEL,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log verbosity (with --logging)",
    )

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_cli_args(argv)

    if args.logging:
        FORMAT = "%(asctime)s : %(levelname)s : %(message)s"
        logging.basicConfig(level=args.log_level, format=FORMAT, handlers=[logging.StreamHandler()])

    tracer.configure(settings={"FILTERS": [FilterOutHealthChecks()]})

    service = AggregationExtProcService(failure_mode=args.failure_mode)
    serve(service, args.port, args.grace_period)


if __name__ == "__main__":  # pragma: no cover
    main()
