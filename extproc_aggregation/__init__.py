from .aggregator import AggregationError, Aggregator  # noqa: F401
from .backend import (  # noqa: F401
    BackendClient,
    BackendDecodeError,
    BackendTransportError,
    FetchError,
    InvalidIdentifierError,
    ResourceKind,
)
from .extproc import (  # noqa: F401
    BaseExtProcService,
    ExtProcPhase,
    StopRequestProcessing,
    StreamProcessingError,
)
from .models import AggregatedPayload, Album, Post  # noqa: F401
from .server import create_server, serve  # noqa: F401
from .service import AggregationExtProcService, FailureMode  # noqa: F401
from .util.envoy import ext_api  # noqa: F401
