# Short names for the generated envoy v3 types (xds-protos)

from envoy.config.core.v3.base_pb2 import HeaderMap as EnvoyHeaderMap  # noqa: F401
from envoy.config.core.v3.base_pb2 import HeaderValue as EnvoyHeaderValue  # noqa: F401
from envoy.config.core.v3.base_pb2 import (  # noqa: F401
    HeaderValueOption as EnvoyHeaderValueOption,
)
from envoy.service.ext_proc.v3 import external_processor_pb2 as ext_api  # noqa: F401
from envoy.service.ext_proc.v3.external_processor_pb2_grpc import (  # noqa: F401
    add_ExternalProcessorServicer_to_server,
)
from envoy.service.ext_proc.v3.external_processor_pb2_grpc import (  # noqa: F401
    ExternalProcessorServicer as EnvoyExtProcServicer,
)
from envoy.type.v3.http_status_pb2 import HttpStatus as EnvoyHttpStatus  # noqa: F401
from envoy.type.v3.http_status_pb2 import StatusCode as EnvoyHttpStatusCode  # noqa: F401
