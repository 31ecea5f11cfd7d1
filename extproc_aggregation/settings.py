from os import environ

GRPC_PORT = int(environ.get("GRPC_PORT", "18080"))

SHUTDOWN_GRACE_PERIOD = int(environ.get("SHUTDOWN_GRACE_PERIOD", "5"))

MAX_CONCURRENT_STREAMS = int(environ.get("MAX_CONCURRENT_STREAMS", "1000"))

LOG_LEVEL = environ.get("LOG_LEVEL", "INFO").upper()

BACKEND_BASE_URL = environ.get("BACKEND_BASE_URL", "https://jsonplaceholder.typicode.com")

# seconds, applied to every backend call
BACKEND_TIMEOUT = float(environ.get("BACKEND_TIMEOUT", "5.0"))

USER_ID_HEADER = environ.get("USER_ID_HEADER", "userid")

# one of "abort", "passthrough", "reject"; see service.FailureMode
AGGREGATION_FAILURE_MODE = environ.get("AGGREGATION_FAILURE_MODE", "abort").lower()

ENVOY_SERVICE_NAME = "envoy.service.ext_proc.v3.ExternalProcessor"
