from .backend import FakeBackend, SAMPLE_ALBUMS, SAMPLE_PAYLOAD, SAMPLE_POSTS  # noqa: F401
from .extproc import (  # noqa: F401
    Aborted,
    AsEnvoyExtProc,
    envoy_cycle_messages,
    envoy_extproc_cycle,
    FakeServicerContext,
)
from .http import envoy_body, envoy_headers, envoy_set_headers_to_dict  # noqa: F401
