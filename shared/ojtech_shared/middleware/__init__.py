from ojtech_shared.middleware.body_limit import body_limit_middleware
from ojtech_shared.middleware.error_handler import (
    error_envelope_middleware,
    error_response,
    handle_mapped,
    install_error_handlers,
)
from ojtech_shared.middleware.request_id import request_id_middleware
from ojtech_shared.middleware.response_state import ResponseCommitMiddleware

__all__ = [
    "ResponseCommitMiddleware",
    "body_limit_middleware",
    "error_envelope_middleware",
    "error_response",
    "handle_mapped",
    "install_error_handlers",
    "request_id_middleware",
]
