from collections.abc import Awaitable, Callable

from starlette.requests import Request
from starlette.responses import Response

from ojtech_shared.errors import BadRequest, UploadTooLarge


def body_limit_middleware(
    max_bytes: int,
) -> Callable[[Request, Callable[[Request], Awaitable[Response]]], Awaitable[Response]]:
    """Reject requests whose declared Content-Length is above ``max_bytes``."""

    async def _middleware(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        declared = request.headers.get("Content-Length")
        if declared is not None:
            try:
                size = int(declared)
            except ValueError:
                raise BadRequest("Invalid Content-Length header")
            if size > max_bytes:
                raise UploadTooLarge()
        return await call_next(request)

    return _middleware
