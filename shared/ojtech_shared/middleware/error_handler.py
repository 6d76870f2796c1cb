from collections.abc import Awaitable, Callable

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from ojtech_shared.errors import AppError, failure_headers, map_failure
from ojtech_shared.middleware.request_id import REQUEST_ID_HEADER


def error_response(request: Request, exc: BaseException) -> JSONResponse:
    status_code, body = map_failure(exc, request.url.path)
    headers = failure_headers(exc)
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        headers[REQUEST_ID_HEADER] = request_id
    return JSONResponse(status_code=status_code, content=body.to_content(), headers=headers)


async def handle_mapped(request: Request, exc: Exception) -> JSONResponse:
    return error_response(request, exc)


async def error_envelope_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Outermost net: failures raised in middleware or missed by the handlers."""
    try:
        return await call_next(request)
    except Exception as exc:
        return error_response(request, exc)


def install_error_handlers(app: FastAPI) -> None:
    """Route route-level failures through ``map_failure``; pair with the middleware."""
    app.add_exception_handler(AppError, handle_mapped)
    app.add_exception_handler(RequestValidationError, handle_mapped)
    app.add_exception_handler(StarletteHTTPException, handle_mapped)
