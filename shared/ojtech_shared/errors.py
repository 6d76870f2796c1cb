"""
Failure taxonomy and the single mapping from failures to HTTP error payloads.

Business code raises the most specific ``AppError`` subclass it can. Nothing
outside this module builds an error body: the handlers installed by
``ojtech_shared.middleware.error_handler`` call ``map_failure`` for every
failed request, whatever raised it.
"""
from __future__ import annotations

import enum
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import ClassVar

from fastapi import status
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError as PydanticValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from ojtech_shared.models.error import ErrorResponse

logger = logging.getLogger(__name__)


class FailureKind(str, enum.Enum):
    NOT_FOUND = "not_found"
    BAD_REQUEST = "bad_request"
    ACCESS_DENIED = "access_denied"
    AUTHENTICATION_FAILED = "authentication_failed"
    VALIDATION_FAILED = "validation_failed"
    UPLOAD_TOO_LARGE = "upload_too_large"
    RECURSION_FAULT = "recursion_fault"
    UNHANDLED = "unhandled"


# ── Application errors ────────────────────────────────────────────────────────

class AppError(Exception):
    """Base for every failure the application raises on purpose."""

    kind: ClassVar[FailureKind]
    default_message: ClassVar[str] = ""

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ResourceNotFound(AppError):
    kind = FailureKind.NOT_FOUND
    default_message = "Resource not found"


class BadRequest(AppError):
    kind = FailureKind.BAD_REQUEST
    default_message = "Bad request"


class AccessDenied(AppError):
    kind = FailureKind.ACCESS_DENIED
    default_message = "Access is denied"


class AuthenticationFailed(AppError):
    kind = FailureKind.AUTHENTICATION_FAILED
    default_message = "Full authentication is required to access this resource"
    # Set on failures the caller may simply repeat (e.g. a lost insert race).
    retryable: ClassVar[bool] = False


class BadCredentials(AuthenticationFailed):
    default_message = "Bad credentials"


class InvalidToken(AuthenticationFailed):
    default_message = "Token is invalid or has expired"


class ValidationFailed(AppError):
    """Field-level validation failure; ``violations`` keeps the reported order."""

    kind = FailureKind.VALIDATION_FAILED
    default_message = "Validation failed"

    def __init__(
        self,
        violations: Sequence[tuple[str, str]],
        message: str | None = None,
    ) -> None:
        self.violations = list(violations)
        super().__init__(message)


class UploadTooLarge(AppError):
    kind = FailureKind.UPLOAD_TOO_LARGE
    default_message = "Maximum upload size exceeded"


# ── Classification ────────────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class Failure:
    kind: FailureKind
    message: str
    errors: list[str] | None = None


_LOCATION_PREFIXES = {"body", "query", "path", "header", "cookie"}


def _field_name(loc: Sequence[object]) -> str:
    parts = [str(p) for p in loc]
    if parts and parts[0] in _LOCATION_PREFIXES:
        parts = parts[1:]
    return ".".join(parts) or "request"


def _pydantic_violations(errors: Sequence[dict]) -> list[str]:
    return [f"{_field_name(err.get('loc', ()))}: {err.get('msg', '')}" for err in errors]


def _kind_for_http_status(status_code: int) -> FailureKind:
    if status_code == status.HTTP_401_UNAUTHORIZED:
        return FailureKind.AUTHENTICATION_FAILED
    if status_code == status.HTTP_403_FORBIDDEN:
        return FailureKind.ACCESS_DENIED
    if status_code == status.HTTP_404_NOT_FOUND:
        return FailureKind.NOT_FOUND
    if status_code == 413:  # Payload Too Large
        return FailureKind.UPLOAD_TOO_LARGE
    if 400 <= status_code < 500:
        return FailureKind.BAD_REQUEST
    return FailureKind.UNHANDLED


def classify(exc: BaseException) -> Failure:
    if isinstance(exc, ValidationFailed):
        return Failure(
            exc.kind,
            exc.message,
            [f"{field}: {detail}" for field, detail in exc.violations],
        )
    if isinstance(exc, AppError):
        return Failure(exc.kind, exc.message)
    if isinstance(exc, (RequestValidationError, PydanticValidationError)):
        return Failure(
            FailureKind.VALIDATION_FAILED,
            str(exc),
            _pydantic_violations(exc.errors()),
        )
    if isinstance(exc, StarletteHTTPException):
        detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
        if exc.status_code == 429:
            detail = f"Too many requests: {detail}"
        return Failure(_kind_for_http_status(exc.status_code), detail)
    if isinstance(exc, RecursionError):
        return Failure(FailureKind.RECURSION_FAULT, str(exc))
    return Failure(FailureKind.UNHANDLED, str(exc))


# ── Mapping ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class _Policy:
    status: int
    error: str
    # "{message}" is replaced by the failure's own message; anything else is fixed.
    template: str
    log_detail: bool = False


_POLICIES: dict[FailureKind, _Policy] = {
    FailureKind.NOT_FOUND: _Policy(
        status.HTTP_404_NOT_FOUND, "Not Found", "{message}"
    ),
    FailureKind.BAD_REQUEST: _Policy(
        status.HTTP_400_BAD_REQUEST, "Bad Request", "{message}"
    ),
    FailureKind.ACCESS_DENIED: _Policy(
        status.HTTP_403_FORBIDDEN,
        "Forbidden",
        "You don't have permission to access this resource",
    ),
    FailureKind.AUTHENTICATION_FAILED: _Policy(
        status.HTTP_401_UNAUTHORIZED, "Unauthorized", "Authentication failed: {message}"
    ),
    FailureKind.VALIDATION_FAILED: _Policy(
        status.HTTP_400_BAD_REQUEST,
        "Validation Error",
        "Validation failed for request parameters",
    ),
    FailureKind.UPLOAD_TOO_LARGE: _Policy(
        status.HTTP_400_BAD_REQUEST,
        "File Size Exceeded",
        "The uploaded file exceeds the maximum allowed size",
    ),
    FailureKind.RECURSION_FAULT: _Policy(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Server Error",
        "A processing error occurred. This has been logged and will be addressed.",
        log_detail=True,
    ),
    FailureKind.UNHANDLED: _Policy(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Server Error",
        "An unexpected error occurred",
        log_detail=True,
    ),
}

_missing = set(FailureKind) - set(_POLICIES)
if _missing:
    raise RuntimeError(f"No error policy for failure kinds: {sorted(k.value for k in _missing)}")


def map_failure(exc: BaseException, path: str) -> tuple[int, ErrorResponse]:
    """Turn any failure raised while handling ``path`` into (status, body)."""
    failure = classify(exc)
    policy = _POLICIES[failure.kind]

    if policy.log_detail:
        logger.error(
            "Unhandled %s on %s",
            type(exc).__name__,
            path,
            exc_info=(type(exc), exc, exc.__traceback__),
        )

    body = ErrorResponse(
        status=policy.status,
        error=policy.error,
        message=policy.template.format(message=failure.message),
        path=path,
        errors=failure.errors,
    )
    return policy.status, body


def _retry_after_seconds(exc: StarletteHTTPException) -> int:
    # slowapi attaches the exceeded limit; its window length is the retry hint.
    item = getattr(getattr(exc, "limit", None), "limit", None)
    if item is None:
        return 1
    return int(item.get_expiry())


def failure_headers(exc: BaseException) -> dict[str, str]:
    headers: dict[str, str] = {}
    if isinstance(exc, StarletteHTTPException):
        if exc.headers:
            headers.update(exc.headers)
        if exc.status_code == 429:
            headers.setdefault("Retry-After", str(_retry_after_seconds(exc)))
    if isinstance(exc, AuthenticationFailed):
        headers.setdefault("WWW-Authenticate", "Bearer")
        if exc.retryable:
            headers["Retry-After"] = "1"
    return headers
