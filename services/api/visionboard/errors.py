"""Domain errors with stable machine-readable codes."""

import logging

from fastapi import Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    """Base class for failures surfaced to API callers as ``{"error": code}``."""

    code = "internal_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str | None = None, **extra) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.extra = extra

    def to_response(self) -> JSONResponse:
        return JSONResponse(
            status_code=self.status_code,
            content={"ok": False, "error": self.code, **self.extra},
        )


# --- Auth ---


class AuthError(ServiceError):
    status_code = status.HTTP_401_UNAUTHORIZED


class MissingAuth(AuthError):
    code = "missing_auth"


class InvalidAuth(AuthError):
    code = "invalid_auth"


class ExpiredAuth(AuthError):
    code = "expired_auth"


class Forbidden(ServiceError):
    code = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN


# --- OAuth protocol ---


class OAuthError(ServiceError):
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidState(OAuthError):
    code = "invalid_state"


class TokenExchangeFailed(OAuthError):
    code = "token_exchange_failed"
    status_code = status.HTTP_502_BAD_GATEWAY


class IdentityResolutionFailed(OAuthError):
    code = "identity_resolution_failed"
    status_code = status.HTTP_502_BAD_GATEWAY


class InvalidPollToken(OAuthError):
    code = "invalid_poll_token"
    status_code = status.HTTP_404_NOT_FOUND


# --- Provider tokens ---


class NotConnected(ServiceError):
    code = "missing_canva_token"
    status_code = status.HTTP_400_BAD_REQUEST


class RefreshTokenMissing(ServiceError):
    code = "refresh_token_missing"
    status_code = status.HTTP_401_UNAUTHORIZED


class RefreshFailed(ServiceError):
    code = "refresh_failed"
    status_code = status.HTTP_502_BAD_GATEWAY


# --- Upstream / export ---


class UpstreamError(ServiceError):
    code = "upstream_error"
    status_code = status.HTTP_502_BAD_GATEWAY


class ExportSubmitFailed(UpstreamError):
    code = "export_submit_failed"


class ExportMissingUrls(UpstreamError):
    code = "export_missing_urls"


# --- Infrastructure / requests ---


class DatabaseRequired(ServiceError):
    code = "database_required"
    status_code = status.HTTP_501_NOT_IMPLEMENTED


class InvalidRequest(ServiceError):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, code: str, **extra) -> None:
        self.code = code
        super().__init__(code, **extra)


class NotFound(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, code: str, **extra) -> None:
        self.code = code
        super().__init__(code, **extra)


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    logger.info("Request to %s failed: %s", request.url.path, exc.code)
    return exc.to_response()
