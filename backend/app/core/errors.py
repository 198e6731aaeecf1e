"""Error taxonomy for the account and identity services, and its HTTP rendering."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppError(Exception):
    status_code: int = 500
    code: str = "internalError"
    detail: str = "Internal server error"

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.detail)
        if detail:
            self.detail = detail


class InvalidCredentials(AppError):
    status_code = 401
    code = "invalidCredentials"
    detail = "Invalid login credentials"


class AccountBlocked(AppError):
    status_code = 403
    code = "accountBlocked"
    detail = "User account is blocked"


class InvalidToken(AppError):
    status_code = 401
    code = "invalidToken"
    detail = "Token is invalid or expired"


class UserNotFound(AppError):
    status_code = 404
    code = "userNotFound"
    detail = "User not found"


class Forbidden(AppError):
    status_code = 403
    code = "forbidden"
    detail = "Access forbidden"


class ClientNotFound(AppError):
    status_code = 404
    code = "clientNotFound"
    detail = "Authentication client not found"


class InvalidClientName(AppError):
    status_code = 400
    code = "invalidClientName"
    detail = "Authentication client name is missing"


class CodeNotFound(AppError):
    status_code = 400
    code = "codeNotFound"
    detail = "Authorization code was not found in the callback"


class InternalError(AppError):
    pass


class ExternalAuthenticationError(AppError):
    """Provider-side failure. Callers only ever see the generic message; the subclass and reason are logged."""

    status_code = 401
    code = "externalAuthenticationFailed"
    detail = "External authentication failed"


class InvalidIdentityToken(ExternalAuthenticationError):
    pass


class ProviderRequestFailed(ExternalAuthenticationError):
    pass


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if isinstance(exc, ExternalAuthenticationError):
        logger.warning("%s on %s: %s", type(exc).__name__, request.url.path, exc)
        body = {"detail": ExternalAuthenticationError.detail, "code": ExternalAuthenticationError.code}
    else:
        if exc.status_code >= 500:
            logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc)
        body = {"detail": exc.detail, "code": exc.code}
    return JSONResponse(status_code=exc.status_code, content=body)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
