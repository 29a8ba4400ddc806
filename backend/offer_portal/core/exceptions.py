import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)


class AppError(Exception):
    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 400,
        headers: dict[str, str] | None = None,
        details: object = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.headers = headers
        self.details = details


class NotFoundError(AppError):
    # Never echoes the identifier so absent and hidden resources look the same.
    def __init__(self):
        super().__init__(code="not_found", message="Not found.", status_code=404)


class RevokedError(AppError):
    def __init__(self):
        super().__init__(code="revoked", message="This link is no longer valid.", status_code=403)


class ExpiredError(AppError):
    def __init__(self):
        super().__init__(code="expired", message="This link has expired.", status_code=410)


class OriginInvalidError(AppError):
    def __init__(self):
        super().__init__(
            code="origin_invalid",
            message="Request origin is not allowed.",
            status_code=403,
        )


class CsrfInvalidError(AppError):
    def __init__(self):
        super().__init__(
            code="csrf_invalid",
            message="Form token is missing or does not match.",
            status_code=403,
        )


class RateLimitedError(AppError):
    def __init__(self, retry_after: int):
        super().__init__(
            code="rate_limited",
            message="Too many requests. Please try again later.",
            status_code=429,
            headers={"Retry-After": str(retry_after)},
        )
        self.retry_after = retry_after


class UnauthorizedError(AppError):
    def __init__(self):
        super().__init__(
            code="unauthorized",
            message="A valid publish API key is required.",
            status_code=401,
            headers={"WWW-Authenticate": 'ApiKey realm="publish"'},
        )


class PublishKeyRequiredError(AppError):
    def __init__(self):
        super().__init__(
            code="publish_api_key_required",
            message="Publishing is disabled until a publish API key is configured.",
            status_code=503,
        )


class ConflictError(AppError):
    def __init__(self, message: str):
        super().__init__(code="conflict", message=message, status_code=409)


class ValidationError(AppError):
    def __init__(self, message: str, details: object = None):
        super().__init__(
            code="validation_error", message=message, status_code=422, details=details
        )


class UnsupportedMediaTypeError(AppError):
    def __init__(self):
        super().__init__(
            code="unsupported_media_type",
            message="Unsupported content type.",
            status_code=415,
        )


def validation_details(errors) -> list[dict]:
    """Flatten pydantic error dicts to the loc/msg pairs we return to clients."""
    return [{"loc": list(err.get("loc", ())), "msg": err.get("msg", "")} for err in errors]


def _error_body(code: str, message: object, details: object = None) -> dict:
    return {
        "error": {
            "code": code,
            "message": message,
            "details": details,
        }
    }


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.code, exc.message, jsonable_encoder(exc.details)),
            headers=exc.headers,
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content=_error_body(
                "validation_error", "Request validation failed.", validation_details(exc.errors())
            ),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body("http_error", exc.detail),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content=_error_body("internal_error", "An internal error occurred."),
        )
