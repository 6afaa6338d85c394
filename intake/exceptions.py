from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse
from google.genai import errors
import logging

logger = logging.getLogger(__name__)

class AppException(Exception):
    def __init__(self, detail: str, type: str = "InternalServerError", status_code: int = 500):
        self.detail = detail
        self.type = type
        self.status_code = status_code
        super().__init__(self.detail)

class NotFoundError(AppException):
    """An operation addressed a case or session id that does not exist."""
    def __init__(self, detail: str):
        super().__init__(detail, type="NotFoundError", status_code=404)

class ParseFailure(AppException):
    """The model output held no usable structured suggestion. Non-fatal."""
    def __init__(self, detail: str):
        super().__init__(detail, type="ParseFailure", status_code=422)

class RemoteUnavailable(AppException):
    """Remote snapshot storage could not be read or written."""
    def __init__(self, detail: str):
        super().__init__(detail, type="RemoteUnavailable", status_code=503)

class LLMServiceError(AppException):
    """The completion service answered with a non-2xx status."""
    def __init__(self, detail: str, upstream_status: int | None = None, body: str = ""):
        self.upstream_status = upstream_status
        self.body = body
        status_code = 429 if upstream_status == 429 else 502
        error_type = "RateLimitError" if upstream_status == 429 else "LLMServiceError"
        super().__init__(detail, type=error_type, status_code=status_code)

async def global_exception_handler(request: Request, exc: Exception):
    """Catch-all exception handler."""
    status_code = 500
    error_type = "InternalServerError"
    detail = str(exc)

    if isinstance(exc, AppException):
        status_code = exc.status_code
        error_type = exc.type
        detail = exc.detail
    elif isinstance(exc, HTTPException):
        status_code = exc.status_code
        error_type = "HTTPException"
        detail = exc.detail
    elif isinstance(exc, errors.ClientError):
        # Handle Gemini API specific errors
        status_code = 400
        error_type = "AIClientError"
        if "429" in str(exc).lower() or "quota" in str(exc).lower():
            status_code = 429
            error_type = "RateLimitError"
            detail = "AI service rate limit exceeded. Please try again in a few minutes."

    if status_code >= 500:
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
    else:
        logger.info(f"{error_type} on {request.url.path}: {detail}")

    return JSONResponse(
        status_code=status_code,
        content={
            "error": True,
            "type": error_type,
            "detail": detail
        }
    )
