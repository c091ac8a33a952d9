"""
=============================================================================
FORMRELAY - ERROR HANDLING MODULE
=============================================================================
Error taxonomy for contact submissions and the global exception handlers
that turn it into the JSON envelope the browser expects.

Taxonomy:
- ConfigError        -> 500 (fatal, never exposes internals)
- RuleSyntaxError    -> 500 (unparsable rule pattern, raised at load time)
- ValidationError    -> 400 (per-field map, never fatal)
- RateLimitExceeded  -> 429
- DispatchError      -> 500

Usage:
    # In main.py
    from formrelay.core.errors import register_exception_handlers
    register_exception_handlers(app)
=============================================================================
"""

import logging
import traceback
from typing import Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from formrelay.core.config import settings
from formrelay.core.sanitizer import sanitize_html

logger = logging.getLogger(__name__)

DEFAULT_SUCCESS_HTML = "Thanks!"
DEFAULT_FAIL_HTML = "Send failed."
DEFAULT_BAD_REQUEST_HTML = "Please fix the highlighted fields and try again."
DEFAULT_RATE_HTML = "Too many submissions. Please try again later."
METHOD_NOT_ALLOWED_TEXT = "Method not allowed."


class ContactError(Exception):
    """Base class for every failure a submission can end in."""

    status_code: int = 500
    default_message: str = DEFAULT_FAIL_HTML

    def __init__(self, detail: str = "", message_html: Optional[str] = None):
        super().__init__(detail or self.__class__.__name__)
        self.detail = detail
        self.message_html = message_html

    def public_message(self) -> str:
        return sanitize_html(self.message_html or self.default_message)


class ConfigError(ContactError):
    """The contact document is missing, unreadable or malformed."""


class RuleSyntaxError(ConfigError):
    """A rule pattern is outside the canonical dialect or does not compile."""


class ValidationError(ContactError):
    status_code = 400
    default_message = DEFAULT_BAD_REQUEST_HTML

    def __init__(
        self,
        errors: Dict[str, str],
        message_html: Optional[str] = None,
    ):
        super().__init__("invalid fields: " + ", ".join(sorted(errors)), message_html)
        self.errors = dict(errors)


class RateLimitExceeded(ContactError):
    status_code = 429
    default_message = DEFAULT_RATE_HTML


class DispatchError(ContactError):
    """The mail transport could not hand the message off."""


def error_payload(message: str, errors: Optional[Dict[str, str]] = None) -> dict:
    payload = {"ok": False, "message": message}
    if errors:
        payload["errors"] = errors
    return payload


def register_exception_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the FastAPI app."""

    @app.exception_handler(ContactError)
    async def contact_error_handler(request: Request, exc: ContactError):
        if exc.status_code >= 500:
            logger.error(
                "Contact request failed on %s %s: %s",
                request.method,
                request.url.path,
                exc.detail or type(exc).__name__,
            )
        errors = exc.errors if isinstance(exc, ValidationError) else None
        return JSONResponse(
            status_code=exc.status_code,
            content=error_payload(exc.public_message(), errors),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 405:
            message = METHOD_NOT_ALLOWED_TEXT
        else:
            message = sanitize_html(str(exc.detail))
        return JSONResponse(
            status_code=exc.status_code,
            content=error_payload(message),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """
        Catch-all handler for unhandled exceptions.

        - Logs the full traceback for debugging
        - Returns the generic failure envelope to prevent info leakage
        - In debug mode, includes the exception type
        """
        logger.error(
            f"Unhandled exception on {request.method} {request.url.path}:\n"
            f"{traceback.format_exc()}"
        )

        content = error_payload(DEFAULT_FAIL_HTML)
        if settings.DEBUG:
            content["error_type"] = type(exc).__name__
        return JSONResponse(status_code=500, content=content)
