"""
Contact form endpoints.

POST /contact receives the form-encoded submission and always answers with
the ``{ok, message, errors?}`` envelope; GET /contact/config hands the
browser the compiled rules and messages so both sides validate alike.
"""
from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import JSONResponse

from formrelay.core.errors import ConfigError
from formrelay.core.rate_limiter import get_client_ip
from formrelay.schemas.contact import (
    ClientConfigResponse,
    ContactResponse,
    ContactSubmission,
)
from formrelay.services.config_loader import ContactConfig, load_contact_config
from formrelay.services.contact_service import ContactService

logger = structlog.get_logger(__name__)

router = APIRouter()


def get_contact_config() -> ContactConfig:
    """Load the contact document fresh for every request."""
    try:
        return load_contact_config()
    except ConfigError as exc:
        logger.error("contact_misconfigured", detail=exc.detail)
        raise


def get_contact_service(
    config: ContactConfig = Depends(get_contact_config),
) -> ContactService:
    return ContactService(config)


@router.post(
    "/contact",
    response_model=ContactResponse,
    response_model_exclude_none=True,
    summary="Submit the contact form",
    responses={
        400: {"model": ContactResponse, "description": "Invalid fields"},
        429: {"model": ContactResponse, "description": "Rate limit exceeded"},
        500: {"model": ContactResponse, "description": "Misconfigured or send failed"},
    },
)
async def submit_contact(
    request: Request,
    name: str = Form(""),
    email: str = Form(""),
    phone: str = Form(""),
    message: str = Form(""),
    service: ContactService = Depends(get_contact_service),
) -> JSONResponse:
    """Rate-check, validate, compose and dispatch one submission."""
    submission = ContactSubmission(name=name, email=email, phone=phone, message=message)
    result = await service.submit(submission, identifier=get_client_ip(request))
    return JSONResponse(
        status_code=result.status_code,
        content=result.to_response().model_dump(exclude_none=True),
    )


@router.get(
    "/contact/config",
    response_model=ClientConfigResponse,
    response_model_by_alias=True,
    summary="Validation rules and messages for the browser",
)
async def contact_client_config(
    config: ContactConfig = Depends(get_contact_config),
) -> ClientConfigResponse:
    return ClientConfigResponse.model_validate(config.client_view())
