"""Pydantic models describing the contact form document shared with the browser."""
from __future__ import annotations

import os
import tempfile
from typing import Any, Dict, Literal, Optional, Tuple, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, SecretStr, field_validator
from pydantic.alias_generators import to_camel

from formrelay.core.errors import (
    DEFAULT_BAD_REQUEST_HTML,
    DEFAULT_FAIL_HTML,
    DEFAULT_RATE_HTML,
    DEFAULT_SUCCESS_HTML,
)

MailMode = Literal["file", "smtp", "sendmail"]


class _Section(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class ValidationSettings(_Section):
    """Rule patterns (canonical dialect) and field constraints."""

    email_regex: Optional[str] = None
    email_regex_flags: Optional[str] = None
    phone_regex: Optional[str] = None
    phone_regex_flags: Optional[str] = None
    url_regex: Optional[str] = None
    url_regex_flags: Optional[str] = None
    min_message_length: int = Field(default=10, ge=0)
    require_phone: bool = False
    block_urls: bool = False


class LimitsSettings(_Section):
    rate_limit_per_hour: int = Field(default=5, ge=1)
    rate_store_path: str = Field(
        default_factory=lambda: os.path.join(tempfile.gettempdir(), "cf_rate_limit"),
        validation_alias=AliasChoices("rateStorePath", "rateStore", "rate_store_path"),
    )
    backend: Literal["file", "redis"] = "file"
    redis_url: Optional[str] = None


class MailSettings(_Section):
    """Recipients, envelope defaults and transport-specific fields."""

    to: Dict[str, str] = Field(default_factory=dict)
    from_address: str = Field(
        default="no-reply@example.com",
        validation_alias=AliasChoices("from", "from_address"),
    )
    subject: str = "New contact form submission"
    mode: MailMode = "sendmail"

    # file
    file_path: str = "logs"

    # smtp
    host: str = "127.0.0.1"
    port: int = 1025
    auth: bool = False
    username: str = ""
    password: Optional[SecretStr] = None
    secure: Union[bool, str] = False
    timeout: float = Field(default=10.0, gt=0)

    # sendmail
    sendmail_path: str = "/usr/sbin/sendmail -t -i"

    @field_validator("to", mode="before")
    @classmethod
    def _recipients_from_list(cls, v: Any) -> Any:
        # A bare list of addresses is accepted; each address doubles as its label.
        if isinstance(v, (list, tuple)):
            return {str(address): str(address) for address in v}
        return v

    @field_validator("mode", mode="before")
    @classmethod
    def _normalize_mode(cls, v: Any) -> Any:
        if v is None:
            return "sendmail"
        mode = str(v).strip().lower()
        # "mail" is the historical name of the system mail command backend
        return "sendmail" if mode in ("mail", "native") else mode

    @property
    def recipients(self) -> Tuple[Tuple[str, str], ...]:
        return tuple(self.to.items())

    @property
    def starttls(self) -> bool:
        if isinstance(self.secure, bool):
            return self.secure
        return self.secure.strip().lower() in ("tls", "starttls", "true")

    @property
    def implicit_tls(self) -> bool:
        return isinstance(self.secure, str) and self.secure.strip().lower() in ("ssl", "smtps")


class MessagesSettings(_Section):
    """HTML snippets per outcome; sanitized before they leave the server."""

    success_html: str = Field(
        default=DEFAULT_SUCCESS_HTML,
        validation_alias=AliasChoices("successHtml", "successHTML", "success_html"),
    )
    fail_html: str = Field(
        default=DEFAULT_FAIL_HTML,
        validation_alias=AliasChoices("failHtml", "failHTML", "fail_html"),
    )
    bad_request_html: str = Field(
        default=DEFAULT_BAD_REQUEST_HTML,
        validation_alias=AliasChoices("badRequestHtml", "badRequestHTML", "bad_request_html"),
    )
    rate_html: str = Field(
        default=DEFAULT_RATE_HTML,
        validation_alias=AliasChoices("rateHtml", "rateHTML", "rate_html"),
    )


class NetworkSettings(_Section):
    model_config = ConfigDict(extra="allow")

    submit_url: str = "/api/v1/contact"
    submit_headers: Dict[str, str] = Field(
        default_factory=lambda: {
            "Content-Type": "application/x-www-form-urlencoded; charset=UTF-8"
        }
    )


class ContactDocument(_Section):
    """Top-level JSON document (``mailer.config.json``)."""

    selectors: Dict[str, Any] = Field(default_factory=dict)
    styles: Dict[str, Any] = Field(default_factory=dict)
    validation: ValidationSettings = Field(default_factory=ValidationSettings)
    limits: LimitsSettings = Field(default_factory=LimitsSettings)
    mail: MailSettings = Field(default_factory=MailSettings)
    messages: MessagesSettings = Field(default_factory=MessagesSettings)
    network: NetworkSettings = Field(default_factory=NetworkSettings)

    @field_validator(
        "selectors", "styles", "validation", "limits", "mail", "messages", "network",
        mode="before",
    )
    @classmethod
    def _missing_section(cls, v: Any) -> Any:
        return {} if v is None else v
