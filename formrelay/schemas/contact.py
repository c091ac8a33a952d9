from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from formrelay.core.rules import js_trim


class ContactSubmission(BaseModel):
    """Raw form fields, trimmed; untrusted and unbounded until validated."""

    model_config = ConfigDict(frozen=True)

    name: str = ""
    email: str = ""
    phone: str = ""
    message: str = ""

    @field_validator("name", "email", "phone", "message", mode="before")
    @classmethod
    def _trim(cls, v: Any) -> str:
        if v is None:
            return ""
        return js_trim(str(v))


class ContactResponse(BaseModel):
    ok: bool
    message: str
    errors: Optional[Dict[str, str]] = None


class ExportedRule(BaseModel):
    pattern: str
    flags: str = ""


class ClientRules(BaseModel):
    required: ExportedRule
    name: ExportedRule
    email: ExportedRule
    phone: ExportedRule
    url: ExportedRule


class ClientConfigResponse(BaseModel):
    """What the browser needs to run the same validation as the server."""

    model_config = ConfigDict(populate_by_name=True)

    rules: ClientRules
    min_message_length: int = Field(alias="minMessageLength")
    require_phone: bool = Field(alias="requirePhone")
    block_urls: bool = Field(alias="blockUrls")
    messages: Dict[str, str]
    selectors: Dict[str, Any] = Field(default_factory=dict)
    styles: Dict[str, Any] = Field(default_factory=dict)
    network: Dict[str, Any] = Field(default_factory=dict)
