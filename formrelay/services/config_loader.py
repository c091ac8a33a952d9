"""Loading of the contact form document into an immutable per-request snapshot.

The document lives outside the application bundle and is edited by hand, so
every load re-validates it completely: JSON syntax, section shapes (pydantic)
and every rule pattern (compiled up front, so a bad pattern is a ConfigError
at load time rather than a surprise during validation).
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Union

from pydantic import ValidationError as _PydanticValidationError

from formrelay.core.config import settings
from formrelay.core.errors import ConfigError
from formrelay.core.sanitizer import sanitize_html
from formrelay.schemas.config import ContactDocument
from formrelay.services.validation import CompiledRules

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContactConfig:
    """Parsed document plus the rules compiled from it."""

    document: ContactDocument
    rules: CompiledRules

    @property
    def messages(self):
        return self.document.messages

    @property
    def limits(self):
        return self.document.limits

    @property
    def mail(self):
        return self.document.mail

    def client_view(self) -> Dict[str, Any]:
        """Everything the browser needs to validate exactly like the server."""
        messages = self.document.messages
        return {
            "rules": self.rules.export(),
            "min_message_length": self.rules.min_message_length,
            "require_phone": self.rules.require_phone,
            "block_urls": self.rules.block_urls,
            "messages": {
                "successHtml": sanitize_html(messages.success_html),
                "failHtml": sanitize_html(messages.fail_html),
                "badRequestHtml": sanitize_html(messages.bad_request_html),
                "rateHtml": sanitize_html(messages.rate_html),
            },
            "selectors": dict(self.document.selectors),
            "styles": dict(self.document.styles),
            "network": self.document.network.model_dump(by_alias=True),
        }


def parse_contact_config(payload: Union[str, bytes, Dict[str, Any]]) -> ContactConfig:
    """Validate an already-read document (JSON text or decoded mapping)."""
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except ValueError as exc:
            raise ConfigError(f"contact config is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigError("contact config must be a JSON object")

    try:
        document = ContactDocument.model_validate(payload)
    except _PydanticValidationError as exc:
        raise ConfigError(f"contact config has an invalid shape: {exc}") from exc

    return ContactConfig(document=document, rules=CompiledRules.from_settings(document.validation))


def load_contact_config(source: Union[str, Path, None] = None) -> ContactConfig:
    """Read and validate the document at ``source`` (default: settings path)."""
    path = Path(source or settings.CONTACT_CONFIG_PATH)
    if not path.is_file():
        raise ConfigError(f"contact config not found: {path}")
    try:
        raw = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"contact config unreadable: {path}: {exc}") from exc

    config = parse_contact_config(raw)
    logger.debug("Contact config loaded from %s", path)
    return config
