"""Field validation shared, rule for rule, with the browser."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict

from formrelay.core.rules import (
    EMAIL_FALLBACK,
    NAME_RULE,
    PHONE_FALLBACK,
    REQUIRED_RULE,
    URL_FALLBACK,
    Matcher,
    compile_spec,
    resolve_rule,
)
from formrelay.schemas.config import ValidationSettings
from formrelay.schemas.contact import ContactSubmission

NAME_REQUIRED = "Name is required."
NAME_INVALID = "Please enter a valid name."
EMAIL_INVALID = "Please enter a valid email address."
PHONE_INVALID = "Please enter a valid phone number."
MESSAGE_REQUIRED = "Message is required."
MESSAGE_TOO_SHORT = "Message must be at least {min} characters."
MESSAGE_HAS_URL = "Please remove URLs from the message."

# Drops every '+' that is not the first character and anything that is not a digit.
_PHONE_NOISE = re.compile(r"(?!^)\+|[^0-9+]")

ValidationResult = Dict[str, str]


@dataclass(frozen=True)
class CompiledRules:
    email: Matcher
    phone: Matcher
    url: Matcher
    name: Matcher = field(default_factory=lambda: compile_spec(NAME_RULE))
    required: Matcher = field(default_factory=lambda: compile_spec(REQUIRED_RULE))
    min_message_length: int = 10
    require_phone: bool = False
    block_urls: bool = False

    @classmethod
    def from_settings(cls, validation: ValidationSettings) -> "CompiledRules":
        """Compile every rule of the document; RuleSyntaxError surfaces here."""
        return cls(
            email=compile_spec(
                resolve_rule(validation.email_regex, validation.email_regex_flags, EMAIL_FALLBACK)
            ),
            phone=compile_spec(
                resolve_rule(validation.phone_regex, validation.phone_regex_flags, PHONE_FALLBACK)
            ),
            url=compile_spec(
                resolve_rule(validation.url_regex, validation.url_regex_flags, URL_FALLBACK)
            ),
            min_message_length=validation.min_message_length,
            require_phone=validation.require_phone,
            block_urls=validation.block_urls,
        )

    def export(self) -> Dict[str, Dict[str, str]]:
        return {
            "required": self.required.spec.export(),
            "name": self.name.spec.export(),
            "email": self.email.spec.export(),
            "phone": self.phone.spec.export(),
            "url": self.url.spec.export(),
        }


def normalize_phone(raw: str) -> str:
    """``"+1 (555) 123-4567"`` -> ``"+15551234567"``."""
    return _PHONE_NOISE.sub("", raw or "")


def validate(submission: ContactSubmission, rules: CompiledRules) -> ValidationResult:
    """Check every field and report every failing one; empty result means valid."""
    errors: ValidationResult = {}

    if not rules.required.test(submission.name):
        errors["name"] = NAME_REQUIRED
    elif not rules.name.test(submission.name):
        errors["name"] = NAME_INVALID

    if not rules.email.test(submission.email):
        errors["email"] = EMAIL_INVALID

    if rules.require_phone or submission.phone:
        if not rules.phone.test(normalize_phone(submission.phone)):
            errors["phone"] = PHONE_INVALID

    min_length = max(1, rules.min_message_length)
    if not rules.required.test(submission.message):
        errors["message"] = MESSAGE_REQUIRED
    elif len(submission.message) < min_length:
        errors["message"] = MESSAGE_TOO_SHORT.format(min=rules.min_message_length)

    # Required/too-short outrank the URL error.
    if rules.block_urls and submission.message and rules.url.test(submission.message):
        errors.setdefault("message", MESSAGE_HAS_URL)

    return errors
