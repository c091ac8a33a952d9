from __future__ import annotations

import enum
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

import structlog

from formrelay.core.email import MailMessage, Mailer, build_mailer
from formrelay.core.errors import (
    ConfigError,
    ContactError,
    DispatchError,
    RateLimitExceeded,
    ValidationError,
)
from formrelay.core.rate_limiter import Decision, RateLimiter, build_rate_limiter
from formrelay.core.sanitizer import sanitize_header, sanitize_html
from formrelay.schemas.contact import ContactResponse, ContactSubmission
from formrelay.services.config_loader import ContactConfig
from formrelay.services.validation import normalize_phone, validate

logger = structlog.get_logger(__name__)


class SubmissionOutcome(str, enum.Enum):
    SENT = "sent"
    INVALID = "invalid"
    RATE_LIMITED = "rate_limited"
    MISCONFIGURED = "misconfigured"
    SEND_FAILED = "send_failed"


_OUTCOME_BY_ERROR = (
    (RateLimitExceeded, SubmissionOutcome.RATE_LIMITED),
    (ValidationError, SubmissionOutcome.INVALID),
    (DispatchError, SubmissionOutcome.SEND_FAILED),
    (ConfigError, SubmissionOutcome.MISCONFIGURED),
)


@dataclass(frozen=True)
class SubmissionResult:
    outcome: SubmissionOutcome
    status_code: int
    message: str
    errors: Optional[Dict[str, str]] = None

    @property
    def ok(self) -> bool:
        return self.outcome is SubmissionOutcome.SENT

    def to_response(self) -> ContactResponse:
        return ContactResponse(ok=self.ok, message=self.message, errors=self.errors)


class ContactService:
    """Rate check -> validation -> composition -> dispatch for one submission.

    Every submission ends in exactly one :class:`SubmissionOutcome`; nothing
    is retried, a failed dispatch is final for that attempt.
    """

    def __init__(
        self,
        config: ContactConfig,
        limiter: Optional[RateLimiter] = None,
        mailer: Optional[Mailer] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.limiter = limiter or build_rate_limiter(config.limits)
        self.mailer = mailer or build_mailer(config.mail)
        self.clock = clock

    async def submit(
        self,
        submission: ContactSubmission,
        identifier: str,
        now: Optional[int] = None,
    ) -> SubmissionResult:
        now = int(self.clock()) if now is None else now
        messages = self.config.messages
        log = logger.bind(submitter=identifier)

        try:
            self._check_rate(identifier, now)
            self._validate(submission)
            message = self.compose(submission, identifier, now)
            await self.mailer.send(message)
        except ContactError as exc:
            outcome = next(o for kind, o in _OUTCOME_BY_ERROR if isinstance(exc, kind))
            log.warning(f"contact_{outcome.value}", detail=exc.detail)
            return SubmissionResult(
                outcome=outcome,
                status_code=exc.status_code,
                message=exc.public_message(),
                errors=getattr(exc, "errors", None),
            )

        log.info("contact_sent", transport=self.mailer.name, recipients=len(message.to))
        return SubmissionResult(
            outcome=SubmissionOutcome.SENT,
            status_code=200,
            message=sanitize_html(messages.success_html),
        )

    def _check_rate(self, identifier: str, now: int) -> None:
        if self.limiter.admit(identifier, now) is Decision.DENIED:
            raise RateLimitExceeded(
                f"limit of {self.limiter.limit_per_hour}/hour reached",
                message_html=self.config.messages.rate_html,
            )

    def _validate(self, submission: ContactSubmission) -> None:
        errors = validate(submission, self.config.rules)
        if errors:
            raise ValidationError(errors, message_html=self.config.messages.bad_request_html)

    def compose(
        self, submission: ContactSubmission, identifier: str, now: int
    ) -> MailMessage:
        mail = self.config.mail
        if not mail.recipients:
            raise ConfigError(
                "no recipients configured in mail.to",
                message_html=self.config.messages.fail_html,
            )

        to = tuple(
            (sanitize_header(address), sanitize_header(label))
            for address, label in mail.recipients
        )
        from_address = sanitize_header(mail.from_address)
        reply_to = sanitize_header(submission.email)
        subject = sanitize_header(mail.subject)
        sent_at = datetime.fromtimestamp(now, tz=timezone.utc).astimezone()

        body_text = "\n".join(
            [
                "You've received a new contact form submission:",
                "",
                f"Name:    {submission.name}",
                f"Email:   {submission.email}",
                f"Phone:   {normalize_phone(submission.phone)}",
                "Message:",
                submission.message,
                "",
                f"IP: {identifier}",
                f"Time: {sent_at.isoformat(timespec='seconds')}",
            ]
        )

        headers = (
            "MIME-Version: 1.0",
            "Content-Type: text/plain; charset=UTF-8",
            f"From: {from_address}",
            "To: " + ", ".join(f"{label} <{address}>" for address, label in to),
            f"Reply-To: {reply_to}",
        )

        return MailMessage(
            from_address=from_address,
            to=to,
            reply_to=reply_to,
            subject=subject,
            body_text=body_text,
            headers=headers,
        )
