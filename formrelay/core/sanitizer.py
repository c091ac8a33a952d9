import re

import bleach

# Tags the front-end may render inside the response box.
ALLOWED_TAGS = frozenset({"i", "b", "strong", "em", "h1", "h2", "h3", "p", "br"})

_SCRIPT_STYLE_BLOCK = re.compile(
    r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL
)
_LINE_BREAKS = re.compile(r"[\r\n]+")


def sanitize_html(html: str) -> str:
    """Reduce a configured HTML snippet to the safe tag allow-list.

    Script and style blocks are removed together with their content, every
    attribute (inline ``on*`` handlers included) is dropped, and tags outside
    :data:`ALLOWED_TAGS` are stripped while their text is kept. Bare ``&``,
    ``<`` and ``>`` in the text come back entity-escaped (``Q&A`` becomes
    ``Q&amp;A``), which renders the same in the browser.
    """
    if not isinstance(html, str):
        html = str(html)
    html = _SCRIPT_STYLE_BLOCK.sub("", html)
    return bleach.clean(
        html,
        tags=ALLOWED_TAGS,
        attributes={},
        strip=True,
        strip_comments=True,
    )


def sanitize_header(value: str) -> str:
    """Collapse embedded line breaks so a value cannot inject extra headers."""
    return _LINE_BREAKS.sub(" ", str(value)).strip()


def redact_pii(message: str) -> str:
    """Redact personally identifiable information from log messages.

    Contact submissions carry names, emails, phone numbers and client
    addresses; none of them should reach the log files verbatim.
    """
    if not isinstance(message, str):
        return str(message)

    # Emails: user@example.com -> u***@example.com
    message = re.sub(
        r"[\w.-]+@[\w.-]+\.\w+",
        lambda m: m.group()[0] + "***@" + m.group().split("@")[1],
        message,
    )

    # IPs (IPv4): 192.168.1.100 -> 192.168.1.***
    message = re.sub(
        r"\b(\d{1,3}\.\d{1,3}\.\d{1,3}\.)\d{1,3}\b", r"\1***", message
    )

    # Phone numbers: 7+ digits, optionally grouped by spaces, dashes or parens
    message = re.sub(
        r"(?<![\w.])\+?\d[\d\s().-]{5,}\d(?![\w.])",
        "[PHONE_REDACTED]",
        message,
    )

    # Password values in common patterns
    message = re.sub(
        r'(password|passwd|pwd|secret)["\']?\s*[:=]\s*["\']?[^"\'&\s]+',
        r"\1=[REDACTED]",
        message,
        flags=re.IGNORECASE,
    )

    return message
