"""Tests for HTML message sanitization, header sanitization and PII redaction."""
from formrelay.core.sanitizer import redact_pii, sanitize_header, sanitize_html


class TestSanitizeHtml:
    def test_allowed_tags_survive(self):
        html = "<h2>Sent</h2><p><strong>Thanks!</strong> <em>Soon</em><br></p>"
        assert sanitize_html(html) == html

    def test_script_and_style_removed_with_content(self):
        html = "<p>Hi<script>alert(1)</script><style>p{color:red}</style></p>"
        assert sanitize_html(html) == "<p>Hi</p>"

    def test_event_attributes_dropped(self):
        assert sanitize_html('<b onclick="steal()">x</b>') == "<b>x</b>"
        assert sanitize_html('<p onmouseover=\'x()\' class="c">y</p>') == "<p>y</p>"

    def test_disallowed_tags_stripped_text_kept(self):
        assert sanitize_html('<a href="https://evil.test">link</a>') == "link"
        assert sanitize_html("<h4>heading</h4>") == "heading"

    def test_comments_removed(self):
        assert sanitize_html("<!-- note -->ok") == "ok"

    def test_plain_text_unchanged(self):
        assert sanitize_html("Thanks!") == "Thanks!"

    def test_bare_ampersand_and_brackets_escaped(self):
        assert sanitize_html("Q&A") == "Q&amp;A"
        assert sanitize_html("1 < 2 > 0") == "1 &lt; 2 &gt; 0"


class TestSanitizeHeader:
    def test_line_breaks_collapsed(self):
        assert sanitize_header("Hello\r\nBcc: x@example.com") == "Hello Bcc: x@example.com"

    def test_trimmed(self):
        assert sanitize_header("  subject \n") == "subject"


class TestRedactPii:
    def test_email_redacted(self):
        result = redact_pii("Contact user@example.com for info")
        assert "user@example.com" not in result
        assert "u***@example.com" in result

    def test_ipv4_redacted(self):
        result = redact_pii("Client IP: 192.168.1.100")
        assert "192.168.1.100" not in result
        assert "192.168.1.***" in result

    def test_phone_redacted(self):
        result = redact_pii("Phone: +1 (555) 123-4567 call back")
        assert "123-4567" not in result
        assert "[PHONE_REDACTED]" in result

    def test_normalized_phone_redacted(self):
        assert redact_pii("phone=+15551234567") == "phone=[PHONE_REDACTED]"

    def test_password_redacted(self):
        result = redact_pii("password=supersecret123")
        assert "supersecret123" not in result
        assert "[REDACTED]" in result

    def test_non_string_handled(self):
        assert redact_pii(12345) == "12345"
        assert redact_pii(None) == "None"

    def test_clean_message_unchanged(self):
        msg = "Contact message written to logs"
        assert redact_pii(msg) == msg
