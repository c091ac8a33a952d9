import json
from pathlib import Path

import pytest

from formrelay.core.errors import ConfigError, RuleSyntaxError
from formrelay.services.config_loader import load_contact_config, parse_contact_config

SAMPLE_CONFIG = Path(__file__).resolve().parents[2] / "config" / "mailer.config.json"


def test_missing_sections_get_defaults():
    config = parse_contact_config("{}")
    assert config.limits.rate_limit_per_hour == 5
    assert config.rules.min_message_length == 10
    assert config.mail.mode == "sendmail"
    assert config.mail.recipients == ()
    assert config.messages.success_html == "Thanks!"


def test_null_sections_are_treated_as_missing():
    config = parse_contact_config({"validation": None, "messages": None})
    assert config.rules.require_phone is False
    assert config.messages.rate_html == "Too many submissions. Please try again later."


def test_camel_case_keys_and_aliases():
    config = parse_contact_config(
        {
            "validation": {"minMessageLength": 3, "requirePhone": True, "blockUrls": True},
            "limits": {"rateLimitPerHour": 2, "rateStore": "/tmp/buckets"},
            "mail": {"to": ["a@example.com"], "from": "site@example.com", "mode": "file"},
            "messages": {"successHTML": "<p>ok</p>"},
        }
    )
    assert config.rules.min_message_length == 3
    assert config.rules.require_phone is True
    assert config.limits.rate_store_path == "/tmp/buckets"
    assert config.mail.recipients == (("a@example.com", "a@example.com"),)
    assert config.mail.from_address == "site@example.com"
    assert config.messages.success_html == "<p>ok</p>"


@pytest.mark.parametrize(
    "payload",
    [
        "{not json",
        "[]",
        json.dumps({"limits": {"rateLimitPerHour": 0}}),
        json.dumps({"mail": {"mode": "carrier-pigeon"}}),
        json.dumps({"validation": {"minMessageLength": "lots"}}),
    ],
)
def test_malformed_documents_raise_config_error(payload):
    with pytest.raises(ConfigError):
        parse_contact_config(payload)


def test_bad_rule_pattern_fails_at_load_time():
    with pytest.raises(RuleSyntaxError):
        parse_contact_config({"validation": {"phoneRegex": "^\\d++$"}})


def test_load_from_file(tmp_path):
    path = tmp_path / "mailer.config.json"
    path.write_text(json.dumps({"mail": {"to": {"t@example.com": "T"}}}), encoding="utf-8")
    config = load_contact_config(path)
    assert config.mail.recipients == (("t@example.com", "T"),)


def test_missing_file_raises_config_error(tmp_path):
    with pytest.raises(ConfigError):
        load_contact_config(tmp_path / "absent.json")


def test_client_view_is_sanitized_and_camel_cased():
    config = parse_contact_config(
        {
            "selectors": {"form": "#contact"},
            "validation": {"blockUrls": True},
            "messages": {"failHtml": "<p onclick=\"x()\">Oops<script>bad()</script></p>"},
        }
    )
    view = config.client_view()
    assert view["messages"]["failHtml"] == "<p>Oops</p>"
    assert view["messages"]["successHtml"] == "Thanks!"
    assert view["block_urls"] is True
    assert view["selectors"] == {"form": "#contact"}
    assert view["network"]["submitUrl"] == "/api/v1/contact"
    assert view["rules"]["required"] == {"pattern": "\\S", "flags": ""}


def test_sample_document_is_valid():
    config = load_contact_config(SAMPLE_CONFIG)
    assert config.mail.recipients
    assert config.rules.email.test("jo@example.com")
