import pytest

from formrelay.schemas.config import ValidationSettings
from formrelay.schemas.contact import ContactSubmission
from formrelay.services.validation import (
    EMAIL_INVALID,
    MESSAGE_HAS_URL,
    MESSAGE_REQUIRED,
    NAME_INVALID,
    NAME_REQUIRED,
    PHONE_INVALID,
    CompiledRules,
    normalize_phone,
    validate,
)


def _rules(**overrides) -> CompiledRules:
    return CompiledRules.from_settings(ValidationSettings(**overrides))


def _submission(**fields) -> ContactSubmission:
    data = {
        "name": "Jo",
        "email": "jo@example.com",
        "phone": "",
        "message": "Hello there, I have a question.",
    }
    data.update(fields)
    return ContactSubmission(**data)


def test_valid_submission_has_no_errors():
    assert validate(_submission(), _rules()) == {}


def test_fields_are_trimmed():
    submission = ContactSubmission(name="  Jo ", email=" jo@example.com\n", message=None)
    assert submission.name == "Jo"
    assert submission.email == "jo@example.com"
    assert submission.message == ""


def test_every_failing_field_is_reported():
    errors = validate(
        ContactSubmission(name="", email="nope", phone="12", message=""),
        _rules(),
    )
    assert errors == {
        "name": NAME_REQUIRED,
        "email": EMAIL_INVALID,
        "phone": PHONE_INVALID,
        "message": MESSAGE_REQUIRED,
    }


class TestName:
    def test_two_letters_pass(self):
        assert "name" not in validate(_submission(name="Jo"), _rules())

    def test_single_letter_fails(self):
        assert validate(_submission(name="J"), _rules())["name"] == NAME_INVALID

    def test_letters_marks_and_hyphen_pass(self):
        assert "name" not in validate(_submission(name="José-Ann"), _rules())

    def test_blank_name_is_required_error(self):
        assert validate(_submission(name="   "), _rules())["name"] == NAME_REQUIRED


class TestEmail:
    def test_fallback_rule(self):
        assert "email" not in validate(_submission(email="a@b.co"), _rules())
        assert validate(_submission(email="a@b"), _rules())["email"] == EMAIL_INVALID

    def test_configured_rule(self):
        rules = _rules(emailRegex=r"^[^@\s]+@example\.org$")
        assert "email" not in validate(_submission(email="jo@example.org"), rules)
        assert "email" in validate(_submission(email="jo@example.com"), rules)

    def test_trailing_newline_is_not_accepted(self):
        rules = _rules(emailRegex=r"^[^@\s]+@example\.org$")
        assert "email" in validate(_submission(email="jo@example.org\nBcc: x@y.z"), rules)


class TestPhone:
    def test_formatted_number_normalizes_and_passes(self):
        assert normalize_phone("+1 (555) 123-4567") == "+15551234567"
        assert "phone" not in validate(_submission(phone="+1 (555) 123-4567"), _rules())

    def test_only_leading_plus_is_kept(self):
        assert normalize_phone("+1+2-3") == "+123"

    def test_blank_phone_is_optional(self):
        assert "phone" not in validate(_submission(phone=""), _rules(requirePhone=False))

    def test_blank_phone_fails_when_required(self):
        errors = validate(_submission(phone=""), _rules(requirePhone=True))
        assert errors["phone"] == PHONE_INVALID

    def test_too_short_number_fails(self):
        assert validate(_submission(phone="123-45"), _rules())["phone"] == PHONE_INVALID


class TestMessage:
    def test_shorter_than_minimum_fails(self):
        errors = validate(_submission(message="too short"), _rules())
        assert errors["message"] == "Message must be at least 10 characters."

    def test_exactly_minimum_passes(self):
        assert "message" not in validate(_submission(message="abcdefghij"), _rules())

    def test_length_counts_characters_not_bytes(self):
        assert "message" not in validate(_submission(message="éééééééééé"), _rules())

    def test_zero_minimum_still_requires_content(self):
        rules = _rules(minMessageLength=0)
        assert validate(_submission(message=""), rules)["message"] == MESSAGE_REQUIRED
        assert "message" not in validate(_submission(message="x"), rules)


class TestBlockUrls:
    def test_url_error_when_message_otherwise_valid(self):
        errors = validate(_submission(message="visit http://x.com"), _rules(blockUrls=True))
        assert errors["message"] == MESSAGE_HAS_URL

    def test_too_short_error_takes_priority(self):
        rules = _rules(blockUrls=True, minMessageLength=30)
        errors = validate(_submission(message="visit http://x.com"), rules)
        assert errors["message"] == "Message must be at least 30 characters."

    def test_plain_text_passes(self):
        errors = validate(_submission(message="plain text, no links"), _rules(blockUrls=True))
        assert "message" not in errors

    def test_urls_allowed_when_not_blocked(self):
        assert "message" not in validate(_submission(message="visit http://x.com"), _rules())

    @pytest.mark.parametrize(
        "message",
        ["see www.example.com please", "HTTPS://EXAMPLE.COM/x is mine", "go to example.org now"],
    )
    def test_fallback_url_rule_is_case_insensitive(self, message):
        assert validate(_submission(message=message), _rules(blockUrls=True))["message"] == MESSAGE_HAS_URL


def test_exported_rules_match_compiled_rules():
    rules = _rules(phoneRegex="/^\\d{5}$/")
    exported = rules.export()
    assert set(exported) == {"required", "name", "email", "phone", "url"}
    assert exported["phone"] == {"pattern": "^\\d{5}$", "flags": ""}
    assert exported["name"]["flags"] == "u"
    assert exported["url"]["flags"] == "i"
