"""
Test contact validation and phone normalization
"""
import pytest

from prequote_flow.errors import ValidationError
from prequote_flow.validation import format_phone_number, normalize_to_e164, validate_contact


class TestValidateContact:

    def test_valid_contact(self):
        contact = validate_contact(" Dana ", "Reyes", "dana@example.com", "305-555-0142")
        assert contact.first_name == "Dana"
        assert contact.phone == "(305) 555-0142"
        assert contact.digits_only_phone == "3055550142"

    def test_reports_every_failing_field(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_contact("D", "", "not-an-email", "555-0142")
        assert set(exc_info.value.errors) == {"first_name", "last_name", "email", "phone"}

    def test_phone_must_be_ten_digits(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_contact("Dana", "Reyes", "dana@example.com", "1 305 555 0142")
        assert list(exc_info.value.errors) == ["phone"]

    @pytest.mark.parametrize("email", ["a@b", "a b@c.com", "@example.com", "dana@example"])
    def test_rejects_malformed_email(self, email):
        with pytest.raises(ValidationError) as exc_info:
            validate_contact("Dana", "Reyes", email, "3055550142")
        assert "email" in exc_info.value.errors


class TestFormatPhoneNumber:

    @pytest.mark.parametrize("raw, formatted", [
        ("305", "305"),
        ("30555", "(305) 55"),
        ("3055550142", "(305) 555-0142"),
        ("305555014299", "(305) 555-0142"),
    ])
    def test_progressive_formatting(self, raw, formatted):
        assert format_phone_number(raw) == formatted


class TestNormalizeToE164:

    @pytest.mark.parametrize("raw, expected", [
        ("(305) 555-0142", "+13055550142"),
        ("1-305-555-0142", "+13055550142"),
        ("+44 20 7946 0958", "+442079460958"),
        ("442079460958", "+442079460958"),
        ("", None),
        (None, None),
        ("555-0142", None),
        ("0123456789012", None),
    ])
    def test_normalization(self, raw, expected):
        assert normalize_to_e164(raw) == expected
